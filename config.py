import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        currency: str,
        locale: str,
        chat_api_base: str,
        chat_api_token: str,
        chat_model: str,
        gemini_api_base: str,
        gemini_api_key: str,
        gemini_model: str,
        ai_timeout_secs: float,
        prompt_version: str,
        prompt_dir: Optional[Path],
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.currency = currency
        self.locale = locale
        self.chat_api_base = chat_api_base
        self.chat_api_token = chat_api_token
        self.chat_model = chat_model
        self.gemini_api_base = gemini_api_base
        self.gemini_api_key = gemini_api_key
        self.gemini_model = gemini_model
        self.ai_timeout_secs = ai_timeout_secs
        self.prompt_version = prompt_version
        self.prompt_dir = prompt_dir


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("EXPENSES_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "expenses.db"
    database_url = os.getenv("EXPENSES_DATABASE_URL", f"sqlite:///{default_db}")
    prompt_dir = os.getenv("EXPENSES_PROMPT_DIR")
    return Settings(
        database_url=database_url,
        timezone=os.getenv("EXPENSES_TIMEZONE", "Asia/Kolkata"),
        currency=os.getenv("EXPENSES_CURRENCY", "INR"),
        locale=os.getenv("EXPENSES_LOCALE", "en-IN"),
        chat_api_base=os.getenv(
            "EXPENSES_CHAT_API_BASE", "https://router.huggingface.co"
        ).rstrip("/"),
        chat_api_token=os.getenv("EXPENSES_CHAT_API_TOKEN", ""),
        chat_model=os.getenv(
            "EXPENSES_CHAT_MODEL", "meta-llama/Llama-3.1-8B-Instruct"
        ),
        gemini_api_base=os.getenv(
            "EXPENSES_GEMINI_API_BASE",
            "https://generativelanguage.googleapis.com/v1beta",
        ).rstrip("/"),
        gemini_api_key=os.getenv("EXPENSES_GEMINI_API_KEY", ""),
        gemini_model=os.getenv("EXPENSES_GEMINI_MODEL", "gemini-1.5-flash"),
        ai_timeout_secs=float(os.getenv("EXPENSES_AI_TIMEOUT_SECS", "15")),
        prompt_version=os.getenv("EXPENSES_PROMPT_VERSION", "v1"),
        prompt_dir=Path(prompt_dir).resolve() if prompt_dir else None,
    )
