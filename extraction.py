"""Turn free text and voice transcripts into expense drafts.

``TextExpenseExtractor`` asks a chat model for strict JSON and reports the
outcome as ``Extracted`` or ``NeedsFallback``; callers answer the latter with
``RegexFallbackExtractor``. ``VoiceExpenseExtractor`` asks a generative model
for quasi-JSON, recovers each field on its own and always returns a draft.
"""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Optional, Union

from ai_client import ChatCompletionClient, GenerativeClient
from categories import (
    CATEGORY_NAMES,
    VOICE_CATEGORIES,
    VOICE_DEFAULT_CATEGORY_ID,
    CategoryResolver,
    voice_category_id,
    voice_category_label,
)
from config import get_settings
from dates import DateResolver, add_months, today_in
from errors import (
    ExtractionFailed,
    MalformedResponse,
    PromptError,
    TransportError,
    ValidationError,
)
from models import ExpenseSource
from prompts import (
    EXPENSE_PARSER_SYSTEM,
    EXPENSE_PARSER_USER,
    VOICE_CATEGORY_HINTS,
    VOICE_EXPENSE,
    render_prompt,
)
from schemas import MAX_AMOUNT

logger = logging.getLogger(__name__)

NAME_MAX_LENGTH = 60
FALLBACK_CONFIDENCE = 0.3
AMOUNT_PATTERN = re.compile(r"(\d+(?:\.\d+)?)\s*(?:rs|inr|rupees)?", re.IGNORECASE)

VOICE_DEFAULT_NAME = "Voice Expense"
VOICE_DEFAULT_DESCRIPTION = "Expense from voice input"
VOICE_FAILED_DESCRIPTION = "Failed to parse voice input"


def default_name_from_text(text: str) -> str:
    return text[:NAME_MAX_LENGTH]


@dataclass(frozen=True)
class ExpenseDraft:
    name: str
    category: str
    amount: float
    date: date
    confidence: float
    source: ExpenseSource
    currency: str
    subcategory: Optional[str] = None
    description: Optional[str] = None
    merchant: Optional[str] = None

    def __post_init__(self) -> None:
        if not 0 < self.amount <= MAX_AMOUNT:
            raise ValidationError("Amount missing or invalid")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValidationError("Confidence must be between 0 and 1")
        if self.category not in CATEGORY_NAMES:
            raise ValidationError(f"Unknown category {self.category!r}")


@dataclass(frozen=True)
class Extracted:
    draft: ExpenseDraft


@dataclass(frozen=True)
class NeedsFallback:
    reason: str
    error: Optional[Exception] = None


ExtractionResult = Union[Extracted, NeedsFallback]


class RegexFallbackExtractor:
    def extract(
        self,
        text: str,
        *,
        timezone: Optional[str] = None,
        currency: Optional[str] = None,
        today: Optional[date] = None,
    ) -> ExpenseDraft:
        match = AMOUNT_PATTERN.search(text or "")
        amount = float(match.group(1)) if match else 0.0
        if not 0 < amount <= MAX_AMOUNT:
            raise ExtractionFailed("Could not extract amount from text")
        return ExpenseDraft(
            name=default_name_from_text(text),
            category=CategoryResolver().resolve(None),
            amount=amount,
            date=today or today_in(timezone),
            confidence=FALLBACK_CONFIDENCE,
            source=ExpenseSource.ai_fallback,
            currency=currency or get_settings().currency,
            description=text,
        )


def extract_json_object(content: Optional[str]) -> dict[str, Any]:
    """Decode the span from the first ``{`` to the last ``}`` of ``content``."""
    text = content or ""
    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end < start:
        raise MalformedResponse("AI did not return JSON")
    try:
        value = json.loads(text[start : end + 1])
    except (ValueError, RecursionError) as exc:
        raise MalformedResponse("Invalid AI response format") from exc
    if not isinstance(value, dict):
        raise MalformedResponse("AI response is not a JSON object")
    return value


def _positive_amount(value: Any) -> float:
    if value is None or isinstance(value, bool):
        raise ValidationError("Amount missing or invalid")
    try:
        amount = float(value)
    except (TypeError, ValueError, OverflowError) as exc:
        raise ValidationError("Amount missing or invalid") from exc
    if not 0 < amount <= MAX_AMOUNT:
        raise ValidationError("Amount missing or invalid")
    return amount


def clamp_confidence(value: Any) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError, OverflowError):
        return 0.0
    if math.isnan(confidence):
        return 0.0
    return max(0.0, min(1.0, confidence))


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class TextExpenseExtractor:
    def __init__(
        self,
        client: Optional[ChatCompletionClient] = None,
        resolver: Optional[CategoryResolver] = None,
        prompt_version: Optional[str] = None,
    ) -> None:
        self.client = client or ChatCompletionClient()
        self.resolver = resolver or CategoryResolver()
        self.prompt_version = prompt_version

    def build_messages(
        self, text: str, timezone: str, currency: str, locale: str
    ) -> list[dict[str, str]]:
        system = render_prompt(
            EXPENSE_PARSER_SYSTEM,
            self.prompt_version,
            currency=currency,
            categories=json.dumps(list(self.resolver.names), ensure_ascii=False),
        )
        user = render_prompt(
            EXPENSE_PARSER_USER,
            self.prompt_version,
            timezone=timezone,
            currency=currency,
            locale=locale,
            text=text,
        )
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]

    def extract(
        self,
        text: str,
        timezone: str,
        currency: str,
        locale: str,
        *,
        timeout: Optional[float] = None,
        today: Optional[date] = None,
    ) -> ExtractionResult:
        if timeout is None:
            timeout = get_settings().ai_timeout_secs
        reference = today or today_in(timezone)
        try:
            content = self.client.complete(
                self.build_messages(text, timezone, currency, locale),
                timeout=timeout,
            )
            draft = self.draft_from_payload(
                extract_json_object(content), text, currency, reference
            )
        except (TransportError, MalformedResponse, PromptError, ValidationError) as exc:
            logger.warning(
                f"ai_parse_failed: error={type(exc).__name__} reason={exc}"
            )
            return NeedsFallback(reason=str(exc), error=exc)
        return Extracted(draft)

    def draft_from_payload(
        self,
        payload: dict[str, Any],
        text: str,
        currency: str,
        reference: date,
    ) -> ExpenseDraft:
        amount = _positive_amount(payload.get("amount"))
        raw_date = payload.get("date")
        description = _optional_text(payload.get("description"))
        return ExpenseDraft(
            name=description or default_name_from_text(text),
            category=self.resolver.resolve(_optional_text(payload.get("category"))),
            amount=amount,
            date=DateResolver(reference).resolve(
                None if raw_date is None else str(raw_date)
            ),
            confidence=clamp_confidence(payload.get("confidence")),
            source=ExpenseSource.ai,
            currency=currency,
            subcategory=_optional_text(payload.get("subcategory")),
            description=description,
            merchant=_optional_text(payload.get("merchant")),
        )


VOICE_FIELD_COUNT = 5
_VOICE_OBJECT = re.compile(
    r'\{[^}]*"name"[^}]*"amount"[^}]*"categoryId"[^}]*"date"[^}]*"description"[^}]*\}'
)
_ANY_OBJECT = re.compile(r"\{[^}]*\}")
_VOICE_NAME = re.compile(r'"name"\s*:\s*"([^"]+)"')
_VOICE_AMOUNT = re.compile(r'"amount"\s*:\s*(-?\d+\.?\d*)')
_VOICE_CATEGORY = re.compile(r'"categoryId"\s*:\s*(-?\d+)')
_VOICE_DATE = re.compile(r'"date"\s*:\s*"([^"]+)"')
_VOICE_DESCRIPTION = re.compile(r'"description"\s*:\s*"([^"]*)"')


@dataclass(frozen=True)
class VoiceExpenseDraft:
    name: str
    amount: float
    category_id: int
    date: date
    description: str
    recovered_fields: int = 0

    @property
    def parsed(self) -> bool:
        return self.recovered_fields > 0

    @property
    def category_label(self) -> str:
        return voice_category_label(self.category_id)

    @property
    def confidence(self) -> float:
        return round(self.recovered_fields / VOICE_FIELD_COUNT, 2)

    def to_expense_draft(
        self,
        resolver: Optional[CategoryResolver] = None,
        currency: Optional[str] = None,
    ) -> ExpenseDraft:
        resolver = resolver or CategoryResolver()
        return ExpenseDraft(
            name=self.name,
            category=resolver.resolve(self.category_label),
            amount=self.amount,
            date=self.date,
            confidence=self.confidence,
            source=ExpenseSource.voice,
            currency=currency or get_settings().currency,
            description=self.description,
        )


@dataclass(frozen=True)
class VoiceFields:
    name: Optional[str] = None
    amount: Optional[float] = None
    category_id: Optional[str] = None
    date: Optional[str] = None
    description: Optional[str] = None

    def count(self) -> int:
        return sum(
            value is not None
            for value in (
                self.name,
                self.amount,
                self.category_id,
                self.date,
                self.description,
            )
        )


def narrow_voice_response(response: str) -> str:
    for pattern in (_VOICE_OBJECT, _ANY_OBJECT):
        match = pattern.search(response)
        if match:
            return match.group(0)
    logger.warning("voice_parse: no JSON object in response")
    return response


def _first_group(pattern: re.Pattern[str], text: str) -> Optional[str]:
    match = pattern.search(text)
    return match.group(1) if match else None


def recover_voice_fields(text: str) -> VoiceFields:
    amount_raw = _first_group(_VOICE_AMOUNT, text)
    try:
        amount = float(amount_raw) if amount_raw is not None else None
    except ValueError:
        amount = None
    name = _first_group(_VOICE_NAME, text)
    description = _first_group(_VOICE_DESCRIPTION, text)
    return VoiceFields(
        name=name.strip() if name is not None else None,
        amount=amount,
        category_id=_first_group(_VOICE_CATEGORY, text),
        date=_first_group(_VOICE_DATE, text),
        description=description.strip() if description is not None else None,
    )


def apply_voice_defaults(
    fields: VoiceFields, voice_text: str, resolver: DateResolver
) -> VoiceExpenseDraft:
    """Single defaulting pass over independently recovered voice fields."""
    if fields.category_id is None:
        category_id = VOICE_DEFAULT_CATEGORY_ID
    else:
        category_id = voice_category_id(fields.category_id)
        if category_id != int(fields.category_id):
            logger.warning(f"voice_parse: invalid category_id={fields.category_id}")

    if fields.date is None:
        expense_date = resolver.reference_date
    else:
        expense_date = resolver.resolve_and_validate(fields.date, voice_text)

    amount = fields.amount
    if amount is None or amount < 0 or not math.isfinite(amount):
        amount = 0.0

    return VoiceExpenseDraft(
        name=fields.name or VOICE_DEFAULT_NAME,
        amount=amount,
        category_id=category_id,
        date=expense_date,
        description=fields.description or VOICE_DEFAULT_DESCRIPTION,
        recovered_fields=fields.count(),
    )


def failed_voice_draft(reference: date) -> VoiceExpenseDraft:
    return VoiceExpenseDraft(
        name=VOICE_DEFAULT_NAME,
        amount=0.0,
        category_id=VOICE_DEFAULT_CATEGORY_ID,
        date=reference,
        description=VOICE_FAILED_DESCRIPTION,
    )


class VoiceExpenseExtractor:
    def __init__(
        self,
        client: Optional[GenerativeClient] = None,
        prompt_version: Optional[str] = None,
    ) -> None:
        self.client = client or GenerativeClient()
        self.prompt_version = prompt_version

    def build_prompt(self, voice_text: str, today: date) -> str:
        category_table = "\n".join(
            f"- {category_id} ({label}): {VOICE_CATEGORY_HINTS[category_id]}"
            for category_id, label in VOICE_CATEGORIES.items()
        )
        return render_prompt(
            VOICE_EXPENSE,
            self.prompt_version,
            today=today.isoformat(),
            yesterday=(today - timedelta(days=1)).isoformat(),
            last_week=(today - timedelta(days=7)).isoformat(),
            last_month=add_months(today, -1).isoformat(),
            voice_text=voice_text,
            category_table=category_table,
        )

    def extract(
        self,
        voice_text: str,
        *,
        timezone: Optional[str] = None,
        timeout: Optional[float] = None,
        today: Optional[date] = None,
    ) -> VoiceExpenseDraft:
        reference = today or today_in(timezone)
        if timeout is None:
            timeout = get_settings().ai_timeout_secs
        try:
            response = self.client.generate(
                self.build_prompt(voice_text, reference), timeout=timeout
            )
            fields = recover_voice_fields(narrow_voice_response(response))
            draft = apply_voice_defaults(
                fields, voice_text or "", DateResolver(reference)
            )
        except Exception:
            logger.exception("voice_parse_failed: using defaults")
            return failed_voice_draft(reference)
        logger.info(
            f"voice_parsed: name={draft.name!r} amount={draft.amount} "
            f"category_id={draft.category_id} date={draft.date}"
        )
        return draft
