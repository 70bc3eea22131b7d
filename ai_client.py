from __future__ import annotations

import json
import logging
from http.client import HTTPException
from typing import Any, Optional
from urllib.error import URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

from config import get_settings
from errors import MalformedResponse, TransportError

logger = logging.getLogger(__name__)


def post_json(
    url: str,
    body: dict[str, Any],
    *,
    timeout: float,
    headers: Optional[dict[str, str]] = None,
) -> Any:
    """POST ``body`` as JSON and decode the JSON reply.

    Network failures, timeouts and non-2xx answers raise ``TransportError``;
    a 2xx answer that is not UTF-8 JSON raises ``MalformedResponse``.
    """
    req = Request(
        url,
        data=json.dumps(body).encode("utf-8"),
        headers={
            "Accept": "application/json",
            "Content-Type": "application/json",
            **(headers or {}),
        },
        method="POST",
    )
    try:
        with urlopen(req, timeout=timeout) as resp:
            raw = resp.read()
    except (URLError, TimeoutError, OSError, HTTPException) as exc:
        raise TransportError(f"AI endpoint request failed: {exc}") from exc

    try:
        return json.loads(raw.decode("utf-8"))
    except (ValueError, RecursionError) as exc:
        raise MalformedResponse("AI endpoint returned non-JSON body") from exc


class ChatCompletionClient:
    """OpenAI-style ``/v1/chat/completions`` endpoint."""

    def __init__(
        self,
        api_base: Optional[str] = None,
        token: Optional[str] = None,
        model: Optional[str] = None,
    ) -> None:
        settings = get_settings()
        self.api_base = (api_base or settings.chat_api_base).rstrip("/")
        self.token = token if token is not None else settings.chat_api_token
        self.model = model or settings.chat_model

    def complete(self, messages: list[dict[str, str]], *, timeout: float) -> str:
        body = {"model": self.model, "stream": False, "messages": messages}
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        payload = post_json(
            f"{self.api_base}/v1/chat/completions",
            body,
            timeout=timeout,
            headers=headers,
        )
        try:
            content = payload["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise MalformedResponse("Unexpected chat completion response") from exc
        if not isinstance(content, str):
            raise MalformedResponse("Chat completion content is not text")
        return content


class GenerativeClient:
    """Gemini-style ``models/<model>:generateContent`` endpoint."""

    def __init__(
        self,
        api_base: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
    ) -> None:
        settings = get_settings()
        self.api_base = (api_base or settings.gemini_api_base).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.gemini_api_key
        self.model = model or settings.gemini_model

    def generate(self, prompt: str, *, timeout: float) -> str:
        url = (
            f"{self.api_base}/models/{quote(self.model)}:generateContent"
            f"?key={quote(self.api_key)}"
        )
        body = {"contents": [{"parts": [{"text": prompt}]}]}
        payload = post_json(url, body, timeout=timeout)
        try:
            text = payload["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as exc:
            raise MalformedResponse(
                "Invalid response from generative endpoint"
            ) from exc
        logger.debug(f"generative_response: chars={len(text)}")
        return str(text)
