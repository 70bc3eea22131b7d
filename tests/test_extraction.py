import json
from datetime import date

import pytest

from config import get_settings
from errors import (
    ExtractionFailed,
    MalformedResponse,
    PromptError,
    TransportError,
    ValidationError,
)
from extraction import (
    ExpenseDraft,
    Extracted,
    NeedsFallback,
    RegexFallbackExtractor,
    TextExpenseExtractor,
    extract_json_object,
)
from models import ExpenseSource

TODAY = date(2025, 8, 15)


class FakeChatClient:
    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.calls = []

    def complete(self, messages, *, timeout):
        self.calls.append((messages, timeout))
        if self.error is not None:
            raise self.error
        return self.content


def _extract(client, text="Paid 450 for groceries yesterday", **kwargs):
    extractor = TextExpenseExtractor(client=client)
    return extractor.extract(
        text, "Asia/Kolkata", "INR", "en-IN", today=TODAY, **kwargs
    )


def test_ai_success_builds_draft_from_embedded_json() -> None:
    payload = {
        "amount": 450,
        "category": "food & dining",
        "subcategory": "Groceries",
        "date": "yesterday",
        "description": "Weekly groceries",
        "merchant": "BigBasket",
        "confidence": 0.92,
    }
    client = FakeChatClient(content=f"Here you go:\n{json.dumps(payload)}\nThanks")

    result = _extract(client)

    assert isinstance(result, Extracted)
    draft = result.draft
    assert draft.amount == 450.0
    assert draft.category == "Food & Dining"
    assert draft.subcategory == "Groceries"
    assert draft.date == date(2025, 8, 14)
    assert draft.name == "Weekly groceries"
    assert draft.merchant == "BigBasket"
    assert draft.confidence == pytest.approx(0.92)
    assert draft.source == ExpenseSource.ai
    assert draft.currency == "INR"


def test_confidence_is_clamped_into_unit_interval() -> None:
    high = _extract(FakeChatClient(content='{"amount": 10, "confidence": 1.5}'))
    low = _extract(FakeChatClient(content='{"amount": 10, "confidence": -0.2}'))
    junk = _extract(FakeChatClient(content='{"amount": 10, "confidence": "sure"}'))

    assert high.draft.confidence == 1.0
    assert low.draft.confidence == 0.0
    assert junk.draft.confidence == 0.0


def test_missing_description_and_category_use_defaults() -> None:
    text = "x" * 80
    result = _extract(FakeChatClient(content='{"amount": "99.5"}'), text=text)

    assert isinstance(result, Extracted)
    assert result.draft.name == "x" * 60
    assert result.draft.category == "Others"
    assert result.draft.date == TODAY
    assert result.draft.amount == 99.5


@pytest.mark.parametrize(
    "content",
    [
        "I cannot help with that",
        "{not json}",
        '{"amount": 0}',
        '{"amount": -5}',
        '{"amount": "abc"}',
        '{"category": "Travel"}',
        "[1, 2]",
        '{"amount": ' + "9" * 400 + "}",
        '{"amount": 1e200}',
    ],
)
def test_bad_ai_output_needs_fallback(content) -> None:
    result = _extract(FakeChatClient(content=content))

    assert isinstance(result, NeedsFallback)
    assert isinstance(result.error, (MalformedResponse, ValidationError))
    assert result.reason


def test_deeply_nested_ai_output_needs_fallback() -> None:
    content = '{"amount": ' + "[" * 1_000_000 + "]" * 1_000_000 + "}"

    result = _extract(FakeChatClient(content=content))

    assert isinstance(result, NeedsFallback)
    assert isinstance(result.error, (MalformedResponse, ValidationError))


@pytest.fixture()
def prompt_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("EXPENSES_PROMPT_DIR", str(tmp_path))
    get_settings.cache_clear()
    yield tmp_path
    get_settings.cache_clear()


def test_broken_prompt_override_needs_fallback(prompt_dir) -> None:
    (prompt_dir / "expense_parser_system.v7.txt").write_text(
        "Currency: $currency", encoding="utf-8"
    )
    (prompt_dir / "expense_parser_user.v7.txt").write_text(
        "Text: $text from $city", encoding="utf-8"
    )
    client = FakeChatClient(content='{"amount": 10}')
    extractor = TextExpenseExtractor(client=client, prompt_version="v7")

    result = extractor.extract(
        "Coffee 10", "Asia/Kolkata", "INR", "en-IN", timeout=1, today=TODAY
    )

    assert isinstance(result, NeedsFallback)
    assert isinstance(result.error, PromptError)
    assert client.calls == []


def test_unknown_prompt_version_needs_fallback() -> None:
    client = FakeChatClient(content='{"amount": 10}')
    extractor = TextExpenseExtractor(client=client, prompt_version="v999")

    result = extractor.extract(
        "Coffee 10", "Asia/Kolkata", "INR", "en-IN", timeout=1, today=TODAY
    )

    assert isinstance(result, NeedsFallback)
    assert isinstance(result.error, PromptError)


def test_transport_error_needs_fallback() -> None:
    client = FakeChatClient(error=TransportError("connection refused"))

    result = _extract(client)

    assert isinstance(result, NeedsFallback)
    assert isinstance(result.error, TransportError)


def test_timeout_and_prompt_are_passed_to_client() -> None:
    client = FakeChatClient(content='{"amount": 10}')

    _extract(client, text="Coffee 10", timeout=3.5)

    messages, timeout = client.calls[0]
    assert timeout == 3.5
    assert [m["role"] for m in messages] == ["system", "user"]
    assert "Food & Dining" in messages[0]["content"]
    assert "INR" in messages[0]["content"]
    assert "Coffee 10" in messages[1]["content"]
    assert "Asia/Kolkata" in messages[1]["content"]


def test_regex_fallback_extracts_first_amount() -> None:
    draft = RegexFallbackExtractor().extract(
        "Paid 450 for groceries today",
        timezone="Asia/Kolkata",
        currency="INR",
        today=TODAY,
    )

    assert draft.amount == 450.0
    assert draft.category == "Others"
    assert draft.confidence == pytest.approx(0.3)
    assert draft.source == ExpenseSource.ai_fallback
    assert draft.date == TODAY
    assert draft.currency == "INR"
    assert draft.name == "Paid 450 for groceries today"
    assert draft.description == "Paid 450 for groceries today"


def test_regex_fallback_handles_rupee_suffix() -> None:
    text = "I spent 300 rs yesterday on sandwich"

    draft = RegexFallbackExtractor().extract(text, currency="INR", today=TODAY)

    assert draft.amount == 300.0
    assert draft.name == text
    assert draft.description == text
    assert draft.category == "Others"
    assert draft.date == TODAY


def test_regex_fallback_accepts_decimal_and_currency_suffix() -> None:
    draft = RegexFallbackExtractor().extract("taxi 120.75 rs", today=TODAY)

    assert draft.amount == 120.75


@pytest.mark.parametrize("text", ["no digits here", "", "0 rupees"])
def test_regex_fallback_fails_without_positive_amount(text) -> None:
    with pytest.raises(ExtractionFailed):
        RegexFallbackExtractor().extract(text, today=TODAY)


def test_draft_rejects_invalid_values() -> None:
    base = dict(
        name="x",
        category="Others",
        amount=1.0,
        date=TODAY,
        confidence=0.5,
        source=ExpenseSource.manual,
        currency="INR",
    )
    with pytest.raises(ValidationError):
        ExpenseDraft(**{**base, "amount": 0})
    with pytest.raises(ValidationError):
        ExpenseDraft(**{**base, "confidence": 1.5})
    with pytest.raises(ValidationError):
        ExpenseDraft(**{**base, "category": "Groceries"})


def test_extract_json_object_spans_first_to_last_brace() -> None:
    assert extract_json_object('noise {"a": {"b": 1}} tail') == {"a": {"b": 1}}
    with pytest.raises(MalformedResponse):
        extract_json_object(None)
    with pytest.raises(MalformedResponse):
        extract_json_object("} backwards {")


def test_regex_fallback_rejects_absurd_amounts() -> None:
    with pytest.raises(ExtractionFailed):
        RegexFallbackExtractor().extract("paid " + "9" * 400 + " rs", today=TODAY)
