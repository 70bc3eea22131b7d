from datetime import date

import pytest

from errors import TransportError, ValidationError
from extraction import (
    VOICE_DEFAULT_DESCRIPTION,
    VOICE_DEFAULT_NAME,
    VOICE_FAILED_DESCRIPTION,
    VoiceExpenseExtractor,
    narrow_voice_response,
    recover_voice_fields,
)
from models import ExpenseSource

TODAY = date(2025, 8, 15)


class FakeGenerativeClient:
    def __init__(self, text=None, error=None):
        self.text = text
        self.error = error
        self.prompts = []

    def generate(self, prompt, *, timeout):
        self.prompts.append((prompt, timeout))
        if self.error is not None:
            raise self.error
        return self.text


def _extract(response, voice_text="spent money", **kwargs):
    extractor = VoiceExpenseExtractor(client=FakeGenerativeClient(text=response))
    return extractor.extract(voice_text, today=TODAY, **kwargs)


def test_full_response_inside_code_fence() -> None:
    response = (
        "```json\n"
        '{"name": "Coffee", "amount": 120.5, "categoryId": 1, '
        '"date": "2025-08-14", "description": "Coffee at the cafe"}\n'
        "```"
    )

    draft = _extract(response)

    assert draft.name == "Coffee"
    assert draft.amount == 120.5
    assert draft.category_id == 1
    assert draft.category_label == "Food & Dining"
    assert draft.date == date(2025, 8, 14)
    assert draft.description == "Coffee at the cafe"
    assert draft.recovered_fields == 5
    assert draft.confidence == 1.0


def test_partial_response_fills_each_missing_field() -> None:
    draft = _extract('Result: {"name": "Taxi", "amount": 300}')

    assert draft.name == "Taxi"
    assert draft.amount == 300.0
    assert draft.category_id == 10
    assert draft.date == TODAY
    assert draft.description == VOICE_DEFAULT_DESCRIPTION
    assert draft.recovered_fields == 2
    assert draft.confidence == 0.4


def test_out_of_range_category_becomes_other() -> None:
    draft = _extract('{"name": "Misc", "amount": 50, "categoryId": 42}')

    assert draft.category_id == 10
    assert draft.category_label == "Other"


def test_implausible_date_is_rederived_from_voice_text() -> None:
    response = '{"name": "Lunch", "amount": 200, "date": "2030-01-01"}'

    draft = _extract(response, voice_text="spent 200 yesterday on lunch")

    assert draft.date == date(2025, 8, 14)


def test_negative_amount_is_zeroed_and_not_persistable() -> None:
    draft = _extract('{"name": "Refund", "amount": -50}')

    assert draft.amount == 0.0
    with pytest.raises(ValidationError):
        draft.to_expense_draft()


def test_response_without_json_uses_defaults() -> None:
    draft = _extract("Sorry, I could not understand that.")

    assert draft.name == VOICE_DEFAULT_NAME
    assert draft.amount == 0.0
    assert draft.category_id == 10
    assert draft.recovered_fields == 0
    assert not draft.parsed


def test_client_failure_returns_failed_draft() -> None:
    extractor = VoiceExpenseExtractor(
        client=FakeGenerativeClient(error=TransportError("timed out"))
    )

    draft = extractor.extract("bought a shirt for 900", today=TODAY)

    assert draft.name == VOICE_DEFAULT_NAME
    assert draft.amount == 0.0
    assert draft.category_id == 10
    assert draft.date == TODAY
    assert draft.description == VOICE_FAILED_DESCRIPTION


def test_to_expense_draft_maps_voice_label_to_canonical_category() -> None:
    food = _extract('{"name": "Dosa", "amount": 80, "categoryId": 1}')
    health = _extract('{"name": "Pills", "amount": 150, "categoryId": 5}')

    food_draft = food.to_expense_draft()
    health_draft = health.to_expense_draft()

    assert food_draft.category == "Food & Dining"
    assert food_draft.source == ExpenseSource.voice
    assert food_draft.amount == 80.0
    assert food_draft.confidence == pytest.approx(0.6)
    assert health_draft.category == "Others"


def test_prompt_carries_reference_dates_and_timeout() -> None:
    client = FakeGenerativeClient(text="{}")
    extractor = VoiceExpenseExtractor(client=client)

    extractor.extract("paid 500 for petrol", today=TODAY, timeout=2.0)

    prompt, timeout = client.prompts[0]
    assert timeout == 2.0
    assert "2025-08-15" in prompt
    assert "2025-08-14" in prompt
    assert "2025-07-15" in prompt
    assert "paid 500 for petrol" in prompt
    assert "10 (Other)" in prompt


def test_field_recovery_is_independent() -> None:
    fields = recover_voice_fields('"amount": 75.25, "name": "Bus pass"')

    assert fields.amount == 75.25
    assert fields.name == "Bus pass"
    assert fields.category_id is None
    assert fields.count() == 2


def test_narrowing_prefers_the_complete_object() -> None:
    text = (
        '{"note": "ignore"} then '
        '{"name": "A", "amount": 1, "categoryId": 2, "date": "x", "description": ""}'
    )

    assert narrow_voice_response(text).startswith('{"name": "A"')
    assert narrow_voice_response("no braces") == "no braces"
