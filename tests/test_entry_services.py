import json
from datetime import date

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from config import get_settings
from database import Base
from errors import ExtractionFailed, NotFoundError, TransportError
from extraction import TextExpenseExtractor, VoiceExpenseExtractor
from models import Expense, ExpenseSource
from periods import parse_month, resolve_range
from schemas import ExpenseIn, ParseExpenseIn, UserIn
from services import (
    CategoryService,
    ExpenseParserService,
    ExpenseService,
    UserService,
    VoiceExpenseService,
)

TODAY = date(2025, 8, 15)


class FakeChatClient:
    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.calls = 0

    def complete(self, messages, *, timeout):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.content


class FakeGenerativeClient:
    def __init__(self, text):
        self.text = text

    def generate(self, prompt, *, timeout):
        return self.text


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    session = Session(engine)
    CategoryService(session).seed_defaults()
    return session


def _request(text: str) -> ParseExpenseIn:
    return ParseExpenseIn(
        text=text, timezone="Asia/Kolkata", currency="INR", locale="en-IN"
    )


def test_parse_persists_ai_draft() -> None:
    with _session() as session:
        user = UserService(session).create(UserIn(name="Asha", email="a@example.com"))
        payload = {
            "amount": 1200,
            "category": "Shopping",
            "date": "2025-08-10",
            "description": "New shoes",
            "merchant": "Bata",
            "confidence": 0.8,
        }
        client = FakeChatClient(content=json.dumps(payload))
        service = ExpenseParserService(
            session, user.id, TextExpenseExtractor(client=client)
        )

        out = service.parse_and_create(_request("Bought shoes 1200"), today=TODAY)

        assert out.source == ExpenseSource.ai
        assert out.category == "Shopping"
        assert out.amount == 1200.0
        assert out.date == date(2025, 8, 10)
        assert out.merchant == "Bata"
        stored = session.get(Expense, out.expense_id)
        assert stored.source == "AI"
        assert stored.amount_cents == 120_000


def test_parse_falls_back_when_ai_is_unreachable() -> None:
    with _session() as session:
        user = UserService(session).create(UserIn(name="Asha", email="a@example.com"))
        client = FakeChatClient(error=TransportError("connection refused"))
        service = ExpenseParserService(
            session, user.id, TextExpenseExtractor(client=client)
        )

        out = service.parse_and_create(
            _request("Paid 450 for groceries today"), today=TODAY
        )

        assert out.amount == 450.0
        assert out.category == "Others"
        assert out.confidence == pytest.approx(0.3)
        assert out.source == ExpenseSource.ai_fallback
        assert out.date == TODAY
        assert out.currency == "INR"
        assert session.get(Expense, out.expense_id).source == "AI_FALLBACK"


def test_parse_defaults_locale_fields_from_settings() -> None:
    with _session() as session:
        user = UserService(session).create(UserIn(name="Asha", email="a@example.com"))
        client = FakeChatClient(error=TransportError("connection refused"))
        service = ExpenseParserService(
            session, user.id, TextExpenseExtractor(client=client)
        )
        settings = get_settings()

        out = service.parse_and_create(
            ParseExpenseIn(text="Paid 450 for groceries today"), today=TODAY
        )

        assert out.amount == 450.0
        assert out.currency == settings.currency
        assert client.calls == 1


def test_parse_fails_when_fallback_finds_no_amount() -> None:
    with _session() as session:
        user = UserService(session).create(UserIn(name="Asha", email="a@example.com"))
        client = FakeChatClient(content="no idea")
        service = ExpenseParserService(
            session, user.id, TextExpenseExtractor(client=client)
        )

        with pytest.raises(ExtractionFailed):
            service.parse_and_create(_request("bought some stuff"), today=TODAY)
        assert session.scalars(select(Expense)).all() == []


def test_parse_checks_user_before_calling_ai() -> None:
    with _session() as session:
        client = FakeChatClient(content='{"amount": 10}')
        service = ExpenseParserService(
            session, 404, TextExpenseExtractor(client=client)
        )

        with pytest.raises(NotFoundError):
            service.parse_and_create(_request("Coffee 10"), today=TODAY)
        assert client.calls == 0


def test_voice_creates_expense_with_high_confidence() -> None:
    with _session() as session:
        user = UserService(session).create(UserIn(name="Asha", email="a@example.com"))
        response = (
            '{"name": "Petrol", "amount": 2000, "categoryId": 2, '
            '"date": "2025-08-15", "description": "Fuel for the car"}'
        )
        extractor = VoiceExpenseExtractor(client=FakeGenerativeClient(response))

        out = VoiceExpenseService(session, user.id, extractor).process(
            "filled petrol for 2000 today", today=TODAY
        )

        assert out.success is True
        assert out.confidence == "High"
        assert out.parsed_text == "filled petrol for 2000 today"
        assert out.expense.category_name == "Transportation"
        assert out.expense.source == "voice"
        assert out.expense.amount == 2000.0


def test_voice_without_amount_creates_nothing() -> None:
    with _session() as session:
        user = UserService(session).create(UserIn(name="Asha", email="a@example.com"))
        extractor = VoiceExpenseExtractor(client=FakeGenerativeClient("hmm"))

        out = VoiceExpenseService(session, user.id, extractor).process(
            "something happened", today=TODAY
        )

        assert out.success is False
        assert out.confidence == "Low"
        assert out.expense is None
        assert session.scalars(select(Expense)).all() == []


def test_expense_summary_over_range() -> None:
    with _session() as session:
        user = UserService(session).create(UserIn(name="Asha", email="a@example.com"))
        categories = CategoryService(session)
        food = categories.get_by_name("Food & Dining")
        travel = categories.get_by_name("Travel")
        expenses = ExpenseService(session, user.id)
        for category, amount, day in [
            (food, 100, date(2025, 8, 1)),
            (food, 50, date(2025, 8, 2)),
            (food, 30, date(2025, 8, 3)),
            (travel, 900, date(2025, 8, 4)),
            (travel, 10_000, date(2025, 9, 1)),
        ]:
            expenses.create(
                ExpenseIn(name="x", category_id=category.id, amount=amount, date=day)
            )

        august_food = expenses.list_for_category_and_month(food.id, "2025-08")
        assert sorted(e.amount_cents for e in august_food) == [3000, 5000, 10_000]

        summary = expenses.summary(parse_month("2025-08"))

        assert summary["total_expenses"] == 1080.0
        assert summary["total_transactions"] == 4
        assert summary["average_expense"] == pytest.approx(270.0)
        assert summary["expenses_by_category"] == {
            "Food & Dining": 180.0,
            "Travel": 900.0,
        }
        assert summary["transactions_by_category"] == {"Food & Dining": 3, "Travel": 1}
        assert summary["highest_expense"] == 900.0
        assert summary["lowest_expense"] == 30.0
        assert summary["most_expensive_category"] == "Travel"
        assert summary["most_frequent_category"] == "Food & Dining"
        assert summary["recent_expenses"][0].date == date(2025, 8, 4)


def test_expense_summary_of_empty_range() -> None:
    with _session() as session:
        user = UserService(session).create(UserIn(name="Asha", email="a@example.com"))

        summary = ExpenseService(session, user.id).summary(
            resolve_range("2025-01-01", "2025-01-31")
        )

        assert summary["total_expenses"] == 0
        assert summary["average_expense"] == 0.0
        assert summary["most_expensive_category"] == "N/A"
        assert summary["most_frequent_category"] == "N/A"
        assert summary["recent_expenses"] == []
