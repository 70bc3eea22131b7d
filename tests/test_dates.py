from datetime import date

from dates import DateResolver, add_months, most_recent_weekday, today_in

# Friday
REFERENCE = date(2025, 8, 15)


def test_resolve_handles_keywords_iso_and_garbage() -> None:
    resolver = DateResolver(REFERENCE)

    assert resolver.resolve("today") == REFERENCE
    assert resolver.resolve("Yesterday") == date(2025, 8, 14)
    assert resolver.resolve("2025-08-01") == date(2025, 8, 1)
    assert resolver.resolve("next tuesday-ish") == REFERENCE
    assert resolver.resolve(None) == REFERENCE
    assert resolver.resolve("") == REFERENCE


def test_resolve_and_validate_accepts_dates_inside_window() -> None:
    resolver = DateResolver(REFERENCE)

    assert resolver.resolve_and_validate("2025-08-16", "") == date(2025, 8, 16)
    assert resolver.resolve_and_validate("2024-08-15", "") == date(2024, 8, 15)
    assert resolver.resolve_and_validate("2025-03-02", "") == date(2025, 3, 2)


def test_resolve_and_validate_rederives_implausible_dates_from_text() -> None:
    resolver = DateResolver(REFERENCE)

    future = resolver.resolve_and_validate("2025-08-17", "paid 200 yesterday")
    assert future == date(2025, 8, 14)

    too_old = resolver.resolve_and_validate("2024-08-14", "rent last month")
    assert too_old == date(2025, 7, 15)

    unparseable = resolver.resolve_and_validate("the 5th", "dinner last week")
    assert unparseable == date(2025, 8, 8)


def test_relative_date_from_text_keyword_order() -> None:
    resolver = DateResolver(REFERENCE)

    assert resolver.relative_date_from_text("yesterday and today") == date(
        2025, 8, 14
    )
    assert resolver.relative_date_from_text("bought it just now") == REFERENCE
    assert resolver.relative_date_from_text("this week sometime") == date(
        2025, 8, 12
    )
    assert resolver.relative_date_from_text("earlier this month") == date(
        2025, 8, 5
    )
    assert resolver.relative_date_from_text("lunch on monday") == date(2025, 8, 11)
    assert resolver.relative_date_from_text("groceries") == REFERENCE
    assert resolver.relative_date_from_text(None) == REFERENCE


def test_same_weekday_goes_back_a_full_week() -> None:
    resolver = DateResolver(REFERENCE)

    assert resolver.relative_date_from_text("last friday dinner") == date(2025, 8, 8)
    assert most_recent_weekday(REFERENCE, 4) == date(2025, 8, 8)
    assert most_recent_weekday(REFERENCE, 5) == date(2025, 8, 9)


def test_add_months_clamps_to_month_end() -> None:
    assert add_months(date(2025, 3, 31), -1) == date(2025, 2, 28)
    assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert add_months(date(2025, 1, 15), -12) == date(2024, 1, 15)
    assert add_months(date(2025, 12, 10), 1) == date(2026, 1, 10)


def test_today_in_falls_back_on_unknown_timezone() -> None:
    assert isinstance(today_in("Not/AZone"), date)
    assert isinstance(today_in("Asia/Kolkata"), date)
