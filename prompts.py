"""Versioned prompt templates for the AI extractors.

Templates use ``string.Template`` placeholders (``$name``) so the JSON
examples inside them need no escaping. A template can be replaced without a
code change by dropping ``<name>.<version>.txt`` into ``EXPENSES_PROMPT_DIR``.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from string import Template
from typing import Optional

from config import get_settings
from errors import PromptError

logger = logging.getLogger(__name__)

EXPENSE_PARSER_SYSTEM = "expense_parser_system"
EXPENSE_PARSER_USER = "expense_parser_user"
VOICE_EXPENSE = "voice_expense"

_EXPENSE_PARSER_SYSTEM_V1 = """\
You are an expense parser.
Return *only* valid JSON for each request. No extra text.

Goal: extract a single expense from a short sentence.
Output JSON with keys:
{
  "amount": number,
  "currency": "$currency",
  "date": "YYYY-MM-DD",        // normalized using the provided timezone
  "category": string,          // choose from the allowed list only
  "subcategory": string|null,
  "description": string|null,
  "merchant": string|null,
  "confidence": number         // 0..1 rough confidence in your extraction
}

Rules:
- If amount has "rs", "rupees", assume INR. Amount must be a number (no commas or currency symbol).
- Date: Resolve relative terms like "today", "yesterday", "last Friday" with the provided timezone.
- Category MUST be one of:
  $categories
- If unsure, use "Others" and lower the confidence.
- Subcategory is optional (e.g., "Sandwich").
- Merchant is optional (e.g., "Subway", "Starbucks") if obvious.
- Description: short human-friendly summary.

Return JSON only. No markdown, no backticks.
"""

_EXPENSE_PARSER_USER_V1 = """\
Timezone: $timezone
Currency: $currency
Locale: $locale

Text: "$text"
"""

_VOICE_EXPENSE_V1 = """\
You are an intelligent expense parsing assistant. Parse the following voice input into a structured expense format with high accuracy.

CURRENT DATE CONTEXT:
- Today's date is: $today
- Yesterday's date is: $yesterday
- Last week's date is: $last_week

Voice Input: "$voice_text"

CATEGORY MAPPING (be very specific):
$category_table

DATE PARSING RULES (CRITICAL - USE CURRENT DATE CONTEXT ABOVE):
- "yesterday" = $yesterday
- "today" = $today
- "last week" = $last_week
- "last month" = $last_month (approximately)
- "Monday", "Tuesday", etc. = most recent occurrence of that day
- "last Monday" = previous Monday from today
- "this week" = within last 7 days from today
- "this month" = within current month
- If no date mentioned, use today's date: $today

Extract and return in this exact JSON format:
{
    "name": "clear expense name",
    "amount": 0.0,
    "categoryId": 1,
    "date": "YYYY-MM-DD",
    "description": "detailed description"
}

EXAMPLES WITH CURRENT DATES:
Input: "I spent 500 rupees on lunch yesterday at McDonald's"
Output: {"name": "Lunch at McDonald's", "amount": 500.0, "categoryId": 1, "date": "$yesterday", "description": "Lunch at McDonald's restaurant"}

Input: "Bought petrol for 2000 rupees today"
Output: {"name": "Petrol", "amount": 2000.0, "categoryId": 2, "date": "$today", "description": "Fuel purchase for vehicle"}

Input: "Paid 1500 for movie tickets last week"
Output: {"name": "Movie Tickets", "amount": 1500.0, "categoryId": 4, "date": "$last_week", "description": "Cinema tickets for entertainment"}

CRITICAL RULES:
1. ALWAYS use the current date context provided above
2. Be very specific with category mapping based on the examples above
3. Parse dates accurately using the date rules and current date context
4. Extract amounts carefully (look for numbers followed by currency words)
5. Create descriptive names that clearly identify the expense
6. Only return valid JSON, no additional text or explanations
7. NEVER use hardcoded years - always calculate from the current date context
"""

PROMPTS: dict[tuple[str, str], str] = {
    (EXPENSE_PARSER_SYSTEM, "v1"): _EXPENSE_PARSER_SYSTEM_V1,
    (EXPENSE_PARSER_USER, "v1"): _EXPENSE_PARSER_USER_V1,
    (VOICE_EXPENSE, "v1"): _VOICE_EXPENSE_V1,
}

# Hints shown to the voice model next to each numeric category id.
VOICE_CATEGORY_HINTS: dict[int, str] = {
    1: "restaurants, cafes, food delivery, groceries, dining out, lunch, dinner, breakfast, snacks, food items",
    2: "fuel, gas, petrol, diesel, taxi, uber, bus, train, metro, parking, toll, car maintenance, bike, scooter",
    3: "clothes, electronics, gadgets, accessories, fashion, retail stores, online shopping, malls, department stores",
    4: "movies, cinema, games, streaming services, Netflix, Amazon Prime, sports events, concerts, shows, amusement parks",
    5: "medicines, doctor visits, hospital, medical tests, pharmacy, health insurance, dental, optical, fitness",
    6: "books, courses, tuition, school fees, college fees, training, workshops, online courses, educational materials",
    7: "electricity, water, gas, internet, phone bills, mobile recharge, broadband, cable TV, maintenance",
    8: "flights, hotels, vacation, holiday, travel packages, tourism, sightseeing, accommodation",
    9: "office supplies, business meetings, client expenses, work-related travel, professional services",
    10: "anything that doesn't fit above categories",
}


@lru_cache(maxsize=32)
def _read_override(prompt_dir: Path, name: str, version: str) -> Optional[str]:
    path = prompt_dir / f"{name}.{version}.txt"
    if not path.is_file():
        return None
    logger.info(f"prompt_override: name={name} version={version} path={path}")
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise PromptError(f"Prompt override {path} is unreadable") from exc


def load_prompt(name: str, version: Optional[str] = None) -> Template:
    settings = get_settings()
    version = version or settings.prompt_version
    if settings.prompt_dir is not None:
        override = _read_override(settings.prompt_dir, name, version)
        if override is not None:
            return Template(override)
    try:
        return Template(PROMPTS[(name, version)])
    except KeyError as exc:
        raise PromptError(f"Unknown prompt {name!r} version {version!r}") from exc


def render_prompt(name: str, version: Optional[str] = None, **values: str) -> str:
    """Load and fill a prompt; missing or malformed placeholders raise PromptError."""
    template = load_prompt(name, version)
    try:
        return template.substitute(**values)
    except (KeyError, ValueError) as exc:
        raise PromptError(f"Prompt {name!r} could not be rendered: {exc}") from exc
