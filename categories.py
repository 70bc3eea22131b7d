from typing import Optional

DEFAULT_CATEGORY = "Others"

# Canonical expense categories, seeded into the database in this order.
CATEGORY_NAMES: tuple[str, ...] = (
    "Food & Dining",
    "Transportation",
    "Housing & Utilities",
    "Health & Fitness",
    "Shopping",
    "Entertainment",
    "Travel",
    "Education",
    "Savings & Investments",
    "Debt & Loans",
    "Personal Care",
    DEFAULT_CATEGORY,
)

# Numeric table used only by the voice prompt. It is a different enumeration
# from CATEGORY_NAMES; do not index one with the other.
VOICE_DEFAULT_CATEGORY_ID = 10
VOICE_CATEGORIES: dict[int, str] = {
    1: "Food & Dining",
    2: "Transportation",
    3: "Shopping",
    4: "Entertainment",
    5: "Healthcare",
    6: "Education",
    7: "Utilities",
    8: "Travel",
    9: "Business",
    10: "Other",
}


class CategoryResolver:
    def __init__(self, names: tuple[str, ...] = CATEGORY_NAMES) -> None:
        if DEFAULT_CATEGORY not in names:
            raise ValueError(f"Category set must contain {DEFAULT_CATEGORY!r}")
        self.names = names
        self._folded = {name.casefold(): name for name in names}

    def resolve(self, label: Optional[str]) -> str:
        if label is None:
            return DEFAULT_CATEGORY
        if label in self.names:
            return label
        return self._folded.get(label.strip().casefold(), DEFAULT_CATEGORY)


def voice_category_id(raw: object) -> int:
    try:
        category_id = int(str(raw).strip())
    except (TypeError, ValueError):
        return VOICE_DEFAULT_CATEGORY_ID
    if category_id in VOICE_CATEGORIES:
        return category_id
    return VOICE_DEFAULT_CATEGORY_ID


def voice_category_label(category_id: int) -> str:
    return VOICE_CATEGORIES.get(
        category_id, VOICE_CATEGORIES[VOICE_DEFAULT_CATEGORY_ID]
    )
