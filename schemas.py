import datetime as dt
from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import BudgetStatus, ExpenseSource

MONTH_REGEX = r"^\d{4}-\d{2}$"
MAX_AMOUNT = 1_000_000_000_000


class UserIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=255)


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    order: int = 0


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    order: int


class ExpenseIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    category_id: int
    amount: float = Field(..., gt=0, le=MAX_AMOUNT)
    date: dt.date
    payment_method: Optional[str] = Field(default=None, max_length=40)
    tags: Optional[str] = Field(default=None, max_length=255)
    source: ExpenseSource = ExpenseSource.manual


class IngestExpenseIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: float = Field(..., gt=0, le=MAX_AMOUNT)
    name: str = Field(..., min_length=1, max_length=100)
    date: Optional[dt.date] = None
    category: Optional[str] = Field(default=None, max_length=100)


class ExpenseOut(BaseModel):
    id: int
    user_id: int
    name: str
    description: Optional[str]
    category_id: int
    category_name: str
    amount: float
    date: date
    source: str
    subcategory: Optional[str] = None
    merchant: Optional[str] = None
    payment_method: Optional[str] = None
    tags: Optional[str] = None
    tag_list: list[str] = Field(default_factory=list)


class ExpenseSummaryOut(BaseModel):
    user_id: int
    user_name: str
    start_date: date
    end_date: date
    total_expenses: float
    total_transactions: int
    average_expense: float
    expenses_by_category: dict[str, float]
    transactions_by_category: dict[str, int]
    recent_expenses: list[ExpenseOut]
    highest_expense: float
    lowest_expense: float
    most_expensive_category: str
    most_frequent_category: str


class ParseExpenseIn(BaseModel):
    text: str = Field(..., min_length=1)
    timezone: Optional[str] = Field(default=None, min_length=1)
    currency: Optional[str] = Field(default=None, min_length=1)
    locale: Optional[str] = Field(default=None, min_length=1)


class ParsedExpenseOut(BaseModel):
    expense_id: int
    name: str
    category: str
    subcategory: Optional[str]
    amount: float
    currency: str
    date: date
    description: Optional[str]
    merchant: Optional[str]
    confidence: float
    source: ExpenseSource


class VoiceExpenseIn(BaseModel):
    voice_text: str = Field(..., min_length=1)


class VoiceExpenseOut(BaseModel):
    success: bool
    message: str
    expense: Optional[ExpenseOut] = None
    parsed_text: Optional[str] = None
    confidence: Optional[str] = None


class BudgetIn(BaseModel):
    category_id: int
    limit_amount: float = Field(..., gt=0, le=MAX_AMOUNT)
    month: str = Field(..., pattern=MONTH_REGEX)


class BudgetOut(BaseModel):
    id: int
    user_id: int
    user_name: str
    category_id: int
    category_name: str
    limit_amount: float
    spent_amount: float
    remaining_amount: float
    month: str
    status: BudgetStatus
    percentage_used: float


class BudgetSummaryOut(BaseModel):
    user_id: int
    user_name: str
    month: str
    total_budget: float
    target_budget: Optional[float]
    total_spent: float
    total_remaining: float
    overall_percentage_used: float
    overall_status: BudgetStatus
    budgets: list[BudgetOut]
    total_categories: int
    categories_under_budget: int
    categories_over_budget: int
    target_vs_actual_percentage: Optional[float]


class MonthlyBudgetTargetIn(BaseModel):
    target_amount: float = Field(..., gt=0, le=MAX_AMOUNT)
    month: str = Field(..., pattern=MONTH_REGEX)


class MonthlyBudgetTargetOut(BaseModel):
    id: int
    user_id: int
    user_name: str
    target_amount: float
    month: str
    is_active: bool
