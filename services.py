from __future__ import annotations

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

from rapidfuzz.distance import Levenshtein
from sqlalchemy import func, select
from sqlalchemy.orm import Session, joinedload

from categories import CATEGORY_NAMES, DEFAULT_CATEGORY, CategoryResolver
from config import get_settings
from dates import today_in
from errors import ConflictError, NotFoundError, ValidationError
from extraction import (
    ExpenseDraft,
    Extracted,
    NeedsFallback,
    RegexFallbackExtractor,
    TextExpenseExtractor,
    VoiceExpenseExtractor,
)
from models import (
    Budget,
    BudgetStatus,
    Category,
    Expense,
    MonthlyBudgetTarget,
    User,
)
from periods import Period, parse_month
from schemas import (
    BudgetIn,
    BudgetOut,
    CategoryIn,
    ExpenseIn,
    ExpenseOut,
    IngestExpenseIn,
    MonthlyBudgetTargetIn,
    MonthlyBudgetTargetOut,
    ParsedExpenseOut,
    ParseExpenseIn,
    UserIn,
    VoiceExpenseOut,
)

logger = logging.getLogger(__name__)

ON_TRACK_THRESHOLD = 80.0
OVER_BUDGET_THRESHOLD = 100.0
_BUILTIN_CATEGORY_KEYS = frozenset(name.lower() for name in CATEGORY_NAMES)


def amount_to_cents(amount: float) -> int:
    value = Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return int(value * 100)


def cents_to_amount(cents: int) -> float:
    return cents / 100


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def create(self, data: UserIn) -> User:
        email = data.email.strip().lower()
        existing = self.session.scalar(select(User).where(User.email == email))
        if existing:
            raise ConflictError("User with this email already exists")
        user = User(name=data.name.strip(), email=email)
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        logger.info(f"user_created: id={user.id}")
        return user

    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFoundError(f"User not found with ID: {user_id}")
        return user


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def seed_defaults(self) -> int:
        existing = {
            name.lower() for name in self.session.scalars(select(Category.name)).all()
        }
        created = 0
        for order, name in enumerate(CATEGORY_NAMES):
            if name.lower() in existing:
                continue
            self.session.add(Category(name=name, order=order))
            created += 1
        if created:
            self.session.commit()
            logger.info(f"categories_seeded: created={created}")
        return created

    def list_all(self) -> list[Category]:
        stmt = select(Category).order_by(Category.order, Category.name)
        return self.session.scalars(stmt).all()

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category:
            raise NotFoundError(f"Category not found with ID: {category_id}")
        return category

    def find_by_name(self, name: str) -> Optional[Category]:
        return self.session.scalar(
            select(Category).where(func.lower(Category.name) == name.strip().lower())
        )

    def get_by_name(self, name: str) -> Category:
        category = self.find_by_name(name)
        if not category:
            raise NotFoundError(f"Category not found: {name}")
        return category

    def exists(self, name: str) -> bool:
        return self.find_by_name(name) is not None

    def create(self, data: CategoryIn) -> Category:
        if self.exists(data.name):
            raise ConflictError("Category with this name already exists")
        category = Category(name=data.name.strip(), order=data.order)
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    @staticmethod
    def is_builtin(category: Category) -> bool:
        return category.name.lower() in _BUILTIN_CATEGORY_KEYS

    def update(self, category_id: int, data: CategoryIn) -> Category:
        category = self.get(category_id)
        name = data.name.strip()
        if self.is_builtin(category) and name != category.name:
            raise ValidationError(f"The '{category.name}' category cannot be renamed")
        clash = self.find_by_name(name)
        if clash and clash.id != category_id:
            raise ConflictError("Category with this name already exists")
        category.name = name
        category.order = data.order
        self.session.commit()
        return category

    def delete(self, category_id: int) -> None:
        category = self.get(category_id)
        if self.is_builtin(category):
            raise ValidationError(f"The '{category.name}' category cannot be deleted")
        expense_count = self.session.scalar(
            select(func.count(Expense.id)).where(Expense.category_id == category_id)
        )
        if expense_count:
            raise ConflictError(
                f"Category is used by {expense_count} existing expense(s)"
            )
        budget_count = self.session.scalar(
            select(func.count(Budget.id)).where(Budget.category_id == category_id)
        )
        if budget_count:
            raise ConflictError(
                f"Category is used by {budget_count} existing budget(s)"
            )
        self.session.delete(category)
        self.session.commit()

    def match_name(self, raw_name: Optional[str]) -> Category:
        """Exact, then within one edit of a known name, else not found."""
        name = (raw_name or "").strip()
        if not name:
            return self.get_by_name(DEFAULT_CATEGORY)
        exact = self.find_by_name(name)
        if exact:
            return exact

        input_lower = name.lower()
        best_distance: Optional[int] = None
        best: list[Category] = []
        for category in self.list_all():
            dist = int(Levenshtein.distance(input_lower, category.name.lower()))
            if best_distance is None or dist < best_distance:
                best_distance = dist
                best = [category]
            elif dist == best_distance:
                best.append(category)

        if best_distance is None or best_distance > 1:
            raise NotFoundError(f"Category not found: {name}")
        if len(best) > 1:
            options = ", ".join(sorted(c.name for c in best))
            raise ValidationError(
                f"Category '{name}' is ambiguous; matches: {options}"
            )
        return best[0]


class ExpenseService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _base_query(self):
        return (
            select(Expense)
            .options(joinedload(Expense.category))
            .where(Expense.user_id == self.user_id)
        )

    def create(self, data: ExpenseIn) -> Expense:
        UserService(self.session).get(self.user_id)
        category = CategoryService(self.session).get(data.category_id)
        expense = Expense(
            user_id=self.user_id,
            name=data.name.strip(),
            description=data.description,
            category_id=category.id,
            amount_cents=self._positive_cents(data.amount),
            date=data.date,
            source=data.source.value,
            payment_method=data.payment_method,
            tags=data.tags,
        )
        self.session.add(expense)
        self.session.commit()
        self.session.refresh(expense)
        logger.info(
            f"expense_created: id={expense.id} user={self.user_id} "
            f"source={expense.source}"
        )
        return expense

    def save_draft(self, draft: ExpenseDraft, category: Category) -> Expense:
        expense = Expense(
            user_id=self.user_id,
            name=draft.name,
            description=draft.description,
            category_id=category.id,
            amount_cents=self._positive_cents(draft.amount),
            date=draft.date,
            source=draft.source.value,
            subcategory=draft.subcategory,
            merchant=draft.merchant,
        )
        self.session.add(expense)
        self.session.commit()
        self.session.refresh(expense)
        logger.info(
            f"expense_created: id={expense.id} user={self.user_id} "
            f"source={expense.source} confidence={draft.confidence}"
        )
        return expense

    def ingest(self, data: IngestExpenseIn, *, today: Optional[date] = None) -> Expense:
        UserService(self.session).get(self.user_id)
        category = CategoryService(self.session).match_name(data.category)
        expense_date = data.date or today or today_in(get_settings().timezone)
        return self.create(
            ExpenseIn(
                name=data.name,
                category_id=category.id,
                amount=data.amount,
                date=expense_date,
            )
        )

    def get(self, expense_id: int) -> Expense:
        expense = self.session.scalar(
            self._base_query().where(Expense.id == expense_id)
        )
        if not expense:
            raise NotFoundError(f"Expense not found with ID: {expense_id}")
        return expense

    def update(self, expense_id: int, data: ExpenseIn) -> Expense:
        expense = self.get(expense_id)
        category = CategoryService(self.session).get(data.category_id)
        expense.name = data.name.strip()
        expense.description = data.description
        expense.category_id = category.id
        expense.amount_cents = self._positive_cents(data.amount)
        expense.date = data.date
        expense.payment_method = data.payment_method
        expense.tags = data.tags
        self.session.commit()
        self.session.refresh(expense)
        return expense

    def delete(self, expense_id: int) -> None:
        expense = self.get(expense_id)
        self.session.delete(expense)
        self.session.commit()
        logger.info(f"expense_deleted: id={expense_id} user={self.user_id}")

    def list_all(self) -> list[Expense]:
        stmt = self._base_query().order_by(Expense.date.desc(), Expense.id.desc())
        return self.session.scalars(stmt).all()

    def list_for_period(self, period: Period) -> list[Expense]:
        stmt = (
            self._base_query()
            .where(Expense.date.between(period.start, period.end))
            .order_by(Expense.date.desc(), Expense.id.desc())
        )
        return self.session.scalars(stmt).all()

    def list_for_category(self, category_id: int) -> list[Expense]:
        CategoryService(self.session).get(category_id)
        stmt = (
            self._base_query()
            .where(Expense.category_id == category_id)
            .order_by(Expense.date.desc(), Expense.id.desc())
        )
        return self.session.scalars(stmt).all()

    def list_for_category_and_month(
        self, category_id: int, month: str
    ) -> list[Expense]:
        period = parse_month(month)
        stmt = self._base_query().where(
            Expense.category_id == category_id,
            Expense.date.between(period.start, period.end),
        )
        return self.session.scalars(stmt).all()

    def spent_cents_by_category(self, period: Period) -> dict[int, int]:
        stmt = (
            select(
                Expense.category_id,
                func.coalesce(func.sum(Expense.amount_cents), 0).label("spent"),
            )
            .where(
                Expense.user_id == self.user_id,
                Expense.date.between(period.start, period.end),
            )
            .group_by(Expense.category_id)
        )
        return {
            row.category_id: int(row.spent or 0) for row in self.session.execute(stmt)
        }

    def summary(self, period: Period) -> dict[str, object]:
        user = UserService(self.session).get(self.user_id)
        expenses = self.list_for_period(period)
        total_cents = sum(e.amount_cents for e in expenses)

        by_category: dict[str, int] = defaultdict(int)
        counts: Counter[str] = Counter()
        for expense in expenses:
            by_category[expense.category.name] += expense.amount_cents
            counts[expense.category.name] += 1

        amounts = [e.amount_cents for e in expenses]
        return {
            "user_id": user.id,
            "user_name": user.name,
            "start_date": period.start,
            "end_date": period.end,
            "total_expenses": cents_to_amount(total_cents),
            "total_transactions": len(expenses),
            "average_expense": (
                cents_to_amount(total_cents) / len(expenses) if expenses else 0.0
            ),
            "expenses_by_category": {
                name: cents_to_amount(cents) for name, cents in by_category.items()
            },
            "transactions_by_category": dict(counts),
            "recent_expenses": [self.to_out(e) for e in expenses[:10]],
            "highest_expense": cents_to_amount(max(amounts)) if amounts else 0.0,
            "lowest_expense": cents_to_amount(min(amounts)) if amounts else 0.0,
            "most_expensive_category": (
                max(by_category, key=by_category.get) if by_category else "N/A"
            ),
            "most_frequent_category": (
                counts.most_common(1)[0][0] if counts else "N/A"
            ),
        }

    @staticmethod
    def to_out(expense: Expense) -> ExpenseOut:
        tags = expense.tags or ""
        return ExpenseOut(
            id=expense.id,
            user_id=expense.user_id,
            name=expense.name,
            description=expense.description,
            category_id=expense.category_id,
            category_name=expense.category.name,
            amount=cents_to_amount(expense.amount_cents),
            date=expense.date,
            source=expense.source,
            subcategory=expense.subcategory,
            merchant=expense.merchant,
            payment_method=expense.payment_method,
            tags=expense.tags,
            tag_list=[t.strip() for t in tags.split(",") if t.strip()],
        )

    @staticmethod
    def _positive_cents(amount: float) -> int:
        cents = amount_to_cents(amount)
        if cents <= 0:
            raise ValidationError("Amount must be greater than 0")
        return cents


def status_for_percentage(percentage_used: float) -> BudgetStatus:
    if percentage_used >= OVER_BUDGET_THRESHOLD:
        return BudgetStatus.over_budget
    if percentage_used >= ON_TRACK_THRESHOLD:
        return BudgetStatus.on_track
    return BudgetStatus.under_budget


Number = Union[int, float]


@dataclass(frozen=True)
class BudgetUsage:
    limit: Number
    spent: Number
    remaining: Number
    percentage_used: float
    status: BudgetStatus


def budget_status(limit: Number, spent: Number) -> BudgetUsage:
    """Spend against a limit; works in any unit as long as both agree."""
    percentage_used = spent * 100 / limit if limit > 0 else 0.0
    return BudgetUsage(
        limit=limit,
        spent=spent,
        remaining=limit - spent,
        percentage_used=percentage_used,
        status=status_for_percentage(percentage_used),
    )


class BudgetService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _find(
        self, category_id: int, month: str, *, exclude_id: Optional[int] = None
    ) -> Optional[Budget]:
        stmt = select(Budget).where(
            Budget.user_id == self.user_id,
            Budget.category_id == category_id,
            Budget.month == month,
        )
        if exclude_id is not None:
            stmt = stmt.where(Budget.id != exclude_id)
        return self.session.scalar(stmt)

    def create(self, data: BudgetIn) -> Budget:
        UserService(self.session).get(self.user_id)
        category = CategoryService(self.session).get(data.category_id)
        month = parse_month(data.month).slug
        if self._find(category.id, month):
            raise ConflictError(
                f"Budget already exists for category '{category.name}' in month {month}"
            )
        budget = Budget(
            user_id=self.user_id,
            category_id=category.id,
            limit_cents=self._limit_cents(data.limit_amount),
            month=month,
        )
        self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        logger.info(
            f"budget_created: id={budget.id} user={self.user_id} "
            f"category={category.name!r} month={month}"
        )
        return budget

    def update(self, budget_id: int, data: BudgetIn) -> Budget:
        budget = self.get(budget_id)
        category = CategoryService(self.session).get(data.category_id)
        month = parse_month(data.month).slug
        if self._find(category.id, month, exclude_id=budget_id):
            raise ConflictError(
                f"Budget already exists for category '{category.name}' in month {month}"
            )
        budget.category_id = category.id
        budget.limit_cents = self._limit_cents(data.limit_amount)
        budget.month = month
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def get(self, budget_id: int) -> Budget:
        budget = self.session.get(Budget, budget_id)
        if not budget or budget.user_id != self.user_id:
            raise NotFoundError(f"Budget not found with ID: {budget_id}")
        return budget

    def delete(self, budget_id: int) -> None:
        budget = self.get(budget_id)
        self.session.delete(budget)
        self.session.commit()
        logger.info(f"budget_deleted: id={budget_id} user={self.user_id}")

    def list_all(self) -> list[Budget]:
        stmt = (
            select(Budget)
            .options(joinedload(Budget.category), joinedload(Budget.user))
            .where(Budget.user_id == self.user_id)
            .order_by(Budget.month.desc(), Budget.id)
        )
        return self.session.scalars(stmt).all()

    def list_for_month(self, month: str) -> list[Budget]:
        period = parse_month(month)
        stmt = (
            select(Budget)
            .options(joinedload(Budget.category), joinedload(Budget.user))
            .where(Budget.user_id == self.user_id, Budget.month == period.slug)
            .order_by(Budget.id)
        )
        return self.session.scalars(stmt).all()

    def exists(self, category_id: int, month: str) -> bool:
        CategoryService(self.session).get(category_id)
        return self._find(category_id, parse_month(month).slug) is not None

    def to_out(self, budget: Budget, spent_cents: Optional[int] = None) -> BudgetOut:
        if spent_cents is None:
            expenses = ExpenseService(self.session, self.user_id)
            spent_by_category = expenses.spent_cents_by_category(
                parse_month(budget.month)
            )
            spent_cents = spent_by_category.get(budget.category_id, 0)
        usage = budget_status(budget.limit_cents, spent_cents)
        return BudgetOut(
            id=budget.id,
            user_id=budget.user_id,
            user_name=budget.user.name,
            category_id=budget.category_id,
            category_name=budget.category.name,
            limit_amount=cents_to_amount(usage.limit),
            spent_amount=cents_to_amount(usage.spent),
            remaining_amount=cents_to_amount(usage.remaining),
            month=budget.month,
            status=usage.status,
            percentage_used=usage.percentage_used,
        )

    @staticmethod
    def _limit_cents(amount: float) -> int:
        cents = amount_to_cents(amount)
        if cents <= 0:
            raise ValidationError("Limit amount must be greater than 0")
        return cents


class MonthlyBudgetTargetService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def create_or_update(self, data: MonthlyBudgetTargetIn) -> MonthlyBudgetTarget:
        UserService(self.session).get(self.user_id)
        month = parse_month(data.month).slug
        target_cents = amount_to_cents(data.target_amount)
        if target_cents <= 0:
            raise ValidationError("Target amount must be greater than 0")

        target = self.get_active(month) or self.session.scalar(
            select(MonthlyBudgetTarget)
            .where(
                MonthlyBudgetTarget.user_id == self.user_id,
                MonthlyBudgetTarget.month == month,
            )
            .order_by(MonthlyBudgetTarget.id.desc())
        )
        if target:
            target.target_cents = target_cents
            target.is_active = True
        else:
            target = MonthlyBudgetTarget(
                user_id=self.user_id,
                target_cents=target_cents,
                month=month,
                is_active=True,
            )
            self.session.add(target)
        self.session.commit()
        self.session.refresh(target)
        logger.info(f"target_saved: id={target.id} user={self.user_id} month={month}")
        return target

    def get(self, month: str) -> MonthlyBudgetTarget:
        period = parse_month(month)
        target = self.get_active(period.slug) or self.session.scalar(
            select(MonthlyBudgetTarget)
            .where(
                MonthlyBudgetTarget.user_id == self.user_id,
                MonthlyBudgetTarget.month == period.slug,
            )
            .order_by(MonthlyBudgetTarget.id.desc())
        )
        if not target:
            raise NotFoundError(
                f"Budget target not found for user ID: {self.user_id} "
                f"and month: {period.slug}"
            )
        return target

    def get_active(self, month: str) -> Optional[MonthlyBudgetTarget]:
        period = parse_month(month)
        return self.session.scalar(
            select(MonthlyBudgetTarget).where(
                MonthlyBudgetTarget.user_id == self.user_id,
                MonthlyBudgetTarget.month == period.slug,
                MonthlyBudgetTarget.is_active.is_(True),
            )
        )

    def delete(self, target_id: int) -> None:
        target = self.session.get(MonthlyBudgetTarget, target_id)
        if not target or target.user_id != self.user_id:
            raise NotFoundError(f"Budget target not found with ID: {target_id}")
        self.session.delete(target)
        self.session.commit()

    @staticmethod
    def to_out(target: MonthlyBudgetTarget) -> MonthlyBudgetTargetOut:
        return MonthlyBudgetTargetOut(
            id=target.id,
            user_id=target.user_id,
            user_name=target.user.name,
            target_amount=cents_to_amount(target.target_cents),
            month=target.month,
            is_active=target.is_active,
        )


class BudgetAggregator:
    """Read-only spend-vs-limit summary for one user and month."""

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.budgets = BudgetService(session, user_id)
        self.expenses = ExpenseService(session, user_id)
        self.targets = MonthlyBudgetTargetService(session, user_id)

    def summarize(self, month: str) -> dict[str, object]:
        user = UserService(self.session).get(self.user_id)
        period = parse_month(month)
        spent_by_category = self.expenses.spent_cents_by_category(period)

        budgets = self.budgets.list_for_month(period.slug)
        rows = [
            self.budgets.to_out(budget, spent_by_category.get(budget.category_id, 0))
            for budget in budgets
        ]
        total_budget_cents = sum(budget.limit_cents for budget in budgets)
        total_spent_cents = sum(
            spent_by_category.get(budget.category_id, 0) for budget in budgets
        )
        overall = budget_status(total_budget_cents, total_spent_cents)

        target_budget: Optional[float] = None
        target_vs_actual: Optional[float] = None
        target = self.targets.get_active(period.slug)
        if target is not None:
            target_budget = cents_to_amount(target.target_cents)
            target_vs_actual = (
                total_spent_cents * 100 / target.target_cents
                if target.target_cents > 0
                else 0.0
            )

        return {
            "user_id": user.id,
            "user_name": user.name,
            "month": period.slug,
            "total_budget": cents_to_amount(total_budget_cents),
            "target_budget": target_budget,
            "total_spent": cents_to_amount(total_spent_cents),
            "total_remaining": cents_to_amount(overall.remaining),
            "overall_percentage_used": overall.percentage_used,
            "overall_status": overall.status,
            "budgets": rows,
            "total_categories": len(rows),
            "categories_under_budget": sum(
                1 for row in rows if row.status == BudgetStatus.under_budget
            ),
            "categories_over_budget": sum(
                1 for row in rows if row.status == BudgetStatus.over_budget
            ),
            "target_vs_actual_percentage": target_vs_actual,
        }


class ExpenseParserService:
    """Free-text expense entry: AI extraction with a deterministic fallback."""

    def __init__(
        self,
        session: Session,
        user_id: int,
        extractor: Optional[TextExpenseExtractor] = None,
        fallback: Optional[RegexFallbackExtractor] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.extractor = extractor or TextExpenseExtractor()
        self.fallback = fallback or RegexFallbackExtractor()

    def parse_and_create(
        self, request: ParseExpenseIn, *, today: Optional[date] = None
    ) -> ParsedExpenseOut:
        UserService(self.session).get(self.user_id)
        settings = get_settings()
        timezone = request.timezone or settings.timezone
        currency = request.currency or settings.currency
        locale = request.locale or settings.locale

        result = self.extractor.extract(
            request.text, timezone, currency, locale, today=today
        )
        if isinstance(result, Extracted):
            draft = result.draft
        elif isinstance(result, NeedsFallback):
            logger.warning(
                f"ai_fallback: user={self.user_id} reason={result.reason!r}"
            )
            draft = self.fallback.extract(
                request.text, timezone=timezone, currency=currency, today=today
            )
        else:
            raise TypeError(f"Unexpected extraction result {result!r}")

        category = CategoryService(self.session).get_by_name(draft.category)
        expense = ExpenseService(self.session, self.user_id).save_draft(
            draft, category
        )
        return ParsedExpenseOut(
            expense_id=expense.id,
            name=expense.name,
            category=category.name,
            subcategory=draft.subcategory,
            amount=cents_to_amount(expense.amount_cents),
            currency=draft.currency,
            date=expense.date,
            description=expense.description,
            merchant=draft.merchant,
            confidence=draft.confidence,
            source=draft.source,
        )


class VoiceExpenseService:
    def __init__(
        self,
        session: Session,
        user_id: int,
        extractor: Optional[VoiceExpenseExtractor] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.extractor = extractor or VoiceExpenseExtractor()

    def process(
        self, voice_text: str, *, today: Optional[date] = None
    ) -> VoiceExpenseOut:
        UserService(self.session).get(self.user_id)
        voice_draft = self.extractor.extract(voice_text, today=today)
        try:
            draft = voice_draft.to_expense_draft(CategoryResolver())
        except ValidationError:
            logger.warning(
                f"voice_expense_rejected: user={self.user_id} "
                f"amount={voice_draft.amount}"
            )
            return VoiceExpenseOut(
                success=False,
                message="Could not determine an expense amount from voice input",
                parsed_text=voice_text,
                confidence="Low",
            )

        category = CategoryService(self.session).get_by_name(draft.category)
        expense = ExpenseService(self.session, self.user_id).save_draft(
            draft, category
        )
        return VoiceExpenseOut(
            success=True,
            message="Expense created successfully from voice input",
            expense=ExpenseService.to_out(expense),
            parsed_text=voice_text,
            confidence="High",
        )
