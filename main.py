import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from database import SessionLocal, session_scope
from errors import ConflictError, NotFoundError
from extraction import (
    RegexFallbackExtractor,
    TextExpenseExtractor,
    VoiceExpenseExtractor,
)
from periods import parse_month, resolve_range
from schemas import (
    BudgetIn,
    BudgetOut,
    BudgetSummaryOut,
    CategoryIn,
    CategoryOut,
    ExpenseIn,
    ExpenseOut,
    ExpenseSummaryOut,
    IngestExpenseIn,
    MonthlyBudgetTargetIn,
    MonthlyBudgetTargetOut,
    ParsedExpenseOut,
    ParseExpenseIn,
    UserIn,
    UserOut,
    VoiceExpenseIn,
    VoiceExpenseOut,
)
from services import (
    BudgetAggregator,
    BudgetService,
    CategoryService,
    ExpenseParserService,
    ExpenseService,
    MonthlyBudgetTargetService,
    UserService,
    VoiceExpenseService,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Expense Tracker")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_user_id(x_user_id: int = Header(...)) -> int:
    return x_user_id


def get_text_extractor() -> TextExpenseExtractor:
    return TextExpenseExtractor()


def get_fallback_extractor() -> RegexFallbackExtractor:
    return RegexFallbackExtractor()


def get_voice_extractor() -> VoiceExpenseExtractor:
    return VoiceExpenseExtractor()


def http_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"unhandled_error: path={request.url.path} error={type(exc).__name__}",
        exc_info=exc,
    )
    return JSONResponse(status_code=500, content={"detail": "Something went wrong"})


@app.on_event("startup")
def startup_event():
    with session_scope() as session:
        CategoryService(session).seed_defaults()


# Users


@app.post("/api/users", response_model=UserOut, status_code=201)
def create_user(payload: UserIn, db: Session = Depends(get_db)):
    try:
        return UserService(db).create(payload)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/api/users/{user_id}", response_model=UserOut)
def get_user(user_id: int, db: Session = Depends(get_db)):
    try:
        return UserService(db).get(user_id)
    except ValueError as exc:
        raise http_error(exc) from exc


# Categories


@app.get("/api/categories", response_model=list[CategoryOut])
def list_categories(db: Session = Depends(get_db)):
    return CategoryService(db).list_all()


@app.post("/api/categories", response_model=CategoryOut, status_code=201)
def create_category(payload: CategoryIn, db: Session = Depends(get_db)):
    try:
        return CategoryService(db).create(payload)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/api/categories/check-exists")
def category_exists(name: str, db: Session = Depends(get_db)):
    return {"exists": CategoryService(db).exists(name)}


@app.get("/api/categories/{category_id}", response_model=CategoryOut)
def get_category(category_id: int, db: Session = Depends(get_db)):
    try:
        return CategoryService(db).get(category_id)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.put("/api/categories/{category_id}", response_model=CategoryOut)
def update_category(
    category_id: int, payload: CategoryIn, db: Session = Depends(get_db)
):
    try:
        return CategoryService(db).update(category_id, payload)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/api/categories/{category_id}", status_code=204)
def delete_category(category_id: int, db: Session = Depends(get_db)):
    try:
        CategoryService(db).delete(category_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


# Expenses


@app.post("/api/expenses", response_model=ExpenseOut, status_code=201)
def create_expense(
    payload: ExpenseIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    service = ExpenseService(db, user_id)
    try:
        return service.to_out(service.create(payload))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.post("/api/expenses/ingest", response_model=ExpenseOut, status_code=201)
def ingest_expense(
    payload: IngestExpenseIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    service = ExpenseService(db, user_id)
    try:
        return service.to_out(service.ingest(payload))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/api/expenses", response_model=list[ExpenseOut])
def list_expenses(
    db: Session = Depends(get_db), user_id: int = Depends(get_user_id)
):
    service = ExpenseService(db, user_id)
    return [service.to_out(e) for e in service.list_all()]


@app.get("/api/expenses/month/{month}", response_model=list[ExpenseOut])
def list_expenses_for_month(
    month: str,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    service = ExpenseService(db, user_id)
    try:
        expenses = service.list_for_period(parse_month(month))
    except ValueError as exc:
        raise http_error(exc) from exc
    return [service.to_out(e) for e in expenses]


@app.get("/api/expenses/date-range", response_model=list[ExpenseOut])
def list_expenses_for_range(
    start: Optional[str] = None,
    end: Optional[str] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    service = ExpenseService(db, user_id)
    try:
        expenses = service.list_for_period(resolve_range(start, end))
    except ValueError as exc:
        raise http_error(exc) from exc
    return [service.to_out(e) for e in expenses]


@app.get("/api/expenses/category/{category_id}", response_model=list[ExpenseOut])
def list_expenses_for_category(
    category_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    service = ExpenseService(db, user_id)
    try:
        expenses = service.list_for_category(category_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return [service.to_out(e) for e in expenses]


@app.get("/api/expenses/summary", response_model=ExpenseSummaryOut)
def expense_summary(
    start: Optional[str] = None,
    end: Optional[str] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    try:
        return ExpenseService(db, user_id).summary(resolve_range(start, end))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/api/expenses/{expense_id}", response_model=ExpenseOut)
def get_expense(
    expense_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    service = ExpenseService(db, user_id)
    try:
        return service.to_out(service.get(expense_id))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.put("/api/expenses/{expense_id}", response_model=ExpenseOut)
def update_expense(
    expense_id: int,
    payload: ExpenseIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    service = ExpenseService(db, user_id)
    try:
        return service.to_out(service.update(expense_id, payload))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/api/expenses/{expense_id}", status_code=204)
def delete_expense(
    expense_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    try:
        ExpenseService(db, user_id).delete(expense_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


# AI and voice entry


@app.post("/api/ai/parse-expense", response_model=ParsedExpenseOut, status_code=201)
def parse_expense(
    payload: ParseExpenseIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
    extractor: TextExpenseExtractor = Depends(get_text_extractor),
    fallback: RegexFallbackExtractor = Depends(get_fallback_extractor),
):
    service = ExpenseParserService(db, user_id, extractor, fallback)
    try:
        return service.parse_and_create(payload)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.post("/api/voice-expense/process", response_model=VoiceExpenseOut)
def process_voice_expense(
    payload: VoiceExpenseIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
    extractor: VoiceExpenseExtractor = Depends(get_voice_extractor),
):
    try:
        return VoiceExpenseService(db, user_id, extractor).process(payload.voice_text)
    except ValueError as exc:
        raise http_error(exc) from exc


# Budgets


@app.post("/api/budgets", response_model=BudgetOut, status_code=201)
def create_budget(
    payload: BudgetIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    service = BudgetService(db, user_id)
    try:
        return service.to_out(service.create(payload))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/api/budgets", response_model=list[BudgetOut])
def list_budgets(db: Session = Depends(get_db), user_id: int = Depends(get_user_id)):
    service = BudgetService(db, user_id)
    return [service.to_out(b) for b in service.list_all()]


@app.get("/api/budgets/check-exists")
def budget_exists(
    category_id: int,
    month: str,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    try:
        return {"exists": BudgetService(db, user_id).exists(category_id, month)}
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/api/budgets/month/{month}", response_model=list[BudgetOut])
def list_budgets_for_month(
    month: str,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    service = BudgetService(db, user_id)
    try:
        budgets = service.list_for_month(month)
    except ValueError as exc:
        raise http_error(exc) from exc
    return [service.to_out(b) for b in budgets]


@app.get("/api/budgets/summary/{month}", response_model=BudgetSummaryOut)
def budget_summary(
    month: str,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    try:
        return BudgetAggregator(db, user_id).summarize(month)
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/api/budgets/{budget_id}", response_model=BudgetOut)
def get_budget(
    budget_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    service = BudgetService(db, user_id)
    try:
        return service.to_out(service.get(budget_id))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.put("/api/budgets/{budget_id}", response_model=BudgetOut)
def update_budget(
    budget_id: int,
    payload: BudgetIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    service = BudgetService(db, user_id)
    try:
        return service.to_out(service.update(budget_id, payload))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.delete("/api/budgets/{budget_id}", status_code=204)
def delete_budget(
    budget_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    try:
        BudgetService(db, user_id).delete(budget_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


# Monthly targets


@app.post(
    "/api/budget-targets", response_model=MonthlyBudgetTargetOut, status_code=201
)
def save_budget_target(
    payload: MonthlyBudgetTargetIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    service = MonthlyBudgetTargetService(db, user_id)
    try:
        return service.to_out(service.create_or_update(payload))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get("/api/budget-targets/{month}", response_model=MonthlyBudgetTargetOut)
def get_budget_target(
    month: str,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    service = MonthlyBudgetTargetService(db, user_id)
    try:
        return service.to_out(service.get(month))
    except ValueError as exc:
        raise http_error(exc) from exc


@app.get(
    "/api/budget-targets/{month}/active", response_model=MonthlyBudgetTargetOut
)
def get_active_budget_target(
    month: str,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    service = MonthlyBudgetTargetService(db, user_id)
    try:
        target = service.get_active(month)
    except ValueError as exc:
        raise http_error(exc) from exc
    if target is None:
        raise HTTPException(
            status_code=404, detail=f"No active budget target for month: {month}"
        )
    return service.to_out(target)


@app.delete("/api/budget-targets/{target_id}", status_code=204)
def delete_budget_target(
    target_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    try:
        MonthlyBudgetTargetService(db, user_id).delete(target_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)
