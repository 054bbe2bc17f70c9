import os
import logging
from contextlib import asynccontextmanager
from datetime import datetime, date, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Tuple, Union

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import aggregator
import due_dates
from config import Settings, load_settings
from database import RecordStore, create_store
from errors import ComputationError, RecordNotFoundError, UpstreamFetchError, ValidationError
from schemas import (
    BillIn, BillUpdate, ExpenseCategory, ExpenseIn, ExpenseUpdate,
    SubscriptionIn, SubscriptionUpdate,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # fails fast when DATABASE_URL / DATABASE_NAME are missing
    settings = load_settings()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app.state.settings = settings
    app.state.store = create_store(settings)
    logger.info("Connected to database %s", settings.database_name)
    yield


app = FastAPI(title="Personal Finance Tracker API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -----------------------------
# Dependencies
# -----------------------------
def get_store(request: Request) -> RecordStore:
    return request.app.state.store


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_user_id(x_user_id: str = Header(..., min_length=1)) -> str:
    # set by the auth gateway in front of this service
    return x_user_id


def reference_instant(today: Optional[date] = Query(None, description="Pin 'today' (YYYY-MM-DD)")) -> Union[date, datetime]:
    return today or datetime.now(timezone.utc)


# -----------------------------
# Error handlers
# -----------------------------
@app.exception_handler(ValidationError)
async def handle_validation_error(request: Request, exc: ValidationError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(RecordNotFoundError)
async def handle_not_found(request: Request, exc: RecordNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(UpstreamFetchError)
async def handle_upstream_error(request: Request, exc: UpstreamFetchError):
    return JSONResponse(status_code=502, content={"detail": str(exc)})


@app.exception_handler(ComputationError)
async def handle_computation_error(request: Request, exc: ComputationError):
    logger.error("Invariant violated: %s", exc)
    return JSONResponse(status_code=500, content={"detail": "Internal computation error"})


# -----------------------------
# Helpers
# -----------------------------
def money(value: Decimal) -> float:
    return float(Decimal(value).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def parse_month(month: Optional[str], reference) -> Tuple[int, int]:
    if month:
        year, mon = (int(part) for part in month.split("-"))
    else:
        ref = due_dates.as_date(reference)
        year, mon = ref.year, ref.month
    aggregator.month_range(year, mon)  # validates
    return year, mon


MONTH_PATTERN = r"^\d{4}-\d{2}$"


# -----------------------------
# Base routes
# -----------------------------
@app.get("/")
def root():
    return {"message": "Personal Finance Tracker API is running"}


@app.get("/test")
def test_database(request: Request):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": []
    }
    store = getattr(request.app.state, "store", None)
    if store is None:
        response["database"] = "⚠️ Available but not initialized"
        return response
    try:
        response["collections"] = store.list_collection_names()
        response["connection_status"] = "Connected"
        response["database"] = "✅ Connected & Working"
    except UpstreamFetchError as e:
        response["database"] = f"⚠️ Connected but error: {str(e)[:80]}"
    return response


# -----------------------------
# Expenses
# -----------------------------
@app.get("/api/expenses")
def list_expenses(
    search: Optional[str] = None,
    category: Optional[ExpenseCategory] = None,
    month: Optional[str] = Query(None, pattern=MONTH_PATTERN),
    user_id: str = Depends(get_user_id),
    store: RecordStore = Depends(get_store),
):
    if month:
        start, end = aggregator.month_range(*parse_month(month, None))
        items = store.get_range("expense", user_id, start, end)
    else:
        items = store.get_all("expense", user_id)
    items = aggregator.filter_expenses(items, search=search, category=category)
    return {
        "expenses": items,
        "count": len(items),
        "total": money(aggregator.total_amount(items)),
    }


@app.get("/api/expenses/recent")
def recent_expenses(
    limit: int = Query(10, ge=1, le=100),
    user_id: str = Depends(get_user_id),
    store: RecordStore = Depends(get_store),
):
    return store.get_recent("expense", user_id, limit)


@app.post("/api/expenses", status_code=201)
def create_expense(payload: ExpenseIn, user_id: str = Depends(get_user_id), store: RecordStore = Depends(get_store)):
    return store.create("expense", user_id, payload)


@app.get("/api/expenses/{expense_id}")
def get_expense(expense_id: int, user_id: str = Depends(get_user_id), store: RecordStore = Depends(get_store)):
    return store.get_by_id("expense", user_id, expense_id)


@app.patch("/api/expenses/{expense_id}")
def update_expense(
    expense_id: int,
    payload: ExpenseUpdate,
    user_id: str = Depends(get_user_id),
    store: RecordStore = Depends(get_store),
):
    return store.update("expense", user_id, expense_id, payload)


@app.delete("/api/expenses/{expense_id}")
def delete_expense(expense_id: int, user_id: str = Depends(get_user_id), store: RecordStore = Depends(get_store)):
    store.delete("expense", user_id, expense_id)
    return {"status": "deleted"}


# -----------------------------
# Bills
# -----------------------------
@app.get("/api/bills")
def list_bills(user_id: str = Depends(get_user_id), store: RecordStore = Depends(get_store), now=Depends(reference_instant)):
    bills = store.get_all("bill", user_id)
    return [due_dates.annotate(b, now) for b in due_dates.sort_by_due(bills, now)]


@app.get("/api/bills/upcoming")
def upcoming_bills(
    days: Optional[int] = Query(None, ge=0),
    user_id: str = Depends(get_user_id),
    store: RecordStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
    now=Depends(reference_instant),
):
    window = settings.upcoming_window_days if days is None else days
    bills = due_dates.select_upcoming(store.get_active("bill", user_id), window, now)
    return [due_dates.annotate(b, now) for b in bills]


@app.get("/api/bills/overdue")
def overdue_bills(user_id: str = Depends(get_user_id), store: RecordStore = Depends(get_store), now=Depends(reference_instant)):
    bills = due_dates.select_overdue(store.get_active("bill", user_id), now)
    return [due_dates.annotate(b, now) for b in bills]


@app.get("/api/bills/summary")
def bills_summary(
    user_id: str = Depends(get_user_id),
    store: RecordStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
    now=Depends(reference_instant),
):
    bills = store.get_all("bill", user_id)
    return {
        "total_bills": len(bills),
        "active_bills": sum(1 for b in bills if b.get("is_active")),
        "upcoming": len(due_dates.select_upcoming(bills, settings.upcoming_window_days, now)),
        "overdue": len(due_dates.select_overdue(bills, now)),
        "monthly_total": money(aggregator.bills_monthly_total(bills)),
    }


@app.post("/api/bills", status_code=201)
def create_bill(payload: BillIn, user_id: str = Depends(get_user_id), store: RecordStore = Depends(get_store)):
    return store.create("bill", user_id, payload)


@app.get("/api/bills/{bill_id}")
def get_bill(bill_id: int, user_id: str = Depends(get_user_id), store: RecordStore = Depends(get_store), now=Depends(reference_instant)):
    return due_dates.annotate(store.get_by_id("bill", user_id, bill_id), now)


@app.patch("/api/bills/{bill_id}")
def update_bill(bill_id: int, payload: BillUpdate, user_id: str = Depends(get_user_id), store: RecordStore = Depends(get_store)):
    return store.update("bill", user_id, bill_id, payload)


@app.delete("/api/bills/{bill_id}")
def delete_bill(bill_id: int, user_id: str = Depends(get_user_id), store: RecordStore = Depends(get_store)):
    store.delete("bill", user_id, bill_id)
    return {"status": "deleted"}


@app.post("/api/bills/{bill_id}/pay")
def mark_bill_paid(bill_id: int, user_id: str = Depends(get_user_id), store: RecordStore = Depends(get_store), now=Depends(reference_instant)):
    # due_date is left alone; rolling it forward is a manual edit
    return store.update("bill", user_id, bill_id, {"last_paid": due_dates.as_date(now)})


@app.post("/api/bills/{bill_id}/toggle")
def toggle_bill(bill_id: int, user_id: str = Depends(get_user_id), store: RecordStore = Depends(get_store)):
    return store.toggle_active("bill", user_id, bill_id)


# -----------------------------
# Subscriptions
# -----------------------------
@app.get("/api/subscriptions")
def list_subscriptions(user_id: str = Depends(get_user_id), store: RecordStore = Depends(get_store), now=Depends(reference_instant)):
    return [due_dates.annotate(s, now) for s in store.get_all("subscription", user_id)]


@app.get("/api/subscriptions/upcoming")
def upcoming_subscriptions(
    days: Optional[int] = Query(None, ge=0),
    user_id: str = Depends(get_user_id),
    store: RecordStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
    now=Depends(reference_instant),
):
    window = settings.upcoming_window_days if days is None else days
    subs = due_dates.select_upcoming(store.get_active("subscription", user_id), window, now)
    return [due_dates.annotate(s, now) for s in subs]


@app.get("/api/subscriptions/summary")
def subscriptions_summary(
    user_id: str = Depends(get_user_id),
    store: RecordStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
    now=Depends(reference_instant),
):
    subs = store.get_all("subscription", user_id)
    return {
        "total_subscriptions": len(subs),
        "active_subscriptions": sum(1 for s in subs if s.get("is_active")),
        "upcoming": len(due_dates.select_upcoming(subs, settings.upcoming_window_days, now)),
        "monthly_total": money(aggregator.portfolio_monthly_total(subs)),
        "yearly_total": money(aggregator.portfolio_yearly_total(subs)),
    }


@app.post("/api/subscriptions", status_code=201)
def create_subscription(payload: SubscriptionIn, user_id: str = Depends(get_user_id), store: RecordStore = Depends(get_store)):
    return store.create("subscription", user_id, payload)


@app.get("/api/subscriptions/{subscription_id}")
def get_subscription(
    subscription_id: int,
    user_id: str = Depends(get_user_id),
    store: RecordStore = Depends(get_store),
    now=Depends(reference_instant),
):
    return due_dates.annotate(store.get_by_id("subscription", user_id, subscription_id), now)


@app.patch("/api/subscriptions/{subscription_id}")
def update_subscription(
    subscription_id: int,
    payload: SubscriptionUpdate,
    user_id: str = Depends(get_user_id),
    store: RecordStore = Depends(get_store),
):
    return store.update("subscription", user_id, subscription_id, payload)


@app.delete("/api/subscriptions/{subscription_id}")
def delete_subscription(subscription_id: int, user_id: str = Depends(get_user_id), store: RecordStore = Depends(get_store)):
    store.delete("subscription", user_id, subscription_id)
    return {"status": "deleted"}


@app.post("/api/subscriptions/{subscription_id}/toggle")
def toggle_subscription(subscription_id: int, user_id: str = Depends(get_user_id), store: RecordStore = Depends(get_store)):
    return store.toggle_active("subscription", user_id, subscription_id)


# -----------------------------
# Analytics and Dashboard
# -----------------------------
@app.get("/api/analytics/monthly-total")
def analytics_monthly_total(
    month: Optional[str] = Query(None, pattern=MONTH_PATTERN),
    user_id: str = Depends(get_user_id),
    store: RecordStore = Depends(get_store),
    now=Depends(reference_instant),
):
    year, mon = parse_month(month, now)
    start, end = aggregator.month_range(year, mon)
    expenses = store.get_range("expense", user_id, start, end)
    return {"month": f"{year}-{mon:02d}", "total": money(aggregator.monthly_total(expenses, year, mon))}


@app.get("/api/analytics/categories")
def analytics_categories(
    month: Optional[str] = Query(None, pattern=MONTH_PATTERN),
    user_id: str = Depends(get_user_id),
    store: RecordStore = Depends(get_store),
    now=Depends(reference_instant),
):
    year, mon = parse_month(month, now)
    start, end = aggregator.month_range(year, mon)
    expenses = store.get_range("expense", user_id, start, end)
    return [
        {"category": share.category, "amount": money(share.amount), "percentage": share.percentage}
        for share in aggregator.category_breakdown(expenses, year, mon)
    ]


@app.get("/api/analytics/history")
def analytics_history(
    months: int = Query(6, ge=1, le=24),
    user_id: str = Depends(get_user_id),
    store: RecordStore = Depends(get_store),
    now=Depends(reference_instant),
):
    ref = due_dates.as_date(now)
    first_year, first_month = aggregator.shift_month(ref.year, ref.month, -(months - 1))
    start, _ = aggregator.month_range(first_year, first_month)
    _, end = aggregator.month_range(ref.year, ref.month)
    expenses = store.get_range("expense", user_id, start, end)
    return [
        {"year": m.year, "month": m.month, "name": m.label, "expense": money(m.total)}
        for m in aggregator.monthly_history(expenses, ref.year, ref.month, months)
    ]


@app.get("/api/dashboard")
def dashboard(
    user_id: str = Depends(get_user_id),
    store: RecordStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
    now=Depends(reference_instant),
):
    ref = due_dates.as_date(now)
    start, end = aggregator.month_range(ref.year, ref.month)
    month_total = aggregator.monthly_total(store.get_range("expense", user_id, start, end), ref.year, ref.month)
    budget = aggregator.budget_status(month_total, settings.monthly_budget)
    bills = store.get_active("bill", user_id)

    return {
        "month": f"{ref.year}-{ref.month:02d}",
        "monthly_expense": money(month_total),
        "daily_average": money(aggregator.daily_average(month_total, ref)),
        "budget": money(budget["budget"]),
        "budget_used": money(budget["used_percentage"]),
        "budget_remaining": money(budget["remaining"]),
        "recent_expenses": store.get_recent("expense", user_id, 10),
        "upcoming_bills": [
            due_dates.annotate(b, ref) for b in due_dates.select_upcoming(bills, settings.upcoming_window_days, ref)
        ],
        "overdue_bills": len(due_dates.select_overdue(bills, ref)),
    }


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
