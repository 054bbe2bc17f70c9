"""
Database Schemas for the Personal Finance Tracker

Each record kind is stored in its own MongoDB collection (see database.KINDS).
The *In models validate create payloads, the *Update models validate partial
updates. user_id, id and created_at are assigned by the store.
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional, Literal
import datetime

ExpenseCategory = Literal[
    "Food", "Transport", "Entertainment", "Health",
    "Education", "Shopping", "Utilities", "Other",
]
BillCategory = Literal["Housing", "Utilities", "Insurance", "Entertainment", "Healthcare", "Other"]
SubscriptionCategory = Literal["Entertainment", "Productivity", "Fitness", "Education", "Shopping", "Other"]
BillFrequency = Literal["weekly", "monthly", "quarterly", "yearly"]
BillingCycle = Literal["weekly", "monthly", "yearly"]

DEFAULT_SUBSCRIPTION_COLOR = "#3B82F6"


def reject_null(value):
    # omitted fields stay unset; an explicit null would erase a required value
    if value is None:
        raise ValueError("may be omitted but not null")
    return value


class ExpenseIn(BaseModel):
    purpose: str = Field(..., min_length=1, description="What the money was spent on")
    amount: float = Field(..., gt=0, description="Positive amount")
    category: ExpenseCategory
    date: datetime.date = Field(..., description="Calendar date the expense occurred")
    description: Optional[str] = Field(None, description="Optional note")


class ExpenseUpdate(BaseModel):
    purpose: Optional[str] = Field(None, min_length=1)
    amount: Optional[float] = Field(None, gt=0)
    category: Optional[ExpenseCategory] = None
    date: Optional[datetime.date] = None
    description: Optional[str] = None

    check_not_null = field_validator("purpose", "amount", "category", "date", mode="before")(reject_null)


class BillIn(BaseModel):
    name: str = Field(..., min_length=1, description="Bill name, e.g., Rent")
    amount: float = Field(..., gt=0, description="Positive amount")
    due_date: datetime.date
    frequency: BillFrequency
    category: BillCategory
    is_active: bool = True
    last_paid: Optional[datetime.date] = None


class BillUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    amount: Optional[float] = Field(None, gt=0)
    due_date: Optional[datetime.date] = None
    frequency: Optional[BillFrequency] = None
    category: Optional[BillCategory] = None
    is_active: Optional[bool] = None
    last_paid: Optional[datetime.date] = None

    check_not_null = field_validator(
        "name", "amount", "due_date", "frequency", "category", "is_active", mode="before"
    )(reject_null)


class SubscriptionIn(BaseModel):
    name: str = Field(..., min_length=1, description="Service name, e.g., Netflix")
    amount: float = Field(..., gt=0, description="Positive amount per billing cycle")
    billing_cycle: BillingCycle
    next_payment: datetime.date
    category: SubscriptionCategory
    is_active: bool = True
    description: Optional[str] = None
    color: str = Field(DEFAULT_SUBSCRIPTION_COLOR, description="Hex color for UI tag")


class SubscriptionUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    amount: Optional[float] = Field(None, gt=0)
    billing_cycle: Optional[BillingCycle] = None
    next_payment: Optional[datetime.date] = None
    category: Optional[SubscriptionCategory] = None
    is_active: Optional[bool] = None
    description: Optional[str] = None
    color: Optional[str] = None

    check_not_null = field_validator(
        "name", "amount", "billing_cycle", "next_payment", "category", "is_active", "color", mode="before"
    )(reject_null)
