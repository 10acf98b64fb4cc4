"""Pydantic v2 schemas for customer account records, derived views and API payloads."""

from __future__ import annotations

import datetime
import enum
import uuid
from decimal import Decimal
from typing import Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from src.models.enums import CheckStatus, OrderStatus, PaymentType, StatementEntryType

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Raw records (as fetched from the record store)
# ---------------------------------------------------------------------------


class CustomerRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    phone: str | None = None
    notes: str | None = None
    created_at: datetime.datetime


class OrderRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    customer_id: uuid.UUID
    title: str
    date: datetime.date
    status: OrderStatus
    notes: str | None = None
    created_at: datetime.datetime


class OrderItemRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_id: uuid.UUID
    name: str
    quantity: int = 1
    unit_price: Decimal | None = None
    total: Decimal | None = None
    created_at: datetime.datetime


class PaymentRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    customer_id: uuid.UUID
    date: datetime.date
    type: PaymentType
    amount: Decimal
    notes: str | None = None
    check_number: str | None = None
    check_bank: str | None = None
    created_at: datetime.datetime


class CustomerCheckRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    customer_id: uuid.UUID
    payment_id: uuid.UUID | None = None
    check_number: str
    bank: str
    amount: Decimal
    due_date: datetime.date
    status: CheckStatus
    notes: str | None = None
    auto_collected: bool = False
    auto_collected_at: datetime.datetime | None = None
    created_at: datetime.datetime


class AccountBundle(BaseModel):
    """Every raw record needed to derive one customer's account."""

    customer: CustomerRecord
    orders: list[OrderRecord] = Field(default_factory=list)
    payments: list[PaymentRecord] = Field(default_factory=list)
    checks: list[CustomerCheckRecord] = Field(default_factory=list)
    order_items_by_order_id: dict[uuid.UUID, list[OrderItemRecord]] = Field(
        default_factory=dict
    )


# ---------------------------------------------------------------------------
# Derived views
# ---------------------------------------------------------------------------


class OrderSummary(OrderRecord):
    total: Decimal
    item_count: int


class GroupedPayment(PaymentRecord):
    """Same-day check payments of one customer merged into a single row."""

    is_grouped: bool = True
    grouped_count: int
    original_payments: list[PaymentRecord]


PaymentRow = GroupedPayment | PaymentRecord


class StatementEntry(BaseModel):
    id: str
    date: datetime.date
    type: StatementEntryType
    description: str
    debit: Decimal
    credit: Decimal
    running_balance: Decimal


class AccountSummary(BaseModel):
    total_orders: Decimal
    total_payments: Decimal
    pending_checks_total: Decimal
    current_balance: Decimal
    balance_status: Literal["owes", "owed", "settled"]
    order_count: int
    payment_count: int
    check_count: int


class Page(BaseModel, Generic[T]):
    items: list[T]
    current_page: int
    items_per_page: int
    total_pages: int
    total_items: int


class AccountViews(BaseModel):
    # Pages are built by the view pipeline with runtime row types, so grouped
    # payment rows keep their extra fields when serialized.
    orders: Page
    payments: Page
    checks: Page
    statement: Page


# ---------------------------------------------------------------------------
# Operation outcomes
# ---------------------------------------------------------------------------


class FetchStatus(str, enum.Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    ERROR = "error"


class BundleFetchResult(BaseModel):
    status: FetchStatus
    bundle: AccountBundle | None = None
    from_cache: bool = False
    error: str | None = None


class PaymentCreationStatus(str, enum.Enum):
    CREATED = "created"
    # Check written but not yet visible on re-read
    PENDING_CONFIRMATION = "pending_confirmation"
    # Payment written, linked check write failed
    PARTIAL = "partial"


class PaymentCreationResult(BaseModel):
    status: PaymentCreationStatus
    payment: PaymentRecord
    check: CustomerCheckRecord | None = None
    error: str | None = None


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class PaymentCreateRequest(BaseModel):
    date: datetime.date
    type: PaymentType
    amount: Decimal
    notes: str | None = Field(None, max_length=1000)
    check_number: str | None = Field(None, max_length=100)
    check_bank: str | None = Field(None, max_length=255)


class CheckCreateRequest(BaseModel):
    check_number: str = Field(..., max_length=100)
    bank: str = Field(..., max_length=255)
    amount: Decimal
    due_date: datetime.date
    status: CheckStatus = CheckStatus.PENDING
    notes: str | None = Field(None, max_length=1000)


class CheckStatusUpdateRequest(BaseModel):
    status: CheckStatus


class OrderCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    date: datetime.date
    status: OrderStatus = OrderStatus.PENDING
    notes: str | None = Field(None, max_length=2000)


class OrderUpdateRequest(BaseModel):
    title: str | None = Field(None, min_length=1, max_length=255)
    date: datetime.date | None = None
    status: OrderStatus | None = None
    notes: str | None = Field(None, max_length=2000)


class OrderItemCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    quantity: int = Field(1, ge=1)
    unit_price: Decimal | None = Field(None, ge=0)
    total: Decimal | None = Field(None, ge=0)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class AccountOverviewResponse(BaseModel):
    bundle: AccountBundle
    summary: AccountSummary
    statement: list[StatementEntry]
    views: AccountViews
    from_cache: bool = False
