"""Customer account API router — account views, payments, checks and orders."""

from __future__ import annotations

import uuid
from datetime import date
from typing import Literal

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.database.session import get_db
from src.models.enums import CheckStatus, OrderStatus, PaymentType, StatementEntryType
from src.modules.account.constants import FILTER_ALL, MAX_ITEMS_PER_PAGE
from src.modules.account.ledger import generate_statement, summarize_orders
from src.modules.account.order_service import OrderService
from src.modules.account.payment_service import PaymentService
from src.modules.account.schemas import (
    AccountOverviewResponse,
    CheckCreateRequest,
    CheckStatusUpdateRequest,
    CustomerCheckRecord,
    OrderCreateRequest,
    OrderItemCreateRequest,
    OrderItemRecord,
    OrderRecord,
    OrderSummary,
    OrderUpdateRequest,
    Page,
    PaymentCreateRequest,
    PaymentCreationResult,
    PaymentRow,
    StatementEntry,
)
from src.modules.account.service import AccountService
from src.modules.account.views import (
    CheckFilters,
    OrderFilters,
    Pagination,
    PaymentFilters,
    SortSpec,
    StatementFilters,
    ViewState,
    derive_checks_view,
    derive_orders_view,
    derive_payments_view,
    derive_statement_view,
)
from src.modules.cache.manager import CacheManager, get_cache

router = APIRouter(tags=["accounts"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _pagination(page: int, items_per_page: int | None) -> Pagination:
    return Pagination(
        current_page=page,
        items_per_page=items_per_page or settings.default_items_per_page,
    )


# ---------------------------------------------------------------------------
# Account views
# ---------------------------------------------------------------------------


@router.get("/customers/{customer_id}/account", response_model=AccountOverviewResponse)
async def get_account(
    customer_id: uuid.UUID,
    refresh: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
):
    """Bundle, balance summary, statement and the first page of every view."""
    svc = AccountService(db, cache)
    return await svc.get_overview(customer_id, force_refresh=refresh)


@router.post("/customers/{customer_id}/account/refresh", response_model=AccountOverviewResponse)
async def refresh_account(
    customer_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
):
    """Drop the cached bundle and rebuild the account from the store."""
    svc = AccountService(db, cache)
    await svc.invalidate(customer_id)
    return await svc.get_overview(customer_id, force_refresh=True)


@router.get("/customers/{customer_id}/account/orders", response_model=Page[OrderSummary])
async def get_orders_view(
    customer_id: uuid.UUID,
    status: OrderStatus | Literal["all"] = Query(FILTER_ALL),
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    sort: Literal["asc", "desc"] = Query("desc"),
    page: int = Query(1, ge=1),
    items_per_page: int | None = Query(None, ge=1, le=MAX_ITEMS_PER_PAGE),
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
):
    bundle, _ = await AccountService(db, cache).get_bundle(customer_id)
    state = ViewState[OrderFilters](
        filters=OrderFilters(status=status, date_from=date_from, date_to=date_to),
        sort=SortSpec(direction=sort),
        pagination=_pagination(page, items_per_page),
    )
    return derive_orders_view(
        summarize_orders(bundle.orders, bundle.order_items_by_order_id), state
    )


@router.get("/customers/{customer_id}/account/payments", response_model=Page[PaymentRow])
async def get_payments_view(
    customer_id: uuid.UUID,
    type: PaymentType | Literal["all"] = Query(FILTER_ALL),
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    group_checks: bool = Query(True),
    page: int = Query(1, ge=1),
    items_per_page: int | None = Query(None, ge=1, le=MAX_ITEMS_PER_PAGE),
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
):
    bundle, _ = await AccountService(db, cache).get_bundle(customer_id)
    state = ViewState[PaymentFilters](
        filters=PaymentFilters(
            type=type, date_from=date_from, date_to=date_to, group_checks=group_checks
        ),
        pagination=_pagination(page, items_per_page),
    )
    return derive_payments_view(bundle.payments, state)


@router.get("/customers/{customer_id}/account/checks", response_model=Page[CustomerCheckRecord])
async def get_checks_view(
    customer_id: uuid.UUID,
    status: CheckStatus | Literal["all"] = Query(FILTER_ALL),
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    page: int = Query(1, ge=1),
    items_per_page: int | None = Query(None, ge=1, le=MAX_ITEMS_PER_PAGE),
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
):
    bundle, _ = await AccountService(db, cache).get_bundle(customer_id)
    state = ViewState[CheckFilters](
        filters=CheckFilters(status=status, date_from=date_from, date_to=date_to),
        pagination=_pagination(page, items_per_page),
    )
    return derive_checks_view(bundle.checks, state)


@router.get("/customers/{customer_id}/account/statement", response_model=Page[StatementEntry])
async def get_statement_view(
    customer_id: uuid.UUID,
    entry_type: StatementEntryType | Literal["all"] = Query(FILTER_ALL),
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    page: int = Query(1, ge=1),
    items_per_page: int | None = Query(None, ge=1, le=MAX_ITEMS_PER_PAGE),
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
):
    bundle, _ = await AccountService(db, cache).get_bundle(customer_id)
    statement = generate_statement(
        bundle.orders,
        bundle.order_items_by_order_id,
        bundle.payments,
        bundle.checks,
        ordering=settings.statement_ordering,
    )
    state = ViewState[StatementFilters](
        filters=StatementFilters(entry_type=entry_type, date_from=date_from, date_to=date_to),
        pagination=_pagination(page, items_per_page),
    )
    return derive_statement_view(statement, state)


# ---------------------------------------------------------------------------
# Payments and checks
# ---------------------------------------------------------------------------


@router.post(
    "/customers/{customer_id}/payments",
    response_model=PaymentCreationResult,
    status_code=201,
)
async def create_payment(
    customer_id: uuid.UUID,
    body: PaymentCreateRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
):
    """Record a payment; check payments also create a pending customer check.

    A ``partial`` outcome (payment saved, check not) is returned with 207.
    """
    result = await PaymentService(db, cache).create_payment(customer_id, body)
    if result.status == "partial":
        response.status_code = 207
    return result


@router.delete("/payments/{payment_id}", status_code=204)
async def delete_payment(
    payment_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
):
    await PaymentService(db, cache).delete_payment(payment_id)


@router.get("/checks", response_model=list[CustomerCheckRecord])
async def list_checks(
    refresh: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
):
    """All customer checks ordered by due date."""
    return await PaymentService(db, cache).list_checks(force_refresh=refresh)


@router.post(
    "/customers/{customer_id}/checks",
    response_model=CustomerCheckRecord,
    status_code=201,
)
async def create_check(
    customer_id: uuid.UUID,
    body: CheckCreateRequest,
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
):
    return await PaymentService(db, cache).create_check(customer_id, body)


@router.patch("/checks/{check_id}/status", response_model=CustomerCheckRecord)
async def update_check_status(
    check_id: uuid.UUID,
    body: CheckStatusUpdateRequest,
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
):
    """Collect or return a pending check."""
    return await PaymentService(db, cache).update_check_status(check_id, body.status)


@router.delete("/checks/{check_id}", status_code=204)
async def delete_check(
    check_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
):
    await PaymentService(db, cache).delete_check(check_id)


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


@router.post("/customers/{customer_id}/orders", response_model=OrderRecord, status_code=201)
async def create_order(
    customer_id: uuid.UUID,
    body: OrderCreateRequest,
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
):
    return await OrderService(db, cache).create_order(customer_id, body)


@router.patch("/orders/{order_id}", response_model=OrderRecord)
async def update_order(
    order_id: uuid.UUID,
    body: OrderUpdateRequest,
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
):
    return await OrderService(db, cache).update_order(order_id, body)


@router.delete("/orders/{order_id}", status_code=204)
async def delete_order(
    order_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
):
    """Delete an order and all of its items."""
    await OrderService(db, cache).delete_order(order_id)


@router.post("/orders/{order_id}/items", response_model=OrderItemRecord, status_code=201)
async def add_order_item(
    order_id: uuid.UUID,
    body: OrderItemCreateRequest,
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
):
    return await OrderService(db, cache).add_item(order_id, body)


@router.delete("/orders/{order_id}/items/{item_id}", status_code=204)
async def remove_order_item(
    order_id: uuid.UUID,
    item_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
):
    await OrderService(db, cache).remove_item(order_id, item_id)
