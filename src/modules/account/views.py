"""Filter/sort/paginate pipeline for the four account views.

Each view (orders, payments, checks, statement) is described by an immutable
``ViewState``. State only changes through ``reduce_view``; the visible page is
always re-derived from the bundle and the state by the ``derive_*`` functions,
so no refresh step is needed after a filter, sort or page change.
"""

from __future__ import annotations

import datetime
import math
from collections.abc import Sequence
from typing import Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from src.config import settings
from src.exceptions import ValidationException
from src.models.enums import CheckStatus, OrderStatus, PaymentType, StatementEntryType
from src.modules.account.constants import FILTER_ALL, MAX_ITEMS_PER_PAGE
from src.modules.account.ledger import generate_statement, group_payments, summarize_orders
from src.modules.account.schemas import (
    AccountBundle,
    AccountViews,
    CustomerCheckRecord,
    OrderSummary,
    Page,
    PaymentRecord,
    StatementEntry,
)

T = TypeVar("T")
FiltersT = TypeVar("FiltersT", bound=BaseModel)

_FROZEN = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# View state
# ---------------------------------------------------------------------------


class OrderFilters(BaseModel):
    model_config = _FROZEN

    status: OrderStatus | Literal["all"] = FILTER_ALL
    date_from: datetime.date | None = None
    date_to: datetime.date | None = None


class PaymentFilters(BaseModel):
    model_config = _FROZEN

    type: PaymentType | Literal["all"] = FILTER_ALL
    date_from: datetime.date | None = None
    date_to: datetime.date | None = None
    group_checks: bool = True


class CheckFilters(BaseModel):
    model_config = _FROZEN

    status: CheckStatus | Literal["all"] = FILTER_ALL
    date_from: datetime.date | None = None
    date_to: datetime.date | None = None


class StatementFilters(BaseModel):
    model_config = _FROZEN

    date_from: datetime.date | None = None
    date_to: datetime.date | None = None
    entry_type: StatementEntryType | Literal["all"] = FILTER_ALL


class SortSpec(BaseModel):
    model_config = _FROZEN

    field: Literal["date"] = "date"
    direction: Literal["asc", "desc"] = "desc"


class Pagination(BaseModel):
    model_config = _FROZEN

    current_page: int = Field(1, ge=1)
    items_per_page: int = Field(
        default_factory=lambda: settings.default_items_per_page,
        ge=1,
        le=MAX_ITEMS_PER_PAGE,
    )


class ViewState(BaseModel, Generic[FiltersT]):
    model_config = _FROZEN

    filters: FiltersT
    # Only the orders view exposes a user sort
    sort: SortSpec | None = None
    pagination: Pagination = Field(default_factory=Pagination)


class AccountViewState(BaseModel):
    model_config = _FROZEN

    orders: ViewState[OrderFilters] = Field(
        default_factory=lambda: ViewState[OrderFilters](filters=OrderFilters(), sort=SortSpec())
    )
    payments: ViewState[PaymentFilters] = Field(
        default_factory=lambda: ViewState[PaymentFilters](filters=PaymentFilters())
    )
    checks: ViewState[CheckFilters] = Field(
        default_factory=lambda: ViewState[CheckFilters](filters=CheckFilters())
    )
    statement: ViewState[StatementFilters] = Field(
        default_factory=lambda: ViewState[StatementFilters](filters=StatementFilters())
    )


# ---------------------------------------------------------------------------
# Actions and reducer
# ---------------------------------------------------------------------------


class SetFilters(BaseModel):
    model_config = _FROZEN

    filters: BaseModel


class ClearFilters(BaseModel):
    model_config = _FROZEN


class ToggleSort(BaseModel):
    model_config = _FROZEN


class SetSort(BaseModel):
    model_config = _FROZEN

    direction: Literal["asc", "desc"]


class SetPage(BaseModel):
    model_config = _FROZEN

    page: int


class SetItemsPerPage(BaseModel):
    model_config = _FROZEN

    items_per_page: int


ViewAction = SetFilters | ClearFilters | ToggleSort | SetSort | SetPage | SetItemsPerPage


def _first_page(state: ViewState) -> Pagination:
    return state.pagination.model_copy(update={"current_page": 1})


def reduce_view(state: ViewState[FiltersT], action: ViewAction) -> ViewState[FiltersT]:
    """Return the state that results from applying ``action`` to ``state``.

    Filter and page-size changes go back to page 1. The page itself is not
    clamped here; an out-of-range page derives to an empty page.
    """
    if isinstance(action, SetFilters):
        if not isinstance(action.filters, type(state.filters)):
            raise ValidationException(
                f"Expected {type(state.filters).__name__}, got {type(action.filters).__name__}"
            )
        return state.model_copy(update={"filters": action.filters, "pagination": _first_page(state)})

    if isinstance(action, ClearFilters):
        return state.model_copy(
            update={"filters": type(state.filters)(), "pagination": _first_page(state)}
        )

    if isinstance(action, ToggleSort):
        if state.sort is None:
            return state
        flipped = "asc" if state.sort.direction == "desc" else "desc"
        return state.model_copy(update={"sort": state.sort.model_copy(update={"direction": flipped})})

    if isinstance(action, SetSort):
        if state.sort is None:
            return state
        return state.model_copy(
            update={"sort": state.sort.model_copy(update={"direction": action.direction})}
        )

    if isinstance(action, SetPage):
        page = max(1, action.page)
        return state.model_copy(
            update={"pagination": state.pagination.model_copy(update={"current_page": page})}
        )

    if isinstance(action, SetItemsPerPage):
        if not 1 <= action.items_per_page <= MAX_ITEMS_PER_PAGE:
            raise ValidationException(
                f"items_per_page must be between 1 and {MAX_ITEMS_PER_PAGE}"
            )
        return state.model_copy(
            update={"pagination": Pagination(current_page=1, items_per_page=action.items_per_page)}
        )

    raise TypeError(f"Unsupported view action {type(action).__name__}")


# ---------------------------------------------------------------------------
# Filtering and pagination
# ---------------------------------------------------------------------------


def _within(
    value: datetime.date, date_from: datetime.date | None, date_to: datetime.date | None
) -> bool:
    if date_from is not None and value < date_from:
        return False
    if date_to is not None and value > date_to:
        return False
    return True


def filter_orders(orders: Sequence[OrderSummary], filters: OrderFilters) -> list[OrderSummary]:
    return [
        o
        for o in orders
        if (filters.status == FILTER_ALL or o.status == filters.status)
        and _within(o.date, filters.date_from, filters.date_to)
    ]


def sort_orders(orders: Sequence[OrderSummary], sort: SortSpec | None) -> list[OrderSummary]:
    if sort is None:
        return list(orders)
    return sorted(orders, key=lambda o: o.date, reverse=sort.direction == "desc")


def filter_payments(
    payments: Sequence[PaymentRecord], filters: PaymentFilters
) -> list[PaymentRecord]:
    return [
        p
        for p in payments
        if (filters.type == FILTER_ALL or p.type == filters.type)
        and _within(p.date, filters.date_from, filters.date_to)
    ]


def filter_checks(
    checks: Sequence[CustomerCheckRecord], filters: CheckFilters
) -> list[CustomerCheckRecord]:
    return [
        c
        for c in checks
        if (filters.status == FILTER_ALL or c.status == filters.status)
        and _within(c.due_date, filters.date_from, filters.date_to)
    ]


def filter_statement(
    entries: Sequence[StatementEntry], filters: StatementFilters
) -> list[StatementEntry]:
    return [
        e
        for e in entries
        if _within(e.date, filters.date_from, filters.date_to)
        and (filters.entry_type == FILTER_ALL or e.type == filters.entry_type)
    ]


def paginate(items: Sequence[T], current_page: int, items_per_page: int) -> Page[T]:
    """Slice one page out of ``items``.

    ``total_pages`` is ``ceil(len / size)`` (0 for an empty list). A page past
    the end is returned empty rather than rejected.
    """
    if items_per_page < 1:
        raise ValidationException("items_per_page must be at least 1")
    current_page = max(1, current_page)
    start = (current_page - 1) * items_per_page
    return Page(
        items=list(items[start:start + items_per_page]),
        current_page=current_page,
        items_per_page=items_per_page,
        total_pages=math.ceil(len(items) / items_per_page),
        total_items=len(items),
    )


def _page(items: Sequence[T], state: ViewState) -> Page[T]:
    return paginate(items, state.pagination.current_page, state.pagination.items_per_page)


# ---------------------------------------------------------------------------
# View derivation
# ---------------------------------------------------------------------------


def derive_orders_view(
    orders: Sequence[OrderSummary], state: ViewState[OrderFilters]
) -> Page[OrderSummary]:
    return _page(sort_orders(filter_orders(orders, state.filters), state.sort), state)


def derive_payments_view(
    payments: Sequence[PaymentRecord], state: ViewState[PaymentFilters]
) -> Page[PaymentRecord]:
    """Payments in fetch order, optionally with same-day checks grouped.

    A grouped row takes the position of its first payment.
    """
    filtered = filter_payments(payments, state.filters)
    if state.filters.group_checks:
        position = {p.id: index for index, p in enumerate(filtered)}
        filtered = sorted(group_payments(filtered), key=lambda row: position[row.id])
    return _page(filtered, state)


def derive_checks_view(
    checks: Sequence[CustomerCheckRecord], state: ViewState[CheckFilters]
) -> Page[CustomerCheckRecord]:
    return _page(filter_checks(checks, state.filters), state)


def derive_statement_view(
    entries: Sequence[StatementEntry], state: ViewState[StatementFilters]
) -> Page[StatementEntry]:
    return _page(filter_statement(entries, state.filters), state)


def derive_account_views(
    bundle: AccountBundle,
    state: AccountViewState | None = None,
    statement: Sequence[StatementEntry] | None = None,
) -> AccountViews:
    """Recompute all four visible pages from ``bundle`` and ``state``."""
    state = state or AccountViewState()
    if statement is None:
        statement = generate_statement(
            bundle.orders,
            bundle.order_items_by_order_id,
            bundle.payments,
            bundle.checks,
            ordering=settings.statement_ordering,
        )
    return AccountViews(
        orders=derive_orders_view(
            summarize_orders(bundle.orders, bundle.order_items_by_order_id), state.orders
        ),
        payments=derive_payments_view(bundle.payments, state.payments),
        checks=derive_checks_view(bundle.checks, state.checks),
        statement=derive_statement_view(statement, state.statement),
    )
