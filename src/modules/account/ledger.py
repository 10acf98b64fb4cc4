"""Ledger aggregation — pure derivations over one customer's raw records.

Nothing here touches the record store or the cache. Every function
recomputes its result from the records it is given, so the same inputs always
produce the same totals, grouped rows, statement and balance.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Mapping, Sequence
from datetime import UTC, datetime
from decimal import Decimal

from src.exceptions import ValidationException
from src.models.enums import CheckStatus, PaymentType, StatementEntryType
from src.modules.account.constants import (
    CHECK_DESCRIPTION,
    DEFAULT_CHECK_NOTES,
    GROUPED_PAYMENT_NOTES,
    ORDER_DESCRIPTION,
    ORDERING_MERGE,
    ORDERING_TYPE_RANK,
    PAYMENT_CASH_DESCRIPTION,
    PAYMENT_CHECK_DESCRIPTION,
    STATEMENT_TYPE_RANK,
)
from src.modules.account.schemas import (
    AccountBundle,
    AccountSummary,
    CustomerCheckRecord,
    GroupedPayment,
    OrderItemRecord,
    OrderRecord,
    OrderSummary,
    PaymentCreateRequest,
    PaymentRecord,
    StatementEntry,
)

ZERO = Decimal("0")

ItemsByOrder = Mapping[uuid.UUID, Sequence[OrderItemRecord]]


def _as_utc(value: datetime) -> datetime:
    # Stores without timezone support hand back naive UTC timestamps
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


# ---------------------------------------------------------------------------
# Order totals
# ---------------------------------------------------------------------------


def order_total(order_id: uuid.UUID, items_by_order: ItemsByOrder) -> Decimal:
    """Sum of item totals; items without a total count as zero."""
    items = items_by_order.get(order_id, ())
    return sum((item.total or ZERO for item in items), ZERO)


def order_item_count(order_id: uuid.UUID, items_by_order: ItemsByOrder) -> int:
    return len(items_by_order.get(order_id, ()))


def summarize_orders(
    orders: Iterable[OrderRecord], items_by_order: ItemsByOrder
) -> list[OrderSummary]:
    return [
        OrderSummary(
            **order.model_dump(),
            total=order_total(order.id, items_by_order),
            item_count=order_item_count(order.id, items_by_order),
        )
        for order in orders
    ]


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------


def validate_payment_request(data: PaymentCreateRequest) -> None:
    """Reject a payment before anything is written."""
    if data.amount is None or data.amount <= 0:
        raise ValidationException(
            "Payment amount must be greater than zero",
            details=[{"field": "amount", "message": "must be > 0"}],
        )
    if data.type == PaymentType.CHECK:
        missing = [
            field
            for field in ("check_number", "check_bank")
            if not (getattr(data, field) or "").strip()
        ]
        if missing:
            raise ValidationException(
                "Check payments require a check number and bank",
                details=[{"field": f, "message": "required for check payments"} for f in missing],
            )


def check_fields_for_payment(payment: PaymentRecord) -> dict:
    """Attributes of the pending CustomerCheck materialized by a check payment."""
    notes = (payment.notes or "").strip()
    return {
        "customer_id": payment.customer_id,
        "payment_id": payment.id,
        "check_number": payment.check_number,
        "bank": payment.check_bank,
        "amount": payment.amount,
        "due_date": payment.date,
        "status": CheckStatus.PENDING,
        "notes": notes or DEFAULT_CHECK_NOTES,
    }


def group_payments(payments: Iterable[PaymentRecord]) -> list[PaymentRecord]:
    """Merge same-day check payments of a customer into single rows.

    Cash payments pass through untouched and come first. Check payments are
    grouped on (customer, date); a date with one check keeps the original
    record, a date with several yields a GroupedPayment built from the first.
    The combined order carries no meaning; callers sort the result.
    """
    cash_rows: list[PaymentRecord] = []
    check_groups: dict[tuple[uuid.UUID, object], list[PaymentRecord]] = {}

    for payment in payments:
        if payment.type == PaymentType.CHECK:
            check_groups.setdefault((payment.customer_id, payment.date), []).append(payment)
        else:
            cash_rows.append(payment)

    check_rows: list[PaymentRecord] = []
    for group in check_groups.values():
        if len(group) == 1:
            check_rows.append(group[0])
            continue

        banks = dict.fromkeys(p.check_bank for p in group if p.check_bank)
        check_rows.append(
            GroupedPayment(
                **{
                    **group[0].model_dump(),
                    "amount": sum((p.amount for p in group), ZERO),
                    "check_number": ", ".join(p.check_number or "" for p in group),
                    "check_bank": ", ".join(banks),
                    "notes": GROUPED_PAYMENT_NOTES.format(count=len(group)),
                },
                grouped_count=len(group),
                original_payments=list(group),
            )
        )

    return cash_rows + check_rows


# ---------------------------------------------------------------------------
# Statement
# ---------------------------------------------------------------------------


def generate_statement(
    orders: Iterable[OrderRecord],
    items_by_order: ItemsByOrder,
    payments: Iterable[PaymentRecord],
    checks: Iterable[CustomerCheckRecord],
    ordering: str = ORDERING_TYPE_RANK,
) -> list[StatementEntry]:
    """Build the chronological statement with running balances.

    Orders are debits, payments are credits. Pending checks get an
    informational row with zero debit and credit; collected and returned
    checks get none because their value is already in a payment row.
    Entries are sorted by date first and balances are assigned afterwards, so
    each ``running_balance`` is the balance after that entry.

    ``ordering`` decides same-date ties: ``type_rank`` puts orders before
    payments before checks, then creation time, then id; ``merge`` keeps the
    order in which the sources were merged.
    """
    if ordering not in (ORDERING_TYPE_RANK, ORDERING_MERGE):
        raise ValueError(f"Unknown statement ordering '{ordering}'")

    rows: list[tuple[tuple, dict]] = []

    def _add(entry_type: StatementEntryType, source_id, created_at, fields: dict) -> None:
        if ordering == ORDERING_TYPE_RANK:
            key = (
                fields["date"],
                STATEMENT_TYPE_RANK[entry_type],
                _as_utc(created_at),
                str(source_id),
            )
        else:
            key = (fields["date"],)
        rows.append((key, {"id": f"{entry_type.value}-{source_id}", "type": entry_type, **fields}))

    for order in orders:
        _add(StatementEntryType.ORDER, order.id, order.created_at, {
            "date": order.date,
            "description": ORDER_DESCRIPTION.format(title=order.title),
            "debit": order_total(order.id, items_by_order),
            "credit": ZERO,
        })

    for payment in payments:
        if payment.type == PaymentType.CHECK:
            description = PAYMENT_CHECK_DESCRIPTION.format(check_number=payment.check_number)
        else:
            description = PAYMENT_CASH_DESCRIPTION
        _add(StatementEntryType.PAYMENT, payment.id, payment.created_at, {
            "date": payment.date,
            "description": description,
            "debit": ZERO,
            "credit": payment.amount,
        })

    for check in checks:
        if check.status != CheckStatus.PENDING:
            continue
        _add(StatementEntryType.CHECK, check.id, check.created_at, {
            "date": check.due_date,
            "description": CHECK_DESCRIPTION.format(
                check_number=check.check_number, bank=check.bank
            ),
            "debit": ZERO,
            "credit": ZERO,
        })

    # list.sort is stable, which is what makes "merge" ordering well defined
    rows.sort(key=lambda row: row[0])

    running_balance = ZERO
    entries: list[StatementEntry] = []
    for _, fields in rows:
        running_balance += fields["debit"] - fields["credit"]
        entries.append(StatementEntry(**fields, running_balance=running_balance))
    return entries


# ---------------------------------------------------------------------------
# Balances
# ---------------------------------------------------------------------------


def current_balance(
    orders: Iterable[OrderRecord],
    items_by_order: ItemsByOrder,
    payments: Iterable[PaymentRecord],
) -> Decimal:
    """Order totals minus payments; positive means the customer owes us.

    Checks never enter the balance: a check payment is counted as a payment
    when it is recorded, whatever later happens to the check.
    """
    total_orders = sum((order_total(o.id, items_by_order) for o in orders), ZERO)
    total_payments = sum((p.amount for p in payments), ZERO)
    return total_orders - total_payments


def summarize_account(bundle: AccountBundle) -> AccountSummary:
    items_by_order = bundle.order_items_by_order_id
    total_orders = sum((order_total(o.id, items_by_order) for o in bundle.orders), ZERO)
    total_payments = sum((p.amount for p in bundle.payments), ZERO)
    balance = current_balance(bundle.orders, items_by_order, bundle.payments)

    if balance > 0:
        balance_status = "owes"
    elif balance < 0:
        balance_status = "owed"
    else:
        balance_status = "settled"

    return AccountSummary(
        total_orders=total_orders,
        total_payments=total_payments,
        pending_checks_total=sum(
            (c.amount for c in bundle.checks if c.status == CheckStatus.PENDING), ZERO
        ),
        current_balance=balance,
        balance_status=balance_status,
        order_count=len(bundle.orders),
        payment_count=len(bundle.payments),
        check_count=len(bundle.checks),
    )
