"""Check status transitions, statement labels and view defaults."""

from __future__ import annotations

from src.models.enums import CheckStatus, StatementEntryType

# ---------------------------------------------------------------------------
# Valid check status transitions: current_status -> set of allowed next statuses
# ---------------------------------------------------------------------------

CHECK_TRANSITIONS: dict[CheckStatus, set[CheckStatus]] = {
    CheckStatus.PENDING: {
        CheckStatus.COLLECTED,
        CheckStatus.RETURNED,
    },
}

CHECK_TERMINAL_STATUSES: set[CheckStatus] = {
    CheckStatus.COLLECTED,
    CheckStatus.RETURNED,
}

# ---------------------------------------------------------------------------
# Labels
# ---------------------------------------------------------------------------

ORDER_DESCRIPTION = "Order: {title}"
PAYMENT_CHECK_DESCRIPTION = "Payment: check {check_number}"
PAYMENT_CASH_DESCRIPTION = "Payment: cash"
CHECK_DESCRIPTION = "Check: {check_number} - {bank}"

GROUPED_PAYMENT_NOTES = "Multiple check payments ({count} checks)"
DEFAULT_CHECK_NOTES = "Check payment"

# ---------------------------------------------------------------------------
# Statement ordering for entries sharing a date
# ---------------------------------------------------------------------------

ORDERING_TYPE_RANK = "type_rank"
ORDERING_MERGE = "merge"

STATEMENT_TYPE_RANK: dict[StatementEntryType, int] = {
    StatementEntryType.ORDER: 0,
    StatementEntryType.PAYMENT: 1,
    StatementEntryType.CHECK: 2,
}

# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------

FILTER_ALL = "all"
MAX_ITEMS_PER_PAGE = 100
