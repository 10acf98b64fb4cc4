"""Cache key bases and defaults."""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Well-known key bases; entries ending in "_" take an entity id suffix
# ---------------------------------------------------------------------------

KEY_CHECKS = "checks"
KEY_CUSTOMER_ACCOUNT = "customer_account_"
KEY_ORDER_DETAILS = "order_details_"

CACHE_TTL_DEFAULT = 24 * 60 * 60  # seconds
SCAN_BATCH_SIZE = 100
