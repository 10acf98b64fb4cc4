"""Celery tasks for customer check collection and deferred account refresh."""

from __future__ import annotations

import asyncio
import logging
import uuid

from celery_app import celery
from src.database.engine import async_session
from src.modules.cache.manager import CacheManager

logger = logging.getLogger(__name__)


async def _collect_overdue_checks_async() -> dict:
    """Collect pending checks whose due date has passed."""
    from src.modules.account.payment_service import PaymentService

    async with async_session() as session:
        svc = PaymentService(session, CacheManager())
        collected = await svc.collect_overdue_checks()
        await session.commit()

    return {"collected": collected}


async def _refresh_account_cache_async(customer_id: str) -> dict:
    """Re-read a customer's bundle from the store and rewrite the cache entry."""
    from src.modules.account.service import AccountService

    async with async_session() as session:
        svc = AccountService(session, CacheManager())
        result = await svc.fetch_bundle(uuid.UUID(customer_id), force_refresh=True)

    return {"customer_id": customer_id, "status": result.status.value}


# ---------------------------------------------------------------------------
# Celery task definitions
# ---------------------------------------------------------------------------


@celery.task(name="src.modules.account.tasks.collect_overdue_checks")
def collect_overdue_checks():
    """Auto-collect overdue pending customer checks."""
    stats = asyncio.run(_collect_overdue_checks_async())
    logger.info("collect_overdue_checks complete: %s", stats)
    return stats


@celery.task(name="src.modules.account.tasks.refresh_account_cache")
def refresh_account_cache(customer_id: str):
    """Refresh one customer's cached bundle after a recent write."""
    stats = asyncio.run(_refresh_account_cache_async(customer_id))
    logger.info("refresh_account_cache complete: %s", stats)
    return stats
