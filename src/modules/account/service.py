"""Customer account service — bundle fetch through the cache, overview derivation."""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.exceptions import NotFoundException, StoreUnavailableException
from src.models.customer import Customer
from src.models.customer_check import CustomerCheck
from src.models.order import Order
from src.models.order_item import OrderItem
from src.models.payment import Payment
from src.modules.account.ledger import generate_statement, summarize_account
from src.modules.account.schemas import (
    AccountBundle,
    AccountOverviewResponse,
    BundleFetchResult,
    CustomerCheckRecord,
    CustomerRecord,
    FetchStatus,
    OrderItemRecord,
    OrderRecord,
    PaymentRecord,
)
from src.modules.account.views import AccountViewState, derive_account_views
from src.modules.cache.constants import KEY_CUSTOMER_ACCOUNT
from src.modules.cache.manager import CacheManager, create_cache_key

logger = logging.getLogger(__name__)


def account_cache_key(customer_id: uuid.UUID | str) -> str:
    return create_cache_key(KEY_CUSTOMER_ACCOUNT, customer_id)


class AccountService:
    def __init__(self, db: AsyncSession, cache: CacheManager) -> None:
        self.db = db
        self.cache = cache

    # ------------------------------------------------------------------
    # Bundle fetch
    # ------------------------------------------------------------------

    async def fetch_bundle(
        self, customer_id: uuid.UUID, force_refresh: bool = False
    ) -> BundleFetchResult:
        """Return the customer's raw records, from cache unless forced.

        A forced refresh skips the cache read but still writes the fresh
        bundle back. Store failures are logged and reported as ``error``
        rather than raised, and leave the cached bundle untouched.
        """
        key = account_cache_key(customer_id)

        if not force_refresh:
            cached = await self.cache.get(key)
            if cached is not None:
                try:
                    bundle = AccountBundle.model_validate(cached)
                except ValidationError:
                    logger.warning("Discarding unreadable cached bundle %s", key)
                    await self.cache.remove(key)
                else:
                    return BundleFetchResult(status=FetchStatus.OK, bundle=bundle, from_cache=True)

        try:
            bundle = await self._load_bundle(customer_id)
        except SQLAlchemyError as exc:
            logger.exception("Failed to fetch account bundle for customer %s", customer_id)
            return BundleFetchResult(status=FetchStatus.ERROR, error=str(exc))

        if bundle is None:
            return BundleFetchResult(status=FetchStatus.NOT_FOUND)

        await self.cache.set(key, bundle.model_dump(mode="json"), ttl=settings.cache_ttl_seconds)
        logger.debug(
            "Fetched bundle for customer %s: %d orders, %d payments, %d checks",
            customer_id,
            len(bundle.orders),
            len(bundle.payments),
            len(bundle.checks),
        )
        return BundleFetchResult(status=FetchStatus.OK, bundle=bundle)

    async def _load_bundle(self, customer_id: uuid.UUID) -> AccountBundle | None:
        customer_result = await self.db.execute(
            select(Customer).where(Customer.id == customer_id)
        )
        customer = customer_result.scalar_one_or_none()
        if customer is None:
            return None

        orders_result = await self.db.execute(
            select(Order)
            .where(Order.customer_id == customer_id)
            .order_by(Order.created_at.desc())
        )
        orders = list(orders_result.scalars().all())

        # One query for every item of every order, grouped here
        items_by_order: dict[uuid.UUID, list[OrderItemRecord]] = defaultdict(list)
        if orders:
            items_result = await self.db.execute(
                select(OrderItem)
                .where(OrderItem.order_id.in_([o.id for o in orders]))
                .order_by(OrderItem.created_at.asc())
            )
            for item in items_result.scalars().all():
                items_by_order[item.order_id].append(OrderItemRecord.model_validate(item))

        payments_result = await self.db.execute(
            select(Payment)
            .where(Payment.customer_id == customer_id)
            .order_by(Payment.created_at.desc())
        )
        checks_result = await self.db.execute(
            select(CustomerCheck)
            .where(CustomerCheck.customer_id == customer_id)
            .order_by(CustomerCheck.created_at.desc())
        )

        return AccountBundle(
            customer=CustomerRecord.model_validate(customer),
            orders=[OrderRecord.model_validate(o) for o in orders],
            payments=[PaymentRecord.model_validate(p) for p in payments_result.scalars().all()],
            checks=[CustomerCheckRecord.model_validate(c) for c in checks_result.scalars().all()],
            order_items_by_order_id={o.id: items_by_order.get(o.id, []) for o in orders},
        )

    async def get_bundle(
        self, customer_id: uuid.UUID, force_refresh: bool = False
    ) -> tuple[AccountBundle, bool]:
        """Like ``fetch_bundle`` but raising for missing customers and store errors."""
        result = await self.fetch_bundle(customer_id, force_refresh=force_refresh)
        if result.status == FetchStatus.NOT_FOUND:
            raise NotFoundException(f"Customer {customer_id} not found")
        if result.status == FetchStatus.ERROR:
            raise StoreUnavailableException(
                f"Account data for customer {customer_id} is temporarily unavailable"
            )
        return result.bundle, result.from_cache

    async def invalidate(self, customer_id: uuid.UUID | str) -> None:
        await self.cache.remove(account_cache_key(customer_id))

    # ------------------------------------------------------------------
    # Overview
    # ------------------------------------------------------------------

    async def get_overview(
        self,
        customer_id: uuid.UUID,
        view_state: AccountViewState | None = None,
        force_refresh: bool = False,
    ) -> AccountOverviewResponse:
        bundle, from_cache = await self.get_bundle(customer_id, force_refresh=force_refresh)
        statement = generate_statement(
            bundle.orders,
            bundle.order_items_by_order_id,
            bundle.payments,
            bundle.checks,
            ordering=settings.statement_ordering,
        )
        return AccountOverviewResponse(
            bundle=bundle,
            summary=summarize_account(bundle),
            statement=statement,
            views=derive_account_views(bundle, view_state, statement=statement),
            from_cache=from_cache,
        )
