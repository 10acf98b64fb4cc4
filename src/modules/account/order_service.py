"""Order and order item writes for a customer account."""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.exceptions import NotFoundException
from src.models.customer import Customer
from src.models.order import Order
from src.models.order_item import OrderItem
from src.modules.account.schemas import (
    OrderCreateRequest,
    OrderItemCreateRequest,
    OrderItemRecord,
    OrderRecord,
    OrderUpdateRequest,
)
from src.modules.account.service import account_cache_key
from src.modules.cache.constants import KEY_ORDER_DETAILS
from src.modules.cache.manager import CacheManager, create_cache_key

logger = logging.getLogger(__name__)

# Columns that accept an explicit null on update
NULLABLE_ORDER_FIELDS = {"notes"}


class OrderService:
    def __init__(self, db: AsyncSession, cache: CacheManager) -> None:
        self.db = db
        self.cache = cache

    async def _get_order(self, order_id: uuid.UUID) -> Order:
        result = await self.db.execute(select(Order).where(Order.id == order_id))
        order = result.scalar_one_or_none()
        if order is None:
            raise NotFoundException(f"Order {order_id} not found")
        return order

    async def _commit_and_invalidate(self, customer_id: uuid.UUID, order_id: uuid.UUID) -> None:
        await self.db.commit()
        await self.cache.remove(account_cache_key(customer_id))
        await self.cache.remove(create_cache_key(KEY_ORDER_DETAILS, order_id))

    async def create_order(self, customer_id: uuid.UUID, data: OrderCreateRequest) -> OrderRecord:
        result = await self.db.execute(select(Customer.id).where(Customer.id == customer_id))
        if result.scalar_one_or_none() is None:
            raise NotFoundException(f"Customer {customer_id} not found")

        order = Order(
            customer_id=customer_id,
            title=data.title,
            date=data.date,
            status=data.status,
            notes=data.notes,
        )
        self.db.add(order)
        await self.db.flush()
        await self.db.refresh(order)
        record = OrderRecord.model_validate(order)
        await self._commit_and_invalidate(customer_id, record.id)
        logger.info("Order %s created for customer %s", record.id, customer_id)
        return record

    async def update_order(self, order_id: uuid.UUID, data: OrderUpdateRequest) -> OrderRecord:
        """Apply the fields present in the request; ``notes`` may be cleared with null."""
        order = await self._get_order(order_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            if value is not None or field in NULLABLE_ORDER_FIELDS:
                setattr(order, field, value)
        await self.db.flush()
        await self.db.refresh(order)
        record = OrderRecord.model_validate(order)
        await self._commit_and_invalidate(record.customer_id, record.id)
        return record

    async def delete_order(self, order_id: uuid.UUID) -> None:
        """Delete an order together with all of its items."""
        order = await self._get_order(order_id)
        customer_id = order.customer_id
        items_result = await self.db.execute(
            delete(OrderItem).where(OrderItem.order_id == order_id)
        )
        await self.db.delete(order)
        await self._commit_and_invalidate(customer_id, order_id)
        logger.info(
            "Order %s deleted with %d items", order_id, items_result.rowcount or 0
        )

    async def add_item(self, order_id: uuid.UUID, data: OrderItemCreateRequest) -> OrderItemRecord:
        order = await self._get_order(order_id)
        total = data.total
        if total is None and data.unit_price is not None:
            total = data.unit_price * data.quantity

        item = OrderItem(
            order_id=order_id,
            name=data.name,
            quantity=data.quantity,
            unit_price=data.unit_price,
            total=total,
        )
        self.db.add(item)
        await self.db.flush()
        await self.db.refresh(item)
        record = OrderItemRecord.model_validate(item)
        await self._commit_and_invalidate(order.customer_id, order_id)
        return record

    async def remove_item(self, order_id: uuid.UUID, item_id: uuid.UUID) -> None:
        order = await self._get_order(order_id)
        result = await self.db.execute(
            select(OrderItem).where(OrderItem.id == item_id, OrderItem.order_id == order_id)
        )
        item = result.scalar_one_or_none()
        if item is None:
            raise NotFoundException(f"Item {item_id} not found on order {order_id}")
        await self.db.delete(item)
        await self._commit_and_invalidate(order.customer_id, order_id)
