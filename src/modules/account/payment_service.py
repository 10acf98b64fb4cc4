"""Payment and customer check writes, including the check-payment side effect."""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, date, datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import settings
from src.exceptions import BusinessRuleException, NotFoundException, ValidationException
from src.models.customer import Customer
from src.models.customer_check import CustomerCheck
from src.models.enums import CheckStatus, PaymentType
from src.models.payment import Payment
from src.modules.account.constants import CHECK_TERMINAL_STATUSES, CHECK_TRANSITIONS
from src.modules.account.ledger import check_fields_for_payment, validate_payment_request
from src.modules.account.schemas import (
    CheckCreateRequest,
    CustomerCheckRecord,
    PaymentCreateRequest,
    PaymentCreationResult,
    PaymentCreationStatus,
    PaymentRecord,
)
from src.modules.account.service import account_cache_key
from src.modules.cache.constants import KEY_CHECKS
from src.modules.cache.manager import CacheManager

logger = logging.getLogger(__name__)


class PaymentService:
    """Writes commit before touching the cache, so a concurrent bundle read
    can never repopulate an invalidated entry with pre-write rows.

    ``confirm_session_factory`` opens the independent session used to confirm
    a new check is visible in committed state; it defaults to a factory bound
    to the request session's engine.
    """

    def __init__(
        self,
        db: AsyncSession,
        cache: CacheManager,
        confirm_session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        self.db = db
        self.cache = cache
        self._confirm_session_factory = confirm_session_factory

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _require_customer(self, customer_id: uuid.UUID) -> Customer:
        result = await self.db.execute(select(Customer).where(Customer.id == customer_id))
        customer = result.scalar_one_or_none()
        if customer is None:
            raise NotFoundException(f"Customer {customer_id} not found")
        return customer

    async def _get_payment(self, payment_id: uuid.UUID) -> Payment:
        result = await self.db.execute(select(Payment).where(Payment.id == payment_id))
        payment = result.scalar_one_or_none()
        if payment is None:
            raise NotFoundException(f"Payment {payment_id} not found")
        return payment

    async def _get_check(self, check_id: uuid.UUID) -> CustomerCheck:
        result = await self.db.execute(select(CustomerCheck).where(CustomerCheck.id == check_id))
        check = result.scalar_one_or_none()
        if check is None:
            raise NotFoundException(f"Check {check_id} not found")
        return check

    async def _invalidate_account(self, customer_id: uuid.UUID) -> None:
        await self.cache.remove(account_cache_key(customer_id))

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    async def create_payment(
        self, customer_id: uuid.UUID, data: PaymentCreateRequest
    ) -> PaymentCreationResult:
        """Record a payment and, for checks, the pending CustomerCheck it implies.

        The payment is written first. The linked check is written in a
        savepoint; if that write fails the payment stays and the result is
        ``partial``. Once committed, a written check is re-read through a
        separate session before reporting ``created``; when the re-read misses
        it the result is ``pending_confirmation`` and a deferred account
        refresh is scheduled.
        """
        validate_payment_request(data)
        await self._require_customer(customer_id)

        is_check = data.type == PaymentType.CHECK
        payment = Payment(
            customer_id=customer_id,
            date=data.date,
            type=data.type,
            amount=data.amount,
            notes=data.notes,
            check_number=data.check_number.strip() if is_check else None,
            check_bank=data.check_bank.strip() if is_check else None,
        )
        self.db.add(payment)
        await self.db.flush()
        await self.db.refresh(payment)
        payment_record = PaymentRecord.model_validate(payment)

        logger.info(
            "Payment %s created for customer %s: %s %s",
            payment.id,
            customer_id,
            payment.type.value,
            payment.amount,
        )

        if not is_check:
            await self.db.commit()
            await self._invalidate_account(customer_id)
            return PaymentCreationResult(status=PaymentCreationStatus.CREATED, payment=payment_record)

        try:
            check = await self._insert_linked_check(payment_record)
        except SQLAlchemyError as exc:
            logger.error(
                "Payment %s was saved but its check record could not be written: %s",
                payment.id,
                exc,
            )
            await self.db.commit()
            await self._invalidate_account(customer_id)
            return PaymentCreationResult(
                status=PaymentCreationStatus.PARTIAL,
                payment=payment_record,
                error=str(exc),
            )

        check_record = CustomerCheckRecord.model_validate(check)
        await self.db.commit()
        confirmed = await self._confirm_check_visible(check_record.id)
        await self._invalidate_account(customer_id)
        if confirmed:
            await self.cache.add_array_item(KEY_CHECKS, check_record.model_dump(mode="json"))
        else:
            logger.warning(
                "Check %s for payment %s not visible on re-read; scheduling refresh",
                check_record.id,
                payment_record.id,
            )
            await self.cache.remove(KEY_CHECKS)
            self._schedule_account_refresh(customer_id)

        return PaymentCreationResult(
            status=(
                PaymentCreationStatus.CREATED
                if confirmed
                else PaymentCreationStatus.PENDING_CONFIRMATION
            ),
            payment=payment_record,
            check=check_record,
        )

    async def _insert_linked_check(self, payment: PaymentRecord) -> CustomerCheck:
        check = CustomerCheck(**check_fields_for_payment(payment))
        async with self.db.begin_nested():
            self.db.add(check)
        await self.db.refresh(check)
        return check

    async def _confirm_check_visible(self, check_id: uuid.UUID) -> bool:
        """Re-read the committed check through a session of its own."""
        factory = self._confirm_session_factory or async_sessionmaker(
            self.db.bind, class_=AsyncSession, expire_on_commit=False
        )
        try:
            async with factory() as session:
                result = await session.execute(
                    select(CustomerCheck.id).where(CustomerCheck.id == check_id)
                )
                return result.scalar_one_or_none() is not None
        except SQLAlchemyError:
            logger.exception("Could not re-read check %s", check_id)
            return False

    def _schedule_account_refresh(self, customer_id: uuid.UUID) -> None:
        from src.modules.account.tasks import refresh_account_cache

        try:
            refresh_account_cache.apply_async(
                args=[str(customer_id)],
                countdown=settings.check_refresh_delay_seconds,
            )
        except Exception:
            logger.exception("Could not schedule account refresh for customer %s", customer_id)

    async def delete_payment(self, payment_id: uuid.UUID) -> None:
        """Delete a payment and, for check payments, its linked check."""
        payment = await self._get_payment(payment_id)

        check_id: uuid.UUID | None = None
        if payment.type == PaymentType.CHECK:
            check = await self._find_check_for_payment(payment)
            if check is not None:
                check_id = check.id
                await self.db.delete(check)

        customer_id = payment.customer_id
        await self.db.delete(payment)
        await self.db.commit()

        await self._invalidate_account(customer_id)
        if check_id is not None:
            await self.cache.remove_array_item(KEY_CHECKS, check_id)
        logger.info("Payment %s deleted for customer %s", payment_id, customer_id)

    async def _find_check_for_payment(self, payment: Payment) -> CustomerCheck | None:
        result = await self.db.execute(
            select(CustomerCheck).where(CustomerCheck.payment_id == payment.id)
        )
        check = result.scalars().first()
        if check is not None:
            return check

        # Checks recorded before payments were linked are matched by number
        result = await self.db.execute(
            select(CustomerCheck).where(
                CustomerCheck.customer_id == payment.customer_id,
                CustomerCheck.check_number == payment.check_number,
                CustomerCheck.payment_id.is_(None),
            )
        )
        return result.scalars().first()

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    async def create_check(
        self, customer_id: uuid.UUID, data: CheckCreateRequest
    ) -> CustomerCheckRecord:
        if data.amount is None or data.amount <= 0:
            raise ValidationException("Check amount must be greater than zero")
        if not data.check_number.strip() or not data.bank.strip():
            raise ValidationException("Check number and bank are required")
        await self._require_customer(customer_id)

        check = CustomerCheck(
            customer_id=customer_id,
            check_number=data.check_number.strip(),
            bank=data.bank.strip(),
            amount=data.amount,
            due_date=data.due_date,
            status=data.status,
            notes=data.notes,
        )
        self.db.add(check)
        await self.db.flush()
        await self.db.refresh(check)

        record = CustomerCheckRecord.model_validate(check)
        await self.db.commit()
        await self._invalidate_account(customer_id)
        await self.cache.add_array_item(KEY_CHECKS, record.model_dump(mode="json"))
        logger.info("Check %s created for customer %s", check.id, customer_id)
        return record

    async def update_check_status(
        self, check_id: uuid.UUID, new_status: CheckStatus
    ) -> CustomerCheckRecord:
        """Move a check out of ``pending``; collected and returned are final."""
        check = await self._get_check(check_id)

        allowed = CHECK_TRANSITIONS.get(check.status, set())
        if new_status not in allowed:
            if check.status in CHECK_TERMINAL_STATUSES:
                raise BusinessRuleException(
                    f"Check {check_id} is already '{check.status.value}' and cannot change"
                )
            raise BusinessRuleException(
                f"Invalid check status transition from '{check.status.value}' "
                f"to '{new_status.value}'"
            )

        old_status = check.status
        check.status = new_status
        await self.db.flush()
        await self.db.refresh(check)

        record = CustomerCheckRecord.model_validate(check)
        await self.db.commit()
        await self._invalidate_account(record.customer_id)
        await self.cache.update_array_item(KEY_CHECKS, record.id, record.model_dump(mode="json"))
        logger.info(
            "Check %s status changed: %s -> %s", check_id, old_status.value, new_status.value
        )
        return record

    async def delete_check(self, check_id: uuid.UUID) -> None:
        """Delete a check and the check payment it was recorded with, if any."""
        check = await self._get_check(check_id)

        payment: Payment | None = None
        if check.payment_id is not None:
            result = await self.db.execute(select(Payment).where(Payment.id == check.payment_id))
            payment = result.scalar_one_or_none()
        else:
            result = await self.db.execute(
                select(Payment).where(
                    Payment.customer_id == check.customer_id,
                    Payment.check_number == check.check_number,
                    Payment.type == PaymentType.CHECK,
                )
            )
            payment = result.scalars().first()

        customer_id = check.customer_id
        await self.db.delete(check)
        payment_id = payment.id if payment is not None else None
        if payment is not None:
            await self.db.delete(payment)
        await self.db.commit()

        await self._invalidate_account(customer_id)
        await self.cache.remove_array_item(KEY_CHECKS, check_id)
        logger.info(
            "Check %s deleted for customer %s (linked payment: %s)",
            check_id,
            customer_id,
            payment_id,
        )

    async def list_checks(self, force_refresh: bool = False) -> list[CustomerCheckRecord]:
        """Every customer check ordered by due date.

        The cached list is served only while younger than
        ``settings.cache_fresh_seconds``; an older list is re-read so that
        checks collected elsewhere show their current status.
        """
        if not force_refresh and await self.cache.is_fresh(
            KEY_CHECKS, max_age=settings.cache_fresh_seconds
        ):
            cached = await self.cache.get(KEY_CHECKS)
            if isinstance(cached, list):
                return [CustomerCheckRecord.model_validate(c) for c in cached]

        result = await self.db.execute(
            select(CustomerCheck).order_by(CustomerCheck.due_date.asc())
        )
        checks = [CustomerCheckRecord.model_validate(c) for c in result.scalars().all()]
        await self.cache.set(
            KEY_CHECKS,
            [c.model_dump(mode="json") for c in checks],
            ttl=settings.cache_ttl_seconds,
        )
        return checks

    async def collect_overdue_checks(self, today: date | None = None) -> int:
        """Mark pending checks due today (UTC) or earlier as collected.

        Returns the number of checks collected.
        """
        today = today or datetime.now(UTC).date()
        result = await self.db.execute(
            select(CustomerCheck).where(
                CustomerCheck.status == CheckStatus.PENDING,
                CustomerCheck.due_date <= today,
            )
        )
        overdue = list(result.scalars().all())
        if not overdue:
            return 0

        now = datetime.now(UTC)
        for check in overdue:
            check.status = CheckStatus.COLLECTED
            check.auto_collected = True
            check.auto_collected_at = now
        await self.db.commit()

        for customer_id in {c.customer_id for c in overdue}:
            await self._invalidate_account(customer_id)
        await self.cache.remove(KEY_CHECKS)

        logger.info("Auto-collected %d overdue checks", len(overdue))
        return len(overdue)
