"""Tests for PaymentService — check side effects, partial failures, check lifecycle."""

import uuid
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError

from src.config import settings
from src.exceptions import BusinessRuleException, NotFoundException, ValidationException
from src.models.customer_check import CustomerCheck
from src.models.enums import CheckStatus, PaymentType, StatementEntryType
from src.models.payment import Payment
from src.modules.account.payment_service import PaymentService
from src.modules.account.schemas import (
    CheckCreateRequest,
    PaymentCreateRequest,
    PaymentCreationStatus,
)
from src.modules.account.service import AccountService, account_cache_key
from src.modules.cache.constants import KEY_CHECKS
from src.modules.cache.manager import CacheManager
from tests.factories import FakeClock, FakeRedis, seed_check, seed_customer, seed_order, seed_payment


def _check_payment(amount: str = "250", payment_date: date = date(2024, 5, 2), **overrides):
    fields = {
        "date": payment_date,
        "type": PaymentType.CHECK,
        "amount": Decimal(amount),
        "check_number": "A1",
        "check_bank": "X",
    }
    fields.update(overrides)
    return PaymentCreateRequest(**fields)


async def _checks_for(session, customer_id):
    result = await session.execute(
        select(CustomerCheck).where(CustomerCheck.customer_id == customer_id)
    )
    return list(result.scalars().all())


class TestCreatePayment:
    @pytest.mark.asyncio
    async def test_cash_payment_creates_no_check(self, async_test_session, cache):
        customer = await seed_customer(async_test_session)
        svc = PaymentService(async_test_session, cache)

        result = await svc.create_payment(
            customer.id,
            PaymentCreateRequest(date=date(2024, 3, 5), type=PaymentType.CASH, amount=Decimal("200")),
        )

        assert result.status == PaymentCreationStatus.CREATED
        assert result.payment.amount == Decimal("200")
        assert result.payment.check_number is None
        assert result.check is None
        assert await _checks_for(async_test_session, customer.id) == []

    @pytest.mark.asyncio
    async def test_check_payment_creates_one_pending_check(self, async_test_session, cache):
        customer = await seed_customer(async_test_session)
        svc = PaymentService(async_test_session, cache)

        result = await svc.create_payment(customer.id, _check_payment())

        assert result.status == PaymentCreationStatus.CREATED
        checks = await _checks_for(async_test_session, customer.id)
        assert len(checks) == 1
        check = checks[0]
        assert check.status == CheckStatus.PENDING
        assert check.due_date == date(2024, 5, 2)
        assert check.payment_id == result.payment.id
        assert check.amount == Decimal("250")
        assert check.bank == "X"
        assert check.notes == "Check payment"
        assert result.check.id == check.id

    @pytest.mark.asyncio
    async def test_payment_notes_carried_to_check(self, async_test_session, cache):
        customer = await seed_customer(async_test_session)
        svc = PaymentService(async_test_session, cache)

        result = await svc.create_payment(customer.id, _check_payment(notes="Deposit"))

        assert result.check.notes == "Deposit"

    @pytest.mark.asyncio
    async def test_invalid_payment_writes_nothing(self, async_test_session, cache):
        customer = await seed_customer(async_test_session)
        svc = PaymentService(async_test_session, cache)

        with pytest.raises(ValidationException):
            await svc.create_payment(customer.id, _check_payment(check_bank=""))
        with pytest.raises(ValidationException):
            await svc.create_payment(customer.id, _check_payment(amount="-1"))

        result = await async_test_session.execute(select(Payment))
        assert result.scalars().all() == []

    @pytest.mark.asyncio
    async def test_unknown_customer(self, async_test_session, cache):
        svc = PaymentService(async_test_session, cache)
        with pytest.raises(NotFoundException):
            await svc.create_payment(uuid.uuid4(), _check_payment())

    @pytest.mark.asyncio
    async def test_check_write_failure_is_partial(self, async_test_session, cache):
        customer = await seed_customer(async_test_session)
        svc = PaymentService(async_test_session, cache)

        with patch.object(
            svc,
            "_insert_linked_check",
            AsyncMock(side_effect=IntegrityError("INSERT", {}, Exception("constraint"))),
        ):
            result = await svc.create_payment(customer.id, _check_payment())

        assert result.status == PaymentCreationStatus.PARTIAL
        assert result.check is None
        assert "constraint" in result.error
        payments = (await async_test_session.execute(select(Payment))).scalars().all()
        assert [p.id for p in payments] == [result.payment.id]
        assert await _checks_for(async_test_session, customer.id) == []

    @pytest.mark.asyncio
    async def test_check_payment_is_committed(self, async_test_session, cache):
        customer = await seed_customer(async_test_session)
        customer_id = customer.id
        svc = PaymentService(async_test_session, cache)

        result = await svc.create_payment(customer_id, _check_payment())
        await async_test_session.rollback()

        assert result.status == PaymentCreationStatus.CREATED
        assert [c.id for c in await _checks_for(async_test_session, customer_id)] == [
            result.check.id
        ]

    @pytest.mark.asyncio
    async def test_check_missing_from_lagging_reader_schedules_refresh(
        self, async_test_session, cache, lagging_session_factory
    ):
        customer = await seed_customer(async_test_session)
        svc = PaymentService(
            async_test_session, cache, confirm_session_factory=lagging_session_factory
        )
        await svc.list_checks()

        with patch(
            "src.modules.account.tasks.refresh_account_cache.apply_async"
        ) as apply_async:
            result = await svc.create_payment(customer.id, _check_payment())

        assert result.status == PaymentCreationStatus.PENDING_CONFIRMATION
        assert result.check is not None
        apply_async.assert_called_once()
        assert apply_async.call_args.kwargs["args"] == [str(customer.id)]
        assert await cache.get(KEY_CHECKS) is None

    @pytest.mark.asyncio
    async def test_unreachable_reader_is_unconfirmed(self, async_test_session, cache):
        customer = await seed_customer(async_test_session)
        broken_reader = MagicMock(side_effect=OperationalError("SELECT", {}, Exception("down")))
        svc = PaymentService(async_test_session, cache, confirm_session_factory=broken_reader)

        with patch("src.modules.account.tasks.refresh_account_cache.apply_async"):
            result = await svc.create_payment(customer.id, _check_payment())

        assert result.status == PaymentCreationStatus.PENDING_CONFIRMATION
        assert len(await _checks_for(async_test_session, customer.id)) == 1

    @pytest.mark.asyncio
    async def test_cache_invalidated_only_after_commit(self, async_test_session, cache):
        customer = await seed_customer(async_test_session)
        svc = PaymentService(async_test_session, cache)
        in_transaction_at_remove: list[bool] = []
        original_remove = cache.remove

        async def recording_remove(key):
            in_transaction_at_remove.append(async_test_session.in_transaction())
            await original_remove(key)

        with patch.object(cache, "remove", side_effect=recording_remove):
            await svc.create_payment(customer.id, _check_payment())
            await svc.create_payment(
                customer.id,
                PaymentCreateRequest(date=date(2024, 3, 5), type=PaymentType.CASH, amount=Decimal("5")),
            )

        assert in_transaction_at_remove
        assert not any(in_transaction_at_remove)

    @pytest.mark.asyncio
    async def test_invalidates_cached_account(self, async_test_session, cache):
        customer = await seed_customer(async_test_session)
        account = AccountService(async_test_session, cache)
        await account.fetch_bundle(customer.id)

        await PaymentService(async_test_session, cache).create_payment(customer.id, _check_payment())

        assert await cache.get(account_cache_key(customer.id)) is None
        refreshed = await account.fetch_bundle(customer.id)
        assert len(refreshed.bundle.payments) == 1
        assert len(refreshed.bundle.checks) == 1

    @pytest.mark.asyncio
    async def test_appends_to_cached_checks_list(self, async_test_session, cache):
        customer = await seed_customer(async_test_session)
        svc = PaymentService(async_test_session, cache)
        await svc.list_checks()

        result = await svc.create_payment(customer.id, _check_payment())

        cached = await cache.get(KEY_CHECKS)
        assert [c["id"] for c in cached] == [str(result.check.id)]


class TestDeletePayment:
    @pytest.mark.asyncio
    async def test_deleting_check_payment_removes_linked_check(self, async_test_session, cache):
        customer = await seed_customer(async_test_session)
        svc = PaymentService(async_test_session, cache)
        result = await svc.create_payment(customer.id, _check_payment())

        await svc.delete_payment(result.payment.id)

        assert await _checks_for(async_test_session, customer.id) == []
        assert (await async_test_session.execute(select(Payment))).scalars().all() == []

    @pytest.mark.asyncio
    async def test_unlinked_check_matched_by_number(self, async_test_session, cache):
        customer = await seed_customer(async_test_session)
        payment = await seed_payment(
            async_test_session, customer, Decimal("90"),
            payment_type=PaymentType.CHECK, check_number="OLD-1", check_bank="X",
        )
        await seed_check(async_test_session, customer, Decimal("90"), check_number="OLD-1")
        other = await seed_check(async_test_session, customer, Decimal("10"), check_number="OTHER")

        await PaymentService(async_test_session, cache).delete_payment(payment.id)

        remaining = await _checks_for(async_test_session, customer.id)
        assert [c.id for c in remaining] == [other.id]

    @pytest.mark.asyncio
    async def test_missing_payment(self, async_test_session, cache):
        with pytest.raises(NotFoundException):
            await PaymentService(async_test_session, cache).delete_payment(uuid.uuid4())


class TestCheckLifecycle:
    @pytest.mark.asyncio
    async def test_create_standalone_check(self, async_test_session, cache):
        customer = await seed_customer(async_test_session)

        record = await PaymentService(async_test_session, cache).create_check(
            customer.id,
            CheckCreateRequest(
                check_number=" 77 ", bank="Harbor Bank", amount=Decimal("60"), due_date=date(2024, 7, 1)
            ),
        )

        assert record.check_number == "77"
        assert record.status == CheckStatus.PENDING
        assert record.payment_id is None

    @pytest.mark.asyncio
    async def test_create_check_rejects_non_positive_amount(self, async_test_session, cache):
        customer = await seed_customer(async_test_session)
        with pytest.raises(ValidationException):
            await PaymentService(async_test_session, cache).create_check(
                customer.id,
                CheckCreateRequest(
                    check_number="1", bank="B", amount=Decimal("0"), due_date=date(2024, 7, 1)
                ),
            )

    @pytest.mark.asyncio
    async def test_returned_check_leaves_statement_but_not_balance(self, async_test_session, cache):
        customer = await seed_customer(async_test_session)
        await seed_order(async_test_session, customer, [Decimal("400")], order_date=date(2024, 5, 1))
        svc = PaymentService(async_test_session, cache)
        account = AccountService(async_test_session, cache)
        created = await svc.create_payment(customer.id, _check_payment("250", date(2024, 5, 2)))

        before = await account.get_overview(customer.id)
        await svc.update_check_status(created.check.id, CheckStatus.RETURNED)
        after = await account.get_overview(customer.id)

        assert StatementEntryType.CHECK in [e.type for e in before.statement]
        assert StatementEntryType.CHECK not in [e.type for e in after.statement]
        assert before.summary.current_balance == after.summary.current_balance == Decimal("150")

    @pytest.mark.asyncio
    async def test_collect_pending_check(self, async_test_session, cache):
        customer = await seed_customer(async_test_session)
        check = await seed_check(async_test_session, customer, Decimal("20"))

        record = await PaymentService(async_test_session, cache).update_check_status(
            check.id, CheckStatus.COLLECTED
        )

        assert record.status == CheckStatus.COLLECTED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("terminal", [CheckStatus.COLLECTED, CheckStatus.RETURNED])
    async def test_terminal_status_cannot_change(self, async_test_session, cache, terminal):
        customer = await seed_customer(async_test_session)
        check = await seed_check(async_test_session, customer, Decimal("20"), status=terminal)
        svc = PaymentService(async_test_session, cache)

        for target in CheckStatus:
            with pytest.raises(BusinessRuleException):
                await svc.update_check_status(check.id, target)

    @pytest.mark.asyncio
    async def test_pending_to_pending_rejected(self, async_test_session, cache):
        customer = await seed_customer(async_test_session)
        check = await seed_check(async_test_session, customer, Decimal("20"))
        with pytest.raises(BusinessRuleException):
            await PaymentService(async_test_session, cache).update_check_status(
                check.id, CheckStatus.PENDING
            )

    @pytest.mark.asyncio
    async def test_status_change_updates_cached_list(self, async_test_session, cache):
        customer = await seed_customer(async_test_session)
        check = await seed_check(async_test_session, customer, Decimal("20"))
        svc = PaymentService(async_test_session, cache)
        await svc.list_checks()

        await svc.update_check_status(check.id, CheckStatus.COLLECTED)

        cached = await cache.get(KEY_CHECKS)
        assert cached[0]["status"] == "collected"

    @pytest.mark.asyncio
    async def test_delete_check_removes_linked_payment(self, async_test_session, cache):
        customer = await seed_customer(async_test_session)
        svc = PaymentService(async_test_session, cache)
        created = await svc.create_payment(customer.id, _check_payment())

        await svc.delete_check(created.check.id)

        assert await _checks_for(async_test_session, customer.id) == []
        assert (await async_test_session.execute(select(Payment))).scalars().all() == []


class TestListAndCollectChecks:
    @pytest.mark.asyncio
    async def test_list_checks_ordered_by_due_date_and_cached(self, async_test_session, cache):
        customer = await seed_customer(async_test_session)
        late = await seed_check(async_test_session, customer, Decimal("1"), due_date=date(2024, 9, 1))
        early = await seed_check(async_test_session, customer, Decimal("1"), due_date=date(2024, 2, 1))
        svc = PaymentService(async_test_session, cache)

        checks = await svc.list_checks()

        assert [c.id for c in checks] == [early.id, late.id]
        cached = await cache.get(KEY_CHECKS)
        assert [c["id"] for c in cached] == [str(early.id), str(late.id)]

    @pytest.mark.asyncio
    async def test_collect_overdue_checks(self, async_test_session, cache):
        customer = await seed_customer(async_test_session)
        overdue = await seed_check(async_test_session, customer, Decimal("5"), due_date=date(2024, 1, 1))
        upcoming = await seed_check(async_test_session, customer, Decimal("5"), due_date=date(2024, 12, 1))
        returned = await seed_check(
            async_test_session, customer, Decimal("5"),
            due_date=date(2024, 1, 1), status=CheckStatus.RETURNED,
        )

        collected = await PaymentService(async_test_session, cache).collect_overdue_checks(
            today=date(2024, 6, 1)
        )

        assert collected == 1
        await async_test_session.refresh(overdue)
        await async_test_session.refresh(upcoming)
        await async_test_session.refresh(returned)
        assert overdue.status == CheckStatus.COLLECTED
        assert overdue.auto_collected is True
        assert overdue.auto_collected_at is not None
        assert upcoming.status == CheckStatus.PENDING
        assert returned.status == CheckStatus.RETURNED

    @pytest.mark.asyncio
    async def test_collect_overdue_checks_nothing_due(self, async_test_session, cache):
        customer = await seed_customer(async_test_session)
        await seed_check(async_test_session, customer, Decimal("5"), due_date=date(2024, 12, 1))

        collected = await PaymentService(async_test_session, cache).collect_overdue_checks(
            today=date(2024, 6, 1)
        )

        assert collected == 0

    @pytest.mark.asyncio
    async def test_check_due_today_is_collected(self, async_test_session, cache):
        customer = await seed_customer(async_test_session)
        due_today = await seed_check(async_test_session, customer, Decimal("5"), due_date=date(2024, 6, 1))
        tomorrow = await seed_check(async_test_session, customer, Decimal("5"), due_date=date(2024, 6, 2))

        collected = await PaymentService(async_test_session, cache).collect_overdue_checks(
            today=date(2024, 6, 1)
        )

        assert collected == 1
        await async_test_session.refresh(due_today)
        await async_test_session.refresh(tomorrow)
        assert due_today.status == CheckStatus.COLLECTED
        assert tomorrow.status == CheckStatus.PENDING

    @pytest.mark.asyncio
    async def test_stale_checks_list_is_reloaded(self, async_test_session):
        clock = FakeClock()
        cache = CacheManager(redis_client=FakeRedis(), prefix="test_", clock=clock)
        customer = await seed_customer(async_test_session)
        first = await seed_check(async_test_session, customer, Decimal("1"), due_date=date(2024, 2, 1))
        svc = PaymentService(async_test_session, cache)
        await svc.list_checks()

        # Written behind the cache's back
        second = await seed_check(async_test_session, customer, Decimal("1"), due_date=date(2024, 3, 1))

        clock.advance(60)
        assert [c.id for c in await svc.list_checks()] == [first.id]

        clock.advance(settings.cache_fresh_seconds)
        assert [c.id for c in await svc.list_checks()] == [first.id, second.id]
