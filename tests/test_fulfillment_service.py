"""
Tests for FulfillmentService.

Runs the engine against a real SQLite database and the fake provider:
verdicts, ledger/ownership effects, timeouts and concurrent delivery.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.exceptions import InvalidRequestError, PaymentProviderError
from app.models.domain import PaymentStatus, RejectionReason, Verdict, VerdictStatus
from app.services.fulfillment import FulfillmentService, normalize_session_id
from app.services.ledger import IdempotencyLedger
from app.services.ownership import OwnershipStore


async def owned_quantity(
    session_factory: async_sessionmaker[AsyncSession], user_id: str, product_id: str
) -> int:
    async with session_factory() as session:
        return await OwnershipStore(session).get_quantity(user_id, product_id)


async def is_recorded(session_factory: async_sessionmaker[AsyncSession], session_id: str) -> bool:
    async with session_factory() as session:
        return await IdempotencyLedger(session).is_handled(session_id)


@pytest.fixture
async def service(session_factory, provider, locks):
    async with session_factory() as session:
        yield FulfillmentService(session, provider, locks=locks, lookup_timeout=5.0)


# ============================================================================
# Session Id Validation
# ============================================================================


class TestNormalizeSessionId:
    """Tests for normalize_session_id."""

    def test_valid_id_passes_through(self):
        """A normal Stripe id is returned unchanged."""
        assert normalize_session_id("cs_test_a1B2c3") == "cs_test_a1B2c3"

    def test_surrounding_whitespace_is_stripped(self):
        """Leading and trailing whitespace is removed."""
        assert normalize_session_id("  cs_test_1\n") == "cs_test_1"

    def test_none_is_rejected(self):
        """A missing id is an invalid request."""
        with pytest.raises(InvalidRequestError, match="required"):
            normalize_session_id(None)

    @pytest.mark.parametrize("raw", ["", "   ", "\t"])
    def test_blank_is_rejected(self, raw):
        """Blank ids are invalid."""
        with pytest.raises(InvalidRequestError, match="empty"):
            normalize_session_id(raw)

    def test_inner_whitespace_is_rejected(self):
        """Ids cannot contain whitespace."""
        with pytest.raises(InvalidRequestError, match="whitespace"):
            normalize_session_id("cs test")

    def test_overlong_id_is_rejected(self):
        """Ids longer than the ledger column are invalid."""
        with pytest.raises(InvalidRequestError, match="too long"):
            normalize_session_id("c" * 256)


# ============================================================================
# Verdicts
# ============================================================================


class TestFulfillVerdicts:
    """Tests for the verdict returned by fulfill."""

    async def test_paid_session_is_fulfilled(self, service, provider, session_factory):
        """A paid session grants its line item quantity."""
        provider.add_session("cs_1", quantity=2)

        verdict = await service.fulfill("cs_1")

        assert verdict == Verdict.fulfilled()
        assert await owned_quantity(session_factory, "1", "1") == 2
        assert await is_recorded(session_factory, "cs_1")

    async def test_second_call_is_already_handled(self, service, provider, session_factory):
        """Repeating a fulfilled session changes nothing."""
        provider.add_session("cs_1", quantity=2)

        first = await service.fulfill("cs_1")
        second = await service.fulfill("cs_1")

        assert first.status == VerdictStatus.FULFILLED
        assert second.status == VerdictStatus.ALREADY_HANDLED
        assert await owned_quantity(session_factory, "1", "1") == 2

    async def test_no_payment_required_is_fulfilled(self, service, provider, session_factory):
        """Free products (no_payment_required) are granted like paid ones."""
        provider.add_session(
            "cs_free", payment_status=PaymentStatus.NO_PAYMENT_REQUIRED, product_id="3"
        )

        verdict = await service.fulfill("cs_free")

        assert verdict.status == VerdictStatus.FULFILLED
        assert await owned_quantity(session_factory, "1", "3") == 1

    async def test_unpaid_session_is_rejected(self, service, provider, session_factory):
        """Unpaid sessions are rejected and leave no ledger entry."""
        provider.add_session("cs_2", payment_status=PaymentStatus.UNPAID)

        verdict = await service.fulfill("cs_2")

        assert verdict == Verdict.rejected(RejectionReason.UNPAID)
        assert not await is_recorded(session_factory, "cs_2")
        assert await owned_quantity(session_factory, "1", "1") == 0

    async def test_unpaid_session_can_be_fulfilled_once_paid(
        self, service, provider, session_factory
    ):
        """A rejection is not remembered; the session succeeds after payment."""
        provider.add_session("cs_2", payment_status=PaymentStatus.UNPAID)
        assert (await service.fulfill("cs_2")).status == VerdictStatus.REJECTED

        provider.add_session("cs_2", payment_status=PaymentStatus.PAID)
        verdict = await service.fulfill("cs_2")

        assert verdict.status == VerdictStatus.FULFILLED
        assert await owned_quantity(session_factory, "1", "1") == 1

    @pytest.mark.parametrize(
        "product_id,user_id",
        [(None, "1"), ("1", None), (None, None)],
    )
    async def test_missing_metadata_is_rejected(
        self, service, provider, session_factory, product_id, user_id
    ):
        """Sessions without productId or userId metadata are rejected."""
        provider.add_session("cs_3", product_id=product_id, user_id=user_id)

        verdict = await service.fulfill("cs_3")

        assert verdict == Verdict.rejected(RejectionReason.MISSING_METADATA)
        assert not await is_recorded(session_factory, "cs_3")

    @pytest.mark.parametrize("quantity", [None, 0])
    async def test_missing_line_items_is_rejected(
        self, service, provider, session_factory, quantity
    ):
        """Sessions without a positive line item quantity are rejected."""
        provider.add_session("cs_4", quantity=quantity)

        verdict = await service.fulfill("cs_4")

        assert verdict == Verdict.rejected(RejectionReason.MISSING_LINE_ITEMS)
        assert not await is_recorded(session_factory, "cs_4")

    async def test_unknown_session_is_lookup_failed(self, service, provider):
        """A session id the provider does not know is a lookup failure."""
        verdict = await service.fulfill("cs_unknown")

        assert verdict == Verdict.rejected(RejectionReason.LOOKUP_FAILED)
        assert provider.lookup_calls == 1

    async def test_provider_error_is_lookup_failed(self, service, provider):
        """Provider errors become a lookup failure verdict."""
        provider.add_session("cs_5")
        provider.lookup_error = PaymentProviderError("connection reset")

        verdict = await service.fulfill("cs_5")

        assert verdict == Verdict.rejected(RejectionReason.LOOKUP_FAILED)

    async def test_lookup_timeout_is_lookup_failed(
        self, session_factory, provider, locks
    ):
        """A provider that does not answer within the timeout is a lookup failure."""
        provider.add_session("cs_slow")

        async def stall(session_id: str) -> None:
            await asyncio.sleep(1)

        provider.lookup_hook = stall

        async with session_factory() as session:
            service = FulfillmentService(session, provider, locks=locks, lookup_timeout=0.05)
            verdict = await service.fulfill("cs_slow")

        assert verdict == Verdict.rejected(RejectionReason.LOOKUP_FAILED)
        assert not await is_recorded(session_factory, "cs_slow")

    async def test_unexpected_error_propagates(self, service, provider):
        """Errors other than provider errors are not turned into verdicts."""
        provider.lookup_error = RuntimeError("bug")

        with pytest.raises(RuntimeError):
            await service.fulfill("cs_6")


# ============================================================================
# Ownership Accumulation
# ============================================================================


class TestOwnershipAccumulation:
    """Tests for ownership across distinct sessions."""

    async def test_distinct_sessions_accumulate(self, service, provider, session_factory):
        """Two different sessions for the same product add up."""
        provider.add_session("cs_a", quantity=2)
        provider.add_session("cs_b", quantity=3)

        await service.fulfill("cs_a")
        await service.fulfill("cs_b")

        assert await owned_quantity(session_factory, "1", "1") == 5

    async def test_grant_goes_to_metadata_user_and_product(
        self, service, provider, session_factory
    ):
        """The grant is keyed on the session metadata."""
        provider.add_session("cs_c", product_id="2", user_id="42", quantity=1)

        await service.fulfill("cs_c")

        assert await owned_quantity(session_factory, "42", "2") == 1
        assert await owned_quantity(session_factory, "1", "2") == 0

    async def test_ledger_entry_records_grant(self, service, provider, session_factory):
        """The ledger keeps which user and product the session granted."""
        provider.add_session("cs_d", product_id="2", quantity=4)

        await service.fulfill("cs_d")

        async with session_factory() as session:
            record = await IdempotencyLedger(session).get("cs_d")
        assert record is not None
        assert record.user_id == "1"
        assert record.product_id == "2"
        assert record.quantity == 4


# ============================================================================
# Concurrency
# ============================================================================


class TestConcurrentDelivery:
    """Tests for simultaneous push and pull of the same session."""

    async def test_concurrent_calls_grant_once(self, session_factory, provider, locks):
        """Two concurrent calls: one FULFILLED, one ALREADY_HANDLED, one grant."""
        provider.add_session("cs_race", quantity=1)

        async def stall(session_id: str) -> None:
            await asyncio.sleep(0.01)

        provider.lookup_hook = stall

        async with session_factory() as first_session, session_factory() as second_session:
            first = FulfillmentService(first_session, provider, locks=locks, lookup_timeout=5.0)
            second = FulfillmentService(second_session, provider, locks=locks, lookup_timeout=5.0)

            verdicts = await asyncio.gather(first.fulfill("cs_race"), second.fulfill("cs_race"))

        statuses = sorted(v.status.value for v in verdicts)
        assert statuses == ["already_handled", "fulfilled"]
        assert await owned_quantity(session_factory, "1", "1") == 1
        assert len(locks) == 0

    async def test_contended_session_lock_is_logged(self, session_factory, provider, locks):
        """The caller that finds the session lock taken logs that it waits."""
        provider.add_session("cs_wait", quantity=1)

        async def stall(session_id: str) -> None:
            await asyncio.sleep(0.01)

        provider.lookup_hook = stall

        async with session_factory() as session:
            service = FulfillmentService(session, provider, locks=locks, lookup_timeout=5.0)
            with patch("app.services.fulfillment.logger") as logger:
                async with locks.hold("cs_wait"):
                    pending = asyncio.create_task(service.fulfill("cs_wait"))
                    await asyncio.sleep(0.05)
                    assert not pending.done()
                verdict = await pending

        assert verdict.status == VerdictStatus.FULFILLED
        events = [call.args[0] for call in logger.info.call_args_list]
        assert "fulfillment_waiting_for_session_lock" in events

    async def test_ledger_insert_conflict_is_already_handled(
        self, service, provider, session_factory, locks
    ):
        """A unique violation on the ledger insert yields ALREADY_HANDLED, not an error."""
        provider.add_session("cs_conflict", quantity=1)
        assert (await service.fulfill("cs_conflict")).status == VerdictStatus.FULFILLED

        async with session_factory() as other_session:
            other = FulfillmentService(other_session, provider, locks=locks, lookup_timeout=5.0)
            with patch.object(IdempotencyLedger, "is_handled", AsyncMock(return_value=False)):
                verdict = await other.fulfill("cs_conflict")

        assert verdict.status == VerdictStatus.ALREADY_HANDLED
        assert await owned_quantity(session_factory, "1", "1") == 1

    async def test_ownership_failure_rolls_back_ledger(self, service, provider, session_factory):
        """If the grant fails, the session is not marked handled."""
        provider.add_session("cs_fail", quantity=1)

        with patch.object(
            OwnershipStore, "increment", AsyncMock(side_effect=RuntimeError("disk full"))
        ):
            with pytest.raises(RuntimeError):
                await service.fulfill("cs_fail")

        assert not await is_recorded(session_factory, "cs_fail")

        verdict = await service.fulfill("cs_fail")
        assert verdict.status == VerdictStatus.FULFILLED
        assert await owned_quantity(session_factory, "1", "1") == 1
