"""
Status Reconciler tests
Terminal guard, mapping, idempotency, completion hook and conditional-write retries
"""

import asyncio
import threading
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from database import build_engine
from models import Base, PaymentStatus
from services.status_reconciler import StatusReconciler
from utils.exception_handler import NotFoundError, StorageError


def _statuses(order):
    return [entry.status for entry in order.status_history]


class TestStatusMapping:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("provider_status,expected", [
        ("pending", "detecting"),
        ("processing", "processing"),
        ("settling", "settling"),
        ("settled", "completed"),
        ("refund", "failed"),
        ("refunded", "refunded"),
        ("expired", "expired"),
    ])
    async def test_provider_status_maps_to_internal_status(self, reconciler, make_order, provider_status, expected):
        order = make_order()

        updated = await reconciler.apply(order.swap_id, provider_status)

        assert updated.status == expected
        assert _statuses(updated) == ["pending", expected]

    @pytest.mark.asyncio
    async def test_waiting_on_pending_order_is_noop(self, reconciler, make_order):
        order = make_order()

        updated = await reconciler.apply(order.swap_id, "waiting")

        assert updated.status == "pending"
        assert updated.version == order.version
        assert _statuses(updated) == ["pending"]

    @pytest.mark.asyncio
    async def test_unknown_status_is_ignored(self, reconciler, make_order, completion_hook):
        order = make_order()

        updated = await reconciler.apply(order.swap_id, "teleported")

        assert updated.status == "pending"
        assert updated.version == order.version
        assert _statuses(updated) == ["pending"]
        completion_hook.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_reference_raises_not_found(self, reconciler):
        with pytest.raises(NotFoundError):
            await reconciler.apply("no-such-swap", "settled")

    @pytest.mark.asyncio
    async def test_order_id_reference_is_resolved(self, reconciler, make_order):
        order = make_order(swap_id=None)

        updated = await reconciler.apply(order.order_id, "expired", note="quote expired without deposit")

        assert updated.status == "expired"
        assert updated.status_history[-1].note == "quote expired without deposit"


class TestTerminalGuard:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("terminal", ["completed", "expired", "failed", "refunded"])
    async def test_terminal_order_ignores_every_status(self, reconciler, make_order, terminal):
        order = make_order(status=terminal)

        for provider_status in ["waiting", "pending", "processing", "settling", "settled", "refund", "refunded", "expired"]:
            updated = await reconciler.apply(order.swap_id, provider_status)
            assert updated.status == terminal

        assert _statuses(updated) == [terminal]
        assert updated.version == order.version

    @pytest.mark.asyncio
    async def test_late_settled_after_expiry_is_noop(self, reconciler, make_order, completion_hook):
        order = make_order()
        await reconciler.apply(order.order_id, "expired", note="quote expired without deposit")

        updated = await reconciler.apply(order.swap_id, "settled", settle_tx_hash="0xsettle")

        assert updated.status == "expired"
        assert updated.settle_tx_hash is None
        assert updated.completed_at is None
        completion_hook.assert_not_awaited()


class TestIdempotency:

    @pytest.mark.asyncio
    async def test_repeated_apply_converges_to_same_state(self, reconciler, make_order):
        order = make_order()

        first = await reconciler.apply(order.swap_id, "pending", deposit_tx_hash="0xdeposit")
        for _ in range(4):
            again = await reconciler.apply(order.swap_id, "pending", deposit_tx_hash="0xdeposit")

        assert again.status == first.status == "detecting"
        assert again.version == first.version
        assert again.deposit_tx_hash == "0xdeposit"
        assert _statuses(again) == _statuses(first) == ["pending", "detecting"]

    @pytest.mark.asyncio
    async def test_completion_hook_fires_once(self, reconciler, make_order, completion_hook):
        order = make_order()

        await reconciler.apply(order.swap_id, "settled", settle_tx_hash="0xsettle")
        await reconciler.apply(order.swap_id, "settled", settle_tx_hash="0xsettle")
        final = await reconciler.apply(order.swap_id, "settled", settle_tx_hash="0xsettle")

        completion_hook.assert_awaited_once()
        assert completion_hook.await_args.args[0].order_id == order.order_id
        assert final.completed_at is not None
        assert _statuses(final).count("completed") == 1

    @pytest.mark.asyncio
    async def test_hashes_copied_on_same_status(self, reconciler, make_order):
        order = make_order()
        await reconciler.apply(order.swap_id, "pending")

        updated = await reconciler.apply(order.swap_id, "pending", deposit_tx_hash="0xlate")

        assert updated.deposit_tx_hash == "0xlate"
        assert _statuses(updated) == ["pending", "detecting"]

    @pytest.mark.asyncio
    async def test_completion_hook_failure_keeps_completion(self, store, make_order):
        failing_hook = AsyncMock(side_effect=RuntimeError("fulfillment down"))
        reconciler = StatusReconciler(store, on_completed=failing_hook)
        order = make_order()

        updated = await reconciler.apply(order.swap_id, "settled")

        assert updated.status == "completed"
        failing_hook.assert_awaited_once()


class TestTransitionOrdering:

    @pytest.mark.asyncio
    async def test_stale_waiting_after_settling_is_rejected(self, reconciler, make_order, caplog):
        order = make_order()
        await reconciler.apply(order.swap_id, "settling")

        with caplog.at_level("WARNING"):
            updated = await reconciler.apply(order.swap_id, "waiting")

        assert updated.status == "settling"
        assert _statuses(updated) == ["pending", "settling"]
        assert any("TRANSITION_REJECTED" in record.getMessage() for record in caplog.records)

    @pytest.mark.asyncio
    async def test_forward_progress_is_recorded_in_order(self, reconciler, make_order):
        order = make_order()

        for provider_status in ["pending", "processing", "settling", "settled"]:
            updated = await reconciler.apply(order.swap_id, provider_status)

        assert _statuses(updated) == ["pending", "detecting", "processing", "settling", "completed"]
        timestamps = [entry.timestamp for entry in updated.status_history]
        assert timestamps == sorted(timestamps)


class TestConcurrency:

    @pytest.mark.asyncio
    async def test_reverse_order_delivery_converges_to_completed(self, reconciler, make_order, completion_hook):
        order = make_order()

        await reconciler.apply(order.swap_id, "settled")
        updated = await reconciler.apply(order.swap_id, "processing")

        assert updated.status == "completed"
        assert _statuses(updated).count("completed") == 1
        completion_hook.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_write_conflict_is_redecided_from_fresh_state(self, store, reconciler, make_order, completion_hook):
        order = make_order()
        real_find = store.find_order
        calls = {"n": 0}

        def racing_find(reference):
            snapshot = real_find(reference)
            calls["n"] += 1
            if calls["n"] == 1:
                # A competing writer commits between our read and our write
                store.commit_transition(
                    snapshot,
                    {"status": PaymentStatus.PROCESSING.value},
                    history_status=PaymentStatus.PROCESSING,
                    note="Webhook: processing",
                )
            return snapshot

        store.find_order = racing_find

        updated = await reconciler.apply(order.swap_id, "settled")

        assert calls["n"] == 2
        assert updated.status == "completed"
        assert _statuses(updated) == ["pending", "processing", "completed"]
        completion_hook.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_persistent_conflicts_raise_storage_error(self, store, make_order):
        order = make_order()
        real_find = store.find_order

        def always_stale(reference):
            snapshot = real_find(reference)
            store.commit_transition(snapshot, {})
            return snapshot

        store.find_order = always_stale
        reconciler = StatusReconciler(store, max_retries=2)

        with pytest.raises(StorageError):
            await reconciler.apply(order.swap_id, "settled")

        assert store.get_by_order_id(order.order_id).status == "pending"


class TestDepositTolerance:

    @pytest.mark.asyncio
    async def test_short_deposit_marks_underpaid(self, reconciler, make_order):
        order = make_order(deposit_amount=Decimal("0.01"))

        updated = await reconciler.apply(order.swap_id, "pending", deposit_amount="0.008")

        assert updated.status == "underpaid"
        assert updated.deposit_received_amount == Decimal("0.008")

    @pytest.mark.asyncio
    async def test_excess_deposit_marks_overpaid(self, reconciler, make_order):
        order = make_order(deposit_amount=Decimal("0.01"))

        updated = await reconciler.apply(order.swap_id, "pending", deposit_amount="0.02")

        assert updated.status == "overpaid"

    @pytest.mark.asyncio
    async def test_deposit_within_band_proceeds(self, reconciler, make_order):
        order = make_order(deposit_amount=Decimal("1.0"))

        updated = await reconciler.apply(order.swap_id, "pending", deposit_amount="0.999")

        assert updated.status == "detecting"

    @pytest.mark.asyncio
    async def test_underpaid_order_can_still_settle(self, reconciler, make_order, completion_hook):
        order = make_order(deposit_amount=Decimal("0.01"))
        await reconciler.apply(order.swap_id, "pending", deposit_amount="0.005")
        repeat = await reconciler.apply(order.swap_id, "pending", deposit_amount="0.005")
        assert repeat.status == "underpaid"

        updated = await reconciler.apply(order.swap_id, "settled")

        assert updated.status == "completed"
        assert _statuses(updated) == ["pending", "underpaid", "completed"]
        completion_hook.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_processing_after_underpaid_is_recorded(self, reconciler, make_order):
        order = make_order(deposit_amount=Decimal("0.01"))
        await reconciler.apply(order.swap_id, "pending", deposit_amount="0.005")

        updated = await reconciler.apply(order.swap_id, "processing", deposit_amount="0.005")

        assert updated.status == "processing"
        assert _statuses(updated) == ["pending", "underpaid", "processing"]

    @pytest.mark.asyncio
    async def test_overpaid_order_progresses_to_settling(self, reconciler, make_order):
        order = make_order(deposit_amount=Decimal("0.01"))
        await reconciler.apply(order.swap_id, "pending", deposit_amount="0.02")

        updated = await reconciler.apply(order.swap_id, "settling", deposit_amount="0.02")

        assert _statuses(updated) == ["pending", "overpaid", "settling"]


class TestParallelDelivery:
    """Two deliveries racing on separate threads against a file-backed database"""

    @pytest.fixture
    def engine(self, tmp_path):
        file_engine = build_engine(f"sqlite:///{tmp_path / 'race.db'}")
        Base.metadata.create_all(bind=file_engine)
        yield file_engine
        file_engine.dispose()

    def test_racing_threads_lose_no_update(self, store, reconciler, make_order, completion_hook):
        order = make_order()
        both_read = threading.Barrier(2, timeout=10)
        processing_committed = threading.Event()
        seen = set()
        seen_lock = threading.Lock()
        real_find = store.find_order
        real_commit = store.commit_transition

        def find_after_both_read(reference):
            snapshot = real_find(reference)
            name = threading.current_thread().name
            with seen_lock:
                first_read = name not in seen
                seen.add(name)
            if first_read:
                # Both deliveries hold the same version before either writes
                both_read.wait()
            return snapshot

        def commit_processing_first(snapshot, values, **kwargs):
            name = threading.current_thread().name
            if name == "settled":
                processing_committed.wait(timeout=10)
            try:
                real_commit(snapshot, values, **kwargs)
            finally:
                if name == "processing":
                    processing_committed.set()

        store.find_order = find_after_both_read
        store.commit_transition = commit_processing_first
        errors = []

        def deliver(provider_status):
            try:
                asyncio.run(reconciler.apply(order.swap_id, provider_status))
            except Exception as e:
                errors.append(e)

        threads = [
            threading.Thread(target=deliver, args=(status,), name=status)
            for status in ("processing", "settled")
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert errors == []
        final = store.get_by_order_id(order.order_id)
        assert final.status == "completed"
        assert _statuses(final) == ["pending", "processing", "completed"]
        assert final.version == order.version + 2
        completion_hook.assert_awaited_once()


class TestConditionalApply:

    @pytest.mark.asyncio
    async def test_expected_status_mismatch_is_noop(self, reconciler, make_order):
        order = make_order()
        await reconciler.apply(order.swap_id, "pending", deposit_tx_hash="0xdep")

        updated = await reconciler.apply(
            order.order_id, "expired",
            by_order_id=True, expected_status=PaymentStatus.PENDING, require_no_deposit=True,
        )

        assert updated.status == "detecting"
        assert _statuses(updated) == ["pending", "detecting"]

    @pytest.mark.asyncio
    async def test_pending_order_with_deposit_hash_is_not_expired(self, reconciler, make_order):
        order = make_order(deposit_tx_hash="0xdep")

        updated = await reconciler.apply(
            order.order_id, "expired",
            by_order_id=True, expected_status=PaymentStatus.PENDING, require_no_deposit=True,
        )

        assert updated.status == "pending"
        assert updated.version == order.version

    @pytest.mark.asyncio
    async def test_order_id_lookup_ignores_matching_swap_id(self, reconciler, store, make_order):
        holder = make_order(swap_id="shared-ref")
        target = make_order(order_id="shared-ref")

        updated = await reconciler.apply("shared-ref", "expired", by_order_id=True)

        assert updated.order_id == target.order_id
        assert updated.status == "expired"
        assert store.get_by_order_id(holder.order_id).status == "pending"

    @pytest.mark.asyncio
    async def test_order_id_lookup_unknown_raises_not_found(self, reconciler, make_order):
        order = make_order()

        with pytest.raises(NotFoundError):
            await reconciler.apply(order.swap_id, "expired", by_order_id=True)
