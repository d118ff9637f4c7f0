"""
Tests for the transaction record store.

These tests verify:
  - open() validates kind, amount, and key before anything is persisted
  - Records are opened as pending and committed immediately
  - A second record of the same kind under one key is refused
  - complete() and fail() are one-way terminal transitions
  - The key lookup prefers the transfer_out leg of a transfer pair
"""

import pytest
from sqlalchemy import func, select

from wallet.exceptions import (
    AlreadyProcessingError,
    InvalidAmountError,
    InvalidTransactionError,
    MissingIdempotencyKeyError,
    TerminalStateError,
)
from wallet.models.transaction import Transaction
from wallet.services.records import TransactionRecordStore


@pytest.fixture
def store(session_factory):
    return TransactionRecordStore(session_factory)


async def count_records(session_factory) -> int:
    async with session_factory() as session:
        result = await session.execute(select(func.count()).select_from(Transaction))
        return result.scalar()


class TestOpenValidation:
    """Invalid records are rejected before anything is written."""

    @pytest.mark.parametrize(
        "kind, amount, key, error",
        [
            ("refund", 100, "k1", InvalidTransactionError),
            ("deposit", 0, "k1", InvalidAmountError),
            ("deposit", -50, "k1", InvalidAmountError),
            ("deposit", 10.5, "k1", InvalidAmountError),
            ("deposit", 100, "", MissingIdempotencyKeyError),
            ("deposit", 100, "   ", MissingIdempotencyKeyError),
        ],
    )
    async def test_invalid_open_persists_nothing(
        self, store, make_account, session_factory, kind, amount, key, error
    ):
        account = await make_account()
        with pytest.raises(error):
            await store.open(account, kind, amount, "USD", key)
        assert await count_records(session_factory) == 0

    async def test_open_creates_pending_record(self, store, make_account, session_factory):
        account = await make_account()
        record = await store.open(account, "deposit", 2500, "USD", "open-1")

        assert record.status == "pending"
        assert record.failure_reason is None

        async with session_factory() as session:
            persisted = await session.get(Transaction, record.id)
        assert persisted is not None
        assert persisted.status == "pending"
        assert persisted.amount_cents == 2500
        assert persisted.idempotency_key == "open-1"

    async def test_second_open_for_same_key_and_kind(self, store, make_account, session_factory):
        account = await make_account()
        await store.open(account, "deposit", 2500, "USD", "open-2")

        with pytest.raises(AlreadyProcessingError):
            await store.open(account, "deposit", 2500, "USD", "open-2")

        assert await count_records(session_factory) == 1


class TestLifecycle:
    """pending -> completed | failed, and never back."""

    async def test_complete(self, store, make_account):
        account = await make_account()
        record = await store.open(account, "deposit", 100, "USD", "life-1")

        completed = await store.complete(record)
        assert completed.status == "completed"
        assert completed.failure_reason is None

    async def test_fail_records_reason_and_kind(self, store, make_account):
        account = await make_account()
        record = await store.open(account, "withdrawal", 100, "USD", "life-2")

        failed = await store.fail(record, "Insufficient funds", "insufficient_funds")
        assert failed.status == "failed"
        assert failed.failure_reason == "Insufficient funds"
        assert failed.failure_code == "insufficient_funds"

    async def test_completing_a_terminal_record_is_rejected(self, store, make_account):
        account = await make_account()
        record = await store.open(account, "deposit", 100, "USD", "life-3")
        await store.complete(record)

        with pytest.raises(TerminalStateError):
            await store.complete(record)
        with pytest.raises(TerminalStateError):
            await store.fail(record, "too late", "storage_failure")

    async def test_failing_a_failed_record_is_rejected(self, store, make_account):
        account = await make_account()
        record = await store.open(account, "deposit", 100, "USD", "life-4")
        await store.fail(record, "first", "storage_failure")

        with pytest.raises(TerminalStateError):
            await store.fail(record, "second", "storage_failure")

        # The original failure is untouched
        records = await store.list_for_key("life-4")
        assert records[0].failure_reason == "first"

    async def test_fail_with_unexpected_exception(self, store, make_account):
        account = await make_account()
        record = await store.open(account, "deposit", 100, "USD", "life-5")

        failed = await store.fail_with(record, RuntimeError("disk on fire"))
        assert failed.failure_code == "storage_failure"
        assert "disk on fire" in failed.failure_reason


class TestKeyLookup:
    async def test_unknown_key(self, store):
        assert await store.find_for_key("nope") is None

    async def test_single_record(self, store, make_account):
        account = await make_account()
        record = await store.open(account, "deposit", 100, "USD", "lookup-1")

        found = await store.find_for_key("lookup-1")
        assert found.id == record.id

    async def test_transfer_out_is_authoritative(self, store, make_account, session_factory):
        sender = await make_account()
        receiver = await make_account()

        # transfer_in written first, so ordering alone would pick it
        async with session_factory() as session:
            async with session.begin():
                await store.add_completed(session, receiver, "transfer_in", 850, "EUR", "pair-1")
        transfer_out = await store.open(sender, "transfer_out", 1000, "USD", "pair-1")

        found = await store.find_for_key("pair-1")
        assert found.id == transfer_out.id
        assert found.kind == "transfer_out"
        assert len(await store.list_for_key("pair-1")) == 2
