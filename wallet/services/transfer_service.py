"""
Transfer orchestrator: moves money between two accounts atomically.

Flow:
  1. Reject self-transfers and invalid amounts. These checks run BEFORE the
     idempotency coordinator is engaged, so a bad request fails the same
     way on every retry and never leaves its key in progress.
  2. Inside the coordinator, open a pending transfer_out record on the
     sender. This happens before any lock is taken, so a crash from here
     on still leaves an auditable trace.
  3. Lock both accounts in ascending id order (AccountLedger.unit) and
     re-read both balances.
  4. Convert the amount into the receiver's currency. An unknown currency
     or missing rate aborts here, before any balance moves.
  5. In ONE unit of work: withdraw from the sender, deposit the converted
     amount to the receiver, insert the completed transfer_in record, and
     complete the transfer_out record.
  6. If anything in 3-5 fails, the unit rolls back (no balance change, no
     transfer_in), and the transfer_out record is marked failed in a
     separate unit so the audit trail survives the rollback.

The transfer_out record is the canonical payload of the outcome.
"""

from functools import partial

import structlog

from wallet.exceptions import SelfTransferError, WalletError
from wallet.models.account import Account
from wallet.models.transaction import TRANSFER_IN, TRANSFER_OUT, Transaction
from wallet.schemas.transaction import Outcome
from wallet.services.currency import CurrencyConverter
from wallet.services.idempotency import IdempotencyCoordinator
from wallet.services.ledger import AccountLedger
from wallet.services.records import TransactionRecordStore, validate_amount

logger = structlog.get_logger(__name__)


class TransferOrchestrator:
    """Composes the coordinator, ledger, and record store into transfers."""

    def __init__(
        self,
        coordinator: IdempotencyCoordinator,
        ledger: AccountLedger,
        records: TransactionRecordStore,
        converter: CurrencyConverter,
    ):
        self._coordinator = coordinator
        self._ledger = ledger
        self._records = records
        self._converter = converter

    async def transfer(
        self,
        sender: Account,
        receiver: Account,
        amount_cents: int,
        idempotency_key: str | None,
    ) -> Outcome:
        """
        Transfer `amount_cents` (sender's currency) from sender to receiver.

        Raises:
            SelfTransferError: Sender and receiver are the same account.
            InvalidAmountError: Amount is not a positive integer.
            MissingIdempotencyKeyError, AlreadyProcessingError,
                IdempotencyKeyConflictError: see IdempotencyCoordinator.execute.
        """
        if sender.id == receiver.id:
            raise SelfTransferError(sender.id)
        validate_amount(amount_cents)

        return await self._coordinator.execute(
            idempotency_key,
            partial(self._perform, sender, receiver, amount_cents, idempotency_key),
            owner_id=sender.id,
        )

    async def _perform(
        self,
        sender: Account,
        receiver: Account,
        amount_cents: int,
        idempotency_key: str,
    ) -> Outcome:
        transfer_out = await self._records.open(
            sender, TRANSFER_OUT, amount_cents, sender.currency, idempotency_key
        )

        try:
            async with self._ledger.unit(sender.id, receiver.id) as unit:
                source = unit.account(sender.id)
                destination = unit.account(receiver.id)

                converted_cents = self._converter.convert(
                    amount_cents, source.currency, destination.currency
                )

                unit.withdraw(source.id, amount_cents)
                unit.deposit(destination.id, converted_cents)

                await self._records.add_completed(
                    unit.session,
                    destination,
                    TRANSFER_IN,
                    converted_cents,
                    destination.currency,
                    idempotency_key,
                )
                completed = await self._records.complete(transfer_out, session=unit.session)
        except Exception as exc:
            return await self._settle_failure(transfer_out, sender, receiver, exc)

        logger.info(
            "Transfer completed",
            idempotency_key=idempotency_key,
            from_account_id=str(sender.id),
            to_account_id=str(receiver.id),
            amount_cents=amount_cents,
            converted_cents=converted_cents,
        )
        return Outcome.completed(completed)

    async def _settle_failure(
        self,
        transfer_out: Transaction,
        sender: Account,
        receiver: Account,
        exc: Exception,
    ) -> Outcome:
        logger.warning(
            "Transfer failed",
            transaction_id=str(transfer_out.id),
            from_account_id=str(sender.id),
            to_account_id=str(receiver.id),
            reason=str(exc),
            exc_info=not isinstance(exc, WalletError),
        )
        failed = await self._records.fail_with(transfer_out, exc)
        return Outcome.from_record(failed)
