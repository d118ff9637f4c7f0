"""
Idempotency coordinator: at-most-once execution per idempotency key.

execute(key, operation, owner_id) runs `operation` the first time a key is
seen and returns the recorded outcome on every later call. The algorithm:

  1. Durable lookup: if a transaction record already exists for the key,
     it decides. A record owned by another account raises
     IdempotencyKeyConflictError. A terminal record is rebuilt into its
     outcome and returned; this is the source of truth and survives cache
     eviction. A pending record raises AlreadyProcessingError.
  2. Claim the key in Redis: SET idempotency:<key> IN_PROGRESS NX EX 60.
  3. Claimed: run the operation, then overwrite the entry with the
     serialised Outcome (EX 3600). If the operation raises, DELETE the
     entry so the key is not left in progress, and re-raise. A failure to
     write the outcome is logged and the outcome is still returned.
  4. Not claimed, entry is IN_PROGRESS: raise AlreadyProcessingError. The
     coordinator never waits; the caller retries later.
  5. Not claimed, entry holds an Outcome: return it without running the
     operation, subject to the same owner check as step 1.

Known risk:
  The in-progress marker expires after IDEMPOTENCY_IN_PROGRESS_TTL_SECONDS
  so that a crashed worker cannot block a key in the cache forever. A
  record left pending by such a worker keeps answering AlreadyProcessing
  until it is resolved by hand. If a live operation runs longer than the
  TTL and has not opened its record yet, a second caller can still claim
  the key; the (idempotency_key, kind) unique constraint on transactions
  then refuses the second record with AlreadyProcessingError.
"""

import uuid
from collections.abc import Awaitable, Callable

import structlog
from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from wallet.exceptions import (
    AlreadyProcessingError,
    IdempotencyKeyConflictError,
    MissingIdempotencyKeyError,
    StorageFailureError,
)
from wallet.schemas.transaction import Outcome
from wallet.services.records import TransactionRecordStore

logger = structlog.get_logger(__name__)

IN_PROGRESS = "IN_PROGRESS"

# Claim attempts when the entry vanishes between SET NX and GET
CLAIM_ATTEMPTS = 3


class IdempotencyCoordinator:
    """Deduplicates concurrent and retried operations by idempotency key."""

    def __init__(
        self,
        cache: Redis,
        records: TransactionRecordStore,
        key_prefix: str = "idempotency:",
        in_progress_ttl: int = 60,
        result_ttl: int = 3600,
    ):
        self._cache = cache
        self._records = records
        self._key_prefix = key_prefix
        self._in_progress_ttl = in_progress_ttl
        self._result_ttl = result_ttl

    def cache_key(self, key: str) -> str:
        return f"{self._key_prefix}{key}"

    async def execute(
        self,
        key: str | None,
        operation: Callable[[], Awaitable[Outcome]],
        owner_id: uuid.UUID | None = None,
    ) -> Outcome:
        """
        Run `operation` at most once for `key` and return its Outcome.

        `owner_id` is the account the caller acts for. A key whose recorded
        outcome belongs to another account is refused rather than replayed.

        Raises:
            MissingIdempotencyKeyError: `key` is empty.
            AlreadyProcessingError: Another worker currently owns `key`, or
                its record is still pending.
            IdempotencyKeyConflictError: `key` was used by another account.
            StorageFailureError: The cache is unreachable.
            Any exception raised by `operation`, after releasing the key.
        """
        if key is None or not key.strip():
            raise MissingIdempotencyKeyError()

        existing = await self._records.find_for_key(key)
        if existing is not None:
            self._check_owner(key, existing.account_id, owner_id)
            if not existing.is_terminal:
                logger.info(
                    "Idempotency key has a pending transaction record",
                    idempotency_key=key,
                    transaction_id=str(existing.id),
                )
                raise AlreadyProcessingError(key)
            logger.info(
                "Replaying outcome from transaction record",
                idempotency_key=key,
                transaction_id=str(existing.id),
                status=existing.status,
            )
            return Outcome.from_record(existing)

        cache_key = self.cache_key(key)
        for _ in range(CLAIM_ATTEMPTS):
            claimed = await self._cache_call(
                self._cache.set, cache_key, IN_PROGRESS, nx=True, ex=self._in_progress_ttl
            )
            if claimed:
                return await self._run_claimed(key, cache_key, operation)

            cached = await self._cache_call(self._cache.get, cache_key)
            if cached is None:
                # Expired or deleted between SET NX and GET; claim again
                continue
            if isinstance(cached, bytes):
                cached = cached.decode("utf-8")
            if cached == IN_PROGRESS:
                logger.info("Idempotency key is already being processed", idempotency_key=key)
                raise AlreadyProcessingError(key)
            outcome = self._parse_cached(key, cached)
            if outcome.payload is not None:
                self._check_owner(key, outcome.payload.account_id, owner_id)
            return outcome

        raise AlreadyProcessingError(key)

    async def _run_claimed(
        self,
        key: str,
        cache_key: str,
        operation: Callable[[], Awaitable[Outcome]],
    ) -> Outcome:
        try:
            outcome = await operation()
        except Exception:
            logger.warning("Operation raised; releasing idempotency key", idempotency_key=key)
            await self._cache_call(self._cache.delete, cache_key)
            raise

        try:
            await self._cache_call(
                self._cache.set, cache_key, outcome.model_dump_json(), ex=self._result_ttl
            )
        except StorageFailureError as exc:
            # The record is terminal, so later retries replay it from storage
            logger.warning("Could not cache outcome", idempotency_key=key, reason=exc.detail)
        logger.info(
            "Operation finished",
            idempotency_key=key,
            success=outcome.success,
            error_type=outcome.error_type,
        )
        return outcome

    @staticmethod
    def _check_owner(key: str, account_id: uuid.UUID, owner_id: uuid.UUID | None) -> None:
        if owner_id is not None and account_id != owner_id:
            logger.warning(
                "Idempotency key belongs to another account",
                idempotency_key=key,
                account_id=str(owner_id),
            )
            raise IdempotencyKeyConflictError(key)

    @staticmethod
    def _parse_cached(key: str, cached: str) -> Outcome:
        try:
            outcome = Outcome.model_validate_json(cached)
        except ValidationError:
            logger.warning("Cached outcome could not be parsed", idempotency_key=key)
            return Outcome(
                success=False,
                error="Failed to parse cached result",
                error_type=StorageFailureError.error_type,
            )
        logger.info("Replaying cached outcome", idempotency_key=key, success=outcome.success)
        return outcome

    @staticmethod
    async def _cache_call(method, *args, **kwargs):
        try:
            return await method(*args, **kwargs)
        except RedisError as exc:
            raise StorageFailureError(f"Idempotency cache unavailable: {exc}") from exc
