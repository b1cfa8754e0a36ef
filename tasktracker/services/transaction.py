"""Transaction helper for batch task operations.

Runs one or more async operations inside a single database transaction:
commit when all succeed, roll back everything and re-raise the original
error otherwise. ``execute_with_retry`` retries whole transactions that fail
with a transient database error, backing off exponentially.

The helper is storage-agnostic: it drives any session object implementing
``TransactionalSession``. It is a library helper for the batch task layer,
which builds it around its own session factory; the HTTP app does not
create one since it owns no database.

A failing rollback is logged and the operation's original error is still
the one raised, so retry decisions see the real cause.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Protocol, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_ERROR_CODES: frozenset[str] = frozenset(
    {
        "ER_LOCK_DEADLOCK",
        "ER_LOCK_WAIT_TIMEOUT",
        "ER_QUERY_INTERRUPTED",
        "ER_CONNECTION_LOST",
        "ER_SERVER_SHUTDOWN",
    }
)


class TransactionalSession(Protocol):
    async def begin(self, isolation_level: str | None = None) -> None: ...

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...

    async def close(self) -> None: ...


SessionFactory = Callable[[], TransactionalSession]
Operation = Callable[[TransactionalSession], Awaitable[T]]


def is_retryable_error(exc: BaseException) -> bool:
    """True when ``exc`` carries one of the transient database error codes.

    The code is looked up on an exception ``code`` attribute first, then in
    the message text.
    """
    code = getattr(exc, "code", None)
    if isinstance(code, str) and code in RETRYABLE_ERROR_CODES:
        return True
    message = str(exc)
    return any(retryable in message for retryable in RETRYABLE_ERROR_CODES)


class TransactionService:
    """Runs operations atomically against sessions from ``session_factory``."""

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._session_factory = session_factory
        self._sleep = sleep

    async def execute_in_transaction(
        self,
        operation: Operation[T],
        isolation_level: str | None = None,
    ) -> T:
        """Run ``operation`` in its own transaction.

        Raises:
            Exception: Whatever the operation (or commit) raised, after rollback.
        """
        session = self._session_factory()
        try:
            await session.begin(isolation_level)
            logger.debug("transaction.started", extra={"isolation_level": isolation_level})

            result = await operation(session)

            await session.commit()
            logger.debug("transaction.committed")
            return result
        except Exception as exc:
            try:
                await session.rollback()
            except Exception as rollback_exc:
                logger.error(
                    "transaction.rollback_failed",
                    extra={
                        "error_type": type(rollback_exc).__name__,
                        "error_msg": str(rollback_exc),
                        "original_error_type": type(exc).__name__,
                    },
                )
            else:
                logger.error(
                    "transaction.rolled_back",
                    extra={"error_type": type(exc).__name__, "error_msg": str(exc)},
                )
            raise exc
        finally:
            await session.close()

    async def execute_multiple_in_transaction(
        self,
        operations: Sequence[Operation[T]],
        isolation_level: str | None = None,
    ) -> list[T]:
        """Run ``operations`` sequentially in one transaction; no partial commits."""

        async def _run_all(session: TransactionalSession) -> list[T]:
            return [await operation(session) for operation in operations]

        return await self.execute_in_transaction(_run_all, isolation_level)

    async def execute_with_retry(
        self,
        operation: Operation[T],
        max_retries: int = 3,
        backoff_ms: int = 100,
        isolation_level: str | None = None,
    ) -> T:
        """Run ``operation`` in a transaction, retrying transient failures.

        Attempt ``n`` that fails with a retryable error waits
        ``backoff_ms * 2 ** (n - 1)`` milliseconds before attempt ``n + 1``.
        Non-retryable errors and the error of the last attempt propagate.

        Args:
            operation: Work to run against the session.
            max_retries: Total attempts, including the first.
            backoff_ms: Base delay in milliseconds.
            isolation_level: Passed to ``session.begin``.
        """
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")

        attempt = 1
        while True:
            try:
                return await self.execute_in_transaction(operation, isolation_level)
            except Exception as exc:
                if attempt >= max_retries or not is_retryable_error(exc):
                    raise

                delay_ms = backoff_ms * 2 ** (attempt - 1)
                logger.warning(
                    "transaction.retry",
                    extra={
                        "attempt": attempt,
                        "max_retries": max_retries,
                        "delay_ms": delay_ms,
                        "error_msg": str(exc),
                    },
                )
                await self._sleep(delay_ms / 1000)
                attempt += 1
