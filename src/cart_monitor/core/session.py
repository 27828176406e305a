"""Per-account mutual exclusion for automation sessions."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Literal

from cart_monitor.exceptions import AccountBusyError
from cart_monitor.utils.logging import bound_context, get_logger


if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = get_logger(__name__)


class SessionManager:
    """
    Holds one lock per account so only one automation flow touches a login.

    Two flows for the same cookie jar would share the site session and the
    page state behind it. A second request either waits for the holder to
    finish (``wait``) or fails fast with ``AccountBusyError`` (``reject``).
    Different accounts never block each other.
    """

    def __init__(
        self,
        mode: Literal["wait", "reject"] = "wait",
        timeout: float | None = None,
    ) -> None:
        self.mode = mode
        self.timeout = timeout
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, account_id: str) -> asyncio.Lock:
        lock = self._locks.get(account_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[account_id] = lock
        return lock

    def is_busy(self, account_id: str) -> bool:
        lock = self._locks.get(account_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, account_id: str) -> AsyncIterator[None]:
        """
        Hold the account for the duration of the block.

        Raises:
            AccountBusyError: In reject mode when the account is held, or when
                waiting exceeds the configured timeout
        """
        lock = self._lock_for(account_id)

        if self.mode == "reject" and lock.locked():
            raise AccountBusyError(f"Account {account_id} already has an active session")

        if lock.locked():
            logger.info("Waiting for account session", account_id=account_id)

        if self.timeout is None:
            await lock.acquire()
        else:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self.timeout)
            except asyncio.TimeoutError as e:
                raise AccountBusyError(
                    f"Account {account_id} still busy after {self.timeout}s"
                ) from e

        try:
            with bound_context(account_id=account_id):
                logger.debug("Account session acquired")
                yield
        finally:
            lock.release()
            logger.debug("Account session released", account_id=account_id)
