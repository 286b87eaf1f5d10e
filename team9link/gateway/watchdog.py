"""Connection watchdog - periodic health checks with rebuild on sustained failure."""

import asyncio
from typing import Awaitable, Callable, Literal

from loguru import logger

DEFAULT_WATCHDOG_INTERVAL_S = 60.0
DEFAULT_FAILURE_THRESHOLD = 3

Health = Literal["healthy", "unhealthy", "missing"]


class ConnectionWatchdog:
    """
    Periodically checks every tracked account and rebuilds stale connections.

    Each unhealthy check bumps a per-account counter; reaching the threshold
    resets the counter and schedules one asynchronous rebuild. A healthy check
    resets the counter. Accounts with no live connection are rebuilt at once.
    Ticks run sequentially and never overlap.
    """

    def __init__(
        self,
        *,
        accounts: Callable[[], list[str]],
        check: Callable[[str], Health],
        rebuild: Callable[[str], Awaitable[None]],
        interval_s: float = DEFAULT_WATCHDOG_INTERVAL_S,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
    ):
        self.accounts = accounts
        self.check = check
        self.rebuild = rebuild
        self.interval_s = interval_s
        self.failure_threshold = max(1, failure_threshold)
        self.failures: dict[str, int] = {}
        self._rebuilds: dict[str, asyncio.Task] = {}
        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start the watchdog loop. No-op when already running."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Connection watchdog started (every {self.interval_s:g}s, threshold {self.failure_threshold})")

    def stop(self) -> None:
        """Stop the loop; in-flight rebuilds are left to finish."""
        if not self._running:
            return
        self._running = False
        task, self._task = self._task, None
        if task and task is not asyncio.current_task():
            task.cancel()
        self.failures.clear()
        logger.info("Connection watchdog stopped")

    async def close(self) -> None:
        """Stop the loop and cancel in-flight rebuilds."""
        self.stop()
        current = asyncio.current_task()
        pending = [t for t in self._rebuilds.values() if t is not current and not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._rebuilds.clear()

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval_s)
                if self._running:
                    await self.tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Watchdog error: {e}")

    async def tick(self) -> None:
        """Check every tracked account once."""
        for account_id in list(self.accounts()):
            if self.rebuild_in_flight(account_id):
                continue
            try:
                health = self.check(account_id)
            except Exception as e:
                logger.error(f"[team9:{account_id}] Health check failed: {e}")
                health = "unhealthy"

            if health == "missing":
                logger.info(f"[team9:{account_id}] No live connection, rebuilding")
                self._schedule_rebuild(account_id)
                continue
            if health == "healthy":
                self.failures[account_id] = 0
                continue

            count = self.failures.get(account_id, 0) + 1
            logger.warning(f"[team9:{account_id}] Connection unhealthy ({count}/{self.failure_threshold})")
            if count >= self.failure_threshold:
                self.failures[account_id] = 0
                self._schedule_rebuild(account_id)
            else:
                self.failures[account_id] = count

        tracked = set(self.accounts())
        for account_id in list(self.failures):
            if account_id not in tracked:
                self.failures.pop(account_id, None)

    def rebuild_in_flight(self, account_id: str) -> bool:
        task = self._rebuilds.get(account_id)
        return task is not None and not task.done()

    async def cancel_rebuild(self, account_id: str) -> None:
        """Cancel and await the account's in-flight rebuild, unless called from it."""
        task = self._rebuilds.get(account_id)
        if task is None or task.done() or task is asyncio.current_task():
            return
        self._rebuilds.pop(account_id, None)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    def _schedule_rebuild(self, account_id: str) -> None:
        if self.rebuild_in_flight(account_id):
            return
        self._rebuilds[account_id] = asyncio.create_task(self._run_rebuild(account_id))

    async def _run_rebuild(self, account_id: str) -> None:
        try:
            await self.rebuild(account_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[team9:{account_id}] Rebuild failed, retrying next tick: {e}")
        finally:
            if self._rebuilds.get(account_id) is asyncio.current_task():
                self._rebuilds.pop(account_id, None)

    async def wait_rebuilds(self) -> None:
        """Wait for every in-flight rebuild to finish."""
        pending = [t for t in self._rebuilds.values() if not t.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
