"""Periodic eviction of expired sessions."""

from __future__ import annotations

import asyncio
import logging

from app.domain.errors import BackendUnavailable
from app.domain.store import SessionStore

logger = logging.getLogger(__name__)


class EvictionSweeper:
    """Deletes expired sessions from every backend of a store.

    One failing deletion is logged and skipped; the loop itself never dies.
    """

    def __init__(self, store: SessionStore, interval_seconds: float = 60.0):
        self._store = store
        self._interval = interval_seconds
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> int:
        now = self._store.policy.now()
        evicted = 0
        for backend in self._store.backends:
            try:
                codes = await backend.expired_codes(now)
            except BackendUnavailable as exc:
                logger.warning("Skipping sweep of %s backend: %s", backend.name, exc)
                continue
            except Exception:
                logger.exception("Could not list expired sessions on %s", backend.name)
                continue
            removed = 0
            for code in codes:
                try:
                    if await backend.delete_session(code):
                        removed += 1
                except Exception:
                    logger.exception("Failed to evict session %s from %s", code, backend.name)
                    continue
                self._store.forget(code)
            if removed:
                logger.info("Swept %d expired session(s) from %s", removed, backend.name)
            evicted += removed
        return evicted

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.run_once()
            except Exception:
                logger.exception("Eviction sweep failed")

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="eviction-sweeper")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
