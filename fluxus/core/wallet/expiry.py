"""
Session expiry sweeper.

Expired sessions are already invisible to matching; the sweeper removes them
from the persisted list and tells the caller how many went away.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from ...config import settings
from .session_manager import SessionKeyManager


class SessionExpirySweeper:
    """Polls ``cleanup_expired`` on a fixed cadence (default every second)."""

    def __init__(
        self,
        manager: SessionKeyManager,
        *,
        interval_seconds: Optional[float] = None,
        on_expired: Optional[Callable[[int], None]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.manager = manager
        self.interval_seconds = interval_seconds or settings.session_sweep_interval_seconds
        self.on_expired = on_expired
        self.logger = logger or logging.getLogger("session_sweeper")
        self._task: asyncio.Task | None = None
        self._lock = asyncio.Lock()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        async with self._lock:
            if self._running:
                return
            self._running = True
            # Sessions that lapsed while nothing was running go first.
            await self.sweep_once()
            self._task = asyncio.create_task(self._run_loop(), name="session-expiry-sweeper")

    async def stop(self) -> None:
        async with self._lock:
            if not self._running:
                return
            self._running = False
            if self._task:
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
                self._task = None

    async def sweep_once(self) -> int:
        removed = await self.manager.cleanup_expired()
        if removed and self.on_expired:
            try:
                self.on_expired(removed)
            except Exception as exc:  # noqa: BLE001
                self.logger.warning("on_expired callback failed: %s", exc, exc_info=True)
        return removed

    async def _run_loop(self) -> None:
        try:
            while self._running:
                await asyncio.sleep(self.interval_seconds)
                try:
                    await self.sweep_once()
                except Exception as exc:  # noqa: BLE001
                    self.logger.warning("Session sweep failed: %s", exc, exc_info=True)
        except asyncio.CancelledError:
            return

    async def __aenter__(self) -> "SessionExpirySweeper":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()
