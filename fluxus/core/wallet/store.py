"""
Session store: one owner, one lock, publish after commit.

Every mutation reads the current snapshot, computes the next one, persists
it, swaps it in and only then notifies subscribers. Readers call
``get_snapshot()`` and never see a state that has not been written.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Callable, List, Optional, Set, Tuple

from .models import SessionRecord, SessionSnapshot


logger = logging.getLogger(__name__)

Listener = Callable[[], None]
Mutation = Callable[[Tuple[SessionRecord, ...]], Optional[Tuple[SessionRecord, ...]]]


class SessionPersistence:
    """JSON file holding the serialized session list."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> List[SessionRecord]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Could not read persisted sessions from %s: %s", self.path, exc)
            return []

        sessions: List[SessionRecord] = []
        for item in raw.get("sessions", []) if isinstance(raw, dict) else []:
            try:
                sessions.append(SessionRecord.from_dict(item))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed persisted session: %s", exc)
        return sessions

    def save(self, sessions: Tuple[SessionRecord, ...]) -> None:
        payload = {"sessions": [session.to_dict() for session in sessions]}
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".sessions-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2)
            os.replace(tmp_name, self.path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise


class SessionStore:
    """Process-wide holder of the session list."""

    def __init__(self, persistence: Optional[SessionPersistence] = None):
        self._persistence = persistence
        self._snapshot = SessionSnapshot()
        self._listeners: Set[Listener] = set()
        self._lock = asyncio.Lock()
        self._loaded = False

    async def load(self) -> SessionSnapshot:
        """Restore persisted sessions once. Restored sessions hold no key authorization."""
        async with self._lock:
            restored = await self._ensure_loaded()
        if restored:
            self._emit()
        return self._snapshot

    async def _ensure_loaded(self) -> bool:
        """Read the persisted list if nothing has been read yet. Caller holds the lock."""
        if self._loaded:
            return False
        self._loaded = True
        if self._persistence is None:
            return False
        sessions = await asyncio.to_thread(self._persistence.load)
        self._snapshot = SessionSnapshot(sessions=tuple(sessions))
        logger.info("Loaded %d persisted sessions", len(sessions))
        return bool(sessions)

    def get_snapshot(self) -> SessionSnapshot:
        return self._snapshot

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; returns a callable that unsubscribes it."""
        self._listeners.add(listener)

        def unsubscribe() -> None:
            self._listeners.discard(listener)

        return unsubscribe

    async def mutate(self, mutation: Mutation) -> bool:
        """
        Apply ``mutation`` to the current session tuple.

        The persisted list is read first if ``load()`` has not run, so a
        write never replaces sessions this process has not seen yet.
        ``mutation`` returns the next tuple, or None to leave the store
        untouched (no write). Returns whether a change was committed.
        """
        async with self._lock:
            restored = await self._ensure_loaded()
            current = self._snapshot.sessions
            next_sessions = mutation(current)
            if next_sessions is None:
                committed = False
            else:
                if self._persistence is not None:
                    await asyncio.to_thread(self._persistence.save, next_sessions)
                self._snapshot = SessionSnapshot(sessions=next_sessions)
                committed = True
        if committed or restored:
            self._emit()
        return committed

    def _emit(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as exc:  # noqa: BLE001
                logger.warning("Session listener failed: %s", exc, exc_info=True)
