"""Session resolution, history loading and ordered turn appends."""

import asyncio
import uuid
import weakref
from datetime import datetime, timedelta, timezone
from typing import Protocol

from consultant.core.errors import PersistenceFailure
from consultant.core.logging import get_logger
from consultant.core.schemas_chat import Turn

logger = get_logger(__name__)

DEFAULT_HISTORY_LIMIT = 10

_MIN_TICK = timedelta(microseconds=1)


class TurnStore(Protocol):
    """Append-only storage for turns."""

    async def load_turns(self, session_id: str, limit: int, user_id: str | None = None) -> list[Turn]: ...

    async def session_owner(self, session_id: str) -> str | None: ...

    async def insert_turn(self, turn: Turn) -> None: ...


class SessionManager:
    """
    Owns session ids and the ordering of turn appends.

    Appends to one session are serialised by a per-session lock. Inside the
    lock each turn gets the next sequence number and a ``created_at`` strictly
    later than the previous turn's, so a user turn always sorts before the
    assistant turn it provoked even when requests overlap.
    """

    def __init__(self, store: TurnStore):
        self._store = store
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def resolve_session(self, session_id: str | None = None) -> str:
        """Return the given id unchanged, or a fresh random id when none is supplied."""
        if session_id and session_id.strip():
            return session_id.strip()
        return str(uuid.uuid4())

    async def claim_session(self, session_id: str | None, user_id: str) -> str:
        """
        Resolve a session id the caller is allowed to continue.

        A supplied id whose stored turns belong to another user is replaced
        by a fresh one, as is an id whose owner cannot be read.
        """
        if not (session_id and session_id.strip()):
            return self.resolve_session(None)
        resolved = self.resolve_session(session_id)

        try:
            owner = await self._store.session_owner(resolved)
        except Exception as e:
            logger.warning(f"Session owner lookup failed, starting a new session: {e}")
            return self.resolve_session(None)

        if owner is not None and owner != user_id:
            fresh = self.resolve_session(None)
            logger.warning(
                "Session belongs to another user; starting a new session",
                extra={"session_id": fresh, "user_id": user_id},
            )
            return fresh
        return resolved

    async def load_recent_turns(
        self,
        session_id: str,
        limit: int = DEFAULT_HISTORY_LIMIT,
        user_id: str | None = None,
    ) -> list[Turn]:
        """At most ``limit`` most recent turns, oldest first, optionally only ``user_id``'s."""
        if limit <= 0:
            return []
        turns = await self._store.load_turns(session_id, limit, user_id)
        turns = sorted(turns, key=_turn_order)
        return turns[-limit:]

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    async def _cursor(self, session_id: str) -> tuple[int, datetime | None]:
        """Sequence number and timestamp of the session's latest stored turn."""
        latest = await self._store.load_turns(session_id, 1)
        if not latest:
            return 0, None
        last = latest[-1]
        created_at = last.created_at
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return last.seq or 0, created_at

    async def append_turn(self, session_id: str, turn: Turn) -> Turn:
        """
        Append a turn to the session.

        Returns:
            The stored turn, with its sequence number and timestamp assigned

        Raises:
            PersistenceFailure: If the store rejects the write
        """
        async with self._lock_for(session_id):
            try:
                last_seq, last_created = await self._cursor(session_id)
                created_at = datetime.now(timezone.utc)
                if last_created is not None and created_at <= last_created:
                    created_at = last_created + _MIN_TICK

                stored = turn.model_copy(
                    update={"session_id": session_id, "seq": last_seq + 1, "created_at": created_at}
                )
                await self._store.insert_turn(stored)
            except Exception as e:
                raise PersistenceFailure(f"Failed to append {turn.role.value} turn: {e}") from e

            return stored

    async def record_turn(self, session_id: str, turn: Turn) -> Turn | None:
        """Best-effort append: failures are logged and swallowed."""
        try:
            return await self.append_turn(session_id, turn)
        except PersistenceFailure as e:
            logger.error(
                f"Turn persistence failed: {e}",
                extra={"session_id": session_id, "extra_data": {"role": turn.role.value}},
            )
            return None


def _turn_order(turn: Turn) -> tuple[datetime, int]:
    return turn.created_at, turn.seq or 0
