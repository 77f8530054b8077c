"""Database operations for chat turns (table ``chat_history``)."""

import asyncio

from supabase import Client

from consultant.core.schemas_chat import Turn
from consultant.db.supabase_client import get_supabase

TABLE = "chat_history"


def load_turns(
    session_id: str,
    limit: int,
    user_id: str | None = None,
    client: Client | None = None,
) -> list[Turn]:
    """
    Load the most recent turns of a session.

    Args:
        session_id: Session identifier
        limit: Maximum number of turns
        user_id: Restrict to this user's turns when given

    Returns:
        At most ``limit`` turns, oldest first
    """
    if limit <= 0:
        return []

    sb = client or get_supabase()
    query = sb.table(TABLE).select("*").eq("session_id", session_id)
    if user_id is not None:
        query = query.eq("user_id", user_id)
    response = query.order("created_at", desc=True).order("seq", desc=True).limit(limit).execute()
    rows = list(reversed(response.data or []))
    return [Turn.from_record(row) for row in rows]


def get_session_owner(session_id: str, client: Client | None = None) -> str | None:
    """User id of the session's first turn, or None for an unused session."""
    sb = client or get_supabase()
    response = (
        sb.table(TABLE)
        .select("user_id")
        .eq("session_id", session_id)
        .order("created_at")
        .order("seq")
        .limit(1)
        .execute()
    )
    rows = response.data or []
    return rows[0].get("user_id") if rows else None


def list_session_turns(
    session_id: str,
    user_id: str,
    limit: int = 100,
    client: Client | None = None,
) -> list[Turn]:
    """Transcript view: a user's turns for one session, oldest first."""
    sb = client or get_supabase()
    response = (
        sb.table(TABLE)
        .select("*")
        .eq("session_id", session_id)
        .eq("user_id", user_id)
        .order("created_at")
        .order("seq")
        .limit(limit)
        .execute()
    )
    return [Turn.from_record(row) for row in (response.data or [])]


def insert_turn(turn: Turn, client: Client | None = None) -> None:
    """Append one turn. Rows are never updated."""
    sb = client or get_supabase()
    sb.table(TABLE).insert(turn.to_record()).execute()


class SupabaseTurnStore:
    """Async turn store backed by Supabase; blocking calls run in a thread."""

    def __init__(self, client: Client | None = None):
        self._client = client

    async def load_turns(self, session_id: str, limit: int, user_id: str | None = None) -> list[Turn]:
        return await asyncio.to_thread(load_turns, session_id, limit, user_id, self._client)

    async def session_owner(self, session_id: str) -> str | None:
        return await asyncio.to_thread(get_session_owner, session_id, self._client)

    async def insert_turn(self, turn: Turn) -> None:
        await asyncio.to_thread(insert_turn, turn, self._client)
