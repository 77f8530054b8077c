"""Ranked vector search over the user's tasks, journal and notes.

Each source kind has its own Supabase RPC performing the nearest-neighbour
lookup; this module calls it and normalises rows into ``ContextSource``.
"""

import asyncio
from typing import Any

from supabase import Client

from consultant.core.schemas_chat import (
    ContextSource,
    JournalMetadata,
    NoteMetadata,
    SourceKind,
    TaskMetadata,
)
from consultant.db.supabase_client import get_supabase

SEARCH_RPCS: dict[SourceKind, str] = {
    SourceKind.TASK: "search_opportunities",
    SourceKind.JOURNAL: "search_daily_logs",
    SourceKind.NOTE: "search_knowledge_base",
}

_TASK_FIELDS = {"id", "title", "description", "type", "status", "priority", "strategic_value", "similarity"}
_JOURNAL_FIELDS = {"id", "log_date", "mood", "energy_level", "content", "similarity"}
_NOTE_FIELDS = {"id", "source_title", "content_chunk", "similarity"}


def _clamp_similarity(value: Any) -> float:
    try:
        similarity = float(value)
    except (TypeError, ValueError):
        return 0.0
    if similarity != similarity:  # NaN
        return 0.0
    return min(max(similarity, 0.0), 1.0)


def _na(value: Any) -> Any:
    return "N/A" if value is None else value


def _passthrough(row: dict[str, Any], modeled: set[str]) -> dict[str, Any]:
    return {k: v for k, v in row.items() if k not in modeled and k != "user_id" and k != "embedding"}


# ============================================================================
# Row normalisation
# ============================================================================


def task_source(row: dict[str, Any], relevance: float) -> ContextSource:
    """Render an opportunities row as a task source."""
    title = row.get("title") or "Untitled task"
    description = row.get("description")
    content = (
        f"[{row.get('type')}/{row.get('status')}] {title}"
        f"{': ' + description if description else ''}"
        f" (Priority: {_na(row.get('priority'))}/10, Strategic Value: {_na(row.get('strategic_value'))})"
    )
    return ContextSource(
        id=str(row.get("id", "")),
        kind=SourceKind.TASK,
        title=title,
        content=content,
        relevance=relevance,
        metadata=TaskMetadata(
            task_type=row.get("type"),
            status=row.get("status"),
            priority=row.get("priority"),
            strategic_value=row.get("strategic_value"),
            extra=_passthrough(row, _TASK_FIELDS),
        ),
    )


def journal_source(row: dict[str, Any], relevance: float) -> ContextSource:
    """Render a daily_logs row as a journal source."""
    log_date = row.get("log_date")
    content = (
        f"[{log_date}] Mood: {_na(row.get('mood'))}, "
        f"Energy: {_na(row.get('energy_level'))}/10. \"{row.get('content') or ''}\""
    )
    return ContextSource(
        id=str(row.get("id", "")),
        kind=SourceKind.JOURNAL,
        title=f"Journal: {log_date}",
        content=content,
        relevance=relevance,
        metadata=JournalMetadata(
            log_date=str(log_date) if log_date is not None else None,
            mood=row.get("mood"),
            energy_level=row.get("energy_level"),
            extra=_passthrough(row, _JOURNAL_FIELDS),
        ),
    )


def note_source(row: dict[str, Any], relevance: float) -> ContextSource:
    """Render a knowledge_base row as a note source."""
    return ContextSource(
        id=str(row.get("id", "")),
        kind=SourceKind.NOTE,
        title=row.get("source_title") or "Knowledge Note",
        content=row.get("content_chunk") or "",
        relevance=relevance,
        metadata=NoteMetadata(
            source_title=row.get("source_title"),
            extra=_passthrough(row, _NOTE_FIELDS),
        ),
    )


ROW_RENDERERS = {
    SourceKind.TASK: task_source,
    SourceKind.JOURNAL: journal_source,
    SourceKind.NOTE: note_source,
}


def row_to_source(kind: SourceKind, row: dict[str, Any], relevance: float = 0.0) -> ContextSource:
    return ROW_RENDERERS[kind](row, relevance)


# ============================================================================
# Search
# ============================================================================


def ranked_search(
    kind: SourceKind,
    vector: list[float],
    threshold: float,
    count: int,
    user_id: str | None,
    client: Client | None = None,
) -> list[ContextSource]:
    """
    Run the kind's similarity RPC and normalise the rows.

    Returns rows in the order the RPC ranked them; an empty list when
    nothing clears the threshold.

    Raises:
        Exception: Propagates RPC failures to the caller
    """
    sb = client or get_supabase()
    result = sb.rpc(
        SEARCH_RPCS[kind],
        {
            "query_embedding": vector,
            "match_threshold": threshold,
            "match_count": count,
            "p_user_id": user_id,
        },
    ).execute()

    return [
        row_to_source(kind, row, _clamp_similarity(row.get("similarity")))
        for row in (result.data or [])[:count]
    ]


async def ranked_search_async(
    kind: SourceKind,
    vector: list[float],
    threshold: float,
    count: int,
    user_id: str | None,
) -> list[ContextSource]:
    """Async wrapper around ranked_search using thread pool."""
    return await asyncio.to_thread(ranked_search, kind, vector, threshold, count, user_id)
