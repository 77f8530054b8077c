"""Database reads for always-on user context.

Objectives, focus areas and the query-independent recency window are read
here. Nothing in this module writes.
"""

from typing import Any

from supabase import Client

from consultant.core.schemas_chat import ContextSource, PersistentObjectiveContext, SourceKind
from consultant.db.ranked_search import row_to_source
from consultant.db.supabase_client import get_supabase

ACTIVE_TASK_STATUSES = ["backlog", "doing", "review"]

PRIORITY_LEVEL_ORDER: dict[str, int] = {
    "critical": 0,
    "high": 1,
    "medium": 2,
    "low": 3,
}


def _sort_priorities(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Order by level (critical first), most recently updated first within a level."""
    by_recency = sorted(rows, key=lambda r: r.get("updated_at") or "", reverse=True)
    return sorted(by_recency, key=lambda r: PRIORITY_LEVEL_ORDER.get(r.get("priority_level", ""), 99))


def load_persistent_objective_context(
    user_id: str,
    client: Client | None = None,
) -> PersistentObjectiveContext:
    """
    Load the user's macro goals and active priorities.

    Objectives come from ``profiles.macro_goals`` (one per line); focus areas
    are the titles of active ``priorities`` rows.
    """
    sb = client or get_supabase()

    profile = (
        sb.table("profiles")
        .select("macro_goals")
        .eq("id", user_id)
        .limit(1)
        .execute()
    )
    macro_goals = ""
    if profile.data:
        macro_goals = profile.data[0].get("macro_goals") or ""
    objectives = [line.strip(" -\t") for line in macro_goals.splitlines() if line.strip(" -\t")]

    priorities = (
        sb.table("priorities")
        .select("title, priority_level, updated_at")
        .eq("user_id", user_id)
        .eq("status", "active")
        .execute()
    )
    focus_areas = [
        row["title"] for row in _sort_priorities(priorities.data or []) if row.get("title")
    ]

    return PersistentObjectiveContext(objectives=objectives, focus_areas=focus_areas)


def load_recent_tasks(user_id: str, limit: int, client: Client | None = None) -> list[ContextSource]:
    """Active tasks, highest priority first, then newest."""
    sb = client or get_supabase()
    response = (
        sb.table("opportunities")
        .select("id, title, description, type, status, priority, strategic_value, created_at")
        .eq("user_id", user_id)
        .in_("status", ACTIVE_TASK_STATUSES)
        .order("priority", desc=True)
        .order("created_at", desc=True)
        .limit(limit)
        .execute()
    )
    return [row_to_source(SourceKind.TASK, row) for row in (response.data or [])]


def load_recent_journal(user_id: str, limit: int, client: Client | None = None) -> list[ContextSource]:
    """Most recent journal entries, newest first."""
    sb = client or get_supabase()
    response = (
        sb.table("daily_logs")
        .select("id, log_date, mood, energy_level, content, created_at")
        .eq("user_id", user_id)
        .order("log_date", desc=True)
        .limit(limit)
        .execute()
    )
    return [row_to_source(SourceKind.JOURNAL, row) for row in (response.data or [])]


def load_recent_notes(user_id: str, limit: int, client: Client | None = None) -> list[ContextSource]:
    """Most recently added knowledge-base chunks."""
    sb = client or get_supabase()
    response = (
        sb.table("knowledge_base")
        .select("id, source_title, content_chunk, created_at")
        .eq("user_id", user_id)
        .order("created_at", desc=True)
        .limit(limit)
        .execute()
    )
    return [row_to_source(SourceKind.NOTE, row) for row in (response.data or [])]


def load_fallback_candidates(
    user_id: str,
    limit: int,
    client: Client | None = None,
) -> list[ContextSource]:
    """
    Recent rows across all kinds for keyword scoring in degraded mode.

    Returned in the fixed kind order (tasks, journal, notes) with relevance 0.
    """
    sb = client or get_supabase()
    return [
        *load_recent_tasks(user_id, limit, client=sb),
        *load_recent_journal(user_id, limit, client=sb),
        *load_recent_notes(user_id, limit, client=sb),
    ]
