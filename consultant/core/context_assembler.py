"""Prompt-context assembly with a fixed section order and a size cap.

Sections, in order:
1. Persistent objectives and focus areas (always kept verbatim)
2. Recent journal entries and active tasks (query-independent)
3. Ranked sources from retrieval, with kind tag and two-decimal relevance

When the cap is exceeded, ranked sources are dropped lowest-relevance first,
then recent items oldest/lowest-priority first. Objectives are never cut.
"""

from dataclasses import dataclass, field

from consultant.core.logging import get_logger
from consultant.core.schemas_chat import (
    ContextSource,
    PersistentObjectiveContext,
    RecentContext,
)

logger = get_logger(__name__)

DEFAULT_MAX_CONTEXT_CHARS = 6000

SECTION_SEPARATOR = "\n\n"

NO_RANKED_CONTEXT = "No directly relevant context found in your data for this query."

SYSTEM_PROMPT = """You are a Strategic Life Consultant AI assistant embedded in a "Life Operating System" app.

You have access to the user's:
- Opportunities (tasks, goals, insights) with priorities and strategic values
- Daily journal logs with mood and energy data
- Knowledge base (book summaries, notes)

Your role is to:
1. Help the user make better decisions about what to prioritize
2. Identify patterns in their data (energy, productivity, mood)
3. Provide actionable advice based on their goals and history
4. Be encouraging but honest about areas needing attention

When responding:
- Reference specific items from the context when relevant
- Be concise but insightful
- Frame suggestions in terms of strategic value and goal alignment
- If you don't have enough context, say so and ask clarifying questions

Current context from user's data will be provided below."""


@dataclass
class AssembledContext:
    """Assembled prompt context plus the ranked sources that made the cut."""

    text: str
    sources: list[ContextSource] = field(default_factory=list)
    dropped_sources: int = 0
    dropped_recent: int = 0


# ============================================================================
# Section builders
# ============================================================================


def build_objectives_section(objectives: PersistentObjectiveContext) -> str:
    """Objectives and focus areas, or an empty string when both are empty."""
    if objectives.is_empty:
        return ""

    lines: list[str] = []
    if objectives.objectives:
        lines.append("User objectives:")
        lines.extend(f"- {item}" for item in objectives.objectives)
    if objectives.focus_areas:
        if lines:
            lines.append("")
        lines.append("Current focus areas:")
        lines.extend(f"- {item}" for item in objectives.focus_areas)
    return "\n".join(lines)


def build_recent_section(recent_tasks: list[ContextSource], recent_journal: list[ContextSource]) -> str:
    if not recent_tasks and not recent_journal:
        return ""

    lines: list[str] = []
    if recent_tasks:
        lines.append("Active tasks:")
        lines.extend(f"- {task.content}" for task in recent_tasks)
    if recent_journal:
        if lines:
            lines.append("")
        lines.append("Recent journal entries:")
        lines.extend(f"- {entry.content}" for entry in recent_journal)
    return "\n".join(lines)


def build_ranked_section(sources: list[ContextSource]) -> str:
    if not sources:
        return NO_RANKED_CONTEXT

    lines = ["Relevant context from your data:"]
    for i, source in enumerate(sources, start=1):
        lines.append(f"{i}. [{source.kind.value}] {source.content} (relevance {source.relevance:.2f})")
    return "\n".join(lines)


def _join(*sections: str) -> str:
    return SECTION_SEPARATOR.join(s for s in sections if s)


# ============================================================================
# Assembly
# ============================================================================


def assemble_context(
    objectives: PersistentObjectiveContext,
    recent: RecentContext,
    ranked: list[ContextSource],
    max_chars: int = DEFAULT_MAX_CONTEXT_CHARS,
) -> AssembledContext:
    """
    Build the bounded context string.

    Args:
        objectives: Always-on objectives and focus areas
        recent: Explicit recency window (tasks and journal)
        ranked: Retrieval output, best first
        max_chars: Cap on the assembled size

    Returns:
        AssembledContext with the text and the ranked sources kept
    """
    head = build_objectives_section(objectives)
    tasks = list(recent.recent_tasks)
    journal = list(recent.recent_journal)
    kept = sorted(ranked, key=lambda s: s.relevance, reverse=True)
    had_ranked = bool(kept)

    def render() -> str:
        ranked_section = build_ranked_section(kept) if (kept or not had_ranked) else ""
        return _join(head, build_recent_section(tasks, journal), ranked_section)

    text = render()
    dropped_sources = 0
    dropped_recent = 0

    # Lowest-relevance ranked sources go first
    while len(text) > max_chars and kept:
        kept.pop()
        dropped_sources += 1
        text = render()

    # Then the tail of the recency window, alternating the longer list
    while len(text) > max_chars and (tasks or journal):
        if len(journal) >= len(tasks):
            journal.pop()
        else:
            tasks.pop()
        dropped_recent += 1
        text = render()

    if dropped_sources or dropped_recent:
        logger.info(
            f"Context capped at {max_chars} chars: dropped {dropped_sources} ranked sources, "
            f"{dropped_recent} recent items"
        )
    if len(text) > max_chars:
        logger.warning(f"Objectives alone exceed context cap ({len(text)} > {max_chars} chars)")

    return AssembledContext(
        text=text,
        sources=kept,
        dropped_sources=dropped_sources,
        dropped_recent=dropped_recent,
    )


def assemble(
    objectives: PersistentObjectiveContext,
    recent: RecentContext,
    ranked: list[ContextSource],
    max_chars: int = DEFAULT_MAX_CONTEXT_CHARS,
) -> str:
    """Assembled context string only."""
    return assemble_context(objectives, recent, ranked, max_chars).text


def build_system_prompt(context_text: str) -> str:
    """Static consultant instructions followed by the assembled context."""
    return _join(SYSTEM_PROMPT, context_text)
