"""Chat context assembly: parallel context building ahead of generation.

Request lifecycle: received → context-assembled → generating →
completed | interrupted | failed. The user's turn is recorded right after
``received`` and in parallel with context building, so a question is kept
even when generation later fails outright.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from consultant.core.chat_stream import Exchange, ResponseCoordinator
from consultant.core.config import Settings
from consultant.core.context_assembler import assemble_context, build_system_prompt
from consultant.core.logging import get_logger
from consultant.core.retrieval import RetrievalAggregator
from consultant.core.schemas_chat import (
    SOURCE_KIND_ORDER,
    PersistentObjectiveContext,
    RecentContext,
    RetrievalOutcome,
    RetrievalRequest,
    SourceKind,
    Turn,
    TurnRole,
)
from consultant.core.sessions import SessionManager

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class UserContextLoaders:
    """Async readers for always-on and recency context."""

    objectives: Callable[[str], Awaitable[PersistentObjectiveContext]]
    recent_tasks: Callable[[str, int], Awaitable[list]]
    recent_journal: Callable[[str, int], Awaitable[list]]


@dataclass
class PipelineLimits:
    match_threshold: float = 0.6
    per_kind_counts: dict[SourceKind, int] | None = None
    history_limit: int = 10
    recent_task_limit: int = 10
    recent_journal_limit: int = 7
    max_context_chars: int = 6000
    timeout_seconds: float = 120.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "PipelineLimits":
        return cls(
            match_threshold=settings.RETRIEVAL_MATCH_THRESHOLD,
            per_kind_counts={
                SourceKind.TASK: settings.TASK_MATCH_COUNT,
                SourceKind.JOURNAL: settings.JOURNAL_MATCH_COUNT,
                SourceKind.NOTE: settings.NOTE_MATCH_COUNT,
            },
            history_limit=settings.HISTORY_TURN_LIMIT,
            recent_task_limit=settings.RECENT_TASK_LIMIT,
            recent_journal_limit=settings.RECENT_JOURNAL_LIMIT,
            max_context_chars=settings.MAX_CONTEXT_CHARS,
            timeout_seconds=settings.REQUEST_TIMEOUT_SECONDS,
        )


def build_messages(history: list[Turn], message: str) -> list[dict[str, str]]:
    """
    History plus the new question as alternating user/assistant messages.

    Empty turns are skipped, consecutive same-role turns are merged and a
    leading assistant turn is dropped so the list always opens with the user.
    """
    messages: list[dict[str, str]] = []
    entries = [(turn.role.value, turn.content) for turn in history]
    entries.append((TurnRole.USER.value, message))
    for role, content in entries:
        content = content.strip()
        if not content:
            continue
        if not messages and role != TurnRole.USER.value:
            continue
        if messages and messages[-1]["role"] == role:
            messages[-1]["content"] += "\n\n" + content
        else:
            messages.append({"role": role, "content": content})
    return messages


async def _guarded(label: str, coro: Awaitable[T], fallback: T) -> T:
    """Await optional enrichment; failures degrade to ``fallback``."""
    try:
        return await coro
    except Exception as e:
        logger.warning(f"{label} failed (non-fatal): {e}")
        return fallback


class ChatPipeline:
    """Turns one question into an ``Exchange`` ready for the coordinator."""

    def __init__(
        self,
        sessions: SessionManager,
        aggregator: RetrievalAggregator,
        loaders: UserContextLoaders,
        coordinator: ResponseCoordinator,
        limits: PipelineLimits | None = None,
    ):
        self.sessions = sessions
        self.aggregator = aggregator
        self.loaders = loaders
        self.coordinator = coordinator
        self.limits = limits or PipelineLimits()

    async def prepare(self, user_id: str, message: str, session_id: str | None = None) -> Exchange:
        """
        Resolve the session, record the question and assemble context.

        Every store call runs under the request deadline. Never raises for
        retrieval, recency or persistence failures.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.limits.timeout_seconds

        claimed: str | None = None
        history: list[Turn] = []
        try:
            async with asyncio.timeout_at(deadline):
                claimed = await self.sessions.claim_session(session_id, user_id)
                history = await _guarded(
                    "History load",
                    self.sessions.load_recent_turns(claimed, self.limits.history_limit, user_id),
                    [],
                )
        except TimeoutError:
            logger.warning("Session load hit the request deadline; continuing without history")
        # An unverified id is never reused
        session_id = claimed or self.sessions.resolve_session(None)

        user_turn = Turn(session_id=session_id, user_id=user_id, role=TurnRole.USER, content=message)
        _, (outcome, objectives, recent) = await asyncio.gather(
            self._record_user_turn(user_turn, deadline),
            self._gather_context(user_id, message, deadline),
        )

        assembled = assemble_context(
            objectives,
            recent,
            outcome.sources,
            max_chars=self.limits.max_context_chars,
        )

        logger.info(
            f"Context assembled: history={len(history)} sources={len(assembled.sources)} "
            f"degraded={outcome.degraded} failed_kinds={[k.value for k in outcome.failed_kinds]}",
            extra={"session_id": session_id},
        )

        return Exchange(
            session_id=session_id,
            user_id=user_id,
            system=build_system_prompt(assembled.text),
            messages=build_messages(history, message),
            sources=assembled.sources,
            deadline=deadline,
            degraded=outcome.degraded,
        )

    async def _record_user_turn(self, turn: Turn, deadline: float) -> None:
        """Best-effort write of the question, abandoned at the request deadline."""
        try:
            async with asyncio.timeout_at(deadline):
                await self.sessions.record_turn(turn.session_id, turn)
        except TimeoutError:
            logger.error(
                "Turn persistence failed: user turn write hit the request deadline",
                extra={"session_id": turn.session_id, "user_id": turn.user_id},
            )

    async def _gather_context(
        self,
        user_id: str,
        message: str,
        deadline: float,
    ) -> tuple[RetrievalOutcome, PersistentObjectiveContext, RecentContext]:
        """Retrieval and explicit recency fetches, concurrently, within the deadline."""
        request = RetrievalRequest(
            query_text=message,
            user_id=user_id,
            source_kinds=frozenset(SOURCE_KIND_ORDER),
            match_threshold=self.limits.match_threshold,
            per_kind_counts=self.limits.per_kind_counts or {},
        )

        no_retrieval = RetrievalOutcome(degraded=True)
        no_objectives = PersistentObjectiveContext()
        try:
            async with asyncio.timeout_at(deadline):
                outcome, objectives, tasks, journal = await asyncio.gather(
                    _guarded("Retrieval", self.aggregator.retrieve(request), no_retrieval),
                    _guarded("Objectives load", self.loaders.objectives(user_id), no_objectives),
                    _guarded(
                        "Recent tasks load",
                        self.loaders.recent_tasks(user_id, self.limits.recent_task_limit),
                        [],
                    ),
                    _guarded(
                        "Recent journal load",
                        self.loaders.recent_journal(user_id, self.limits.recent_journal_limit),
                        [],
                    ),
                )
        except TimeoutError:
            logger.warning("Context gathering hit the request deadline; continuing without it")
            outcome, objectives, tasks, journal = no_retrieval, no_objectives, [], []

        return outcome, objectives, RecentContext(recent_tasks=tasks, recent_journal=journal)


def build_chat_pipeline(settings: Settings) -> ChatPipeline:
    """Wire the pipeline to Supabase, OpenAI embeddings and Anthropic completions."""
    from consultant.core.embeddings import embed_text_async
    from consultant.core.fallback_cache import CandidateCache
    from consultant.core.llm import CompletionClient
    from consultant.db import user_context
    from consultant.db.chat_turns import SupabaseTurnStore
    from consultant.db.ranked_search import ranked_search_async

    def _threaded(fn: Callable[..., T]) -> Callable[..., Awaitable[T]]:
        async def call(*args):
            return await asyncio.to_thread(fn, *args)

        return call

    sessions = SessionManager(SupabaseTurnStore())
    candidates = CandidateCache(
        lambda user_id: asyncio.to_thread(
            user_context.load_fallback_candidates, user_id, settings.FALLBACK_CANDIDATE_LIMIT
        ),
        ttl_seconds=settings.FALLBACK_CACHE_TTL_SECONDS,
    )
    aggregator = RetrievalAggregator(
        embed=embed_text_async,
        search=ranked_search_async,
        candidates=candidates,
        top_k=settings.RETRIEVAL_TOP_K,
        fallback_min_relevance=settings.FALLBACK_MIN_RELEVANCE,
    )
    loaders = UserContextLoaders(
        objectives=_threaded(user_context.load_persistent_objective_context),
        recent_tasks=_threaded(user_context.load_recent_tasks),
        recent_journal=_threaded(user_context.load_recent_journal),
    )
    coordinator = ResponseCoordinator(CompletionClient.from_settings(settings), sessions)

    return ChatPipeline(
        sessions=sessions,
        aggregator=aggregator,
        loaders=loaders,
        coordinator=coordinator,
        limits=PipelineLimits.from_settings(settings),
    )
