"""In-memory collaborators for chat pipeline behavioral testing."""

import asyncio
from typing import Any, Dict, List

from consultant.core.schemas_chat import (
    ContextSource,
    JournalMetadata,
    NoteMetadata,
    SourceKind,
    TaskMetadata,
    Turn,
)


class InMemoryTurnStore:
    """Append-only turn storage keyed by session id."""

    def __init__(self, fail_inserts: bool = False):
        self.turns: Dict[str, List[Turn]] = {}
        self.fail_inserts = fail_inserts
        self.insert_calls = 0

    async def load_turns(self, session_id: str, limit: int, user_id: str | None = None) -> List[Turn]:
        turns = sorted(self.turns.get(session_id, []), key=lambda t: (t.created_at, t.seq or 0))
        if user_id is not None:
            turns = [t for t in turns if t.user_id == user_id]
        return turns[-limit:] if limit > 0 else []

    async def session_owner(self, session_id: str) -> str | None:
        turns = sorted(self.turns.get(session_id, []), key=lambda t: (t.created_at, t.seq or 0))
        return turns[0].user_id if turns else None

    async def insert_turn(self, turn: Turn) -> None:
        self.insert_calls += 1
        if self.fail_inserts:
            raise ConnectionError("storage unavailable")
        # Yield to the loop like a real network write would
        await asyncio.sleep(0)
        self.turns.setdefault(turn.session_id, []).append(turn)

    def all_turns(self, session_id: str) -> List[Turn]:
        return list(self.turns.get(session_id, []))


class FakeCompletion:
    """Scripted completion backend.

    ``chunks`` are streamed in order; ``fail_after`` raises after that many
    chunks; ``hang_after`` blocks forever after that many chunks.
    """

    def __init__(
        self,
        chunks: List[str] | None = None,
        fail_after: int | None = None,
        hang_after: int | None = None,
        text: str = "",
        fail_complete: bool = False,
    ):
        self.chunks = chunks or []
        self.fail_after = fail_after
        self.hang_after = hang_after
        self.text = text
        self.fail_complete = fail_complete
        self.stream_calls: List[Dict[str, Any]] = []
        self.closed = False

    async def complete(self, messages, system) -> str:
        self.stream_calls.append({"messages": messages, "system": system})
        if self.fail_complete:
            raise RuntimeError("completion backend down")
        return self.text

    async def stream(self, messages, system):
        self.stream_calls.append({"messages": messages, "system": system})
        try:
            for i, chunk in enumerate(self.chunks):
                if self.fail_after is not None and i == self.fail_after:
                    raise RuntimeError("upstream stream broke")
                if self.hang_after is not None and i == self.hang_after:
                    await asyncio.Event().wait()
                yield chunk
            if self.fail_after is not None and self.fail_after >= len(self.chunks):
                raise RuntimeError("upstream stream broke")
        finally:
            self.closed = True


def make_source(
    kind: SourceKind,
    source_id: str,
    relevance: float,
    content: str | None = None,
    title: str | None = None,
) -> ContextSource:
    metadata = {
        SourceKind.TASK: TaskMetadata(status="doing", priority=7),
        SourceKind.JOURNAL: JournalMetadata(log_date="2026-10-17", mood="good", energy_level=6),
        SourceKind.NOTE: NoteMetadata(source_title="Deep Work"),
    }[kind]
    return ContextSource(
        id=source_id,
        kind=kind,
        title=title or f"{kind.value} {source_id}",
        content=content or f"{kind.value} content {source_id}",
        relevance=relevance,
        metadata=metadata,
    )
