"""Pydantic schemas for retrieval, sessions and the chat wire protocol."""

import json
import math
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# ============================================================================
# Enums
# ============================================================================


class SourceKind(str, Enum):
    """Kind of user data a context source was retrieved from.

    Declaration order is the fixed iteration order used for fan-out and
    for breaking relevance ties.
    """
    TASK = "task"          # Opportunities: tasks, goals, insights
    JOURNAL = "journal"    # Daily logs with mood and energy
    NOTE = "note"          # Knowledge base chunks


SOURCE_KIND_ORDER: tuple[SourceKind, ...] = tuple(SourceKind)


class TurnRole(str, Enum):
    """Who authored a turn."""
    USER = "user"
    ASSISTANT = "assistant"


class TurnStatus(str, Enum):
    """Final state of a turn, fixed at persistence time."""
    COMPLETE = "complete"
    INTERRUPTED = "interrupted"


# ============================================================================
# Source metadata (tagged by kind)
# ============================================================================


class TaskMetadata(BaseModel):
    """Fields carried by task sources."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["task"] = "task"
    task_type: str | None = None
    status: str | None = None
    priority: float | None = None
    strategic_value: float | None = None
    extra: dict[str, Any] = Field(default_factory=dict)


class JournalMetadata(BaseModel):
    """Fields carried by journal sources."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["journal"] = "journal"
    log_date: str | None = None
    mood: str | None = None
    energy_level: float | None = None
    extra: dict[str, Any] = Field(default_factory=dict)


class NoteMetadata(BaseModel):
    """Fields carried by knowledge-note sources."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["note"] = "note"
    source_title: str | None = None
    extra: dict[str, Any] = Field(default_factory=dict)


SourceMetadata = Annotated[
    Union[TaskMetadata, JournalMetadata, NoteMetadata],
    Field(discriminator="kind"),
]


# ============================================================================
# Retrieval
# ============================================================================


class ContextSource(BaseModel):
    """One retrieved fragment of user data with its relevance score."""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: SourceKind
    title: str
    content: str
    relevance: float
    metadata: SourceMetadata | None = None

    @field_validator("relevance")
    @classmethod
    def _relevance_in_unit_interval(cls, value: float) -> float:
        if not math.isfinite(value) or value < 0.0 or value > 1.0:
            raise ValueError(f"relevance must be a finite number in [0, 1], got {value!r}")
        return value

    @model_validator(mode="after")
    def _metadata_matches_kind(self) -> "ContextSource":
        if self.metadata is not None and self.metadata.kind != self.kind.value:
            raise ValueError(
                f"metadata kind {self.metadata.kind!r} does not match source kind {self.kind.value!r}"
            )
        return self

    def with_relevance(self, relevance: float) -> "ContextSource":
        """Return a copy scored with a new relevance (validated)."""
        return ContextSource.model_validate({**self.model_dump(), "relevance": relevance})

    def to_wire(self) -> dict[str, Any]:
        """Serialize for clients and persisted turns (relevance to two decimals)."""
        data = self.model_dump(mode="json")
        data["relevance"] = round(self.relevance, 2)
        return data


class RetrievalRequest(BaseModel):
    """Parameters for one aggregated retrieval."""

    query_text: str
    user_id: str | None = None
    source_kinds: frozenset[SourceKind] = frozenset(SOURCE_KIND_ORDER)
    match_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    match_count: int = Field(default=5, gt=0)
    # Optional per-kind overrides of match_count
    per_kind_counts: dict[SourceKind, int] = Field(default_factory=dict)

    @field_validator("per_kind_counts")
    @classmethod
    def _positive_counts(cls, value: dict[SourceKind, int]) -> dict[SourceKind, int]:
        for kind, count in value.items():
            if count <= 0:
                raise ValueError(f"match count for {kind.value} must be positive")
        return value

    def ordered_kinds(self) -> list[SourceKind]:
        """Requested kinds in the fixed iteration order."""
        return [kind for kind in SOURCE_KIND_ORDER if kind in self.source_kinds]

    def count_for(self, kind: SourceKind) -> int:
        return self.per_kind_counts.get(kind, self.match_count)


class RetrievalOutcome(BaseModel):
    """Merged, ranked and truncated retrieval result."""

    sources: list[ContextSource] = Field(default_factory=list)
    degraded: bool = False
    failed_kinds: list[SourceKind] = Field(default_factory=list)


# ============================================================================
# Sessions and turns
# ============================================================================


class Turn(BaseModel):
    """One message within a session. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    role: TurnRole
    content: str
    user_id: str | None = None
    sources: list[ContextSource] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    status: TurnStatus = TurnStatus.COMPLETE
    seq: int | None = None

    def to_record(self) -> dict[str, Any]:
        """Row shape for the chat_history table."""
        return {
            "user_id": self.user_id,
            "session_id": self.session_id,
            "role": self.role.value,
            "content": self.content,
            "sources": [s.to_wire() for s in self.sources],
            "status": self.status.value,
            "seq": self.seq,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_record(cls, row: dict[str, Any]) -> "Turn":
        return cls(
            session_id=row["session_id"],
            role=TurnRole(row["role"]),
            content=row.get("content") or "",
            user_id=row.get("user_id"),
            sources=[ContextSource.model_validate(s) for s in row.get("sources") or []],
            created_at=row["created_at"],
            status=TurnStatus(row.get("status") or TurnStatus.COMPLETE.value),
            seq=row.get("seq"),
        )


class PersistentObjectiveContext(BaseModel):
    """User-owned objectives and focus areas, read-only to this service."""

    objectives: list[str] = Field(default_factory=list)
    focus_areas: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.objectives and not self.focus_areas


class RecentContext(BaseModel):
    """Explicitly fetched recent items, independent of the query."""

    recent_tasks: list[ContextSource] = Field(default_factory=list)
    recent_journal: list[ContextSource] = Field(default_factory=list)


# ============================================================================
# HTTP request / response
# ============================================================================


class ChatRequest(BaseModel):
    """Request to chat with the consultant."""

    model_config = ConfigDict(populate_by_name=True)

    message: str
    session_id: str | None = Field(default=None, alias="sessionId")
    stream: bool = True


class ChatResponse(BaseModel):
    """Non-streaming chat answer."""

    model_config = ConfigDict(populate_by_name=True)

    response: str
    session_id: str = Field(alias="sessionId")
    sources: list[dict[str, Any]] = Field(default_factory=list)


# ============================================================================
# Streaming events
# ============================================================================


EventName = Literal["sources", "token", "done", "error"]


class ChatEvent(BaseModel):
    """One named event in a chat stream: sources, token*, then done or error."""

    model_config = ConfigDict(frozen=True)

    event: EventName
    data: dict[str, Any]

    @classmethod
    def sources(cls, session_id: str, sources: list[ContextSource]) -> "ChatEvent":
        return cls(
            event="sources",
            data={"sessionId": session_id, "sources": [s.to_wire() for s in sources]},
        )

    @classmethod
    def token(cls, text: str) -> "ChatEvent":
        return cls(event="token", data={"token": text})

    @classmethod
    def done(cls, session_id: str) -> "ChatEvent":
        return cls(event="done", data={"sessionId": session_id})

    @classmethod
    def error(cls, message: str) -> "ChatEvent":
        return cls(event="error", data={"error": message})

    def to_sse(self) -> str:
        """Frame as a server-sent event terminated by a blank line."""
        return f"event: {self.event}\ndata: {json.dumps(self.data)}\n\n"
