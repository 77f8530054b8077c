"""Failure taxonomy for the chat pipeline.

Only ``GenerationFailedBeforeOutput`` ever reaches the caller. The others are
raised and caught inside the pipeline so the degradation can be logged at the
point where it is recovered.
"""

from typing import Any


class ConsultantError(Exception):
    """Base class for chat pipeline failures."""


class RetrievalDegraded(ConsultantError):
    """Embedding or ranked search unavailable; keyword fallback used instead."""


class SourceKindFailure(ConsultantError):
    """A single source kind's ranked search failed and was treated as empty."""

    def __init__(self, kind: Any, cause: BaseException | None = None):
        self.kind = kind
        self.cause = cause
        super().__init__(f"Ranked search failed for {getattr(kind, 'value', kind)}: {cause}")


class GenerationFailedBeforeOutput(ConsultantError):
    """The completion backend failed before producing any text."""


class GenerationInterrupted(ConsultantError):
    """Generation stopped after output began (disconnect, upstream error or timeout)."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Generation interrupted: {reason}")


class PersistenceFailure(ConsultantError):
    """A turn could not be written. Logged, never reported to the caller."""
