"""Chat streaming engine: relays completion chunks and records the answer once.

The coordinator yields a pull-based sequence of ``ChatEvent``:
``sources`` → ``token``* → ``done`` | ``error``. Transports (SSE here) adapt it.

Whatever ends the stream (normal completion, caller disconnect, upstream
failure or timeout) the assistant turn is recorded exactly once:
- completed: full text, status=complete, after ``done``
- interrupted: the text relayed so far, status=interrupted, no ``done``
- failed before any output: nothing recorded, one ``error`` event

A deadline hit before the first token is an interruption, not a failure:
an empty interrupted turn is recorded, the same as a caller disconnect.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator, AsyncIterator
from dataclasses import dataclass, field
from typing import Protocol

from consultant.core.errors import GenerationFailedBeforeOutput, GenerationInterrupted
from consultant.core.logging import get_logger, log_with_context
from consultant.core.schemas_chat import (
    ChatEvent,
    ChatResponse,
    ContextSource,
    Turn,
    TurnRole,
    TurnStatus,
)
from consultant.core.sessions import SessionManager

logger = get_logger(__name__)

GENERATION_FAILED_MESSAGE = "Failed to generate a response"


class CompletionBackend(Protocol):
    async def complete(self, messages: list[dict[str, str]], system: str) -> str: ...

    def stream(self, messages: list[dict[str, str]], system: str) -> AsyncIterator[str]: ...


@dataclass
class Exchange:
    """Everything the coordinator needs for one question/answer."""

    session_id: str
    user_id: str | None
    system: str
    messages: list[dict[str, str]]
    sources: list[ContextSource] = field(default_factory=list)
    deadline: float | None = None  # event-loop time
    degraded: bool = False


class TurnRecorder:
    """Accumulates relayed text and persists the assistant turn at most once."""

    def __init__(self, sessions: SessionManager, exchange: Exchange):
        self._sessions = sessions
        self._exchange = exchange
        self._chunks: list[str] = []
        self.recorded_status: TurnStatus | None = None

    def append(self, chunk: str) -> None:
        self._chunks.append(chunk)

    @property
    def text(self) -> str:
        return "".join(self._chunks)

    @property
    def has_output(self) -> bool:
        return bool(self._chunks)

    async def record(self, status: TurnStatus) -> None:
        if self.recorded_status is not None:
            return
        self.recorded_status = status
        turn = Turn(
            session_id=self._exchange.session_id,
            user_id=self._exchange.user_id,
            role=TurnRole.ASSISTANT,
            content=self.text,
            sources=self._exchange.sources,
            status=status,
        )
        await self._sessions.record_turn(self._exchange.session_id, turn)


def _remaining(deadline: float | None) -> float | None:
    if deadline is None:
        return None
    return deadline - asyncio.get_running_loop().time()


async def _close_quietly(chunks: AsyncIterator[str]) -> None:
    aclose = getattr(chunks, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception as e:
        logger.debug(f"Closing completion stream failed: {e}")


class ResponseCoordinator:
    """Drives the completion backend and owns assistant-turn persistence."""

    def __init__(self, completion: CompletionBackend, sessions: SessionManager):
        self._completion = completion
        self._sessions = sessions
        self._finalizers: set[asyncio.Task] = set()

    async def stream_events(self, exchange: Exchange) -> AsyncGenerator[ChatEvent, None]:
        """
        Stream one answer as events.

        Closing the generator early (caller disconnect) or cancelling the
        consuming task records the partial answer as interrupted.
        """
        recorder = TurnRecorder(self._sessions, exchange)
        status: TurnStatus | None = None
        failed_before_output = False

        chunks = self._completion.stream(exchange.messages, exchange.system)
        try:
            try:
                yield ChatEvent.sources(exchange.session_id, exchange.sources)
                while True:
                    try:
                        async with asyncio.timeout(_remaining(exchange.deadline)):
                            chunk = await anext(chunks)
                    except StopAsyncIteration:
                        break
                    if not chunk:
                        continue
                    recorder.append(chunk)
                    yield ChatEvent.token(chunk)
            except Exception as e:
                # A timeout is an interruption even with nothing relayed yet
                if not recorder.has_output and not isinstance(e, TimeoutError):
                    failed_before_output = True
                    logger.error(
                        f"Generation failed before output: {e!r}",
                        extra={"session_id": exchange.session_id},
                    )
                    yield ChatEvent.error(GENERATION_FAILED_MESSAGE)
                    return
                status = TurnStatus.INTERRUPTED
                interrupted = GenerationInterrupted(
                    "timeout" if isinstance(e, TimeoutError) else f"upstream error: {e!r}"
                )
                log_with_context(
                    logger,
                    logging.INFO,
                    str(interrupted),
                    session_id=exchange.session_id,
                    chars=len(recorder.text),
                )
            else:
                status = TurnStatus.COMPLETE
                yield ChatEvent.done(exchange.session_id)
        finally:
            if status is None and not failed_before_output:
                status = TurnStatus.INTERRUPTED
                log_with_context(
                    logger,
                    logging.INFO,
                    str(GenerationInterrupted("caller disconnected")),
                    session_id=exchange.session_id,
                    chars=len(recorder.text),
                )
            await self._finish(chunks, recorder, None if failed_before_output else status)

    async def _finish(
        self,
        chunks: AsyncIterator[str],
        recorder: TurnRecorder,
        status: TurnStatus | None,
    ) -> None:
        """Close upstream and record, in a task that outlives request cancellation."""

        async def finalize() -> None:
            await _close_quietly(chunks)
            if status is not None:
                await recorder.record(status)

        task = asyncio.ensure_future(finalize())
        self._finalizers.add(task)
        task.add_done_callback(self._finalizers.discard)
        await asyncio.shield(task)

    async def complete_once(self, exchange: Exchange) -> ChatResponse:
        """
        Blocking answer for non-interactive callers.

        Raises:
            GenerationFailedBeforeOutput: If the backend fails or times out
        """
        try:
            async with asyncio.timeout(_remaining(exchange.deadline)):
                text = await self._completion.complete(exchange.messages, exchange.system)
        except Exception as e:
            logger.error(
                f"Generation failed before output: {e!r}",
                extra={"session_id": exchange.session_id},
            )
            raise GenerationFailedBeforeOutput(GENERATION_FAILED_MESSAGE) from e

        recorder = TurnRecorder(self._sessions, exchange)
        recorder.append(text)
        await recorder.record(TurnStatus.COMPLETE)

        return ChatResponse(
            response=text,
            session_id=exchange.session_id,
            sources=[s.to_wire() for s in exchange.sources],
        )

    async def drain(self) -> None:
        """Wait for in-flight turn recordings (used on shutdown)."""
        if self._finalizers:
            await asyncio.gather(*self._finalizers, return_exceptions=True)
