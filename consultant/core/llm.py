"""Anthropic completion client for chat answers."""

from collections.abc import AsyncIterator

from anthropic import AsyncAnthropic

from consultant.core.config import Settings


class CompletionClient:
    """Thin wrapper over AsyncAnthropic for blocking and streaming answers.

    ``messages`` are user/assistant dicts; the system prompt travels
    separately, as the Messages API expects.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._client = AsyncAnthropic(api_key=api_key)

    @classmethod
    def from_settings(cls, settings: Settings) -> "CompletionClient":
        return cls(
            api_key=settings.ANTHROPIC_API_KEY or "",
            model=settings.CHAT_MODEL,
            max_tokens=settings.CHAT_MAX_TOKENS,
            temperature=settings.CHAT_TEMPERATURE,
        )

    async def complete(self, messages: list[dict[str, str]], system: str) -> str:
        """Single blocking completion; returns the concatenated text blocks."""
        response = await self._client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            system=system,
            messages=messages,
        )
        return "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )

    async def stream(self, messages: list[dict[str, str]], system: str) -> AsyncIterator[str]:
        """Yield text chunks as the model produces them."""
        async with self._client.messages.stream(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            system=system,
            messages=messages,
        ) as stream:
            async for event in stream:
                if getattr(event, "type", None) != "content_block_delta":
                    continue
                text = getattr(event.delta, "text", None)
                if text:
                    yield text
