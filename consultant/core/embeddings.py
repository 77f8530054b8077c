"""OpenAI embeddings generation with validation."""

import asyncio

from openai import OpenAI

from consultant.core.config import get_settings
from consultant.core.logging import get_logger

logger = get_logger(__name__)


def _get_client() -> OpenAI:
    """Get OpenAI client instance."""
    settings = get_settings()
    return OpenAI(api_key=settings.OPENAI_API_KEY)


def embed_text(text: str) -> list[float]:
    """
    Generate the embedding for one query text using OpenAI.

    Args:
        text: Text to embed

    Returns:
        Embedding vector

    Raises:
        ValueError: If the text is empty or the dimension doesn't match EMBEDDING_DIM
        Exception: If OpenAI API call fails
    """
    if not text.strip():
        raise ValueError("Cannot embed empty text")

    settings = get_settings()
    client = _get_client()

    try:
        response = client.embeddings.create(
            model=settings.EMBEDDING_MODEL,
            input=text,
        )

        embedding = response.data[0].embedding

        # Validate dimension
        if len(embedding) != settings.EMBEDDING_DIM:
            raise ValueError(
                f"Embedding dimension mismatch: "
                f"expected {settings.EMBEDDING_DIM}, got {len(embedding)}"
            )

        logger.debug(f"Generated query embedding using {settings.EMBEDDING_MODEL}")
        return embedding

    except Exception as e:
        logger.error(f"Failed to generate embedding: {e}")
        raise


async def embed_text_async(text: str) -> list[float]:
    """Async wrapper around embed_text using thread pool."""
    return await asyncio.to_thread(embed_text, text)
