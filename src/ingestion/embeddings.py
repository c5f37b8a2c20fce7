"""Embedding helpers using OpenAI text-embedding-3-small."""

from __future__ import annotations

import logging

import openai
from openai import OpenAI

from src.pipeline.errors import FatalError, PipelineError, QuotaExceededError, TransientError

logger = logging.getLogger(__name__)


def _classify_openai_error(exc: openai.OpenAIError) -> PipelineError:
    """Translate an OpenAI SDK exception into a pipeline error variant."""
    if isinstance(exc, openai.RateLimitError):
        # A 429 with insufficient_quota will not clear by waiting a few seconds.
        if getattr(exc, "code", None) == "insufficient_quota":
            return QuotaExceededError(str(exc), status_code=exc.status_code)
        return TransientError(str(exc), status_code=exc.status_code)
    if isinstance(exc, (openai.APITimeoutError, openai.APIConnectionError)):
        return TransientError(str(exc))
    if isinstance(exc, openai.InternalServerError):
        return TransientError(str(exc), status_code=exc.status_code)
    if isinstance(exc, openai.APIStatusError):
        return FatalError(str(exc), status_code=exc.status_code)
    return FatalError(str(exc))


def embed_texts(
    texts: list[str],
    model: str = "text-embedding-3-small",
    client: OpenAI | None = None,
) -> list[list[float]]:
    """Embed a list of texts using the OpenAI embeddings API.

    Args:
        texts: Strings to embed.
        model: OpenAI embedding model name.
        client: Optional preconfigured client; one is built from
            ``OPENAI_API_KEY`` otherwise.

    Returns:
        A list of embedding vectors (one per input text).

    Raises:
        PipelineError: The SDK failure, classified for the retry executor.
    """
    client = client or OpenAI()  # reads OPENAI_API_KEY from env
    try:
        response = client.embeddings.create(input=texts, model=model)
    except openai.OpenAIError as exc:
        raise _classify_openai_error(exc) from exc
    return [item.embedding for item in response.data]


def generate_embedding(
    text: str,
    model: str = "text-embedding-3-small",
    client: OpenAI | None = None,
) -> list[float]:
    """Embed a single chunk of text."""
    if not text.strip():
        raise FatalError("Cannot embed empty text")
    return embed_texts([text], model=model, client=client)[0]
