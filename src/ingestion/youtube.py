"""YouTube collaborators: caption fetching and oEmbed metadata."""

from __future__ import annotations

import logging

import httpx
from youtube_transcript_api import (
    CouldNotRetrieveTranscript,
    IpBlocked,
    NoTranscriptFound,
    RequestBlocked,
    TranscriptsDisabled,
    VideoUnavailable,
    YouTubeTranscriptApi,
)

from src.ingestion.models import SourceMetadata, TimedTextUnit
from src.ingestion.parsers import units_from_segments
from src.pipeline.errors import (
    FatalError,
    QuotaExceededError,
    TransientError,
    classify_http_status,
)

logger = logging.getLogger(__name__)

OEMBED_URL = "https://www.youtube.com/oembed"
WATCH_URL = "https://www.youtube.com/watch?v={item_id}"


def fetch_transcript(
    item_id: str,
    language: str,
    api: YouTubeTranscriptApi | None = None,
) -> list[TimedTextUnit] | None:
    """Fetch captions for one video in one language.

    This is the quota-limited call the worker paces.

    Returns:
        The caption units, or None when the video has no captions in
        *language* (or captions are disabled).

    Raises:
        QuotaExceededError: YouTube is blocking requests from this IP.
        FatalError: The video is unavailable.
        TransientError: Any other retrieval failure.
    """
    if not item_id:
        raise FatalError("item_id is required to fetch a transcript")

    api = api or YouTubeTranscriptApi()
    try:
        fetched = api.fetch(item_id, languages=[language])
    except (NoTranscriptFound, TranscriptsDisabled):
        logger.info("No %s transcript for %s", language, item_id)
        return None
    except (RequestBlocked, IpBlocked) as exc:
        raise QuotaExceededError(f"YouTube blocked transcript requests: {type(exc).__name__}") from exc
    except VideoUnavailable as exc:
        raise FatalError(f"Video {item_id} is unavailable") from exc
    except CouldNotRetrieveTranscript as exc:
        raise TransientError(f"Could not retrieve transcript for {item_id}: {type(exc).__name__}") from exc
    except OSError as exc:
        raise TransientError(f"Transcript request for {item_id} failed: {exc}") from exc

    units = units_from_segments(fetched.to_raw_data())
    logger.info("Fetched %d %s transcript units for %s", len(units), language, item_id)
    return units or None


def fetch_source_metadata(
    item_id: str,
    client: httpx.Client | None = None,
    timeout: float = 10.0,
) -> SourceMetadata:
    """Look up title and channel for a video via the public oEmbed endpoint."""
    params = {"url": WATCH_URL.format(item_id=item_id), "format": "json"}
    try:
        if client is not None:
            r = client.get(OEMBED_URL, params=params, timeout=timeout)
        else:
            r = httpx.get(OEMBED_URL, params=params, timeout=timeout)
    except httpx.TransportError as exc:
        raise TransientError(f"oEmbed request for {item_id} failed: {exc}") from exc

    if r.status_code != 200:
        raise classify_http_status(r.status_code, f"oEmbed lookup for {item_id} returned {r.status_code}")

    data = r.json()
    return SourceMetadata(
        item_id=item_id,
        title=data.get("title") or "",
        author_name=data.get("author_name"),
        author_url=data.get("author_url"),
        thumbnail_url=data.get("thumbnail_url"),
        provider_name=data.get("provider_name"),
    )
