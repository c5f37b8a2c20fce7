"""Transcript parsers for VTT and the JSON caption formats YouTube serves."""

from __future__ import annotations

import html
import json
import re
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from src.ingestion.models import TimedTextUnit

# A UTF-8 sequence decoded as Latin-1/CP1252: a lead byte followed by as many
# continuation bytes as it announces, e.g. Korean "안" showing up as "ì•ˆ".
# Accented lowercase letters before a single "»" or "…" are ordinary French.
_CONTINUATION = "[\u0080-¿ŒœŠšŸŽžƒˆ˜–—‘-„†-•…‰‹›€™]"
_MIS_DECODED_RE = re.compile(
    f"[Â-ß]{_CONTINUATION}"
    f"|[à-ï]{_CONTINUATION}{{2}}"
    f"|[ð-ô]{_CONTINUATION}{{3}}"
)


def _parse_vtt_timestamp(ts: str) -> float:
    """Convert a VTT timestamp (HH:MM:SS.mmm) to seconds."""
    parts = ts.strip().split(":")
    if len(parts) == 3:
        hours, minutes, seconds = parts
    elif len(parts) == 2:
        hours = "0"
        minutes, seconds = parts
    else:
        return 0.0
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def parse_vtt(content: str) -> list[TimedTextUnit]:
    """Parse a WebVTT caption file into timed units.

    Inline tags such as ``<c>`` or ``<00:00:01.000>`` karaoke timestamps are
    removed; cue text lines are joined with spaces.
    """
    units: list[TimedTextUnit] = []

    timestamp_re = re.compile(
        r"(\d{1,2}:\d{2}(?::\d{2})?[.,]\d{3})\s*-->\s*(\d{1,2}:\d{2}(?::\d{2})?[.,]\d{3})"
    )
    tag_re = re.compile(r"<[^>]+>")

    lines = content.strip().splitlines()
    i = 0
    while i < len(lines):
        line = lines[i].strip()
        match = timestamp_re.search(line)
        if match:
            start = _parse_vtt_timestamp(match.group(1).replace(",", "."))
            end = _parse_vtt_timestamp(match.group(2).replace(",", "."))

            # Collect text lines until blank line or next timestamp / end
            text_lines: list[str] = []
            i += 1
            while i < len(lines) and lines[i].strip() and not timestamp_re.search(lines[i]):
                text_lines.append(lines[i].strip())
                i += 1

            full_text = html.unescape(tag_re.sub("", " ".join(text_lines))).strip()
            if full_text:
                units.append(
                    TimedTextUnit(text=full_text, start_sec=start, duration_sec=max(0.0, end - start))
                )
        else:
            i += 1

    return units


def _unit_from_plain(seg: Mapping[str, Any]) -> TimedTextUnit:
    return TimedTextUnit(
        text=html.unescape(str(seg.get("text") or "")),
        start_sec=float(seg.get("start") or 0.0),
        duration_sec=float(seg.get("duration") or 0.0),
    )


def _unit_from_renderer(seg: Mapping[str, Any]) -> TimedTextUnit:
    renderer = seg["transcript_segment_renderer"]
    snippet = renderer.get("snippet") or {}
    start_ms = int(renderer.get("start_ms") or 0)
    end_ms = int(renderer.get("end_ms") or start_ms)
    return TimedTextUnit(
        text=html.unescape(str(snippet.get("text") or "")),
        start_sec=start_ms / 1000.0,
        duration_sec=max(0, end_ms - start_ms) / 1000.0,
    )


def units_from_segments(segments: Iterable[Mapping[str, Any]]) -> list[TimedTextUnit]:
    """Convert cached/fetched segment dicts to units.

    Accepts the plain ``{"text", "start", "duration"}`` shape (seconds) and the
    ``transcript_segment_renderer`` shape (string milliseconds).
    """
    units: list[TimedTextUnit] = []
    for seg in segments:
        if "transcript_segment_renderer" in seg:
            units.append(_unit_from_renderer(seg))
        else:
            units.append(_unit_from_plain(seg))
    return units


def parse_srv3(data: Mapping[str, Any]) -> list[TimedTextUnit]:
    """Parse YouTube's srv3/json3 payload (``{"events": [...]}``, milliseconds)."""
    units: list[TimedTextUnit] = []
    for event in data.get("events") or []:
        segs = event.get("segs")
        if not segs:
            continue
        text = "".join(s.get("utf8", "") for s in segs).replace("\n", " ").strip()
        if not text:
            continue
        units.append(
            TimedTextUnit(
                text=html.unescape(text),
                start_sec=(event.get("tStartMs") or 0) / 1000.0,
                duration_sec=(event.get("dDurationMs") or 0) / 1000.0,
            )
        )
    return units


def parse_json(content: str) -> list[TimedTextUnit]:
    """Parse a JSON transcript.

    Supported formats:

    Plain segment list (youtube-transcript-api raw data and our cache files)::

        [{"text": "...", "start": 1.5, "duration": 2.0}]

    srv3 / json3 timed text::

        {"events": [{"tStartMs": 1500, "dDurationMs": 2000, "segs": [{"utf8": "..."}]}]}

    Wrapped segments (renderer or plain)::

        {"segments": [...]}
    """
    data = json.loads(content)

    if isinstance(data, list):
        return units_from_segments(data)
    if "events" in data:
        return parse_srv3(data)
    if "segments" in data:
        return units_from_segments(data["segments"])

    msg = f"Unrecognized JSON transcript format. Keys: {list(data.keys())}"
    raise ValueError(msg)


def parse_transcript(content: str, format: str) -> list[TimedTextUnit]:
    """Dispatch to the correct parser based on *format*.

    Args:
        content: Raw transcript text.
        format: One of ``"vtt"``, ``"json"`` or ``"srv3"``.

    Returns:
        Parsed timed units.

    Raises:
        ValueError: If *format* is not recognized.
    """
    dispatch: dict[str, Callable[[str], list[TimedTextUnit]]] = {
        "vtt": parse_vtt,
        "json": parse_json,
        "srv3": parse_json,
        "json3": parse_json,
    }

    parser = dispatch.get(format)
    if parser is None:
        msg = f"Unknown transcript format: {format!r}. Supported: {list(dispatch.keys())}"
        raise ValueError(msg)

    return parser(content)


def has_mis_decoded_text(units: Iterable[TimedTextUnit]) -> bool:
    """Return True if any unit looks like UTF-8 text decoded with the wrong codec."""
    return any(_MIS_DECODED_RE.search(u.text or "") for u in units)
