"""Chunking engine for timed transcript units.

The pipeline is normalize -> coalesce -> split oversized -> pack -> post-process.
Every step is pure and deterministic: the same units and budget always produce
the same chunks. Nothing here raises on bad input; degenerate cases fall back to
a single chunk and oversized output is only logged.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from src.ingestion.models import Chunk, TimedTextUnit
from src.pipeline_config import ChunkingBudget

logger = logging.getLogger(__name__)

TokenCounter = Callable[[str], int]

MIN_COALESCED_DURATION_SEC = 0.2
SPLIT_THRESHOLD_RATIO = 0.5
SPLIT_TARGET_RATIO = 0.4
TAIL_MERGE_RATIO = 0.6
OVERSIZE_WARNING_RATIO = 1.5

_BRACKET_NOISE_RE = re.compile(r"\[[^\]]+\]")
_SPEAKER_MARKER_RE = re.compile(r">{2,}")
_WHITESPACE_RE = re.compile(r"\s+")
_SENTENCE_END_RE = re.compile(r"(?<=[.!?])\s+")


@dataclass(frozen=True)
class _Measure:
    """Resolved budgets plus the length function they are expressed in."""

    length_of: Callable[[str], int]
    max_len: int
    overlap_len: int
    min_len: int
    uses_tokens: bool


def _resolve_measure(budget: ChunkingBudget, token_counter: TokenCounter | None) -> _Measure:
    if token_counter is not None and budget.wants_tokens():
        max_len = budget.max_tokens if budget.max_tokens is not None else 900
        overlap = budget.overlap_tokens if budget.overlap_tokens is not None else 180
        min_len = budget.min_tokens if budget.min_tokens is not None else round(budget.min_len / 4)
        return _Measure(token_counter, max_len, min(overlap, max_len), min_len, True)
    return _Measure(len, budget.max_len, min(budget.overlap_len, budget.max_len), budget.min_len, False)


def _collapse(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def clean_text(text: str) -> str:
    """Strip ``[Music]``-style annotations and ``>>`` markers, collapse whitespace."""
    text = _BRACKET_NOISE_RE.sub("", text)
    text = _SPEAKER_MARKER_RE.sub("", text)
    return _collapse(text)


# ---------------------------------------------------------------------------
# Normalize
# ---------------------------------------------------------------------------


def normalize_units(
    units: Sequence[TimedTextUnit],
    drop_unit_under: int = 3,
    clean: bool = True,
) -> list[TimedTextUnit]:
    """Clean each unit's text and drop units shorter than *drop_unit_under* chars.

    Timing is never touched and the original order is kept.
    """
    out: list[TimedTextUnit] = []
    for unit in units:
        text = clean_text(unit.text or "") if clean else (unit.text or "")
        if len(text) >= drop_unit_under:
            out.append(TimedTextUnit(text=text, start_sec=unit.start_sec, duration_sec=unit.duration_sec))
    return out


# ---------------------------------------------------------------------------
# Coalesce
# ---------------------------------------------------------------------------


def _merge_bucket(bucket: Sequence[TimedTextUnit]) -> TimedTextUnit:
    start = bucket[0].start_sec
    end = bucket[-1].end_sec
    return TimedTextUnit(
        text=_collapse(" ".join(u.text for u in bucket)),
        start_sec=start,
        duration_sec=max(MIN_COALESCED_DURATION_SEC, end - start),
    )


def coalesce_units(
    units: Sequence[TimedTextUnit],
    max_gap_sec: float = 0.8,
    min_group_len: int = 40,
) -> list[TimedTextUnit]:
    """Merge runs of short adjacent units into fewer, longer ones.

    A unit joins the open bucket when the silence before it is at most
    *max_gap_sec*, or when the bucket is still shorter than *min_group_len*
    characters regardless of the gap.
    """
    if not units:
        return []

    out: list[TimedTextUnit] = []
    bucket: list[TimedTextUnit] = [units[0]]
    bucket_len = len(units[0].text)

    for unit in units[1:]:
        gap = unit.start_sec - bucket[-1].end_sec
        if gap <= max_gap_sec or bucket_len < min_group_len:
            bucket.append(unit)
            bucket_len += 1 + len(unit.text)
        else:
            out.append(_merge_bucket(bucket))
            bucket = [unit]
            bucket_len = len(unit.text)

    out.append(_merge_bucket(bucket))
    return out


# ---------------------------------------------------------------------------
# Split oversized
# ---------------------------------------------------------------------------


def _wrap_words(text: str, target: float, length_of: Callable[[str], int]) -> list[str]:
    pieces: list[str] = []
    current = ""
    for word in text.split():
        candidate = f"{current} {word}" if current else word
        if current and length_of(candidate) > target:
            pieces.append(current)
            current = word
        else:
            current = candidate
    if current:
        pieces.append(current)
    return pieces


def _split_text(text: str, threshold: float, target: float, length_of: Callable[[str], int]) -> list[str]:
    sentences: list[str] = []
    for sentence in _SENTENCE_END_RE.split(text):
        sentence = sentence.strip()
        if not sentence:
            continue
        # A run-on caption with no punctuation would otherwise stay whole.
        if length_of(sentence) > threshold:
            sentences.extend(_wrap_words(sentence, target, length_of))
        else:
            sentences.append(sentence)

    pieces: list[str] = []
    current = ""
    for sentence in sentences:
        candidate = f"{current} {sentence}" if current else sentence
        if current and length_of(candidate) > target:
            pieces.append(current)
            current = sentence
        else:
            current = candidate
    if current:
        pieces.append(current)
    return pieces


def split_oversized_units(
    units: Sequence[TimedTextUnit],
    max_len: int = 800,
    length_of: Callable[[str], int] = len,
) -> list[TimedTextUnit]:
    """Re-split units longer than half of *max_len* at sentence boundaries.

    Pieces target 40% of *max_len*. The original duration is shared equally
    between the pieces; the last piece takes whatever float rounding left over
    so the durations add back up to the original.
    """
    threshold = max_len * SPLIT_THRESHOLD_RATIO
    target = max_len * SPLIT_TARGET_RATIO

    out: list[TimedTextUnit] = []
    for unit in units:
        if length_of(unit.text) <= threshold:
            out.append(unit)
            continue

        pieces = _split_text(unit.text, threshold, target, length_of)
        if len(pieces) <= 1:
            out.append(unit)
            continue

        share = unit.duration_sec / len(pieces)
        last = len(pieces) - 1
        elapsed = 0.0
        for idx, piece in enumerate(pieces):
            duration = unit.duration_sec - elapsed if idx == last else share
            out.append(TimedTextUnit(text=piece, start_sec=unit.start_sec + idx * share, duration_sec=duration))
            elapsed += duration
    return out


# ---------------------------------------------------------------------------
# Pack
# ---------------------------------------------------------------------------


def _to_chunk(bucket: Sequence[TimedTextUnit]) -> Chunk | None:
    text = " ".join(u.text for u in bucket).strip()
    if not text:
        return None
    return Chunk(text=text, start_time_sec=bucket[0].start_sec, end_time_sec=bucket[-1].end_sec)


def _overlap_tail(
    bucket: Sequence[TimedTextUnit],
    need: int,
    unit_len: Callable[[TimedTextUnit], int],
) -> list[TimedTextUnit]:
    # Always a proper suffix: repeating the whole bucket would re-emit it.
    tail: list[TimedTextUnit] = []
    acc = 0
    for unit in reversed(bucket[1:]):
        if acc >= need:
            break
        tail.insert(0, unit)
        acc += unit_len(unit)
    return tail


def pack_units(
    units: Sequence[TimedTextUnit],
    max_len: int = 800,
    overlap_len: int = 150,
    min_len: int = 400,
    max_duration_sec: float | None = 120.0,
    length_of: Callable[[str], int] = len,
) -> list[Chunk]:
    """Greedily pack units into chunks bounded by length and duration.

    A bucket is only closed once it has reached *min_len*; until then it keeps
    growing even past the budget. Each new bucket starts with an overlap tail of
    roughly *overlap_len* taken from the end of the previous one.
    """

    def unit_len(unit: TimedTextUnit) -> int:
        return length_of(unit.text + " ")

    chunks: list[Chunk] = []
    bucket: list[TimedTextUnit] = []
    bucket_len = 0

    for unit in units:
        u_len = unit_len(unit)
        candidate_len = bucket_len + u_len
        over_budget = candidate_len > max_len
        if bucket and max_duration_sec:
            over_budget = over_budget or unit.end_sec - bucket[0].start_sec > max_duration_sec

        if bucket and over_budget and bucket_len >= max(min_len, 1):
            closed = _to_chunk(bucket)
            if closed is not None:
                chunks.append(closed)
            tail = _overlap_tail(bucket, min(overlap_len, bucket_len), unit_len)
            tail_len = sum(unit_len(u) for u in tail)
            # The tail must leave room for the incoming unit.
            while tail and tail_len + u_len > max_len:
                tail_len -= unit_len(tail.pop(0))
            bucket = [*tail, unit]
            bucket_len = tail_len + u_len
        else:
            bucket.append(unit)
            bucket_len = candidate_len

    if bucket:
        last = _to_chunk(bucket)
        if last is not None:
            chunks.append(last)
    return chunks


# ---------------------------------------------------------------------------
# Post-process
# ---------------------------------------------------------------------------


def _merge_chunks(a: Chunk, b: Chunk) -> Chunk:
    return Chunk(
        text=_collapse(f"{a.text} {b.text}"),
        start_time_sec=a.start_time_sec,
        end_time_sec=max(a.end_time_sec, b.end_time_sec),
    )


def post_process(
    chunks: Sequence[Chunk],
    min_len: int = 400,
    min_duration_sec: float | None = 30.0,
    merge_small_tail: bool = True,
    length_of: Callable[[str], int] = len,
) -> list[Chunk]:
    """Fold a short trailing chunk into its predecessor and enforce a duration floor."""
    out = list(chunks)

    if merge_small_tail and len(out) >= 2:
        if length_of(out[-1].text) < max(round(min_len * TAIL_MERGE_RATIO), 1):
            out[-2:] = [_merge_chunks(out[-2], out[-1])]

    if min_duration_sec:
        i = 0
        while len(out) >= 2 and i < len(out):
            current = out[i]
            if current.duration_sec >= min_duration_sec:
                i += 1
            elif i > 0:
                out[i - 1 : i + 1] = [_merge_chunks(out[i - 1], current)]
                i -= 1
            else:
                out[0:2] = [_merge_chunks(current, out[1])]

    return out


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def chunk(
    units: Sequence[TimedTextUnit],
    budget: ChunkingBudget | None = None,
    token_counter: TokenCounter | None = None,
) -> list[Chunk]:
    """Turn raw timed units into ordered, overlapping retrieval chunks.

    Args:
        units: Raw transcript units in source order.
        budget: Length/duration budget; defaults to :class:`ChunkingBudget`.
        token_counter: Optional tokenizer. Only used when the budget also sets
            at least one token budget.

    Returns:
        Chunks in non-decreasing start-time order. Empty only when every unit
        was dropped as noise.
    """
    budget = budget or ChunkingBudget()
    if not units:
        return []

    measure = _resolve_measure(budget, token_counter)

    normalized = normalize_units(units, budget.drop_unit_under, budget.clean_text)
    if not normalized:
        return []

    prepared = normalized
    if budget.use_coalesce:
        prepared = coalesce_units(prepared, budget.coalesce_max_gap_sec, budget.coalesce_min_group_len)
        prepared = split_oversized_units(prepared, measure.max_len, measure.length_of)

    chunks = pack_units(
        prepared,
        max_len=measure.max_len,
        overlap_len=measure.overlap_len,
        min_len=measure.min_len,
        max_duration_sec=budget.max_duration_sec,
        length_of=measure.length_of,
    )
    chunks = post_process(
        chunks,
        min_len=measure.min_len,
        min_duration_sec=budget.min_duration_sec,
        merge_small_tail=budget.merge_small_tail,
        length_of=measure.length_of,
    )

    if not chunks:
        fallback = _to_chunk(normalized)
        if fallback is not None:
            chunks = [fallback]

    _warn_oversized(chunks, measure)
    return chunks


def _warn_oversized(chunks: Sequence[Chunk], measure: _Measure) -> None:
    limit = measure.max_len * OVERSIZE_WARNING_RATIO
    unit = "tokens" if measure.uses_tokens else "chars"
    for idx, c in enumerate(chunks):
        size = measure.length_of(c.text)
        if size > limit:
            logger.warning(
                "Chunk %d is %d %s (%.1fs - %.1fs), over 1.5x the budget; "
                "consider lowering coalesce_min_group_len",
                idx,
                size,
                unit,
                c.start_time_sec,
                c.end_time_sec,
            )


def make_token_counter(encoding_name: str = "cl100k_base") -> TokenCounter:
    """Build a tiktoken-backed counter for token budgets."""
    import tiktoken

    encoding = tiktoken.get_encoding(encoding_name)

    def count(text: str) -> int:
        return len(encoding.encode(text))

    return count
