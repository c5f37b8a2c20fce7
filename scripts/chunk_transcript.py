"""Chunk a local transcript file and print the resulting chunks.

Useful for tuning the chunking budget without touching the pipeline.
"""

import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.config import get_settings
from src.ingestion.chunking import chunk, make_token_counter
from src.ingestion.parsers import parse_transcript
from src.pipeline_config import ChunkingBudget


def chunk_file(path: str, fmt: str | None, use_tokens: bool, as_json: bool) -> None:
    filepath = Path(path)
    fmt = fmt or filepath.suffix.lstrip(".").lower()
    content = filepath.read_text(encoding="utf-8")

    units = parse_transcript(content, fmt)
    budget = ChunkingBudget.from_settings(get_settings())
    token_counter = None
    if use_tokens:
        token_counter = make_token_counter(get_settings().chunk_token_encoding)
        budget = replace(budget, max_tokens=900)

    chunks = chunk(units, budget, token_counter=token_counter)

    if as_json:
        print(
            json.dumps(
                [
                    {"text": c.text, "start": c.start_time_sec, "end": c.end_time_sec}
                    for c in chunks
                ],
                ensure_ascii=False,
                indent=2,
            )
        )
        return

    for i, c in enumerate(chunks):
        print(f"[{i}] {c.start_time_sec:8.2f}s - {c.end_time_sec:8.2f}s ({len(c.text)} chars)")
        print(f"    {c.text[:120]}{'...' if len(c.text) > 120 else ''}")
    print(f"\n{len(units)} units -> {len(chunks)} chunks")


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("path")
    parser.add_argument("--format", default=None, help="vtt, json, srv3 (default: file extension)")
    parser.add_argument("--tokens", action="store_true", help="Budget in tokens via tiktoken")
    parser.add_argument("--json", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    chunk_file(args.path, args.format, args.tokens, args.json)
