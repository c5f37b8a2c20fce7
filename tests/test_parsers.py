"""Tests for transcript parsers and mis-decoding detection."""

from __future__ import annotations

import json

import pytest

from src.ingestion.models import TimedTextUnit
from src.ingestion.parsers import (
    has_mis_decoded_text,
    parse_json,
    parse_srv3,
    parse_transcript,
    parse_vtt,
    units_from_segments,
)


class TestVTTParser:
    def test_basic_vtt(self) -> None:
        vtt = """WEBVTT

00:00:01.000 --> 00:00:05.000
Hello everyone, welcome to the channel.

00:00:05.500 --> 00:00:10.000
Today we talk about chunking.
"""
        units = parse_vtt(vtt)
        assert len(units) == 2
        assert units[0].start_sec == 1.0
        assert units[0].duration_sec == 4.0
        assert units[1].end_sec == 10.0
        assert "welcome" in units[0].text

    def test_strips_inline_tags_and_entities(self) -> None:
        vtt = """WEBVTT

00:00:01.000 --> 00:00:03.000
<c>Fish</c><00:00:02.000> &amp; chips
"""
        units = parse_vtt(vtt)
        assert units[0].text == "Fish & chips"

    def test_multiline_cue_and_short_timestamps(self) -> None:
        vtt = """WEBVTT

01:02.500 --> 01:04.000
line one
line two
"""
        units = parse_vtt(vtt)
        assert units[0].text == "line one line two"
        assert units[0].start_sec == 62.5
        assert units[0].duration_sec == pytest.approx(1.5)

    def test_empty_cues_skipped(self) -> None:
        vtt = "WEBVTT\n\n00:00:01.000 --> 00:00:02.000\n<c></c>\n"
        assert parse_vtt(vtt) == []


class TestJSONParser:
    def test_plain_segment_list(self) -> None:
        data = [{"text": "it&#39;s here", "start": 1.5, "duration": 2.0}]
        units = parse_json(json.dumps(data))
        assert units == [TimedTextUnit(text="it's here", start_sec=1.5, duration_sec=2.0)]

    def test_srv3_events_in_milliseconds(self) -> None:
        data = {
            "events": [
                {"tStartMs": 0, "dDurationMs": 1000},
                {"tStartMs": 1500, "dDurationMs": 2000, "segs": [{"utf8": "Hello"}, {"utf8": " world"}]},
                {"tStartMs": 4000, "dDurationMs": 500, "segs": [{"utf8": "\n"}]},
            ]
        }
        units = parse_json(json.dumps(data))
        assert len(units) == 1
        assert units[0].text == "Hello world"
        assert units[0].start_sec == 1.5
        assert units[0].duration_sec == 2.0

    def test_renderer_segments(self) -> None:
        data = {
            "segments": [
                {
                    "transcript_segment_renderer": {
                        "start_ms": "2000",
                        "end_ms": "4500",
                        "snippet": {"text": "안녕하세요"},
                    }
                }
            ]
        }
        units = parse_json(json.dumps(data))
        assert units[0].text == "안녕하세요"
        assert units[0].start_sec == 2.0
        assert units[0].duration_sec == 2.5

    def test_unrecognized_shape_raises(self) -> None:
        with pytest.raises(ValueError, match="Unrecognized JSON transcript format"):
            parse_json(json.dumps({"foo": []}))


class TestSegments:
    def test_missing_fields_default_to_zero(self) -> None:
        units = units_from_segments([{"text": "bare"}])
        assert units[0].start_sec == 0.0
        assert units[0].duration_sec == 0.0

    def test_srv3_without_events(self) -> None:
        assert parse_srv3({}) == []


class TestDispatch:
    def test_dispatches_by_format(self) -> None:
        vtt = "WEBVTT\n\n00:00:01.000 --> 00:00:02.000\nhi there\n"
        assert parse_transcript(vtt, "vtt")[0].text == "hi there"
        payload = json.dumps([{"text": "x y z", "start": 0, "duration": 1}])
        assert parse_transcript(payload, "json")[0].text == "x y z"
        assert parse_transcript(json.dumps({"events": []}), "srv3") == []

    def test_unknown_format_raises(self) -> None:
        with pytest.raises(ValueError, match="Unknown transcript format"):
            parse_transcript("", "docx")


class TestMisDecodedText:
    def test_detects_utf8_read_as_cp1252(self) -> None:
        garbled = "안녕".encode().decode("cp1252", errors="replace")
        assert has_mis_decoded_text([TimedTextUnit(garbled, 0.0, 1.0)])

    def test_detects_latin1_accents(self) -> None:
        assert has_mis_decoded_text([TimedTextUnit("cafÃ© au lait", 0.0, 1.0)])

    def test_clean_text_passes(self) -> None:
        units = [
            TimedTextUnit("안녕하세요 여러분", 0.0, 1.0),
            TimedTextUnit("café — a | b", 1.0, 1.0),
            TimedTextUnit("plain ascii", 2.0, 1.0),
        ]
        assert not has_mis_decoded_text(units)

    @pytest.mark.parametrize("text", ["voilà» dit-il", "un café…", "c'était « là »"])
    def test_french_punctuation_after_accent_passes(self, text: str) -> None:
        assert not has_mis_decoded_text([TimedTextUnit(text, 0.0, 1.0)])
