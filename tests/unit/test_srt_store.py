from __future__ import annotations

from pathlib import Path

import pytest

from voicestitch.domain.models import SubtitleLine
from voicestitch.exceptions import ParseError
from voicestitch.subtitles import srt

SAMPLE = (
    "1\n00:00:00,000 --> 00:00:01,000\nHello there\n\n"
    "2\n00:00:01,000 --> 00:00:02,500\nSecond line\nwraps here\n"
)


def test_parse_reads_blocks_in_order() -> None:
    lines = srt.parse(SAMPLE)
    assert [(l.start_ms, l.end_ms) for l in lines] == [(0, 1000), (1000, 2500)]
    assert lines[1].text == "Second line\nwraps here"
    assert [l.sequence_index for l in lines] == [1, 2]
    assert len({l.id for l in lines}) == 2


def test_parse_accepts_crlf_bom_and_extra_blank_lines() -> None:
    text = "\ufeff" + SAMPLE.replace("\n\n", "\n\n\n  \n").replace("\n", "\r\n")
    lines = srt.parse(text)
    assert [l.text for l in lines] == ["Hello there", "Second line\nwraps here"]


def test_parse_renumbers_regardless_of_file_indices() -> None:
    text = "7\n00:00:00,000 --> 00:00:01,000\nA\n\n3\n00:00:01,000 --> 00:00:02,000\nB\n"
    assert [l.sequence_index for l in srt.parse(text)] == [1, 2]


def test_parse_empty_input_gives_no_lines() -> None:
    assert srt.parse("") == []
    assert srt.parse("  \n\n ") == []


@pytest.mark.parametrize(
    "bad_block",
    [
        "x\n00:00:00,000 --> 00:00:01,000\nText",
        "2\n00:00:00,000 00:00:01,000\nText",
        "2\n00:00:00.000 --> 00:00:01,000\nText",
        "2\n00:00:00,000 --> 00:00:01,000",
    ],
)
def test_parse_reports_malformed_block_number(bad_block: str) -> None:
    text = "1\n00:00:00,000 --> 00:00:01,000\nok\n\n" + bad_block + "\n"
    with pytest.raises(ParseError) as excinfo:
        srt.parse(text)
    assert excinfo.value.block_number == 2
    assert "Block 2" in str(excinfo.value)


def test_serialize_renumbers_and_clamps_negative_times() -> None:
    lines = [
        SubtitleLine(start_ms=-200, end_ms=500, text="early", sequence_index=9),
        SubtitleLine(start_ms=500, end_ms=1500, text="next", sequence_index=4),
    ]
    out = srt.serialize(lines)
    assert out == (
        "1\n00:00:00,000 --> 00:00:00,500\nearly\n\n"
        "2\n00:00:00,500 --> 00:00:01,500\nnext"
    )


def test_serialize_then_parse_keeps_timings_and_text() -> None:
    lines = srt.parse(SAMPLE)
    again = srt.parse(srt.serialize(lines))
    assert [(l.start_ms, l.end_ms, l.text) for l in again] == [(l.start_ms, l.end_ms, l.text) for l in lines]


def test_reindex_preserves_order() -> None:
    lines = [SubtitleLine(0, 1, "a", sequence_index=5), SubtitleLine(1, 2, "b", sequence_index=1)]
    srt.reindex(lines)
    assert [(l.text, l.sequence_index) for l in lines] == [("a", 1), ("b", 2)]


def test_write_and_read_srt_files(tmp_path: Path) -> None:
    path = srt.write_srt(tmp_path / "captions.srt", srt.parse(SAMPLE))
    assert path.read_text(encoding="utf-8").endswith("wraps here\n")
    assert [l.text for l in srt.read_srt(path)] == ["Hello there", "Second line\nwraps here"]
