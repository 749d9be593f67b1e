from __future__ import annotations

import json
from pathlib import Path

import numpy as np
from typer.testing import CliRunner

from voicestitch.cli.main import app
from voicestitch.domain.models import AudioBuffer
from voicestitch.exceptions import ConfigurationError
from voicestitch.subtitles import srt
from voicestitch.utils.audio import read_audio, write_wav

ORIGINAL_SRT = (
    "1\n00:00:00,000 --> 00:00:01,000\nAlpha\n\n"
    "2\n00:00:01,000 --> 00:00:02,000\nBravo\n\n"
    "3\n00:00:02,000 --> 00:00:03,000\nCharlie\n"
)


def _write(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


def test_config_prints_public_settings(monkeypatch) -> None:
    monkeypatch.setenv("VOICESTITCH_VOICE", "nova")
    result = CliRunner().invoke(app, ["config"])
    assert result.exit_code == 0
    payload = json.loads(result.output)
    assert payload["voice"] == "nova"
    assert payload["max_chars_per_chunk"] == 3000


def test_generate_offline_writes_workspace(tmp_path: Path) -> None:
    script = _write(tmp_path / "script.txt", "Hello there.\nThis is the second line.\nAnd a third.\n")
    workdir = tmp_path / ".voicestitch"

    runner = CliRunner(mix_stderr=False)
    result = runner.invoke(
        app,
        ["generate", str(script), "--backend", "sine", "--delay-ms", "0", "--workdir", str(workdir)],
    )

    assert result.exit_code == 0, result.stderr
    assert "Done. run_id=" in result.stdout
    run_dir = next(p for p in workdir.iterdir() if p.is_dir())
    for name in ("audio.wav", "captions.srt", "captions.original.srt", "script.txt", "run.json"):
        assert (run_dir / name).exists(), name

    lines = srt.read_srt(run_dir / "captions.srt")
    assert [l.text for l in lines] == ["Hello there.", "This is the second line.", "And a third."]
    audio = read_audio(run_dir / "audio.wav")
    assert lines[-1].end_ms <= audio.duration_ms + 1
    manifest = json.loads((run_dir / "run.json").read_text(encoding="utf-8"))
    assert manifest["line_count"] == 3
    assert manifest["cli_overrides"]["speech_backend"] == "sine"


def test_generate_reports_config_error(monkeypatch, tmp_path: Path) -> None:
    import voicestitch.cli.main as cli_main

    def fake_run_generation(*_args, **_kwargs):  # noqa: ANN001
        raise ConfigurationError("bad config value")

    monkeypatch.setattr(cli_main, "_run_generation", fake_run_generation)
    script = _write(tmp_path / "script.txt", "hi\n")

    runner = CliRunner(mix_stderr=False)
    result = runner.invoke(app, ["generate", str(script), "--workdir", str(tmp_path / "w")])

    assert result.exit_code == 2
    assert "Configuration error: bad config value" in result.stderr


def test_generate_rejects_unknown_backend(tmp_path: Path) -> None:
    script = _write(tmp_path / "script.txt", "hi\n")
    runner = CliRunner(mix_stderr=False)
    result = runner.invoke(app, ["generate", str(script), "--backend", "nope", "--workdir", str(tmp_path / "w")])
    assert result.exit_code == 2
    assert "Unknown speech backend" in result.stderr


def test_shift_clamps_at_zero(tmp_path: Path) -> None:
    source = _write(tmp_path / "in.srt", ORIGINAL_SRT)
    out = tmp_path / "out.srt"
    result = CliRunner().invoke(app, ["shift", str(source), "--ms", "-1500", "--out", str(out)])
    assert result.exit_code == 0
    assert [(l.start_ms, l.end_ms) for l in srt.read_srt(out)] == [(0, 0), (0, 500), (500, 1500)]


def test_normalize_default_output_name(tmp_path: Path) -> None:
    source = _write(
        tmp_path / "cap.srt",
        "1\n00:00:00,000 --> 00:00:01,000\nA\n\n2\n00:00:00,900 --> 00:00:01,900\nB\n",
    )
    result = CliRunner().invoke(app, ["normalize", str(source)])
    assert result.exit_code == 0
    out = tmp_path / "cap.normalized.srt"
    assert [(l.start_ms, l.end_ms) for l in srt.read_srt(out)] == [(0, 1000), (1000, 2000)]


def test_check_reports_flagged_lines(tmp_path: Path) -> None:
    source = _write(
        tmp_path / "cap.srt",
        "1\n00:00:00,000 --> 00:00:01,000\nfine\n\n"
        "2\n00:00:01,000 --> 00:00:01,020\ntoo short\n\n"
        "3\n00:00:05,000 --> 00:00:06,000\nafter audio\n",
    )
    audio = tmp_path / "a.wav"
    write_wav(audio, AudioBuffer(np.zeros(24000 * 2, dtype=np.float32), 24000))

    result = CliRunner().invoke(app, ["check", str(source), "--audio", str(audio), "--json"])

    assert result.exit_code == 0
    payload = json.loads(result.output)
    assert payload["summary"] == {"none": 1, "no_audio": 1, "suspicious_timecode": 1}
    assert [f["index"] for f in payload["flagged"]] == [2, 3]
    assert payload["silences_ms"] == [[0, 2000]]


def test_check_reports_parse_errors_as_input_errors(tmp_path: Path) -> None:
    source = _write(tmp_path / "bad.srt", "1\n00:00:00,000 --> 00:00:01,000\nok\n\n2\nno arrow here\ntext\n")
    runner = CliRunner(mix_stderr=False)
    result = runner.invoke(app, ["check", str(source)])
    assert result.exit_code == 4
    assert "Input error: Block 2" in result.stderr


def test_splice_rebuilds_audio_from_edited_srt(tmp_path: Path) -> None:
    levels = [0.1, 0.2, 0.3]
    samples = np.concatenate([np.full(24000, v, dtype=np.float32) for v in levels])
    audio = tmp_path / "audio.wav"
    write_wav(audio, AudioBuffer(samples, 24000))
    original = _write(tmp_path / "orig.srt", ORIGINAL_SRT)
    edited = _write(
        tmp_path / "edit.srt",
        "1\n00:00:00,000 --> 00:00:01,000\nCharlie\n\n2\n00:00:01,000 --> 00:00:02,000\nAlpha\n",
    )
    out = tmp_path / "spliced"

    result = CliRunner().invoke(app, ["splice", str(audio), str(original), str(edited), "--out", str(out)])

    assert result.exit_code == 0, result.output
    lines = srt.read_srt(out / "captions.srt")
    assert [(l.text, l.start_ms, l.end_ms) for l in lines] == [("Charlie", 0, 1000), ("Alpha", 1000, 2000)]
    rebuilt = read_audio(out / "audio.wav")
    assert rebuilt.frames == 48000
    assert abs(float(rebuilt.samples[0, 0]) - 0.3) < 1e-3


def test_splice_with_no_matching_lines_fails(tmp_path: Path) -> None:
    audio = tmp_path / "audio.wav"
    write_wav(audio, AudioBuffer(np.zeros(24000, dtype=np.float32), 24000))
    original = _write(tmp_path / "orig.srt", ORIGINAL_SRT)
    edited = _write(tmp_path / "edit.srt", "1\n00:00:00,000 --> 00:00:01,000\nSomething new\n")

    runner = CliRunner(mix_stderr=False)
    result = runner.invoke(app, ["splice", str(audio), str(original), str(edited), "--out", str(tmp_path / "o")])

    assert result.exit_code == 1
    assert "Runtime error: Reconstruction produced no audio" in result.stderr


def test_runs_and_inspect_latest(tmp_path: Path) -> None:
    script = _write(tmp_path / "script.txt", "One line only.\n")
    workdir = tmp_path / ".voicestitch"
    runner = CliRunner(mix_stderr=False)
    generated = runner.invoke(
        app,
        ["generate", str(script), "--backend", "sine", "--delay-ms", "0", "--workdir", str(workdir)],
    )
    assert generated.exit_code == 0, generated.stderr

    listed = runner.invoke(app, ["runs", "--workdir", str(workdir)])
    assert listed.exit_code == 0
    rows = listed.stdout.strip().splitlines()
    assert rows[0].startswith("run_id\tstarted_at")
    assert len(rows) == 2

    inspected = runner.invoke(app, ["inspect", "latest", "--workdir", str(workdir)])
    assert inspected.exit_code == 0
    assert json.loads(inspected.stdout)["line_count"] == 1


def test_inspect_without_runs_is_rejected(tmp_path: Path) -> None:
    result = CliRunner().invoke(app, ["inspect", "latest", "--workdir", str(tmp_path)])
    assert result.exit_code != 0
