from __future__ import annotations

import json
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

import typer

from voicestitch.config.settings import Settings
from voicestitch.domain.models import GenerationResult, SubtitleLine
from voicestitch.domain.session import Session
from voicestitch.domain.workspace import Workspace, list_runs
from voicestitch.exceptions import ValidationError, VoiceStitchError
from voicestitch.pipeline import GenerationPipeline, PipelineEvent, run_sync
from voicestitch.services.reconstruction import reconstruct
from voicestitch.subtitles import srt
from voicestitch.subtitles.anomalies import detect_anomalies, normalize_gaps, summarize_anomalies
from voicestitch.subtitles.editing import bulk_shift
from voicestitch.subtitles.timecode import to_text
from voicestitch.utils.audio import detect_silence, read_audio, write_wav
from voicestitch.utils.logging import configure_logging, get_logger
from voicestitch.utils.manifest import load_run_manifest, write_run_manifest
from voicestitch.utils.text import normalize_text
from voicestitch.utils.timing import utc_now

app = typer.Typer(add_completion=False)
log = get_logger(__name__)


@contextmanager
def _cli_errors() -> Iterator[None]:
    try:
        yield
    except VoiceStitchError as exc:
        typer.echo(f"{exc.label()}: {exc.message}", err=True)
        raise typer.Exit(code=exc.exit_code)


@dataclass(frozen=True)
class _WholeTrack:
    """Stands in for a single chunk spanning the whole timeline."""

    index: int
    duration_ms: float


def _resolve_workdir(workdir: str | None) -> Path:
    settings = Settings()
    return Path(workdir or settings.workdir).expanduser().resolve()


def _resolve_run_dir(workdir: Path, run_id: str) -> Path:
    if run_id == "latest":
        runs_list = list_runs(workdir)
        if not runs_list:
            raise typer.BadParameter("No runs found.")
        return runs_list[0]
    return workdir / run_id


def _echo_event(event: PipelineEvent) -> None:
    typer.echo(f"[{event.kind}] {event.message}", err=True)


def _run_generation(
    *,
    settings: Settings,
    script_text: str,
) -> tuple[GenerationResult, GenerationPipeline]:
    session = Session.from_settings(settings, on_event=_echo_event)
    result = run_sync(session.generate(script_text))
    return result, session.pipeline


def _output_path(source: Path, out: Optional[Path], suffix: str) -> Path:
    if out is not None:
        return out
    return source.with_name(f"{source.stem}.{suffix}{source.suffix}")


def _match_by_text(edited: list[SubtitleLine], original: list[SubtitleLine]) -> None:
    """Give each edited line the id of the first unused original line with the same text."""
    unused: dict[str, list[SubtitleLine]] = {}
    for line in original:
        unused.setdefault(normalize_text(line.text), []).append(line)
    for line in edited:
        candidates = unused.get(normalize_text(line.text))
        if candidates:
            line.id = candidates.pop(0).id


@app.command()
def config() -> None:
    """Print resolved config."""
    s = Settings()
    typer.echo(json.dumps(s.to_public_dict(), indent=2))


@app.command()
def generate(
    script: Path = typer.Argument(..., exists=True, dir_okay=False, help="Script text file (one subtitle line per line)."),
    backend: str = typer.Option(None, help="Speech backend: auto, openai, edge, sine (overrides config)."),
    voice: str = typer.Option(None, help="Voice id (overrides config)."),
    speed: float = typer.Option(None, help="Narration speed (overrides config)."),
    style: str = typer.Option(None, help="Narrator style instructions (overrides config)."),
    max_chars: int = typer.Option(None, help="Max characters per chunk (overrides config)."),
    delay_ms: int = typer.Option(None, help="Delay between chunk requests in ms (overrides config)."),
    timing: str = typer.Option(None, help="Timing source: even or transcribe (overrides config)."),
    workdir: str = typer.Option(None, help="Workdir for outputs (overrides config)."),
    log_level: str = typer.Option(None, help="Log level (overrides config)."),
) -> None:
    """Generate narration audio and subtitles for a script."""
    settings = Settings()
    overrides: dict[str, str] = {}
    for name, value in (
        ("speech_backend", backend),
        ("voice", voice),
        ("speed", speed),
        ("style", style),
        ("max_chars_per_chunk", max_chars),
        ("request_delay_ms", delay_ms),
        ("timing_source", timing),
        ("workdir", workdir),
    ):
        if value is not None:
            setattr(settings, name, value)
            overrides[name] = str(value)

    # Configure logging after overrides so we use the final resolved level
    configure_logging(log_level or settings.log_level)

    with _cli_errors():
        script_text = script.read_text(encoding="utf-8")
        started_at = utc_now()
        result, pipeline = _run_generation(settings=settings, script_text=script_text)

        workspace = Workspace.create(settings.workdir)
        workspace.script_txt.write_text(script_text, encoding="utf-8")
        write_wav(workspace.audio_wav, result.track)
        srt.write_srt(workspace.subtitles_srt, result.lines())
        srt.write_srt(workspace.original_srt, result.original_lines())
        write_run_manifest(
            workspace=workspace,
            settings=settings,
            result=result,
            steps=pipeline.timer.steps,
            started_at=started_at,
            finished_at=utc_now(),
            cli_overrides=overrides,
        )

    if result.failed_chunk_indices:
        failed = ", ".join(str(i + 1) for i in result.failed_chunk_indices)
        typer.echo(f"⚠️ Chunks without audio: {failed}", err=True)
    typer.echo(f"✅ Done. run_id={workspace.run_id}")
    typer.echo(f"📦 Output: {workspace.root}")


@app.command()
def shift(
    subtitles: Path = typer.Argument(..., exists=True, dir_okay=False, help="SRT file."),
    ms: int = typer.Option(..., "--ms", help="Offset in milliseconds (negative moves earlier)."),
    out: Path = typer.Option(None, help="Output SRT (default: <name>.shifted.srt)."),
) -> None:
    """Shift every subtitle by a fixed offset (clamped at zero)."""
    with _cli_errors():
        lines = srt.read_srt(subtitles)
        bulk_shift(lines, ms)
        target = srt.write_srt(_output_path(subtitles, out, "shifted"), lines)
    typer.echo(str(target))


@app.command()
def normalize(
    subtitles: Path = typer.Argument(..., exists=True, dir_okay=False, help="SRT file."),
    out: Path = typer.Option(None, help="Output SRT (default: <name>.normalized.srt)."),
) -> None:
    """Push overlapping subtitles forward so no line starts before its predecessor ends."""
    with _cli_errors():
        lines = normalize_gaps(srt.read_srt(subtitles))
        target = srt.write_srt(_output_path(subtitles, out, "normalized"), lines)
    typer.echo(str(target))


@app.command()
def check(
    subtitles: Path = typer.Argument(..., exists=True, dir_okay=False, help="SRT file."),
    audio: Path = typer.Option(None, exists=True, dir_okay=False, help="Audio the subtitles belong to."),
    json_output: bool = typer.Option(False, "--json", help="Output the report as JSON."),
) -> None:
    """Report subtitles with missing audio or suspicious timing."""
    with _cli_errors():
        lines = srt.read_srt(subtitles)
        silences: list[tuple[float, float]] = []
        if audio is not None:
            track = read_audio(audio)
            duration_ms = track.duration_ms
            silences = detect_silence(track)
        else:
            duration_ms = float(max((line.end_ms for line in lines), default=0))
        checked = detect_anomalies(lines, [_WholeTrack(index=0, duration_ms=duration_ms)])

    flagged = [line for line in checked if line.warning_type.value != "none"]
    summary = summarize_anomalies(checked)
    if json_output:
        payload = {
            "summary": summary,
            "silences_ms": [[round(start), round(end)] for start, end in silences],
            "flagged": [
                {
                    "index": line.sequence_index,
                    "start": to_text(line.start_ms),
                    "end": to_text(line.end_ms),
                    "warning": line.warning_type.value,
                    "text": line.text,
                }
                for line in flagged
            ],
        }
        typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))
        return

    typer.echo("index\tstart\tend\twarning\ttext")
    for line in flagged:
        text = line.text.replace("\n", " ")
        typer.echo(
            f"{line.sequence_index}\t{to_text(max(0, line.start_ms))}\t{to_text(max(0, line.end_ms))}\t"
            f"{line.warning_type.value}\t{text}"
        )
    typer.echo(", ".join(f"{k}={v}" for k, v in summary.items()))
    if audio is not None:
        typer.echo(f"silent spans (>= 250 ms): {len(silences)}")


@app.command()
def splice(
    audio: Path = typer.Argument(..., exists=True, dir_okay=False, help="Generated audio."),
    original: Path = typer.Argument(..., exists=True, dir_okay=False, help="SRT produced with the audio."),
    edited: Path = typer.Argument(..., exists=True, dir_okay=False, help="Structurally edited copy of the SRT."),
    out: Path = typer.Option(..., help="Output directory for audio.wav and captions.srt."),
) -> None:
    """Rebuild audio to match an edited SRT by reusing the original line spans."""
    with _cli_errors():
        original_lines = srt.read_srt(original)
        edited_lines = srt.read_srt(edited)
        _match_by_text(edited_lines, original_lines)
        if not edited_lines:
            raise ValidationError(f"{edited} has no subtitle lines.")
        result = reconstruct(read_audio(audio), edited_lines, original_lines)

        out.mkdir(parents=True, exist_ok=True)
        write_wav(out / "audio.wav", result.track)
        srt.write_srt(out / "captions.srt", result.lines())

    typer.echo(f"✅ Spliced {len(result.subtitle_lines)} line(s), {result.duration_ms / 1000.0:.2f} s")
    typer.echo(f"📦 Output: {out}")


@app.command()
def runs(
    workdir: str = typer.Option(None, help="Workdir for outputs (overrides config)."),
    limit: int = typer.Option(5, help="Limit number of runs shown."),
) -> None:
    """List recent runs."""
    root = _resolve_workdir(workdir)
    runs_list = list_runs(root)
    if limit is not None and limit > 0:
        runs_list = runs_list[:limit]

    typer.echo("run_id\tstarted_at\tduration_s\tlines\tfailed_chunks\tpath")
    for run_dir in runs_list:
        manifest = load_run_manifest(run_dir / "run.json")
        if not manifest:
            continue
        started_at = manifest.get("started_at", "n/a")
        duration = manifest.get("duration_seconds_total")
        duration_str = f"{duration:.2f}" if isinstance(duration, (float, int)) else "n/a"
        failed = manifest.get("failed_chunk_indices") or []
        typer.echo(
            f"{run_dir.name}\t{started_at}\t{duration_str}\t{manifest.get('line_count', 'n/a')}\t"
            f"{len(failed)}\t{run_dir}"
        )


@app.command()
def inspect(
    run_id: str = typer.Argument(..., help="Run id or 'latest'."),
    workdir: str = typer.Option(None, help="Workdir for outputs (overrides config)."),
) -> None:
    """Pretty-print run.json for a run."""
    root = _resolve_workdir(workdir)
    run_dir = _resolve_run_dir(root, run_id)

    manifest = load_run_manifest(run_dir / "run.json")
    if manifest is None:
        raise typer.BadParameter(f"run.json not found for run_id '{run_dir.name}'.")
    typer.echo(json.dumps(manifest, indent=2))


def _main() -> None:
    app()


if __name__ == "__main__":
    _main()
