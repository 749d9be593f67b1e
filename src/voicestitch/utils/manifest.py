from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from voicestitch.config.settings import Settings
from voicestitch.domain.models import GenerationResult
from voicestitch.domain.workspace import Workspace
from voicestitch.subtitles.anomalies import summarize_anomalies
from voicestitch.utils.timing import StepTiming


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat()


def _file_entry(path: Path) -> dict[str, Any]:
    size = path.stat().st_size if path.exists() else None
    return {"path": str(path), "size_bytes": size}


def _serialize_steps(steps: Iterable[StepTiming]) -> list[dict[str, Any]]:
    serialized = []
    for step in steps:
        serialized.append(
            {
                "name": step.name,
                "started_at": _iso(step.started_at),
                "finished_at": _iso(step.finished_at),
                "duration_s": step.duration_s,
            }
        )
    return serialized


def _chunk_table(result: GenerationResult) -> list[dict[str, Any]]:
    failed = set(result.failed_chunk_indices)
    table = []
    for index, text in enumerate(result.chunk_texts):
        chunk = result.chunk(index)
        table.append(
            {
                "index": index,
                "chars": len(text),
                "status": "failed" if index in failed else ("ok" if chunk is not None else "missing"),
                "duration_ms": round(chunk.duration_ms, 3) if chunk is not None else None,
                "lines": len(chunk.local_cues) if chunk is not None else 0,
            }
        )
    return table


def write_run_manifest(
    *,
    workspace: Workspace,
    settings: Settings,
    result: GenerationResult,
    steps: Iterable[StepTiming],
    started_at: datetime,
    finished_at: datetime,
    cli_overrides: dict[str, str] | None = None,
) -> Path:
    lines = result.lines()
    payload: dict[str, Any] = {
        "run_id": workspace.run_id,
        "result_id": result.id,
        "kind": result.kind.value,
        "started_at": _iso(started_at),
        "finished_at": _iso(finished_at),
        "duration_seconds_total": (finished_at - started_at).total_seconds(),
        "settings_public": settings.to_public_dict(),
        "cli_overrides": cli_overrides or {},
        "steps": _serialize_steps(steps),
        "audio": {
            "sample_rate": result.track.sample_rate,
            "channels": result.track.channels,
            "duration_ms": round(result.track.duration_ms, 3),
        },
        "chunks": _chunk_table(result),
        "failed_chunk_indices": list(result.failed_chunk_indices),
        "line_count": len(lines),
        "anomalies": summarize_anomalies(lines),
        "outputs": {
            "script": _file_entry(workspace.script_txt),
            "audio": _file_entry(workspace.audio_wav),
            "subtitles": _file_entry(workspace.subtitles_srt),
            "subtitles_original": _file_entry(workspace.original_srt),
        },
    }

    out = workspace.run_manifest
    out.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return out


def load_run_manifest(path: Path) -> dict | None:
    if not path.exists():
        return None
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError:
        return None
