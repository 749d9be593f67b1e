from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from voicestitch.utils.text import new_id


@dataclass(frozen=True)
class Workspace:
    root: Path
    run_id: str

    @classmethod
    def create(cls, workdir: str | Path, run_id: str | None = None) -> "Workspace":
        rid = run_id or new_id()
        root = Path(workdir).expanduser().resolve() / rid
        root.mkdir(parents=True, exist_ok=True)
        return cls(root=root, run_id=rid)

    def path(self, name: str) -> Path:
        p = self.root / name
        p.parent.mkdir(parents=True, exist_ok=True)
        return p

    @property
    def script_txt(self) -> Path:
        return self.path("script.txt")

    @property
    def audio_wav(self) -> Path:
        return self.path("audio.wav")

    @property
    def subtitles_srt(self) -> Path:
        return self.path("captions.srt")

    @property
    def original_srt(self) -> Path:
        return self.path("captions.original.srt")

    @property
    def run_manifest(self) -> Path:
        return self.path("run.json")


def list_runs(workdir: str | Path) -> list[Path]:
    """Run directories that hold a manifest, newest first."""
    base = Path(workdir).expanduser().resolve()
    if not base.exists():
        return []
    runs = [p for p in base.iterdir() if p.is_dir() and (p / "run.json").exists()]
    return sorted(runs, key=lambda p: (p / "run.json").stat().st_mtime, reverse=True)
