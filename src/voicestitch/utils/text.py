from __future__ import annotations

import uuid


def normalize_text(text: str) -> str:
    return " ".join(text.split()).strip()


def new_id() -> str:
    return uuid.uuid4().hex[:12]


def non_empty_lines(text: str) -> list[str]:
    return [line.strip() for line in text.replace("\r\n", "\n").split("\n") if line.strip()]
