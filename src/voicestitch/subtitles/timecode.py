from __future__ import annotations

import math
import re

from voicestitch.exceptions import FormatError

TIMECODE_RE = re.compile(r"^(\d{2,}):([0-5]\d):([0-5]\d),(\d{3})$")


def to_text(ms: float) -> str:
    """Milliseconds -> "HH:MM:SS,mmm". Negative values keep a leading '-'; clamp before display."""
    total = int(math.floor(ms))
    sign = "-" if total < 0 else ""
    total = abs(total)
    seconds, millis = divmod(total, 1000)
    minutes, secs = divmod(seconds, 60)
    hours, mins = divmod(minutes, 60)
    return f"{sign}{hours:02d}:{mins:02d}:{secs:02d},{millis:03d}"


def to_millis(text: str) -> int:
    match = TIMECODE_RE.match(text.strip())
    if match is None:
        raise FormatError(f"Invalid timecode '{text}'; expected HH:MM:SS,mmm.")
    hours, minutes, seconds, millis = (int(part) for part in match.groups())
    return ((hours * 60 + minutes) * 60 + seconds) * 1000 + millis
