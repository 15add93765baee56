from __future__ import annotations

import os
import re
import secrets
import time
import uuid
from pathlib import PurePath

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def generate_uuid7() -> str:
    """
    Generate a UUIDv7 string (time-ordered).

    UUIDv7 layout per draft:
    - 48-bit Unix timestamp in milliseconds
    - 4-bit version (0b0111)
    - 74-bit randomness

    Every table uses this as its primary key default, so ids sort by creation.
    """
    ts_ms = int(time.time() * 1000)
    rand_bytes = os.urandom(10)
    raw = bytearray(ts_ms.to_bytes(6, "big", signed=False) + rand_bytes)
    raw[6] = (raw[6] & 0x0F) | 0x70
    raw[8] = (raw[8] & 0x3F) | 0x80
    return str(uuid.UUID(bytes=bytes(raw)))


def generate_numeric_code(length: int = 6) -> str:
    """Cryptographically random digit string, e.g. a one-time login code."""
    if length < 4:
        raise ValueError("Numeric codes must be at least 4 digits long.")
    return "".join(secrets.choice("0123456789") for _ in range(length))


def unique_filename(original_name: str | None, *, default_stem: str = "file") -> str:
    """
    Build a storage filename that keeps the original stem/extension readable
    but can never collide or escape its folder.

    'Final Report (v2).PDF' -> 'Final_Report_v2_<uuid7-hex>.pdf'
    """
    name = PurePath(original_name or "").name
    suffix = PurePath(name).suffix.lower()
    stem = name[: -len(suffix)] if suffix else name
    stem = _UNSAFE_FILENAME_CHARS.sub("_", stem).strip("._") or default_stem
    if suffix:
        suffix = "." + _UNSAFE_FILENAME_CHARS.sub("", suffix[1:])
    return f"{stem[:80]}_{uuid.UUID(generate_uuid7()).hex}{suffix}"
