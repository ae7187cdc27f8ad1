from __future__ import annotations

import os
import time
import uuid

from sqlalchemy.orm import Session


def generate_uuid7() -> str:
    """
    Generate a UUIDv7 string (time-ordered).

    Layout: 48-bit Unix timestamp in milliseconds, 4-bit version,
    74 bits of randomness.
    """
    ts_ms = int(time.time() * 1000)
    raw = bytearray(ts_ms.to_bytes(6, "big", signed=False) + os.urandom(10))
    raw[6] = (raw[6] & 0x0F) | 0x70
    raw[8] = (raw[8] & 0x3F) | 0x80
    return str(uuid.UUID(bytes=bytes(raw)))


def next_sequence_number(db: Session, column, *criteria, prefix: str, width: int) -> str:
    """
    Return the next human-facing number for `prefix` within `criteria`.

    Examples: `sms07`, `AUD-2025-0012`, `F-003`, `CA-001`.
    The highest numeric suffix already in use wins, so gaps left by
    deletions are never reused.
    """
    rows = db.query(column).filter(*criteria, column.like(f"{prefix}%")).all()
    highest = 0
    for (value,) in rows:
        suffix = (value or "")[len(prefix):]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return f"{prefix}{highest + 1:0{width}d}"
