from __future__ import annotations

import time
from datetime import datetime, timezone


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def now_ms() -> int:
    """Milliseconds since the epoch, the timestamp unit of persisted step records."""
    return int(time.time() * 1000)
