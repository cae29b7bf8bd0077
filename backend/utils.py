"""
Shared utility functions.
"""
import time
import uuid


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def unique_suffix() -> str:
    """Timestamp plus a short random tail, safe under rapid repeated calls."""
    return f"{now_ms()}-{uuid.uuid4().hex[:6]}"
