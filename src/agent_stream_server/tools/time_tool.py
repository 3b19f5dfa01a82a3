from __future__ import annotations

from datetime import datetime, timedelta, timezone

from langchain_core.tools import tool


@tool
def get_current_time(utc_offset_hours: float = 0.0) -> str:
    """Return the current time as an ISO8601 timestamp.

    Args:
        utc_offset_hours: Offset from UTC in hours, e.g. 2 for UTC+2. Defaults to UTC.
    """

    if not -14 <= utc_offset_hours <= 14:
        raise ValueError("utc_offset_hours must be between -14 and 14")
    return datetime.now(timezone(timedelta(hours=utc_offset_hours))).isoformat()
