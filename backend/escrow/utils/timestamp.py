"""Timestamp parsing utilities."""
from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(s: str) -> datetime:
    """
    Parse a timestamp string into an aware datetime.

    Supports the formats stores hand back:
    - ISO format with "Z" suffix: "2024-01-02T09:10:00Z"
    - ISO format with timezone: "2024-01-02T09:10:00+00:00"
    - ISO format without timezone: "2024-01-02T09:10:00" (assumed UTC)
    - Space-separated: "2024-01-02 09:10:00"

    Raises:
        ValueError: If timestamp cannot be parsed
    """
    if not s:
        raise ValueError("Empty timestamp string")

    s = s.strip()

    # Convert trailing "Z" to "+00:00" for ISO format compatibility
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        if " " in s and "T" not in s:
            dt = datetime.fromisoformat(s.replace(" ", "T", 1))
        else:
            raise ValueError(
                f"Unable to parse timestamp: {s}. Expected ISO format "
                "(e.g., '2024-01-02T09:10:00Z' or '2024-01-02T09:10:00+00:00')"
            )

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def parse_optional_timestamp(value: Optional[str]) -> Optional[datetime]:
    if value is None or value == "":
        return None
    return parse_timestamp(value)
