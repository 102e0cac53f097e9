# utils/time.py
from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def parse_duration(value) -> float:
    """Seconds from a number or a "250ms" / "30s" / "5m" / "1h" / "1d" string."""
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    s = str(value).strip().lower()
    if not s:
        raise ValueError("empty duration")
    try:
        if s.endswith("ms"):
            return int(s[:-2]) / 1000.0
        if s.endswith("s"):
            return float(s[:-1])
        if s.endswith("m"):
            return float(s[:-1]) * 60
        if s.endswith("h"):
            return float(s[:-1]) * 3_600
        if s.endswith("d"):
            return float(s[:-1]) * 86_400
        return float(s)
    except ValueError as e:
        raise ValueError(f"invalid duration: {value!r}") from e
