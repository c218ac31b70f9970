"""
Utility functions for the Deals Dashboard.
Atomic file writes, safe numeric coercion and calendar-day helpers.

Usage:
    from scripts.lib.utils import atomic_write_json, parse_dt, local_day, week_start
"""
import json
import os
import re
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Optional

from scripts.lib.logger import setup_logger

logger = setup_logger(__name__)

_NON_NUMERIC_RE = re.compile(r"[^0-9.\-]+")

_DATE_FORMATS = (
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d",
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M",
    "%d/%m/%Y",
)


def atomic_write_json(data: Any, file_path: str | Path, indent: int = 2) -> bool:
    """
    Write JSON data to file atomically using temp file + rename.
    Prevents data corruption if the program crashes during write.

    Args:
        data: Object to serialize as JSON.
        file_path: Target file path.
        indent: JSON indentation level.

    Returns:
        True if successful, False otherwise.
    """
    file_path = Path(file_path)
    temp_path = file_path.with_suffix(file_path.suffix + ".tmp")

    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)

        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=indent, default=str)

        os.replace(temp_path, file_path)
        logger.debug("Atomically wrote JSON to %s", file_path)
        return True

    except (OSError, TypeError, ValueError) as e:
        logger.error("Failed to write JSON to %s: %s", file_path, e)
        if temp_path.exists():
            temp_path.unlink(missing_ok=True)
        return False


# ---------------------------------------------------------------------------
# Numeric coercion
# ---------------------------------------------------------------------------

def parse_number(val: Any) -> Optional[float]:
    """Parse a currency-like or count-like cell.

    Strings are stripped of everything except digits, dots and minus signs
    before parsing ("$1,200.50 AUD" -> 1200.5). Booleans and other
    non-numeric types return None.
    """
    if val is None or isinstance(val, bool):
        return None
    if isinstance(val, (int, float)):
        number = float(val)
    elif isinstance(val, str):
        cleaned = _NON_NUMERIC_RE.sub("", val)
        if not cleaned:
            return None
        try:
            number = float(cleaned)
        except ValueError:
            return None
    else:
        return None
    # NaN / inf (e.g. empty pandas cells)
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return number


def safe_div(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Zero-safe division."""
    if denominator == 0:
        return default
    return numerator / denominator


def rate_pct(part: int, total: int) -> float:
    """Percentage of ``part`` in ``total``; 0 when total is 0."""
    return safe_div(part, total) * 100


def format_rate(part: int, total: int) -> str:
    """Percentage with one decimal as a string, "0" when total is 0."""
    if total == 0:
        return "0"
    return f"{part / total * 100:.1f}"


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

def is_blank(val: Any) -> bool:
    """True for None and whitespace-only strings."""
    return val is None or (isinstance(val, str) and val.strip() == "")


def parse_dt(val: Any) -> Optional[datetime]:
    """Parse a datetime-like value.

    Naive results are interpreted as local time by the callers; aware
    results keep their offset.
    """
    if val is None:
        return None
    if isinstance(val, datetime):
        return val
    if isinstance(val, date):
        return datetime(val.year, val.month, val.day)
    s = str(val).strip()
    if not s:
        return None
    try:
        return datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt)
        except ValueError:
            continue
    return None


def local_day(val: Any) -> Optional[str]:
    """Local calendar day (YYYY-MM-DD) of a date-like value."""
    dt = parse_dt(val)
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone()
    return dt.strftime("%Y-%m-%d")


def epoch_ms(val: Any) -> float:
    """Epoch milliseconds of a date-like value; 0 when missing or unparseable."""
    dt = parse_dt(val)
    if dt is None:
        return 0.0
    try:
        return dt.timestamp() * 1000
    except (OverflowError, OSError, ValueError):
        return 0.0


def day_in_range(day: Optional[str], start: Optional[str], end: Optional[str]) -> bool:
    """Inclusive YYYY-MM-DD comparison. Empty bounds are open."""
    if not start and not end:
        return True
    if day is None:
        return False
    if start and day < start:
        return False
    if end and day > end:
        return False
    return True


def week_start(val: Any) -> Optional[str]:
    """Monday (YYYY-MM-DD) of the ISO week containing the value's local day."""
    day = local_day(val)
    if day is None:
        return None
    d = date.fromisoformat(day)
    return (d - timedelta(days=d.weekday())).isoformat()


def json_safe(data: Dict) -> Dict:
    """Replace infinite floats (no JSON literal) with None, recursively."""
    if isinstance(data, dict):
        return {k: json_safe(v) for k, v in data.items()}
    if isinstance(data, list):
        return [json_safe(v) for v in data]
    if isinstance(data, float) and data in (float("inf"), float("-inf")):
        return None
    return data
