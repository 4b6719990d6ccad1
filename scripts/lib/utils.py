"""
Utility functions for HubSpot Deal Analytics.
Atomic file writes and lenient value parsing for HubSpot property payloads.

Usage:
    from scripts.lib.utils import atomic_write_json, parse_number, parse_timestamp
"""
import json
import math
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from scripts.lib.logger import setup_logger

logger = setup_logger(__name__)

# HubSpot sends some date properties as epoch milliseconds; anything above
# this is treated as millis rather than seconds.
_EPOCH_MILLIS_CUTOFF = 10_000_000_000


def atomic_write_json(data: Dict, file_path: str | Path, indent: int = 2) -> bool:
    """
    Write JSON data to file atomically using temp file + rename.
    Prevents data corruption if the program crashes during write.

    Args:
        data: Dictionary to serialize as JSON.
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


def atomic_write_text(text: str, file_path: str | Path) -> bool:
    """Write a text file atomically. Same contract as atomic_write_json."""
    file_path = Path(file_path)
    temp_path = file_path.with_suffix(file_path.suffix + ".tmp")

    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        temp_path.write_text(text, encoding="utf-8")
        os.replace(temp_path, file_path)
        return True
    except OSError as e:
        logger.error("Failed to write text to %s: %s", file_path, e)
        if temp_path.exists():
            temp_path.unlink(missing_ok=True)
        return False


def parse_number(value: Any) -> Optional[float]:
    """Parse a HubSpot numeric property. Returns None when absent or unparseable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    else:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def safe_float(value: Any, default: float = 0.0) -> float:
    """Safely convert a value to float."""
    number = parse_number(value)
    return default if number is None else number


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes; aware datetimes pass through."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string, date string, or epoch value to an aware datetime.

    Naive values are taken as UTC. Returns None for anything unparseable.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.lstrip("-").isdigit():
            value = int(text)
        else:
            try:
                # Handle ISO format with or without trailing Z / offset
                return ensure_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
            except ValueError:
                return None

    if isinstance(value, (int, float)):
        if math.isnan(value) or math.isinf(value):
            return None
        seconds = value / 1000 if abs(value) >= _EPOCH_MILLIS_CUTOFF else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    return None
