# echoledger/core/clock.py
"""Revision timestamps: fixed 14-digit UTC, YYYYMMDDHHMMSS."""
import time
from datetime import datetime, timezone
from typing import Optional

TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"


def utc_timestamp(moment: Optional[datetime] = None) -> str:
    moment = moment or datetime.now(timezone.utc)
    return moment.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value) -> Optional[datetime]:
    """Parse a revision timestamp. Returns None for anything malformed."""
    if not isinstance(value, str) or len(value) != 14 or not value.isdigit():
        return None
    try:
        return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def epoch_millis() -> int:
    return int(time.time() * 1000)
