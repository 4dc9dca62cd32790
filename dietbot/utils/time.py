import time
from datetime import datetime
from typing import Optional

# Profile timestamps are stored as local wall-clock strings
FOLLOW_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

def now_ms() -> int:
    return int(time.time() * 1000)

def format_follow_time(epoch_ms: Optional[int] = None) -> str:
    if epoch_ms is None:
        epoch_ms = now_ms()
    return datetime.fromtimestamp(epoch_ms / 1000).strftime(FOLLOW_TIME_FORMAT)

def parse_follow_time_ms(value) -> Optional[int]:
    """
    Parse a profile followTime ("YYYY-MM-DD HH:MM:SS") into epoch milliseconds.
    Returns None when the value is missing or malformed.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        dt = datetime.strptime(value.strip(), FOLLOW_TIME_FORMAT)
    except ValueError:
        return None
    return int(dt.timestamp() * 1000)
