import logging

from utils.i18n import tr

logger = logging.getLogger(__name__)

NANOS_PER_SECOND = 1_000_000_000

def format_size(size):
    """Formats a byte count with binary thresholds (B, KB, MB, GB)."""
    try:
        size = float(size)
    except (TypeError, ValueError):
        logger.debug(f"Invalid byte count: {size!r}")
        return "0.00 B"
    for unit in ['B', 'KB', 'MB']:
        if size < 1024.0:
            return f"{size:.2f} {unit}"
        size /= 1024.0
    return f"{size:.2f} GB"

def format_speed(bytes_per_second):
    return f"{format_size(bytes_per_second)}/s"

def nanos_to_seconds(nanos):
    try:
        return int(round(float(nanos) / NANOS_PER_SECOND))
    except (TypeError, ValueError):
        return 0

def format_duration(seconds):
    """
    Formats whole seconds as '1시간 1분 1초'.
    Leading zero units are omitted, seconds are always shown.
    """
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)

    h = tr("duration.hours", "{n}시간", n=hours)
    m = tr("duration.minutes", "{n}분", n=minutes)
    s = tr("duration.seconds", "{n}초", n=secs)
    if hours > 0:
        return f"{h} {m} {s}"
    if minutes > 0:
        return f"{m} {s}"
    return s

def format_duration_nanos(nanos):
    return format_duration(nanos_to_seconds(nanos))
