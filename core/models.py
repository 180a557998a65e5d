from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS = [
    "jpg", "jpeg", "heic", "heif", "png", "raw", "arw", "cr2", "nef", "dng",
    "mp4", "mov", "avi", "mkv", "mxf", "xml",
]

PATH_FIELDS = ("source", "dest")

# --- Job configuration ---

@dataclass
class JobConfig:
    source: str = ""
    dest: str = ""
    organize_strategy: str = "date"
    event_name: str = ""
    conflict_policy: str = "skip"
    dedup_method: str = "name-size"
    dry_run: bool = False
    hash_verify: bool = False
    ignore_state: bool = False
    date_filter_start: Optional[str] = None
    date_filter_end: Optional[str] = None
    include_extensions: list = field(default_factory=lambda: list(DEFAULT_EXTENSIONS))
    jobs: int = 0
    unclassified_dir: str = "unclassified"
    quarantine_dir: str = "quarantine"
    state_file: str = ""
    log_file: str = ""
    log_json: bool = False

    @classmethod
    def from_dict(cls, data, defaults=None):
        """Builds a config from a request payload, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        merged = {}
        for source in (defaults or {}, data or {}):
            merged.update({k: v for k, v in source.items() if k in known})

        for key in ("source", "dest"):
            merged[key] = clean_path(str(merged.get(key) or ""))
        # Empty form fields mean "no filter" / "server default"
        for key in ("date_filter_start", "date_filter_end"):
            merged[key] = merged.get(key) or None
        for key in ("unclassified_dir", "quarantine_dir"):
            if key in merged and not merged[key]:
                del merged[key]
        try:
            merged["jobs"] = int(merged.get("jobs") or 0)
        except (TypeError, ValueError):
            merged["jobs"] = 0
        return cls(**merged)

    def missing_fields(self):
        return [name for name in PATH_FIELDS if not getattr(self, name)]

    def to_payload(self):
        return asdict(self)

def clean_path(value):
    """Trims whitespace and one pair of surrounding quotes from a pasted path."""
    value = value.strip()
    if value[:1] in ("'", '"'):
        value = value[1:]
    if value[-1:] in ("'", '"'):
        value = value[:-1]
    return value

# --- Run state ---

class Phase(Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    TERMINATING = "terminating"

@dataclass
class RunState:
    phase: Phase = Phase.IDLE
    channel_opened: bool = False
    start_request_sent: bool = False
    terminal_notified: bool = False

    @property
    def may_still_run(self):
        """True once the server may be executing the job."""
        return self.start_request_sent or self.phase is Phase.RUNNING

    def begin_attempt(self):
        self.phase = Phase.STARTING
        self.channel_opened = False
        self.start_request_sent = False
        self.terminal_notified = False

    def mark_running(self):
        if not self.start_request_sent:
            raise RuntimeError("cannot enter Running before the start request is sent")
        self.phase = Phase.RUNNING

    def reset(self):
        """Back to the Idle baseline in one step."""
        self.phase = Phase.IDLE
        self.channel_opened = False
        self.start_request_sent = False

    def to_dict(self):
        return {
            "phase": self.phase.value,
            "channel_opened": self.channel_opened,
            "start_request_sent": self.start_request_sent,
            "terminal_notified": self.terminal_notified,
        }

# --- Progress events ---

class EventKind(Enum):
    STATUS = "status"
    SCAN_PROGRESS = "analysis_progress"
    COPY_PROGRESS = "progress"
    COMPLETE = "complete"
    ERROR = "error"

COPY_ACTIONS = ("copied", "skipped", "renamed", "overwritten", "quarantined", "failed")

def _int(value):
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0

def _float(value):
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0

@dataclass
class Summary:
    scanned: int = 0
    eligible: int = 0
    copied: int = 0
    skipped: int = 0
    renamed: int = 0
    overwritten: int = 0
    quarantined: int = 0
    failed: int = 0
    unclassified: int = 0
    duration_ns: int = 0
    bytes_copied: int = 0
    bytes_per_second: float = 0.0
    start_time: Optional[str] = None
    end_time: Optional[str] = None

    # Server field names (Go struct without json tags)
    _KEYS = {
        "scanned": "ScannedFiles",
        "eligible": "TotalFiles",
        "copied": "Copied",
        "skipped": "Skipped",
        "renamed": "Renamed",
        "overwritten": "Overwritten",
        "quarantined": "Quarantined",
        "failed": "Failed",
        "unclassified": "Unclassified",
        "duration_ns": "Duration",
        "bytes_copied": "BytesCopied",
    }

    @classmethod
    def from_json(cls, data: Optional[dict]) -> "Summary":
        data = data or {}
        values: dict[str, Any] = {attr: _int(data.get(key)) for attr, key in cls._KEYS.items()}
        values["bytes_per_second"] = _float(data.get("BytesPerSecond"))
        values["start_time"] = data.get("StartTime")
        values["end_time"] = data.get("EndTime")
        return cls(**values)

@dataclass
class ProgressEvent:
    kind: EventKind
    message: str = ""
    current: int = 0
    total: int = 0
    filename: str = ""
    action: str = ""
    error: str = ""
    summary: Optional[Summary] = None

    @property
    def is_terminal(self):
        return self.kind in (EventKind.COMPLETE, EventKind.ERROR)

    @classmethod
    def from_json(cls, data: dict) -> Optional["ProgressEvent"]:
        """Decodes one server message; returns None for unknown types."""
        if not isinstance(data, dict):
            return None
        try:
            kind = EventKind(data.get("type"))
        except ValueError:
            logger.warning(f"Unknown progress event type: {data.get('type')!r}")
            return None

        event = cls(kind=kind, message=data.get("message") or "")
        if kind in (EventKind.SCAN_PROGRESS, EventKind.COPY_PROGRESS):
            event.current = _int(data.get("current"))
            event.total = _int(data.get("total"))
        if kind is EventKind.COPY_PROGRESS:
            event.filename = data.get("filename") or ""
            event.action = data.get("action") or ""
            event.error = data.get("error") or ""
        elif kind is EventKind.COMPLETE:
            event.summary = Summary.from_json(data.get("summary"))
        elif kind is EventKind.ERROR:
            event.error = data.get("error") or data.get("message") or ""
        return event
