"""
Projection of progress events onto view deltas.

project() holds no state: every event maps to one ProgressDelta that the
view applies as-is. The controller decides what a terminal event does to
the run; this module only decides what the user sees.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Optional

from core.models import EventKind, ProgressEvent, Summary
from utils.formatting import format_duration_nanos, format_size, format_speed
from utils.i18n import tr

logger = logging.getLogger(__name__)

SCAN_LOG_EVERY = 500

ACTION_LABELS = {
    "copied": ("action.copied", "[복사]"),
    "skipped": ("action.skipped", "[건너뜀]"),
    "renamed": ("action.renamed", "[이름변경]"),
    "overwritten": ("action.overwritten", "[덮어쓰기]"),
    "quarantined": ("action.quarantined", "[격리]"),
    "failed": ("action.failed", "[실패]"),
}

@dataclass
class LogLine:
    message: str
    level: str = "info"

@dataclass
class FileEntry:
    label: str
    filename: str
    action: str

    @property
    def text(self):
        return f"{self.label} {self.filename}"

@dataclass
class ProgressDelta:
    kind: EventKind
    # None means indeterminate (pulsing bar, no number)
    percent: Optional[int] = None
    text: str = ""
    logs: list = field(default_factory=list)
    file_entry: Optional[FileEntry] = None
    summary: Optional[dict] = None
    notice: Optional[str] = None

    def to_dict(self):
        return {
            "kind": self.kind.value,
            "percent": self.percent,
            "text": self.text,
            "logs": [{"message": l.message, "level": l.level} for l in self.logs],
            "file": {"label": self.file_entry.label, "filename": self.file_entry.filename,
                     "action": self.file_entry.action, "text": self.file_entry.text} if self.file_entry else None,
            "summary": self.summary,
            "notice": self.notice,
        }

def decode_message(raw):
    """Parses one channel message. Malformed input yields None."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.error(f"Malformed progress message: {e}")
        return None
    return ProgressEvent.from_json(data)

def compute_percent(current, total):
    if total <= 0:
        return 0
    percent = round(current / total * 100)
    return max(0, min(100, percent))

def action_label(action):
    key, default = ACTION_LABELS.get(action, ("action.other", "[처리]"))
    return tr(key, default)

def render_summary(summary: Summary):
    """Flattens a run summary into display-ready values."""
    return {
        "counts": {
            "scanned": summary.scanned,
            "eligible": summary.eligible,
            "copied": summary.copied,
            "skipped": summary.skipped,
            "renamed": summary.renamed,
            "overwritten": summary.overwritten,
            "quarantined": summary.quarantined,
            "failed": summary.failed,
            "unclassified": summary.unclassified,
        },
        "performance": {
            "duration": format_duration_nanos(summary.duration_ns),
            "bytes_copied": format_size(summary.bytes_copied),
            "throughput": format_speed(summary.bytes_per_second),
        },
        "start_time": summary.start_time,
        "end_time": summary.end_time,
    }

def project(event: ProgressEvent) -> ProgressDelta:
    kind = event.kind

    if kind is EventKind.STATUS:
        return ProgressDelta(kind, percent=None, text=event.message,
                             logs=[LogLine(event.message, "info")])

    if kind is EventKind.SCAN_PROGRESS:
        text = f"{event.message} ({event.current}/{event.total})"
        delta = ProgressDelta(kind, percent=compute_percent(event.current, event.total), text=text)
        if event.current % SCAN_LOG_EVERY == 0:
            delta.logs.append(LogLine(text, "info"))
        return delta

    if kind is EventKind.COPY_PROGRESS:
        text = tr("progress.copying", "복사 중: {filename} ({current}/{total})",
                  filename=event.filename, current=event.current, total=event.total)
        delta = ProgressDelta(kind, percent=compute_percent(event.current, event.total), text=text,
                              file_entry=FileEntry(action_label(event.action), event.filename, event.action))
        if event.action == "failed":
            error = event.error or "Unknown error"
            delta.logs.append(LogLine(tr("progress.failed", "실패: {filename} - {error}",
                                         filename=event.filename, error=error), "error"))
        elif event.action == "quarantined":
            delta.logs.append(LogLine(tr("progress.quarantined", "격리됨: {filename}",
                                         filename=event.filename), "warning"))
        return delta

    if kind is EventKind.COMPLETE:
        return ProgressDelta(kind, percent=100, text=tr("progress.done", "완료!"),
                             logs=[LogLine(tr("progress.completeLog", "백업 작업이 완료되었습니다."), "success")],
                             summary=render_summary(event.summary or Summary()))

    # EventKind.ERROR
    message = tr("progress.errorLog", "오류 발생: {error}", error=event.error)
    return ProgressDelta(kind, percent=0, text=tr("progress.errorText", "오류 발생"),
                         logs=[LogLine(message, "error")],
                         notice=tr("notice.error", "오류: {error}", error=event.error))
