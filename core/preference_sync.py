import copy
import logging
from dataclasses import dataclass
from typing import Optional

from core.errors import ApiError
from core.models import PATH_FIELDS

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 10

@dataclass
class SyncResult:
    success: bool
    field: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self):
        data = {"success": self.success}
        if self.field:
            data["field"] = self.field
        if self.message:
            data["message"] = self.message
        return data

def _restore(record, previous):
    # In place, so every holder of the live reference sees the rollback
    if isinstance(record, dict):
        record.clear()
        record.update(previous)
    elif isinstance(record, list):
        record[:] = previous
    else:
        raise TypeError(f"cannot restore {type(record).__name__} in place")

def apply_optimistic(record, mutate, persist):
    """
    Snapshot record, mutate it in place, persist it, and restore the
    snapshot if persisting fails. Only ApiError is turned into a result.
    """
    previous = copy.deepcopy(record)
    mutate(record)
    try:
        persist(record)
    except ApiError as e:
        _restore(record, previous)
        logger.warning(f"Preference save rejected, rolled back: {e.message}")
        return SyncResult(False, field=e.field, message=e.message)
    except Exception:
        _restore(record, previous)
        raise
    return SyncResult(True)

def push_recent(paths, path, limit=HISTORY_LIMIT):
    """Moves path to the front of paths, dropping duplicates beyond limit."""
    paths[:] = [p for p in paths if p != path]
    paths.insert(0, path)
    del paths[limit:]

def empty_record():
    return {name: [] for name in PATH_FIELDS}

def normalize_record(data):
    record = empty_record()
    if isinstance(data, dict):
        for name in PATH_FIELDS:
            values = data.get(name) or []
            record[name] = [v for v in values if isinstance(v, str) and v]
    return record

class PreferenceStore:
    """Live path-history and bookmark records for the source/dest fields."""

    def __init__(self, api):
        self.api = api
        self.path_history = empty_record()
        self.bookmarks = empty_record()

    def load(self):
        """Replaces both records with the server copy; keeps the cache on failure."""
        loaded = True
        for name, getter in (("path_history", self.api.get_path_history),
                             ("bookmarks", self.api.get_bookmarks)):
            try:
                data = getter()
            except ApiError as e:
                logger.error(f"Failed to load {name}: {e.message}")
                loaded = False
                continue
            _restore(getattr(self, name), normalize_record(data))
        return loaded

    @staticmethod
    def _check_field(field):
        if field not in PATH_FIELDS:
            raise ValueError(f"unknown path field: {field!r}")

    def add_to_path_history(self, field, path):
        self._check_field(field)
        path = (path or "").strip()
        if not path:
            return SyncResult(True)
        return apply_optimistic(
            self.path_history,
            lambda record: push_recent(record[field], path),
            self.api.save_path_history,
        )

    def toggle_bookmark(self, field, path):
        """Returns (result, added)."""
        self._check_field(field)
        path = (path or "").strip()
        if not path:
            raise ValueError("path is required")
        added = path not in self.bookmarks[field]

        def mutate(record):
            if added:
                record[field].append(path)
            else:
                record[field].remove(path)

        return apply_optimistic(self.bookmarks, mutate, self.api.save_bookmarks), added

    def remove_bookmark(self, field, path):
        self._check_field(field)

        def mutate(record):
            record[field] = [p for p in record[field] if p != path]

        return apply_optimistic(self.bookmarks, mutate, self.api.save_bookmarks)

    def suggestions(self, field, prefix=""):
        self._check_field(field)
        prefix = (prefix or "").strip().lower()
        return [p for p in self.path_history[field] if p.lower().startswith(prefix)]
