from __future__ import annotations

import json

import pytest

from core import transport
from core.errors import ApiError
from core.models import JobConfig
from core.run_controller import RunController
from core.run_view import RunView
from utils import i18n

@pytest.fixture(autouse=True)
def _builtin_texts():
    # Tests assert on the built-in Korean texts
    i18n.reset_translator()
    yield
    i18n.reset_translator()

class FakeChannel:
    """
    Stands in for TransportChannel. `script` decides what open() reports:
    "open", "error" (error then close), "open_then_close" or "silent".
    """

    def __init__(self, url, on_event, calls, script="open"):
        self.url = url
        self.on_event = on_event
        self.calls = calls
        self.script = script
        self.is_open = False
        self.closed = False

    def open(self):
        self.calls.append("open")
        if self.script in ("open", "open_then_close"):
            self.is_open = True
            self.emit(transport.OPEN)
            if self.script == "open_then_close":
                self.emit_close(1006)
        elif self.script == "error":
            self.emit(transport.ERROR, data="connection refused")
            self.emit_close(1006)

    def close(self):
        self.calls.append("close")
        if not self.closed:
            self.emit_close(1000)

    def emit(self, kind, data=None, code=None):
        self.on_event(self, transport.ChannelEvent(kind, data=data, code=code))

    def emit_close(self, code=1006):
        self.closed = True
        self.is_open = False
        self.emit(transport.CLOSE, code=code)

    def send_event(self, payload):
        self.emit(transport.MESSAGE, data=json.dumps(payload))

class FakeApi:
    ws_url = "ws://test/api/ws"

    def __init__(self, calls):
        self.calls = calls
        self.start_error = None
        self.on_start = None
        self.history = [{"status": "success"}]
        self.history_calls = 0
        self.saved = []
        self.save_error = None
        self.remote = {"path_history": {"source": ["/a"], "dest": []},
                       "bookmarks": {"source": [], "dest": ["/d"]}}

    def start_job(self, config):
        self.calls.append("start_job")
        if self.on_start:
            self.on_start()
        if self.start_error:
            raise self.start_error

    def get_backup_history(self, limit=50):
        self.history_calls += 1
        return list(self.history)

    def _save(self, name, record):
        self.saved.append((name, json.loads(json.dumps(record))))
        if self.save_error:
            raise self.save_error

    def save_path_history(self, record):
        self._save("path_history", record)

    def save_bookmarks(self, record):
        self._save("bookmarks", record)

    def get_path_history(self):
        return self.remote["path_history"]

    def get_bookmarks(self):
        return self.remote["bookmarks"]

    def get_version(self):
        return "1.2.3"

    def get_settings(self):
        return {"theme": "dark"}

    def save_settings(self, settings):
        self.saved.append(("settings", settings))

class RecordingView(RunView):
    def __init__(self):
        self.notices = []
        self.logs = []
        self.deltas = []
        self.summaries = []
        self.histories = []
        self.start_enabled = []
        self.states = []
        self.resets = []

    def notice(self, message, level="error"):
        self.notices.append((message, level))

    def log(self, message, level="info"):
        self.logs.append((message, level))

    def apply_progress(self, delta):
        self.deltas.append(delta)

    def reset_progress(self, message=""):
        self.resets.append(message)

    def show_summary(self, summary):
        self.summaries.append(summary)

    def show_history(self, entries):
        self.histories.append(entries)

    def set_start_enabled(self, enabled):
        self.start_enabled.append(enabled)

    def state_changed(self, state):
        self.states.append(state)

class Harness:
    def __init__(self, script="open"):
        self.calls = []
        self.script = script
        self.channels = []
        self.api = FakeApi(self.calls)
        self.view = RecordingView()
        self.controller = RunController(self.api, self.view, channel_factory=self._factory)

    def _factory(self, url, on_event):
        channel = FakeChannel(url, on_event, self.calls, self.script)
        self.channels.append(channel)
        return channel

    @property
    def channel(self):
        return self.channels[-1]

@pytest.fixture
def make_harness():
    return Harness

@pytest.fixture
def harness():
    return Harness()

@pytest.fixture
def job():
    return JobConfig(source="/photos/card", dest="/backup")

@pytest.fixture
def invalid_path_error():
    return ApiError("invalid path", status=400, field="source")
