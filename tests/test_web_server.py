import json

import pytest

from config.settings_manager import ConfigManager
from core.errors import ApiError
from core.preference_sync import PreferenceStore
from core.run_controller import RunController
from gui.web_server import AnnouncerView, MessageAnnouncer, create_app

class Relay:
    def __init__(self, harness, tmp_path):
        self.api = harness.api
        self.announcer = MessageAnnouncer()
        self.view = AnnouncerView(self.announcer)
        self.controller = RunController(self.api, self.view, channel_factory=harness._factory)
        self.preferences = PreferenceStore(self.api)
        self.preferences.load()
        self.config = ConfigManager(str(tmp_path / "client_config.json"))
        app = create_app(self.config, self.api, self.controller, self.preferences, self.announcer)
        app.testing = True
        self.client = app.test_client()
        self.messages = self.announcer.listen()

    def events(self):
        found = []
        while not self.messages.empty():
            raw = self.messages.get_nowait()
            head, data = raw.strip().split("\n", 1)
            found.append((head[len("event: "):], json.loads(data[len("data: "):])))
        return found

@pytest.fixture
def relay(harness, tmp_path):
    return Relay(harness, tmp_path)

def test_index_reports_server_version(relay):
    body = relay.client.get("/").get_json()

    assert body["server_version"] == "1.2.3"
    assert body["server"] == "http://127.0.0.1:8080"

def test_start_requires_both_paths(relay, harness):
    response = relay.client.post("/api/start_backup", json={"source": "/card"})

    assert response.status_code == 400
    assert response.get_json()["field"] == "dest"
    assert harness.calls == []

def test_start_records_paths_and_runs(relay, harness):
    response = relay.client.post("/api/start_backup", json={"source": '"/card"', "dest": "/backup"})

    assert response.status_code == 200
    assert response.get_json() == {"status": "started"}
    assert harness.calls == ["open", "start_job"]
    assert relay.preferences.path_history == {"source": ["/card", "/a"], "dest": ["/backup"]}

    kinds = [kind for kind, _ in relay.events()]
    assert "start_button" in kinds
    assert kinds.count("state") >= 2

    status = relay.client.get("/api/get_backup_status").get_json()
    assert status["phase"] == "running"
    assert status["active"] is True

def test_second_start_is_conflict(relay):
    relay.client.post("/api/start_backup", json={"source": "/card", "dest": "/backup"})
    relay.events()

    response = relay.client.post("/api/start_backup", json={"source": "/card", "dest": "/backup"})

    assert response.status_code == 409
    notices = [data for kind, data in relay.events() if kind == "notice"]
    assert notices == [{"message": "이미 백업이 실행 중입니다.", "level": "warning"}]

def test_rejected_start_returns_notice(relay, invalid_path_error):
    relay.api.start_error = invalid_path_error

    response = relay.client.post("/api/start_backup", json={"source": "/card", "dest": "/backup"})

    assert response.status_code == 502
    assert "invalid path" in response.get_json()["message"]
    assert relay.client.get("/api/get_backup_status").get_json()["phase"] == "idle"

def test_failure_after_finalized_run_does_not_repeat_old_notice(relay, harness, invalid_path_error):
    relay.api.start_error = invalid_path_error
    relay.client.post("/api/start_backup", json={"source": "/card", "dest": "/backup"})

    relay.api.start_error = ApiError("gateway timeout", status=504)
    relay.api.on_start = lambda: harness.channel.send_event({"type": "complete", "summary": {}})
    response = relay.client.post("/api/start_backup", json={"source": "/card", "dest": "/backup"})

    assert response.status_code == 502
    assert "invalid path" not in response.get_json()["message"]
    assert response.get_json()["message"] == "백업을 시작하지 못했습니다."

def test_non_string_paths_are_coerced(relay, harness):
    response = relay.client.post("/api/start_backup", json={"source": 2025, "dest": "/backup"})

    assert response.status_code == 200
    assert relay.preferences.path_history["source"][0] == "2025"

def test_progress_is_streamed(relay, harness):
    relay.client.post("/api/start_backup", json={"source": "/card", "dest": "/backup"})
    relay.events()

    harness.channel.send_event({"type": "progress", "current": 1, "total": 4,
                                "filename": "a.jpg", "action": "copied"})

    progress = [data for kind, data in relay.events() if kind == "progress"]
    assert progress[-1]["percent"] == 25

def test_resync_refused_while_running(relay):
    relay.client.post("/api/start_backup", json={"source": "/card", "dest": "/backup"})

    assert relay.client.post("/api/resync").status_code == 409

def test_history_route(relay):
    assert relay.client.get("/api/get_history?limit=5").get_json() == {"entries": [{"status": "success"}]}
    assert relay.client.get("/api/get_history?limit=x").status_code == 400

def test_toggle_bookmark_route(relay):
    response = relay.client.post("/api/bookmarks/toggle", json={"field": "source", "path": "/fav"})

    body = response.get_json()
    assert body["added"] is True
    assert body["message"] == "북마크에 추가되었습니다."
    assert body["bookmarks"]["source"] == ["/fav"]

def test_toggle_bookmark_failure(relay):
    relay.api.save_error = ApiError("read-only", status=500)

    response = relay.client.post("/api/bookmarks/toggle", json={"field": "dest", "path": "/new"})

    assert response.status_code == 502
    body = response.get_json()
    assert body["message"] == "북마크 저장에 실패했습니다.\nread-only"
    assert body["bookmarks"]["dest"] == ["/d"]

def test_bookmark_validation(relay):
    assert relay.client.post("/api/bookmarks/toggle", json={"field": "other", "path": "/x"}).status_code == 400
    response = relay.client.post("/api/bookmarks/toggle", json={"field": "source", "path": "  "})
    assert response.status_code == 400
    assert response.get_json()["field"] == "source"

def test_suggest(relay):
    relay.client.post("/api/path_history", json={"field": "source", "path": "/Volumes/Card"})

    body = relay.client.get("/api/suggest?field=source&q=/vol").get_json()

    assert body == {"paths": ["/Volumes/Card"]}

def test_settings_pass_through(relay):
    assert relay.client.get("/api/settings").get_json() == {"theme": "dark"}
    assert relay.client.post("/api/settings", json={"theme": "light"}).status_code == 200
    assert relay.api.saved[-1] == ("settings", {"theme": "light"})

def test_unreachable_server_maps_to_502(relay):
    def down():
        raise ApiError("connection refused")

    relay.api.get_settings = down

    response = relay.client.get("/api/settings")
    assert response.status_code == 502
    assert response.get_json()["message"] == "connection refused"

def test_save_config_writes_file(relay, tmp_path):
    response = relay.client.post("/api/save_config", json={"history_limit": 5})

    assert response.status_code == 200
    assert relay.client.get("/api/get_config").get_json()["history_limit"] == 5
    assert relay.client.post("/api/save_config", json=["nope"]).status_code == 400

def test_full_listener_drops_oldest():
    announcer = MessageAnnouncer(maxsize=2)
    q = announcer.listen()

    for n in range(3):
        announcer.announce({"n": n}, event_type="log")

    assert [json.loads(q.get_nowait().split("data: ")[1]) for _ in range(2)] == [{"n": 1}, {"n": 2}]
    announcer.remove_listener(q)
    announcer.remove_listener(q)
    assert announcer.listeners == []
