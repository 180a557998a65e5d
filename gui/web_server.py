from flask import Flask, request, jsonify, Response
import sys
import json
import queue
import socket
import logging

from core.errors import ApiError
from core.models import JobConfig, Phase, PATH_FIELDS
from core.run_view import RunView
from utils.i18n import tr, set_lang

logger = logging.getLogger(__name__)

# Suppress Flask/Werkzeug Access Logs (200 OKs)
logging.getLogger('werkzeug').setLevel(logging.WARNING)

APP_NAME = "ShutterPipe Client"

class MessageAnnouncer:
    def __init__(self, maxsize=1000):
        self.maxsize = maxsize
        self.listeners = []

    def listen(self):
        q = queue.Queue(maxsize=self.maxsize)
        self.listeners.append(q)
        return q

    def remove_listener(self, q):
        try:
            self.listeners.remove(q)
        except ValueError:
            pass

    def announce(self, msg, event_type=None):
        if isinstance(msg, (dict, list)):
            data_str = json.dumps(msg, ensure_ascii=False)
        else:
            data_str = str(msg)

        if event_type:
            sse_msg = f"event: {event_type}\ndata: {data_str}\n\n"
        else:
            sse_msg = f"data: {data_str}\n\n"

        # Iterate over a copy, listeners come and go while we announce
        for q in list(self.listeners):
            try:
                q.put_nowait(sse_msg)
            except queue.Full:
                # Slow client: drop its oldest message instead of the client
                try:
                    q.get_nowait()
                    q.put_nowait(sse_msg)
                except (queue.Empty, queue.Full):
                    pass

class AnnouncerView(RunView):
    """Republishes everything the controller shows as SSE events."""

    def __init__(self, announcer):
        self.announcer = announcer
        self.last_notice = None

    def notice(self, message, level="error"):
        super().notice(message, level)
        self.last_notice = message
        self.announcer.announce({"message": message, "level": level}, event_type="notice")

    def log(self, message, level="info"):
        super().log(message, level)
        self.announcer.announce({"message": message, "level": level}, event_type="log")

    def apply_progress(self, delta):
        super().apply_progress(delta)
        self.announcer.announce(delta.to_dict(), event_type="progress")

    def reset_progress(self, message=""):
        self.announcer.announce({"percent": 0, "text": message, "reset": True}, event_type="progress")

    def show_summary(self, summary):
        super().show_summary(summary)
        self.announcer.announce(summary, event_type="summary")

    def show_history(self, entries):
        super().show_history(entries)
        self.announcer.announce({"entries": entries}, event_type="history")

    def set_start_enabled(self, enabled):
        self.announcer.announce({"enabled": bool(enabled)}, event_type="start_button")

    def state_changed(self, state):
        self.announcer.announce(state, event_type="state")

def create_app(config_manager, api, controller, preferences, announcer):
    app = Flask(__name__)

    def error_response(message, status=400, field=None):
        body = {"status": "error", "message": message}
        if field:
            body["field"] = field
        return jsonify(body), status

    @app.errorhandler(ApiError)
    def handle_api_error(e):
        # status None means the server was unreachable
        return error_response(e.message, e.status or 502, e.field)

    def read_field(data):
        field = (data or {}).get("field")
        if field not in PATH_FIELDS:
            return None
        return field

    # --- Routes ---

    @app.route("/")
    def index():
        try:
            server_version = api.get_version()
        except ApiError as e:
            logger.warning(f"Server version unavailable: {e.message}")
            server_version = None
        return jsonify({
            "app": APP_NAME,
            "server": config_manager.get("server_url"),
            "server_version": server_version,
        })

    @app.route("/api/start_backup", methods=["POST"])
    def start_backup():
        data = request.get_json(silent=True) or {}
        job = JobConfig.from_dict(data, defaults=config_manager.job_defaults())

        missing = job.missing_fields()
        if missing:
            return error_response(tr("notice.pathsRequired", "원본 경로와 목적지를 입력해주세요."),
                                  400, field=missing[0])

        if controller.state.phase is not Phase.IDLE:
            controller.start(job)  # rejected, surfaces the notice
            return error_response(tr("notice.alreadyRunning", "이미 백업이 실행 중입니다."), 409)

        for field in PATH_FIELDS:
            result = preferences.add_to_path_history(field, getattr(job, field))
            if not result.success:
                logger.warning(f"Path history not saved for {field}: {result.message}")

        view = controller.view
        if isinstance(view, AnnouncerView):
            view.last_notice = None
        if controller.start(job):
            return jsonify({"status": "started"})
        message = getattr(view, "last_notice", None) or tr("notice.startFailedGeneric", "백업을 시작하지 못했습니다.")
        return error_response(message, 502)

    @app.route("/api/get_backup_status")
    def get_backup_status():
        status = controller.snapshot()
        status["active"] = controller.state.phase is not Phase.IDLE
        return jsonify(status)

    @app.route("/api/resync", methods=["POST"])
    def resync():
        if controller.resync():
            return jsonify({"status": "success"})
        return error_response(tr("notice.resyncBusy", "백업이 진행 중이므로 다시 동기화할 수 없습니다."), 409)

    @app.route("/api/stream")
    def stream():
        def event_stream():
            messages = announcer.listen()
            try:
                yield f"event: state\ndata: {json.dumps(controller.snapshot())}\n\n"
                while True:
                    try:
                        msg = messages.get(timeout=5)
                        yield msg
                    except queue.Empty:
                        yield ": keepalive\n\n"
            except GeneratorExit:
                pass
            finally:
                announcer.remove_listener(messages)
        return Response(event_stream(), mimetype="text/event-stream")

    @app.route("/api/get_history")
    def get_history():
        try:
            limit = int(request.args.get("limit") or config_manager.get("history_limit", 50))
        except ValueError:
            return error_response("limit must be a number")
        return jsonify({"entries": api.get_backup_history(limit)})

    # --- Preferences ---

    @app.route("/api/path_history", methods=["GET"])
    def get_path_history():
        return jsonify(preferences.path_history)

    @app.route("/api/path_history", methods=["POST"])
    def add_path_history():
        data = request.get_json(silent=True) or {}
        field = read_field(data)
        if not field:
            return error_response("field must be 'source' or 'dest'")
        result = preferences.add_to_path_history(field, data.get("path", ""))
        body = result.to_dict()
        body["path_history"] = preferences.path_history
        return jsonify(body), 200 if result.success else 502

    @app.route("/api/bookmarks", methods=["GET"])
    def get_bookmarks():
        return jsonify(preferences.bookmarks)

    @app.route("/api/bookmarks/toggle", methods=["POST"])
    def toggle_bookmark():
        data = request.get_json(silent=True) or {}
        field = read_field(data)
        path = (data.get("path") or "").strip()
        if not field:
            return error_response("field must be 'source' or 'dest'")
        if not path:
            return error_response(tr("notice.pathFirst", "경로를 먼저 입력해주세요."), field=field)

        result, added = preferences.toggle_bookmark(field, path)
        body = result.to_dict()
        body["added"] = added
        body["bookmarks"] = preferences.bookmarks
        if result.success:
            body["message"] = tr("notice.bookmarkAdded", "북마크에 추가되었습니다.") if added \
                else tr("notice.bookmarkRemoved", "북마크에서 제거되었습니다.")
            return jsonify(body)
        details = f"\n{result.message}" if result.message else ""
        body["message"] = tr("notice.bookmarkSaveFailed", "북마크 저장에 실패했습니다.") + details
        return jsonify(body), 502

    @app.route("/api/bookmarks/remove", methods=["POST"])
    def remove_bookmark():
        data = request.get_json(silent=True) or {}
        field = read_field(data)
        if not field:
            return error_response("field must be 'source' or 'dest'")
        result = preferences.remove_bookmark(field, data.get("path", ""))
        body = result.to_dict()
        body["bookmarks"] = preferences.bookmarks
        if not result.success:
            details = f"\n{result.message}" if result.message else ""
            body["message"] = tr("notice.bookmarkDeleteFailed", "북마크 삭제에 실패했습니다.") + details
            return jsonify(body), 502
        return jsonify(body)

    @app.route("/api/suggest")
    def suggest():
        field = read_field(request.args)
        if not field:
            return error_response("field must be 'source' or 'dest'")
        return jsonify({"paths": preferences.suggestions(field, request.args.get("q", ""))})

    # --- Config ---

    @app.route("/api/get_config")
    def get_config():
        config_manager.load_config()
        return jsonify(config_manager.snapshot())

    @app.route("/api/save_config", methods=["POST"])
    def save_config():
        new_config = request.get_json(silent=True)
        if not isinstance(new_config, dict):
            return error_response("config must be a JSON object")
        if not config_manager.save_config(new_config):
            return error_response("Save failed", 500)
        if "language" in new_config:
            set_lang(new_config["language"])
        return jsonify({"status": "success"})

    @app.route("/api/settings", methods=["GET"])
    def get_settings():
        return jsonify(api.get_settings())

    @app.route("/api/settings", methods=["POST"])
    def save_settings():
        settings = request.get_json(silent=True)
        if not isinstance(settings, dict):
            return error_response("settings must be a JSON object")
        api.save_settings(settings)
        return jsonify({"status": "success"})

    return app

def find_available_port(start_port=5000, max_tries=50, host='127.0.0.1'):
    for port in range(start_port, start_port + max_tries):
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
                s.bind((host, port))
                return port
        except OSError:
            continue
    return start_port

class AccessLogFilter:
    def __init__(self, stream):
        self.stream = stream
    def write(self, message):
        if "GET /api/stream" in message and '" 200 ' in message:
            return
        if "GET /api/get_backup_status" in message and '" 200 ' in message:
            return
        self.stream.write(message)
    def flush(self):
        self.stream.flush()

def start_server(app, host='127.0.0.1', port=5000):
    # gevent keeps SSE streams and the run controller on one cooperative loop
    from gevent.pywsgi import WSGIServer
    logger.info(f"Starting relay server (gevent) on {host}:{port}...")
    http_server = WSGIServer((host, port), app, log=AccessLogFilter(sys.stdout))
    http_server.serve_forever()
