import sys
import os

# Monkey patch for gevent (must be before other imports)
from gevent import monkey
monkey.patch_all()

import argparse
import logging
import threading
import webbrowser
import time

import gevent

from config.settings_manager import ConfigManager
from core.api_client import ShutterPipeApi
from core.models import JobConfig, Phase
from core.preference_sync import PreferenceStore
from core.run_controller import RunController
from core.run_view import RunView
from gui.web_server import MessageAnnouncer, AnnouncerView, create_app, start_server, find_available_port
from utils.logger import setup_logging
from utils.i18n import init_translator

BASE_DIR = os.path.dirname(os.path.abspath(__file__))

def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="shutterpipe-client",
                                     description="Start and follow ShutterPipe backup runs.")
    parser.add_argument("--config", default=os.path.join(BASE_DIR, "config", "client_config.json"),
                        help="client config file (JSON)")
    parser.add_argument("--server", help="ShutterPipe server URL, e.g. http://127.0.0.1:8080")
    parser.add_argument("--port", type=int, help="first port to try for the local relay")
    parser.add_argument("--no-browser", action="store_true", help="do not open the browser")
    parser.add_argument("--log-file", default=os.path.join(BASE_DIR, "shutterpipe_client.log"))
    parser.add_argument("--debug", action="store_true")
    parser.add_argument("--run", nargs=2, metavar=("SOURCE", "DEST"),
                        help="headless: start one run, follow it on the console and exit")
    parser.add_argument("--dry-run", action="store_true", help="with --run: simulate only")
    return parser.parse_args(argv)

def build_api(config_manager):
    return ShutterPipeApi(config_manager.get("server_url"),
                          timeout=config_manager.get("request_timeout", 30))

class ConsoleView(RunView):
    def __init__(self):
        self.completed = False

    def show_summary(self, summary):
        self.completed = True
        super().show_summary(summary)

def run_headless(config_manager, api, source, dest, dry_run=False):
    """Returns the process exit code."""
    logger = logging.getLogger("Main")
    view = ConsoleView()
    controller = RunController(api, view,
                               open_timeout=config_manager.get("open_timeout", 10),
                               history_limit=config_manager.get("history_limit", 50))

    overrides = {"source": source, "dest": dest}
    if dry_run:
        overrides["dry_run"] = True
    job = JobConfig.from_dict(overrides, defaults=config_manager.job_defaults())

    if not controller.start(job):
        return 1

    # Follow the run until it ends or the channel drops
    while controller.state.phase is not Phase.IDLE and not controller.state.terminal_notified:
        gevent.sleep(0.5)
    while controller.state.phase is Phase.TERMINATING:
        gevent.sleep(0.1)

    if controller.state.phase is not Phase.IDLE:
        logger.error("Connection lost, the run may still be going on the server.")
        return 1
    return 0 if view.completed else 1

def main(argv=None):
    args = parse_args(argv)

    setup_logging(args.log_file, debug_mode=args.debug)
    logger = logging.getLogger("Main")
    logger.info("Starting ShutterPipe Client...")

    config_manager = ConfigManager(args.config)
    config_manager.override(server_url=args.server, relay_port=args.port)
    init_translator(BASE_DIR, config_manager.get("language", "ko"))

    api = build_api(config_manager)

    if args.run:
        source, dest = args.run
        return run_headless(config_manager, api, source, dest, dry_run=args.dry_run)

    announcer = MessageAnnouncer()
    view = AnnouncerView(announcer)
    controller = RunController(api, view,
                               open_timeout=config_manager.get("open_timeout", 10),
                               history_limit=config_manager.get("history_limit", 50))
    preferences = PreferenceStore(api)
    if not preferences.load():
        logger.warning("Preferences could not be loaded from the server, starting with empty lists.")

    app = create_app(config_manager, api, controller, preferences, announcer)

    host = config_manager.get("relay_host", "127.0.0.1")
    port = find_available_port(int(config_manager.get("relay_port", 5000)), host=host)

    if config_manager.get("open_browser", True) and not args.no_browser:
        def open_browser():
            time.sleep(0.5)
            webbrowser.open(f"http://{host}:{port}")
        threading.Thread(target=open_browser, daemon=True).start()

    logger.info(f"ShutterPipe server: {config_manager.get('server_url')}")
    try:
        start_server(app, host=host, port=port)
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    return 0

if __name__ == "__main__":
    sys.exit(main())
