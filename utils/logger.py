import logging
import json
import sys
import os

# --- Log Filtering & Formatting ---

class JSONFormatter(logging.Formatter):
    """Formats records as JSON lines for the log file."""
    def format(self, record):
        log_record = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno
        }
        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_record, ensure_ascii=False)

class EndpointFilter(logging.Filter):
    """Drops successful access lines of the relay's polling endpoints."""
    ignored_endpoints = (
        "/api/stream",
        "/api/get_backup_status",
        "/api/suggest",
        "/api/get_history",
    )

    def filter(self, record):
        msg = record.getMessage()
        if any(endpoint in msg for endpoint in self.ignored_endpoints) and " 200 " in msg:
            return False
        # Browsers drop and reopen the SSE stream all the time
        if "/api/stream" in msg and "Client disconnected" in msg:
            return False
        return True

def setup_logging(log_file_path=None, debug_mode=False):
    """Configures the root logger: filtered console output plus a JSON log file."""
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Remove existing handlers to avoid duplicates on reload
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG if debug_mode else logging.INFO)
    console_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))
    console_handler.addFilter(EndpointFilter())
    root_logger.addHandler(console_handler)

    if log_file_path:
        log_dir = os.path.dirname(log_file_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(log_file_path, encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)

    # websocket-client logs every frame at DEBUG
    logging.getLogger('websocket').setLevel(logging.WARNING)
    logging.getLogger('urllib3').setLevel(logging.WARNING)

    return logging.getLogger(__name__)
