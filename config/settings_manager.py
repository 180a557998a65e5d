import copy
import json
import os
import threading
import logging

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = {
    "server_url": "http://127.0.0.1:8080",
    "language": "ko",
    "relay_host": "127.0.0.1",
    "relay_port": 5000,
    "open_browser": True,
    "open_timeout": 10,
    "request_timeout": 30,
    "history_limit": 50,
    "job_defaults": {},
}

class ConfigManager:
    def __init__(self, config_path):
        self.config_path = config_path
        self.lock = threading.Lock()
        self.config = copy.deepcopy(DEFAULT_CONFIG)
        self.overrides = {}
        self.last_mtime = 0
        self.load_config()

    def load_config(self):
        """Reloads the client config from disk, only when the file changed."""
        with self.lock:
            if not os.path.exists(self.config_path):
                if self.last_mtime != 0:  # Only warn if it disappeared
                    logger.warning(f"Config file not found: {self.config_path}")
                self.config = copy.deepcopy(DEFAULT_CONFIG)
                self.last_mtime = 0
                return self.config

            current_mtime = os.path.getmtime(self.config_path)
            if current_mtime == self.last_mtime:
                return self.config
            try:
                with open(self.config_path, 'r', encoding='utf-8') as f:
                    data = json.load(f)
                if not isinstance(data, dict):
                    raise ValueError("config root must be an object")
            except (OSError, ValueError) as e:
                # Keep the last good config
                logger.error(f"Failed to load config {self.config_path}: {e}")
                return self.config

            merged = copy.deepcopy(DEFAULT_CONFIG)
            merged.update(data)
            self.config = merged
            self.last_mtime = current_mtime
            logger.debug(f"Config loaded: {self.config_path}")
            return self.config

    def save_config(self, new_config=None):
        """Writes the current config (plus new_config) to disk."""
        with self.lock:
            try:
                if new_config:
                    self.config.update(new_config)

                config_dir = os.path.dirname(self.config_path)
                if config_dir:
                    os.makedirs(config_dir, exist_ok=True)

                with open(self.config_path, 'w', encoding='utf-8') as f:
                    json.dump(self.config, f, indent=4, ensure_ascii=False)
                self.last_mtime = os.path.getmtime(self.config_path)
                logger.info("Config saved.")
                return True
            except OSError as e:
                logger.error(f"Failed to save config: {e}")
                return False

    def override(self, **values):
        """Session-only values (CLI flags); never written to disk."""
        with self.lock:
            self.overrides.update({k: v for k, v in values.items() if v is not None})

    def get(self, key, default=None):
        with self.lock:
            if key in self.overrides:
                return self.overrides[key]
            return self.config.get(key, default)

    def job_defaults(self):
        defaults = self.get("job_defaults") or {}
        return dict(defaults) if isinstance(defaults, dict) else {}

    def snapshot(self):
        with self.lock:
            data = copy.deepcopy(self.config)
            data.update(self.overrides)
            return data
