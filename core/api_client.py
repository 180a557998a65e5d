import logging
from urllib.parse import urlsplit, urlunsplit

import requests

from core.errors import ApiError

logger = logging.getLogger(__name__)

class ShutterPipeApi:
    """
    HTTP side of the ShutterPipe server: start requests, user preferences
    and run history. Progress is not read here; see core.transport.
    """

    def __init__(self, base_url, timeout=30, session=None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def ws_url(self):
        parts = urlsplit(self.base_url)
        scheme = "wss" if parts.scheme == "https" else "ws"
        path = parts.path.rstrip("/") + "/api/ws"
        return urlunsplit((scheme, parts.netloc, path, "", ""))

    def _url(self, path):
        return f"{self.base_url}{path}"

    def _request(self, method, path, **kwargs):
        kwargs.setdefault("timeout", self.timeout)
        try:
            response = self.session.request(method, self._url(path), **kwargs)
        except requests.RequestException as e:
            logger.error(f"{method} {path} failed: {e}")
            raise ApiError(str(e)) from e

        if not response.ok:
            error = error_from_response(response)
            logger.warning(f"{method} {path} rejected ({response.status_code}): {error.message}")
            raise error
        return response

    def _json(self, response):
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ApiError(f"invalid JSON from server: {e}", status=response.status_code) from e

    # --- Run ---

    def start_job(self, job_config):
        """POST /api/run. The body of an accepted request is ignored."""
        payload = job_config.to_payload() if hasattr(job_config, "to_payload") else dict(job_config)
        self._request("POST", "/api/run", json=payload)
        logger.info(f"Run accepted: Source={payload.get('source')}, Dest={payload.get('dest')}")

    def get_backup_history(self, limit=50):
        data = self._json(self._request("GET", "/api/history", params={"limit": int(limit)}))
        if isinstance(data, dict):
            return data.get("entries") or []
        return data or []

    def get_version(self):
        data = self._json(self._request("GET", "/api/version")) or {}
        return data.get("version", "unknown") if isinstance(data, dict) else str(data)

    # --- User data ---

    def get_settings(self):
        return self._json(self._request("GET", "/api/settings")) or {}

    def save_settings(self, settings):
        self._request("POST", "/api/settings", json=settings)

    def get_bookmarks(self):
        return self._json(self._request("GET", "/api/bookmarks")) or {}

    def save_bookmarks(self, bookmarks):
        self._request("POST", "/api/bookmarks", json=bookmarks)

    def get_path_history(self):
        return self._json(self._request("GET", "/api/path-history")) or {}

    def save_path_history(self, history):
        self._request("POST", "/api/path-history", json=history)

def error_from_response(response):
    """Builds an ApiError from a JSON {field?, message|error} or plain-text body."""
    status = response.status_code
    text = (response.text or "").strip()
    field = None
    message = text
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        field = data.get("field") or None
        message = data.get("message") or data.get("error") or text
    if not message:
        message = f"HTTP {status}"
    return ApiError(message, status=status, field=field)
