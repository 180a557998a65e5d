import logging
from dataclasses import dataclass
from typing import Any, Optional

import gevent
import websocket

logger = logging.getLogger(__name__)

OPEN = "open"
MESSAGE = "message"
ERROR = "error"
CLOSE = "close"

@dataclass(frozen=True)
class ChannelEvent:
    kind: str
    data: Any = None
    code: Optional[int] = None
    reason: Optional[str] = None

class TransportChannel:
    """
    One WebSocket connection to the progress endpoint, run in its own
    greenlet. Every socket callback is turned into a ChannelEvent and handed
    to on_event(channel, event). There is no reconnect: once closed, the
    channel is spent.
    """

    def __init__(self, url, on_event, ping_interval=20):
        self.url = url
        self._on_event = on_event
        self.ping_interval = ping_interval
        self._app = None
        self._greenlet = None
        self.is_open = False
        self.closed = False

    def open(self):
        if self._app is not None:
            raise RuntimeError("channel already opened once")
        logger.info(f"WebSocket URL: {self.url}")
        self._app = websocket.WebSocketApp(
            self.url,
            on_open=self._handle_open,
            on_message=self._handle_message,
            on_error=self._handle_error,
            on_close=self._handle_close,
        )
        self._greenlet = gevent.spawn(self._run)

    def _run(self):
        try:
            self._app.run_forever(ping_interval=self.ping_interval)
        finally:
            # run_forever may return without calling on_close (e.g. DNS failure)
            if not self.closed:
                self._handle_close(self._app, None, None)

    def close(self):
        self.is_open = False
        if self._app is not None:
            self._app.close()

    def _emit(self, event):
        try:
            self._on_event(self, event)
        except Exception:
            # websocket-client would report this as a socket error
            logger.exception(f"Channel handler failed on {event.kind} event")

    def _handle_open(self, ws):
        self.is_open = True
        self._emit(ChannelEvent(OPEN))

    def _handle_message(self, ws, message):
        self._emit(ChannelEvent(MESSAGE, data=message))

    def _handle_error(self, ws, error):
        logger.debug(f"WebSocket error: {error!r}")
        self._emit(ChannelEvent(ERROR, data=error))

    def _handle_close(self, ws, close_status_code, close_msg):
        if self.closed:
            return
        self.closed = True
        self.is_open = False
        self._emit(ChannelEvent(CLOSE, code=close_status_code, reason=close_msg))
