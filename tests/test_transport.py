import pytest

from core import transport
from core.transport import TransportChannel

class ScriptedSocketApp:
    """Replays a list of callback steps from run_forever."""

    script = []

    def __init__(self, url, on_open, on_message, on_error, on_close):
        self.url = url
        self.callbacks = {"open": on_open, "message": on_message, "error": on_error, "close": on_close}
        self.closed = False

    def run_forever(self, ping_interval=None):
        for step, *args in self.script:
            self.callbacks[step](self, *args)

    def close(self):
        self.closed = True

@pytest.fixture
def run_channel(monkeypatch):
    def run(*steps, on_event=None):
        ScriptedSocketApp.script = list(steps)
        monkeypatch.setattr(transport.websocket, "WebSocketApp", ScriptedSocketApp)
        events = []

        def record(channel, event):
            events.append(event)
            if on_event:
                on_event(channel, event)

        channel = TransportChannel("ws://test/api/ws", record)
        channel.open()
        channel._greenlet.join(timeout=1)
        return channel, events
    return run

def test_open_message_close(run_channel):
    channel, events = run_channel(("open",), ("message", '{"type": "status"}'), ("close", 1000, "bye"))

    assert [e.kind for e in events] == [transport.OPEN, transport.MESSAGE, transport.CLOSE]
    assert events[1].data == '{"type": "status"}'
    assert (events[2].code, events[2].reason) == (1000, "bye")
    assert channel.closed and not channel.is_open

def test_error_then_close_emits_one_close(run_channel):
    _, events = run_channel(("error", ConnectionRefusedError("refused")), ("close", 1006, None))

    assert [e.kind for e in events] == [transport.ERROR, transport.CLOSE]
    assert isinstance(events[0].data, ConnectionRefusedError)

def test_repeated_close_callback_is_collapsed(run_channel):
    _, events = run_channel(("open",), ("close", 1006, None), ("close", 1000, None))

    assert [e.kind for e in events] == [transport.OPEN, transport.CLOSE]
    assert events[1].code == 1006

def test_close_sent_when_run_forever_returns_silently(run_channel):
    channel, events = run_channel()

    assert [e.kind for e in events] == [transport.CLOSE]
    assert events[0].code is None
    assert channel.closed

def test_handler_failure_does_not_stop_delivery(run_channel):
    def explode(channel, event):
        if event.kind == transport.OPEN:
            raise ValueError("view crashed")

    _, events = run_channel(("open",), ("close", 1000, None), on_event=explode)

    assert [e.kind for e in events] == [transport.OPEN, transport.CLOSE]

def test_channel_is_single_use(run_channel):
    channel, _ = run_channel(("open",))

    channel.close()

    assert channel._app.closed
    assert not channel.is_open
    with pytest.raises(RuntimeError):
        channel.open()

def test_ws_url_is_passed_through(run_channel):
    channel, _ = run_channel()

    assert channel._app.url == "ws://test/api/ws"
