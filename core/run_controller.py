import logging

from gevent import Timeout
from gevent.event import AsyncResult

from core import transport
from core.errors import ApiError, ChannelError, ClientError
from core.models import EventKind, Phase, RunState
from core.progress import decode_message, project
from core.run_view import RunView
from utils.i18n import tr

logger = logging.getLogger(__name__)

class RunController:
    """
    Drives one backup run at a time: open the progress channel, send the
    start request, follow the event stream until complete/error/disconnect.

    All RunState changes and every close of the channel happen here. Events
    from a channel the controller has already discarded are ignored, so a
    late close or message can never touch the next attempt.
    """

    def __init__(self, api, view=None, channel_factory=None, open_timeout=10, history_limit=50):
        self.api = api
        self.view = view or RunView()
        self.channel_factory = channel_factory or transport.TransportChannel
        self.open_timeout = open_timeout
        self.history_limit = history_limit
        self.state = RunState()
        self._channel = None
        self._open_waiter = None
        self._attempt = 0

    # --- Start ---

    def start(self, config):
        """Returns True once the server accepted the start request."""
        if self.state.phase is not Phase.IDLE:
            logger.warning(f"Start rejected, run is {self.state.phase.value}")
            message = tr("notice.alreadyRunning", "이미 백업이 실행 중입니다.")
            self.view.log(message, "warning")
            self.view.notice(message, "warning")
            return False

        if config.missing_fields():
            self.view.log(tr("log.pathsMissing", "경로 미입력: 원본 또는 목적지 경로가 비어있습니다."), "warning")
            self.view.notice(tr("notice.pathsRequired", "원본 경로와 목적지를 입력해주세요."), "warning")
            return False

        self._attempt += 1
        attempt = self._attempt
        self.state.begin_attempt()
        self.view.set_start_enabled(False)
        self._publish_state()
        self.view.log(tr("log.configSummary", "설정 확인: Source={source}, Dest={dest}",
                         source=config.source, dest=config.dest))

        try:
            self.view.log(tr("log.connecting", "WebSocket 연결 시도 중..."))
            channel = self._open_channel()
            self.view.log(tr("log.connected", "WebSocket 연결 성공. 서버에 실행 요청 전송 중..."))

            if channel is not self._channel or not channel.is_open:
                raise ChannelError(tr("error.channelLost", "WebSocket 연결이 끊어졌습니다. 다시 시도해주세요."))

            # Set before dispatch: the first progress event may beat the response
            self.state.start_request_sent = True
            self._publish_state()
            self.api.start_job(config)
        except ApiError as e:
            if e.field:
                logger.warning(f"Start rejected on field '{e.field}': {e.message}")
            self._abort(attempt, tr("notice.startFailed", "백업 시작 실패: {error}", error=e.message))
            return False
        except ClientError as e:
            self._abort(attempt, str(e))
            return False
        except Exception as e:
            logger.exception("Unexpected failure while starting a run")
            self._abort(attempt, str(e))
            return False

        self.view.log(tr("log.accepted", "서버가 실행 요청을 수락했습니다."), "success")
        if attempt == self._attempt and self.state.phase is Phase.STARTING:
            self.state.mark_running()
            self.view.reset_progress(tr("progress.preparing", "준비 중..."))
            self._publish_state()
        return True

    def _open_channel(self):
        waiter = AsyncResult()
        self._open_waiter = waiter
        channel = self.channel_factory(self.api.ws_url, self._on_channel_event)
        self._channel = channel
        try:
            channel.open()
            waiter.get(timeout=self.open_timeout)
        except Timeout:
            raise ChannelError(tr("error.channelTimeout", "WebSocket 연결 시간이 초과되었습니다."))
        finally:
            self._open_waiter = None
        return channel

    def _abort(self, attempt, message):
        """Failure before Running: back to Idle in one step, one notice."""
        if attempt != self._attempt or self.state.phase is not Phase.STARTING:
            # A terminal event already finished this attempt
            logger.info(f"Start failure after the attempt was finalized: {message}")
            return
        channel = self._channel
        self._channel = None
        self.state.reset()
        self.view.log(tr("log.startException", "실행 중 예외 발생: {error}", error=message), "error")
        self.view.notice(tr("notice.error", "오류: {error}", error=message), "error")
        self.view.reset_progress(tr("progress.errorText", "오류 발생"))
        self.view.set_start_enabled(True)
        self._publish_state()
        self._release(channel)

    # --- Channel events ---

    def _on_channel_event(self, channel, event):
        if channel is not self._channel:
            logger.debug(f"Ignoring {event.kind} event from a discarded channel")
            return

        if event.kind == transport.OPEN:
            self.state.channel_opened = True
            self.view.log(tr("log.channelOpen", "WebSocket 연결 열림"), "success")
            self._settle_open_waiter()
        elif event.kind == transport.MESSAGE:
            self._handle_message(event.data)
        elif event.kind == transport.ERROR:
            # Log only: the close event that follows decides what happens
            logger.warning(f"WebSocket error: {event.data}")
            self.view.log(tr("log.channelError", "WebSocket 연결 오류 발생"), "error")
            self._settle_open_waiter(ChannelError(tr("error.channelFailed", "WebSocket 연결에 실패했습니다.")))
        elif event.kind == transport.CLOSE:
            self._handle_close(event)

    def _settle_open_waiter(self, error=None):
        waiter = self._open_waiter
        if waiter is None or waiter.ready():
            return False
        if error is None:
            waiter.set(True)
        else:
            waiter.set_exception(error)
        return True

    def _handle_close(self, event):
        self.view.log(tr("log.channelClosed", "WebSocket 연결 종료 (Code: {code})", code=event.code), "warning")
        self.state.channel_opened = False

        if self._settle_open_waiter(ChannelError(tr("error.channelFailed", "WebSocket 연결에 실패했습니다."))):
            return

        if not self.state.may_still_run:
            # Nothing was sent; start() notices the closed channel and aborts
            logger.info("Channel closed before the start request was sent")
            return

        # The job may keep running server-side. Stay non-Idle so nobody
        # starts a second run against the same destination.
        self._channel = None
        if not self.state.terminal_notified:
            self.state.terminal_notified = True
            self.view.log(tr("log.disconnected", "서버와의 연결이 끊겼습니다. 백업 상태를 확인할 수 없습니다."), "error")
            self.view.notice(tr("notice.disconnected",
                                "서버와의 연결이 끊어졌습니다.\n\n백업이 계속 진행 중일 수 있으므로,\n"
                                "상태를 확인한 뒤 다시 동기화하세요."), "error")
        self._publish_state()

    def _handle_message(self, raw):
        event = decode_message(raw)
        if event is None:
            return
        delta = project(event)
        self.view.apply_progress(delta)
        if event.is_terminal:
            self._finish(event, delta)

    def _finish(self, event, delta):
        """complete / error: the run is over, whatever phase we were in."""
        self.state.phase = Phase.TERMINATING
        self.state.terminal_notified = True
        channel = self._channel
        self._channel = None
        self._release(channel)

        if event.kind is EventKind.COMPLETE:
            self.view.show_summary(delta.summary)
            self._refresh_history()
        else:
            self.view.reset_progress(tr("progress.errorText", "오류 발생"))
            self.view.notice(delta.notice, "error")

        self.state.reset()
        self.view.set_start_enabled(True)
        self._publish_state()

    # --- Recovery & status ---

    def resync(self):
        """
        Manual recovery after a disconnect: give up on the lost run,
        return to Idle and reload the run history.
        """
        if self.state.phase in (Phase.STARTING, Phase.TERMINATING) or \
                (self.state.phase is Phase.RUNNING and self._channel is not None):
            self.view.notice(tr("notice.resyncBusy", "백업이 진행 중이므로 다시 동기화할 수 없습니다."), "warning")
            return False

        channel = self._channel
        self._channel = None
        self.state.reset()
        self.state.terminal_notified = False
        self.view.log(tr("log.resynced", "실행 상태를 초기화했습니다."), "info")
        self.view.reset_progress()
        self.view.set_start_enabled(True)
        self._publish_state()
        self._release(channel)
        self._refresh_history()
        return True

    def _refresh_history(self):
        try:
            entries = self.api.get_backup_history(self.history_limit)
        except ApiError as e:
            logger.error(f"Failed to load run history: {e.message}")
            self.view.log(tr("log.historyFailed", "백업 이력 로드 실패"), "warning")
            return None
        self.view.show_history(entries)
        return entries

    def snapshot(self):
        data = self.state.to_dict()
        data["channel_attached"] = self._channel is not None
        data["start_enabled"] = self.state.phase is Phase.IDLE
        return data

    def _publish_state(self):
        self.view.state_changed(self.snapshot())

    @staticmethod
    def _release(channel):
        if channel is not None:
            channel.close()
