import asyncio
import logging
from collections.abc import Callable

import requests

from hexapod.config import RobotConfig, config
from hexapod.hw.transport import HttpTransport, StreamTransport
from hexapod.messages import ConnectionPhase, SessionState
from hexapod.packet import Frame, encode
from hexapod.timers import PeriodicTimer

logger = logging.getLogger(__name__)


class RobotSession:
    """
    Connection lifecycle and the "current frame" of one robot.

    While CONNECTED a periodic timer rewrites current_frame on the TCP stream
    so the robot watchdog keeps seeing packets. Without a stream every applied
    frame goes out once over HTTP instead.

    Every connect attempt opens its own transport and carries a generation
    number. An attempt that finishes after disconnect() or a newer connect()
    closes its transport and leaves the session alone.
    """

    def __init__(
        self,
        host: str | None = None,
        http_port: int | None = None,
        *,
        robot_config: RobotConfig | None = None,
        stream_factory: Callable[[], StreamTransport] = StreamTransport,
        http: HttpTransport | None = None,
    ) -> None:
        self._config = robot_config or config.robot
        self.host = host or self._config.host
        self.port = self._config.stream_port
        self.state = SessionState()

        self._stream_factory = stream_factory
        self._stream: StreamTransport | None = None
        self._attempt = 0
        self._http = http or HttpTransport(
            self.host, http_port or self._config.http_port, self._config.http_timeout_s
        )
        self._stream_timer: PeriodicTimer | None = None
        self._send_lock = asyncio.Lock()
        self._pending_sends: set[asyncio.Task[None]] = set()

    @property
    def connected(self) -> bool:
        return self.state.connection_phase is ConnectionPhase.CONNECTED

    @property
    def current_frame(self) -> Frame:
        return self.state.current_frame

    async def connect(self, host: str | None = None, port: int | None = None) -> None:
        """Open the stream and start streaming. Failures are logged, never raised."""
        if self.state.connection_phase is not ConnectionPhase.IDLE:
            logger.warning(f"connect: session is already {self.state.connection_phase.value}")
            return

        if host:
            self.host = host
            self._http.host = host
        if port:
            self.port = port

        self._attempt += 1
        attempt = self._attempt
        stream = self._stream_factory()
        self.state.connection_phase = ConnectionPhase.CONNECTING
        logger.info(f"Connecting to robot at {self.host}:{self.port}")
        try:
            await stream.open(self.host, self.port, self._config.connect_timeout_s)
        except asyncio.TimeoutError:
            logger.error(
                f"Can't connect to {self.host}:{self.port}: "
                f"no answer in {self._config.connect_timeout_s}s"
            )
            self._attempt_failed(attempt)
            return
        except OSError as e:
            logger.error(f"Can't connect to {self.host}:{self.port}: {e}")
            self._attempt_failed(attempt)
            return

        if attempt != self._attempt:
            logger.info(f"Connect attempt #{attempt} was superseded; closing its stream")
            await stream.close()
            return

        self._stream = stream
        self.state.connection_phase = ConnectionPhase.CONNECTED
        self._stream_timer = PeriodicTimer(self._config.stream_interval_s, self._stream_tick).start()
        logger.info(f"Connected to {self.host}:{self.port}, streaming every {self._config.stream_interval_s}s")

    def _attempt_failed(self, attempt: int) -> None:
        if attempt == self._attempt:
            self.state.connection_phase = ConnectionPhase.IDLE

    async def disconnect(self) -> None:
        """Stop streaming, send a last neutral frame and close the link."""
        # any connect still in flight is stale from here on
        self._attempt += 1
        timer, self._stream_timer = self._stream_timer, None
        if timer is not None:
            timer.cancel()

        neutral = Frame.neutral()
        self.state.current_frame = neutral
        stream, self._stream = self._stream, None
        if self.connected and stream is not None:
            try:
                await stream.write(encode(neutral))
            except OSError as e:
                logger.warning(f"Final neutral frame was not delivered: {e}")
        else:
            self.send_once(neutral)

        if stream is not None:
            await stream.close()
        self.state.connection_phase = ConnectionPhase.IDLE
        await self.wait_sent()
        logger.info(f"Disconnected from {self.host}")

    def set_current_frame(self, frame: Frame) -> None:
        self.state.current_frame = frame

    def apply_frame(self, frame: Frame) -> None:
        """Make frame current; without a live stream deliver it once over HTTP."""
        self.set_current_frame(frame)
        if not self.connected:
            self.send_once(frame)

    def send_once(self, frame: Frame) -> None:
        """Fire-and-forget delivery of one frame over the discrete channel."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("send_once: no running event loop, frame dropped")
            return
        task = loop.create_task(self._send_discrete(frame))
        self._pending_sends.add(task)
        task.add_done_callback(self._pending_sends.discard)

    async def wait_sent(self) -> None:
        """Wait until every queued one-shot send has finished."""
        while self._pending_sends:
            await asyncio.gather(*list(self._pending_sends))

    async def _send_discrete(self, frame: Frame) -> None:
        # Lock waiters are served FIFO, so packets reach the robot in dispatch order
        async with self._send_lock:
            try:
                await self._http.send_async(frame)
            except requests.RequestException as e:
                logger.error(f"One-shot send to {self._http.host} failed: {e}")

    async def _stream_tick(self) -> None:
        stream = self._stream
        if stream is None:
            return
        try:
            await stream.write(encode(self.state.current_frame))
        except OSError as e:
            logger.error(f"Stream to {self.host}:{self.port} failed: {e}; closing session")
            await self._drop_stream(stream)

    async def _drop_stream(self, stream: StreamTransport) -> None:
        if stream is not self._stream:
            return
        timer, self._stream_timer = self._stream_timer, None
        if timer is not None:
            timer.cancel()
        self._stream = None
        await stream.close()
        self.state.connection_phase = ConnectionPhase.IDLE
