"""Тесты сессии: подключение, потоковая отправка, разовая доставка."""

from __future__ import annotations

import asyncio

import pytest
import requests

from hexapod.config import RobotConfig
from hexapod.hw.transport import StreamTransport
from hexapod.messages import ConnectionPhase
from hexapod.packet import FRAME_SIZE, Frame, decode, encode
from hexapod.session import RobotSession

FAST = RobotConfig(host="10.0.0.7", stream_port=8080, connect_timeout_s=0.05, stream_interval_s=0.01)


class _FakeStream:
    """Мок StreamTransport, собирающий записанные байты."""

    def __init__(self, open_error: BaseException | None = None) -> None:
        self.open_error = open_error
        self.opened: list[tuple[str, int, float]] = []
        self.written: list[bytes] = []
        self.closed = 0
        self.fail_writes = False

    async def open(self, host: str, port: int, timeout_s: float) -> None:
        self.opened.append((host, port, timeout_s))
        if self.open_error is not None:
            raise self.open_error

    async def write(self, data: bytes) -> None:
        if self.fail_writes:
            raise ConnectionResetError("robot went away")
        self.written.append(data)

    async def close(self) -> None:
        self.closed += 1


class _FakeHttp:
    """Мок HttpTransport."""

    def __init__(self, error: Exception | None = None) -> None:
        self.host = "10.0.0.7"
        self.error = error
        self.sent: list[Frame] = []

    async def send_async(self, frame: Frame) -> int:
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        self.sent.append(frame)
        return 200


def _session(stream: _FakeStream | None = None, http: _FakeHttp | None = None) -> RobotSession:
    stream = stream or _FakeStream()
    return RobotSession(robot_config=FAST, stream_factory=lambda: stream, http=http or _FakeHttp())


def test_connect_starts_streaming_current_frame() -> None:
    """После подключения текущий кадр отправляется с периодом stream_interval_s."""
    stream = _FakeStream()
    session = _session(stream)
    moving = Frame(power=100, duration_ticks=325)

    async def _run_test() -> None:
        await session.connect()
        assert session.connected
        assert stream.opened == [("10.0.0.7", 8080, 0.05)]

        session.set_current_frame(moving)
        await asyncio.sleep(0.06)
        await session.disconnect()

    asyncio.run(_run_test())

    assert stream.written.count(encode(moving)) >= 3
    assert all(len(chunk) == FRAME_SIZE for chunk in stream.written)


def test_connect_timeout_leaves_session_idle(caplog: pytest.LogCaptureFixture) -> None:
    stream = _FakeStream(open_error=asyncio.TimeoutError())
    session = _session(stream)

    asyncio.run(session.connect())

    assert session.state.connection_phase is ConnectionPhase.IDLE
    assert "Can't connect" in caplog.text
    assert len(stream.opened) == 1  # без повторных попыток


def test_connect_refused_leaves_session_idle() -> None:
    session = _session(_FakeStream(open_error=ConnectionRefusedError(111, "Connection refused")))

    asyncio.run(session.connect())

    assert not session.connected


def test_connect_uses_given_host_and_port() -> None:
    stream = _FakeStream()
    http = _FakeHttp()
    session = _session(stream, http)

    async def _run_test() -> None:
        await session.connect("192.168.4.2", 9000)
        await session.connect("192.168.4.3", 9001)  # уже подключены - игнорируется
        await session.disconnect()

    asyncio.run(_run_test())

    assert stream.opened == [("192.168.4.2", 9000, 0.05)]
    assert http.host == "192.168.4.2"


def test_disconnect_sends_final_neutral_frame() -> None:
    stream = _FakeStream()
    session = _session(stream)

    async def _run_test() -> None:
        await session.connect()
        session.apply_frame(Frame(rotation=100))
        await asyncio.sleep(0.02)
        await session.disconnect()

        written = len(stream.written)
        await asyncio.sleep(0.03)
        assert len(stream.written) == written  # поток остановлен

    asyncio.run(_run_test())

    assert decode(stream.written[-1]) == Frame.neutral()
    assert stream.closed == 1
    assert session.current_frame == Frame.neutral()
    assert session.state.connection_phase is ConnectionPhase.IDLE


def test_apply_frame_without_stream_sends_once() -> None:
    """Без потокового соединения каждый кадр уходит одним HTTP запросом, по порядку."""
    http = _FakeHttp()
    session = _session(http=http)
    frames = [Frame(power=100), Frame(rotation=-100), Frame.neutral()]

    async def _run_test() -> None:
        for frame in frames:
            session.apply_frame(frame)
        await session.wait_sent()

    asyncio.run(_run_test())

    assert http.sent == frames
    assert session.current_frame == Frame.neutral()


def test_apply_frame_while_connected_does_not_use_http() -> None:
    http = _FakeHttp()
    session = _session(http=http)

    async def _run_test() -> None:
        await session.connect()
        session.apply_frame(Frame(power=100))
        await session.wait_sent()
        assert session.current_frame == Frame(power=100)
        await session.disconnect()

    asyncio.run(_run_test())

    assert http.sent == []


def test_discrete_send_failure_is_swallowed(caplog: pytest.LogCaptureFixture) -> None:
    http = _FakeHttp(error=requests.ConnectionError("no route to host"))
    session = _session(http=http)

    async def _run_test() -> None:
        session.send_once(Frame(power=100))
        await session.wait_sent()

    asyncio.run(_run_test())

    assert "One-shot send" in caplog.text


def test_send_once_without_loop_drops_frame(caplog: pytest.LogCaptureFixture) -> None:
    http = _FakeHttp()
    session = _session(http=http)

    session.send_once(Frame())

    assert http.sent == []
    assert "no running event loop" in caplog.text


def test_disconnect_without_stream_sends_neutral_over_http() -> None:
    http = _FakeHttp()
    session = _session(http=http)

    asyncio.run(session.disconnect())

    assert http.sent == [Frame.neutral()]


def test_stream_failure_closes_session(caplog: pytest.LogCaptureFixture) -> None:
    """Обрыв потока: ошибка в логе, сессия закрывается, без переподключения."""
    stream = _FakeStream()
    session = _session(stream)

    async def _run_test() -> None:
        await session.connect()
        await asyncio.sleep(0.015)
        stream.fail_writes = True
        await asyncio.sleep(0.03)

    asyncio.run(_run_test())

    assert session.state.connection_phase is ConnectionPhase.IDLE
    assert stream.closed == 1
    assert "closing session" in caplog.text


def test_stream_over_real_socket() -> None:
    """Настоящий TCP: робот-заглушка получает 22-байтовые пакеты."""
    received = bytearray()

    async def _robot(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        writer.write(b"hello")
        while chunk := await reader.read(1024):
            received.extend(chunk)
        writer.close()

    async def _run_test() -> None:
        server = await asyncio.start_server(_robot, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        session = RobotSession(robot_config=FAST, stream_factory=StreamTransport, http=_FakeHttp())

        await session.connect("127.0.0.1", port)
        session.set_current_frame(Frame(power=100, angle=90))
        await asyncio.sleep(0.05)
        await session.disconnect()
        await asyncio.sleep(0.02)

        server.close()
        await server.wait_closed()

    asyncio.run(_run_test())

    assert len(received) >= 2 * FRAME_SIZE
    assert len(received) % FRAME_SIZE == 0
    packets = [bytes(received[i:i + FRAME_SIZE]) for i in range(0, len(received), FRAME_SIZE)]
    assert decode(packets[-1]) == Frame.neutral()
    assert Frame(power=100, angle=90) in [decode(p) for p in packets]


class _GatedStream(_FakeStream):
    """Поток, чьё открытие завершается только когда тест откроет ворота."""

    def __init__(self, open_error: BaseException | None = None) -> None:
        super().__init__(open_error)
        self.gate = asyncio.Event()

    async def open(self, host: str, port: int, timeout_s: float) -> None:
        self.opened.append((host, port, timeout_s))
        await self.gate.wait()
        if self.open_error is not None:
            raise self.open_error


@pytest.mark.parametrize("stale_opens_first", [True, False])
def test_reconnect_while_opening_keeps_newest_stream(stale_opens_first: bool) -> None:
    """connect -> disconnect -> connect: опоздавшая первая попытка закрывает свой поток."""
    moving = Frame(power=100)

    async def _run_test() -> tuple[_GatedStream, _GatedStream]:
        stale, fresh = _GatedStream(), _GatedStream()
        streams = iter([stale, fresh])
        session = RobotSession(robot_config=FAST, stream_factory=lambda: next(streams), http=_FakeHttp())

        first = asyncio.create_task(session.connect())
        await asyncio.sleep(0)
        await session.disconnect()
        second = asyncio.create_task(session.connect())
        await asyncio.sleep(0)
        assert session.state.connection_phase is ConnectionPhase.CONNECTING

        for stream in (stale, fresh) if stale_opens_first else (fresh, stale):
            stream.gate.set()
            await asyncio.sleep(0)
        await asyncio.gather(first, second)

        assert session.connected
        session.set_current_frame(moving)
        await asyncio.sleep(0.03)
        await session.disconnect()
        return stale, fresh

    stale, fresh = asyncio.run(_run_test())

    assert stale.written == []
    assert stale.closed == 1
    assert encode(moving) in fresh.written
    assert decode(fresh.written[-1]) == Frame.neutral()
    assert fresh.closed == 1


def test_stale_connect_failure_does_not_reset_newer_session() -> None:
    """Ошибка старой попытки не сбрасывает уже установленное новое соединение."""

    async def _run_test() -> RobotSession:
        stale = _GatedStream(open_error=ConnectionRefusedError(111, "Connection refused"))
        fresh = _FakeStream()
        streams = iter([stale, fresh])
        session = RobotSession(robot_config=FAST, stream_factory=lambda: next(streams), http=_FakeHttp())

        first = asyncio.create_task(session.connect())
        await asyncio.sleep(0)
        await session.disconnect()
        await session.connect()
        assert session.connected

        stale.gate.set()
        await first
        assert session.connected
        await session.disconnect()
        return session

    session = asyncio.run(_run_test())

    assert session.state.connection_phase is ConnectionPhase.IDLE
