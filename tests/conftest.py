from __future__ import annotations

from collections.abc import Callable

import pytest

from hexapod.bus import EventBus
from hexapod.messages import ConnectionPhase, SessionState
from hexapod.packet import Frame


class FakeSession:
    """Сессия без сети: запоминает все кадры, отданные планировщиком."""

    def __init__(self) -> None:
        self.state = SessionState()
        self.host = "fake-robot"
        self.applied: list[Frame] = []
        self.connect_calls: list[tuple[str | None, int | None]] = []
        self.disconnects = 0

    @property
    def connected(self) -> bool:
        return self.state.connection_phase is ConnectionPhase.CONNECTED

    @property
    def current_frame(self) -> Frame:
        return self.state.current_frame

    def apply_frame(self, frame: Frame) -> None:
        self.applied.append(frame)
        self.state.current_frame = frame

    async def connect(self, host: str | None = None, port: int | None = None) -> None:
        self.connect_calls.append((host, port))
        self.state.connection_phase = ConnectionPhase.CONNECTED

    async def disconnect(self) -> None:
        self.disconnects += 1
        neutral = Frame.neutral()
        self.applied.append(neutral)
        self.state.current_frame = neutral
        self.state.connection_phase = ConnectionPhase.IDLE


class ManualTimer:
    """Таймер, который срабатывает только по команде теста."""

    def __init__(self, delay_s: float, callback: Callable[[], None]) -> None:
        self.delay_s = delay_s
        self.callback = callback
        self.started = False
        self.cancelled = False

    def start(self) -> ManualTimer:
        self.started = True
        return self

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        assert self.started and not self.cancelled
        self.callback()


class ManualTimers:
    """Фабрика ManualTimer, запоминающая все созданные таймеры."""

    def __init__(self) -> None:
        self.created: list[ManualTimer] = []

    def __call__(self, delay_s: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(delay_s, callback)
        self.created.append(timer)
        return timer

    @property
    def last(self) -> ManualTimer:
        return self.created[-1]


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def timers() -> ManualTimers:
    return ManualTimers()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()
