from collections import deque
from dataclasses import dataclass, field
from enum import Enum

from hexapod.packet import Frame


class ConnectionPhase(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class RunPhase(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


@dataclass(frozen=True)
class GoForward:
    distance: float  # meters


@dataclass(frozen=True)
class GoBack:
    distance: float  # meters


@dataclass(frozen=True)
class TurnLeft:
    angle: float  # degrees


@dataclass(frozen=True)
class TurnRight:
    angle: float  # degrees


@dataclass(frozen=True)
class TiltForward:
    duration: float  # seconds


@dataclass(frozen=True)
class TiltBack:
    duration: float


@dataclass(frozen=True)
class TiltLeft:
    duration: float


@dataclass(frozen=True)
class TiltRight:
    duration: float


@dataclass(frozen=True)
class Rest:
    duration: float = 0.0  # 0 -> rest until the next command


@dataclass(frozen=True)
class SendCustom:
    frame: Frame


Command = (
    GoForward | GoBack | TurnLeft | TurnRight | TiltForward | TiltBack | TiltLeft | TiltRight | Rest | SendCustom
)


@dataclass
class SessionState:
    connection_phase: ConnectionPhase = ConnectionPhase.IDLE
    current_frame: Frame = field(default_factory=Frame.neutral)


@dataclass
class RunState:
    phase: RunPhase = RunPhase.IDLE
    queue: deque[Command] = field(default_factory=deque)
