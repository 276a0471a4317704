import logging
import math
from collections.abc import Callable
from typing import Protocol

from hexapod import event_bus
from hexapod.bus import COMMAND_TOPIC, EventBus
from hexapod.config import MotionConfig, config
from hexapod.messages import (
    Command,
    GoBack,
    GoForward,
    Rest,
    RunPhase,
    RunState,
    SendCustom,
    TiltBack,
    TiltForward,
    TiltLeft,
    TiltRight,
    TurnLeft,
    TurnRight,
)
from hexapod.packet import TICKS_PER_SECOND, Frame, seconds_to_ticks
from hexapod.timers import OneShotTimer

logger = logging.getLogger(__name__)

# accelerometer reading faked for tilt commands, m/s^2 * 10
TILT_ACCEL = 30


class FrameSink(Protocol):
    def apply_frame(self, frame: Frame) -> None: ...


class Timer(Protocol):
    def start(self) -> "Timer": ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], Timer]


def _timed(duration_s: float, **fields: object) -> tuple[Frame, float]:
    return Frame(duration_ticks=seconds_to_ticks(duration_s), **fields), duration_s


def resolve(cmd: Command, motion: MotionConfig) -> tuple[Frame, float] | None:
    """
    Turn a command into the frame to send and how long it lasts (seconds).

    Returns None for anything that is not a known command.
    """
    match cmd:
        case GoForward(distance=d):
            return _timed(motion.max_speed_s_per_m * d, power=100, angle=0)
        case GoBack(distance=d):
            return _timed(motion.max_speed_s_per_m * d, power=100, angle=180)
        case TurnLeft(angle=a):
            return _timed(motion.rotation_time_s * a / 360, rotation=-100)
        case TurnRight(angle=a):
            return _timed(motion.rotation_time_s * a / 360, rotation=100)
        case TiltForward(duration=t):
            return _timed(t, static_tilt=True, accel_x=-TILT_ACCEL)
        case TiltBack(duration=t):
            return _timed(t, static_tilt=True, accel_x=TILT_ACCEL)
        case TiltLeft(duration=t):
            return _timed(t, static_tilt=True, accel_y=-TILT_ACCEL)
        case TiltRight(duration=t):
            return _timed(t, static_tilt=True, accel_y=TILT_ACCEL)
        case Rest(duration=t):
            return _timed(t)
        case SendCustom(frame=f):
            # tilt flags are passed through as given
            return f, (f.duration_ticks / TICKS_PER_SECOND if f.duration_ticks > 0 else 0.0)
        case _:
            return None


def _positive(value: float) -> bool:
    return math.isfinite(value) and value > 0


def validate(cmd: Command) -> str | None:
    """Return why the command can't be queued, or None if it is fine."""
    match cmd:
        case GoForward(distance=d) | GoBack(distance=d):
            if not _positive(d):
                return f"distance must be a finite number greater than zero, got {d}"
        case TurnLeft(angle=a) | TurnRight(angle=a):
            if not _positive(a):
                return f"angle must be a finite number greater than zero, got {a}"
        case TiltForward(duration=t) | TiltBack(duration=t) | TiltLeft(duration=t) | TiltRight(duration=t):
            if not _positive(t):
                return f"duration must be a finite number greater than zero, got {t}"
        case Rest(duration=t):
            if not (t == 0 or _positive(t)):
                return f"duration must be zero or a finite positive number, got {t}"
        case SendCustom(frame=f):
            if not isinstance(f, Frame):
                return f"custom packet must be a Frame, got {type(f).__name__}"
    return None


class CommandScheduler:
    """
    FIFO of high-level commands; exactly one of them is on the wire at a time.

    Dispatch hands the command's frame to the session and arms a one-shot timer
    for the command's duration plus a guard band. Expiry dispatches the next
    command or, with an empty queue, puts the robot at rest and goes IDLE.
    """

    def __init__(
        self,
        session: FrameSink,
        motion: MotionConfig | None = None,
        *,
        timer_factory: TimerFactory = OneShotTimer,
        bus: EventBus | None = None,
    ) -> None:
        self._session = session
        self._motion = motion or config.motion
        self._timer_factory = timer_factory
        self._bus = bus or event_bus
        self._timer: Timer | None = None
        self._active: Command | None = None
        self.state = RunState()

    async def start(self) -> None:
        await self._bus.subscribe(COMMAND_TOPIC, self._on_command)

    async def stop(self) -> None:
        """Stop taking bus commands and drop whatever is still queued."""
        await self._bus.unsubscribe(COMMAND_TOPIC, self._on_command)
        self.clear()

    async def _on_command(self, cmd: Command) -> None:
        self.submit(cmd)

    @property
    def phase(self) -> RunPhase:
        return self.state.phase

    @property
    def pending(self) -> int:
        return len(self.state.queue)

    @property
    def active(self) -> Command | None:
        return self._active

    # ------------------------------------------------------------------
    # Public commands
    # ------------------------------------------------------------------

    def go_forward(self, distance: float) -> None:
        self.submit(GoForward(distance))

    def go_back(self, distance: float) -> None:
        self.submit(GoBack(distance))

    def turn_left(self, angle: float) -> None:
        self.submit(TurnLeft(angle))

    def turn_right(self, angle: float) -> None:
        self.submit(TurnRight(angle))

    def tilt_forward(self, duration: float) -> None:
        self.submit(TiltForward(duration))

    def tilt_back(self, duration: float) -> None:
        self.submit(TiltBack(duration))

    def tilt_left(self, duration: float) -> None:
        self.submit(TiltLeft(duration))

    def tilt_right(self, duration: float) -> None:
        self.submit(TiltRight(duration))

    def rest(self, duration: float = 0.0) -> None:
        self.submit(Rest(duration))

    def send_custom(self, frame: Frame) -> None:
        self.submit(SendCustom(frame))

    # ------------------------------------------------------------------
    # Queue machinery
    # ------------------------------------------------------------------

    def submit(self, cmd: Command) -> bool:
        problem = validate(cmd)
        if problem is not None:
            logger.warning(f"{type(cmd).__name__}: {problem}; command ignored")
            return False
        self.enqueue(cmd)
        return True

    def enqueue(self, cmd: Command) -> None:
        logger.debug(f"Queued {cmd}")
        self.state.queue.append(cmd)
        if self.state.phase is RunPhase.IDLE:
            self.dispatch_next()

    def dispatch_next(self) -> None:
        """
        Put the head of the queue on the wire.

        Zero-duration commands arm no timer: their frame stays current and the
        next queued command (if any) follows right away.
        """
        while self.state.queue:
            cmd = self.state.queue.popleft()
            self.state.phase = RunPhase.RUNNING
            self._active = cmd

            try:
                resolved = resolve(cmd, self._motion)
                if resolved is None:
                    logger.error(f"Unknown command {cmd!r}; skipped")
                    continue

                frame, duration_s = resolved
                logger.info(f"Dispatching {cmd} for {duration_s:.2f}s ({frame.duration_ticks} ticks)")
                self._session.apply_frame(frame)
            except Exception:
                # one bad command must not leave the queue stuck in RUNNING
                logger.exception(f"Dispatching {cmd!r} failed; skipped")
                continue

            if duration_s > 0:
                self._timer = self._timer_factory(
                    duration_s + self._motion.guard_band_s, self._on_timer_expired
                ).start()
                return

        self._active = None
        self.state.phase = RunPhase.IDLE

    def clear(self) -> None:
        """Drop queued commands, cancel the armed timer and go IDLE."""
        dropped = len(self.state.queue)
        self.state.queue.clear()
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
        self._active = None
        self.state.phase = RunPhase.IDLE
        if dropped:
            logger.info(f"Dropped {dropped} queued command(s)")

    def _on_timer_expired(self) -> None:
        self._timer = None
        if self.state.queue:
            self.dispatch_next()
            return

        logger.info("Command queue drained, robot at rest")
        self._active = None
        self._session.apply_frame(Frame.neutral())
        self.state.phase = RunPhase.IDLE
