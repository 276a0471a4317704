"""
High-level control of one STEMI hexapod.

Usage example:

    robot = Hexapod("192.168.4.1")
    await robot.connect()
    robot.go_forward(0.5)
    robot.turn_right(90)
    while robot.phase is RunPhase.RUNNING:
        await asyncio.sleep(0.1)
    await robot.disconnect()

Without connect() every command is delivered as a single HTTP request.
"""

from typing import Any

from hexapod.bus import EventBus
from hexapod.messages import RunPhase
from hexapod.nodes.scheduler import CommandScheduler
from hexapod.packet import Frame
from hexapod.session import RobotSession


class Hexapod:
    """Public command surface: session lifecycle plus queued motion commands."""

    def __init__(
        self,
        host: str | None = None,
        http_port: int | None = None,
        *,
        session: RobotSession | None = None,
        scheduler: CommandScheduler | None = None,
        bus: EventBus | None = None,
    ) -> None:
        self.session = session or RobotSession(host, http_port)
        self.scheduler = scheduler or CommandScheduler(self.session, bus=bus)

    async def start(self) -> None:
        """Start taking commands from the event bus."""
        await self.scheduler.start()

    async def stop(self) -> None:
        """Detach from the event bus; a connected or busy robot is put at rest first."""
        if self.session.connected or self.phase is RunPhase.RUNNING:
            await self.disconnect()
        await self.scheduler.stop()

    async def connect(self, host: str | None = None, port: int | None = None) -> None:
        await self.session.connect(host, port)

    async def disconnect(self) -> None:
        """Abort everything: queued and running commands are dropped, robot left at rest."""
        self.scheduler.clear()
        await self.session.disconnect()

    @property
    def phase(self) -> RunPhase:
        return self.scheduler.phase

    def go_forward(self, distance: float) -> None:
        """
        Args:
            distance: meters, > 0
        """
        self.scheduler.go_forward(distance)

    def go_back(self, distance: float) -> None:
        """
        Args:
            distance: meters, > 0
        """
        self.scheduler.go_back(distance)

    def turn_left(self, angle: float) -> None:
        """
        Args:
            angle: degrees, > 0
        """
        self.scheduler.turn_left(angle)

    def turn_right(self, angle: float) -> None:
        """
        Args:
            angle: degrees, > 0
        """
        self.scheduler.turn_right(angle)

    def tilt_forward(self, duration: float) -> None:
        self.scheduler.tilt_forward(duration)

    def tilt_back(self, duration: float) -> None:
        self.scheduler.tilt_back(duration)

    def tilt_left(self, duration: float) -> None:
        self.scheduler.tilt_left(duration)

    def tilt_right(self, duration: float) -> None:
        self.scheduler.tilt_right(duration)

    def rest(self, duration: float = 0.0) -> None:
        """
        Args:
            duration: seconds; 0 rests until the next command
        """
        self.scheduler.rest(duration)

    def send_custom(self, frame: Frame) -> None:
        """Queue a hand-built frame; its duration_ticks (if any) sets how long it runs."""
        self.scheduler.send_custom(frame)

    def status(self) -> dict[str, Any]:
        active = self.scheduler.active
        return {
            "host": self.session.host,
            "connection": self.session.state.connection_phase.value,
            "phase": self.scheduler.phase.value,
            "active": type(active).__name__ if active is not None else None,
            "queued": self.scheduler.pending,
            "frame": self.session.current_frame.model_dump(mode="json"),
        }
