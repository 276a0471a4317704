"""
Binary control packet for the STEMI hexapod.

Wire layout (22 bytes, one frame per packet):

    3 bytes   magic "PKT" (0x50 0x4B 0x54)
    1 byte    power           [0..100]
    1 byte    angle / 2       [-90..90], the robot doubles it back
    1 byte    rotation        [-100..100], positive is clockwise
    1 byte    static_tilt     0/1
    1 byte    moving_tilt     0/1
    1 byte    powered_on      0/1
    1 byte    accel_x         [-40..40], m/s^2 * 10
    1 byte    accel_y         [-40..40], m/s^2 * 10
    9 bytes   sliders         [0] height, [1] gait, [2..8] user data
    2 bytes   duration_ticks  u16 big-endian, 1 tick = 20 ms

Signed fields travel as two's-complement bytes.

Usage example:

    frame = Frame(power=100, duration_ticks=seconds_to_ticks(1.0))
    payload = encode(frame)
    assert decode(payload) == frame
"""

import base64
import binascii
import logging
import math
import struct

from pydantic import BaseModel, ConfigDict, field_validator

logger = logging.getLogger(__name__)

MAGIC = b"PKT"
SLIDER_COUNT = 9
DEFAULT_SLIDERS: tuple[int, ...] = (50, 25, 0, 0, 0, 0, 0, 0, 0)
ACCEL_LIMIT = 40
MAX_DURATION_TICKS = 0xFFFF
TICKS_PER_SECOND = 50

_LAYOUT = struct.Struct(">3s8B9BH")
FRAME_SIZE = _LAYOUT.size


class PacketError(ValueError):
    """Raised when a byte sequence is not a valid hexapod packet."""


class Frame(BaseModel):
    """
    Состояние "джойстика", которое робот исполняет.

    Значения по умолчанию соответствуют роботу, стоящему на месте.
    Конструктор никогда не падает на корректно типизированных данных:
    поля нормализуются (sliders, акселерометр, duration_ticks).
    power/angle/rotation не проверяются, это контракт вызывающей стороны.
    """

    model_config = ConfigDict(frozen=True)

    power: int = 0
    angle: int = 0
    rotation: int = 0
    static_tilt: bool = False
    moving_tilt: bool = False
    powered_on: bool = True
    accel_x: int = 0
    accel_y: int = 0
    sliders: tuple[int, ...] = DEFAULT_SLIDERS
    duration_ticks: int = 0

    @field_validator("sliders", mode="before")
    @classmethod
    def _default_bad_sliders(cls, value: object) -> object:
        if value is None:
            return DEFAULT_SLIDERS
        if isinstance(value, (bytes, bytearray)):
            value = tuple(value)
        if isinstance(value, str) or not hasattr(value, "__len__"):
            return value
        if len(value) != SLIDER_COUNT:
            logger.warning(
                f"Frame: sliders must hold exactly {SLIDER_COUNT} values, got {len(value)}; using defaults"
            )
            return DEFAULT_SLIDERS
        return value

    @field_validator("sliders")
    @classmethod
    def _clamp_sliders(cls, value: tuple[int, ...]) -> tuple[int, ...]:
        return tuple(min(max(v, 0), 0xFF) for v in value)

    @field_validator("accel_x", "accel_y")
    @classmethod
    def _saturate_accel(cls, value: int) -> int:
        return min(max(value, -ACCEL_LIMIT), ACCEL_LIMIT)

    @field_validator("duration_ticks")
    @classmethod
    def _clamp_duration(cls, value: int) -> int:
        if 0 <= value <= MAX_DURATION_TICKS:
            return value
        clamped = min(max(value, 0), MAX_DURATION_TICKS)
        logger.warning(f"Frame: duration_ticks {value} out of u16 range; clamped to {clamped}")
        return clamped

    @classmethod
    def neutral(cls) -> "Frame":
        """All-stop frame: robot powered on, standing still."""
        return cls()


def seconds_to_ticks(seconds: float) -> int:
    """Convert seconds to 20 ms robot ticks, rounding half up and saturating at u16."""
    if math.isnan(seconds) or seconds <= 0:
        return 0
    if math.isinf(seconds):
        return MAX_DURATION_TICKS
    return min(int(seconds * TICKS_PER_SECOND + 0.5), MAX_DURATION_TICKS)


def _signed(byte: int) -> int:
    return byte - 0x100 if byte > 0x7F else byte


def encode(frame: Frame) -> bytes:
    """Encode a frame into its 22-byte wire form. Never raises."""
    return _LAYOUT.pack(
        MAGIC,
        frame.power & 0xFF,
        int(frame.angle / 2) & 0xFF,  # truncates toward zero
        frame.rotation & 0xFF,
        int(frame.static_tilt),
        int(frame.moving_tilt),
        int(frame.powered_on),
        frame.accel_x & 0xFF,
        frame.accel_y & 0xFF,
        *frame.sliders,
        frame.duration_ticks,
    )


def decode(data: bytes) -> Frame:
    """
    Decode a 22-byte packet back into a Frame.

    The robot never answers with packets, this exists for tests and for the
    loopback receiver in the web service. Odd angles do not survive the round
    trip: the wire carries angle / 2.
    """
    if len(data) != FRAME_SIZE:
        raise PacketError(f"Packet length {len(data)} != {FRAME_SIZE}")

    magic, power, half_angle, rotation, static_tilt, moving_tilt, powered_on, accel_x, accel_y, *tail = (
        _LAYOUT.unpack(data)
    )
    if magic != MAGIC:
        raise PacketError(f"Bad packet magic {magic!r}")

    return Frame(
        power=power,
        angle=_signed(half_angle) * 2,
        rotation=_signed(rotation),
        static_tilt=bool(static_tilt),
        moving_tilt=bool(moving_tilt),
        powered_on=bool(powered_on),
        accel_x=_signed(accel_x),
        accel_y=_signed(accel_y),
        sliders=tuple(tail[:SLIDER_COUNT]),
        duration_ticks=tail[SLIDER_COUNT],
    )


def to_base64(frame: Frame) -> str:
    """URL-safe Base64 of the encoded frame, for the `raw` query parameter."""
    return base64.urlsafe_b64encode(encode(frame)).decode("ascii")


def from_base64(text: str) -> Frame:
    try:
        data = base64.urlsafe_b64decode(text.encode("ascii"))
    except (binascii.Error, UnicodeEncodeError) as e:
        raise PacketError(f"Packet is not valid base64: {e}") from e
    return decode(data)
