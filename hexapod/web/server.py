import json
import logging
from typing import Any, Literal

from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ValidationError

from hexapod import event_bus
from hexapod.config import config
from hexapod.messages import (
    Command,
    GoBack,
    GoForward,
    Rest,
    SendCustom,
    TiltBack,
    TiltForward,
    TiltLeft,
    TiltRight,
    TurnLeft,
    TurnRight,
)
from hexapod.packet import Frame, PacketError, from_base64
from hexapod.robot import Hexapod

logger = logging.getLogger(__name__)

app = FastAPI()

robot = Hexapod()

# Commands taking a single numeric argument
_SCALAR_COMMANDS: dict[str, type] = {
    "go_forward": GoForward,
    "go_back": GoBack,
    "turn_left": TurnLeft,
    "turn_right": TurnRight,
    "tilt_forward": TiltForward,
    "tilt_back": TiltBack,
    "tilt_left": TiltLeft,
    "tilt_right": TiltRight,
    "rest": Rest,
}


class CommandMessage(BaseModel):
    """Команда от клиента: {"type": "go_forward", "value": 0.5} или {"type": "custom", "frame": {...}}"""
    type: str
    value: float = 0.0
    frame: Frame | None = None


class ConnectRequest(BaseModel):
    host: str | None = None
    port: int | None = None


def build_command(msg: CommandMessage) -> Command:
    """
    Raises:
        ValueError: unknown command type
    """
    if msg.type == "custom":
        return SendCustom(msg.frame or Frame())
    command_cls = _SCALAR_COMMANDS.get(msg.type)
    if command_cls is None:
        raise ValueError(f"Unknown command type: {msg.type!r}")
    return command_cls(msg.value)


@app.on_event("startup")
async def on_startup() -> None:
    await robot.start()


@app.on_event("shutdown")
async def on_shutdown() -> None:
    logger.info("Shutting down, stopping the robot")
    await robot.stop()


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/config")
async def get_config() -> dict[str, Any]:
    """Получить конфигурацию для фронтенда"""
    return {
        "robot": {
            "host": robot.session.host,
            "stream_port": config.robot.stream_port,
            "http_port": config.robot.http_port,
            "stream_interval_ms": int(config.robot.stream_interval_s * 1000),
        },
        "motion": config.motion.model_dump(),
    }


@app.get("/api/status")
async def get_status() -> dict[str, Any]:
    return robot.status()


@app.post("/api/connect")
async def connect(req: ConnectRequest) -> dict[str, Any]:
    await robot.connect(req.host, req.port)
    return robot.status()


@app.post("/api/disconnect")
async def disconnect() -> dict[str, Any]:
    await robot.disconnect()
    return robot.status()


@app.post("/api/commands")
async def post_command(msg: CommandMessage) -> dict[str, Any]:
    try:
        cmd = build_command(msg)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    await event_bus.publish_command(cmd)
    return robot.status()


@app.get("/send")
async def loopback_send(raw: str = Query(...)) -> dict[str, Any]:
    """Приёмник пакетов в формате робота: для отладки без железа."""
    try:
        frame = from_base64(raw)
    except PacketError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    logger.info(f"Loopback packet: {frame}")
    return frame.model_dump(mode="json")


@app.websocket("/ws/control")
async def ws_control(ws: WebSocket) -> None:
    await ws.accept()
    try:
        while True:
            msg_text = await ws.receive_text()
            try:
                payload = json.loads(msg_text)
                if payload.get("type") == "disconnect":
                    await robot.disconnect()
                else:
                    await event_bus.publish_command(build_command(CommandMessage.model_validate(payload)))
            except (ValueError, ValidationError, AttributeError) as e:
                logger.warning(f"Bad control message {msg_text!r}: {e}")
                await ws.send_json({"error": str(e)})
                continue
            await ws.send_json(robot.status())

    except WebSocketDisconnect:
        logger.info("Control websocket closed")
