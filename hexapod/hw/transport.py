"""
Network links to the hexapod.

Two ways to get a packet to the robot:
- StreamTransport: persistent TCP stream, the session rewrites the current
  packet on it at the watchdog cadence.
- HttpTransport: one GET /send?raw=<base64> per packet, no session needed.
"""

import asyncio
import logging

import requests

from hexapod.packet import Frame, to_base64

logger = logging.getLogger(__name__)


class StreamTransport:
    """Byte stream to the robot on top of asyncio streams."""

    def __init__(self) -> None:
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._reader_task: asyncio.Task[None] | None = None

    @property
    def is_open(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    async def open(self, host: str, port: int, timeout_s: float) -> None:
        """
        Open the stream, bounded by timeout_s.

        Raises:
            asyncio.TimeoutError: robot did not answer in time
            OSError: connection refused, unreachable host, etc.
        """
        self._reader, self._writer = await asyncio.wait_for(
            asyncio.open_connection(host, port), timeout=timeout_s
        )
        self._reader_task = asyncio.create_task(self._read_loop(self._reader, f"{host}:{port}"))

    async def write(self, data: bytes) -> None:
        if self._writer is None or self._writer.is_closing():
            raise ConnectionError("stream is not open")
        self._writer.write(data)
        await self._writer.drain()

    async def close(self) -> None:
        reader_task, self._reader_task = self._reader_task, None
        if reader_task is not None:
            reader_task.cancel()

        writer, self._writer = self._writer, None
        self._reader = None
        if writer is None:
            return
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as e:
            logger.debug(f"Stream closed with error: {e}")

    async def _read_loop(self, reader: asyncio.StreamReader, peer: str) -> None:
        # The robot may talk back (debug output); it is only logged
        try:
            while True:
                data = await reader.read(256)
                if not data:
                    logger.info(f"Robot {peer} closed the stream")
                    return
                logger.debug(f"Robot {peer} -> {data!r}")
        except OSError as e:
            logger.debug(f"Reading from {peer} stopped: {e}")


class HttpTransport:
    """One-shot delivery through the robot's HTTP endpoint."""

    def __init__(self, host: str, port: int = 80, timeout_s: float = 2.0) -> None:
        self.host = host
        self.port = port
        self.timeout_s = timeout_s

    def url_for(self, frame: Frame) -> str:
        return f"http://{self.host}:{self.port}/send?raw={to_base64(frame)}"

    def send(self, frame: Frame) -> int:
        """
        Deliver exactly one packet (blocking).

        Raises:
            requests.RequestException: on network errors or a non-2xx answer
        """
        url = self.url_for(frame)
        logger.debug(f"GET {url}")
        response = requests.get(url, timeout=self.timeout_s)
        response.raise_for_status()
        return response.status_code

    async def send_async(self, frame: Frame) -> int:
        return await asyncio.to_thread(self.send, frame)
