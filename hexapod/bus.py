"""
In-process pub/sub between the web surface and the command scheduler.

Topics are plain strings. Handlers of one topic run concurrently; a handler
that raises is logged and does not affect the others or the publisher.

Usage example:

    bus = EventBus()
    await bus.subscribe(COMMAND_TOPIC, scheduler_handler)
    await bus.publish_command(GoForward(0.5))
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import Callable, Coroutine
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
Handler = Callable[[T], Coroutine[Any, Any, None]]

COMMAND_TOPIC = "hexapod/cmd"


class EventBus:
    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler[Any]]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def subscribe(self, topic: str, handler: Handler[T]) -> None:
        async with self._lock:
            if handler in self._handlers[topic]:
                logger.warning(f"{topic}: handler {handler!r} is already subscribed")
                return
            self._handlers[topic].append(handler)  # type: ignore[arg-type]

    async def unsubscribe(self, topic: str, handler: Handler[T]) -> bool:
        """Returns False if the handler was not subscribed to topic."""
        async with self._lock:
            handlers = self._handlers.get(topic, [])
            if handler not in handlers:
                return False
            handlers.remove(handler)  # type: ignore[arg-type]
            if not handlers:
                del self._handlers[topic]
            return True

    async def publish(self, topic: str, message: T) -> int:
        """Deliver message to every handler of topic; returns how many of them failed."""
        async with self._lock:
            handlers = list(self._handlers.get(topic, []))
        if not handlers:
            logger.debug(f"{topic}: no subscribers for {message!r}")
            return 0

        results = await asyncio.gather(*(h(message) for h in handlers), return_exceptions=True)
        failed = 0
        for handler, result in zip(handlers, results):
            if isinstance(result, Exception):
                failed += 1
                logger.error(
                    f"{topic}: handler {handler!r} failed on {message!r}",
                    exc_info=result,
                )
        return failed

    async def publish_command(self, cmd: Any) -> int:
        return await self.publish(COMMAND_TOPIC, cmd)

    def subscriber_count(self, topic: str) -> int:
        return len(self._handlers.get(topic, []))
