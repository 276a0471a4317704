import logging

from .bus import EventBus

LOG_FORMAT = "%(levelname)s:     %(name)s - %(message)s"


def configure_logging(level: int | str = logging.INFO) -> None:
    """Root handler in uvicorn's look; the hexapod loggers follow level."""
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger(__name__).setLevel(level)


configure_logging()

# shared by the web surface and the scheduler
event_bus = EventBus()
