import uvicorn

from hexapod import configure_logging
from hexapod.config import config


def main() -> None:
    configure_logging(config.server.log_level.upper())

    # uvicorn handles SIGINT/SIGTERM and runs the shutdown hook, which rests the robot
    uvicorn.run(
        "hexapod.web.server:app",
        host=config.server.host,
        port=config.server.port,
        reload=config.server.reload,
        log_level=config.server.log_level,
    )


if __name__ == "__main__":
    main()
