"""structlog setup shared by the engine factory and scripts."""
import structlog

from chaincredit.config import settings


def configure_logging(fmt: str = "") -> None:
    renderer = (
        structlog.dev.ConsoleRenderer()
        if (fmt or settings.LOG_FORMAT) == "console"
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
    )
