"""
Logging setup for ragcore entry points.

Library modules only call ``structlog.get_logger()``; the renderer and
level are chosen here, once, by the process that embeds ragcore.
"""

import logging

import structlog


def configure_logging(level: str = "INFO", json: bool = False) -> None:
    """
    Configure structlog (and the stdlib root logger used by SQLAlchemy).

    Args:
        level: Minimum log level name ("DEBUG", "INFO", ...)
        json: Render JSON lines instead of the colored console format
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level}")

    logging.basicConfig(level=numeric_level, format="%(levelname)s %(name)s: %(message)s")

    renderer = structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
    )
