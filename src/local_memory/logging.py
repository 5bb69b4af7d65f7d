"""
Structured logging for local-memory.

Everything is written to stderr. The MCP server speaks JSON-RPC over stdout
in stdio mode and the CLI prints its results there, so log lines must never
share that stream.
"""

from __future__ import annotations

import logging
import sys

import structlog

#: Client libraries that log every request at INFO; kept at WARNING.
NOISY_LOGGERS = ("httpx", "httpcore", "chromadb", "urllib3")


def setup_logging(level: str = "INFO", json_format: bool = False) -> None:
    """Route stdlib and structlog output to stderr.

    Args:
        level: Logging level name; unknown names fall back to INFO
        json_format: Emit one JSON object per line instead of console output
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        level=numeric_level,
        stream=sys.stderr,
        force=True,
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    renderer = (
        structlog.processors.JSONRenderer()
        if json_format
        else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
