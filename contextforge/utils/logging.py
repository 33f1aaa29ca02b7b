"""Logging configuration for ContextForge."""

from __future__ import annotations

import logging
import sys


def setup_logging(verbose: bool = False) -> None:
    """Configure structured logging for the engine and CLI."""
    level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)

    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    handler.setFormatter(formatter)

    root_logger = logging.getLogger("contextforge")
    root_logger.setLevel(level)
    root_logger.addHandler(handler)

    # tiktoken logs encoding downloads at INFO
    logging.getLogger("tiktoken").setLevel(logging.WARNING)
