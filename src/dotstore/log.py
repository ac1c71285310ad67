"""Logging setup for the command line."""

from __future__ import annotations

import sys

from loguru import logger

_FORMAT = "<level>{level}</level>: {message}"


def configure_logging(verbose: bool = False) -> None:
    """Replace loguru's default handler with a single stderr sink."""
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else "WARNING",
        format=_FORMAT,
        colorize=None,
    )
