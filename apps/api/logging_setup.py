"""Logging helpers for the command-line entry points."""

import logging
import os


def setup_logging(level: str = None) -> logging.Logger:
    """Configure root logging and return the application logger"""
    level = level or os.getenv("LOG_LEVEL", "INFO")
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    return logging.getLogger("refashion")
