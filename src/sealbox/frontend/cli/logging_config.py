"""Lightweight logging setup shared by the TUI, server and client."""

import logging
import sys

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"


def configure_logging(level: int | str = logging.INFO, stream=None, handlers=None) -> None:
    # Configure root logger once; keep output simple for terminals.
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    if handlers:
        # the TUI owns the terminal, so it routes records through its own handler
        logging.basicConfig(level=level, format=LOG_FORMAT, datefmt="%H:%M:%S", handlers=handlers)
    else:
        logging.basicConfig(
            level=level,
            format=LOG_FORMAT,
            datefmt="%H:%M:%S",
            stream=stream or sys.stdout,
        )
    # zeroconf is chatty at INFO
    logging.getLogger("zeroconf").setLevel(max(level, logging.WARNING))
