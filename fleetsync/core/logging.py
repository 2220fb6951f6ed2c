"""Logging setup for the API process and scripts."""

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | int = logging.INFO, *, force: bool = False) -> None:
    """Configure the root logger once; later calls are no-ops unless forced."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    root = logging.getLogger()
    if root.handlers and not force:
        root.setLevel(level)
        return
    logging.basicConfig(level=level, format=LOG_FORMAT, force=force)
