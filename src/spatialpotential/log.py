"""
Logging setup for spatialpotential.

Engine modules only ever call `get_logger()`; handlers are attached once, by the
CLI or by `load_settings()`, so embedding applications keep full control over
where engine logs end up.
"""

from __future__ import annotations

import logging
from pathlib import Path

# One named logger for the whole package keeps filtering simple for callers.
LOGGER_NAME = "spatialpotential"

_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


def get_logger() -> logging.Logger:
    return logging.getLogger(LOGGER_NAME)


def configure_logging(log_dir: Path | None, level: str = "INFO") -> logging.Logger:
    logger = get_logger()
    # Accept "info" as well as "INFO" from YAML and CLI flags.
    logger.setLevel(level.upper())
    # Avoid duplicate lines through the root logger.
    logger.propagate = False

    if not logger.handlers:
        fmt = logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT)

        stream = logging.StreamHandler()
        stream.setFormatter(fmt)
        logger.addHandler(stream)

        if log_dir is not None:
            log_dir.mkdir(parents=True, exist_ok=True)
            # Stable filename so every run appends to the same audit log.
            file_handler = logging.FileHandler(log_dir / "spatialpotential.log", encoding="utf-8")
            file_handler.setFormatter(fmt)
            logger.addHandler(file_handler)

    # Re-configuring with a new level must also update existing handlers.
    for handler in logger.handlers:
        handler.setLevel(level.upper())
    return logger
