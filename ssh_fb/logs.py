"""Logging setup: console always, rotating file when logging.log_file is set."""
from __future__ import annotations

import logging
import logging.handlers
import os

from ssh_fb.config import LoggingConfig

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s – %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(cfg: LoggingConfig, *, verbose: bool = False) -> logging.Logger:
    level = logging.DEBUG if verbose else getattr(logging, cfg.level.upper(), logging.INFO)
    logger = logging.getLogger("ssh_fb")
    logger.setLevel(level)
    logger.handlers.clear()
    logger.propagate = False

    fmt = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(fmt)
    logger.addHandler(console)

    if cfg.log_file:
        log_dir = os.path.dirname(cfg.log_file)
        try:
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            fh = logging.handlers.RotatingFileHandler(
                cfg.log_file,
                maxBytes=cfg.max_size * 1024 * 1024,
                backupCount=cfg.max_backups,
                encoding="utf-8",
            )
        except OSError as exc:
            logger.warning("Could not open log file %s (%s), console only", cfg.log_file, exc)
        else:
            fh.setFormatter(fmt)
            logger.addHandler(fh)

    return logger
