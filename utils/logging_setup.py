import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv
load_dotenv()

LOG_DIR = os.getenv("LOG_DIR", "logs")
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG").upper()
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _attach(logger: logging.Logger, handler: logging.Handler, level: int):
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)


def get_logger(name: str, log_file: str = None, level=None):
    """
    Logger for one module: stdout, plus LOG_DIR/<log_file> when given.

    Modules of one layer share a file (core.log, adapters.log, api_v1.log, scripts.log),
    so the file is opened in append mode. Calling this twice for the same name is a no-op.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    if level is None:
        level = getattr(logging, LOG_LEVEL, logging.DEBUG)
    logger.setLevel(level)

    _attach(logger, logging.StreamHandler(sys.stdout), level)
    if log_file:
        Path(LOG_DIR).mkdir(parents=True, exist_ok=True)
        _attach(logger, logging.FileHandler(Path(LOG_DIR) / log_file, mode="a", encoding="utf-8"), level)

    return logger
