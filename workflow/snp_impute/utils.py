from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from time import perf_counter


LOGGER_NAME = "snp_impute"
LOG_FORMAT = "[%(asctime)s] %(levelname)s - %(message)s"
LOG_DATEFMT = "%H:%M:%S"


def get_logger() -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATEFMT))
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
    return logger


@contextmanager
def step_logger(name: str):
    logger = get_logger()
    logger.info("* %s", name)
    start = perf_counter()
    try:
        yield logger
    finally:
        duration = perf_counter() - start
        logger.info("* %s done (%.2fs)", name, duration)


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
