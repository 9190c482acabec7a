from __future__ import annotations

import logging
import os
import sys
from typing import Optional


LOGGER_NAME = "mongo_sample_check"


def build_logger(main_log_path: Optional[str] = None) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.INFO)
    logger.propagate = False

    formatter = logging.Formatter("%(asctime)s | %(levelname)s | %(message)s")

    handlers: list[logging.Handler] = []
    stream = logging.StreamHandler(sys.stdout)
    stream.setFormatter(formatter)
    handlers.append(stream)

    if main_log_path:
        log_dir = os.path.dirname(main_log_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(main_log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    for h in list(logger.handlers):
        h.close()
    logger.handlers.clear()
    for h in handlers:
        logger.addHandler(h)
    return logger
