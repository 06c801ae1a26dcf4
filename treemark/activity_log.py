"""
Logging setup and the user-visible diagnostic feed
"""

import logging
import os
from collections import deque
from datetime import datetime
from typing import Callable, List, Optional

LOGGER_NAME = "treemark"
MAX_FEED_ENTRIES = 50


def setup_logger(logs_dir: str = "./logs", level: int = logging.DEBUG) -> logging.Logger:
    """Set up the package logger with a timestamped log file"""
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")

    # Create logs directory if it doesn't exist
    os.makedirs(logs_dir, exist_ok=True)

    log_filename = f"{logs_dir}/{timestamp}.log"

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    # Clear any existing handlers
    logger.handlers.clear()

    file_handler = logging.FileHandler(log_filename, encoding='utf-8')
    file_handler.setLevel(level)
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    # Don't propagate to root logger to avoid console spam
    logger.propagate = False

    logger.info("=== Treemark Log Started ===")
    logger.info(f"Log file: {log_filename}")
    return logger


class ActivityLog:
    """Append-only feed of the most recent pipeline events.

    Every entry also goes to the package logger; an optional listener gets
    each message as it is added (the CLI uses this to echo to the console).
    """

    def __init__(self, max_entries: int = MAX_FEED_ENTRIES, listener: Optional[Callable[[str], None]] = None):
        self._entries = deque(maxlen=max_entries)
        self.listener = listener
        self.logger = logging.getLogger(f"{LOGGER_NAME}.activity")

    def add(self, message: str, level: int = logging.INFO):
        self._entries.append(message)
        self.logger.log(level, message)
        if self.listener:
            self.listener(message)

    def warning(self, message: str):
        self.add(message, logging.WARNING)

    def clear(self):
        self._entries.clear()

    @property
    def entries(self) -> List[str]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
