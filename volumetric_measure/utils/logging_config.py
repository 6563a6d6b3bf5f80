"""
Logging Configuration

Central logging setup for the command line entry point and a small timing helper
used by the volume calculators.
"""

import logging
import time
from pathlib import Path
from typing import Optional, Union


DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str = "INFO",
                  log_file: Optional[Union[str, Path]] = None,
                  log_format: str = DEFAULT_FORMAT) -> logging.Logger:
    """
    Configure the root logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file receiving a copy of the log output
        log_format: Format string for all handlers

    Returns:
        Configured root logger
    """
    numeric_level = getattr(logging, level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {level}")

    formatter = logging.Formatter(log_format)
    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Replace handlers from earlier calls
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file is not None:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    return root_logger


class PerformanceTimer:
    """Context manager measuring wall-clock time of a block."""

    def __init__(self, logger: logging.Logger, operation: str):
        self.logger = logger
        self.operation = operation
        self.start_time = 0.0
        self.elapsed = 0.0

    def __enter__(self) -> "PerformanceTimer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> bool:
        self.elapsed = time.perf_counter() - self.start_time
        if exc_type is None:
            self.logger.debug(f"{self.operation} completed in {self.elapsed:.3f}s")
        else:
            self.logger.debug(f"{self.operation} failed after {self.elapsed:.3f}s")
        return False
