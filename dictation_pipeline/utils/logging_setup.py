"""
Logging setup for the dictation pipeline.
"""

import logging
import os
import sys
from datetime import datetime

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def get_logs_dir():
    return os.path.join(os.path.expanduser("~"), ".dictation_pipeline", "logs")


def setup_logging(level=logging.INFO, logs_dir=None):
    """
    Configure the root logger with a daily log file and a console handler.

    Args:
        level: Logging level (default: INFO)
        logs_dir: Directory for log files (default: ~/.dictation_pipeline/logs)

    Returns:
        The configured root logger
    """
    logs_dir = logs_dir or get_logs_dir()
    os.makedirs(logs_dir, exist_ok=True)

    timestamp = datetime.now().strftime("%Y-%m-%d")
    log_file = os.path.join(logs_dir, f"dictation_{timestamp}.log")

    root_logger = logging.getLogger()
    # Drop handlers from an earlier call so messages are not duplicated
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    root_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT)

    try:
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
    except OSError as e:
        print(f"Error setting up file logging: {e}", file=sys.stderr)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    root_logger.addHandler(stream_handler)

    root_logger.info("Logging initialized")
    root_logger.info(f"Log file: {log_file}")

    return root_logger


def set_debug(enabled):
    """Switch the root logger between DEBUG and INFO."""
    logging.getLogger().setLevel(logging.DEBUG if enabled else logging.INFO)
