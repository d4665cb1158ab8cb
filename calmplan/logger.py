import logging
import sys
import os
from logging.handlers import RotatingFileHandler

from .config import get_log_config


class CustomFormatter(logging.Formatter):
    """Custom formatter with colors for console output"""

    grey = "\x1b[38;20m"
    blue = "\x1b[34;20m"
    yellow = "\x1b[33;20m"
    red = "\x1b[31;20m"
    bold_red = "\x1b[31;1m"
    reset = "\x1b[0m"
    format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s (%(filename)s:%(lineno)d)"

    FORMATS = {
        logging.DEBUG: grey + format_str + reset,
        logging.INFO: blue + format_str + reset,
        logging.WARNING: yellow + format_str + reset,
        logging.ERROR: red + format_str + reset,
        logging.CRITICAL: bold_red + format_str + reset
    }

    def format(self, record):
        log_fmt = self.FORMATS.get(record.levelno)
        formatter = logging.Formatter(log_fmt, datefmt="%Y-%m-%d %H:%M:%S")
        return formatter.format(record)


def setup_logger(name: str = "calmplan", level: str = None) -> logging.Logger:
    """
    Configures and returns the package logger.

    Module loggers (logging.getLogger(__name__)) inside the package
    propagate here, so handlers are attached once to the root of the
    calmplan namespace.
    """
    cfg = get_log_config()

    logger = logging.getLogger(name)
    logger.setLevel(level or cfg.level.upper())

    # Prevent duplicate handlers if function is called multiple times
    if logger.handlers:
        return logger

    # Console Handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(CustomFormatter())
    logger.addHandler(console_handler)

    # File Handler (Rotating)
    # 5MB max size per file, keep last 5 backups
    if cfg.file_logging:
        os.makedirs(cfg.log_dir, exist_ok=True)
        log_file = os.path.join(cfg.log_dir, "calmplan.log")
        file_handler = RotatingFileHandler(log_file, maxBytes=5*1024*1024, backupCount=5, encoding='utf-8')
        file_formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )
        file_handler.setFormatter(file_formatter)
        logger.addHandler(file_handler)

    return logger
