"""
Centralized logging configuration for sealmarket.

Provides colored console logging and an optional log file, with separate
loggers for each subsystem (codec, tally, payout, stats, ledger, storage).
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import colorlog


class SealLogger:
    """Centralized logger for sealmarket components"""

    _initialized = False
    _log_dir: Optional[Path] = None

    @classmethod
    def setup(
        cls,
        level: int = logging.INFO,
        log_dir: Optional[str] = None,
        log_to_file: bool = False,
    ):
        """
        Setup logging configuration.

        Args:
            level: Logging level (DEBUG, INFO, WARNING, ERROR)
            log_dir: Directory for log files. If None, uses ./logs
            log_to_file: Whether to write logs to file
        """
        if cls._initialized:
            # Loggers are created at import time; later calls adjust level
            # and may attach the file handler.
            root_logger = logging.getLogger("sealmarket")
            root_logger.setLevel(level)
            for handler in root_logger.handlers:
                handler.setLevel(level)
            if log_to_file and cls._log_dir is None:
                cls._add_file_handler(root_logger, level, log_dir)
            return

        root_logger = logging.getLogger("sealmarket")
        root_logger.setLevel(level)
        root_logger.handlers.clear()

        # Console handler with colors. stderr keeps CLI JSON output clean.
        console_handler = colorlog.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        console_formatter = colorlog.ColoredFormatter(
            "%(log_color)s%(asctime)s [%(name)s] %(levelname)-8s%(reset)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "red,bg_white",
            },
        )
        console_handler.setFormatter(console_formatter)
        root_logger.addHandler(console_handler)

        if log_to_file:
            cls._add_file_handler(root_logger, level, log_dir)

        cls._initialized = True

    @classmethod
    def _add_file_handler(cls, root_logger: logging.Logger, level: int, log_dir: Optional[str]):
        cls._log_dir = Path(log_dir) if log_dir else Path("logs")
        cls._log_dir.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(cls._log_dir / "sealmarket.log")
        file_handler.setLevel(level)
        file_formatter = logging.Formatter(
            "%(asctime)s [%(name)s] %(levelname)-8s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """
        Get a logger for a specific subsystem.

        Args:
            name: Subsystem name (e.g., 'codec', 'tally', 'ledger')

        Returns:
            Logger instance
        """
        if not cls._initialized:
            cls.setup()

        return logging.getLogger(f"sealmarket.{name}")


# Convenience functions
def get_logger(name: str) -> logging.Logger:
    """Get a logger for a specific subsystem"""
    return SealLogger.get_logger(name)


def setup_logging(
    level: int = logging.INFO,
    log_dir: Optional[str] = None,
    log_to_file: bool = False,
):
    """Setup logging configuration"""
    SealLogger.setup(level=level, log_dir=log_dir, log_to_file=log_to_file)
