"""
rotabackup - local backup rotation with daily, weekly and monthly tiers.
"""

import os
import logging
from logging.handlers import RotatingFileHandler


__version__ = '1.0.0'

# Marks handlers installed by configure_logging so a second call replaces them
_HANDLER_TAG = '_rotabackup_handler'


def _console_handler(log_level):
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(console_formatter)
    return console_handler


def _install_handlers(handlers, log_level):
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        if getattr(handler, _HANDLER_TAG, False):
            root_logger.removeHandler(handler)
            handler.close()

    for handler in handlers:
        setattr(handler, _HANDLER_TAG, True)
        root_logger.addHandler(handler)

    root_logger.setLevel(log_level)


def configure_console_logging(verbose=False):
    """Timestamped console logging, used until settings are resolved"""
    log_level = logging.DEBUG if verbose else logging.INFO
    _install_handlers([_console_handler(log_level)], log_level)


def configure_logging(settings, verbose=False, create_log_dir=True):
    """Configure application logging"""

    # Set log level based on environment
    log_level = logging.DEBUG if (verbose or settings.debug) else logging.INFO

    # Console handler
    handlers = [_console_handler(log_level)]

    # File handler; dry runs and restores must not create the backup root just to log into it
    log_dir = os.path.dirname(str(settings.log_file))
    if create_log_dir:
        os.makedirs(log_dir, exist_ok=True)

    if os.path.isdir(log_dir):
        file_handler = RotatingFileHandler(
            str(settings.log_file),
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count
        )
        file_handler.setLevel(log_level)
        file_formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        file_handler.setFormatter(file_formatter)
        handlers.append(file_handler)

    # Existing handlers stay in place if the log file cannot be opened
    _install_handlers(handlers, log_level)

    logging.getLogger(__name__).debug(
        f"Logging configured (level: {logging.getLevelName(log_level)})"
    )
