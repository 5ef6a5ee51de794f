"""
Logger Utilities
================
Logging setup for the database lifecycle tooling.

Features:
    ✅ Colored operator console (colorama)
    ✅ Optional rotating log file, plain or JSON lines
    ✅ Credentials masked in every record before it is written
    ✅ Driver loggers kept quiet
"""

import re
import sys
import json
import logging
from pathlib import Path
from datetime import datetime, timezone
from typing import Optional, Union
from logging.handlers import RotatingFileHandler

from colorama import init, Fore, Style

init(autoreset=True)

PLAIN_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s'

# Third-party loggers that only matter when debugging the drivers themselves
DRIVER_LOGGERS = ('pymongo', 'motor', 'redis', 'asyncio')

_CREDENTIALS = re.compile(r'(\b[a-z][a-z0-9+.-]*://)[^@/\s]+@', re.IGNORECASE)


# ==================== FILTERS ====================

class RedactingFilter(logging.Filter):
    """
    Mask user:password@ in any connection URI that reaches a handler.

    The message is rendered once and the record's args are dropped, so
    formatters downstream see the masked text only.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = _CREDENTIALS.sub(r'\1***:***@', message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


# ==================== FORMATTERS ====================

class ColoredFormatter(logging.Formatter):
    """
    Console formatter for operators.

    Messages in this project already open with their own emoji, so the
    level marker is only added for warnings and above where it helps
    the line stand out.
    """

    LEVEL_STYLES = {
        'DEBUG': (Fore.CYAN, ''),
        'INFO': (Fore.GREEN, ''),
        'WARNING': (Fore.YELLOW, '⚠️ '),
        'ERROR': (Fore.RED, '❌ '),
        'CRITICAL': (Fore.RED + Style.BRIGHT, '🚨 ')
    }

    def __init__(self, show_time: bool = True):
        fmt = PLAIN_FORMAT if show_time else '%(levelname)-8s | %(name)s | %(message)s'
        super().__init__(fmt, datefmt='%H:%M:%S')

    def format(self, record: logging.LogRecord) -> str:
        color, marker = self.LEVEL_STYLES.get(record.levelname, ('', ''))
        line = super().format(record)

        level = f"{color}{record.levelname}{Style.RESET_ALL}"
        line = line.replace(record.levelname, level, 1)

        if marker and record.levelno >= logging.WARNING:
            line = f"{marker}{line}"
        return line


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    # Attributes every LogRecord carries; anything else came from `extra=`
    STANDARD_ATTRS = frozenset(vars(logging.LogRecord('', 0, '', 0, '', None, None))) | {'message', 'taskName'}

    def format(self, record: logging.LogRecord) -> str:
        """
        Render a record as JSON.

        Args:
            record: Log record to format

        Returns:
            str: JSON document on a single line
        """
        entry = {
            'timestamp': datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'location': f"{record.module}:{record.funcName}:{record.lineno}"
        }

        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)

        entry.update({
            key: value for key, value in record.__dict__.items()
            if key not in self.STANDARD_ATTRS
        })

        return json.dumps(entry, ensure_ascii=False, default=str)


# ==================== SETUP ====================

def _file_handler(log_file: str, use_json: bool, max_bytes: int, backup_count: int) -> logging.Handler:
    Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    handler = RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding='utf-8'
    )
    if use_json:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
    return handler


def setup_logging(
    level: Union[str, int] = logging.INFO,
    log_file: Optional[str] = None,
    use_colors: bool = True,
    use_json: bool = False,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5
) -> None:
    """
    Configure the root logger once per process.

    Args:
        level: Logging level
        log_file: Rotating log file path; no file logging when None
        use_colors: Colored console output
        use_json: JSON lines in the log file
        max_bytes: Rotation size of the log file
        backup_count: Rotated files to keep
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(
        ColoredFormatter() if use_colors else logging.Formatter(PLAIN_FORMAT, datefmt='%H:%M:%S')
    )
    handlers = [console]

    if log_file:
        handlers.append(_file_handler(log_file, use_json, max_bytes, backup_count))

    redact = RedactingFilter()
    for handler in handlers:
        handler.setLevel(level)
        handler.addFilter(redact)
        root_logger.addHandler(handler)

    for name in DRIVER_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.debug("🚀 Logging configured")
    if log_file:
        logger.debug(f"📝 Logging to file: {log_file}")


def get_logger(name: str) -> logging.Logger:
    """Logger for a module; pass __name__."""
    return logging.getLogger(name)
