"""
Logging setup for sync runs.

Each album and run mode logs to its own rotating file, with ERROR records
copied to a sibling ``_error`` file. Bot tokens appear in Bot API URLs, so
every handler masks them before anything is written.
"""
import json
import logging
import logging.handlers
import re
from pathlib import Path
from typing import Any, Dict

# "bot<id>:<secret>" as it appears in Bot API URLs and error strings
_TOKEN_PATTERN = re.compile(r'bot(\d+):[A-Za-z0-9_-]+')

_TEXT_FORMAT = '%(asctime)s - %(threadName)s - %(name)s - %(levelname)s - %(message)s'
_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def album_log_file(log_dir: str, album_name: str, test_mode: bool = False) -> Path:
    """Path of the main log file for an album and run mode."""
    suffix = '_test' if test_mode else ''
    return Path(log_dir) / f"sync_album_{album_name}{suffix}.log"


def mask_tokens(text: str) -> str:
    """Replace the secret part of any bot token with asterisks."""
    return _TOKEN_PATTERN.sub(r'bot\1:***', text)


class TokenMaskingFilter(logging.Filter):
    """Rewrites records so bot tokens never reach a handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = mask_tokens(message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


def _rotating_handler(path: Path, level: int, formatter: logging.Formatter,
                      max_bytes: int, backup_count: int) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        str(path), maxBytes=max_bytes, backupCount=backup_count, encoding='utf-8'
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(
    log_file: str = "telegram_album_sync.log",
    level: str = "INFO",
    enable_json: bool = False,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
    separate_error_log: bool = True
) -> None:
    """
    Configure the root logger for one run.

    Previously installed root handlers are closed and replaced, so calling
    this again (for another album) does not duplicate output.

    Args:
        log_file: Main log file, usually from ``album_log_file``
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        enable_json: Write one JSON object per record instead of text
        max_bytes: Size at which a log file is rotated
        backup_count: Rotated files kept per log
        separate_error_log: Also write ERROR and above to ``<name>_error.log``
    """
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    log_level = getattr(logging, level.upper(), logging.INFO)
    root_logger.setLevel(log_level)

    formatter = JsonFormatter() if enable_json else logging.Formatter(_TEXT_FORMAT, datefmt=_DATE_FORMAT)
    token_filter = TokenMaskingFilter()

    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)

    handlers = [
        console_handler,
        _rotating_handler(log_path, log_level, formatter, max_bytes, backup_count),
    ]
    if separate_error_log:
        error_path = log_path.with_name(f"{log_path.stem}_error{log_path.suffix}")
        handlers.append(_rotating_handler(error_path, logging.ERROR, formatter, max_bytes, backup_count))

    for handler in handlers:
        handler.addFilter(token_filter)
        root_logger.addHandler(handler)

    # urllib3 logs full request URLs at DEBUG
    logging.getLogger('urllib3').setLevel(max(log_level, logging.INFO))
    logging.getLogger('PIL').setLevel(max(log_level, logging.INFO))


class JsonFormatter(logging.Formatter):
    """One JSON object per record, including the worker thread name."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            'timestamp': self.formatTime(record, _DATE_FORMAT),
            'level': record.levelname,
            'thread': record.threadName,
            'logger': record.name,
            'message': record.getMessage(),
        }
        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)
