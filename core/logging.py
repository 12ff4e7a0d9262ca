"""
Centralized logging setup for FollowCam.

Everything logs below the ``followcam`` logger. Components get a child logger
named after their bracket tag, so ``[PeerManager]`` lines come from
``followcam.peer_manager`` and can be filtered on their own.
"""
import datetime
import json
import logging
import os
import sys
import tempfile
from typing import Any, List, Optional


ROOT_LOGGER = "followcam"
LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'


def _resolve_log_dir() -> str:
    """Pick the first writable directory for the log file."""
    candidates = [
        os.environ.get("FOLLOWCAM_LOG_DIR"),
        os.path.join(tempfile.gettempdir(), "followcam-logs"),
    ]
    for directory in filter(None, candidates):
        try:
            os.makedirs(directory, exist_ok=True)
        except OSError:
            continue
        if os.access(directory, os.W_OK):
            return directory
    return os.getcwd()


def _build_handlers(log_path: str) -> List[logging.Handler]:
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    try:
        handlers.append(logging.FileHandler(log_path, mode='a', encoding='utf-8'))
    except OSError as e:
        print(f"WARNING: Cannot write to log file {log_path}: {e}", file=sys.stderr)
        print("Logging to console only", file=sys.stderr)
    return handlers


def setup_logging(level: str = "INFO", log_file: str = "followcam.log") -> logging.Logger:
    """Attach console and file handlers to the ``followcam`` logger.

    Calling it again replaces the previous handlers, so the relay and a client
    session can share one process.
    """
    log_path = os.path.join(_resolve_log_dir(), log_file)
    logger = logging.getLogger(ROOT_LOGGER)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt='%H:%M:%S')
    handlers = _build_handlers(log_path)
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False

    logger.info(f"Logging initialized - output will be written to: {log_path if len(handlers) > 1 else 'console only'}")
    return logger


def component_logger(component: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER}.{component}")


def format_payload(message: str, data: Optional[Any] = None) -> str:
    """Render a log line: millisecond timestamp, message, then the payload."""
    timestamp = datetime.datetime.now().strftime("%H:%M:%S.%f")[:-3]
    if not data:
        return f"[{timestamp}] {message}"
    if isinstance(data, dict):
        return f"[{timestamp}] {message}\nData: {json.dumps(data, indent=2, default=str)}"
    return f"[{timestamp}] {message} - {data}"


def debug_log(message: str, data: Optional[Any] = None, level: str = "INFO",
              logger: Optional[logging.Logger] = None) -> None:
    """
    Structured logging helper used across the relay and the client.

    Args:
        message: The log message, usually with an emoji and a ``[Component]`` tag
        data: Optional payload; dicts are pretty-printed as JSON
        level: Log level name (DEBUG, INFO, WARNING, ERROR)
        logger: Target logger, the ``followcam`` logger by default
    """
    target = logger or logging.getLogger(ROOT_LOGGER)
    log_level = getattr(logging, level.upper())
    if target.isEnabledFor(log_level):
        target.log(log_level, format_payload(message, data))


class LoggerMixin:
    """Gives a class its own ``followcam.<module>`` logger and level helpers."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.logger = component_logger(self.__class__.__module__.rsplit('.', 1)[-1])

    def log_debug(self, message: str, data: Optional[Any] = None):
        debug_log(message, data, "DEBUG", self.logger)

    def log_info(self, message: str, data: Optional[Any] = None):
        debug_log(message, data, "INFO", self.logger)

    def log_warning(self, message: str, data: Optional[Any] = None):
        debug_log(message, data, "WARNING", self.logger)

    def log_error(self, message: str, data: Optional[Any] = None):
        debug_log(message, data, "ERROR", self.logger)
