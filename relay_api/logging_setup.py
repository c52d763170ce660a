"""
Process-level logging for the relay gateway.

Console output always. When a log directory is configured, two rotating files are added:
error.log receives ERROR and above, combined.log receives everything.
"""
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
ERROR_LOG_FILENAME = "error.log"
COMBINED_LOG_FILENAME = "combined.log"

# Third party loggers that are too chatty at INFO. They propagate to root.
LOGGERS_TO_REDIRECT_VIA_ROOT = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "sse_starlette": logging.INFO,
}

_configured = False


def _file_handler(path: Path, level: int, formatter: logging.Formatter) -> RotatingFileHandler:
    handler = RotatingFileHandler(path, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8")
    handler.setFormatter(formatter)
    handler.setLevel(level)
    return handler


def configure_logging(level: str = "INFO", log_dir: Optional[str] = None) -> None:
    """Configure the root logger once. Later calls are ignored."""
    global _configured
    if _configured:
        return

    formatter = logging.Formatter(LOG_FORMAT)
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    handlers: list[logging.Handler] = [console_handler]

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        handlers.append(_file_handler(log_path / ERROR_LOG_FILENAME, logging.ERROR, formatter))
        handlers.append(_file_handler(log_path / COMBINED_LOG_FILENAME, logging.DEBUG, formatter))

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers = handlers
    logging.captureWarnings(True)

    for name, logger_level in LOGGERS_TO_REDIRECT_VIA_ROOT.items():
        lg = logging.getLogger(name)
        lg.setLevel(logger_level)
        lg.handlers = []
        lg.propagate = True

    _configured = True
    logging.getLogger(__name__).debug(f"Logging configured. level: {level}, log_dir: {log_dir!r}")
