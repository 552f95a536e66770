import logging
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler
from app.config import get_settings

settings = get_settings()

ROOT_LOGGER_NAME = "clinic_chat"
CONSOLE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
FILE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
MAX_LOG_BYTES = 10 * 1024 * 1024


def _level() -> int:
    if settings.LOG_LEVEL:
        return logging.getLevelName(settings.LOG_LEVEL.upper())
    return logging.DEBUG if settings.APP_DEBUG else logging.INFO


def _rotating(path: Path, level: int) -> RotatingFileHandler:
    handler = RotatingFileHandler(path, maxBytes=MAX_LOG_BYTES, backupCount=5)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
    return handler


def configure_logging() -> logging.Logger:
    """(Re)build the service logger: stdout always, rotating app/error files when enabled."""
    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(_level())
    root.propagate = False

    # Prevent duplicate logs on reload
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(root.level)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(console)

    if settings.LOG_TO_FILE:
        logs_dir = Path(settings.LOG_DIR)
        logs_dir.mkdir(parents=True, exist_ok=True)
        root.addHandler(_rotating(logs_dir / "app.log", logging.INFO))
        root.addHandler(_rotating(logs_dir / "errors.log", logging.ERROR))
    return root


logger = configure_logging()


def get_logger(name: str = None) -> logging.Logger:
    """Child of the service logger, e.g. get_logger("chat_store") -> clinic_chat.chat_store."""
    if name:
        return logger.getChild(name)
    return logger
