import logging
from pathlib import Path
from typing import Optional

_INITIALIZED = False
_ROOT = "asynql"


def init_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure root logging once. Library code only calls get_logger()."""
    global _INITIALIZED
    if _INITIALIZED:
        return

    level = getattr(logging, log_level.upper(), logging.INFO)
    fmt = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

    handlers = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(level=level, format=fmt, handlers=handlers)
    _INITIALIZED = True


def get_logger(name: str) -> logging.Logger:
    if name == _ROOT or name.startswith(_ROOT + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{_ROOT}.{name}")
