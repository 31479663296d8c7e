import logging
import os


_ROOT_LOGGER = "damage_pipeline"
_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _configure_root() -> logging.Logger:
    root = logging.getLogger(_ROOT_LOGGER)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT))
        root.addHandler(handler)
        level = os.getenv("LOG_LEVEL", "INFO").upper()
        root.setLevel(getattr(logging, level, logging.INFO))
    return root


def get_logger(name: str) -> logging.Logger:
    """Return a child logger of the package root logger, e.g. 'damage_pipeline.batch'."""
    _configure_root()
    return logging.getLogger(f"{_ROOT_LOGGER}.{name}")
