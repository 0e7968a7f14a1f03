"""
Logging for the storefront.

All modules log through children of the ``storefront`` logger, which writes
to stdout at the level named by LOG_LEVEL (INFO when unset). Operation lines
carry their context as ``key=value`` pairs built with ``kv``:

    cart: method=add_or_increment user_id=... product_id=... result=success
"""
import logging
import os
import sys

ROOT_NAME = "storefront"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _configure(level: str) -> logging.Logger:
    root = logging.getLogger(ROOT_NAME)
    root.setLevel(level)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
        root.addHandler(handler)
    # Keep lines out of the root logger so uvicorn does not print them twice
    root.propagate = False
    return root


logger = _configure(os.getenv("LOG_LEVEL", "INFO").upper())


def get_logger(name: str = None) -> logging.Logger:
    """Return ``storefront.<name>``, or the package logger when no name is given."""
    if name:
        return logging.getLogger(f"{ROOT_NAME}.{name}")
    return logger


def kv(**fields) -> str:
    """Render fields as ``key=value`` pairs; None values are dropped."""
    return " ".join(f"{key}={value}" for key, value in fields.items() if value is not None)
