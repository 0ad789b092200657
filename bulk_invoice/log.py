"""Logging setup shared by the CLI, API and UI."""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(format=LOG_FORMAT)
    logging.getLogger("bulk_invoice").setLevel(getattr(logging, level.upper(), logging.INFO))
    logging.getLogger("api").setLevel(getattr(logging, level.upper(), logging.INFO))
