# core/logger.py
"""Process-wide logger for the API server.

Exposes:
  LOGGER     — the ``ditzzy`` logger with a stderr handler
  get_logger — child logger per source (``plugins``, ``stats``, ``rate-limit`` …)
"""

import logging
import sys

LOGGER = logging.getLogger("ditzzy")
LOGGER.setLevel(logging.INFO)

_handler = logging.StreamHandler(sys.stderr)
_handler.setFormatter(logging.Formatter("%(asctime)s %(name)s [%(process)d] %(levelname)-5s %(message)s"))
LOGGER.addHandler(_handler)


def get_logger(source: str) -> logging.Logger:
    """Return the child logger used by one component, e.g. ``ditzzy.stats``."""
    return LOGGER.getChild(source)
