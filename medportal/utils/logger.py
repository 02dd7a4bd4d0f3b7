"""
Shared logging setup.

Modules log through ``logging.getLogger(__name__)``; ``configure_logging``
is called once by the application and ``logger`` is the portal-level logger
used by the HTTP middleware.
"""

import logging
import sys

from medportal.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_configured = False


def configure_logging(level: str = None) -> None:
    global _configured
    if _configured:
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root = logging.getLogger("medportal")
    root.addHandler(handler)
    root.setLevel(level or settings.log_level)
    _configured = True


logger = logging.getLogger("medportal")
