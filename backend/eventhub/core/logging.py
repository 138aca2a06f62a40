"""Logging configuration for the application

Besides module loggers the service writes to a few named channels so operators
can turn one flow up or down without the rest:

    webhook          verification, dispatch and rollback of Stripe deliveries
    payments         transactions, invoices and creator payouts
    attendee_linker  the background link sweep
    security         session and permission failures
    api_access       one line per request
"""
import logging
from typing import Dict

from eventhub.core.config import settings

NOISY_LIBRARIES = ("stripe", "urllib3", "httpx", "opentelemetry.exporter")


def parse_level_overrides(spec: str) -> Dict[str, int]:
    """Parse "webhook=DEBUG,api_access=WARNING" into logger levels

    Unknown level names are skipped with a warning rather than failing startup.
    """
    overrides = {}
    for item in filter(None, (part.strip() for part in spec.split(","))):
        name, _, level_name = item.partition("=")
        level = logging.getLevelName(level_name.strip().upper())
        if not name.strip() or not isinstance(level, int):
            logging.getLogger(__name__).warning(f"Ignoring log level override '{item}'")
            continue
        overrides[name.strip()] = level
    return overrides


def setup_logging():
    """Configure logging for the application"""
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        force=True
    )

    for name in NOISY_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)

    for name, level in parse_level_overrides(settings.LOG_LEVEL_OVERRIDES).items():
        logging.getLogger(name).setLevel(level)
