"""
Category-aware logging for StreamPulse

Every module logs under one of a fixed set of categories:

    proxy   /api/streams request validation and upstream failures
    fetch   page requests made by StreamStatsClient
    kpi     global aggregate sweeps
    view    dashboard filter, paging and rendering state
    poll    the auto-refresh scheduler
    system  startup, shutdown and shared infrastructure

LOG_CATEGORIES (comma-separated) narrows output to the listed categories.
Warnings and errors are never muted, so a failing sweep still shows up while
only ``view`` is selected.

Usage:
    from streampulse.utils.logging import get_logger

    logger = get_logger(__name__, category='fetch')
    logger.info('Fetched page')
"""

import logging
from typing import FrozenSet, List, Optional, Sequence

from streampulse.config import Settings, settings

CATEGORIES = ("proxy", "fetch", "kpi", "view", "poll", "system")
DEFAULT_CATEGORY = "system"
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def resolve_level(name: Optional[str]) -> int:
    """Map a LOG_LEVEL value to a logging level; unknown names mean INFO."""
    return LOG_LEVELS.get((name or "").strip().upper(), logging.INFO)


def parse_categories(raw: Optional[str]) -> Optional[FrozenSet[str]]:
    """Split a LOG_CATEGORIES value; None (or blank) means every category."""
    if not raw:
        return None
    selected = frozenset(cat.strip().lower() for cat in raw.split(",") if cat.strip())
    return selected or None


def unknown_categories(selected: Optional[FrozenSet[str]]) -> List[str]:
    if not selected:
        return []
    return sorted(selected.difference(CATEGORIES))


class CategoryFilter(logging.Filter):
    """Tags records with their category and drops the ones not selected."""

    def __init__(
        self,
        category: Optional[str] = None,
        allowed: Optional[FrozenSet[str]] = None,
    ):
        """
        Args:
            category: One of CATEGORIES (defaults to 'system')
            allowed: Selected categories; None lets everything through

        Raises:
            ValueError: for a category outside CATEGORIES
        """
        super().__init__()
        self.category = (category or DEFAULT_CATEGORY).lower()
        if self.category not in CATEGORIES:
            raise ValueError(
                f"Unknown log category {category!r}; expected one of {', '.join(CATEGORIES)}"
            )
        self.allowed = allowed

    def filter(self, record: logging.LogRecord) -> bool:
        record.category = self.category

        if self.allowed is None or record.levelno >= logging.WARNING:
            return True

        return self.category in self.allowed


def configure_logging(
    config: Optional[Settings] = None,
    handlers: Optional[Sequence[logging.Handler]] = None,
    fmt: str = DEFAULT_FORMAT,
) -> None:
    """
    Set up the root logger for an entry point (the API service or the
    terminal dashboard). Passing ``handlers`` replaces whatever is installed.
    """
    config = config or settings
    logging.basicConfig(
        level=resolve_level(config.log_level),
        format=fmt,
        handlers=list(handlers) if handlers is not None else None,
        force=handlers is not None,
    )

    unknown = unknown_categories(parse_categories(config.log_categories))
    if unknown:
        get_logger(__name__, config=config).warning(
            f"Ignoring unknown LOG_CATEGORIES: {', '.join(unknown)}"
        )


def get_logger(
    name: str,
    category: Optional[str] = None,
    config: Optional[Settings] = None,
) -> logging.Logger:
    """
    Get a logger with category filtering applied.

    Args:
        name: Logger name (typically __name__)
        category: One of CATEGORIES; None means 'system'
        config: Settings to read LOG_LEVEL / LOG_CATEGORIES from

    Returns:
        Logger instance with exactly one CategoryFilter attached
    """
    config = config or settings
    logger = logging.getLogger(name)
    logger.setLevel(resolve_level(config.log_level))

    logger.filters = [f for f in logger.filters if not isinstance(f, CategoryFilter)]
    logger.addFilter(CategoryFilter(category, allowed=parse_categories(config.log_categories)))

    return logger
