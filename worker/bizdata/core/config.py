"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


class ConfigError(RuntimeError):
    """Raised when mandatory configuration is missing or invalid."""


@dataclass(frozen=True)
class Settings:
    yelp_api_key: str
    request_delay_seconds: float = 2.0
    page_limit: int = 50
    max_pages: Optional[int] = None
    worker_port: int = 9000


def _get_number(name: str, default: str, cast):
    raw = os.getenv(name, default)
    try:
        return cast(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be numeric, got {raw!r}") from exc


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    yelp_api_key = os.getenv("YELP_API_KEY", "").strip()
    request_delay_seconds = _get_number("COLLECTOR_REQUEST_DELAY", "2.0", float)
    page_limit = _get_number("COLLECTOR_PAGE_LIMIT", "50", int)
    max_pages_raw = os.getenv("COLLECTOR_MAX_PAGES")
    max_pages = _get_number("COLLECTOR_MAX_PAGES", "", int) if max_pages_raw else None
    worker_port = _get_number("WORKER_PORT", "9000", int)

    if not yelp_api_key:
        logger.warning("YELP_API_KEY is not configured; collection runs will be refused.")

    return Settings(
        yelp_api_key=yelp_api_key,
        request_delay_seconds=request_delay_seconds,
        page_limit=page_limit,
        max_pages=max_pages,
        worker_port=worker_port,
    )


def require_credential(settings: Settings) -> str:
    """Return the bearer token or raise before any network activity happens."""
    if not settings.yelp_api_key:
        raise ConfigError("YELP_API_KEY must be set in the environment before collecting.")
    return settings.yelp_api_key
