"""Core data models shared by the listings collector."""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from bizdata.core.config import ConfigError

MIN_REQUEST_DELAY_SECONDS = 0.1
MAX_REQUEST_DELAY_SECONDS = 60.0
UNCATEGORIZED = "Uncategorized"


@dataclass(frozen=True)
class Query:
    """What to collect: a business category searched within a location."""

    category: str
    location: str

    def __post_init__(self) -> None:
        category = (self.category or "").strip()
        location = (self.location or "").strip()
        if not category or not location:
            raise ConfigError("Both category and location are required to start a collection.")
        object.__setattr__(self, "category", category)
        object.__setattr__(self, "location", location)


@dataclass(frozen=True, slots=True)
class BusinessListing:
    """Normalized business record, independent of the upstream API."""

    CSV_HEADERS = ("Name", "Category", "Address", "City", "Province", "PostalCode", "Phone", "URL")

    name: str
    category: str
    address: str
    city: str
    province: str
    postal_code: str
    phone: str
    url: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def full_address(self) -> str:
        return f"{self.address}, {self.city}, {self.province} {self.postal_code}".strip()

    def csv_row(self) -> List[str]:
        return [
            self.name,
            self.category,
            self.address,
            self.city,
            self.province,
            self.postal_code,
            self.phone,
            self.url or "",
        ]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CollectionConfig:
    """Per-run tuning knobs; validated on construction."""

    request_delay_seconds: float = 2.0
    page_limit: int = 50
    max_pages: Optional[int] = None
    dedupe: bool = False

    def __post_init__(self) -> None:
        try:
            delay = float(self.request_delay_seconds)
        except (TypeError, ValueError) as exc:
            raise ConfigError("request_delay_seconds must be numeric") from exc
        if not MIN_REQUEST_DELAY_SECONDS <= delay <= MAX_REQUEST_DELAY_SECONDS:
            raise ConfigError(
                f"request_delay_seconds must be between {MIN_REQUEST_DELAY_SECONDS} "
                f"and {MAX_REQUEST_DELAY_SECONDS}, got {self.request_delay_seconds}"
            )
        if isinstance(self.page_limit, bool) or not isinstance(self.page_limit, int) or self.page_limit < 1:
            raise ConfigError(f"page_limit must be a positive integer, got {self.page_limit!r}")
        if self.max_pages is not None and (
            isinstance(self.max_pages, bool) or not isinstance(self.max_pages, int) or self.max_pages < 1
        ):
            raise ConfigError(f"max_pages must be a positive integer when set, got {self.max_pages!r}")
        object.__setattr__(self, "request_delay_seconds", delay)

    @property
    def requests_per_second(self) -> float:
        return 1.0 / self.request_delay_seconds


class RunState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        return self in (RunState.RUNNING, RunState.PAUSED)


@dataclass(frozen=True)
class Page:
    """One upstream fetch result."""

    records: List[Dict[str, Any]]
    has_more: bool
    total: Optional[int] = None


@dataclass(frozen=True)
class CollectionSnapshot:
    """Read-only view of a run, handed to observers and callers."""

    run_id: Optional[str] = None
    version: int = 0
    state: RunState = RunState.IDLE
    query: Optional[Query] = None
    listings: Tuple[BusinessListing, ...] = ()
    collected_count: int = 0
    pages_fetched: int = 0
    progress: Optional[float] = 0.0
    status_message: str = "Ready"
    log_messages: Tuple[str, ...] = ()
    last_error: Optional[str] = None

    def to_dict(self, include_listings: bool = True) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "run_id": self.run_id,
            "version": self.version,
            "state": self.state.value,
            "query": asdict(self.query) if self.query else None,
            "collected_count": self.collected_count,
            "pages_fetched": self.pages_fetched,
            "progress": self.progress,
            "status_message": self.status_message,
            "log_messages": list(self.log_messages),
            "last_error": self.last_error,
        }
        if include_listings:
            payload["listings"] = [listing.to_dict() for listing in self.listings]
        return payload
