"""Listing source contract and the fetch error taxonomy."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from bizdata.models import Page, Query


class FetchError(RuntimeError):
    """Base class for anything that goes wrong while fetching a page."""

    kind = "fetch_error"


class Unauthorized(FetchError):
    """Credential missing, expired or rejected by the upstream API."""

    kind = "unauthorized"


class ServerError(FetchError):
    """Upstream answered with a non-2xx status."""

    kind = "server_error"

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DecodeError(FetchError):
    """Response body or record does not match the expected schema."""

    kind = "decode_error"


class TransportError(FetchError):
    """Network-level failure: DNS, connection reset, timeout."""

    kind = "transport_error"


class ListingSource(ABC):
    """One paginated upstream API that yields raw business records."""

    name = "source"
    max_page_size = 50

    def effective_page_size(self, page_size: Optional[int] = None) -> int:
        if not page_size or page_size < 1:
            return self.max_page_size
        return min(page_size, self.max_page_size)

    @abstractmethod
    def fetch(self, query: Query, page: int, credential: str, page_size: Optional[int] = None) -> Page:
        """Fetch zero-based ``page`` for ``query``; raise a FetchError subclass on failure."""

    def close(self) -> None:
        """Release network resources. Sources must remain usable afterwards."""
