"""Client utilities for the Yelp Fusion business search API."""

import logging
from typing import Any, Dict, Optional

import requests

from bizdata.models import Page, Query
from bizdata.vendors.base import DecodeError, ListingSource, ServerError, TransportError, Unauthorized

logger = logging.getLogger(__name__)
_BASE_URL = "https://api.yelp.com/v3"
REQUEST_TIMEOUT = 10
# Yelp refuses offset + limit beyond this many results for a single search.
MAX_RESULT_WINDOW = 1000


def _error_description(response: requests.Response) -> Optional[str]:
    try:
        payload = response.json()
    except ValueError:
        return None
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            return error.get("description") or error.get("code")
    return None


class YelpFusionSource(ListingSource):
    """Reference listing source backed by ``GET /businesses/search``."""

    name = "yelp_fusion"
    max_page_size = 50

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = REQUEST_TIMEOUT) -> None:
        self._session = session or requests.Session()
        self._timeout = timeout

    def build_params(self, query: Query, page: int, page_size: Optional[int] = None) -> Dict[str, Any]:
        limit = self.effective_page_size(page_size)
        return {
            "term": query.category,
            "location": query.location,
            "limit": limit,
            "offset": page * limit,
        }

    def fetch(self, query: Query, page: int, credential: str, page_size: Optional[int] = None) -> Page:
        if not credential:
            raise Unauthorized("No Yelp API key was supplied.")

        params = self.build_params(query, page, page_size)
        headers = {"Authorization": f"Bearer {credential}", "Accept": "application/json"}
        logger.debug("Searching Yelp: term=%s location=%s offset=%s", query.category, query.location, params["offset"])

        try:
            response = self._session.get(
                f"{_BASE_URL}/businesses/search", params=params, headers=headers, timeout=self._timeout
            )
        except requests.RequestException as exc:
            logger.error("business search transport failure: %s", exc)
            raise TransportError(f"Could not reach Yelp: {exc}") from exc

        if response.status_code in (401, 403):
            detail = _error_description(response) or "credential rejected"
            logger.error("business search unauthorized: status=%s detail=%s", response.status_code, detail)
            raise Unauthorized(f"Yelp rejected the API key ({response.status_code}): {detail}")
        if response.status_code != 200:
            detail = _error_description(response) or response.reason or "unexpected status"
            logger.error("business search failed: status=%s detail=%s", response.status_code, detail)
            raise ServerError(f"Yelp returned HTTP {response.status_code}: {detail}", status_code=response.status_code)

        try:
            payload = response.json()
        except ValueError as exc:
            raise DecodeError("Yelp response body is not valid JSON") from exc

        if not isinstance(payload, dict) or not isinstance(payload.get("businesses"), list):
            raise DecodeError("Yelp response is missing the 'businesses' array")

        businesses = payload["businesses"]
        total = payload.get("total")
        if not isinstance(total, int) or isinstance(total, bool):
            total = None

        fetched_through = params["offset"] + len(businesses)
        ceiling = min(total, MAX_RESULT_WINDOW) if total is not None else MAX_RESULT_WINDOW
        has_more = len(businesses) == params["limit"] and fetched_through < ceiling

        return Page(records=businesses, has_more=has_more, total=total)

    def close(self) -> None:
        self._session.close()
