"""
Place search using the Google Maps Places API.

This module turns a parsed errand into candidate businesses:
1. Text Search for the query, biased to a location and radius
2. Place Details for the top PLACES_MAX_DETAILS results, to get phone numbers
3. Drop places that are not OPERATIONAL or whose details lookup failed

A query with no matches returns an empty list; choosing what to do about
that is the orchestration flow's job.

Billing: each Place Details lookup is charged, hence the cap and the
explicit field list.
"""

import logging
from typing import Dict, List, Optional

import requests

from . import config
from .errors import ConfigurationError, UpstreamServiceError, ValidationError
from .schemas import PlaceCandidate

logger = logging.getLogger(__name__)

TEXT_SEARCH_URL = "https://maps.googleapis.com/maps/api/place/textsearch/json"
DETAILS_URL = "https://maps.googleapis.com/maps/api/place/details/json"

DETAIL_FIELDS = [
    "name",
    "formatted_address",
    "international_phone_number",
    "website",
    "rating",
    "place_id",
    "business_status",
]


def build_search_query(service: Optional[str], location_hint: Optional[str]) -> str:
    """Combine service and location hint into a Text Search query."""
    return " ".join(part.strip() for part in (service, location_hint) if part and part.strip())


def _failure_reason(error: Exception) -> str:
    """Short description of a failed request; never includes the request URL."""
    if isinstance(error, requests.HTTPError) and error.response is not None:
        return f"HTTP {error.response.status_code}"
    if isinstance(error, requests.ConnectionError):
        return "connection error"
    if isinstance(error, requests.RequestException):
        return type(error).__name__
    return "invalid response"


def _candidate_from_details(result: Dict) -> PlaceCandidate:
    return PlaceCandidate(
        name=result.get("name") or "Unknown",
        address=result.get("formatted_address"),
        phone=result.get("international_phone_number"),
        place_id=result.get("place_id"),
        rating=result.get("rating"),
        website=result.get("website"),
    )


class PlacesService:
    """Text Search + Place Details over plain HTTP."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        radius: Optional[int] = None,
        max_details: Optional[int] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key if api_key is not None else config.GOOGLE_MAPS_API_KEY
        self.radius = radius or config.PLACES_SEARCH_RADIUS_METERS
        self.max_details = max_details or config.PLACES_MAX_DETAILS
        self.timeout = timeout or config.PLACES_TIMEOUT_SECONDS
        self.session = session or requests.Session()

    def _redact(self, error: Exception) -> str:
        text = str(error)
        return text.replace(self.api_key, "<redacted>") if self.api_key else text

    def find_places(self, query: str, location: Optional[Dict[str, float]] = None) -> List[PlaceCandidate]:
        """
        Find businesses matching ``query`` near ``location``.

        Args:
            query: Text Search query, e.g. "dentist downtown"
            location: {"lat": ..., "lng": ...} to bias results; optional

        Returns:
            Operational places with details, best match first (may be empty)

        Raises:
            ConfigurationError: no API key
            ValidationError: empty query
            UpstreamServiceError: Text Search failed or returned an error status
        """
        if not self.api_key:
            raise ConfigurationError("Google Maps client not initialized due to missing API key.")
        if not query or not query.strip():
            raise ValidationError("Search query cannot be empty.")

        params = {"query": query, "key": self.api_key}
        if location:
            params["location"] = f"{location['lat']},{location['lng']}"
            params["radius"] = self.radius

        logger.info("Searching places for '%s' near %s", query, params.get("location", "anywhere"))

        try:
            response = self.session.get(TEXT_SEARCH_URL, params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.Timeout as e:
            raise UpstreamServiceError("Google Maps API request timed out.") from e
        except (requests.RequestException, ValueError) as e:
            logger.debug("Text Search request failed: %s", self._redact(e))
            raise UpstreamServiceError(f"Google Maps API request failed ({_failure_reason(e)})") from e

        status = data.get("status")
        if status == "ZERO_RESULTS":
            logger.info("Text Search found no results for '%s'", query)
            return []
        if status != "OK":
            message = data.get("error_message") or status
            logger.error("Text Search error: %s", message)
            raise UpstreamServiceError(f"Google Maps TextSearch failed: {message}")

        results = [r for r in data.get("results", [])[: self.max_details] if r.get("place_id")]
        candidates = []
        for result in results:
            candidate = self._fetch_details(result["place_id"])
            if candidate is not None:
                candidates.append(candidate)

        logger.info("Returning %d places with details", len(candidates))
        return candidates

    def _fetch_details(self, place_id: str) -> Optional[PlaceCandidate]:
        """Look up one place; None if it failed or is not operational."""
        params = {"place_id": place_id, "fields": ",".join(DETAIL_FIELDS), "key": self.api_key}
        try:
            response = self.session.get(DETAILS_URL, params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("Place Details failed for %s (%s)", place_id, _failure_reason(e))
            logger.debug("Place Details error for %s: %s", place_id, self._redact(e))
            return None

        result = data.get("result")
        if data.get("status") != "OK" or not result:
            logger.warning("Place Details for %s returned status %s", place_id, data.get("status"))
            return None

        business_status = result.get("business_status")
        if business_status and business_status != "OPERATIONAL":
            logger.info("Skipping non-operational place %s (%s)", result.get("name"), business_status)
            return None

        return _candidate_from_details(result)
