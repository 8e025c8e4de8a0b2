"""
Geocoding adapter over the Google Geocoding HTTP API.

Naming follows the data flow of the sync rather than the API's own terms:
- forward(lat, lng): coordinates -> address, city, country code
- reverse(address): address -> coordinates

Neither method raises for network or API failures. Callers always get a
result object and branch on `success`; the `reason` field says why it failed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from core.config import settings
from core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# First component type present wins.
CITY_COMPONENT_PRIORITY = (
    "locality",
    "postal_town",
    "administrative_area_level_2",
    "administrative_area_level_1",
)


@dataclass
class GeocodeResult:
    success: bool
    address: Optional[str] = None
    city: Optional[str] = None
    country_code: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class CoordinateResult:
    success: bool
    lat: Optional[float] = None
    lng: Optional[float] = None
    reason: Optional[str] = None


def extract_city(components: List[Dict[str, Any]]) -> Optional[str]:
    for wanted in CITY_COMPONENT_PRIORITY:
        for comp in components or []:
            if wanted in (comp.get("types") or []) and comp.get("long_name"):
                return comp["long_name"]
    return None


def extract_country_code(components: List[Dict[str, Any]]) -> Optional[str]:
    for comp in components or []:
        if "country" in (comp.get("types") or []) and comp.get("short_name"):
            return comp["short_name"]
    return None


class GeocodingService:
    def __init__(
        self,
        api_key: Optional[str] = None,
        session: Optional[requests.Session] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        """
        Args:
            api_key: Google Maps API key (falls back to settings.GOOGLE_MAPS_API_KEY)
            session: optional requests.Session for connection reuse
            base_url: Geocoding endpoint (falls back to settings.GEOCODING_API_URL)
            timeout: per-request timeout in seconds

        Raises:
            ConfigurationError: if no API key is available
        """
        self.api_key = api_key or settings.GOOGLE_MAPS_API_KEY
        if not self.api_key:
            raise ConfigurationError("GOOGLE_MAPS_API_KEY is not configured")
        self.base_url = base_url or settings.GEOCODING_API_URL
        self.timeout = timeout if timeout is not None else settings.EXTERNAL_API_TIMEOUT
        self.session = session or requests.Session()

    def _request(self, params: Dict[str, str]) -> tuple[Optional[List[Dict[str, Any]]], Optional[str]]:
        """Return (results, None) on success or (None, reason) on failure."""
        try:
            resp = self.session.get(
                self.base_url,
                params={**params, "key": self.api_key},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning(f"Geocoding request failed: {e}")
            return None, f"network_error: {e}"

        if resp.status_code != 200:
            logger.warning(f"Geocoding HTTP {resp.status_code}")
            return None, f"http_{resp.status_code}"

        try:
            payload = resp.json()
        except ValueError:
            return None, "invalid_response"

        status = (payload or {}).get("status")
        if status != "OK":
            if status != "ZERO_RESULTS":
                logger.warning(f"Geocoding status {status}: {payload.get('error_message')}")
            return None, str(status or "unknown_status")

        results = payload.get("results") or []
        if not results:
            return None, "no_results"
        return results, None

    def forward(self, lat: float, lng: float) -> GeocodeResult:
        """
        Resolve coordinates to a formatted address, city and ISO country code.

        Args:
            lat: Latitude
            lng: Longitude

        Returns:
            GeocodeResult; success=False with a reason when nothing was resolved.
        """
        results, reason = self._request({"latlng": f"{lat},{lng}"})
        if results is None:
            return GeocodeResult(success=False, reason=reason)

        first = results[0]
        components = first.get("address_components") or []
        return GeocodeResult(
            success=True,
            address=first.get("formatted_address"),
            city=extract_city(components),
            country_code=extract_country_code(components),
        )

    def reverse(self, address: str) -> CoordinateResult:
        """
        Resolve a free-text address to coordinates.

        Returns:
            CoordinateResult; success=False with a reason when nothing was resolved.
        """
        if not address or not address.strip():
            return CoordinateResult(success=False, reason="empty_address")

        results, reason = self._request({"address": address.strip()})
        if results is None:
            return CoordinateResult(success=False, reason=reason)

        location = ((results[0].get("geometry") or {}).get("location")) or {}
        try:
            return CoordinateResult(success=True, lat=float(location["lat"]), lng=float(location["lng"]))
        except (KeyError, TypeError, ValueError):
            return CoordinateResult(success=False, reason="missing_location")
