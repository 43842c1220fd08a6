"""Address lookup against the Google Geocoding API.

Only the contract matters to callers: ``lookup(address)`` returns exactly
one ``GeocodeResult`` or raises ``GeocodeNoResult``,
``GeocodeTooManyResults`` or ``GeocoderUnavailable``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from . import metrics
from .config import settings
from .domain import Bounds, Coordinates
from .errors import GeocodeNoResult, GeocodeTooManyResults, GeocoderUnavailable

logger = logging.getLogger("centers.geocoding")

# English administrative-area names returned by the API, mapped to German.
REGION_TRANSLATIONS: dict[str, str] = {
    "Rhineland-Palatinate": "Rheinland-Pfalz",
    "Bavaria": "Bayern",
    "North Rhine-Westphalia": "Nordrhein-Westfalen",
    "Lower Saxony": "Niedersachsen",
    "Saxony": "Sachsen",
    "Saxony-Anhalt": "Sachsen-Anhalt",
}


def translate_region(region: str | None) -> str | None:
    if region is None:
        return None
    return REGION_TRANSLATIONS.get(region, region)


@dataclass(frozen=True)
class GeocodeResult:
    address: str
    coordinates: Coordinates
    bounds: Bounds
    zip_code: str | None = None
    region: str | None = None


class Geocoder(Protocol):
    def lookup(self, address: str) -> GeocodeResult:
        ...


def _component(result: dict, kind: str) -> str | None:
    for comp in result.get("address_components") or []:
        if kind in (comp.get("types") or []):
            return comp.get("long_name")
    return None


def _coords(point: dict) -> Coordinates:
    return Coordinates(longitude=float(point["lng"]), latitude=float(point["lat"]))


def parse_result(result: dict) -> GeocodeResult:
    geometry = result.get("geometry") or {}
    viewport = geometry.get("viewport") or {}
    location = _coords(geometry.get("location") or {"lat": 0.0, "lng": 0.0})
    bounds = Bounds(
        north_east=_coords(viewport["northeast"]) if "northeast" in viewport else location,
        south_west=_coords(viewport["southwest"]) if "southwest" in viewport else location,
    )
    return GeocodeResult(
        address=result.get("formatted_address") or "",
        coordinates=location,
        bounds=bounds,
        zip_code=_component(result, "postal_code"),
        region=translate_region(_component(result, "administrative_area_level_1")),
    )


def select_result(results: list[dict]) -> dict:
    """Narrow a result list to one entry, preferring street addresses."""
    if not results:
        raise GeocodeNoResult()
    if len(results) == 1:
        return results[0]
    for r in results:
        if "street_address" in (r.get("types") or []):
            return r
    raise GeocodeTooManyResults()


@dataclass
class GoogleGeocoder:
    api_key: str
    base_url: str = "https://maps.googleapis.com"
    timeout: float = 5.0

    def _get(self, params: dict) -> dict:
        url = f"{self.base_url.rstrip('/')}/maps/api/geocode/json"
        try:
            with httpx.Client(timeout=self.timeout) as client:
                resp = client.get(url, params=params)
        except httpx.HTTPError as exc:
            raise GeocoderUnavailable(f"geocoder request failed: {exc}") from exc
        if resp.status_code >= 400:
            raise GeocoderUnavailable(f"maps_status_{resp.status_code}")
        return resp.json() or {}

    def lookup(self, address: str) -> GeocodeResult:
        metrics.GEOCODE_REQUESTS.inc()
        data = self._get({
            "address": address,
            "region": "de",
            "components": "country:DE",
            "key": self.api_key,
        })
        status = (data.get("status") or "").upper()
        if status == "ZERO_RESULTS":
            raise GeocodeNoResult()
        if status != "OK":
            raise GeocoderUnavailable(f"maps_status_{status or 'UNKNOWN'}")
        return parse_result(select_result(data.get("results") or []))


_geocoder: Geocoder | None = None


def get_geocoder() -> Geocoder:
    global _geocoder
    if _geocoder is None:
        if not settings.GOOGLE_MAPS_API_KEY:
            logger.warning("GOOGLE_MAPS_API_KEY is not configured; geocoding requests will be rejected")
        _geocoder = GoogleGeocoder(
            api_key=settings.GOOGLE_MAPS_API_KEY,
            base_url=settings.GOOGLE_MAPS_BASE_URL,
            timeout=settings.MAPS_TIMEOUT_SECS,
        )
    return _geocoder
