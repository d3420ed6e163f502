from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any

import requests

from .config import Settings
from .errors import ExternalLookupError
from .numeric_utils import as_float
from .tiered_cache import CacheKey, TieredCache


logger = logging.getLogger(__name__)

NOMINATIM_REVERSE_URL = "https://nominatim.openstreetmap.org/reverse"
LOCALITY_FIELDS = ("city", "town", "village", "hamlet", "suburb", "municipality")

KIND_POSTAL = "postal"
KIND_LOCALITY = "locality"
KIND_COORDS = "coords"


def parse_latlng(value: Any) -> tuple[float, float] | None:
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        return None
    lat = as_float(value[0])
    lon = as_float(value[1])
    if lat is None or lon is None:
        return None
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        return None
    return lat, lon


def coordinate_text(lat: float, lon: float, precision: int) -> str:
    # Rounding first keeps -0.000 out of keys.
    lat_r = round(float(lat), precision) + 0.0
    lon_r = round(float(lon), precision) + 0.0
    return f"{lat_r:.{precision}f},{lon_r:.{precision}f}"


def geocode_cache_key(lat: float, lon: float, precision: int) -> CacheKey:
    return CacheKey.of(KIND_COORDS, coordinate_text(lat, lon, precision))


@dataclass(frozen=True)
class LocationDescriptor:
    kind: str
    value: str


@dataclass(frozen=True)
class GeoLocation:
    lat: float
    lon: float
    country_code: str
    postal_code: str
    locality: str
    region: str

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "GeoLocation":
        return cls(
            lat=float(payload.get("lat") or 0.0),
            lon=float(payload.get("lon") or 0.0),
            country_code=str(payload.get("country_code") or "").strip().upper(),
            postal_code=str(payload.get("postal_code") or "").strip(),
            locality=str(payload.get("locality") or "").strip(),
            region=str(payload.get("region") or "").strip(),
        )

    def descriptor(self, primary_country_code: str, *, precision: int = 3) -> LocationDescriptor:
        """Pick the coarsest location string that still identifies the weather.

        Postal codes and locality names are shared by many nearby starts, so
        they hit the weather cache far more often than raw coordinates.
        """
        in_primary = bool(self.country_code) and self.country_code == primary_country_code.upper()
        if in_primary and self.postal_code:
            return LocationDescriptor(KIND_POSTAL, self.postal_code.split("-")[0].strip())
        if in_primary and self.locality and self.region:
            return LocationDescriptor(KIND_LOCALITY, f"{self.locality},{self.region}")
        return LocationDescriptor(KIND_COORDS, coordinate_text(self.lat, self.lon, precision))

    def display_name(self) -> str:
        place = ", ".join(part for part in (self.locality, self.region) if part)
        if self.postal_code:
            place = f"{place} {self.postal_code}".strip()
        if not place:
            place = coordinate_text(self.lat, self.lon, 3)
        if self.country_code:
            place = f"{place}, {self.country_code}"
        return place


def normalize_reverse_payload(raw: Any, lat: float, lon: float) -> dict[str, Any]:
    if not isinstance(raw, dict):
        raise ExternalLookupError("Reverse geocode response is not a JSON object.")
    if raw.get("error"):
        raise ExternalLookupError(f"Reverse geocode failed: {raw.get('error')}")
    address = raw.get("address")
    if not isinstance(address, dict):
        raise ExternalLookupError("Reverse geocode response has no address.")

    locality = ""
    for field_name in LOCALITY_FIELDS:
        value = address.get(field_name)
        if isinstance(value, str) and value.strip():
            locality = value.strip()
            break
    postcode = str(address.get("postcode") or "").strip()
    postcode = re.split(r"[;,]", postcode)[0].strip() if postcode else ""

    return {
        "lat": lat,
        "lon": lon,
        "country_code": str(address.get("country_code") or "").strip().upper(),
        "postal_code": postcode,
        "locality": locality,
        "region": str(address.get("state") or address.get("region") or "").strip(),
    }


class Geocoder:
    def __init__(
        self,
        cache: TieredCache,
        settings: Settings,
        *,
        session: requests.Session | None = None,
    ):
        self.cache = cache
        self.precision = settings.geocode_precision
        self.user_agent = settings.geocode_user_agent
        self.timeout_seconds = settings.request_timeout_seconds
        self.session = session or requests.Session()

    def reverse(self, lat: float, lon: float) -> GeoLocation:
        rounded_lat = round(float(lat), self.precision)
        rounded_lon = round(float(lon), self.precision)
        key = geocode_cache_key(lat, lon, self.precision)
        payload = self.cache.resolve(key, lambda: self._fetch(rounded_lat, rounded_lon))
        return GeoLocation.from_payload(payload)

    def _fetch(self, lat: float, lon: float) -> dict[str, Any]:
        logger.debug("Reverse geocoding %s,%s", lat, lon)
        try:
            response = self.session.get(
                NOMINATIM_REVERSE_URL,
                params={
                    "lat": f"{lat:.6f}",
                    "lon": f"{lon:.6f}",
                    "format": "jsonv2",
                    "addressdetails": 1,
                },
                headers={
                    "User-Agent": self.user_agent,
                    "Accept-Language": "en",
                },
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
            raw = response.json()
        except requests.RequestException as exc:
            raise ExternalLookupError(f"Reverse geocode request failed: {exc}") from exc
        except ValueError as exc:
            raise ExternalLookupError("Reverse geocode returned malformed JSON.") from exc
        return normalize_reverse_payload(raw, lat, lon)
