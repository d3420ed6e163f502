from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any, Callable

import requests
from dateutil import parser as date_parser

from .config import Settings
from .errors import ExternalLookupError
from .geocode import LocationDescriptor
from .numeric_utils import as_float, as_int, degrees_to_compass
from .tiered_cache import CacheKey, TieredCache


logger = logging.getLogger(__name__)

WEATHER_API_URL = "https://api.weatherapi.com/v1"
CM_PER_INCH = 2.54
DEFAULT_ICON = "🌡️"

# First match wins, so the more specific conditions come first.
CONDITION_ICONS: list[tuple[tuple[str, ...], str]] = [
    (("thunder",), "⛈️"),
    (("blizzard", "snow"), "❄️"),
    (("sleet", "ice pellets", "freezing"), "🧊"),
    (("rain", "drizzle", "shower"), "🌧️"),
    (("fog", "mist"), "🌫️"),
    (("partly",), "⛅"),
    (("overcast", "cloudy"), "☁️"),
    (("sunny",), "☀️"),
]


def weather_cache_key(descriptor: LocationDescriptor, day: date) -> CacheKey:
    return CacheKey.of(descriptor.kind, descriptor.value, day.isoformat())


def parse_local_start(activity: dict[str, Any]) -> datetime | None:
    """Wall-clock start time of the activity at its location.

    Strava suffixes ``start_date_local`` with ``Z`` even though it is local
    time, so any offset is dropped rather than converted.
    """
    for field_name in ("start_date_local", "start_date"):
        raw = activity.get(field_name)
        if not isinstance(raw, str) or not raw.strip():
            continue
        try:
            parsed = date_parser.isoparse(raw.strip())
        except ValueError:
            continue
        return parsed.replace(tzinfo=None)
    return None


def hour_bucket(start_local: datetime) -> int:
    """Nearest hourly entry for a start time; half past rounds up.

    Starts from 23:30 stay on hour 23 of the same day; they do not roll
    over to 00:00 of the next day.
    """
    index = start_local.hour + (1 if start_local.minute >= 30 else 0)
    return min(index, 23)


def condition_icon(condition_text: Any, is_day: Any = 1) -> str:
    text = str(condition_text or "").strip().lower()
    if not text:
        return DEFAULT_ICON
    if text == "clear":
        return "☀️" if as_int(is_day) != 0 else "🌙"
    for needles, icon in CONDITION_ICONS:
        if any(needle in text for needle in needles):
            return icon
    return DEFAULT_ICON


def normalize_day_payload(raw: Any) -> dict[str, Any]:
    if not isinstance(raw, dict):
        raise ExternalLookupError("Weather response is not a JSON object.")
    if isinstance(raw.get("error"), dict):
        raise ExternalLookupError(f"Weather API error: {raw['error'].get('message') or raw['error']}")
    forecast_days = (raw.get("forecast") or {}).get("forecastday") or []
    if not forecast_days or not isinstance(forecast_days[0], dict):
        raise ExternalLookupError("Weather response has no forecast day.")
    hours = forecast_days[0].get("hour") or []
    if not isinstance(hours, list) or not hours:
        raise ExternalLookupError("Weather response has no hourly entries.")
    location = raw.get("location") if isinstance(raw.get("location"), dict) else {}
    return {
        "date": forecast_days[0].get("date"),
        "tz_id": location.get("tz_id"),
        "location_name": location.get("name"),
        "hour": hours,
    }


def select_hour(day_payload: dict[str, Any], index: int) -> dict[str, Any] | None:
    hours = day_payload.get("hour") or []
    for entry in hours:
        if not isinstance(entry, dict):
            continue
        time_text = entry.get("time")
        if isinstance(time_text, str) and len(time_text) >= 13:
            try:
                if int(time_text[11:13]) == index:
                    return entry
            except ValueError:
                continue
    if 0 <= index < len(hours) and isinstance(hours[index], dict):
        return hours[index]
    return None


def _fmt(value: Any, template: str, *, none_value: str = "N/A") -> str:
    parsed = as_float(value)
    if parsed is None:
        return none_value
    return template.format(parsed)


def summarize_hour(entry: dict[str, Any], *, hour_index: int) -> dict[str, Any]:
    condition = entry.get("condition") if isinstance(entry.get("condition"), dict) else {}
    condition_text = str(condition.get("text") or "").strip() or "Unknown"

    rain_in = as_float(entry.get("precip_in")) or 0.0
    snow_cm = as_float(entry.get("snow_cm")) or 0.0
    precip_kind = None
    precip = None
    if rain_in > 0:
        precip_kind = "rain"
        precip = f"{rain_in:.2f} in"
    elif snow_cm > 0:
        precip_kind = "snow"
        precip = f"{snow_cm / CM_PER_INCH:.1f} in"

    return {
        "hour_index": hour_index,
        "time": entry.get("time"),
        "icon": condition_icon(condition_text, entry.get("is_day")),
        "condition": condition_text,
        "temp": _fmt(entry.get("temp_f"), "{:.0f}°F"),
        "feels_like": _fmt(entry.get("feelslike_f"), "{:.0f}°F"),
        "humidity": _fmt(entry.get("humidity"), "{:.0f}%"),
        "wind": _fmt(entry.get("wind_mph"), "{:.1f} mph"),
        "wind_dir": degrees_to_compass(entry.get("wind_degree")),
        "gust": _fmt(entry.get("gust_mph"), "{:.1f} mph"),
        "cloud": _fmt(entry.get("cloud"), "{:.0f}%"),
        "uv": _fmt(entry.get("uv"), "{:g}"),
        "precip_kind": precip_kind,
        "precip": precip,
    }


class WeatherService:
    def __init__(
        self,
        cache: TieredCache,
        settings: Settings,
        *,
        session: requests.Session | None = None,
        today: Callable[[], date] | None = None,
    ):
        self.cache = cache
        self.api_key = settings.weather_api_key
        self.timeout_seconds = settings.request_timeout_seconds
        self.session = session or requests.Session()
        self._today = today or (lambda: datetime.now(timezone.utc).date())

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def get_day(self, descriptor: LocationDescriptor, day: date) -> dict[str, Any]:
        key = weather_cache_key(descriptor, day)
        return self.cache.resolve(key, lambda: self._fetch(descriptor, day))

    def conditions_at(self, descriptor: LocationDescriptor, start_local: datetime) -> dict[str, Any]:
        day_payload = self.get_day(descriptor, start_local.date())
        index = hour_bucket(start_local)
        entry = select_hour(day_payload, index)
        if entry is None:
            raise ExternalLookupError(
                f"No hourly weather entry {index} for {descriptor.value} on {start_local.date().isoformat()}."
            )
        return summarize_hour(entry, hour_index=index)

    def _fetch(self, descriptor: LocationDescriptor, day: date) -> dict[str, Any]:
        if not self.api_key:
            raise ExternalLookupError("WEATHER_API_KEY is not configured.")
        endpoint = "history.json" if day < self._today() else "forecast.json"
        logger.debug("Fetching %s weather for %s on %s", endpoint, descriptor.value, day.isoformat())
        try:
            response = self.session.get(
                f"{WEATHER_API_URL}/{endpoint}",
                params={"key": self.api_key, "q": descriptor.value, "dt": day.isoformat()},
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
            raw = response.json()
        except requests.RequestException as exc:
            raise ExternalLookupError(f"Weather request failed: {exc}") from exc
        except ValueError as exc:
            raise ExternalLookupError("Weather API returned malformed JSON.") from exc
        return normalize_day_payload(raw)
