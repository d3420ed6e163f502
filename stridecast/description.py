from __future__ import annotations

import logging
from typing import Any

from jinja2 import StrictUndefined
from jinja2.sandbox import SandboxedEnvironment

from .numeric_utils import (
    PACE_PLACEHOLDER,
    as_int,
    meters_to_km,
    mps_to_pace_per_km,
    mps_to_pace_per_mile,
    seconds_to_hms,
)


logger = logging.getLogger(__name__)

ENRICHMENT_MARKER = "#stridecast"

SPLIT_LINE_TEMPLATE = (
    "Lap {{ split.index }} | {{ split.distance }} | {{ split.elapsed }} ({{ split.moving }} moving)"
    " | {{ split.pace_km }}/km | {{ split.pace_mi }}/mi"
)

WEATHER_LINE_TEMPLATE = (
    "{{ weather.icon }} {{ weather.temp }} {{ weather.condition }} | Feels {{ weather.feels_like }}"
    " | 💧 {{ weather.humidity }} | 💨 {{ weather.wind }} {{ weather.wind_dir }} (gust {{ weather.gust }})"
    " | ☁️ {{ weather.cloud }} | UV {{ weather.uv }}"
    "{% if weather.precip_kind == 'rain' %} | 🌧️ {{ weather.precip }}"
    "{% elif weather.precip_kind == 'snow' %} | 🌨️ {{ weather.precip }}{% endif %}"
)

DESCRIPTION_TEMPLATE = """{% if original %}{{ original }}

{% endif %}{% if split_lines %}📊 Splits
{% for line in split_lines %}{{ line }}
{% endfor %}{% endif %}{% if location %}📍 {{ location }}
{% endif %}{% if weather_line %}{{ weather_line }}
{% endif %}
{{ marker }}"""

_ENV = SandboxedEnvironment(undefined=StrictUndefined, autoescape=False)


def _render(template_text: str, **context: Any) -> str:
    return _ENV.from_string(template_text).render(**context)


def has_enrichment_marker(description: Any) -> bool:
    return isinstance(description, str) and ENRICHMENT_MARKER in description


def _lap_pace(speed: Any, formatter: Any, lap_number: int) -> str:
    try:
        return formatter(speed)
    except ValueError as exc:
        logger.warning("Lap %s has no usable speed: %s", lap_number, exc)
        return PACE_PLACEHOLDER


def compute_splits(laps: Any) -> list[dict[str, str]]:
    if not isinstance(laps, list):
        return []
    splits = []
    for position, lap in enumerate(laps, start=1):
        if not isinstance(lap, dict):
            continue
        lap_number = as_int(lap.get("lap_index")) or position
        speed = lap.get("average_speed")
        splits.append(
            {
                "index": f"{lap_number:02d}",
                "distance": meters_to_km(lap.get("distance")),
                "elapsed": seconds_to_hms(lap.get("elapsed_time")),
                "moving": seconds_to_hms(lap.get("moving_time")),
                "pace_km": _lap_pace(speed, mps_to_pace_per_km, lap_number),
                "pace_mi": _lap_pace(speed, mps_to_pace_per_mile, lap_number),
            }
        )
    return splits


def format_splits(splits: list[dict[str, str]]) -> list[str]:
    return [_render(SPLIT_LINE_TEMPLATE, split=split) for split in splits]


def render_weather_line(weather: dict[str, Any]) -> str:
    return _render(WEATHER_LINE_TEMPLATE, weather=weather)


def compose_description(
    original: Any,
    *,
    split_lines: list[str],
    location: str | None = None,
    weather_line: str | None = None,
) -> str:
    original_text = original.rstrip() if isinstance(original, str) else ""
    return _render(
        DESCRIPTION_TEMPLATE,
        original=original_text,
        split_lines=split_lines,
        location=location or "",
        weather_line=weather_line or "",
        marker=ENRICHMENT_MARKER,
    )


def decorate_name(name: Any, icon: str | None) -> Any:
    if not icon:
        return name
    text = "" if name is None else str(name)
    if text.startswith(icon):
        return text
    return f"{icon} {text}" if text else icon


def build_update_payload(activity: dict[str, Any], description: str, *, icon: str | None = None) -> dict[str, Any]:
    """Fields sent back on writeback; everything but description and name passes through."""
    return {
        "commute": bool(activity.get("commute")),
        "trainer": bool(activity.get("trainer")),
        "hide_from_home": bool(activity.get("hide_from_home")),
        "description": description,
        "name": decorate_name(activity.get("name"), icon),
        "type": activity.get("type"),
        "gear_id": activity.get("gear_id"),
    }
