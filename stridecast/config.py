from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from dotenv import load_dotenv


load_dotenv()


EnvGetter = Callable[[str], str | None]


def _bool_env(name: str, default: bool, *, getenv: EnvGetter = os.getenv) -> bool:
    value = getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _str_env(*names: str, default: str = "", getenv: EnvGetter = os.getenv) -> str:
    for name in names:
        value = getenv(name)
        if value is not None:
            return value.strip()
    return default


def _optional_str_env(*names: str, getenv: EnvGetter = os.getenv) -> str | None:
    value = _str_env(*names, getenv=getenv)
    return value or None


def _int_env(
    name: str,
    default: int,
    minimum: int | None = None,
    maximum: int | None = None,
    *,
    getenv: EnvGetter = os.getenv,
) -> int:
    value = getenv(name)
    if value is None:
        parsed = default
    else:
        try:
            parsed = int(value.strip())
        except ValueError:
            parsed = default

    if minimum is not None and parsed < minimum:
        parsed = minimum
    if maximum is not None and parsed > maximum:
        parsed = maximum
    return parsed


def _float_env(
    name: str,
    default: float,
    minimum: float | None = None,
    maximum: float | None = None,
    *,
    getenv: EnvGetter = os.getenv,
) -> float:
    value = getenv(name)
    if value is None:
        parsed = default
    else:
        try:
            parsed = float(value.strip())
        except ValueError:
            parsed = default

    if minimum is not None and parsed < minimum:
        parsed = minimum
    if maximum is not None and parsed > maximum:
        parsed = maximum
    return parsed


@dataclass(frozen=True)
class Settings:
    strava_client_id: str
    strava_client_secret: str
    weather_api_key: str | None

    poll_interval_seconds: int
    job_delay_seconds: float
    request_timeout_seconds: int
    refresh_window_seconds: int
    recent_activities_per_page: int
    poll_max_workers: int
    log_level: str
    api_port: int
    oauth_redirect_uri: str

    geocode_precision: int
    primary_country_code: str
    geocode_user_agent: str

    use_compression: bool
    state_dir: Path
    credentials_dir: Path
    activities_dir: Path
    cache_dir: Path
    log_dir: Path

    @classmethod
    def from_env(cls) -> "Settings":
        state_dir = Path(_str_env("STATE_DIR", default="state") or "state").resolve()
        api_port = _int_env("API_PORT", 4848, minimum=1, maximum=65535)
        redirect_uri = _str_env("OAUTH_REDIRECT_URI") or f"http://localhost:{api_port}/strava/oauth"

        return cls(
            strava_client_id=_str_env("STRAVA_CLIENT_ID", "CLIENT_ID"),
            strava_client_secret=_str_env("STRAVA_CLIENT_SECRET", "CLIENT_SECRET"),
            weather_api_key=_optional_str_env("WEATHER_API_KEY"),
            poll_interval_seconds=_int_env("POLL_INTERVAL_SECONDS", 300, minimum=60, maximum=86400),
            job_delay_seconds=_float_env("JOB_DELAY_SECONDS", 2.0, minimum=0.0, maximum=300.0),
            request_timeout_seconds=_int_env("REQUEST_TIMEOUT_SECONDS", 30, minimum=1, maximum=300),
            refresh_window_seconds=_int_env("TOKEN_REFRESH_WINDOW_SECONDS", 300, minimum=0, maximum=21600),
            recent_activities_per_page=_int_env("RECENT_ACTIVITIES_PER_PAGE", 10, minimum=1, maximum=200),
            poll_max_workers=_int_env("POLL_MAX_WORKERS", 4, minimum=1, maximum=32),
            log_level=_str_env("LOG_LEVEL", default="INFO").upper() or "INFO",
            api_port=api_port,
            oauth_redirect_uri=redirect_uri,
            geocode_precision=_int_env("GEOCODE_PRECISION", 3, minimum=0, maximum=6),
            primary_country_code=(_str_env("PRIMARY_COUNTRY_CODE", default="US") or "US").upper(),
            geocode_user_agent=_str_env("GEOCODE_USER_AGENT", default="stridecast/0.1") or "stridecast/0.1",
            use_compression=_bool_env("USE_COMPRESSION", True),
            state_dir=state_dir,
            credentials_dir=state_dir / "strava_oauth",
            activities_dir=state_dir / "activities",
            cache_dir=state_dir / "cache",
            log_dir=state_dir / "logs",
        )

    @property
    def refresh_safety_window_seconds(self) -> int:
        return 2 * self.refresh_window_seconds

    def validate(self) -> None:
        missing = []
        if not self.strava_client_id:
            missing.append("STRAVA_CLIENT_ID")
        if not self.strava_client_secret:
            missing.append("STRAVA_CLIENT_SECRET")
        if missing:
            missing_str = ", ".join(missing)
            raise ValueError(f"Missing required environment variables: {missing_str}")

    def ensure_state_paths(self) -> None:
        for path in (
            self.state_dir,
            self.credentials_dir,
            self.activities_dir,
            self.cache_dir,
            self.log_dir,
        ):
            path.mkdir(parents=True, exist_ok=True)
