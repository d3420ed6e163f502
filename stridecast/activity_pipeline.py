from __future__ import annotations

import logging
import time
from typing import Any, Callable

import requests

from .config import Settings
from .description import (
    build_update_payload,
    compose_description,
    compute_splits,
    format_splits,
    has_enrichment_marker,
    render_weather_line,
)
from .errors import EnrichmentError, ExternalLookupError, ParseError, WritebackError
from .geocode import Geocoder, GeoLocation, parse_latlng
from .storage import write_activity_snapshot, write_failed_writeback
from .strava_client import StravaClient
from .tiered_cache import TieredCache
from .weather import WeatherService, parse_local_start
from .work_queue import Job, WorkQueue


logger = logging.getLogger(__name__)

STATUS_UPDATED = "updated"
STATUS_ALREADY_PROCESSED = "already_processed"
STATUS_NO_ENRICHMENT = "no_enrichment"
STATUS_ERROR = "error"


class EnrichmentOrchestrator:
    """Runs queued jobs one at a time through fetch, enrich and writeback.

    Stages run strictly in order for a job. Any stage failure abandons that
    job only; ``drain`` keeps pulling jobs until the queue is empty.
    """

    def __init__(
        self,
        settings: Settings,
        queue: WorkQueue,
        client: StravaClient,
        geocoder: Geocoder,
        weather: WeatherService,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.queue = queue
        self.client = client
        self.geocoder = geocoder
        self.weather = weather
        self.activities_dir = settings.activities_dir
        self.use_compression = settings.use_compression
        self.primary_country_code = settings.primary_country_code
        self.geocode_precision = settings.geocode_precision
        self.job_delay_seconds = settings.job_delay_seconds
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        queue: WorkQueue,
        client: StravaClient,
        *,
        session: requests.Session | None = None,
    ) -> "EnrichmentOrchestrator":
        geocode_cache = TieredCache(settings.cache_dir, "geocode", compress=settings.use_compression)
        weather_cache = TieredCache(settings.cache_dir, "weather", compress=settings.use_compression)
        return cls(
            settings,
            queue,
            client,
            Geocoder(geocode_cache, settings, session=session),
            WeatherService(weather_cache, settings, session=session),
        )

    def drain(self) -> list[dict[str, Any]]:
        results = []
        while True:
            job = self.queue.next()
            if job is None:
                break
            results.append(self.process_job(job))
            if self.queue.size() > 0 and self.job_delay_seconds > 0:
                self._sleep(self.job_delay_seconds)
        if results:
            logger.info("Queue drained after %s job(s).", len(results))
        return results

    def process_job(self, job: Job) -> dict[str, Any]:
        started = time.monotonic()
        stage = "fetch"
        try:
            activity = self._fetch(job)

            stage = "idempotency"
            if has_enrichment_marker(activity.get("description")):
                logger.info("Activity %s of user %s already enriched. Skipping.", job.activity_id, job.user_id)
                return self._result(job, STATUS_ALREADY_PROCESSED, started)

            stage = "splits"
            split_lines = format_splits(compute_splits(activity.get("laps")))

            stage = "geolocation"
            location = self._resolve_location(job, activity)

            stage = "weather"
            weather = self._resolve_weather(job, activity, location) if location is not None else None

            if not split_lines and location is None:
                logger.warning(
                    "Nothing to add to activity %s of user %s (no laps, no location).",
                    job.activity_id,
                    job.user_id,
                )
                return self._result(job, STATUS_NO_ENRICHMENT, started)

            stage = "writeback"
            description = compose_description(
                activity.get("description"),
                split_lines=split_lines,
                location=location.display_name() if location is not None else None,
                weather_line=render_weather_line(weather) if weather is not None else None,
            )
            payload = build_update_payload(
                activity,
                description,
                icon=weather.get("icon") if weather is not None else None,
            )
            self._writeback(job, payload)
        except WritebackError as exc:
            failed_path = None
            if exc.payload is not None:
                try:
                    failed_path = write_failed_writeback(
                        self.activities_dir, job.user_id, job.activity_id, exc.payload
                    )
                except OSError:
                    logger.exception(
                        "Could not keep failed payload for activity %s of user %s.",
                        job.activity_id,
                        job.user_id,
                    )
            logger.error(
                "Writeback failed for activity %s of user %s: %s (payload kept at %s)",
                job.activity_id,
                job.user_id,
                exc,
                failed_path,
            )
            return self._result(job, STATUS_ERROR, started, stage=stage, error=str(exc))
        except (EnrichmentError, requests.RequestException) as exc:
            logger.error(
                "Job for activity %s of user %s failed at %s: %s",
                job.activity_id,
                job.user_id,
                stage,
                exc,
            )
            return self._result(job, STATUS_ERROR, started, stage=stage, error=str(exc))
        except Exception as exc:
            logger.exception(
                "Unexpected failure for activity %s of user %s at %s.",
                job.activity_id,
                job.user_id,
                stage,
            )
            return self._result(job, STATUS_ERROR, started, stage=stage, error=str(exc))

        logger.info("Activity %s of user %s updated.", job.activity_id, job.user_id)
        return self._result(
            job,
            STATUS_UPDATED,
            started,
            splits=len(split_lines),
            location=location.display_name() if location is not None else None,
            weather=weather is not None,
        )

    def _fetch(self, job: Job) -> dict[str, Any]:
        activity = self.client.get_activity(job.user_id, job.activity_id, include_all_efforts=False)
        write_activity_snapshot(
            self.activities_dir,
            job.user_id,
            job.activity_id,
            activity,
            compressed=self.use_compression,
        )
        return activity

    def _resolve_location(self, job: Job, activity: dict[str, Any]) -> GeoLocation | None:
        start = parse_latlng(activity.get("start_latlng"))
        end = parse_latlng(activity.get("end_latlng"))
        if start is None or end is None:
            logger.info("Activity %s has no GPS endpoints; splits only.", job.activity_id)
            return None
        try:
            return self.geocoder.reverse(*start)
        except ExternalLookupError as exc:
            logger.warning("Geocode failed for activity %s: %s", job.activity_id, exc)
            return None

    def _resolve_weather(
        self,
        job: Job,
        activity: dict[str, Any],
        location: GeoLocation,
    ) -> dict[str, Any] | None:
        if not self.weather.enabled:
            return None
        start_local = parse_local_start(activity)
        if start_local is None:
            logger.warning("Activity %s has no parseable start date; skipping weather.", job.activity_id)
            return None
        descriptor = location.descriptor(self.primary_country_code, precision=self.geocode_precision)
        try:
            return self.weather.conditions_at(descriptor, start_local)
        except ExternalLookupError as exc:
            logger.warning("Weather lookup failed for activity %s: %s", job.activity_id, exc)
            return None

    def _writeback(self, job: Job, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            updated = self.client.update_activity(job.user_id, job.activity_id, payload)
        except (requests.RequestException, ParseError) as exc:
            raise WritebackError(f"Strava rejected update: {exc}", payload=payload) from exc
        # Update is already applied on Strava at this point.
        try:
            write_activity_snapshot(
                self.activities_dir,
                job.user_id,
                job.activity_id,
                updated,
                compressed=self.use_compression,
            )
        except OSError:
            logger.exception("Could not snapshot updated activity %s of user %s.", job.activity_id, job.user_id)
        return updated

    @staticmethod
    def _result(job: Job, status: str, started: float, **extra: Any) -> dict[str, Any]:
        result = {
            "status": status,
            "user_id": job.user_id,
            "activity_id": job.activity_id,
            "duration_ms": int((time.monotonic() - started) * 1000),
        }
        result.update(extra)
        return result
