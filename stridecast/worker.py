from __future__ import annotations

import argparse
import logging
import time
from logging.handlers import TimedRotatingFileHandler
from typing import Any

from .activity_pipeline import STATUS_ERROR, STATUS_UPDATED, EnrichmentOrchestrator
from .config import Settings
from .credentials import CredentialStore
from .poller import ActivityPoller
from .strava_client import StravaClient
from .work_queue import Job, WorkQueue


logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
LOG_FILE_NAME = "stridecast.log"


def configure_logging(settings: Settings) -> None:
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    settings.log_dir.mkdir(parents=True, exist_ok=True)
    file_handler = TimedRotatingFileHandler(
        settings.log_dir / LOG_FILE_NAME,
        when="midnight",
        backupCount=30,
        encoding="utf-8",
    )
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    file_handler.setLevel(level)
    logging.getLogger().addHandler(file_handler)


def summarize_results(results: list[dict[str, Any]]) -> dict[str, int]:
    summary = {"processed": len(results), "updated": 0, "errors": 0, "skipped": 0}
    for result in results:
        status = result.get("status")
        if status == STATUS_UPDATED:
            summary["updated"] += 1
        elif status == STATUS_ERROR:
            summary["errors"] += 1
        else:
            summary["skipped"] += 1
    return summary


def run_cycle(poller: ActivityPoller, orchestrator: EnrichmentOrchestrator) -> dict[str, int]:
    enqueued = poller.poll()
    summary = summarize_results(orchestrator.drain())
    summary["enqueued"] = enqueued
    return summary


def main() -> None:
    parser = argparse.ArgumentParser(description="Enrich Strava activity descriptions with splits and weather.")
    parser.add_argument("--once", action="store_true", help="Run a single poll/drain cycle and exit.")
    parser.add_argument("--user-id", default=None, help="Enrich one activity of this user and exit.")
    parser.add_argument("--activity-id", default=None, help="Activity to enrich together with --user-id.")
    args = parser.parse_args()
    if bool(args.user_id) != bool(args.activity_id):
        parser.error("--user-id and --activity-id must be given together.")

    settings = Settings.from_env()
    settings.validate()
    settings.ensure_state_paths()
    configure_logging(settings)

    credentials = CredentialStore(settings)
    client = StravaClient(settings, credentials)
    queue = WorkQueue()
    poller = ActivityPoller(settings, credentials, client, queue)
    orchestrator = EnrichmentOrchestrator.from_settings(settings, queue, client)

    if args.user_id:
        queue.add(Job(user_id=str(args.user_id), activity_id=str(args.activity_id)))
        logger.info("Single job result: %s", orchestrator.drain())
        return

    interval = settings.poll_interval_seconds
    logger.info("Worker started with poll interval: %ss", interval)
    while True:
        try:
            logger.info("Cycle result: %s", run_cycle(poller, orchestrator))
        except Exception:
            logger.exception("Worker cycle failed.")
        if args.once:
            return
        time.sleep(interval)


if __name__ == "__main__":
    main()
