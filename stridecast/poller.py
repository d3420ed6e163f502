from __future__ import annotations

import concurrent.futures
import logging
from typing import Any

from .config import Settings
from .credentials import CredentialStore
from .storage import has_activity_snapshot
from .strava_client import StravaClient
from .work_queue import Job, WorkQueue


logger = logging.getLogger(__name__)


class ActivityPoller:
    """Lists recent activities for every stored user and queues unseen ones.

    Listing runs concurrently per user. An activity counts as seen once it
    has a snapshot on disk, which the orchestrator writes on first fetch.
    """

    def __init__(
        self,
        settings: Settings,
        credentials: CredentialStore,
        client: StravaClient,
        queue: WorkQueue,
    ):
        self.credentials = credentials
        self.client = client
        self.queue = queue
        self.activities_dir = settings.activities_dir
        self.per_page = settings.recent_activities_per_page
        self.max_workers = settings.poll_max_workers

    def poll(self) -> int:
        user_ids = self.credentials.list_user_ids()
        if not user_ids:
            logger.info("No registered users to poll.")
            return 0

        enqueued = 0
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(user_ids)),
            thread_name_prefix="poller",
        ) as executor:
            futures = {
                executor.submit(self.client.list_recent_activities, user_id, self.per_page): user_id
                for user_id in user_ids
            }
            for future in concurrent.futures.as_completed(futures):
                user_id = futures[future]
                try:
                    activities = future.result()
                except Exception as exc:
                    logger.error("Listing activities for user %s failed: %s", user_id, exc)
                    continue
                enqueued += self._enqueue_unseen(user_id, activities)

        if enqueued:
            logger.info("Queued %s new activit%s.", enqueued, "y" if enqueued == 1 else "ies")
        return enqueued

    def _enqueue_unseen(self, user_id: str, activities: list[dict[str, Any]]) -> int:
        count = 0
        for activity in activities:
            if not isinstance(activity, dict):
                continue
            activity_id = activity.get("id")
            if activity_id is None:
                continue
            activity_id = str(activity_id)
            if has_activity_snapshot(self.activities_dir, user_id, activity_id):
                continue
            self.queue.add(Job(user_id=user_id, activity_id=activity_id))
            count += 1
        return count
