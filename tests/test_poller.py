import os
import tempfile
import unittest
from dataclasses import replace
from unittest import mock

import requests

from stridecast.config import Settings
from stridecast.poller import ActivityPoller
from stridecast.storage import write_activity_snapshot
from stridecast.work_queue import Job, WorkQueue


def _settings_for(state_dir: str, **overrides) -> Settings:
    with mock.patch.dict(
        os.environ,
        {"STATE_DIR": state_dir, "STRAVA_CLIENT_ID": "id", "STRAVA_CLIENT_SECRET": "secret"},
        clear=True,
    ):
        settings = Settings.from_env()
    return replace(settings, **overrides)


class _DummyCredentials:
    def __init__(self, user_ids):
        self.user_ids = list(user_ids)

    def list_user_ids(self):
        return list(self.user_ids)


class _DummyClient:
    def __init__(self, listings):
        self.listings = listings
        self.calls = []

    def list_recent_activities(self, user_id, per_page=10):
        self.calls.append((user_id, per_page))
        listing = self.listings[user_id]
        if isinstance(listing, Exception):
            raise listing
        return listing


class TestActivityPoller(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.settings = _settings_for(self.temp_dir.name, recent_activities_per_page=5, poll_max_workers=2)
        self.queue = WorkQueue()

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _drain_queue(self) -> list:
        jobs = []
        while self.queue.size():
            jobs.append(self.queue.next())
        return jobs

    def test_queues_only_unseen_activities(self) -> None:
        write_activity_snapshot(self.settings.activities_dir, "7", "101", {"id": 101}, compressed=True)
        client = _DummyClient({"7": [{"id": 102}, {"id": 101}, {"name": "no id"}]})
        poller = ActivityPoller(self.settings, _DummyCredentials(["7"]), client, self.queue)

        self.assertEqual(poller.poll(), 1)
        self.assertEqual(self._drain_queue(), [Job("7", "102")])
        self.assertEqual(client.calls, [("7", 5)])

    def test_failing_user_does_not_block_others(self) -> None:
        client = _DummyClient(
            {
                "1": requests.HTTPError("429 Too Many Requests"),
                "2": [{"id": 201}, {"id": 202}],
            }
        )
        poller = ActivityPoller(self.settings, _DummyCredentials(["1", "2"]), client, self.queue)
        with self.assertLogs("stridecast.poller", level="ERROR"):
            enqueued = poller.poll()

        self.assertEqual(enqueued, 2)
        self.assertEqual(self._drain_queue(), [Job("2", "201"), Job("2", "202")])

    def test_no_users(self) -> None:
        client = _DummyClient({})
        poller = ActivityPoller(self.settings, _DummyCredentials([]), client, self.queue)
        self.assertEqual(poller.poll(), 0)
        self.assertEqual(client.calls, [])

    def test_second_poll_after_snapshot_queues_nothing(self) -> None:
        client = _DummyClient({"7": [{"id": 300}]})
        poller = ActivityPoller(self.settings, _DummyCredentials(["7"]), client, self.queue)
        self.assertEqual(poller.poll(), 1)
        self._drain_queue()
        write_activity_snapshot(self.settings.activities_dir, "7", "300", {"id": 300}, compressed=False)
        self.assertEqual(poller.poll(), 0)


if __name__ == "__main__":
    unittest.main()
