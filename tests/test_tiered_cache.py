import tempfile
import unittest
from pathlib import Path

from stridecast.errors import ExternalLookupError
from stridecast.tiered_cache import CacheKey, TieredCache


class _CountingFetch:
    def __init__(self, payload):
        self.payload = payload
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return self.payload


class TestCacheKey(unittest.TestCase):
    def test_of_splits_partition_and_name(self) -> None:
        key = CacheKey.of("postal", "80302", "2024-05-01")
        self.assertEqual(key.partition, ("postal", "80302"))
        self.assertEqual(key.name, "2024-05-01")
        self.assertEqual(key.as_string(), "postal/80302/2024-05-01")

    def test_single_segment(self) -> None:
        self.assertEqual(CacheKey.of("only").as_string(), "only")
        with self.assertRaises(ValueError):
            CacheKey.of()


class TestTieredCache(unittest.TestCase):
    def _round_trip(self, compress: bool) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            cache = TieredCache(Path(tmpdir), "geocode", compress=compress)
            key = CacheKey.of("coords", "40.015,-105.271")
            fetch = _CountingFetch({"postal_code": "80302"})

            self.assertEqual(cache.resolve(key, fetch), {"postal_code": "80302"})
            self.assertEqual(fetch.calls, 1)

            self.assertEqual(cache.resolve(key, fetch), {"postal_code": "80302"})
            self.assertEqual(fetch.calls, 1)
            self.assertEqual(cache.stats["memory_hits"], 1)

            cache.clear_memory()
            self.assertEqual(cache.resolve(key, fetch), {"postal_code": "80302"})
            self.assertEqual(fetch.calls, 1)
            self.assertEqual(cache.stats["disk_hits"], 1)

            suffix = ".json.gz" if compress else ".json"
            expected_path = Path(tmpdir) / "geocode" / "coords" / f"40.015,-105.271{suffix}"
            self.assertTrue(expected_path.exists())

    def test_round_trip_uncompressed(self) -> None:
        self._round_trip(compress=False)

    def test_round_trip_compressed(self) -> None:
        self._round_trip(compress=True)

    def test_reads_entries_written_in_other_layout(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            key = CacheKey.of("postal", "80302", "2024-05-01")
            TieredCache(Path(tmpdir), "weather", compress=True).resolve(key, lambda: {"hour": [1]})
            reader = TieredCache(Path(tmpdir), "weather", compress=False)
            fetch = _CountingFetch({"hour": [2]})
            self.assertEqual(reader.resolve(key, fetch), {"hour": [1]})
            self.assertEqual(fetch.calls, 0)

    def test_fetch_failure_is_not_cached(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            cache = TieredCache(Path(tmpdir), "weather")
            key = CacheKey.of("coords", "1.000,2.000", "2024-05-01")

            def boom():
                raise RuntimeError("service down")

            with self.assertRaises(ExternalLookupError):
                cache.resolve(key, boom)
            self.assertIsNone(cache.get(key))

            fetch = _CountingFetch({"ok": True})
            self.assertEqual(cache.resolve(key, fetch), {"ok": True})
            self.assertEqual(fetch.calls, 1)

    def test_lookup_errors_pass_through_unchanged(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            cache = TieredCache(Path(tmpdir), "geocode")
            original = ExternalLookupError("no address")

            def fail():
                raise original

            with self.assertRaises(ExternalLookupError) as ctx:
                cache.resolve(CacheKey.of("coords", "x"), fail)
            self.assertIs(ctx.exception, original)

    def test_empty_payload_is_an_error(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            cache = TieredCache(Path(tmpdir), "geocode")
            with self.assertRaises(ExternalLookupError):
                cache.resolve(CacheKey.of("coords", "x"), lambda: None)

    def test_corrupt_disk_entry_is_refetched(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            cache = TieredCache(Path(tmpdir), "geocode")
            key = CacheKey.of("coords", "x")
            entry = Path(tmpdir) / "geocode" / "coords" / "x.json"
            entry.parent.mkdir(parents=True)
            entry.write_text("{broken", encoding="utf-8")
            fetch = _CountingFetch({"fresh": True})
            with self.assertLogs("stridecast.storage", level="WARNING"):
                self.assertEqual(cache.resolve(key, fetch), {"fresh": True})
            self.assertEqual(fetch.calls, 1)


if __name__ == "__main__":
    unittest.main()
