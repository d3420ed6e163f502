import gzip
import json
import tempfile
import unittest
from pathlib import Path

from stridecast.storage import (
    find_json,
    has_activity_snapshot,
    json_path,
    read_json,
    read_named_json,
    safe_name,
    strip_json_suffix,
    write_activity_snapshot,
    write_failed_writeback,
    write_json,
    write_named_json,
)


class TestStorage(unittest.TestCase):
    def test_json_round_trip(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "latest.json"
            payload = {"activity_id": 123, "description": "hello"}
            write_json(path, payload)
            self.assertEqual(read_json(path), payload)
            self.assertFalse((Path(tmpdir) / "latest.json.tmp").exists())

    def test_gzip_layout_is_really_compressed(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "entry.json.gz"
            write_json(path, {"a": 1})
            with gzip.open(path, "rt", encoding="utf-8") as handle:
                self.assertEqual(json.load(handle), {"a": 1})
            self.assertEqual(read_json(path), {"a": 1})

    def test_both_layouts_resolve_to_same_payload(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            directory = Path(tmpdir)
            write_named_json(directory, "plain", {"v": 1}, compressed=False)
            write_named_json(directory, "packed", {"v": 1}, compressed=True)
            self.assertEqual(read_named_json(directory, "plain"), read_named_json(directory, "packed"))
            self.assertEqual(find_json(directory, "plain").name, "plain.json")
            self.assertEqual(find_json(directory, "packed").name, "packed.json.gz")
            self.assertIsNone(find_json(directory, "missing"))

    def test_switching_layout_removes_stale_variant(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            directory = Path(tmpdir)
            write_named_json(directory, "42", {"v": 1}, compressed=False)
            write_named_json(directory, "42", {"v": 2}, compressed=True)
            self.assertFalse(json_path(directory, "42", compressed=False).exists())
            self.assertEqual(read_named_json(directory, "42"), {"v": 2})

    def test_corrupt_files_read_as_missing(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            plain = Path(tmpdir) / "bad.json"
            plain.write_text("{not json", encoding="utf-8")
            packed = Path(tmpdir) / "bad2.json.gz"
            packed.write_bytes(b"not gzip at all")
            with self.assertLogs("stridecast.storage", level="WARNING"):
                self.assertIsNone(read_json(plain))
            with self.assertLogs("stridecast.storage", level="WARNING"):
                self.assertIsNone(read_json(packed))

    def test_safe_name_and_suffix_helpers(self) -> None:
        self.assertEqual(safe_name("Boulder,Colorado"), "Boulder,Colorado")
        self.assertEqual(safe_name("New York/NY"), "New_York_NY")
        self.assertEqual(safe_name("../etc"), "etc")
        self.assertEqual(strip_json_suffix("123.json.gz"), "123")
        self.assertEqual(strip_json_suffix("123.json"), "123")
        self.assertIsNone(strip_json_suffix("notes.txt"))

    def test_activity_snapshots(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            activities_dir = Path(tmpdir)
            self.assertFalse(has_activity_snapshot(activities_dir, "7", "99"))
            write_activity_snapshot(activities_dir, "7", "99", {"id": 99}, compressed=True)
            self.assertTrue(has_activity_snapshot(activities_dir, "7", "99"))
            self.assertFalse(has_activity_snapshot(activities_dir, "8", "99"))

            failed = write_failed_writeback(activities_dir, "7", "100", {"description": "x"})
            self.assertEqual(failed.name, "100.writeback_failed.json")
            self.assertFalse(has_activity_snapshot(activities_dir, "7", "100"))

    def test_failed_replace_leaves_no_temp_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            target = Path(tmpdir) / "blocked.json"
            target.mkdir()
            with self.assertRaises(OSError):
                write_json(target, {"a": 1})
            self.assertFalse((Path(tmpdir) / "blocked.json.tmp").exists())
            self.assertTrue(target.is_dir())


if __name__ == "__main__":
    unittest.main()
