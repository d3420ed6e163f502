from __future__ import annotations

import gzip
import json
import logging
import re
from pathlib import Path
from typing import Any


logger = logging.getLogger(__name__)

JSON_SUFFIX = ".json"
GZIP_SUFFIX = ".json.gz"
_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._,+-]+")


def safe_name(value: Any) -> str:
    text = _UNSAFE_NAME_CHARS.sub("_", str(value).strip())
    text = text.strip("._")
    return text or "_"


def json_path(directory: Path, name: Any, *, compressed: bool) -> Path:
    suffix = GZIP_SUFFIX if compressed else JSON_SUFFIX
    return directory / f"{safe_name(name)}{suffix}"


def find_json(directory: Path, name: Any) -> Path | None:
    """Return whichever layout exists for ``name``, preferring the compressed one."""
    for compressed in (True, False):
        candidate = json_path(directory, name, compressed=compressed)
        if candidate.exists():
            return candidate
    return None


def strip_json_suffix(filename: str) -> str | None:
    for suffix in (GZIP_SUFFIX, JSON_SUFFIX):
        if filename.endswith(suffix):
            return filename[: -len(suffix)]
    return None


def write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    text = json.dumps(payload, indent=2, sort_keys=True)
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        if path.name.endswith(".gz"):
            with gzip.open(tmp_path, "wt", encoding="utf-8", compresslevel=9) as handle:
                handle.write(text)
        else:
            tmp_path.write_text(text, encoding="utf-8")
        tmp_path.replace(path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise


def read_json(path: Path) -> Any | None:
    if not path.exists():
        return None
    try:
        if path.name.endswith(".gz"):
            with gzip.open(path, "rt", encoding="utf-8") as handle:
                return json.load(handle)
        return json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, gzip.BadGzipFile, EOFError, UnicodeDecodeError) as exc:
        logger.warning("Ignoring unreadable JSON file %s: %s", path, exc)
        return None


def write_named_json(directory: Path, name: Any, payload: Any, *, compressed: bool) -> Path:
    """Write ``payload`` under ``name`` and drop the other layout if present."""
    path = json_path(directory, name, compressed=compressed)
    write_json(path, payload)
    stale = json_path(directory, name, compressed=not compressed)
    if stale.exists():
        stale.unlink()
    return path


def read_named_json(directory: Path, name: Any) -> Any | None:
    path = find_json(directory, name)
    if path is None:
        return None
    return read_json(path)


def activity_snapshot_dir(activities_dir: Path, user_id: Any) -> Path:
    return activities_dir / safe_name(user_id)


def has_activity_snapshot(activities_dir: Path, user_id: Any, activity_id: Any) -> bool:
    return find_json(activity_snapshot_dir(activities_dir, user_id), activity_id) is not None


def write_activity_snapshot(
    activities_dir: Path,
    user_id: Any,
    activity_id: Any,
    payload: dict[str, Any],
    *,
    compressed: bool,
) -> Path:
    return write_named_json(
        activity_snapshot_dir(activities_dir, user_id),
        activity_id,
        payload,
        compressed=compressed,
    )


def write_failed_writeback(
    activities_dir: Path,
    user_id: Any,
    activity_id: Any,
    payload: dict[str, Any],
) -> Path:
    path = activity_snapshot_dir(activities_dir, user_id) / f"{safe_name(activity_id)}.writeback_failed{JSON_SUFFIX}"
    write_json(path, payload)
    return path
