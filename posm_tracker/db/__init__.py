"""
POSM Tracker — Snapshot Store
Read-only JSON snapshot of the catalogs and submission set, as exported by the
catalog-management side. The engine itself never touches this module.
"""
import json
import logging
from pathlib import Path

from posm_tracker.config import SNAPSHOT_PATH

log = logging.getLogger(__name__)

# ============================================================
# EMPTY SNAPSHOT SCHEMA
# ============================================================
EMPTY_SNAPSHOT = {"displays": [], "stores": [], "posm_requirements": [], "submissions": []}


def _fresh_snapshot() -> dict:
    return json.loads(json.dumps(EMPTY_SNAPSHOT))


def load_snapshot(path: Path = None) -> dict:
    """Load the snapshot file. Missing or corrupt files yield empty collections."""
    path = Path(path or SNAPSHOT_PATH)
    if not path.exists():
        log.info("Snapshot %s not found, using empty collections", path)
        return _fresh_snapshot()
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        log.warning("Snapshot %s unreadable (%s), using empty collections", path, e)
        return _fresh_snapshot()
    if not isinstance(data, dict):
        log.warning("Snapshot %s is not an object, using empty collections", path)
        return _fresh_snapshot()
    snapshot = _fresh_snapshot()
    for k in EMPTY_SNAPSHOT:
        if isinstance(data.get(k), list):
            snapshot[k] = data[k]
    return snapshot


def save_snapshot(snapshot: dict, path: Path = None) -> Path:
    """Write a snapshot file. For fixtures and seeding only."""
    path = Path(path or SNAPSHOT_PATH)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump({k: snapshot.get(k, []) for k in EMPTY_SNAPSHOT}, f, indent=2, default=str)
    return path
