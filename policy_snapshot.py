from __future__ import annotations

import hashlib
import json
from pathlib import Path

from config import POLICY_ID, SNAPSHOT_PATH


def _hash_file(path: Path) -> str:
    return hashlib.sha256(path.read_bytes()).hexdigest()


def canonical_dumps(data: dict[str, object]) -> str:
    return json.dumps(data, indent=2, sort_keys=True, ensure_ascii=True) + "\n"


def snapshot_sha256(path: Path = SNAPSHOT_PATH) -> str:
    """SHA-256 of the snapshot bytes, recorded in batch metadata for provenance."""
    return _hash_file(path)


def load_policy_snapshot(path: Path = SNAPSHOT_PATH, policy_id: str = POLICY_ID) -> dict[str, object]:
    if not path.exists():
        raise FileNotFoundError(f"Snapshot file not found: {path}")
    with path.open("r", encoding="utf-8") as handle:
        data = json.load(handle)
    if data.get("policy_id") != policy_id:
        raise ValueError(f"Snapshot policy_id mismatch: expected {policy_id}, found {data.get('policy_id')}")
    return data


def write_policy_snapshot(snapshot: dict[str, object], path: Path = SNAPSHOT_PATH) -> str:
    """
    Rewrite a snapshot in canonical form (sorted keys, 2-space indent).
    Returns the new file hash.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(canonical_dumps(snapshot), encoding="utf-8")
    return _hash_file(path)


if __name__ == "__main__":
    from schema_validation import validate_lcd_snapshot

    snap = load_policy_snapshot(SNAPSHOT_PATH, POLICY_ID)
    validate_lcd_snapshot(snap)
    digest = write_policy_snapshot(snap, SNAPSHOT_PATH)
    print(f"Canonicalized snapshot: {SNAPSHOT_PATH} (policy_id={snap.get('policy_id')}, sha256={digest})")
