import hashlib
import json
import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from phi_sanitizer import sanitize_audit_text

logger = logging.getLogger(__name__)

GENESIS_HASH = "0" * 64


def chain_hash(prev_hash: str, timestamp: str, event_type: str, details_str: str) -> str:
    """SHA-256 over prev_hash|timestamp|event_type|details_json."""
    payload = f"{prev_hash}|{timestamp}|{event_type}|{details_str}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _redact(value: Any) -> Any:
    if isinstance(value, str):
        return sanitize_audit_text(value)
    if isinstance(value, dict):
        return {k: _redact(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_redact(v) for v in value]
    return value


class AuditLogger:
    """
    Append-only decision log with cryptographic hash chaining.
    Each entry's hash = SHA256(prev_hash + timestamp + event_type + details_json),
    so any edit or deletion breaks every later link (see verify_audit.py).

    String details are PHI-redacted before hashing.
    """

    def __init__(self, log_file: str | Path):
        self.log_file = Path(log_file)
        self._lock = threading.Lock()
        self.prev_hash = self._get_last_hash()

    def _get_last_hash(self) -> str:
        """
        Reads the last line of the log file to get the last hash.
        Returns the genesis hash if the file is empty or missing.
        """
        if not self.log_file.exists():
            return GENESIS_HASH

        with open(self.log_file, "rb") as f:
            try:
                f.seek(-2, os.SEEK_END)
                while f.read(1) != b"\n":
                    f.seek(-2, os.SEEK_CUR)
            except OSError:
                f.seek(0)
            last_line = f.readline().decode("utf-8").strip()

        if not last_line:
            return GENESIS_HASH
        try:
            return json.loads(last_line).get("hash", GENESIS_HASH)
        except json.JSONDecodeError as e:
            # A torn last line must not silently restart the chain
            raise ValueError(f"Audit log {self.log_file} ends with an unreadable entry") from e

    def log_event(self, event_type: str, details: Dict[str, Any], actor: str = "system", episode_id: Optional[str] = None) -> str:
        """
        Logs an event with a cryptographic signature.
        Returns the hash of the new entry.
        """
        safe_details = _redact(details)
        details_str = json.dumps(safe_details, sort_keys=True)

        with self._lock:
            timestamp = datetime.now(timezone.utc).isoformat()
            entry_hash = chain_hash(self.prev_hash, timestamp, event_type, details_str)
            entry = {
                "timestamp": timestamp,
                "event_type": event_type,
                "actor": actor,
                "episode_id": episode_id or "N/A",
                "details": safe_details,
                "prev_hash": self.prev_hash,
                "hash": entry_hash,
            }
            self.log_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry) + "\n")
            self.prev_hash = entry_hash

        logger.debug("Audit event %s appended (%s)", event_type, entry_hash[:12])
        return entry_hash


_loggers: Dict[Path, AuditLogger] = {}


def get_audit_logger(log_file: str | Path) -> AuditLogger:
    """One logger per file so concurrent writers share the chain head."""
    key = Path(log_file).resolve()
    if key not in _loggers:
        _loggers[key] = AuditLogger(key)
    return _loggers[key]
