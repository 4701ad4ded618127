import json
import sys
from pathlib import Path

from audit_logger import GENESIS_HASH, chain_hash
from config import AUDIT_LOG_FILE

REQUIRED_KEYS = ("timestamp", "event_type", "details", "prev_hash", "hash")


def verify_log(filepath) -> tuple[bool, list[str], int]:
    """
    Recompute the hash chain.
    Returns (is_valid, errors, valid_entry_count); stops at the first broken link.
    """
    path = Path(filepath)
    if not path.exists():
        return False, [f"Log file '{path}' not found"], 0

    prev_hash = GENESIS_HASH
    valid_count = 0
    errors: list[str] = []

    with open(path, "r", encoding="utf-8") as f:
        for line_num, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue

            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                errors.append(f"Line {line_num}: Invalid JSON")
                break

            if not all(k in entry for k in REQUIRED_KEYS):
                errors.append(f"Line {line_num}: Missing required keys")
                break

            if entry["prev_hash"] != prev_hash:
                errors.append(
                    f"Line {line_num}: BROKEN CHAIN. 'prev_hash' does not match previous entry hash.\n"
                    f"  Expected: {prev_hash}\n  Found:    {entry['prev_hash']}"
                )
                break

            # audit_logger serializes details with sort_keys=True
            details_str = json.dumps(entry["details"], sort_keys=True)
            calculated = chain_hash(entry["prev_hash"], entry["timestamp"], entry["event_type"], details_str)
            if calculated != entry["hash"]:
                errors.append(
                    f"Line {line_num}: INVALID SIGNATURE.\n  Calculated: {calculated}\n  Stored:     {entry['hash']}"
                )
                break

            prev_hash = entry["hash"]
            valid_count += 1

    return not errors, errors, valid_count


def main(argv: list[str]) -> int:
    filepath = argv[1] if len(argv) > 1 else AUDIT_LOG_FILE
    print(f"Verifying integrity of: {filepath}")
    ok, errors, count = verify_log(filepath)
    if not ok:
        print("\nINTEGRITY CHECK FAILED:")
        for e in errors:
            print(f"  - {e}")
        return 1
    print(f"\nINTEGRITY VERIFIED. {count} entries checked. Chain is valid.")
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv))
