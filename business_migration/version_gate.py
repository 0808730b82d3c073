"""Version gate for the business migration.

Bump CURRENT_VERSION whenever a pass is added or a pass's contract changes.

History:
    1: active business + foreign key backfill
    2: enum-backed text normalization
    3: portal sync state reset, booked-job stage correction
"""

CURRENT_VERSION = 3


def should_run(last_version: int, current_version: int = CURRENT_VERSION) -> bool:
    """True when the ledger is behind the code."""
    return last_version < current_version
