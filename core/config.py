"""Runtime configuration.

Settings are read from the environment. A ``.env`` file at the repository
root is loaded first if it exists, so local development can keep overrides
out of the shell profile.

Environment variables:
- SMALLBIZ_DB_PATH: SQLite database file (default: smallbiz.db at repo root)
- SMALLBIZ_DEFAULT_BUSINESS_NAME: Name given to a business created on an empty store
- SMALLBIZ_DEFAULT_CURRENCY: Currency code for that business
- SMALLBIZ_AUDIT_DIR: Directory for JSON audit files (unset disables file audit)
- SMALLBIZ_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR
- SMALLBIZ_LOG_JSON: "true" for JSON log lines
- SMALLBIZ_PREFER_LINKED_OWNER: "true" to repair dangling documents from their links first
"""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

REPO_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_DB_PATH = REPO_ROOT / "smallbiz.db"

env_path = REPO_ROOT / ".env"
if env_path.exists():
    load_dotenv(env_path)


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class MigrationSettings(BaseModel):
    """Settings consumed by the migration engine and its launch script."""
    db_path: Path = Field(default=DEFAULT_DB_PATH, description="SQLite database file")
    default_business_name: str = Field(default="Default Business")
    default_currency: str = Field(default="USD")
    audit_dir: Optional[Path] = Field(default=None, description="JSON audit directory")
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False)
    prefer_linked_owner: bool = Field(
        default=False,
        description="Repair dangling documents from linked records before the active owner",
    )

    @property
    def log_level_value(self) -> int:
        level = logging.getLevelName(self.log_level.upper())
        return level if isinstance(level, int) else logging.INFO


def load_settings() -> MigrationSettings:
    """Build settings from the environment.

    Returns:
        MigrationSettings with environment overrides applied
    """
    audit_dir = os.getenv("SMALLBIZ_AUDIT_DIR")
    return MigrationSettings(
        db_path=Path(os.getenv("SMALLBIZ_DB_PATH", str(DEFAULT_DB_PATH))),
        default_business_name=os.getenv("SMALLBIZ_DEFAULT_BUSINESS_NAME", "Default Business"),
        default_currency=os.getenv("SMALLBIZ_DEFAULT_CURRENCY", "USD"),
        audit_dir=Path(audit_dir) if audit_dir else None,
        log_level=os.getenv("SMALLBIZ_LOG_LEVEL", "INFO"),
        log_json=_env_bool("SMALLBIZ_LOG_JSON"),
        prefer_linked_owner=_env_bool("SMALLBIZ_PREFER_LINKED_OWNER"),
    )

