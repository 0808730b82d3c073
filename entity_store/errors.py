"""Entity store exceptions."""

from typing import Optional


class StoreError(Exception):
    """Base exception for entity store failures."""
    def __init__(self, message: str, entity_type: Optional[str] = None):
        super().__init__(message)
        self.entity_type = entity_type


class StoreReadError(StoreError):
    """Fetching records (or the ledger version) failed."""
    pass


class StoreWriteError(StoreError):
    """Staging or committing writes failed."""
    pass
