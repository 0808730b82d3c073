"""Migration engine exceptions.

Store failures (StoreReadError, StoreWriteError) are defined by the entity
store and re-exported here so callers can import the whole taxonomy from one
place.
"""

from entity_store.errors import StoreError, StoreReadError, StoreWriteError


class InvariantViolation(Exception):
    """A cross-record invariant does not hold after a pass that guarantees it."""
    def __init__(self, message: str, invariant: str):
        super().__init__(message)
        self.invariant = invariant


class MigrationError(Exception):
    """A migration run aborted. Wraps the first failure.

    Attributes:
        pass_name: Step that failed (version_gate, snapshot, a pass name, or commit)
        cause: The original exception
    """
    def __init__(self, pass_name: str, cause: BaseException):
        super().__init__(f"Migration failed in {pass_name}: {cause}")
        self.pass_name = pass_name
        self.cause = cause


__all__ = [
    "StoreError",
    "StoreReadError",
    "StoreWriteError",
    "InvariantViolation",
    "MigrationError",
]
