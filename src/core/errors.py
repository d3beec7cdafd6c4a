"""
Error taxonomy for the run record store.

A missing run_key is never an error: lookups return None and deletes return
False. Only the exceptions below reach the caller.
"""


class RecordStoreError(Exception):
    """Base class for record store failures."""
    pass


class InvalidInput(RecordStoreError, ValueError):
    """Caller supplied a missing or unusable value. Raised before any storage access."""
    pass


class ConstraintViolation(RecordStoreError):
    """A uniqueness constraint rejected an insert (duplicate run_key or id)."""
    pass


class StorageUnavailable(RecordStoreError):
    """The storage handle is closed, corrupted, or cannot be written."""
    pass
