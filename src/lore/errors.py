"""Exception types raised by Lore.

Expected degradations (missing sqlite-vec, orphaned search hits, corrupt
JSON files) are logged and recovered from, not raised. These exceptions
cover the failures a caller has to act on.
"""


class LoreError(Exception):
    """Base class for all Lore errors."""


class EmbeddingUnavailableError(LoreError):
    """The embedding provider is missing or failed to produce vectors."""

    def __init__(self, reason: str):
        super().__init__(f"Embedding provider unavailable: {reason}")
        self.reason = reason


class RecordValidationError(LoreError):
    """A persisted record dict does not match the record schema."""


class RecordNotFoundError(LoreError):
    """No record exists with the requested id."""

    def __init__(self, record_id: str):
        super().__init__(f"No record with id {record_id!r}")
        self.record_id = record_id


class LockTimeoutError(LoreError):
    """The advisory lock could not be acquired or reclaimed in time."""
