"""Exceptions raised by the migration core."""
from typing import Optional


class CiderPressError(Exception):
    """Base class for all CiderPress errors."""


class OriginError(CiderPressError):
    """The Voice Memos database could not be read. Fatal to a run."""


class OriginUnavailable(OriginError):
    """Origin root, database file, table or a required column is missing."""


class OriginLocked(OriginError):
    """Origin database is busy; the caller should try again later."""


class AlreadyRunning(CiderPressError):
    """A migration run is already active."""


class DuplicateOriginId(CiderPressError):
    def __init__(self, origin_id: int):
        super().__init__(f"recording with origin_id {origin_id} already exists")
        self.origin_id = origin_id


class ItemError(CiderPressError):
    """A single recording failed; the run continues."""

    def __init__(self, reason: str, origin_id: Optional[int] = None):
        super().__init__(reason)
        self.reason = reason
        self.origin_id = origin_id


class CopyFailed(ItemError):
    pass


class DestinationWriteFailed(ItemError):
    pass
