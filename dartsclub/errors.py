"""Exception types raised by ingestion and club lookups."""

from typing import List, Optional


class DartsClubError(Exception):
    """Base class for application errors."""


class ParseError(DartsClubError):
    """The uploaded file could not be parsed as delimited text."""


class EmptyDatasetError(DartsClubError):
    """Every data row was blank once normalized."""


class BatchInsertError(DartsClubError):
    """The store rejected one batch of rows."""

    def __init__(self, message: str, table: Optional[str] = None, batch_no: Optional[int] = None, size: int = 0):
        super().__init__(message)
        self.message = message
        self.table = table
        self.batch_no = batch_no
        self.size = size


class IngestionFailedError(DartsClubError):
    """No batch of an upload was stored."""

    def __init__(self, warnings: List[str]):
        self.warnings = list(warnings)
        detail = "; ".join(self.warnings) if self.warnings else "no rows inserted"
        super().__init__(f"Upload failed: {detail}")


class UnknownClubKindError(DartsClubError):
    """No club kind is registered for a database prefix."""
