"""Exception hierarchy for the upload pipeline."""

from __future__ import annotations


class BulkImageError(Exception):
    """Base class for all bulk image uploader errors."""


class ValidationError(BulkImageError):
    """A local file failed the extension or size check.

    Collected per file by the scanner and reported as a list; never raised
    past the point where files are selected.
    """

    def __init__(self, filename: str, message: str) -> None:
        super().__init__(f"{filename}: {message}")
        self.filename = filename
        self.message = message


class CatalogAPIError(BulkImageError):
    """The control-plane API failed as a whole (HTTP status or GraphQL errors)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SlotRequestError(BulkImageError):
    """Phase 1 failed: no upload slots were issued and nothing was uploaded."""


class TransferError(BulkImageError):
    """Phase 2 failed for a single item."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AttachError(BulkImageError):
    """Phase 3 failed for a single item."""


class ItemStateError(BulkImageError):
    """An upload item was moved through an illegal lifecycle transition."""


def error_message(exc: BaseException) -> str:
    """Render an exception as a user-facing message, never empty."""
    return str(exc) or type(exc).__name__
