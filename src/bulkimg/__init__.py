"""Bulk image uploader: match local images to draft records and attach them."""

__version__ = "0.1.0"

from bulkimg.matching import derive_key, match_images_to_records, validate_image_file
from bulkimg.models import LocalFile, MatchResult, MatchSummary, RemoteRecord, UploadOutcome

__all__ = [
    "LocalFile",
    "MatchResult",
    "MatchSummary",
    "RemoteRecord",
    "UploadOutcome",
    "__version__",
    "derive_key",
    "match_images_to_records",
    "validate_image_file",
]
