"""Upload pipeline for attaching matched images to catalog records.

Public API
----------
.. autoclass:: CatalogClient
.. autoclass:: StorageTransfer
.. autoclass:: UploadOrchestrator
.. autoclass:: UploadReport
.. autoclass:: UploadProgressTracker
.. autoclass:: TransferPolicy
"""

from bulkimg.upload.client import CatalogClient, StorageTransfer
from bulkimg.upload.exceptions import (
    AttachError,
    BulkImageError,
    CatalogAPIError,
    ItemStateError,
    SlotRequestError,
    TransferError,
    ValidationError,
)
from bulkimg.upload.orchestrator import UploadItem, UploadOrchestrator, UploadReport
from bulkimg.upload.progress import UploadProgressTracker
from bulkimg.upload.rate_limiter import SEQUENTIAL, TransferPolicy, TransferThrottle

__all__ = [
    "SEQUENTIAL",
    "AttachError",
    "BulkImageError",
    "CatalogAPIError",
    "CatalogClient",
    "ItemStateError",
    "SlotRequestError",
    "StorageTransfer",
    "TransferError",
    "TransferPolicy",
    "TransferThrottle",
    "UploadItem",
    "UploadOrchestrator",
    "UploadProgressTracker",
    "UploadReport",
    "ValidationError",
]
