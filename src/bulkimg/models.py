"""Data models and enums for the bulk image uploader."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


@dataclass(frozen=True, slots=True)
class RemoteRecord:
    """Snapshot of a remote catalog record (draft product)."""

    id: str
    handle: str
    title: str = ""
    status: str = "DRAFT"
    has_existing_image: bool = False
    media_count: int = 0


@dataclass(frozen=True, slots=True)
class LocalFile:
    """A local image selected for upload.

    ``content`` is either the raw bytes or a path to read them from.  The
    core only ever reads it, during the storage transfer.
    """

    name: str
    size_bytes: int
    mime_type: str = ""
    content: bytes | Path | None = field(default=None, repr=False, compare=False)

    @classmethod
    def from_path(cls, path: Path, mime_type: str = "") -> LocalFile:
        """Build a LocalFile backed by *path* on disk."""
        return cls(
            name=path.name,
            size_bytes=path.stat().st_size,
            mime_type=mime_type,
            content=path,
        )

    def read_bytes(self) -> bytes:
        """Return the file content.

        Raises:
            FileNotFoundError: If no content was attached or the path is gone.
        """
        if self.content is None:
            raise FileNotFoundError(f"File not found: {self.name}")
        if isinstance(self.content, Path):
            return self.content.read_bytes()
        return self.content


@dataclass(frozen=True, slots=True)
class ValidationResult:
    """Outcome of validating a single candidate file."""

    valid: bool
    error: str | None = None


@dataclass(frozen=True, slots=True)
class MatchResult:
    """Resolution of one local file against the record index."""

    file: LocalFile
    record: RemoteRecord | None
    matched: bool
    derived_key: str


@dataclass(frozen=True, slots=True)
class MatchSummary:
    """Counts plus the ordered per-file results of one matching pass."""

    total: int
    matched_count: int
    unmatched_count: int
    results: tuple[MatchResult, ...] = ()


@dataclass(frozen=True, slots=True)
class MatchGroups:
    """Stable partition of match results."""

    matched: tuple[MatchResult, ...]
    unmatched: tuple[MatchResult, ...]


@dataclass(frozen=True, slots=True)
class UploadRequest:
    """Phase 1 request entry for one (file, record) pair."""

    record_id: str
    filename: str
    mime_type: str
    size_bytes: int


@dataclass(frozen=True, slots=True)
class UploadSlot:
    """Single-use staged upload target returned by the control plane."""

    transfer_url: str
    final_resource_url: str
    form_fields: tuple[tuple[str, str], ...]
    record_id: str
    filename: str


@dataclass(frozen=True, slots=True)
class AttachRequest:
    """Phase 3 request entry for one transferred item."""

    record_id: str
    resource_url: str
    filename: str
    alt: str


@dataclass(frozen=True, slots=True)
class UploadOutcome:
    """Terminal result for one item that entered the upload pipeline."""

    filename: str
    record_id: str
    success: bool
    error: str | None = None


@dataclass(frozen=True, slots=True)
class UploadSummary:
    """Counts derived from a sequence of upload outcomes."""

    total: int
    succeeded_count: int
    failed_count: int


class ItemState(str, Enum):
    """Per-item state threaded through the three upload phases."""

    PENDING = "pending"
    TRANSFERRING = "transferring"
    TRANSFERRED = "transferred"
    TRANSFER_FAILED = "transfer_failed"
    ATTACHED = "attached"
    ATTACH_FAILED = "attach_failed"


class BatchState(str, Enum):
    """State of a single orchestrator run."""

    IDLE = "idle"
    REQUESTING_SLOTS = "requesting_slots"
    TRANSFERRING_ITEMS = "transferring_items"
    ATTACHING_MEDIA = "attaching_media"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class UploaderConfig:
    """Configuration for the catalog connection and the upload pipeline.

    ``max_concurrent_transfers`` defaults to 1 (strictly sequential
    transfers); ``min_transfer_interval`` spaces transfer starts in seconds.
    ``http_timeout`` applies to the HTTP client built by the CLI only.
    """

    shop_domain: str = ""
    api_version: str = "2025-01"
    access_token: str | None = None
    page_size: int = 100
    record_query: str = "status:draft"
    max_concurrent_transfers: int = 1
    min_transfer_interval: float = 0.0
    http_timeout: float = 60.0

    @property
    def graphql_url(self) -> str:
        """Admin GraphQL endpoint for the configured shop."""
        return f"https://{self.shop_domain}/admin/api/{self.api_version}/graphql.json"
