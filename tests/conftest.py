"""Shared pytest fixtures for bulk image uploader tests.

Provides sample records, in-memory local files, a temporary image folder,
and fake catalog/storage collaborators for the orchestrator.
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from bulkimg.models import LocalFile, RemoteRecord, UploadOutcome, UploadSlot


def make_record(handle: str, record_id: str | None = None, **kwargs) -> RemoteRecord:
    """Build a RemoteRecord with a predictable id."""
    return RemoteRecord(
        id=record_id or f"gid://shopify/Product/{handle}",
        handle=handle,
        title=kwargs.pop("title", handle.replace("-", " ").title()),
        **kwargs,
    )


def make_file(name: str, size: int = 1024, mime_type: str = "image/png") -> LocalFile:
    """Build an in-memory LocalFile whose content is its own name."""
    return LocalFile(name=name, size_bytes=size, mime_type=mime_type, content=name.encode())


def slot_for(record_id: str, filename: str) -> UploadSlot:
    """Deterministic staged upload slot for a (record, file) pair."""
    return UploadSlot(
        transfer_url=f"https://storage.example.com/upload/{filename}",
        final_resource_url=f"https://storage.example.com/final/{filename}",
        form_fields=(("key", f"tmp/{filename}"), ("policy", "abc")),
        record_id=record_id,
        filename=filename,
    )


@pytest.fixture
def records() -> list[RemoteRecord]:
    """Three draft records with distinct handles."""
    return [
        make_record("blue-widget"),
        make_record("red-gadget", has_existing_image=True, media_count=1),
        make_record("green-gizmo"),
    ]


@pytest.fixture
def matched_pairs(records: list[RemoteRecord]) -> list[tuple[LocalFile, RemoteRecord]]:
    """Three (file, record) pairs that passed matching and validation."""
    return [
        (make_file("blue-widget.png"), records[0]),
        (make_file("red-gadget.jpg", mime_type="image/jpeg"), records[1]),
        (make_file("green-gizmo.webp", mime_type=""), records[2]),
    ]


@pytest.fixture
def fake_catalog() -> MagicMock:
    """Catalog client whose slot and attach calls succeed for every item."""
    catalog = MagicMock()

    async def _create_slots(requests):
        return [slot_for(r.record_id, r.filename) for r in requests]

    async def _attach(requests):
        return [UploadOutcome(r.filename, r.record_id, True) for r in requests]

    catalog.create_upload_slots = AsyncMock(side_effect=_create_slots)
    catalog.attach_media = AsyncMock(side_effect=_attach)
    return catalog


@pytest.fixture
def fake_storage() -> MagicMock:
    """Storage client whose transfers all succeed."""
    storage = MagicMock()
    storage.transfer = AsyncMock(return_value=None)
    return storage


@pytest.fixture
def image_dir(tmp_path: Path) -> Path:
    """Temporary folder with valid, invalid, hidden and nested images.

    Structure:
        Blue-Widget.PNG      (valid)
        red-gadget.jpg       (valid)
        notes.bmp            (unsupported extension)
        .hidden.png          (skipped)
        nested/
          green-gizmo.webp   (only found when recursive)
          red-gadget.jpg     (duplicate name when recursive)
    """
    root = tmp_path / "images"
    root.mkdir()
    (root / "Blue-Widget.PNG").write_bytes(b"\x89PNG" + b"0" * 100)
    (root / "red-gadget.jpg").write_bytes(b"\xff\xd8" + b"0" * 100)
    (root / "notes.bmp").write_bytes(b"BM" + b"0" * 100)
    (root / ".hidden.png").write_bytes(b"0" * 10)
    nested = root / "nested"
    nested.mkdir()
    (nested / "green-gizmo.webp").write_bytes(b"RIFF" + b"0" * 100)
    (nested / "red-gadget.jpg").write_bytes(b"\xff\xd8" + b"1" * 100)
    return root
