"""Local image discovery and validation.

Walks a directory for candidate image files, validates each against the
extension whitelist and size cap, and de-duplicates by filename so that
the filename -> content relationship is unambiguous for the upload run.
"""

from __future__ import annotations

import logging
import mimetypes
import os
from dataclasses import dataclass, field
from pathlib import Path

from bulkimg.matching import validate_image_file
from bulkimg.models import LocalFile
from bulkimg.upload.exceptions import ValidationError

logger = logging.getLogger(__name__)

_SKIP_NAMES = frozenset({".DS_Store", "Thumbs.db", "__pycache__", ".git"})


@dataclass
class ScanResult:
    """Files accepted for matching plus everything that was turned away."""

    files: list[LocalFile] = field(default_factory=list)
    rejected: list[ValidationError] = field(default_factory=list)
    duplicates: list[str] = field(default_factory=list)

    @property
    def summary(self) -> str:
        """Human-readable summary of the scan."""
        return (
            f"accepted={len(self.files)}, rejected={len(self.rejected)}, "
            f"duplicates={len(self.duplicates)}"
        )


def discover_files(root: Path, recursive: bool = False) -> list[Path]:
    """List candidate files under *root*, sorted by name.

    Hidden files and OS clutter are skipped; extension filtering is left to
    validation so that unsupported files are reported, not silently dropped.
    """
    found: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(str(root)):
        dirnames[:] = sorted(
            d for d in dirnames if not d.startswith(".") and d not in _SKIP_NAMES
        )
        for filename in filenames:
            if filename.startswith(".") or filename in _SKIP_NAMES:
                continue
            found.append(Path(dirpath) / filename)
        if not recursive:
            break
    return sorted(found, key=lambda p: (p.name.lower(), str(p)))


def load_local_files(paths: list[Path]) -> ScanResult:
    """Validate *paths* and wrap the accepted ones as :class:`LocalFile`.

    The first file seen with a given name wins; later files with the same
    name are reported in ``duplicates``.
    """
    result = ScanResult()
    seen: set[str] = set()

    for path in paths:
        try:
            size = path.stat().st_size
        except OSError as exc:
            logger.warning("Cannot stat %s: %s", path, exc)
            result.rejected.append(ValidationError(path.name, f"Cannot read file: {exc}"))
            continue

        validation = validate_image_file(path.name, size)
        if not validation.valid:
            result.rejected.append(ValidationError(path.name, validation.error or "invalid"))
            continue

        if path.name in seen:
            logger.info("Skipping duplicate filename %s", path)
            result.duplicates.append(str(path))
            continue
        seen.add(path.name)

        mime_type, _ = mimetypes.guess_type(path.name)
        result.files.append(
            LocalFile(
                name=path.name,
                size_bytes=size,
                mime_type=mime_type or "",
                content=path,
            )
        )

    logger.info("Scan complete: %s", result.summary)
    return result


def scan_directory(root: Path, recursive: bool = False) -> ScanResult:
    """Discover and validate the images under *root*."""
    return load_local_files(discover_files(root, recursive=recursive))
