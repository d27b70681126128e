"""Image-to-record matching.

Matches local image files to remote catalog records by comparing the
filename (minus its image extension) to the record handle.  Everything in
this module is pure: no I/O, no hidden state.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence

from bulkimg.constants import MAX_FILE_SIZE_BYTES, SUPPORTED_EXTENSIONS
from bulkimg.models import (
    LocalFile,
    MatchGroups,
    MatchResult,
    MatchSummary,
    RemoteRecord,
    ValidationResult,
)

_EXTENSION_PATTERN = re.compile(
    "(" + "|".join(re.escape(ext) for ext in SUPPORTED_EXTENSIONS) + ")$",
    re.IGNORECASE,
)

_BYTES_PER_MB = 1024 * 1024


def derive_key(filename: str) -> str:
    """Derive the lookup key (expected record handle) from a filename.

    Strips a supported image extension anchored at the end of the name,
    case-insensitively, and lower-cases the remainder.  Names without a
    supported extension are only lower-cased, which makes them a non-match
    rather than an error.

    >>> derive_key("Blue-Widget.PNG")
    'blue-widget'
    """
    return _EXTENSION_PATTERN.sub("", filename, count=1).lower()


def validate_image_file(name: str, size_bytes: int) -> ValidationResult:
    """Check a candidate file against the extension whitelist and size cap.

    The extension check runs first; the first failure wins.
    """
    extension = "." + name.rsplit(".", 1)[-1].lower()
    if extension not in SUPPORTED_EXTENSIONS:
        return ValidationResult(
            valid=False,
            error=(
                f"Unsupported file type: {extension}. "
                f"Supported: {', '.join(SUPPORTED_EXTENSIONS)}"
            ),
        )

    if size_bytes > MAX_FILE_SIZE_BYTES:
        size_mb = size_bytes / _BYTES_PER_MB
        return ValidationResult(
            valid=False,
            error=(
                f"File too large: {size_mb:.1f}MB. "
                f"Maximum: {MAX_FILE_SIZE_BYTES // _BYTES_PER_MB}MB"
            ),
        )

    return ValidationResult(valid=True)


def build_handle_index(records: Iterable[RemoteRecord]) -> dict[str, RemoteRecord]:
    """Index records by lower-cased handle.

    Records sharing a handle are not reported: the last one in iteration
    order replaces earlier ones.
    """
    index: dict[str, RemoteRecord] = {}
    for record in records:
        index[record.handle.lower()] = record
    return index


def match_images_to_records(
    files: Sequence[LocalFile],
    records: Iterable[RemoteRecord],
) -> MatchSummary:
    """Resolve each file to at most one record.

    Results keep the input order of *files*.  The index is rebuilt on every
    call, so repeated calls with the same inputs give equal summaries.
    """
    index = build_handle_index(records)

    results: list[MatchResult] = []
    matched_count = 0
    for image in files:
        key = derive_key(image.name)
        record = index.get(key)
        if record is not None:
            matched_count += 1
        results.append(
            MatchResult(
                file=image,
                record=record,
                matched=record is not None,
                derived_key=key,
            )
        )

    return MatchSummary(
        total=len(results),
        matched_count=matched_count,
        unmatched_count=len(results) - matched_count,
        results=tuple(results),
    )


def group_match_results(results: Iterable[MatchResult]) -> MatchGroups:
    """Partition results into matched and unmatched, keeping relative order."""
    matched: list[MatchResult] = []
    unmatched: list[MatchResult] = []
    for result in results:
        (matched if result.matched else unmatched).append(result)
    return MatchGroups(matched=tuple(matched), unmatched=tuple(unmatched))


def matched_pairs(
    results: Iterable[MatchResult],
) -> list[tuple[LocalFile, RemoteRecord]]:
    """Return the (file, record) pairs ready for the upload orchestrator."""
    return [
        (result.file, result.record)
        for result in results
        if result.matched and result.record is not None
    ]
