"""Reduce match results and upload outcomes into reporting counts."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from bulkimg.models import MatchResult, MatchSummary, UploadOutcome, UploadSummary


def summarize_uploads(outcomes: Iterable[UploadOutcome]) -> UploadSummary:
    """Count total, succeeded and failed outcomes."""
    total = 0
    succeeded = 0
    for outcome in outcomes:
        total += 1
        if outcome.success:
            succeeded += 1
    return UploadSummary(
        total=total,
        succeeded_count=succeeded,
        failed_count=total - succeeded,
    )


def summarize_matches(results: Sequence[MatchResult]) -> MatchSummary:
    """Recompute a MatchSummary from an existing result sequence."""
    matched = sum(1 for r in results if r.matched)
    return MatchSummary(
        total=len(results),
        matched_count=matched,
        unmatched_count=len(results) - matched,
        results=tuple(results),
    )


def failed_outcomes(outcomes: Iterable[UploadOutcome]) -> list[UploadOutcome]:
    return [o for o in outcomes if not o.success]


def format_upload_banner(outcomes: Sequence[UploadOutcome]) -> list[str]:
    """Build the user-facing summary lines.

    The first line reports ``succeeded/total``; when not every item
    succeeded, one ``filename: error`` line follows per failure.
    """
    summary = summarize_uploads(outcomes)
    lines = [f"{summary.succeeded_count}/{summary.total} images uploaded"]
    if summary.failed_count:
        for outcome in failed_outcomes(outcomes):
            lines.append(f"{outcome.filename}: {outcome.error or 'Unknown error'}")
    return lines
