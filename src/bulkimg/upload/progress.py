"""Rich progress tracking for the upload pipeline.

Two-tier display:

* **Transfer level** -- per-item storage transfers ("Uploading 2 of 5: ...")
* **Status text** -- current phase (preparing, attaching, done)
"""

from __future__ import annotations

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)


class UploadProgressTracker:
    """Rich progress tracker driven by :class:`UploadOrchestrator` callbacks.

    Usage::

        tracker = UploadProgressTracker()
        orchestrator = UploadOrchestrator(catalog, storage, progress=tracker)
        with tracker:
            report = await orchestrator.run(pairs)
    """

    def __init__(self, console: Console | None = None) -> None:
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            TextColumn("{task.fields[status]}", style="dim"),
            console=console,
        )
        self._task: TaskID | None = None
        self._stats: dict[str, int] = {"transferred": 0, "failed": 0}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self._progress.start()

    def stop(self) -> None:
        self._progress.stop()

    def __enter__(self) -> UploadProgressTracker:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # Phase events
    # ------------------------------------------------------------------

    def preparing(self, total: int) -> None:
        """Phase 1 started: upload slots requested for *total* items."""
        self._task = self._progress.add_task(
            "[green]Uploading",
            total=total,
            status="Preparing uploads...",
        )

    def item_started(self, index: int, total: int, filename: str) -> None:
        """A storage transfer for item *index* (1-based) is starting."""
        if self._task is not None:
            self._progress.update(
                self._task,
                status=f"Uploading {index} of {total}: {_truncate(filename)}",
            )

    def item_transferred(self, filename: str) -> None:
        self._stats["transferred"] += 1
        if self._task is not None:
            self._progress.advance(self._task, 1)

    def item_failed(self, filename: str, error: str) -> None:
        self._stats["failed"] += 1
        if self._task is not None:
            self._progress.advance(self._task, 1)
            self._progress.update(
                self._task,
                status=f"[red]FAIL[/red] {_truncate(filename)}",
            )

    def attaching(self, count: int) -> None:
        if self._task is not None:
            self._progress.update(
                self._task,
                status=f"Attaching {count} images to records...",
            )

    def finished(self) -> None:
        if self._task is not None:
            self._progress.update(self._task, status="done")

    @property
    def stats(self) -> dict[str, int]:
        """Return a copy of the current statistics."""
        return dict(self._stats)


def _truncate(filename: str, max_len: int = 40) -> str:
    """Truncate a filename for display, keeping its tail."""
    if len(filename) <= max_len:
        return filename
    return "..." + filename[-(max_len - 3) :]
