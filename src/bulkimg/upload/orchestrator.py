"""Three-phase upload orchestrator for matched images.

Composes the upload primitives (catalog client, storage transfer, transfer
throttle, item FSM, progress tracker) into a complete upload engine that:

* Requests every upload slot in one control-plane call (all-or-nothing)
* Transfers each item's bytes to storage, skipping items that fail
* Attaches every transferred item in one control-plane call
* Reports exactly one outcome per input pair, in input order
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import httpx

from bulkimg.constants import DEFAULT_MIME_TYPE
from bulkimg.models import (
    AttachRequest,
    BatchState,
    ItemState,
    LocalFile,
    RemoteRecord,
    UploadOutcome,
    UploadRequest,
    UploadSlot,
    UploadSummary,
)
from bulkimg.summary import summarize_uploads
from bulkimg.upload.client import CatalogClient, StorageTransfer, alt_text_for
from bulkimg.upload.exceptions import (
    BulkImageError,
    ItemStateError,
    SlotRequestError,
    error_message,
)
from bulkimg.upload.fsm import UploadItemSM, advance, create_fsm
from bulkimg.upload.rate_limiter import SEQUENTIAL, TransferPolicy, TransferThrottle

logger = logging.getLogger(__name__)


@dataclass
class UploadItem:
    """One (file, record) pair and its state across the three phases."""

    file: LocalFile
    record: RemoteRecord
    slot: UploadSlot | None = None
    error: str | None = None
    fsm: UploadItemSM = field(default_factory=create_fsm, repr=False)

    @property
    def state(self) -> ItemState:
        return ItemState(self.fsm.current_state.value)

    @property
    def mime_type(self) -> str:
        return self.file.mime_type or DEFAULT_MIME_TYPE

    def to_outcome(self) -> UploadOutcome:
        if self.state == ItemState.ATTACHED:
            return UploadOutcome(self.file.name, self.record.id, True)
        if self.state in (ItemState.TRANSFER_FAILED, ItemState.ATTACH_FAILED):
            return UploadOutcome(self.file.name, self.record.id, False, self.error)
        # Only reachable if a phase exited without settling the item.
        return UploadOutcome(
            self.file.name,
            self.record.id,
            False,
            self.error or f"Upload did not complete (state={self.state.value})",
        )


@dataclass(frozen=True)
class UploadReport:
    """Outcomes of one orchestrator run plus their summary counts."""

    outcomes: tuple[UploadOutcome, ...]
    summary: UploadSummary

    @property
    def all_succeeded(self) -> bool:
        return self.summary.failed_count == 0


class UploadOrchestrator:
    """Upload engine driving matched images through slot/transfer/attach.

    Usage::

        orchestrator = UploadOrchestrator(catalog, storage)
        report = await orchestrator.run(pairs)

    Args:
        catalog: Control-plane client (slot request and attach calls).
        storage: Direct-to-storage transfer client.
        policy: Transfer concurrency policy (sequential by default).
        progress: Optional Rich progress tracker (omit for headless mode).
    """

    def __init__(
        self,
        catalog: CatalogClient,
        storage: StorageTransfer,
        policy: TransferPolicy = SEQUENTIAL,
        progress: Any | None = None,
    ) -> None:
        self._catalog = catalog
        self._storage = storage
        self._policy = policy
        self._progress = progress
        self._state = BatchState.IDLE

    @property
    def state(self) -> BatchState:
        """State of the most recent (or current) run."""
        return self._state

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    async def run(
        self, pairs: Sequence[tuple[LocalFile, RemoteRecord]]
    ) -> UploadReport:
        """Upload every (file, record) pair.

        1. Request upload slots for all pairs (one call)
        2. Transfer each file to its slot
        3. Attach every transferred file to its record (one call)

        Returns:
            An :class:`UploadReport` with one outcome per pair, in input order.

        Raises:
            SlotRequestError: If phase 1 fails; nothing was uploaded.
        """
        items = tuple(UploadItem(file=f, record=r) for f, r in pairs)
        if not items:
            logger.info("No matched images to upload")
            self._state = BatchState.COMPLETED
            return self._report(items)

        self._state = BatchState.REQUESTING_SLOTS
        if self._progress is not None:
            self._progress.preparing(len(items))

        try:
            await self._request_slots(items)
        except SlotRequestError:
            self._state = BatchState.FAILED
            raise

        self._state = BatchState.TRANSFERRING_ITEMS
        await self._transfer_all(items)

        self._state = BatchState.ATTACHING_MEDIA
        await self._attach_all(items)

        self._state = BatchState.COMPLETED
        if self._progress is not None:
            self._progress.finished()

        report = self._report(items)
        logger.info(
            "Upload complete: %d succeeded, %d failed of %d total",
            report.summary.succeeded_count,
            report.summary.failed_count,
            report.summary.total,
        )
        return report

    # ------------------------------------------------------------------
    # Phase 1: request slots
    # ------------------------------------------------------------------

    async def _request_slots(self, items: Sequence[UploadItem]) -> None:
        requests = [
            UploadRequest(
                record_id=item.record.id,
                filename=item.file.name,
                mime_type=item.mime_type,
                size_bytes=item.file.size_bytes,
            )
            for item in items
        ]
        logger.info("Requesting %d upload slots", len(requests))

        try:
            slots = await self._catalog.create_upload_slots(requests)
        except SlotRequestError as exc:
            logger.error("Upload slot request failed: %s", exc)
            raise
        except (BulkImageError, httpx.HTTPError) as exc:
            logger.error("Upload slot request failed: %s", exc)
            raise SlotRequestError(error_message(exc)) from exc
        except Exception as exc:
            logger.exception("Unexpected error requesting upload slots")
            raise SlotRequestError(error_message(exc)) from exc

        if len(slots) != len(items):
            raise SlotRequestError(
                f"Expected {len(items)} upload slots, got {len(slots)}"
            )
        for item, slot in zip(items, slots):
            item.slot = slot

    # ------------------------------------------------------------------
    # Phase 2: transfer bytes
    # ------------------------------------------------------------------

    async def _transfer_all(self, items: Sequence[UploadItem]) -> None:
        throttle = TransferThrottle(self._policy)
        total = len(items)

        if self._policy.sequential:
            for index, item in enumerate(items, start=1):
                await self._transfer_single(item, index, total, throttle)
        else:
            await asyncio.gather(
                *(
                    self._transfer_single(item, index, total, throttle)
                    for index, item in enumerate(items, start=1)
                )
            )

        transferred = sum(1 for i in items if i.state == ItemState.TRANSFERRED)
        logger.info("Transferred %d of %d items to storage", transferred, total)

    async def _transfer_single(
        self,
        item: UploadItem,
        index: int,
        total: int,
        throttle: TransferThrottle,
    ) -> None:
        """Transfer one item; failures settle the item, never raise."""
        if item.slot is None:
            raise ItemStateError(f"No upload slot assigned to {item.file.name}")
        async with throttle.slot():
            advance(item.fsm, "start_transfer")
            if self._progress is not None:
                self._progress.item_started(index, total, item.file.name)
            try:
                await self._storage.transfer(item.slot, item.file, item.mime_type)
            except Exception as exc:
                item.error = error_message(exc)
                advance(item.fsm, "fail_transfer")
                logger.error("Failed to upload %s: %s", item.file.name, item.error)
                if self._progress is not None:
                    self._progress.item_failed(item.file.name, item.error)
                return

        advance(item.fsm, "complete_transfer")
        if self._progress is not None:
            self._progress.item_transferred(item.file.name)

    # ------------------------------------------------------------------
    # Phase 3: attach
    # ------------------------------------------------------------------

    async def _attach_all(self, items: Sequence[UploadItem]) -> None:
        pending = [i for i in items if i.state == ItemState.TRANSFERRED]
        if not pending:
            logger.warning("No images were transferred; skipping attach")
            return

        if self._progress is not None:
            self._progress.attaching(len(pending))
        logger.info("Attaching %d images to records", len(pending))

        requests = [
            AttachRequest(
                record_id=item.record.id,
                resource_url=item.slot.final_resource_url,
                filename=item.file.name,
                alt=alt_text_for(item.file.name),
            )
            for item in pending
        ]

        try:
            results = await self._catalog.attach_media(requests)
        except Exception as exc:
            message = error_message(exc)
            logger.error("Attach call failed for %d items: %s", len(pending), message)
            for item in pending:
                item.error = message
                advance(item.fsm, "fail_attach")
            return

        for position, item in enumerate(pending):
            result = results[position] if position < len(results) else None
            if result is not None and result.success:
                advance(item.fsm, "complete_attach")
                continue
            item.error = (
                (result.error if result is not None else None)
                or "No attach result returned"
            )
            advance(item.fsm, "fail_attach")
            logger.warning(
                "Attach failed for %s (%s): %s",
                item.file.name,
                item.record.id,
                item.error,
            )

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    @staticmethod
    def _report(items: Sequence[UploadItem]) -> UploadReport:
        outcomes = tuple(item.to_outcome() for item in items)
        return UploadReport(outcomes=outcomes, summary=summarize_uploads(outcomes))
