"""Unit tests for the upload pipeline.

Tests cover the orchestrator's three phases, the transfer policy and
throttle, and the progress tracker -- all with fake catalog and storage
collaborators, never a real network.

Groups:
  - Orchestrator happy path
  - Phase 1 failures (all-or-nothing)
  - Phase 2 failures (skip and continue)
  - Phase 3 failures (per item and whole call)
  - Transfer policy
  - Progress tracker
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from bulkimg.models import BatchState, UploadOutcome
from bulkimg.upload.exceptions import (
    CatalogAPIError,
    ItemStateError,
    SlotRequestError,
    TransferError,
)
from bulkimg.upload.orchestrator import UploadItem, UploadOrchestrator
from bulkimg.upload.progress import UploadProgressTracker
from bulkimg.upload.rate_limiter import TransferPolicy, TransferThrottle

from tests.conftest import make_file, make_record, slot_for


def _failing_transfer(fail_names: set[str], exc_factory=None):
    """Storage side effect that fails for the given filenames."""

    async def _transfer(slot, file, mime_type):
        if file.name in fail_names:
            if exc_factory is not None:
                raise exc_factory(file.name)
            raise TransferError("Upload failed: 403", status_code=403)

    return _transfer


# ======================================================================
# Happy path
# ======================================================================


class TestOrchestratorHappyPath:
    async def test_all_items_attached(self, matched_pairs, fake_catalog, fake_storage):
        orchestrator = UploadOrchestrator(fake_catalog, fake_storage)
        report = await orchestrator.run(matched_pairs)

        assert [o.filename for o in report.outcomes] == [
            "blue-widget.png",
            "red-gadget.jpg",
            "green-gizmo.webp",
        ]
        assert all(o.success for o in report.outcomes)
        assert report.summary.total == 3
        assert report.summary.succeeded_count == 3
        assert report.all_succeeded
        assert orchestrator.state == BatchState.COMPLETED

    async def test_phase1_request_carries_every_pair(
        self, matched_pairs, fake_catalog, fake_storage
    ):
        await UploadOrchestrator(fake_catalog, fake_storage).run(matched_pairs)

        fake_catalog.create_upload_slots.assert_awaited_once()
        (requests,), _ = fake_catalog.create_upload_slots.call_args
        assert [(r.record_id, r.filename, r.mime_type, r.size_bytes) for r in requests] == [
            ("gid://shopify/Product/blue-widget", "blue-widget.png", "image/png", 1024),
            ("gid://shopify/Product/red-gadget", "red-gadget.jpg", "image/jpeg", 1024),
            # Missing MIME type falls back to image/png
            ("gid://shopify/Product/green-gizmo", "green-gizmo.webp", "image/png", 1024),
        ]

    async def test_transfers_use_matching_slot_and_file(
        self, matched_pairs, fake_catalog, fake_storage
    ):
        await UploadOrchestrator(fake_catalog, fake_storage).run(matched_pairs)

        calls = fake_storage.transfer.await_args_list
        assert len(calls) == 3
        for call, (file, record) in zip(calls, matched_pairs):
            slot, sent_file, _mime = call.args
            assert sent_file is file
            assert slot.record_id == record.id
            assert slot.filename == file.name

    async def test_attach_request_uses_final_resource_url_and_alt(
        self, matched_pairs, fake_catalog, fake_storage
    ):
        await UploadOrchestrator(fake_catalog, fake_storage).run(matched_pairs)

        (requests,), _ = fake_catalog.attach_media.call_args
        first = requests[0]
        assert first.resource_url == "https://storage.example.com/final/blue-widget.png"
        assert first.alt == "blue-widget"
        assert first.record_id == "gid://shopify/Product/blue-widget"

    async def test_empty_input_makes_no_calls(self, fake_catalog, fake_storage):
        report = await UploadOrchestrator(fake_catalog, fake_storage).run([])

        assert report.outcomes == ()
        assert report.summary.total == 0
        fake_catalog.create_upload_slots.assert_not_awaited()
        fake_storage.transfer.assert_not_awaited()
        fake_catalog.attach_media.assert_not_awaited()


# ======================================================================
# Phase 1: batch-level failures
# ======================================================================


class TestSlotRequestFailures:
    async def test_reported_error_aborts_everything(
        self, matched_pairs, fake_catalog, fake_storage
    ):
        fake_catalog.create_upload_slots = AsyncMock(
            side_effect=SlotRequestError("File size is too large")
        )
        orchestrator = UploadOrchestrator(fake_catalog, fake_storage)

        with pytest.raises(SlotRequestError, match="File size is too large"):
            await orchestrator.run(matched_pairs)

        fake_storage.transfer.assert_not_awaited()
        fake_catalog.attach_media.assert_not_awaited()
        assert orchestrator.state == BatchState.FAILED

    @pytest.mark.parametrize(
        "exc",
        [
            httpx.ConnectError("connection refused"),
            CatalogAPIError("Catalog API returned HTTP 502", status_code=502),
            RuntimeError("unexpected"),
        ],
    )
    async def test_transport_errors_become_slot_request_error(
        self, matched_pairs, fake_catalog, fake_storage, exc
    ):
        fake_catalog.create_upload_slots = AsyncMock(side_effect=exc)

        with pytest.raises(SlotRequestError) as excinfo:
            await UploadOrchestrator(fake_catalog, fake_storage).run(matched_pairs)

        assert str(excinfo.value) == str(exc)
        assert excinfo.value.__cause__ is exc
        fake_storage.transfer.assert_not_awaited()

    async def test_slot_count_mismatch(self, matched_pairs, fake_catalog, fake_storage):
        fake_catalog.create_upload_slots = AsyncMock(
            return_value=[slot_for("gid://shopify/Product/blue-widget", "blue-widget.png")]
        )

        with pytest.raises(SlotRequestError, match="Expected 3 upload slots, got 1"):
            await UploadOrchestrator(fake_catalog, fake_storage).run(matched_pairs)

        fake_storage.transfer.assert_not_awaited()


# ======================================================================
# Phase 2: per-item transfer failures
# ======================================================================


class TestTransferFailures:
    async def test_middle_item_failure_is_skipped_not_fatal(
        self, matched_pairs, fake_catalog, fake_storage
    ):
        fake_storage.transfer = AsyncMock(side_effect=_failing_transfer({"red-gadget.jpg"}))

        report = await UploadOrchestrator(fake_catalog, fake_storage).run(matched_pairs)

        # Attach only sees items 1 and 3
        (requests,), _ = fake_catalog.attach_media.call_args
        assert [r.filename for r in requests] == ["blue-widget.png", "green-gizmo.webp"]

        assert len(report.outcomes) == 3
        by_name = {o.filename: o for o in report.outcomes}
        assert by_name["red-gadget.jpg"].success is False
        assert by_name["red-gadget.jpg"].error == "Upload failed: 403"
        assert by_name["blue-widget.png"].success is True
        assert by_name["green-gizmo.webp"].success is True
        assert report.summary.total == 3
        assert report.summary.failed_count == 1

    async def test_exception_during_transfer_becomes_item_error(
        self, matched_pairs, fake_catalog, fake_storage
    ):
        fake_storage.transfer = AsyncMock(
            side_effect=_failing_transfer(
                {"blue-widget.png"}, lambda name: httpx.ReadTimeout("timed out")
            )
        )

        report = await UploadOrchestrator(fake_catalog, fake_storage).run(matched_pairs)

        assert report.outcomes[0].success is False
        assert report.outcomes[0].error == "timed out"
        assert report.summary.succeeded_count == 2

    async def test_empty_exception_message_falls_back_to_type(
        self, matched_pairs, fake_catalog, fake_storage
    ):
        fake_storage.transfer = AsyncMock(
            side_effect=_failing_transfer({"blue-widget.png"}, lambda name: OSError())
        )

        report = await UploadOrchestrator(fake_catalog, fake_storage).run(matched_pairs)
        assert report.outcomes[0].error == "OSError"

    async def test_all_transfers_fail_skips_attach(
        self, matched_pairs, fake_catalog, fake_storage
    ):
        names = {f.name for f, _ in matched_pairs}
        fake_storage.transfer = AsyncMock(side_effect=_failing_transfer(names))

        report = await UploadOrchestrator(fake_catalog, fake_storage).run(matched_pairs)

        fake_catalog.attach_media.assert_not_awaited()
        assert report.summary.total == 3
        assert report.summary.succeeded_count == 0
        assert report.summary.failed_count == 3

    async def test_item_without_slot_raises_state_error(
        self, matched_pairs, fake_catalog, fake_storage
    ):
        file, record = matched_pairs[0]
        orchestrator = UploadOrchestrator(fake_catalog, fake_storage)

        with pytest.raises(ItemStateError, match="No upload slot"):
            await orchestrator._transfer_single(
                UploadItem(file=file, record=record), 1, 1, TransferThrottle()
            )
        fake_storage.transfer.assert_not_awaited()

    async def test_transfers_run_in_input_order(
        self, matched_pairs, fake_catalog, fake_storage
    ):
        await UploadOrchestrator(fake_catalog, fake_storage).run(matched_pairs)
        sent = [call.args[1].name for call in fake_storage.transfer.await_args_list]
        assert sent == [f.name for f, _ in matched_pairs]


# ======================================================================
# Phase 3: attach failures
# ======================================================================


class TestAttachFailures:
    async def test_item_level_errors(self, matched_pairs, fake_catalog, fake_storage):
        async def _attach(requests):
            return [
                UploadOutcome(r.filename, r.record_id, i != 1, None if i != 1 else "Invalid media")
                for i, r in enumerate(requests)
            ]

        fake_catalog.attach_media = AsyncMock(side_effect=_attach)

        report = await UploadOrchestrator(fake_catalog, fake_storage).run(matched_pairs)

        assert [o.success for o in report.outcomes] == [True, False, True]
        assert report.outcomes[1].error == "Invalid media"

    async def test_whole_call_failure_marks_every_pending_item(
        self, matched_pairs, fake_catalog, fake_storage
    ):
        fake_storage.transfer = AsyncMock(side_effect=_failing_transfer({"red-gadget.jpg"}))
        fake_catalog.attach_media = AsyncMock(side_effect=httpx.ConnectError("reset by peer"))

        report = await UploadOrchestrator(fake_catalog, fake_storage).run(matched_pairs)

        assert len(report.outcomes) == 3
        assert all(not o.success for o in report.outcomes)
        errors = {o.filename: o.error for o in report.outcomes}
        assert errors["blue-widget.png"] == "reset by peer"
        assert errors["green-gizmo.webp"] == "reset by peer"
        assert errors["red-gadget.jpg"] == "Upload failed: 403"

    async def test_missing_result_marks_item_failed(
        self, matched_pairs, fake_catalog, fake_storage
    ):
        async def _attach(requests):
            return [UploadOutcome(requests[0].filename, requests[0].record_id, True)]

        fake_catalog.attach_media = AsyncMock(side_effect=_attach)

        report = await UploadOrchestrator(fake_catalog, fake_storage).run(matched_pairs)

        assert [o.success for o in report.outcomes] == [True, False, False]
        assert report.outcomes[2].error == "No attach result returned"


# ======================================================================
# Transfer policy
# ======================================================================


class TestTransferPolicy:
    def test_default_is_sequential(self):
        assert TransferPolicy().sequential is True
        assert TransferPolicy(max_concurrency=2).sequential is False

    @pytest.mark.parametrize(
        "kwargs", [{"max_concurrency": 0}, {"min_interval": -1.0}]
    )
    def test_invalid_values_raise(self, kwargs):
        with pytest.raises(ValueError):
            TransferPolicy(**kwargs)

    async def test_concurrent_policy_gives_identical_outcomes(
        self, records, fake_catalog
    ):
        pairs = [(make_file(f"{r.handle}.png"), r) for r in records] + [
            (make_file("extra.png"), make_record("extra"))
        ]

        async def _run(policy: TransferPolicy):
            storage = MagicMock()
            delays = {"blue-widget.png": 0.03, "extra.png": 0.0}

            async def _transfer(slot, file, mime_type):
                await asyncio.sleep(delays.get(file.name, 0.01))
                if file.name == "red-gadget.png":
                    raise TransferError("Upload failed: 500", status_code=500)

            storage.transfer = AsyncMock(side_effect=_transfer)
            return await UploadOrchestrator(fake_catalog, storage, policy=policy).run(pairs)

        sequential = await _run(TransferPolicy())
        concurrent = await _run(TransferPolicy(max_concurrency=3))

        assert sequential.outcomes == concurrent.outcomes
        assert sequential.summary == concurrent.summary

    async def test_throttle_limits_concurrency(self):
        throttle = TransferThrottle(TransferPolicy(max_concurrency=2))
        in_flight = 0
        peak = 0

        async def _work():
            nonlocal in_flight, peak
            async with throttle.slot():
                in_flight += 1
                peak = max(peak, in_flight)
                await asyncio.sleep(0.01)
                in_flight -= 1

        await asyncio.gather(*(_work() for _ in range(6)))
        assert peak == 2

    async def test_throttle_spaces_starts(self):
        throttle = TransferThrottle(TransferPolicy(min_interval=0.05))
        loop = asyncio.get_running_loop()
        starts = []
        for _ in range(3):
            async with throttle.slot():
                starts.append(loop.time())
        assert starts[2] - starts[0] >= 0.08


# ======================================================================
# Progress tracker
# ======================================================================


class TestProgressTracker:
    async def test_orchestrator_reports_progress(
        self, matched_pairs, fake_catalog, fake_storage
    ):
        progress = MagicMock()
        fake_storage.transfer = AsyncMock(side_effect=_failing_transfer({"red-gadget.jpg"}))

        await UploadOrchestrator(fake_catalog, fake_storage, progress=progress).run(
            matched_pairs
        )

        progress.preparing.assert_called_once_with(3)
        assert [c.args for c in progress.item_started.call_args_list] == [
            (1, 3, "blue-widget.png"),
            (2, 3, "red-gadget.jpg"),
            (3, 3, "green-gizmo.webp"),
        ]
        assert progress.item_transferred.call_count == 2
        progress.item_failed.assert_called_once_with("red-gadget.jpg", "Upload failed: 403")
        progress.attaching.assert_called_once_with(2)
        progress.finished.assert_called_once()

    def test_tracker_stats(self):
        tracker = UploadProgressTracker()
        tracker.preparing(2)
        tracker.item_started(1, 2, "a.png")
        tracker.item_transferred("a.png")
        tracker.item_failed("b.png", "Upload failed: 500")
        tracker.attaching(1)
        tracker.finished()
        assert tracker.stats == {"transferred": 1, "failed": 1}
