"""Tests for TransferRegistry: admission, completion, retention and reset."""

import asyncio
import itertools
import threading
import time

import pytest

from common.checksum import compute_checksum
from receiver.events import EventType
from receiver.exceptions import (
    AlreadyExistsError,
    HashMismatchError,
    InvalidArgumentError,
    InvalidStateError,
    MissingChunkError,
    NotFoundError,
    OutOfRangeError,
)
from receiver.reassembler import Reassembler
from receiver.registry import TransferRegistry
from receiver.types import SessionStatus
from sender.chunker import split_bytes


async def send_all(registry, session_id, chunks, order=None):
    receipts = []
    for index in (order if order is not None else range(len(chunks))):
        chunk = chunks[index]
        receipts.append(await registry.submit_chunk(session_id, chunk.index, chunk.data, chunk.checksum))
    return receipts


async def active_summary(registry, session_id):
    for summary in await registry.list_active_sessions():
        if summary["file_id"] == session_id:
            return summary
    return None


class BrokenReassembler:
    def reconstruct(self, session):
        raise MissingChunkError(1, session_id=session.session_id)


class TestScenarios:
    """End-to-end scenarios through the registry."""

    @pytest.mark.asyncio
    async def test_out_of_order_delivery_completes(self, registry):
        chunks = [b"alpha-", b"bravo-", b"charlie"]
        await registry.init("f1", "abc.txt", 19, 3, "text/plain")

        for index in (2, 0, 1):
            receipt = await registry.submit_chunk("f1", index, chunks[index], compute_checksum(chunks[index]))

        assert receipt.completed
        assert receipt.content_hash == compute_checksum(b"alpha-bravo-charlie")
        artifact = await registry.get_artifact("f1")
        assert artifact.payload == b"alpha-bravo-charlie"
        assert artifact.content_hash == compute_checksum(b"alpha-bravo-charlie")
        assert await registry.list_active_sessions() == []

    @pytest.mark.asyncio
    async def test_hash_mismatch_then_corrected_resend(self, registry):
        await registry.init("f1", "abc.txt", 6, 2)

        with pytest.raises(HashMismatchError) as exc_info:
            await registry.submit_chunk("f1", 0, b"abc", compute_checksum(b"xyz"))

        assert exc_info.value.received_chunks == 0
        assert exc_info.value.total_chunks == 2
        assert (await active_summary(registry, "f1"))["received_chunks"] == 0

        receipt = await registry.submit_chunk("f1", 0, b"abc", compute_checksum(b"abc"))
        assert receipt.received_chunks == 1

    @pytest.mark.asyncio
    async def test_out_of_range_index_changes_nothing(self, registry):
        await registry.init("f1", "abc.txt", 3, 3)

        with pytest.raises(OutOfRangeError):
            await registry.submit_chunk("f1", 5, b"x", compute_checksum(b"x"))

        summary = await active_summary(registry, "f1")
        assert summary["received_chunks"] == 0
        assert summary["status"] == "receiving"

    @pytest.mark.asyncio
    async def test_unknown_session_not_found(self, registry):
        with pytest.raises(NotFoundError):
            await registry.submit_chunk("never-initialized", 0, b"x", compute_checksum(b"x"))

    @pytest.mark.asyncio
    async def test_reset_after_completion_empties_everything(self, registry):
        await registry.init("f1", "a.txt", 1, 1)
        await registry.submit_chunk("f1", 0, b"a", compute_checksum(b"a"))
        await registry.init("f2", "b.txt", 2, 2)

        await registry.reset()

        assert await registry.list_artifacts() == []
        assert await registry.list_active_sessions() == []


class TestProperties:
    """Order independence, idempotence and exactly-once completion."""

    @pytest.mark.asyncio
    async def test_any_permutation_reassembles_in_index_order(self, registry):
        payload = b"0123456789abcdefghij"
        chunks = split_bytes(payload, 5)

        for n, order in enumerate(itertools.permutations(range(len(chunks)))):
            session_id = f"perm-{n}"
            await registry.init(session_id, "p.bin", len(payload), len(chunks))
            receipts = await send_all(registry, session_id, chunks, order=order)

            assert receipts[-1].completed
            artifact = await registry.get_artifact(session_id)
            assert artifact.payload == payload

    @pytest.mark.asyncio
    async def test_resubmitting_accepted_index_is_idempotent(self, registry):
        await registry.init("f1", "a.bin", 4, 2)
        await registry.submit_chunk("f1", 0, b"ab", compute_checksum(b"ab"))

        receipt = await registry.submit_chunk("f1", 0, b"ab", compute_checksum(b"ab"))

        assert receipt.duplicate
        assert receipt.received_chunks == 1
        assert receipt.status == SessionStatus.RECEIVING

    @pytest.mark.asyncio
    async def test_duplicate_does_not_emit_chunk_event(self, registry, subscription):
        await registry.init("f1", "a.bin", 4, 2)
        await registry.submit_chunk("f1", 0, b"ab", compute_checksum(b"ab"))
        await registry.submit_chunk("f1", 0, b"ab", compute_checksum(b"ab"))

        accepted = [e for e in subscription.drain() if e.type == EventType.CHUNK_ACCEPTED]
        assert len(accepted) == 1

    @pytest.mark.asyncio
    async def test_hash_mismatch_never_stores(self, registry):
        await registry.init("f1", "a.bin", 4, 2)
        await registry.submit_chunk("f1", 1, b"cd", compute_checksum(b"cd"))

        for _ in range(3):
            with pytest.raises(HashMismatchError):
                await registry.submit_chunk("f1", 0, b"ab", compute_checksum(b"zz"))

        summary = await active_summary(registry, "f1")
        assert summary["received_chunks"] == 1
        assert summary["rejected_chunks"] == 3

    @pytest.mark.asyncio
    async def test_completion_fires_exactly_once(self, registry, subscription, sample_payload):
        chunks = split_bytes(sample_payload, 100)
        await registry.init("f1", "a.bin", len(sample_payload), len(chunks))

        await send_all(registry, "f1", chunks)

        completed = [e for e in subscription.drain() if e.type == EventType.RECONSTRUCTION_COMPLETED]
        assert len(completed) == 1
        with pytest.raises(NotFoundError):
            await registry.submit_chunk("f1", 0, chunks[0].data, chunks[0].checksum)

    @pytest.mark.asyncio
    async def test_concurrent_submissions_for_one_session(self, registry, subscription, sample_payload):
        chunks = split_bytes(sample_payload, 50)
        await registry.init("f1", "a.bin", len(sample_payload), len(chunks))

        submissions = [
            registry.submit_chunk("f1", c.index, c.data, c.checksum)
            for c in chunks + chunks[:5]
        ]
        results = await asyncio.gather(*submissions, return_exceptions=True)

        completed_receipts = [r for r in results if not isinstance(r, Exception) and r.completed]
        assert len(completed_receipts) == 1
        late = [r for r in results if isinstance(r, Exception)]
        assert all(isinstance(e, (NotFoundError, InvalidStateError)) for e in late)
        completed = [e for e in subscription.drain() if e.type == EventType.RECONSTRUCTION_COMPLETED]
        assert len(completed) == 1
        assert (await registry.get_artifact("f1")).payload == sample_payload

    @pytest.mark.asyncio
    async def test_sessions_progress_independently(self, registry):
        left = split_bytes(b"left-side-payload", 4)
        right = split_bytes(b"right-side-payload", 3)
        await registry.init("left", "l.bin", 17, len(left))
        await registry.init("right", "r.bin", 18, len(right))

        await asyncio.gather(
            send_all(registry, "left", left),
            send_all(registry, "right", right),
        )

        assert (await registry.get_artifact("left")).payload == b"left-side-payload"
        assert (await registry.get_artifact("right")).payload == b"right-side-payload"


class TestEvents:
    """Event emission order and contents."""

    @pytest.mark.asyncio
    async def test_emission_order_for_a_session(self, registry, subscription):
        chunks = split_bytes(b"abcdef", 2)
        await registry.init("f1", "a.txt", 6, len(chunks))
        await send_all(registry, "f1", chunks, order=[1, 2, 0])

        types = [e.type for e in subscription.drain()]

        assert types == [
            EventType.SESSION_STARTED,
            EventType.CHUNK_ACCEPTED,
            EventType.CHUNK_ACCEPTED,
            EventType.CHUNK_ACCEPTED,
            EventType.RECONSTRUCTION_STARTED,
            EventType.RECONSTRUCTION_COMPLETED,
        ]

    @pytest.mark.asyncio
    async def test_chunk_event_reports_progress(self, registry, subscription):
        await registry.init("f1", "a.txt", 4, 2)
        await registry.submit_chunk("f1", 1, b"cd", compute_checksum(b"cd"))

        event = subscription.drain()[-1]

        assert event.type == EventType.CHUNK_ACCEPTED
        assert event.payload["chunk_index"] == 1
        assert event.payload["received_chunks"] == 1
        assert event.payload["total_chunks"] == 2

    @pytest.mark.asyncio
    async def test_completion_event_has_no_payload_bytes(self, registry, subscription):
        await registry.init("f1", "a.txt", 3, 1)
        await registry.submit_chunk("f1", 0, b"abc", compute_checksum(b"abc"))

        event = subscription.drain()[-1]

        assert event.type == EventType.RECONSTRUCTION_COMPLETED
        file_info = event.payload["file"]
        assert file_info["file_hash"] == compute_checksum(b"abc")
        assert "data" not in file_info
        assert "payload" not in file_info
        assert not any(isinstance(v, bytes) for v in file_info.values())

    @pytest.mark.asyncio
    async def test_rejected_chunk_emits_nothing(self, registry, subscription):
        await registry.init("f1", "a.txt", 3, 1)
        subscription.drain()

        with pytest.raises(HashMismatchError):
            await registry.submit_chunk("f1", 0, b"abc", "0" * 64)

        assert subscription.drain() == []

    @pytest.mark.asyncio
    async def test_reset_emits_event(self, registry, subscription):
        await registry.init("f1", "a.txt", 3, 1)
        await registry.reset()

        event = subscription.drain()[-1]

        assert event.type == EventType.REGISTRY_RESET
        assert event.payload["cleared_transfers"] == 1


class TestInit:
    """Session creation through the registry."""

    @pytest.mark.asyncio
    async def test_duplicate_active_id_rejected(self, registry):
        await registry.init("f1", "a.txt", 3, 1)

        with pytest.raises(AlreadyExistsError):
            await registry.init("f1", "b.txt", 3, 1)

    @pytest.mark.asyncio
    async def test_invalid_arguments_leave_no_session(self, registry, subscription):
        with pytest.raises(InvalidArgumentError):
            await registry.init("f1", "a.txt", 3, 0)

        assert await registry.list_active_sessions() == []
        assert subscription.drain() == []

    @pytest.mark.asyncio
    async def test_id_reusable_after_completion(self, registry):
        await registry.init("f1", "a.txt", 1, 1)
        await registry.submit_chunk("f1", 0, b"a", compute_checksum(b"a"))

        summary = await registry.init("f1", "a.txt", 1, 1)

        assert summary["status"] == "receiving"

    @pytest.mark.asyncio
    async def test_failed_session_can_be_replaced(self, publisher):
        registry = TransferRegistry(publisher=publisher, reassembler=BrokenReassembler())
        await registry.init("f1", "a.txt", 1, 1)
        await registry.submit_chunk("f1", 0, b"a", compute_checksum(b"a"))

        summary = await registry.init("f1", "a.txt", 1, 1)

        assert summary["status"] == "receiving"
        assert summary["received_chunks"] == 0


class TestReassemblyFailure:
    """Failures during reassembly are terminal for one session only."""

    @pytest.mark.asyncio
    async def test_failure_marks_session_failed_and_emits(self, publisher, subscription):
        registry = TransferRegistry(publisher=publisher, reassembler=BrokenReassembler())
        await registry.init("f1", "a.txt", 1, 1)

        receipt = await registry.submit_chunk("f1", 0, b"a", compute_checksum(b"a"))

        assert receipt.status == SessionStatus.FAILED
        assert receipt.content_hash is None
        summary = await active_summary(registry, "f1")
        assert summary["status"] == "failed"
        assert summary["failure_reason"] == "Missing chunk 1"
        event = subscription.drain()[-1]
        assert event.type == EventType.RECONSTRUCTION_FAILED
        assert event.payload["error"] == "Missing chunk 1"
        assert await registry.list_artifacts() == []

    @pytest.mark.asyncio
    async def test_failed_session_rejects_further_chunks(self, publisher):
        registry = TransferRegistry(publisher=publisher, reassembler=BrokenReassembler())
        await registry.init("f1", "a.txt", 1, 1)
        await registry.submit_chunk("f1", 0, b"a", compute_checksum(b"a"))

        with pytest.raises(InvalidStateError):
            await registry.submit_chunk("f1", 0, b"a", compute_checksum(b"a"))

    @pytest.mark.asyncio
    async def test_failure_does_not_affect_other_sessions(self, publisher):
        registry = TransferRegistry(publisher=publisher, reassembler=BrokenReassembler())
        await registry.init("broken", "a.txt", 1, 1)
        await registry.init("healthy", "b.txt", 2, 2)
        await registry.submit_chunk("broken", 0, b"a", compute_checksum(b"a"))

        receipt = await registry.submit_chunk("healthy", 0, b"b", compute_checksum(b"b"))

        assert receipt.status == SessionStatus.RECEIVING
        assert receipt.received_chunks == 1

    @pytest.mark.asyncio
    async def test_reset_during_reconstruction_discards_artifact(self, publisher):
        gate = threading.Event()

        class SlowReassembler(Reassembler):
            def reconstruct(self, session):
                gate.wait(timeout=5)
                return super().reconstruct(session)

        registry = TransferRegistry(publisher=publisher, reassembler=SlowReassembler())
        await registry.init("slow", "a.txt", 1, 1)
        task = asyncio.create_task(registry.submit_chunk("slow", 0, b"a", compute_checksum(b"a")))

        for _ in range(200):
            summary = await active_summary(registry, "slow")
            if summary and summary["status"] == "reconstructing":
                break
            await asyncio.sleep(0.01)

        await registry.reset()
        gate.set()
        receipt = await task

        assert receipt.status == SessionStatus.FAILED
        assert await registry.list_artifacts() == []
        assert await registry.list_active_sessions() == []


class TestRetention:
    """Bounded, most-recent-first artifact store."""

    @pytest.mark.asyncio
    async def test_keeps_ten_most_recent(self, registry):
        for n in range(12):
            data = f"file-{n}".encode()
            await registry.init(f"f{n}", f"{n}.txt", len(data), 1)
            await registry.submit_chunk(f"f{n}", 0, data, compute_checksum(data))

        artifacts = await registry.list_artifacts()

        assert len(artifacts) == 10
        assert [a["file_id"] for a in artifacts] == [f"f{n}" for n in range(11, 1, -1)]
        for evicted in ("f0", "f1"):
            with pytest.raises(NotFoundError):
                await registry.get_artifact(evicted)

    @pytest.mark.asyncio
    async def test_custom_retention_limit(self, publisher):
        registry = TransferRegistry(publisher=publisher, retention_limit=2)
        for n in range(3):
            await registry.init(f"f{n}", "x.txt", 1, 1)
            await registry.submit_chunk(f"f{n}", 0, b"x", compute_checksum(b"x"))

        assert [a["file_id"] for a in await registry.list_artifacts()] == ["f2", "f1"]

    def test_retention_limit_must_be_positive(self):
        with pytest.raises(ValueError):
            TransferRegistry(retention_limit=0)

    @pytest.mark.asyncio
    async def test_listing_is_a_snapshot(self, registry):
        await registry.init("f1", "a.txt", 1, 1)
        await registry.submit_chunk("f1", 0, b"a", compute_checksum(b"a"))
        snapshot = await registry.list_artifacts()

        await registry.reset()

        assert len(snapshot) == 1

    @pytest.mark.asyncio
    async def test_get_artifact_unknown_id(self, registry):
        with pytest.raises(NotFoundError):
            await registry.get_artifact("missing")


class TestMethodSwitching:
    """Transfer method changes recorded on the session and artifact."""

    @pytest.mark.asyncio
    async def test_explicit_switch_emits_event(self, registry, subscription):
        await registry.init("f1", "a.txt", 2, 2)

        summary = await registry.switch_method("f1", "bluetooth")

        assert summary["transfer_method"] == "bluetooth"
        event = subscription.drain()[-1]
        assert event.type == EventType.TRANSFER_METHOD_SWITCHED
        assert event.payload["old_method"] == "wifi"
        assert event.payload["new_method"] == "bluetooth"

    @pytest.mark.asyncio
    async def test_chunk_method_auto_switches(self, registry):
        await registry.init("f1", "a.txt", 2, 2)
        await registry.submit_chunk("f1", 0, b"a", compute_checksum(b"a"))
        await registry.submit_chunk("f1", 1, b"b", compute_checksum(b"b"), transfer_method="bluetooth")

        artifact = await registry.get_artifact("f1")

        assert artifact.transfer_method == "bluetooth"
        assert len(artifact.method_switches) == 1
        assert artifact.method_switches[0].chunk_count == 1

    @pytest.mark.asyncio
    async def test_switch_unknown_session(self, registry):
        with pytest.raises(NotFoundError):
            await registry.switch_method("nope", "wifi")

    @pytest.mark.asyncio
    async def test_switch_to_unknown_method(self, registry):
        await registry.init("f1", "a.txt", 2, 2)
        with pytest.raises(InvalidArgumentError):
            await registry.switch_method("f1", "smoke-signals")

    @pytest.mark.asyncio
    async def test_rejected_chunk_does_not_switch_method(self, registry, subscription):
        await registry.init("f1", "a.txt", 3, 3)

        with pytest.raises(OutOfRangeError):
            await registry.submit_chunk("f1", 5, b"a", compute_checksum(b"a"), transfer_method="bluetooth")
        with pytest.raises(HashMismatchError):
            await registry.submit_chunk("f1", 0, b"a", compute_checksum(b"b"), transfer_method="bluetooth")

        summary = await active_summary(registry, "f1")
        assert summary["transfer_method"] == "wifi"
        assert summary["method_switches"] == []
        types = [e.type for e in subscription.drain()]
        assert EventType.TRANSFER_METHOD_SWITCHED not in types

    @pytest.mark.asyncio
    async def test_unknown_chunk_method_rejected_before_storing(self, registry):
        await registry.init("f1", "a.txt", 2, 2)

        with pytest.raises(InvalidArgumentError):
            await registry.submit_chunk("f1", 0, b"a", compute_checksum(b"a"), transfer_method="smoke-signals")

        summary = await active_summary(registry, "f1")
        assert summary["received_chunks"] == 0
        assert summary["method_switches"] == []

    @pytest.mark.asyncio
    async def test_switch_event_precedes_chunk_event(self, registry, subscription):
        await registry.init("f1", "a.txt", 2, 2)
        subscription.drain()

        await registry.submit_chunk("f1", 0, b"a", compute_checksum(b"a"), transfer_method="bluetooth")

        types = [e.type for e in subscription.drain()]
        assert types == [EventType.TRANSFER_METHOD_SWITCHED, EventType.CHUNK_ACCEPTED]


class TestChunkSizeLimit:
    """Chunks larger than the configured maximum are refused before hashing."""

    @pytest.mark.asyncio
    async def test_oversized_chunk_rejected(self, publisher):
        registry = TransferRegistry(publisher=publisher, max_chunk_size=4)
        await registry.init("f1", "a.bin", 10, 2)

        with pytest.raises(InvalidArgumentError):
            await registry.submit_chunk("f1", 0, b"12345", compute_checksum(b"12345"))

        summary = await active_summary(registry, "f1")
        assert summary["received_chunks"] == 0
        assert summary["rejected_chunks"] == 0

    @pytest.mark.asyncio
    async def test_chunk_at_limit_accepted(self, publisher):
        registry = TransferRegistry(publisher=publisher, max_chunk_size=4)
        await registry.init("f1", "a.bin", 8, 2)

        receipt = await registry.submit_chunk("f1", 0, b"1234", compute_checksum(b"1234"))

        assert receipt.received_chunks == 1

    def test_max_chunk_size_must_be_positive(self):
        with pytest.raises(ValueError):
            TransferRegistry(max_chunk_size=0)


class TestIdleEviction:
    """Opt-in expiry of stalled sessions."""

    @pytest.mark.asyncio
    async def test_evicts_only_idle_receiving_sessions(self, registry, subscription):
        await registry.init("stale", "a.txt", 2, 2)
        await registry.init("fresh", "b.txt", 2, 2)
        registry._sessions["stale"].last_activity_at -= 120

        expired = await registry.evict_idle_sessions(60)

        assert expired == ["stale"]
        assert [s["file_id"] for s in await registry.list_active_sessions()] == ["fresh"]
        event = subscription.drain()[-1]
        assert event.type == EventType.SESSION_EXPIRED
        assert event.session_id == "stale"

    @pytest.mark.asyncio
    async def test_accepted_chunk_refreshes_activity(self, registry):
        await registry.init("f1", "a.txt", 2, 2)
        registry._sessions["f1"].last_activity_at -= 120
        await registry.submit_chunk("f1", 0, b"a", compute_checksum(b"a"))

        assert await registry.evict_idle_sessions(60) == []

    @pytest.mark.asyncio
    async def test_failed_sessions_are_not_expired(self, publisher):
        registry = TransferRegistry(publisher=publisher, reassembler=BrokenReassembler())
        await registry.init("f1", "a.txt", 1, 1)
        await registry.submit_chunk("f1", 0, b"a", compute_checksum(b"a"))

        assert await registry.evict_idle_sessions(0, now=time.monotonic() + 1000) == []


def test_stats_counts(registry, subscription):
    stats = registry.stats()

    assert stats["active_transfers"] == 0
    assert stats["reconstructed_files"] == 0
    assert stats["connected_clients"] == 1
    assert stats["retention_limit"] == 10


@pytest.mark.asyncio
async def test_stats_count_published_events(registry):
    await registry.init("f1", "a.txt", 1, 1)
    await registry.submit_chunk("f1", 0, b"a", compute_checksum(b"a"))

    # started, chunk accepted, reconstruction started, reconstruction completed
    assert registry.stats()["published_events"] == 4
