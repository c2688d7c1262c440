"""
Bulk sync orchestration tests.
"""
import asyncio

import pytest

from playgram.services.bulk_sync import BulkSyncOrchestrator, chunked


def test_chunked():
    assert chunked(["a", "b", "c", "d", "e"], 2) == [["a", "b"], ["c", "d"], ["e"]]
    assert chunked([], 3) == []


def test_chunk_size_must_be_positive():
    with pytest.raises(ValueError):
        BulkSyncOrchestrator(chunk_size=0)


async def test_all_targets_updated():
    writes = []

    async def write(target_id, field):
        writes.append((target_id, field))

    orchestrator = BulkSyncOrchestrator(chunk_size=2, chunk_delay_ms=0, target_timeout_s=1)
    result = await orchestrator.sync_many(
        "owner-1", ["a", "b", "c"], lambda target_id: [write(target_id, "x"), write(target_id, "y")]
    )

    assert result.attempted == 3
    assert result.updated_count == 3
    assert result.failed_ids == []
    assert len(writes) == 6


async def test_chunks_run_one_after_another():
    running = 0
    peak = 0
    order = []

    async def write(target_id):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        order.append(target_id)
        await asyncio.sleep(0.01)
        running -= 1

    orchestrator = BulkSyncOrchestrator(chunk_size=2, chunk_delay_ms=0, target_timeout_s=1)
    await orchestrator.sync_many("owner-1", ["a", "b", "c", "d", "e"], lambda target_id: [write(target_id)])

    assert peak == 2
    assert set(order[:2]) == {"a", "b"}
    assert set(order[2:4]) == {"c", "d"}
    assert order[4] == "e"


async def test_failing_and_slow_targets_do_not_abort_batch():
    async def write(target_id):
        if target_id == "bad":
            raise RuntimeError("ManyChat said no")
        if target_id == "slow":
            await asyncio.sleep(1)

    orchestrator = BulkSyncOrchestrator(chunk_size=5, chunk_delay_ms=0, target_timeout_s=0.05)
    result = await orchestrator.sync_many("owner-1", ["ok", "bad", "slow", "ok2"], lambda target_id: [write(target_id)])

    assert result.updated_count == 2
    assert sorted(result.failed_ids) == ["bad", "slow"]
