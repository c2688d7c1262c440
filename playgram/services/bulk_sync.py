"""
Bulk Sync Orchestrator

Pushes locally computed state to many external contacts. Targets are split
into small chunks; chunks run one after another, targets inside a chunk run
in parallel, and each target's field writes run in parallel under a
per-target timeout. A failed target never aborts the batch.
"""
import asyncio
import time
from dataclasses import dataclass, field
from typing import Callable, Coroutine, Iterable

import structlog

from playgram.config import settings
from playgram.routes.metrics import track_sync_target

logger = structlog.get_logger()

# Returns the field-level writes for one target
UpdatePlan = Callable[[str], Iterable[Coroutine]]


@dataclass
class BulkSyncResult:
    attempted: int
    updated_count: int
    failed_ids: list[str] = field(default_factory=list)
    duration_ms: int = 0


def chunked(items: list[str], size: int) -> list[list[str]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class BulkSyncOrchestrator:

    def __init__(
        self,
        chunk_size: int = settings.SYNC_CHUNK_SIZE,
        chunk_delay_ms: int = settings.SYNC_CHUNK_DELAY_MS,
        target_timeout_s: float = settings.SYNC_TARGET_TIMEOUT_SECONDS,
    ):
        if chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")
        self.chunk_size = chunk_size
        self.chunk_delay_ms = chunk_delay_ms
        self.target_timeout_s = target_timeout_s

    async def _write_all(self, writes: Iterable[Coroutine]):
        async with asyncio.TaskGroup() as tg:
            for write in writes:
                tg.create_task(write)

    async def _sync_target(self, owner_id: str, target_id: str, update_plan: UpdatePlan) -> bool:
        try:
            await asyncio.wait_for(self._write_all(update_plan(target_id)), timeout=self.target_timeout_s)
            track_sync_target("updated")
            return True
        except TimeoutError:
            logger.warning("sync_target_timeout", owner_id=owner_id, target_id=target_id,
                           timeout_s=self.target_timeout_s)
        except Exception as e:
            # TaskGroup wraps write failures in an ExceptionGroup
            errors = [str(exc) for exc in e.exceptions] if isinstance(e, ExceptionGroup) else [str(e)]
            logger.warning("sync_target_failed", owner_id=owner_id, target_id=target_id, errors=errors)
        track_sync_target("failed")
        return False

    async def sync_many(self, owner_id: str, target_ids: list[str], update_plan: UpdatePlan) -> BulkSyncResult:
        """
        Apply update_plan to every target.

        Chunk N+1 starts only after every target in chunk N has settled.
        """
        start = time.perf_counter()
        chunks = chunked(list(target_ids), self.chunk_size)
        updated = 0
        failed_ids: list[str] = []

        for index, chunk in enumerate(chunks):
            results = await asyncio.gather(
                *(self._sync_target(owner_id, target_id, update_plan) for target_id in chunk)
            )
            for target_id, ok in zip(chunk, results):
                if ok:
                    updated += 1
                else:
                    failed_ids.append(target_id)

            if index < len(chunks) - 1 and self.chunk_delay_ms > 0:
                await asyncio.sleep(self.chunk_delay_ms / 1000)

        duration_ms = int((time.perf_counter() - start) * 1000)
        logger.info(
            "bulk_sync_completed",
            owner_id=owner_id,
            attempted=len(target_ids),
            updated=updated,
            failed=len(failed_ids),
            duration_ms=duration_ms,
        )
        return BulkSyncResult(
            attempted=len(target_ids),
            updated_count=updated,
            failed_ids=failed_ids,
            duration_ms=duration_ms,
        )
