import asyncio

from playgram.services.background import TaskSupervisor


async def test_failed_task_does_not_reach_caller():
    supervisor = TaskSupervisor()

    async def boom():
        raise RuntimeError("sync failed")

    supervisor.spawn(boom(), name="gallery_auto_sync", config_id="c1")
    await supervisor.drain()

    assert supervisor.pending == 0


async def test_shutdown_cancels_running_tasks():
    supervisor = TaskSupervisor()
    started = asyncio.Event()

    async def forever():
        started.set()
        await asyncio.sleep(3600)

    task = supervisor.spawn(forever(), name="long")
    await started.wait()
    await supervisor.shutdown()

    assert task.cancelled()
    assert supervisor.pending == 0
