from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends

from readwise_mirror.sync import ReaderSyncError, ReadwiseReaderPlugin, SyncInProgressError

from api.dependencies import get_plugin, get_queue, worker_config

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])


@router.post("")
def start_sync(background_tasks: BackgroundTasks, plugin: ReadwiseReaderPlugin = Depends(get_plugin)):
    plugin.check_config()

    queue = get_queue()
    if queue is not None:
        job = queue.enqueue_sync(worker_config())
        return {"status": "queued", "job_id": job.id}

    if plugin.is_syncing:
        raise SyncInProgressError("A Readwise Reader sync is already running.")
    background_tasks.add_task(_run_sync, plugin)
    return {"status": "started"}


@router.get("/last")
def last_sync(plugin: ReadwiseReaderPlugin = Depends(get_plugin)):
    settings = plugin.repo.load()
    summary = plugin.last_summary
    return {
        "running": plugin.is_syncing,
        "last_sync_time": settings.last_sync_time,
        "summary": summary.to_dict() if summary else None,
        "error": plugin.last_error,
    }


def _run_sync(plugin: ReadwiseReaderPlugin) -> None:
    try:
        plugin.synchronize()
    except ReaderSyncError as exc:
        logger.error("Readwise Reader sync failed: %s", exc)
