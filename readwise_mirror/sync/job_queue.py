from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from redis import Redis
from rq import Queue, Worker

from .client import ReadwiseReaderClient
from .models import API_ENDPOINT, HIGHLIGHTS_API_ENDPOINT, SyncConfig
from .repository import SettingsRepository, SqlAlchemySettingsRepository
from .storage import ArticlePaths, LocalArticleStorage
from .worker import SyncWorker

SYNC_JOB_ID = "readwise-sync"


@dataclass
class WorkerConfig:
    database_url: str
    api_url: str = API_ENDPOINT
    highlights_api_url: str = HIGHLIGHTS_API_ENDPOINT
    access_token: Optional[str] = None
    directory: Optional[str] = None


def build_worker(
    repository: SettingsRepository,
    api_url: str = API_ENDPOINT,
    highlights_api_url: str = HIGHLIGHTS_API_ENDPOINT,
    access_token: Optional[str] = None,
    directory: Optional[str] = None,
) -> SyncWorker:
    """
    Wire a worker from the stored settings. Raises ConfigurationError when
    the token or directory is missing.
    """
    settings = repository.load()
    config = SyncConfig.from_settings(
        settings,
        access_token=access_token,
        directory=directory,
        api_url=api_url,
        highlights_api_url=highlights_api_url,
    )
    client = ReadwiseReaderClient(
        config.access_token,
        api_url=config.api_url,
        highlights_api_url=config.highlights_api_url,
    )
    storage = LocalArticleStorage(ArticlePaths(config.directory))
    return SyncWorker(config=config, client=client, storage=storage, settings_repository=repository)


def run_sync_job(config: WorkerConfig) -> Dict[str, Any]:
    """
    RQ task entrypoint. Creates all required components and runs one sync.
    """
    repo = SqlAlchemySettingsRepository(config.database_url)
    worker = build_worker(
        repo,
        api_url=config.api_url,
        highlights_api_url=config.highlights_api_url,
        access_token=config.access_token,
        directory=config.directory,
    )
    return worker.run().to_dict()


class RQSyncQueue:
    """
    Redis-backed queue using RQ. Runs must not overlap, so start exactly one
    worker process with `work()`; jobs share one id so repeated requests
    coalesce while a run is pending.
    """

    def __init__(self, redis_url: str = "redis://localhost:6379/0", queue_name: str = "readwise-sync"):
        self.redis = Redis.from_url(redis_url)
        self.queue = Queue(queue_name, connection=self.redis)

    def enqueue_sync(self, config: WorkerConfig):
        existing = self.queue.fetch_job(SYNC_JOB_ID)
        if existing is not None and existing.get_status() in ("queued", "started"):
            return existing
        return self.queue.enqueue(run_sync_job, config, job_id=SYNC_JOB_ID, retry=None)

    def work(self):
        worker = Worker([self.queue], connection=self.redis)
        worker.work(with_scheduler=True)
