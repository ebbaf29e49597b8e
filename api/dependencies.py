from __future__ import annotations

import os
from functools import lru_cache, partial
from typing import Optional

from readwise_mirror.sync import (
    ReadwiseReaderPlugin,
    RQSyncQueue,
    SettingsRepository,
    SqlAlchemySettingsRepository,
    WorkerConfig,
    build_worker,
)
from readwise_mirror.sync.models import API_ENDPOINT, HIGHLIGHTS_API_ENDPOINT


def database_url() -> str:
    return os.getenv("SETTINGS_DATABASE_URL", "sqlite+pysqlite:///./data/readwise_mirror.db")


def api_urls() -> dict:
    return {
        "api_url": os.getenv("READWISE_API_URL", API_ENDPOINT),
        "highlights_api_url": os.getenv("READWISE_HIGHLIGHTS_API_URL", HIGHLIGHTS_API_ENDPOINT),
    }


@lru_cache(maxsize=1)
def get_repo() -> SettingsRepository:
    return SqlAlchemySettingsRepository(database_url())


@lru_cache(maxsize=1)
def get_plugin() -> ReadwiseReaderPlugin:
    return ReadwiseReaderPlugin(get_repo(), worker_factory=partial(build_worker, **api_urls()))


@lru_cache(maxsize=1)
def get_queue() -> Optional[RQSyncQueue]:
    redis_url = os.getenv("REDIS_URL")
    if not redis_url:
        return None
    return RQSyncQueue(redis_url, queue_name=os.getenv("SYNC_QUEUE_NAME", "readwise-sync"))


def worker_config() -> WorkerConfig:
    return WorkerConfig(database_url=database_url(), **api_urls())
