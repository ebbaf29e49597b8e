"""
Sync subsystem exports.
"""

from .client import AdaptiveRateLimiter, ReaderClient, ReadwiseReaderClient
from .errors import (
    ArticleWriteError,
    ConfigurationError,
    HTTPStatusError,
    MalformedResponseError,
    NetworkError,
    ReaderSyncError,
    SyncAbortedError,
    SyncInProgressError,
)
from .highlights import HighlightExporter, build_highlights
from .job_queue import RQSyncQueue, WorkerConfig, build_worker, run_sync_job
from .models import (
    BookNotes,
    Clipping,
    Document,
    DownloadResult,
    Location,
    SyncConfig,
    SyncPhase,
    SyncSettings,
    SyncSummary,
)
from .plugin import HostPlugin, MenuItem, ReadwiseReaderPlugin
from .repository import InMemorySettingsRepository, SettingsRepository, SqlAlchemySettingsRepository
from .sidecar import NoopAnnotationSource, SidecarLibrary
from .storage import ArticlePaths, LocalArticleStorage, document_id_from_path
from .transform import ContentTransformer, ImageFetcher, fix_corrupted_url
from .worker import SyncWorker

__all__ = [
    "AdaptiveRateLimiter",
    "ArticlePaths",
    "ArticleWriteError",
    "BookNotes",
    "Clipping",
    "ConfigurationError",
    "ContentTransformer",
    "Document",
    "DownloadResult",
    "HTTPStatusError",
    "HighlightExporter",
    "HostPlugin",
    "ImageFetcher",
    "InMemorySettingsRepository",
    "LocalArticleStorage",
    "Location",
    "MalformedResponseError",
    "MenuItem",
    "NetworkError",
    "NoopAnnotationSource",
    "RQSyncQueue",
    "ReaderClient",
    "ReaderSyncError",
    "ReadwiseReaderClient",
    "ReadwiseReaderPlugin",
    "SettingsRepository",
    "SidecarLibrary",
    "SqlAlchemySettingsRepository",
    "SyncAbortedError",
    "SyncConfig",
    "SyncInProgressError",
    "SyncPhase",
    "SyncSettings",
    "SyncSummary",
    "SyncWorker",
    "WorkerConfig",
    "build_highlights",
    "build_worker",
    "document_id_from_path",
    "fix_corrupted_url",
    "run_sync_job",
]
