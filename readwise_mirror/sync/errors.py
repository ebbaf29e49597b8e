from __future__ import annotations

from typing import Optional


class ReaderSyncError(Exception):
    """Base class for every failure raised by the sync subsystem."""


class NetworkError(ReaderSyncError):
    pass


class MalformedResponseError(ReaderSyncError):
    pass


class HTTPStatusError(ReaderSyncError):
    def __init__(self, status_code: int, reason: Optional[str] = None):
        self.status_code = status_code
        self.reason = reason
        super().__init__(f"HTTP {status_code}" + (f" {reason}" if reason else ""))


class ArticleWriteError(ReaderSyncError):
    pass


class ConfigurationError(ReaderSyncError):
    """Token or download directory missing/invalid. Blocks the run entirely."""


class SyncAbortedError(ReaderSyncError):
    """A listing call failed and the run stopped before downloading."""


class SyncInProgressError(ReaderSyncError):
    pass
