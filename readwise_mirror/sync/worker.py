from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from .client import ReaderClient
from .errors import ArticleWriteError, ReaderSyncError, SyncAbortedError
from .filters import exclusion_reason, is_excluded, rebuild_metadata
from .highlights import HighlightExporter
from .models import Document, DownloadResult, SyncConfig, SyncPhase, SyncSettings, SyncSummary
from .repository import SettingsRepository
from .sidecar import AnnotationSource, NoopAnnotationSource, ReadingStatusSource, SidecarLibrary
from .storage import LocalArticleStorage, document_id_from_path
from .transform import ContentTransformer

logger = logging.getLogger(__name__)

CHECKPOINT_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

# Only the user edits these. Saves during a run take them from the stored record.
USER_SETTINGS = (
    "access_token",
    "directory",
    "archive_finished",
    "export_highlights_at_sync",
    "download_images",
    "max_image_size_mb",
    "excluded_tags",
    "excluded_locations",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def purge_excluded(storage: LocalArticleStorage, settings: SyncSettings) -> int:
    """
    Delete local articles whose stored tags or location are now excluded.
    """
    deleted = 0
    for path in list(storage.iter_articles()):
        doc_id = document_id_from_path(path)
        if doc_id and is_excluded(settings, doc_id):
            logger.debug("Deleting %s, document is now excluded", path)
            storage.delete_article(path)
            deleted += 1
    return deleted


class SyncWorker:
    """
    Drives one synchronization through export -> archived cleanup ->
    finished archiving -> listing -> metadata rebuild -> exclusion purge ->
    download -> checkpoint. The worker owns no state between runs; the
    settings repository holds everything that must survive.
    """

    def __init__(
        self,
        config: SyncConfig,
        client: ReaderClient,
        storage: LocalArticleStorage,
        settings_repository: SettingsRepository,
        transformer: Optional[ContentTransformer] = None,
        status_source: Optional[ReadingStatusSource] = None,
        annotation_source: Optional[AnnotationSource] = None,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.config = config
        self.client = client
        self.storage = storage
        self.repo = settings_repository
        self.transformer = transformer or ContentTransformer(
            download_images=config.download_images,
            max_image_bytes=config.max_image_bytes,
        )
        sidecars = SidecarLibrary(storage)
        self.status_source = status_source or sidecars
        self.annotation_source = annotation_source or (sidecars if config.export_highlights else NoopAnnotationSource())
        self.now = now
        self.phase: Optional[SyncPhase] = None
        self.settings: SyncSettings = self.repo.load()

    def _save(self) -> None:
        stored = self.repo.load()
        for name in USER_SETTINGS:
            setattr(self.settings, name, getattr(stored, name))
        self.repo.save(self.settings)

    def run(self) -> SyncSummary:
        self.phase = SyncPhase.VALIDATE
        self.config.validate()
        self.settings = self.repo.load()
        self.client.reset_session()
        sync_start = self.now().strftime(CHECKPOINT_FORMAT)
        summary = SyncSummary()

        if self.config.export_highlights:
            self.phase = SyncPhase.EXPORT_HIGHLIGHTS
            self._export_highlights(summary)

        self.phase = SyncPhase.CLEANUP_ARCHIVED
        summary.cleaned = self.cleanup_archived()

        self.phase = SyncPhase.ARCHIVE_FINISHED
        summary.archived, summary.deleted = self.process_finished()

        self.phase = SyncPhase.LIST_DOCUMENTS
        documents = self._list_or_abort(
            lambda: self.client.list_active_documents(self.settings.excluded_locations),
            "Failed to get document list from Readwise Reader.",
        )

        self.phase = SyncPhase.REBUILD_METADATA
        rebuild_metadata(self.settings, documents)
        self._save()

        self.phase = SyncPhase.PURGE_EXCLUDED
        summary.purged = self.purge_excluded()

        self.phase = SyncPhase.DOWNLOAD
        pending: List[Document] = []
        for document in documents:
            reason = exclusion_reason(self.settings, document.id, document)
            if reason:
                logger.debug("Skipping %s due to excluded %s", document.id, reason)
                summary.excluded += 1
            elif self.storage.article_exists(document.id):
                summary.existing += 1
            else:
                pending.append(document)

        for index, document in enumerate(pending, start=1):
            logger.info("Downloading %s of %s: %s", index, len(pending), document.title or "Untitled")
            result = self.download_document(document)
            if result == DownloadResult.DOWNLOADED:
                summary.downloaded += 1
            elif result == DownloadResult.SKIPPED:
                summary.skipped += 1
            else:
                summary.failed += 1

        self.phase = SyncPhase.CHECKPOINT
        self.settings.last_sync_time = sync_start
        self._save()
        logger.info("Sync finished: %s", summary.message().replace("\n", "; "))
        return summary

    def _list_or_abort(self, call: Callable[[], List[Document]], message: str) -> List[Document]:
        try:
            return call()
        except ReaderSyncError as exc:
            logger.error("%s %s", message, exc)
            raise SyncAbortedError(message) from exc

    def _export_highlights(self, summary: SyncSummary) -> None:
        try:
            books = self.annotation_source.read_annotations()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Error reading annotations for highlight export: %s", exc)
            summary.highlight_errors.append(f"Highlight export failed: {exc}")
            return
        if not books:
            return
        exporter = HighlightExporter(self.client)
        summary.highlights_exported, summary.highlight_errors = exporter.export(
            books, self.settings.document_authors
        )

    def cleanup_archived(self) -> int:
        """
        Delete local copies of documents archived remotely since the last
        checkpoint. Without a checkpoint there is nothing to compare against.
        """
        since = self.settings.last_sync_time
        if not since:
            logger.debug("No previous sync time, skipping archived cleanup")
            return 0
        archived = self._list_or_abort(
            lambda: self.client.list_archived_documents(since),
            "Failed to check archived articles in Readwise Reader.",
        )
        deleted = 0
        for document in archived:
            if self.storage.delete_document(document.id):
                logger.debug("Deleted locally archived document %s", document.id)
                self.remove_author(document.id)
                deleted += 1
        logger.debug("Deleted %s locally archived documents", deleted)
        return deleted

    def process_finished(self) -> Tuple[int, int]:
        """
        Archive remotely every local article the reader marked finished.
        The local file goes only once the archive call succeeded.
        """
        if not self.config.archive_finished:
            return 0, 0
        archived = 0
        deleted = 0
        for path in list(self.storage.iter_articles()):
            if not self.status_source.is_finished(path):
                continue
            doc_id = document_id_from_path(path)
            if not doc_id:
                continue
            try:
                self.client.archive_document(doc_id)
            except ReaderSyncError as exc:
                logger.error("Failed to archive %s: %s", doc_id, exc)
                continue
            archived += 1
            self.storage.delete_article(path)
            deleted += 1
            self.remove_author(doc_id)
        return archived, deleted

    def purge_excluded(self) -> int:
        return purge_excluded(self.storage, self.settings)

    def download_document(self, document: Document) -> DownloadResult:
        if is_excluded(self.settings, document.id, document):
            logger.debug("Skipping %s, excluded tags or location", document.id)
            return DownloadResult.SKIPPED
        if self.storage.article_exists(document.id):
            logger.debug("Skipping %s, already exists", document.id)
            return DownloadResult.SKIPPED

        self.store_author(document.id, document.author)
        html = self.transformer.transform(document)
        try:
            path: Path = self.storage.write_article(document.id, document.title, html)
        except ArticleWriteError as exc:
            logger.error("Download of %s failed: %s", document.id, exc)
            return DownloadResult.FAILED
        logger.debug("Downloaded %s to %s", document.id, path)
        return DownloadResult.DOWNLOADED

    # region author metadata
    def store_author(self, document_id: str, author: Optional[str]) -> None:
        if isinstance(author, str) and author:
            self.settings.document_authors[document_id] = author
        else:
            self.settings.document_authors.pop(document_id, None)
        self._save()

    def remove_author(self, document_id: str) -> None:
        if self.settings.document_authors.pop(document_id, None) is not None:
            self._save()

    # endregion
