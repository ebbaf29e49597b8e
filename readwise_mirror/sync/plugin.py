from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol, Tuple

from .errors import ConfigurationError, ReaderSyncError, SyncInProgressError
from .filters import toggle_location_exclusion, toggle_tag_exclusion
from .job_queue import build_worker
from .models import MAX_IMAGE_SIZE_MB, MIN_IMAGE_SIZE_MB, SyncConfig, SyncSettings, SyncSummary
from .repository import SettingsRepository
from .storage import ArticlePaths, LocalArticleStorage, document_id_from_path
from .worker import SyncWorker, purge_excluded

logger = logging.getLogger(__name__)

SYNC_EVENT = "SynchronizeReadwiseReader"
TOGGLE_ARCHIVE_EVENT = "ToggleArchiveFinished"
TOGGLE_EXPORT_EVENT = "ToggleExportHighlights"
TOGGLE_IMAGES_EVENT = "ToggleDownloadImages"
TOGGLE_TAG_EVENT_PREFIX = "ToggleTag:"
TOGGLE_LOCATION_EVENT_PREFIX = "ToggleLocation:"

EDITABLE_SETTINGS = (
    "access_token",
    "directory",
    "archive_finished",
    "export_highlights_at_sync",
    "download_images",
    "max_image_size_mb",
)


class HostPlugin(Protocol):
    name: str

    def register_menu(self, menu_items: Dict[str, "MenuItem"]) -> None:
        ...

    def handle_event(self, event: str) -> bool:
        ...


@dataclass
class MenuItem:
    text: str
    event: Optional[str] = None
    checked: Optional[bool] = None
    enabled: bool = True
    children: List["MenuItem"] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"text": self.text, "enabled": self.enabled}
        if self.event:
            data["event"] = self.event
        if self.checked is not None:
            data["checked"] = self.checked
        if self.children:
            data["children"] = [child.to_dict() for child in self.children]
        return data


class ReadwiseReaderPlugin:
    """
    Host-facing adapter: exposes menu entries as data, handles dispatcher
    events, and serializes sync runs so two never overlap.
    """

    name = "readwisereader"

    def __init__(
        self,
        repository: SettingsRepository,
        worker_factory: Callable[[SettingsRepository], SyncWorker] = build_worker,
    ):
        self.repo = repository
        self.worker_factory = worker_factory
        self.last_summary: Optional[SyncSummary] = None
        self.last_error: Optional[str] = None
        self._sync_lock = threading.Lock()

    @property
    def is_syncing(self) -> bool:
        return self._sync_lock.locked()

    def register_menu(self, menu_items: Dict[str, MenuItem]) -> None:
        settings = self.repo.load()
        excluded_tags = set(settings.excluded_tags)
        excluded_locations = set(settings.excluded_locations)
        filters = [
            MenuItem(
                text=f"Location: {loc}",
                event=TOGGLE_LOCATION_EVENT_PREFIX + loc,
                checked=loc in excluded_locations,
            )
            for loc in settings.available_locations
        ]
        filters += [
            MenuItem(text=f"Tag: {tag}", event=TOGGLE_TAG_EVENT_PREFIX + tag, checked=tag in excluded_tags)
            for tag in settings.available_tags
        ]
        if not filters:
            filters = [MenuItem(text="Sync articles first to discover options", enabled=False)]

        menu_items[self.name] = MenuItem(
            text="Readwise Reader",
            children=[
                MenuItem(text="Sync articles", event=SYNC_EVENT),
                MenuItem(
                    text="Settings",
                    children=[
                        MenuItem(text=f"Download folder: {settings.directory or 'Not set'}"),
                        MenuItem(text="Archive finished articles", event=TOGGLE_ARCHIVE_EVENT, checked=settings.archive_finished),
                        MenuItem(
                            text="Export highlights at each sync",
                            event=TOGGLE_EXPORT_EVENT,
                            checked=settings.export_highlights_at_sync,
                        ),
                        MenuItem(text="Download images", event=TOGGLE_IMAGES_EVENT, checked=settings.download_images),
                        MenuItem(text=f"Maximum image size: {settings.max_image_size_mb} MB"),
                    ],
                ),
                MenuItem(text="Exclude from sync", children=filters),
            ],
        )

    def handle_event(self, event: str) -> bool:
        if event == SYNC_EVENT:
            self.synchronize()
            return True
        if event.startswith(TOGGLE_TAG_EVENT_PREFIX):
            self.toggle_tag(event[len(TOGGLE_TAG_EVENT_PREFIX):])
            return True
        if event.startswith(TOGGLE_LOCATION_EVENT_PREFIX):
            self.toggle_location(event[len(TOGGLE_LOCATION_EVENT_PREFIX):])
            return True
        toggles = {
            TOGGLE_ARCHIVE_EVENT: "archive_finished",
            TOGGLE_EXPORT_EVENT: "export_highlights_at_sync",
            TOGGLE_IMAGES_EVENT: "download_images",
        }
        if event in toggles:
            settings = self.repo.load()
            key = toggles[event]
            self.update_settings(**{key: not getattr(settings, key)})
            return True
        return False

    def check_config(self) -> SyncConfig:
        config = SyncConfig.from_settings(self.repo.load())
        config.validate()
        return config

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        """
        Hold the sync lock. Settings edits take it too: a running sync saves
        its own copy of the record.
        """
        if not self._sync_lock.acquire(blocking=False):
            raise SyncInProgressError("A Readwise Reader sync is already running.")
        try:
            yield
        finally:
            self._sync_lock.release()

    def synchronize(self) -> SyncSummary:
        with self._exclusive():
            try:
                worker = self.worker_factory(self.repo)
                summary = worker.run()
            except ReaderSyncError as exc:
                self.last_error = str(exc)
                raise
            self.last_summary = summary
            self.last_error = None
            return summary

    def update_settings(self, **changes: Any) -> SyncSettings:
        for key in changes:
            if key not in EDITABLE_SETTINGS:
                raise ValueError(f"Unknown setting: {key}")
        with self._exclusive():
            settings = self.repo.load()
            for key, value in changes.items():
                if value is None:
                    continue
                if key == "max_image_size_mb":
                    value = min(max(int(value), MIN_IMAGE_SIZE_MB), MAX_IMAGE_SIZE_MB)
                elif key == "directory":
                    value = str(value)
                setattr(settings, key, value)
            self.repo.save(settings)
        return settings

    def _storage(self, settings: SyncSettings) -> Optional[LocalArticleStorage]:
        if not settings.directory:
            return None
        root = Path(settings.directory).expanduser()
        return LocalArticleStorage(ArticlePaths(root)) if root.is_dir() else None

    def toggle_tag(self, tag: str) -> Tuple[bool, int]:
        """Returns whether the tag is now excluded and how many articles were deleted."""
        with self._exclusive():
            settings = self.repo.load()
            added = toggle_tag_exclusion(settings, tag)
            return added, self._apply_exclusion(settings, added)

    def toggle_location(self, location: str) -> Tuple[bool, int]:
        with self._exclusive():
            settings = self.repo.load()
            added = toggle_location_exclusion(settings, location)
            return added, self._apply_exclusion(settings, added)

    def _apply_exclusion(self, settings: SyncSettings, added: bool) -> int:
        self.repo.save(settings)
        storage = self._storage(settings)
        if not added or storage is None:
            return 0
        deleted = purge_excluded(storage, settings)
        if deleted:
            logger.info("Deleted %s excluded articles", deleted)
        return deleted

    def list_articles(self) -> List[Dict[str, Any]]:
        settings = self.repo.load()
        storage = self._storage(settings)
        if storage is None:
            raise ConfigurationError("The download folder is not valid. Please configure it in the settings.")
        articles = []
        for path in storage.iter_articles():
            doc_id = document_id_from_path(path)
            articles.append(
                {
                    "id": doc_id,
                    "filename": path.name,
                    "location": settings.document_locations.get(doc_id),
                    "tags": settings.document_tags.get(doc_id, []),
                    "author": settings.document_authors.get(doc_id),
                }
            )
        return articles
