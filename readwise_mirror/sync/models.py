from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from .errors import ConfigurationError

API_ENDPOINT = "https://readwise.io/api/v3"
HIGHLIGHTS_API_ENDPOINT = "https://readwise.io/api/v2"
DEFAULT_MAX_IMAGE_SIZE_MB = 10
MIN_IMAGE_SIZE_MB = 1
MAX_IMAGE_SIZE_MB = 50


class Location(str, Enum):
    NEW = "new"
    LATER = "later"
    SHORTLIST = "shortlist"
    ARCHIVE = "archive"


ACTIVE_LOCATIONS = (Location.NEW, Location.LATER, Location.SHORTLIST)


class SyncPhase(str, Enum):
    VALIDATE = "validate"
    EXPORT_HIGHLIGHTS = "export_highlights"
    CLEANUP_ARCHIVED = "cleanup_archived"
    ARCHIVE_FINISHED = "archive_finished"
    LIST_DOCUMENTS = "list_documents"
    REBUILD_METADATA = "rebuild_metadata"
    PURGE_EXCLUDED = "purge_excluded"
    DOWNLOAD = "download"
    CHECKPOINT = "checkpoint"


class DownloadResult(str, Enum):
    DOWNLOADED = "downloaded"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class Document:
    id: str
    title: Optional[str] = None
    author: Optional[str] = None
    location: Optional[str] = None
    category: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    html_content: Optional[str] = None
    reading_progress: float = 0.0
    source_url: Optional[str] = None
    summary: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "Document":
        """
        Build a document from one entry of the Reader `/list/` response.
        The remote `tags` field is an object keyed by tag id whose values
        carry a `name`; entries without a usable name are dropped.
        """
        tags: List[str] = []
        raw_tags = payload.get("tags")
        if isinstance(raw_tags, dict):
            for tag_data in raw_tags.values():
                name = tag_data.get("name") if isinstance(tag_data, dict) else None
                if isinstance(name, str) and name:
                    tags.append(name)
        try:
            progress = float(payload.get("reading_progress") or 0.0)
        except (TypeError, ValueError):
            progress = 0.0
        doc_id = payload["id"]
        if doc_id is None or doc_id == "":
            raise ValueError("document entry has no id")
        return cls(
            id=str(doc_id),
            title=payload.get("title"),
            author=payload.get("author"),
            location=payload.get("location"),
            category=payload.get("category"),
            tags=tags,
            html_content=payload.get("html_content"),
            reading_progress=progress,
            source_url=payload.get("source_url"),
            summary=payload.get("summary"),
            updated_at=payload.get("updated_at"),
        )


@dataclass
class Clipping:
    text: str
    note: Optional[str] = None
    page: Optional[int] = None
    time: Optional[int] = None
    chapter: Optional[str] = None


@dataclass
class BookNotes:
    title: str
    author: Optional[str] = None
    file: Optional[Path] = None
    clippings: List[Clipping] = field(default_factory=list)


@dataclass
class SyncSettings:
    """
    The single persisted record. Field names double as the keys of the
    serialized payload so older records load with defaults for new keys.
    """

    access_token: Optional[str] = None
    directory: Optional[str] = None
    archive_finished: bool = False
    export_highlights_at_sync: bool = False
    last_sync_time: Optional[str] = None
    available_tags: List[str] = field(default_factory=list)
    excluded_tags: List[str] = field(default_factory=list)
    document_tags: Dict[str, List[str]] = field(default_factory=dict)
    document_categories: Set[str] = field(default_factory=set)
    available_locations: List[str] = field(default_factory=list)
    excluded_locations: List[str] = field(default_factory=list)
    document_locations: Dict[str, str] = field(default_factory=dict)
    document_authors: Dict[str, str] = field(default_factory=dict)
    download_images: bool = True
    max_image_size_mb: int = DEFAULT_MAX_IMAGE_SIZE_MB

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["document_categories"] = sorted(self.document_categories)
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SyncSettings":
        data = dict(data or {})
        known = {name for name in cls.__dataclass_fields__}
        values = {k: v for k, v in data.items() if k in known and v is not None}
        if "document_categories" in values:
            values["document_categories"] = set(values["document_categories"])
        return cls(**values)


@dataclass
class SyncConfig:
    """
    Explicit configuration handed to the sync worker for one run.
    """

    access_token: str
    directory: Path
    archive_finished: bool = False
    export_highlights: bool = False
    download_images: bool = True
    max_image_size_mb: int = DEFAULT_MAX_IMAGE_SIZE_MB
    api_url: str = API_ENDPOINT
    highlights_api_url: str = HIGHLIGHTS_API_ENDPOINT

    @classmethod
    def from_settings(cls, settings: SyncSettings, **overrides: Any) -> "SyncConfig":
        token = overrides.pop("access_token", None) or settings.access_token
        directory = overrides.pop("directory", None) or settings.directory
        if not token or not str(token).strip():
            raise ConfigurationError("Please configure your Readwise Reader access token.")
        if not directory or not str(directory).strip():
            raise ConfigurationError("Please configure the download folder.")
        size_mb = min(max(int(settings.max_image_size_mb), MIN_IMAGE_SIZE_MB), MAX_IMAGE_SIZE_MB)
        config = cls(
            access_token=str(token).strip(),
            directory=Path(directory).expanduser(),
            archive_finished=settings.archive_finished,
            export_highlights=settings.export_highlights_at_sync,
            download_images=settings.download_images,
            max_image_size_mb=size_mb,
        )
        for key, value in overrides.items():
            if value is not None:
                setattr(config, key, value)
        return config

    def validate(self) -> None:
        if not self.directory.is_dir():
            raise ConfigurationError(
                f"The download folder is not valid: {self.directory}. Please configure it in the settings."
            )

    @property
    def max_image_bytes(self) -> int:
        return self.max_image_size_mb * 1024 * 1024


@dataclass
class SyncSummary:
    highlights_exported: int = 0
    highlight_errors: List[str] = field(default_factory=list)
    downloaded: int = 0
    existing: int = 0
    skipped: int = 0
    failed: int = 0
    excluded: int = 0
    cleaned: int = 0
    archived: int = 0
    deleted: int = 0
    purged: int = 0

    @property
    def changed(self) -> bool:
        return any((self.downloaded, self.cleaned, self.archived, self.purged, self.highlights_exported))

    def message(self) -> str:
        if not self.changed and not self.failed and not self.skipped:
            lines = ["No new articles found and no changes to process."]
            if self.existing:
                lines.append(f"Skipped {self.existing} existing articles.")
            if self.excluded:
                lines.append(f"Excluded {self.excluded} articles due to tags/locations.")
            return "\n".join(lines)

        lines = ["Sync complete:"]
        if self.highlights_exported:
            lines.append(f"Exported highlights: {self.highlights_exported} books")
        if self.downloaded:
            lines.append(f"Downloaded: {self.downloaded}")
        if self.existing:
            lines.append(f"Skipped (already exists): {self.existing}")
        if self.skipped:
            lines.append(f"Skipped (other): {self.skipped}")
        if self.failed:
            lines.append(f"Failed: {self.failed}")
        if self.excluded:
            lines.append(f"Excluded due to tags/locations: {self.excluded}")
        if self.purged:
            lines.append(f"Removed excluded: {self.purged}")
        if self.cleaned:
            lines.append(f"Cleaned up archived: {self.cleaned}")
        if self.archived:
            lines.append(f"Archived in Readwise: {self.archived}")
            lines.append(f"Deleted locally: {self.deleted}")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["message"] = self.message()
        return data
