from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from .models import BookNotes, Clipping
from .storage import ARTICLE_ID_POSTFIX, LocalArticleStorage

logger = logging.getLogger(__name__)

METADATA_FILE = "metadata.json"
FINISHED_STATUS = "complete"


class ReadingStatusSource(Protocol):
    def is_finished(self, article_path: Path) -> bool:
        ...


class AnnotationSource(Protocol):
    def read_annotations(self) -> List[BookNotes]:
        ...


class NoopAnnotationSource:
    """
    Default annotation source. Keeps highlight export wired without a reader.
    """

    def read_annotations(self) -> List[BookNotes]:
        return []


class SidecarLibrary:
    """
    Reads the per-article sidecar the reading application keeps next to each
    downloaded file: `<article>.sdr/metadata.json` holding a `summary` with
    the reading status, `doc_props` and a list of `annotations`.
    """

    def __init__(self, storage: LocalArticleStorage):
        self.storage = storage

    def metadata_path(self, article_path: Path) -> Path:
        return self.storage.paths.sidecar_dir(article_path) / METADATA_FILE

    def read_metadata(self, article_path: Path) -> Optional[Dict[str, Any]]:
        path = self.metadata_path(article_path)
        if not path.exists():
            return None
        try:
            with path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            logger.warning("Unreadable sidecar %s: %s", path, exc)
            return None
        return data if isinstance(data, dict) else None

    def write_metadata(self, article_path: Path, metadata: Dict[str, Any]) -> Path:
        path = self.metadata_path(article_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as f:
            json.dump(metadata, f, ensure_ascii=False, indent=2)
        return path

    def is_finished(self, article_path: Path) -> bool:
        metadata = self.read_metadata(article_path) or {}
        summary = metadata.get("summary") or {}
        return summary.get("status") == FINISHED_STATUS

    def read_annotations(self) -> List[BookNotes]:
        books: List[BookNotes] = []
        for article in self.storage.iter_articles():
            metadata = self.read_metadata(article)
            if not metadata:
                continue
            clippings = [c for c in (self._to_clipping(a) for a in metadata.get("annotations") or []) if c]
            if not clippings:
                continue
            props = metadata.get("doc_props") or {}
            books.append(
                BookNotes(
                    title=props.get("title") or _title_from_name(article),
                    author=props.get("authors"),
                    file=article,
                    clippings=clippings,
                )
            )
        return books

    def _to_clipping(self, raw: Any) -> Optional[Clipping]:
        if not isinstance(raw, dict) or not raw.get("text"):
            return None
        return Clipping(
            text=raw["text"],
            note=raw.get("note"),
            page=raw.get("pageno") or raw.get("page"),
            time=_parse_time(raw.get("time", raw.get("datetime"))),
            chapter=raw.get("chapter"),
        )


def _title_from_name(article: Path) -> str:
    stem = article.stem
    _, sep, title = stem.partition(ARTICLE_ID_POSTFIX)
    return title if sep else stem


def _parse_time(value: Any) -> Optional[int]:
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            parsed = datetime.strptime(value, "%Y-%m-%d %H:%M:%S")
        except ValueError:
            return None
        return int(parsed.replace(tzinfo=timezone.utc).timestamp())
    return None
