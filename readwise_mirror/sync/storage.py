from __future__ import annotations

import logging
import re
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

from .errors import ArticleWriteError

logger = logging.getLogger(__name__)

ARTICLE_ID_PREFIX = "[rw-id_"
ARTICLE_ID_POSTFIX = "] "
ARTICLE_SUFFIX = ".html"
SIDECAR_SUFFIX = ".sdr"
# Bytes, since file systems cap names at 255 bytes of UTF-8.
MAX_TITLE_BYTES = 200

_UNSAFE_CHARS = re.compile(r'[\\/:*?"<>|\x00-\x1f]')
_WHITESPACE = re.compile(r"\s+")


def safe_filename(title: Optional[str], max_bytes: int = MAX_TITLE_BYTES) -> str:
    cleaned = _UNSAFE_CHARS.sub("_", title or "")
    cleaned = _WHITESPACE.sub(" ", cleaned).strip().strip(".")
    if not cleaned:
        cleaned = "Untitled"
    truncated = cleaned.encode("utf-8", "ignore")[:max_bytes].decode("utf-8", "ignore")
    return truncated.rstrip() or "Untitled"


def document_id_from_path(path: Path) -> Optional[str]:
    name = Path(path).name
    if not name.startswith(ARTICLE_ID_PREFIX):
        return None
    end = name.find(ARTICLE_ID_POSTFIX, len(ARTICLE_ID_PREFIX))
    if end == -1:
        return None
    doc_id = name[len(ARTICLE_ID_PREFIX):end]
    return doc_id or None


@dataclass
class ArticlePaths:
    root: Path

    def article_name(self, document_id: str, title: Optional[str]) -> str:
        return f"{ARTICLE_ID_PREFIX}{document_id}{ARTICLE_ID_POSTFIX}{safe_filename(title)}{ARTICLE_SUFFIX}"

    def article_path(self, document_id: str, title: Optional[str]) -> Path:
        return self.root / self.article_name(document_id, title)

    def sidecar_dir(self, article_path: Path) -> Path:
        return article_path.with_suffix(SIDECAR_SUFFIX)


class LocalArticleStorage:
    """
    Manages the download directory: one HTML file per remote document, its
    id embedded in the filename between fixed delimiters.
    """

    def __init__(self, paths: ArticlePaths):
        self.paths = paths

    @property
    def root(self) -> Path:
        return self.paths.root

    def iter_articles(self) -> Iterator[Path]:
        if not self.root.is_dir():
            return
        for entry in sorted(self.root.iterdir()):
            if entry.is_file() and entry.name.startswith(ARTICLE_ID_PREFIX):
                yield entry

    def find_article(self, document_id: str) -> Optional[Path]:
        marker = f"{ARTICLE_ID_PREFIX}{document_id}{ARTICLE_ID_POSTFIX}"
        for entry in self.iter_articles():
            if entry.name.startswith(marker):
                return entry
        return None

    def article_exists(self, document_id: str) -> bool:
        return self.find_article(document_id) is not None

    def write_article(self, document_id: str, title: Optional[str], html: str) -> Path:
        target = self.paths.article_path(document_id, title)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            with target.open("w", encoding="utf-8") as f:
                f.write(html)
        except (OSError, UnicodeError) as exc:
            logger.error("Failed to write %s: %s", target, exc)
            try:
                target.unlink(missing_ok=True)
            except OSError:
                logger.warning("Could not remove partial file %s", target)
            raise ArticleWriteError(f"Failed to write article {document_id}: {exc}") from exc
        logger.debug("Saved %s to %s", document_id, target)
        return target

    def delete_article(self, path: Path) -> None:
        """
        Remove an article and its sidecar directory, if any.
        """
        path.unlink(missing_ok=True)
        sidecar = self.paths.sidecar_dir(path)
        if sidecar.is_dir():
            shutil.rmtree(sidecar, ignore_errors=True)
        logger.debug("Deleted %s", path)

    def delete_document(self, document_id: str) -> bool:
        path = self.find_article(document_id)
        if path is None:
            return False
        self.delete_article(path)
        return True
