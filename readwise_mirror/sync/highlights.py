from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .client import ReaderClient
from .errors import ReaderSyncError
from .models import BookNotes
from .storage import document_id_from_path

logger = logging.getLogger(__name__)

SOURCE_TYPE = "readwise_mirror"
HIGHLIGHT_CATEGORY = "articles"

_FILENAME_LIKE = re.compile(r"\.\w+$|[/\\]")


def resolve_author(book: BookNotes, stored_authors: Mapping[str, str]) -> Optional[str]:
    """
    Prefer the author recorded at download time. The reader's own author
    field often holds the filename for HTML articles, so it is only used
    when it does not look like one.
    """
    if book.file is not None:
        doc_id = document_id_from_path(book.file)
        if doc_id and stored_authors.get(doc_id):
            return stored_authors[doc_id]
    if book.author and not _FILENAME_LIKE.search(book.author):
        return book.author.replace("\n", ", ")
    return None


def format_timestamp(epoch: Optional[int]) -> Optional[str]:
    if epoch is None:
        return None
    return datetime.fromtimestamp(epoch, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def build_highlights(book: BookNotes, author: Optional[str]) -> List[Dict[str, Any]]:
    highlights = []
    for clipping in book.clippings:
        highlight = {
            "text": clipping.text,
            "title": book.title,
            "author": author,
            "source_type": SOURCE_TYPE,
            "category": HIGHLIGHT_CATEGORY,
            "note": clipping.note,
            "location": clipping.page,
            "location_type": "order",
            "highlighted_at": format_timestamp(clipping.time),
        }
        highlights.append({k: v for k, v in highlight.items() if v is not None})
    return highlights


class HighlightExporter:
    def __init__(self, client: ReaderClient):
        self.client = client

    def export(self, books: List[BookNotes], stored_authors: Mapping[str, str]) -> Tuple[int, List[str]]:
        """
        Post one batch per book. Returns the number of books exported and
        an error line for each book that failed.
        """
        exported = 0
        errors: List[str] = []
        for book in books:
            if not book.clippings:
                continue
            highlights = build_highlights(book, resolve_author(book, stored_authors))
            try:
                self.client.create_highlights(highlights)
            except ReaderSyncError as exc:
                logger.warning("Error creating highlights for %s: %s", book.title, exc)
                errors.append(f"{book.title}: {exc}")
                continue
            exported += 1
        return exported, errors
