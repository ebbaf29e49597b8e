from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Set

from .models import Document, SyncSettings

logger = logging.getLogger(__name__)


def document_tags(document: Document) -> List[str]:
    # The category is exposed as a tag so it can be excluded the same way.
    tags: List[str] = []
    if document.category:
        tags.append(document.category)
    for tag in document.tags:
        if tag not in tags:
            tags.append(tag)
    return tags


def rebuild_metadata(settings: SyncSettings, documents: Iterable[Document]) -> None:
    """
    Replace the per-document tag/location maps, the category set and the
    available tag/location lists with what the current remote list says.
    Earlier values are discarded, not merged.
    """
    settings.document_tags = {}
    settings.document_locations = {}
    settings.document_categories = set()
    tag_set: Set[str] = set()
    location_set: Set[str] = set()

    for doc in documents:
        tags = document_tags(doc)
        settings.document_tags[doc.id] = tags
        tag_set.update(tags)
        if doc.category:
            settings.document_categories.add(doc.category)
        if doc.location:
            settings.document_locations[doc.id] = doc.location
            location_set.add(doc.location)

    categories = settings.document_categories
    settings.available_tags = sorted(tag_set, key=lambda t: (t not in categories, t))
    settings.available_locations = sorted(location_set)
    logger.debug(
        "Discovered %s tags and %s locations across %s documents",
        len(settings.available_tags),
        len(settings.available_locations),
        len(settings.document_tags),
    )


def exclusion_reason(settings: SyncSettings, document_id: str, document: Optional[Document] = None) -> Optional[str]:
    """
    Return why a document is excluded, or None. Uses the document itself
    when given, otherwise the stored tag/location maps.
    """
    if document is not None:
        location = document.location
        tags = document_tags(document)
    else:
        location = settings.document_locations.get(document_id)
        tags = settings.document_tags.get(document_id, [])

    if location and location in settings.excluded_locations:
        return f"location {location}"
    for tag in tags:
        if tag in settings.excluded_tags:
            return f"tag {tag}"
    return None


def is_excluded(settings: SyncSettings, document_id: str, document: Optional[Document] = None) -> bool:
    return exclusion_reason(settings, document_id, document) is not None


def toggle_tag_exclusion(settings: SyncSettings, tag: str) -> bool:
    """Flip a tag in the exclusion set. Returns True when it was added."""
    if tag in settings.excluded_tags:
        settings.excluded_tags.remove(tag)
        logger.debug("Removed tag from exclusion: %s", tag)
        return False
    settings.excluded_tags.append(tag)
    logger.debug("Added tag to exclusion: %s", tag)
    return True


def toggle_location_exclusion(settings: SyncSettings, location: str) -> bool:
    if location in settings.excluded_locations:
        settings.excluded_locations.remove(location)
        logger.debug("Removed location from exclusion: %s", location)
        return False
    settings.excluded_locations.append(location)
    logger.debug("Added location to exclusion: %s", location)
    return True
