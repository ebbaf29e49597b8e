from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from readwise_mirror.sync import ReadwiseReaderPlugin, SyncSettings

from api.dependencies import get_plugin

router = APIRouter(tags=["settings"])


class SettingsUpdate(BaseModel):
    access_token: Optional[str] = None
    directory: Optional[str] = None
    archive_finished: Optional[bool] = None
    export_highlights_at_sync: Optional[bool] = None
    download_images: Optional[bool] = None
    max_image_size_mb: Optional[int] = None


def _public_settings(settings: SyncSettings) -> dict:
    return {
        "access_token_set": bool(settings.access_token),
        "directory": settings.directory,
        "archive_finished": settings.archive_finished,
        "export_highlights_at_sync": settings.export_highlights_at_sync,
        "download_images": settings.download_images,
        "max_image_size_mb": settings.max_image_size_mb,
        "last_sync_time": settings.last_sync_time,
    }


@router.get("/settings")
def get_settings(plugin: ReadwiseReaderPlugin = Depends(get_plugin)):
    return _public_settings(plugin.repo.load())


@router.put("/settings")
def update_settings(update: SettingsUpdate, plugin: ReadwiseReaderPlugin = Depends(get_plugin)):
    changes = update.model_dump(exclude_none=True)
    return _public_settings(plugin.update_settings(**changes))


@router.get("/filters")
def get_filters(plugin: ReadwiseReaderPlugin = Depends(get_plugin)):
    settings = plugin.repo.load()
    return {
        "available_tags": settings.available_tags,
        "excluded_tags": settings.excluded_tags,
        "categories": sorted(settings.document_categories),
        "available_locations": settings.available_locations,
        "excluded_locations": settings.excluded_locations,
    }


@router.post("/filters/tags/{tag}/toggle")
def toggle_tag(tag: str, plugin: ReadwiseReaderPlugin = Depends(get_plugin)):
    excluded, deleted = plugin.toggle_tag(tag)
    return {"tag": tag, "excluded": excluded, "deleted": deleted}


@router.post("/filters/locations/{location}/toggle")
def toggle_location(location: str, plugin: ReadwiseReaderPlugin = Depends(get_plugin)):
    excluded, deleted = plugin.toggle_location(location)
    return {"location": location, "excluded": excluded, "deleted": deleted}


@router.get("/articles")
def list_articles(plugin: ReadwiseReaderPlugin = Depends(get_plugin)):
    return plugin.list_articles()


@router.get("/menu")
def get_menu(plugin: ReadwiseReaderPlugin = Depends(get_plugin)):
    menu_items: dict = {}
    plugin.register_menu(menu_items)
    return {name: item.to_dict() for name, item in menu_items.items()}
