from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app

from shelfmark.errors import SnapshotFormatError
from shelfmark.models import Bookmark, Folder, isoformat, utcnow
from shelfmark.services.common import clean_tags
from shelfmark.services.vocabulary import get_settings


SNAPSHOT_VERSION = "1.0.0"


@dataclass
class FolderEntry:
    original_id: str
    name: str
    parent_id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class BookmarkEntry:
    original_id: str
    url: str
    title: str = ""
    folder_id: str | None = None
    tags: list[str] = field(default_factory=list)
    favicon_url: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class SettingsEntry:
    tag_list: list[str] | None = None
    dark_mode: bool | None = None
    accent_color: str | None = None
    default_view: str | None = None
    language: str | None = None

    def is_empty(self) -> bool:
        return (
            self.tag_list is None
            and self.dark_mode is None
            and not self.accent_color
            and not self.default_view
            and not self.language
        )


@dataclass
class Snapshot:
    version: str
    folders: list[FolderEntry] = field(default_factory=list)
    bookmarks: list[BookmarkEntry] = field(default_factory=list)
    settings: SettingsEntry | None = None


def _optional_id(value) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def folder_path(folder_id: int | None, folders_by_id: dict[int, Folder]) -> list[str]:
    """Names from the root down to ``folder_id``.

    A parent that is not in ``folders_by_id`` ends the walk, leaving the path
    truncated at that point; so does a cycle.
    """
    names: list[str] = []
    seen: set[int] = set()
    current = folder_id
    while current is not None and current not in seen:
        folder = folders_by_id.get(current)
        if folder is None:
            break
        seen.add(current)
        names.append(folder.name)
        current = folder.parent_id
    names.reverse()
    return names


def export_user_data(user_id: int, since: datetime | None = None) -> dict:
    all_folders = (
        Folder.query.filter_by(user_id=user_id).order_by(Folder.id.asc()).all()
    )
    folders_by_id = {folder.id: folder for folder in all_folders}

    folder_query = Folder.query.filter_by(user_id=user_id)
    bookmark_query = Bookmark.query.filter_by(user_id=user_id)
    if since is not None:
        folder_query = folder_query.filter(Folder.updated_at > since)
        bookmark_query = bookmark_query.filter(Bookmark.updated_at > since)
    folder_rows = folder_query.order_by(Folder.id.asc()).all()
    bookmark_rows = bookmark_query.order_by(Bookmark.id.asc()).all()

    folders = [
        {
            "id": str(folder.id),
            "name": folder.name,
            "parentId": str(folder.parent_id) if folder.parent_id else None,
            "path": folder_path(folder.id, folders_by_id),
            "createdAt": isoformat(folder.created_at),
            "updatedAt": isoformat(folder.updated_at),
        }
        for folder in folder_rows
    ]
    bookmarks = [
        {
            "id": str(bookmark.id),
            "title": bookmark.title,
            "url": bookmark.url,
            "folderId": str(bookmark.folder_id) if bookmark.folder_id else None,
            "folderPath": folder_path(bookmark.folder_id, folders_by_id),
            "tags": list(bookmark.tags or []),
            "isFavorite": bookmark.is_favorite,
            "faviconUrl": bookmark.favicon_url,
            "chromeBookmarkId": bookmark.chrome_bookmark_id or None,
            "createdAt": isoformat(bookmark.created_at),
            "updatedAt": isoformat(bookmark.updated_at),
        }
        for bookmark in bookmark_rows
    ]
    return {
        "folders": folders,
        "bookmarks": bookmarks,
        "syncMetadata": {
            "totalFolders": len(folders),
            "totalBookmarks": len(bookmarks),
            "exportTime": isoformat(utcnow()),
            "isIncremental": since is not None,
        },
    }


def build_snapshot(user_id: int) -> dict:
    """The persisted backup document; unset optional fields are omitted."""
    folders = []
    for folder in Folder.query.filter_by(user_id=user_id).order_by(Folder.id.asc()):
        entry = {"id": str(folder.id), "name": folder.name}
        if folder.parent_id:
            entry["parentId"] = str(folder.parent_id)
        entry["createdAt"] = isoformat(folder.created_at)
        entry["updatedAt"] = isoformat(folder.updated_at)
        folders.append(entry)

    bookmarks = []
    for bookmark in Bookmark.query.filter_by(user_id=user_id).order_by(
        Bookmark.id.asc()
    ):
        entry = {"id": str(bookmark.id), "url": bookmark.url, "title": bookmark.title}
        if bookmark.folder_id:
            entry["folderId"] = str(bookmark.folder_id)
        if bookmark.tags:
            entry["tags"] = list(bookmark.tags)
        if bookmark.favicon_url:
            entry["faviconUrl"] = bookmark.favicon_url
        entry["createdAt"] = isoformat(bookmark.created_at)
        entry["updatedAt"] = isoformat(bookmark.updated_at)
        bookmarks.append(entry)

    document = {"version": SNAPSHOT_VERSION, "folders": folders, "bookmarks": bookmarks}

    settings = get_settings(user_id)
    if settings is None:
        current_app.logger.info(
            "No settings for user %s, snapshot will not include them", user_id
        )
        return document

    user_settings = {"darkMode": bool(settings.dark_mode)}
    if settings.tag_list:
        user_settings["tagList"] = list(settings.tag_list)
    for key, value in (
        ("accentColor", settings.accent_color),
        ("defaultView", settings.default_view),
        ("language", settings.language),
    ):
        if value:
            user_settings[key] = value
    document["userSettings"] = user_settings
    return document


def _parse_entries(raw, kind: str) -> list[dict]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise SnapshotFormatError(f"backup field '{kind}' must be a list")
    entries = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            current_app.logger.warning(
                "Skipping malformed %s entry #%s in backup", kind, index
            )
            continue
        entries.append(item)
    return entries


def _parse_settings(raw) -> SettingsEntry | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise SnapshotFormatError("backup field 'userSettings' must be an object")
    tag_list = raw.get("tagList")
    dark_mode = raw.get("darkMode")
    return SettingsEntry(
        tag_list=clean_tags(tag_list) if isinstance(tag_list, list) else None,
        dark_mode=dark_mode if isinstance(dark_mode, bool) else None,
        accent_color=raw.get("accentColor") or None,
        default_view=raw.get("defaultView") or None,
        language=raw.get("language") or None,
    )


def parse_snapshot(document) -> Snapshot:
    """Validate a backup document given as bytes, text or an already-decoded dict.

    Folder names and urls are kept exactly as written, since restore matches
    live records on exact equality. Ids are coerced to strings.
    """
    if isinstance(document, (bytes, bytearray)):
        try:
            document = document.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise SnapshotFormatError("backup data is not UTF-8 text") from exc
    if isinstance(document, str):
        try:
            document = json.loads(document)
        except ValueError as exc:
            raise SnapshotFormatError(f"failed to parse backup data: {exc}") from exc
    if not isinstance(document, dict):
        raise SnapshotFormatError("backup data must be a JSON object")

    snapshot = Snapshot(version=str(document.get("version") or ""))
    for item in _parse_entries(document.get("folders"), "folders"):
        snapshot.folders.append(
            FolderEntry(
                original_id=_optional_id(item.get("id")) or "",
                name=str(item.get("name") or ""),
                parent_id=_optional_id(item.get("parentId")),
                created_at=item.get("createdAt") or None,
                updated_at=item.get("updatedAt") or None,
            )
        )
    for item in _parse_entries(document.get("bookmarks"), "bookmarks"):
        tags = item.get("tags")
        snapshot.bookmarks.append(
            BookmarkEntry(
                original_id=_optional_id(item.get("id")) or "",
                url=str(item.get("url") or ""),
                title=str(item.get("title") or ""),
                folder_id=_optional_id(item.get("folderId")),
                tags=clean_tags(tags) if isinstance(tags, list) else [],
                favicon_url=item.get("faviconUrl") or None,
                created_at=item.get("createdAt") or None,
                updated_at=item.get("updatedAt") or None,
            )
        )
    snapshot.settings = _parse_settings(document.get("userSettings"))
    return snapshot
