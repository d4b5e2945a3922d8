"""Merges a snapshot into a user's live folders, bookmarks and settings.

Snapshot ids are foreign to this database. Folders are restored in two
passes: the first creates or matches every folder and records
``original id -> live id``, the second re-links parents through that
mapping. Bookmarks then use the same mapping for their folder.

Every entry is processed in its own savepoint; a failing entry is logged and
skipped and the rest of the snapshot is still restored.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy.orm.attributes import flag_modified

from shelfmark import store
from shelfmark.extensions import db
from shelfmark.models import Bookmark, Folder
from shelfmark.services.common import merge_tags, parse_timestamp
from shelfmark.services.folder_paths import is_ancestor
from shelfmark.services.snapshot import (
    BookmarkEntry,
    FolderEntry,
    SettingsEntry,
    Snapshot,
)
from shelfmark.services.vocabulary import get_settings, sync_vocabulary


@dataclass
class RestoreResult:
    restored_bookmarks: int = 0
    restored_folders: int = 0
    skipped_bookmarks: int = 0
    skipped_folders: int = 0
    source: str | None = None

    def as_dict(self):
        return {
            "restored_bookmarks": self.restored_bookmarks,
            "restored_folders": self.restored_folders,
            "skipped_bookmarks": self.skipped_bookmarks,
            "skipped_folders": self.skipped_folders,
            "source": self.source,
        }


def _apply_timestamps(record, created_at, updated_at) -> None:
    created = parse_timestamp(created_at)
    if created is not None:
        record.created_at = created
    updated = parse_timestamp(updated_at)
    if updated is not None:
        record.updated_at = updated


def _restore_folders(
    user_id: int, entries: list[FolderEntry], result: RestoreResult
) -> dict[str, int]:
    mapping: dict[str, int] = {}
    for entry in entries:
        if not entry.name.strip():
            result.skipped_folders += 1
            current_app.logger.warning(
                "Restore: skipping folder %s without a name (user %s)",
                entry.original_id,
                user_id,
            )
            continue
        try:
            with db.session.begin_nested():
                folder = (
                    Folder.query.filter_by(user_id=user_id, name=entry.name)
                    .order_by(Folder.id.asc())
                    .first()
                )
                if folder is None:
                    folder = Folder(user_id=user_id, name=entry.name)
                _apply_timestamps(folder, entry.created_at, entry.updated_at)
                store.save_record(folder)
        except Exception as exc:
            result.skipped_folders += 1
            current_app.logger.warning(
                "Restore: failed to save folder %r (user %s): %s",
                entry.name,
                user_id,
                exc,
            )
            continue
        if entry.original_id:
            mapping[entry.original_id] = folder.id
    return mapping


def _relink_folder_parents(
    user_id: int, entries: list[FolderEntry], mapping: dict[str, int]
) -> None:
    for entry in entries:
        if not entry.parent_id:
            continue
        folder_id = mapping.get(entry.original_id)
        parent_id = mapping.get(entry.parent_id)
        if folder_id is None or parent_id is None:
            current_app.logger.warning(
                "Restore: parent %s of folder %r was not restored, folder left at root "
                "(user %s)",
                entry.parent_id,
                entry.name,
                user_id,
            )
            continue
        if is_ancestor(folder_id, parent_id):
            current_app.logger.warning(
                "Restore: linking folder %r under folder %s would create a cycle, "
                "skipped (user %s)",
                entry.name,
                parent_id,
                user_id,
            )
            continue
        try:
            with db.session.begin_nested():
                folder = db.session.get(Folder, folder_id)
                folder.parent_id = parent_id
                updated = parse_timestamp(entry.updated_at)
                if updated is not None:
                    folder.updated_at = updated
                    flag_modified(folder, "updated_at")
                store.save_record(folder)
        except Exception as exc:
            current_app.logger.warning(
                "Restore: failed to update parent of folder %r (user %s): %s",
                entry.name,
                user_id,
                exc,
            )


def _restore_bookmark(
    user_id: int, entry: BookmarkEntry, folder_map: dict[str, int]
) -> Bookmark:
    bookmark = (
        Bookmark.query.filter_by(user_id=user_id, url=entry.url)
        .order_by(Bookmark.id.asc())
        .first()
    )
    if bookmark is not None:
        if entry.title:
            bookmark.title = entry.title
        if entry.favicon_url:
            bookmark.favicon_url = entry.favicon_url
    else:
        bookmark = Bookmark(
            user_id=user_id,
            url=entry.url,
            title=entry.title or "",
            favicon_url=entry.favicon_url,
            tags=[],
        )

    if entry.folder_id and entry.folder_id in folder_map:
        bookmark.folder_id = folder_map[entry.folder_id]
    if entry.tags:
        bookmark.tags = merge_tags(bookmark.tags, entry.tags)
    _apply_timestamps(bookmark, entry.created_at, entry.updated_at)
    return store.save_record(bookmark)


def _restore_settings(user_id: int, entry: SettingsEntry | None) -> None:
    if entry is None or entry.is_empty():
        current_app.logger.info("Restore: no settings in backup for user %s", user_id)
        return

    settings = get_settings(user_id)
    if settings is None:
        current_app.logger.warning(
            "Restore: settings not found for user %s, settings not restored", user_id
        )
        return

    try:
        with db.session.begin_nested():
            if entry.tag_list is not None:
                settings.tag_list = merge_tags(entry.tag_list, settings.tag_list)
            if entry.dark_mode is not None:
                settings.dark_mode = entry.dark_mode
            if entry.accent_color:
                settings.accent_color = entry.accent_color
            if entry.default_view:
                settings.default_view = entry.default_view
            if entry.language:
                settings.language = entry.language
            store.save_record(settings)
    except Exception as exc:
        current_app.logger.warning(
            "Restore: failed to save settings for user %s: %s", user_id, exc
        )
        return
    current_app.logger.info("Restore: settings restored for user %s", user_id)


def restore_snapshot(
    user_id: int, snapshot: Snapshot, source: str | None = None
) -> RestoreResult:
    result = RestoreResult(restored_folders=len(snapshot.folders), source=source)

    folder_map = _restore_folders(user_id, snapshot.folders, result)
    _relink_folder_parents(user_id, snapshot.folders, folder_map)

    for entry in snapshot.bookmarks:
        if not entry.url.strip():
            result.skipped_bookmarks += 1
            current_app.logger.warning(
                "Restore: skipping bookmark %s without a url (user %s)",
                entry.original_id,
                user_id,
            )
            continue
        try:
            with db.session.begin_nested():
                bookmark = _restore_bookmark(user_id, entry, folder_map)
        except Exception as exc:
            result.skipped_bookmarks += 1
            current_app.logger.warning(
                "Restore: failed to save bookmark %r (user %s): %s",
                entry.title or entry.url,
                user_id,
                exc,
            )
            continue
        result.restored_bookmarks += 1
        if entry.tags:
            sync_vocabulary(user_id, bookmark.tags)

    _restore_settings(user_id, snapshot.settings)
    db.session.commit()
    current_app.logger.info(
        "Restore for user %s from %s: %s bookmarks, %s folders",
        user_id,
        source or "upload",
        result.restored_bookmarks,
        result.restored_folders,
    )
    return result
