"""Keeps a user's tag vocabulary and the tags on their bookmarks consistent.

Two execution modes are used on purpose:

* best effort: ``sync_vocabulary`` and ``apply_vocabulary_update`` run the
  secondary update item by item in savepoints and only log failures, the
  primary write has already succeeded;
* all or nothing: ``batch_delete_tags`` runs inside ``store.transaction()``
  and a failed vocabulary save leaves every bookmark untouched.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from shelfmark import store
from shelfmark.errors import ForbiddenError, NotFoundError, ValidationError
from shelfmark.extensions import db
from shelfmark.models import Bookmark, UserSettings
from shelfmark.services.common import clean_tags, merge_tags, parse_tags


@dataclass
class VocabularyUpdate:
    tag_list: list[str]
    deleted_tags: list[str]
    updated_bookmarks: int = 0
    failed_bookmarks: int = 0


@dataclass
class BatchTagDeletion:
    attempted_tags: list[str]
    deleted_tags: list[str] = field(default_factory=list)
    updated_bookmarks: int = 0
    failed_bookmarks: int = 0


def get_settings(user_id: int) -> UserSettings | None:
    return UserSettings.query.filter_by(user_id=user_id).first()


def require_settings(user_id: int) -> UserSettings:
    settings = get_settings(user_id)
    if not settings:
        raise NotFoundError("user settings not found")
    return settings


def missing_from_vocabulary(vocabulary, tags, trimmed: bool = False) -> list[str]:
    known = {(tag.strip() if trimmed else tag) for tag in vocabulary or []}
    return [tag for tag in clean_tags(tags) if tag not in known]


def sync_vocabulary(user_id: int, tags, trimmed: bool = False) -> list[str]:
    """Append the tags the vocabulary does not contain yet.

    Returns the tags that were added. A missing settings row or a failed save
    is logged and reported as "nothing added"; it never fails the caller.
    """
    tags = clean_tags(tags)
    if not tags:
        return []

    try:
        with db.session.begin_nested():
            settings = get_settings(user_id)
            if not settings:
                current_app.logger.warning(
                    "No settings for user %s, vocabulary not updated with %s",
                    user_id,
                    tags,
                )
                return []
            added = missing_from_vocabulary(settings.tag_list, tags, trimmed=trimmed)
            if added:
                settings.tag_list = list(settings.tag_list or []) + added
                store.save_record(settings)
            return added
    except Exception as exc:
        current_app.logger.warning(
            "Failed to add tags %s to vocabulary of user %s: %s", tags, user_id, exc
        )
        return []


def remove_tags_from_bookmarks(user_id: int, removed: list[str]) -> tuple[int, int]:
    """Strip ``removed`` from every bookmark of the user, one savepoint each.

    Returns ``(updated, failed)``.
    """
    removed_set = set(removed)
    updated = 0
    failed = 0
    bookmarks = (
        Bookmark.query.filter_by(user_id=user_id).order_by(Bookmark.id.asc()).all()
    )
    for bookmark in bookmarks:
        bookmark_id = bookmark.id
        current = list(bookmark.tags or [])
        kept = [tag for tag in current if tag not in removed_set]
        if len(kept) == len(current):
            continue
        try:
            with db.session.begin_nested():
                bookmark.tags = kept
                store.save_record(bookmark)
            updated += 1
            current_app.logger.debug(
                "Removed tags from bookmark %s (user %s), now %s",
                bookmark_id,
                user_id,
                kept,
            )
        except Exception as exc:
            failed += 1
            current_app.logger.warning(
                "Failed to remove tags %s from bookmark %s (user %s): %s",
                removed,
                bookmark_id,
                user_id,
                exc,
            )
    return updated, failed


def apply_vocabulary_update(user_id: int, new_tags) -> VocabularyUpdate:
    settings = require_settings(user_id)
    old_tags = list(settings.tag_list or [])
    tag_list = clean_tags(new_tags)
    deleted = [tag for tag in old_tags if tag not in tag_list]

    settings.tag_list = tag_list
    store.save_record(settings)
    db.session.commit()

    result = VocabularyUpdate(tag_list=tag_list, deleted_tags=deleted)
    if not deleted:
        return result

    current_app.logger.info(
        "User %s removed tags %s from vocabulary, updating bookmarks", user_id, deleted
    )
    result.updated_bookmarks, result.failed_bookmarks = remove_tags_from_bookmarks(
        user_id, deleted
    )
    db.session.commit()
    return result


def batch_delete_tags(user_id: int, tags) -> BatchTagDeletion:
    requested = clean_tags(tags)
    if not requested:
        raise ValidationError("no valid tags provided after processing input")

    result = BatchTagDeletion(attempted_tags=requested)
    with store.transaction():
        settings = require_settings(user_id)
        current = list(settings.tag_list or [])
        result.deleted_tags = [tag for tag in current if tag in requested]
        if not result.deleted_tags:
            current_app.logger.info(
                "User %s batch deleted tags %s, none were in the vocabulary",
                user_id,
                requested,
            )
            return result

        settings.tag_list = [tag for tag in current if tag not in result.deleted_tags]
        store.save_record(settings)
        current_app.logger.info(
            "User %s batch deleted tags %s, updating bookmarks",
            user_id,
            result.deleted_tags,
        )
        result.updated_bookmarks, result.failed_bookmarks = remove_tags_from_bookmarks(
            user_id, result.deleted_tags
        )
    return result


def add_tags_to_bookmark(user_id: int, bookmark_id: int, tags_input: str) -> Bookmark:
    if not (tags_input or "").strip():
        raise ValidationError("tags input cannot be empty")

    bookmark = db.session.get(Bookmark, bookmark_id)
    if not bookmark:
        raise NotFoundError("bookmark not found")
    if bookmark.user_id != user_id:
        raise ForbiddenError("you do not have permission to modify this bookmark")

    incoming = parse_tags(tags_input)
    if not incoming:
        raise ValidationError("no valid tags provided after processing input")

    bookmark.tags = merge_tags(bookmark.tags, incoming)
    store.save_record(bookmark)
    db.session.commit()

    sync_vocabulary(user_id, bookmark.tags, trimmed=True)
    db.session.commit()
    return bookmark
