from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from flask import current_app
from itsdangerous import BadData, URLSafeTimedSerializer

from shelfmark import store
from shelfmark.models import Bookmark, Folder, UserSettings


CLEAR_CONFIRM_PHRASE = "DELETE ALL MY DATA"


@dataclass
class ClearResult:
    cleared_folders_count: int = 0
    cleared_bookmarks_count: int = 0
    tags_cleared: bool = False

    def as_dict(self):
        return {
            "cleared_folders_count": self.cleared_folders_count,
            "cleared_bookmarks_count": self.cleared_bookmarks_count,
            "tags_cleared": self.tags_cleared,
        }


def _serializer(secret_key: str) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret_key=secret_key, salt="clear-all-user-data")


def create_clear_token(
    secret_key: str, user_id: int, folder_count: int, bookmark_count: int
) -> str:
    payload = {
        "user_id": user_id,
        "folder_count": folder_count,
        "bookmark_count": bookmark_count,
        "issued_at": int(datetime.now(timezone.utc).timestamp()),
    }
    return _serializer(secret_key).dumps(payload)


def verify_clear_token(
    secret_key: str, token: str, max_age: int, expected_user_id: int
) -> dict | None:
    try:
        payload = _serializer(secret_key).loads(token, max_age=max_age)
    except BadData:
        return None
    if payload.get("user_id") != expected_user_id:
        return None
    return payload


def count_user_data(user_id: int) -> dict:
    return {
        "folders": Folder.query.filter_by(user_id=user_id).count(),
        "bookmarks": Bookmark.query.filter_by(user_id=user_id).count(),
    }


def clear_user_data(user_id: int) -> ClearResult:
    """Delete all folders and bookmarks of a user and empty their vocabulary.

    Runs as one transaction. The first failing lookup or delete rolls back
    everything and propagates; nothing is kept from a failed run.
    """
    result = ClearResult()
    with store.transaction():
        folders = Folder.query.filter_by(user_id=user_id).all()
        for folder in folders:
            store.delete_record(folder)
            result.cleared_folders_count += 1

        bookmarks = Bookmark.query.filter_by(user_id=user_id).all()
        for bookmark in bookmarks:
            store.delete_record(bookmark)
            result.cleared_bookmarks_count += 1

        settings = UserSettings.query.filter_by(user_id=user_id).first()
        if settings is None:
            current_app.logger.info(
                "No settings for user %s, vocabulary left as is", user_id
            )
        else:
            settings.tag_list = []
            store.save_record(settings)
            result.tags_cleared = True

    current_app.logger.info(
        "Cleared data for user %s: %s folders, %s bookmarks, tags cleared: %s",
        user_id,
        result.cleared_folders_count,
        result.cleared_bookmarks_count,
        result.tags_cleared,
    )
    return result
