import json
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from shelfmark import store
from shelfmark.errors import SnapshotFormatError
from shelfmark.extensions import db
from shelfmark.models import Bookmark, Folder
from shelfmark.services.snapshot import (
    SNAPSHOT_VERSION,
    build_snapshot,
    export_user_data,
    folder_path,
    parse_snapshot,
)
from shelfmark.services.vocabulary import get_settings


OLD = datetime(2024, 1, 1, tzinfo=timezone.utc)
NEW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def _seed(user_id):
    work = store.save_record(
        Folder(user_id=user_id, name="Work", created_at=OLD, updated_at=OLD)
    )
    docs = store.save_record(
        Folder(
            user_id=user_id, name="Docs", parent_id=work.id, created_at=NEW, updated_at=NEW
        )
    )
    filed = store.save_record(
        Bookmark(
            user_id=user_id,
            folder_id=docs.id,
            url="https://docs.python.org",
            title="Python docs",
            tags=["python"],
            created_at=OLD,
            updated_at=OLD,
        )
    )
    loose = store.save_record(
        Bookmark(
            user_id=user_id,
            url="https://example.com",
            title="Example",
            tags=[],
            created_at=NEW,
            updated_at=NEW,
        )
    )
    db.session.commit()
    return work, docs, filed, loose


def test_full_export_uses_string_ids_and_full_paths(user):
    work, docs, filed, loose = _seed(user.id)

    data = export_user_data(user.id)

    folders = {item["name"]: item for item in data["folders"]}
    assert folders["Work"]["id"] == str(work.id)
    assert folders["Work"]["parentId"] is None
    assert folders["Docs"]["parentId"] == str(work.id)
    assert folders["Docs"]["path"] == ["Work", "Docs"]

    bookmarks = {item["url"]: item for item in data["bookmarks"]}
    assert bookmarks["https://docs.python.org"]["folderId"] == str(docs.id)
    assert bookmarks["https://docs.python.org"]["folderPath"] == ["Work", "Docs"]
    assert bookmarks["https://docs.python.org"]["tags"] == ["python"]
    assert bookmarks["https://example.com"]["folderId"] is None
    assert bookmarks["https://example.com"]["folderPath"] == []

    meta = data["syncMetadata"]
    assert meta["totalFolders"] == 2
    assert meta["totalBookmarks"] == 2
    assert meta["isIncremental"] is False
    assert meta["exportTime"]


def test_incremental_export_only_includes_records_updated_after_since(user):
    _seed(user.id)
    since = datetime(2024, 3, 1, tzinfo=timezone.utc)

    data = export_user_data(user.id, since=since)

    assert [item["name"] for item in data["folders"]] == ["Docs"]
    assert [item["url"] for item in data["bookmarks"]] == ["https://example.com"]
    assert data["folders"][0]["path"] == ["Work", "Docs"]
    assert data["syncMetadata"]["isIncremental"] is True
    assert data["syncMetadata"]["totalBookmarks"] == 1


def test_since_is_exclusive(user):
    _seed(user.id)

    data = export_user_data(user.id, since=NEW)

    assert data["folders"] == []
    assert data["bookmarks"] == []


def test_folder_path_stops_at_a_missing_parent_or_cycle():
    folders = {
        1: SimpleNamespace(name="Child", parent_id=99),
        2: SimpleNamespace(name="A", parent_id=3),
        3: SimpleNamespace(name="B", parent_id=2),
    }

    assert folder_path(1, folders) == ["Child"]
    assert folder_path(2, folders) == ["B", "A"]
    assert folder_path(None, folders) == []


def test_build_snapshot_omits_unset_optional_fields(user):
    work, docs, filed, loose = _seed(user.id)
    settings = get_settings(user.id)
    settings.tag_list = ["python"]
    settings.dark_mode = True
    settings.language = "en"
    db.session.commit()

    document = build_snapshot(user.id)

    assert document["version"] == SNAPSHOT_VERSION
    work_entry = next(item for item in document["folders"] if item["name"] == "Work")
    assert "parentId" not in work_entry
    loose_entry = next(
        item for item in document["bookmarks"] if item["url"] == "https://example.com"
    )
    assert "folderId" not in loose_entry
    assert "tags" not in loose_entry
    assert "faviconUrl" not in loose_entry
    assert document["userSettings"] == {
        "darkMode": True,
        "tagList": ["python"],
        "language": "en",
    }
    json.dumps(document)


def test_build_snapshot_without_settings_row_has_no_user_settings(user):
    db.session.delete(get_settings(user.id))
    db.session.commit()

    document = build_snapshot(user.id)

    assert "userSettings" not in document
    assert document["folders"] == []
    assert document["bookmarks"] == []


def test_parse_snapshot_accepts_bytes_and_skips_malformed_entries(app_ctx):
    raw = json.dumps(
        {
            "version": "1.0.0",
            "folders": [{"id": 1, "name": " Work "}, "junk"],
            "bookmarks": [
                {"id": "7", "url": "https://a.example", "folderId": 1, "tags": ["x", " x"]},
                42,
            ],
            "userSettings": {"tagList": ["x"], "darkMode": False},
        }
    ).encode("utf-8")

    snapshot = parse_snapshot(raw)

    assert snapshot.version == "1.0.0"
    assert [(f.original_id, f.name) for f in snapshot.folders] == [("1", " Work ")]
    assert snapshot.bookmarks[0].folder_id == "1"
    assert snapshot.bookmarks[0].tags == ["x"]
    assert snapshot.settings.tag_list == ["x"]
    assert snapshot.settings.dark_mode is False


@pytest.mark.parametrize(
    "raw",
    [
        b"{not json",
        "[]",
        {"folders": "nope"},
        {"bookmarks": [], "userSettings": "dark"},
    ],
)
def test_parse_snapshot_rejects_malformed_documents(app_ctx, raw):
    with pytest.raises(SnapshotFormatError):
        parse_snapshot(raw)
