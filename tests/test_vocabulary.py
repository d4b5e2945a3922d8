import pytest
from sqlalchemy import text
from sqlalchemy.orm.exc import StaleDataError

from shelfmark import store
from shelfmark.errors import ForbiddenError, NotFoundError, ValidationError
from shelfmark.extensions import db
from shelfmark.models import Bookmark, UserSettings, create_user
from shelfmark.services.vocabulary import (
    add_tags_to_bookmark,
    apply_vocabulary_update,
    batch_delete_tags,
    get_settings,
    sync_vocabulary,
)


def _bookmark(user_id, url, tags):
    bookmark = store.save_record(
        Bookmark(user_id=user_id, url=url, title=url, tags=list(tags))
    )
    db.session.commit()
    return bookmark


def _set_vocabulary(user_id, tags):
    settings = get_settings(user_id)
    settings.tag_list = list(tags)
    db.session.commit()


def _fail_saving(monkeypatch, predicate):
    original = store.save_record

    def save_record(record):
        if predicate(record):
            raise RuntimeError("record store unavailable")
        return original(record)

    monkeypatch.setattr(store, "save_record", save_record)


def test_sync_vocabulary_appends_missing_tags_in_order(user):
    _set_vocabulary(user.id, ["python"])

    added = sync_vocabulary(user.id, ["web", "python", "api", "web"])
    db.session.commit()

    assert added == ["web", "api"]
    assert get_settings(user.id).tag_list == ["python", "web", "api"]


def test_sync_vocabulary_without_settings_row_reports_nothing_added(user):
    db.session.delete(get_settings(user.id))
    db.session.commit()

    assert sync_vocabulary(user.id, ["python"]) == []


def test_sync_vocabulary_failure_does_not_undo_the_bookmark_write(user, monkeypatch):
    bookmark = store.save_record(
        Bookmark(user_id=user.id, url="https://example.com", tags=["new"])
    )
    _fail_saving(monkeypatch, lambda record: isinstance(record, UserSettings))

    assert sync_vocabulary(user.id, bookmark.tags) == []
    db.session.commit()

    assert Bookmark.query.filter_by(user_id=user.id).count() == 1
    assert get_settings(user.id).tag_list == []


def test_vocabulary_update_strips_removed_tags_from_bookmarks(user):
    _set_vocabulary(user.id, ["python", "web", "news"])
    first = _bookmark(user.id, "https://a.example", ["python", "web"])
    second = _bookmark(user.id, "https://b.example", ["news"])
    untouched = _bookmark(user.id, "https://c.example", ["python"])

    result = apply_vocabulary_update(user.id, ["python"])

    assert result.tag_list == ["python"]
    assert result.deleted_tags == ["web", "news"]
    assert result.updated_bookmarks == 2
    assert result.failed_bookmarks == 0
    assert db.session.get(Bookmark, first.id).tags == ["python"]
    assert db.session.get(Bookmark, second.id).tags == []
    assert db.session.get(Bookmark, untouched.id).tags == ["python"]


def test_vocabulary_update_keeps_going_when_one_bookmark_fails(user, monkeypatch):
    _set_vocabulary(user.id, ["python", "web"])
    failing = _bookmark(user.id, "https://a.example", ["web"])
    other = _bookmark(user.id, "https://b.example", ["web", "python"])
    _fail_saving(
        monkeypatch,
        lambda record: isinstance(record, Bookmark) and record.url == "https://a.example",
    )

    result = apply_vocabulary_update(user.id, ["python"])

    assert result.updated_bookmarks == 1
    assert result.failed_bookmarks == 1
    assert get_settings(user.id).tag_list == ["python"]
    assert db.session.get(Bookmark, other.id).tags == ["python"]
    assert db.session.get(Bookmark, failing.id).tags == ["web"]


def test_vocabulary_update_without_removals_leaves_bookmarks_alone(user):
    _set_vocabulary(user.id, ["python"])
    bookmark = _bookmark(user.id, "https://a.example", ["python"])

    result = apply_vocabulary_update(user.id, ["python", "rust"])

    assert result.deleted_tags == []
    assert result.updated_bookmarks == 0
    assert db.session.get(Bookmark, bookmark.id).tags == ["python"]


def test_batch_delete_reports_only_tags_that_were_in_the_vocabulary(user):
    _set_vocabulary(user.id, ["python", "web", "news"])
    bookmark = _bookmark(user.id, "https://a.example", ["web", "news", "python"])

    result = batch_delete_tags(user.id, ["news", "missing", "web"])

    assert result.attempted_tags == ["news", "missing", "web"]
    assert result.deleted_tags == ["web", "news"]
    assert result.updated_bookmarks == 1
    assert get_settings(user.id).tag_list == ["python"]
    assert db.session.get(Bookmark, bookmark.id).tags == ["python"]


def test_batch_delete_with_no_overlap_changes_nothing(user):
    _set_vocabulary(user.id, ["python"])
    bookmark = _bookmark(user.id, "https://a.example", ["python"])

    result = batch_delete_tags(user.id, ["rust"])

    assert result.deleted_tags == []
    assert get_settings(user.id).tag_list == ["python"]
    assert db.session.get(Bookmark, bookmark.id).tags == ["python"]


def test_batch_delete_rejects_empty_input(user):
    with pytest.raises(ValidationError):
        batch_delete_tags(user.id, ["  ", ""])


def test_batch_delete_vocabulary_failure_leaves_bookmarks_untouched(user, monkeypatch):
    _set_vocabulary(user.id, ["python", "web"])
    bookmark = _bookmark(user.id, "https://a.example", ["python", "web"])
    _fail_saving(monkeypatch, lambda record: isinstance(record, UserSettings))

    with pytest.raises(RuntimeError):
        batch_delete_tags(user.id, ["web"])

    assert get_settings(user.id).tag_list == ["python", "web"]
    assert db.session.get(Bookmark, bookmark.id).tags == ["python", "web"]


def test_add_tags_merges_and_grows_the_vocabulary(user):
    _set_vocabulary(user.id, ["python"])
    bookmark = _bookmark(user.id, "https://a.example", ["python"])

    updated = add_tags_to_bookmark(user.id, bookmark.id, " web ; python, api ")

    assert updated.tags == ["python", "web", "api"]
    assert get_settings(user.id).tag_list == ["python", "web", "api"]


def test_add_tags_validates_input_and_ownership(user):
    other = create_user("bob", "secret")
    db.session.commit()
    foreign = _bookmark(other.id, "https://b.example", [])
    own = _bookmark(user.id, "https://a.example", [])

    with pytest.raises(ValidationError):
        add_tags_to_bookmark(user.id, own.id, "   ")
    with pytest.raises(ValidationError):
        add_tags_to_bookmark(user.id, own.id, " , ; ")
    with pytest.raises(NotFoundError):
        add_tags_to_bookmark(user.id, 9999, "python")
    with pytest.raises(ForbiddenError):
        add_tags_to_bookmark(user.id, foreign.id, "python")


def test_stale_settings_write_is_rejected(user):
    settings = get_settings(user.id)
    db.session.execute(
        text("UPDATE user_settings SET version_id = version_id + 1 WHERE id = :id"),
        {"id": settings.id},
    )

    settings.tag_list = ["python"]
    with pytest.raises(StaleDataError):
        db.session.flush()
    db.session.rollback()
