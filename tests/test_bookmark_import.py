from datetime import datetime, timezone

from shelfmark import store
from shelfmark.extensions import db
from shelfmark.models import Bookmark, Folder
from shelfmark.services.bookmark_import import import_bookmarks, parse_bookmark_html
from shelfmark.services.vocabulary import get_settings


NESTED_EXPORT = """
<!DOCTYPE NETSCAPE-Bookmark-file-1>
<DL><p>
  <DT><H3>Root Folder</H3>
  <DL><p>
    <DT><A HREF="https://example.com/a" TAGS="python,web">A</A>
    <DT><H3>Inner Folder</H3>
    <DL><p>
      <DT><A HREF="https://example.com/b">B</A>
      <DT><A HREF="https://example.com/c#frag" TAGS="web">C</A>
    </DL><p>
  </DL><p>
  <DT><A HREF="https://example.com/root">Root Link</A>
</DL><p>
"""


def test_parse_bookmark_html_handles_nested_netscape_structure():
    rows = parse_bookmark_html(NESTED_EXPORT)
    urls = [row.url for row in rows]
    assert urls == [
        "https://example.com/a",
        "https://example.com/b",
        "https://example.com/c#frag",
        "https://example.com/root",
    ]

    assert rows[0].folder_path == ["Root Folder"]
    assert rows[1].folder_path == ["Root Folder", "Inner Folder"]
    assert rows[2].folder_path == ["Root Folder", "Inner Folder"]
    assert rows[3].folder_path == []


def test_parse_bookmark_html_keeps_empty_title_when_anchor_has_no_text():
    html = """
<!DOCTYPE NETSCAPE-Bookmark-file-1>
<DL><p>
  <DT><A HREF="https://example.com/no-title"></A>
</DL><p>
"""

    rows = parse_bookmark_html(html)
    assert len(rows) == 1
    assert rows[0].url == "https://example.com/no-title"
    assert rows[0].title == ""


def test_parse_bookmark_html_reads_tags_dates_and_descriptions():
    html = """
<!DOCTYPE NETSCAPE-Bookmark-file-1>
<DL><p>
  <DT><A HREF="https://example.com/a" ADD_DATE="1700000000" TAGS="python; web ,python">A</A>
  <DD>Notes about A
  <DT><A HREF="https://example.com/b">B</A>
  <DT><A HREF="javascript:alert(1)">Bookmarklet</A>
</DL><p>
"""

    rows = parse_bookmark_html(html)

    assert [row.url for row in rows] == ["https://example.com/a", "https://example.com/b"]
    assert rows[0].tags == ["python", "web"]
    assert rows[0].created_at == datetime.fromtimestamp(1700000000, tz=timezone.utc)
    assert rows[0].description == "Notes about A"
    assert rows[1].tags == []
    assert rows[1].description is None
    assert rows[1].created_at is None


def test_import_creates_folders_once_and_skips_known_urls(user):
    store.save_record(Bookmark(user_id=user.id, url="https://example.com/b", tags=[]))
    db.session.commit()

    result = import_bookmarks(user.id, parse_bookmark_html(NESTED_EXPORT))

    assert result.created == 3
    assert result.skipped == 1
    assert result.failed == 0
    assert result.created_folders == 2
    assert Folder.query.filter_by(user_id=user.id).count() == 2
    inner = Folder.query.filter_by(user_id=user.id, name="Inner Folder").one()
    filed = Bookmark.query.filter_by(user_id=user.id, url="https://example.com/c#frag").one()
    assert filed.folder_id == inner.id
    assert filed.tags == ["web"]
    untitled_root = Bookmark.query.filter_by(
        user_id=user.id, url="https://example.com/root"
    ).one()
    assert untitled_root.folder_id is None
    assert get_settings(user.id).tag_list == ["python", "web"]


def test_importing_the_same_file_twice_adds_nothing(user):
    entries = parse_bookmark_html(NESTED_EXPORT)
    import_bookmarks(user.id, entries)

    second = import_bookmarks(user.id, entries)

    assert second.created == 0
    assert second.skipped == 4
    assert second.created_folders == 0
    assert Bookmark.query.filter_by(user_id=user.id).count() == 4
