from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import cast

from bs4 import BeautifulSoup, Tag
from flask import current_app

from shelfmark import store
from shelfmark.extensions import db
from shelfmark.models import Bookmark
from shelfmark.services.common import parse_tags
from shelfmark.services.folder_paths import FolderPathResolver
from shelfmark.services.vocabulary import sync_vocabulary


SKIPPED_SCHEMES = ("javascript:", "place:", "data:")


@dataclass
class ImportedBookmark:
    title: str
    url: str
    folder_path: list[str]
    tags: list[str] = field(default_factory=list)
    description: str | None = None
    created_at: datetime | None = None


@dataclass
class ImportResult:
    created: int = 0
    skipped: int = 0
    failed: int = 0
    created_folders: int = 0
    added_tags: list[str] = field(default_factory=list)

    def as_dict(self):
        return {
            "created": self.created,
            "skipped": self.skipped,
            "failed": self.failed,
            "created_folders": self.created_folders,
            "added_tags": self.added_tags,
        }


def _iter_dt_entries(dl: Tag) -> list[Tag]:
    entries: list[Tag] = []
    for dt in dl.find_all("dt"):
        if not isinstance(dt, Tag):
            continue
        parent_dl = dt.find_parent("dl")
        if parent_dl is dl:
            entries.append(cast(Tag, dt))
    return entries


def _find_nested_dl(dt: Tag) -> Tag | None:
    nested = dt.find("dl")
    if isinstance(nested, Tag):
        return nested

    sibling = dt.next_sibling
    while sibling is not None:
        if isinstance(sibling, Tag):
            name = (sibling.name or "").lower()
            if name == "dl":
                return sibling
            if name == "dd":
                nested = sibling.find("dl")
                if isinstance(nested, Tag):
                    return nested
            if name == "dt":
                return None
        sibling = sibling.next_sibling
    return None


def _find_anchor_in_dt(dt: Tag) -> Tag | None:
    for anchor in dt.find_all("a"):
        if isinstance(anchor, Tag) and anchor.find_parent("dt") is dt:
            return anchor
    return None


def _find_folder_in_dt(dt: Tag) -> Tag | None:
    for folder in dt.find_all(["h3", "h2", "h1"]):
        if isinstance(folder, Tag) and folder.find_parent("dt") is dt:
            return folder
    return None


def _find_description(dt: Tag) -> str | None:
    # lxml nests <DD> inside the preceding <DT> or leaves it as a sibling.
    dd = dt.find("dd")
    if not (isinstance(dd, Tag) and dd.find_parent("dt") is dt):
        dd = None
        sibling = dt.next_sibling
        while sibling is not None:
            if isinstance(sibling, Tag):
                if (sibling.name or "").lower() == "dd":
                    dd = sibling
                break
            sibling = sibling.next_sibling
    if dd is None:
        return None
    text = " ".join(
        part.strip() for part in dd.find_all(string=True, recursive=False) if part.strip()
    )
    return text or None


def _parse_add_date(value) -> datetime | None:
    if not isinstance(value, str) or not value.strip().isdigit():
        return None
    try:
        return datetime.fromtimestamp(int(value.strip()), tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def _parse_dl(dl: Tag, folder_path: list[str], out: list[ImportedBookmark]) -> None:
    for dt in _iter_dt_entries(dl):
        anchor = _find_anchor_in_dt(dt)
        if isinstance(anchor, Tag):
            href_value = anchor.get("href")
            href = href_value.strip() if isinstance(href_value, str) else ""
        else:
            href = ""

        if href and not href.lower().startswith(SKIPPED_SCHEMES):
            text = anchor.get_text(strip=True) if isinstance(anchor, Tag) else ""
            tags_value = anchor.get("tags")
            out.append(
                ImportedBookmark(
                    title=text.strip(),
                    url=href,
                    folder_path=folder_path.copy(),
                    tags=parse_tags(tags_value) if isinstance(tags_value, str) else [],
                    description=_find_description(dt),
                    created_at=_parse_add_date(anchor.get("add_date")),
                )
            )

        nested_dl = _find_nested_dl(dt)
        folder = _find_folder_in_dt(dt)
        if folder is None and nested_dl is not None:
            for heading in dt.find_all(["h3", "h2", "h1"]):
                if isinstance(heading, Tag):
                    folder = heading
                    break

        if folder and nested_dl:
            name = folder.get_text(strip=True)
            _parse_dl(nested_dl, folder_path + [name], out)


def parse_bookmark_html(html: str) -> list[ImportedBookmark]:
    soup = BeautifulSoup(html, "lxml")
    root = soup.find("dl")
    if not isinstance(root, Tag):
        return []

    bookmarks: list[ImportedBookmark] = []
    _parse_dl(root, [], bookmarks)
    return [bm for bm in bookmarks if bm.url]


def import_bookmarks(user_id: int, entries: list[ImportedBookmark]) -> ImportResult:
    """Create bookmarks for ``entries`` whose url the user does not have yet.

    Folder paths are resolved through one resolver for the whole import. A
    bookmark that fails to save is counted and skipped.
    """
    result = ImportResult()
    resolver = FolderPathResolver(user_id)
    known_urls = {
        url for (url,) in db.session.query(Bookmark.url).filter_by(user_id=user_id)
    }
    imported_tags: list[str] = []

    for entry in entries:
        if entry.url in known_urls:
            result.skipped += 1
            continue

        resolved = resolver.resolve(entry.folder_path)
        result.created_folders += len(resolved.created)
        try:
            with db.session.begin_nested():
                bookmark = Bookmark(
                    user_id=user_id,
                    folder_id=resolved.folder_id,
                    url=entry.url,
                    title=entry.title or entry.url,
                    tags=list(entry.tags),
                    description=entry.description,
                )
                if entry.created_at is not None:
                    bookmark.created_at = entry.created_at
                store.save_record(bookmark)
        except Exception as exc:
            result.failed += 1
            current_app.logger.warning(
                "Import: failed to save bookmark %s (user %s): %s",
                entry.url,
                user_id,
                exc,
            )
            continue

        known_urls.add(entry.url)
        result.created += 1
        imported_tags.extend(entry.tags)

    result.added_tags = sync_vocabulary(user_id, imported_tags)
    db.session.commit()
    current_app.logger.info(
        "Import for user %s: %s created, %s skipped, %s failed",
        user_id,
        result.created,
        result.skipped,
        result.failed,
    )
    return result
