from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from shelfmark import store
from shelfmark.extensions import db
from shelfmark.models import Folder


@dataclass
class ResolvedPath:
    folder_id: int | None
    created: list[str] = field(default_factory=list)


class FolderPathResolver:
    """Resolves folder name paths for one user, creating missing folders.

    The user's folders are listed once, when the resolver is built. Folders
    created by ``resolve`` are added to the same lookup, so one resolver can
    serve many paths (an import) without duplicating folders.
    """

    def __init__(self, user_id: int):
        self.user_id = user_id
        self._lookup: dict[tuple[str, int | None], int] = {}
        folders = (
            Folder.query.filter_by(user_id=user_id).order_by(Folder.id.asc()).all()
        )
        for folder in folders:
            self._lookup.setdefault((folder.name, folder.parent_id), folder.id)

    def resolve(self, path_parts) -> ResolvedPath:
        result = ResolvedPath(folder_id=None)
        for part in path_parts or []:
            name = str(part or "").strip()
            if not name:
                continue
            key = (name, result.folder_id)
            folder_id = self._lookup.get(key)
            if folder_id is None:
                folder = store.save_record(
                    Folder(user_id=self.user_id, name=name, parent_id=result.folder_id)
                )
                folder_id = folder.id
                self._lookup[key] = folder_id
                result.created.append(name)
                current_app.logger.info(
                    "Created folder %r (id %s) for user %s", name, folder_id, self.user_id
                )
            result.folder_id = folder_id
        return result


def ensure_folder_path(user_id: int, path_parts) -> ResolvedPath:
    return FolderPathResolver(user_id).resolve(path_parts)


def is_ancestor(candidate_id: int, folder_id: int | None) -> bool:
    """True when ``candidate_id`` is ``folder_id`` or one of its ancestors."""
    seen: set[int] = set()
    current = folder_id
    while current is not None and current not in seen:
        if current == candidate_id:
            return True
        seen.add(current)
        folder = db.session.get(Folder, current)
        current = folder.parent_id if folder else None
    return False
