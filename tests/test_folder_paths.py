from shelfmark import store
from shelfmark.extensions import db
from shelfmark.models import Folder, create_user
from shelfmark.services.folder_paths import (
    FolderPathResolver,
    ensure_folder_path,
    is_ancestor,
)


def _folder(user_id, name, parent_id=None):
    return store.save_record(Folder(user_id=user_id, name=name, parent_id=parent_id))


def test_ensure_folder_path_creates_missing_segments(user):
    resolved = ensure_folder_path(user.id, ["Work", "Projects", "Shelfmark"])
    db.session.commit()

    assert resolved.created == ["Work", "Projects", "Shelfmark"]
    leaf = db.session.get(Folder, resolved.folder_id)
    assert leaf.name == "Shelfmark"
    assert leaf.parent.name == "Projects"
    assert leaf.parent.parent.name == "Work"
    assert leaf.parent.parent.parent_id is None


def test_ensure_folder_path_reuses_existing_folders(user):
    work = _folder(user.id, "Work")
    projects = _folder(user.id, "Projects", work.id)
    db.session.commit()

    resolved = ensure_folder_path(user.id, ["Work", "Projects"])

    assert resolved.folder_id == projects.id
    assert resolved.created == []
    assert Folder.query.filter_by(user_id=user.id).count() == 2


def test_blank_segments_are_skipped_and_empty_path_is_root(user):
    resolved = ensure_folder_path(user.id, ["  ", "Work", "", " Notes "])

    assert resolved.created == ["Work", "Notes"]
    assert db.session.get(Folder, resolved.folder_id).name == "Notes"
    assert ensure_folder_path(user.id, []).folder_id is None
    assert ensure_folder_path(user.id, ["", " "]).folder_id is None


def test_one_resolver_does_not_duplicate_shared_prefixes(user):
    resolver = FolderPathResolver(user.id)

    first = resolver.resolve(["Reading", "Python"])
    second = resolver.resolve(["Reading", "Rust"])

    assert first.created == ["Reading", "Python"]
    assert second.created == ["Rust"]
    assert Folder.query.filter_by(user_id=user.id, name="Reading").count() == 1


def test_duplicate_siblings_resolve_to_the_oldest(user):
    older = _folder(user.id, "Inbox")
    _folder(user.id, "Inbox")
    db.session.commit()

    assert ensure_folder_path(user.id, ["Inbox"]).folder_id == older.id


def test_paths_are_scoped_to_the_user(user):
    other = create_user("bob", "secret")
    _folder(other.id, "Work")
    db.session.commit()

    resolved = ensure_folder_path(user.id, ["Work"])

    assert resolved.created == ["Work"]
    assert db.session.get(Folder, resolved.folder_id).user_id == user.id


def test_is_ancestor_walks_up_the_tree(user):
    root = _folder(user.id, "Root")
    child = _folder(user.id, "Child", root.id)
    grandchild = _folder(user.id, "Grandchild", child.id)
    sibling = _folder(user.id, "Sibling")

    assert is_ancestor(root.id, grandchild.id)
    assert is_ancestor(child.id, child.id)
    assert not is_ancestor(grandchild.id, root.id)
    assert not is_ancestor(sibling.id, grandchild.id)
    assert not is_ancestor(root.id, None)
