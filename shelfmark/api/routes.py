from __future__ import annotations

from flask import current_app, g, jsonify, request
from flask_login import login_user, logout_user
from sqlalchemy.orm.exc import StaleDataError

from shelfmark import store
from shelfmark.api import api_bp
from shelfmark.errors import NotFoundError, ServiceError, ValidationError
from shelfmark.extensions import db
from shelfmark.models import (
    MASKED_PASSWORD,
    Bookmark,
    Folder,
    User,
    create_user,
    isoformat,
)
from shelfmark.services.common import clean_tags, parse_tags, to_bool
from shelfmark.services.content import fetch_page
from shelfmark.services.favicons import find_favicon
from shelfmark.services.folder_paths import ensure_folder_path, is_ancestor
from shelfmark.services.search import search_bookmarks
from shelfmark.services.security import (
    active_tokens,
    api_auth_required,
    authenticate_credentials,
    issue_api_token,
    revoke_api_token,
)
from shelfmark.services.vocabulary import (
    add_tags_to_bookmark,
    apply_vocabulary_update,
    batch_delete_tags,
    require_settings,
    sync_vocabulary,
)
from shelfmark.services.webdav import WebDAVConfig


SETTINGS_TEXT_FIELDS = ("accent_color", "default_view", "language", "sort_option")
SETTINGS_LIST_FIELDS = ("search_fields", "favorite_folder_ids")
WEBDAV_CONFIG_KEYS = ("url", "username", "password", "path", "auto_sync")


@api_bp.errorhandler(ServiceError)
def handle_service_error(exc: ServiceError):
    db.session.rollback()
    return jsonify({"error": exc.message}), exc.status_code


@api_bp.errorhandler(StaleDataError)
def handle_stale_write(exc: StaleDataError):
    db.session.rollback()
    current_app.logger.warning("Concurrent settings update rejected: %s", exc)
    return jsonify({"error": "settings were changed by another request, retry"}), 409


def _tags_from_payload(value) -> list[str]:
    if isinstance(value, list):
        return clean_tags(value)
    if isinstance(value, str):
        return parse_tags(value)
    return []


def _clean_text(value) -> str | None:
    text = (value or "").strip() if isinstance(value, str) else ""
    return text or None


def _owned_folder_id(user_id: int, raw) -> int | None:
    if raw is None or raw == "":
        return None
    try:
        folder_id = int(raw)
    except (TypeError, ValueError) as exc:
        raise ValidationError("folder id must be an integer") from exc
    if not Folder.query.filter_by(id=folder_id, user_id=user_id).first():
        raise NotFoundError("folder not found")
    return folder_id


def _get_user_bookmark_or_404(user_id: int, bookmark_id: int):
    bookmark = Bookmark.query.filter_by(id=bookmark_id, user_id=user_id).first()
    if not bookmark:
        return None, (jsonify({"error": "bookmark not found"}), 404)
    return bookmark, None


def _get_user_folder_or_404(user_id: int, folder_id: int):
    folder = Folder.query.filter_by(id=folder_id, user_id=user_id).first()
    if not folder:
        return None, (jsonify({"error": "folder not found"}), 404)
    return folder, None


def _fill_from_page(bookmark: Bookmark) -> None:
    page = fetch_page(
        bookmark.url,
        timeout=current_app.config["CONTENT_FETCH_TIMEOUT"],
        max_bytes=current_app.config["CONTENT_MAX_BYTES"],
    )
    if page.error:
        current_app.logger.info(
            "Could not fetch %s for bookmark details: %s", bookmark.url, page.error
        )
    if not bookmark.title:
        bookmark.title = page.og_title or page.title or ""
    if not bookmark.description:
        bookmark.description = page.og_description or page.description


@api_bp.route("/health")
def health():
    return jsonify({"status": "ok", "service": "Shelfmark"})


@api_bp.route("/auth/bootstrap-admin", methods=["POST"])
def bootstrap_admin_api():
    if User.query.count() > 0:
        return jsonify({"error": "bootstrap already completed"}), 409

    payload = request.get_json(silent=True) or {}
    username = (payload.get("username") or "").strip()
    password = payload.get("password") or ""
    if not username or not password:
        return jsonify({"error": "username and password are required"}), 400

    admin = create_user(username, password, is_admin=True)
    db.session.commit()
    return jsonify({"status": "created", "user_id": admin.id}), 201


@api_bp.route("/auth/register", methods=["POST"])
def register_api():
    if not current_app.config.get("ALLOW_REGISTRATION", True):
        return jsonify({"error": "registration is disabled"}), 403

    payload = request.get_json(silent=True) or {}
    username = (payload.get("username") or "").strip()
    password = payload.get("password") or ""
    if not username or not password:
        return jsonify({"error": "username and password are required"}), 400
    if User.query.filter_by(username=username).first():
        return jsonify({"error": "username already exists"}), 409

    user = create_user(username, password)
    db.session.commit()
    current_app.logger.info("Registered user %s (id %s)", username, user.id)
    return jsonify({"status": "created", "user_id": user.id}), 201


@api_bp.route("/auth/token", methods=["POST"])
def create_token_with_credentials():
    payload = request.get_json(silent=True) or {}
    user = authenticate_credentials(payload.get("username"), payload.get("password"))
    if not user:
        return jsonify({"error": "invalid credentials"}), 401

    token, row = issue_api_token(user, payload.get("token_name"))
    return jsonify({"token": token, "token_name": row.name, "user_id": user.id})


@api_bp.route("/auth/tokens", methods=["GET"])
@api_auth_required()
def tokens_list():
    user = g.api_user
    return jsonify(
        {
            "items": [
                {
                    "id": row.id,
                    "name": row.name,
                    "created_at": isoformat(row.created_at),
                    "last_used_at": isoformat(row.last_used_at),
                }
                for row in active_tokens(user.id)
            ]
        }
    )


@api_bp.route("/auth/tokens/<int:token_id>", methods=["DELETE"])
@api_auth_required()
def tokens_revoke(token_id: int):
    user = g.api_user
    revoke_api_token(user.id, token_id)
    return jsonify({"status": "revoked"})


@api_bp.route("/auth/login", methods=["POST"])
def login_api():
    payload = request.get_json(silent=True) or {}
    user = authenticate_credentials(payload.get("username"), payload.get("password"))
    if not user:
        return jsonify({"error": "invalid credentials"}), 401

    login_user(user)
    return jsonify({"status": "logged_in", "user_id": user.id})


@api_bp.route("/auth/logout", methods=["POST"])
@api_auth_required()
def logout_api():
    logout_user()
    return jsonify({"status": "logged_out"})


@api_bp.route("/admin/users", methods=["POST"])
@api_auth_required(admin=True)
def admin_create_user():
    payload = request.get_json(silent=True) or {}
    username = (payload.get("username") or "").strip()
    password = payload.get("password") or ""
    is_admin = to_bool(payload.get("is_admin"), default=False)

    if not username or not password:
        return jsonify({"error": "username and password are required"}), 400
    if User.query.filter_by(username=username).first():
        return jsonify({"error": "username already exists"}), 409

    user = create_user(username, password, is_admin=is_admin)
    db.session.commit()
    return jsonify({"status": "created", "user_id": user.id}), 201


@api_bp.route("/admin/users", methods=["GET"])
@api_auth_required(admin=True)
def admin_list_users():
    users = User.query.order_by(User.created_at.desc()).all()
    return jsonify(
        {
            "items": [
                {
                    "id": user.id,
                    "username": user.username,
                    "is_admin": user.is_admin,
                    "is_active": user.is_active,
                    "created_at": user.created_at.isoformat(),
                }
                for user in users
            ]
        }
    )


@api_bp.route("/folders", methods=["GET"])
@api_auth_required()
def folders_list():
    user = g.api_user
    items = Folder.query.filter_by(user_id=user.id).order_by(Folder.name.asc()).all()
    return jsonify({"items": [item.as_dict() for item in items]})


@api_bp.route("/folders", methods=["POST"])
@api_auth_required()
def folders_create():
    user = g.api_user
    payload = request.get_json(silent=True) or {}
    name = (payload.get("name") or "").strip()
    if not name:
        return jsonify({"error": "folder name is required"}), 400

    parent_id = _owned_folder_id(user.id, payload.get("parent_id"))
    folder = store.save_record(Folder(user_id=user.id, name=name, parent_id=parent_id))
    db.session.commit()
    return jsonify(folder.as_dict()), 201


@api_bp.route("/folders/ensure-path", methods=["POST"])
@api_auth_required()
def folders_ensure_path():
    user = g.api_user
    payload = request.get_json(silent=True) or {}
    path = payload.get("path")
    if isinstance(path, str):
        path = path.split("/")
    if not isinstance(path, list):
        return jsonify({"error": "path must be a list of folder names"}), 400

    resolved = ensure_folder_path(user.id, path)
    db.session.commit()
    return jsonify({"folder_id": resolved.folder_id, "created": resolved.created})


@api_bp.route("/folders/<int:folder_id>", methods=["PATCH"])
@api_auth_required()
def folders_update(folder_id: int):
    user = g.api_user
    folder, error = _get_user_folder_or_404(user.id, folder_id)
    if error:
        return error

    payload = request.get_json(silent=True) or {}
    if "name" in payload:
        folder.name = (payload.get("name") or "").strip() or folder.name
    if "parent_id" in payload:
        parent_id = _owned_folder_id(user.id, payload.get("parent_id"))
        if parent_id is not None and is_ancestor(folder.id, parent_id):
            return (
                jsonify({"error": "a folder cannot be moved into itself or a subfolder"}),
                400,
            )
        folder.parent_id = parent_id
    store.save_record(folder)
    db.session.commit()
    return jsonify(folder.as_dict())


@api_bp.route("/folders/<int:folder_id>", methods=["DELETE"])
@api_auth_required()
def folders_delete(folder_id: int):
    user = g.api_user
    folder, error = _get_user_folder_or_404(user.id, folder_id)
    if error:
        return error

    for bookmark in folder.bookmarks:
        bookmark.folder_id = None
    for child in folder.children:
        child.parent_id = None
    store.delete_record(folder)
    db.session.commit()
    return jsonify({"status": "deleted"})


@api_bp.route("/bookmarks", methods=["GET"])
@api_auth_required()
def bookmarks_list_api():
    user = g.api_user
    folder_id = request.args.get("folder_id", type=int)
    tag = (request.args.get("tag") or "").strip()
    query = Bookmark.query.filter_by(user_id=user.id)
    if folder_id:
        query = query.filter_by(folder_id=folder_id)
    if to_bool(request.args.get("favorite"), default=False):
        query = query.filter_by(is_favorite=True)
    items = query.order_by(Bookmark.updated_at.desc()).all()
    if tag:
        items = [item for item in items if tag in (item.tags or [])]
    return jsonify({"items": [item.as_dict() for item in items]})


@api_bp.route("/bookmarks", methods=["POST"])
@api_auth_required()
def bookmarks_create_api():
    user = g.api_user
    payload = request.get_json(silent=True) or {}
    url = (payload.get("url") or "").strip()
    if not url:
        return jsonify({"error": "url is required"}), 400

    bookmark = Bookmark(
        user_id=user.id,
        folder_id=_owned_folder_id(user.id, payload.get("folder_id")),
        url=url,
        title=(payload.get("title") or "").strip(),
        tags=_tags_from_payload(payload.get("tags")),
        favicon_url=_clean_text(payload.get("favicon_url")),
        description=_clean_text(payload.get("description")),
        img=_clean_text(payload.get("img")),
        is_favorite=to_bool(payload.get("is_favorite"), default=False),
        chrome_bookmark_id=_clean_text(payload.get("chrome_bookmark_id")),
    )
    if to_bool(payload.get("fetch_content"), default=False) and (
        not bookmark.title or not bookmark.description
    ):
        _fill_from_page(bookmark)
    store.save_record(bookmark)
    sync_vocabulary(user.id, bookmark.tags)
    db.session.commit()
    return jsonify(bookmark.as_dict()), 201


@api_bp.route("/bookmarks/<int:bookmark_id>", methods=["GET"])
@api_auth_required()
def bookmarks_get_api(bookmark_id: int):
    user = g.api_user
    bookmark, error = _get_user_bookmark_or_404(user.id, bookmark_id)
    if error:
        return error
    return jsonify(bookmark.as_dict())


@api_bp.route("/bookmarks/<int:bookmark_id>", methods=["PATCH"])
@api_auth_required()
def bookmarks_update_api(bookmark_id: int):
    user = g.api_user
    bookmark, error = _get_user_bookmark_or_404(user.id, bookmark_id)
    if error:
        return error

    payload = request.get_json(silent=True) or {}
    if "url" in payload:
        bookmark.url = (payload.get("url") or "").strip() or bookmark.url
    if "title" in payload:
        bookmark.title = (payload.get("title") or "").strip()
    for field in ["favicon_url", "description", "img", "chrome_bookmark_id"]:
        if field in payload:
            setattr(bookmark, field, _clean_text(payload.get(field)))
    if "is_favorite" in payload:
        bookmark.is_favorite = to_bool(payload.get("is_favorite"), default=False)
    if "folder_id" in payload:
        bookmark.folder_id = _owned_folder_id(user.id, payload.get("folder_id"))
    if "tags" in payload:
        bookmark.tags = _tags_from_payload(payload.get("tags"))
    if to_bool(payload.get("fetch_content"), default=False):
        _fill_from_page(bookmark)
    store.save_record(bookmark)
    if "tags" in payload:
        sync_vocabulary(user.id, bookmark.tags)
    db.session.commit()
    return jsonify(bookmark.as_dict())


@api_bp.route("/bookmarks/<int:bookmark_id>", methods=["DELETE"])
@api_auth_required()
def bookmarks_delete_api(bookmark_id: int):
    user = g.api_user
    bookmark, error = _get_user_bookmark_or_404(user.id, bookmark_id)
    if error:
        return error

    store.delete_record(bookmark)
    db.session.commit()
    return jsonify({"status": "deleted"})


@api_bp.route("/bookmarks/<int:bookmark_id>/tags", methods=["POST"])
@api_auth_required()
def bookmarks_add_tags_api(bookmark_id: int):
    user = g.api_user
    payload = request.get_json(silent=True) or {}
    tags_input = payload.get("tags_input", payload.get("tags"))
    if isinstance(tags_input, list):
        tags_input = ",".join(str(item) for item in tags_input if item is not None)
    if not isinstance(tags_input, str):
        return jsonify({"error": "tags_input must be a string"}), 400

    bookmark = add_tags_to_bookmark(user.id, bookmark_id, tags_input)
    return jsonify(
        {
            "success": True,
            "message": "Tags added successfully.",
            "bookmark": bookmark.as_dict(),
        }
    )


@api_bp.route("/settings", methods=["GET"])
@api_auth_required()
def settings_get_api():
    user = g.api_user
    return jsonify(require_settings(user.id).as_dict())


def _apply_webdav_config(settings, raw) -> None:
    if raw is None:
        settings.webdav_config = None
        return
    if not isinstance(raw, dict):
        raise ValidationError("webdav_config must be an object")

    config = {key: raw[key] for key in WEBDAV_CONFIG_KEYS if key in raw}
    existing = settings.webdav_config or {}
    if config.get("password") in (None, "", MASKED_PASSWORD):
        config["password"] = existing.get("password") or ""
    config["auto_sync"] = to_bool(config.get("auto_sync"), default=False)
    settings.webdav_config = config
    WebDAVConfig.from_settings(settings)


@api_bp.route("/settings", methods=["PATCH"])
@api_auth_required()
def settings_update_api():
    user = g.api_user
    settings = require_settings(user.id)
    payload = request.get_json(silent=True) or {}

    if "dark_mode" in payload:
        settings.dark_mode = to_bool(payload.get("dark_mode"), default=False)
    for field in SETTINGS_TEXT_FIELDS:
        if field in payload:
            setattr(settings, field, _clean_text(payload.get(field)))
    for field in SETTINGS_LIST_FIELDS:
        if field in payload:
            value = payload.get(field)
            if not isinstance(value, list):
                return jsonify({"error": f"{field} must be a list"}), 400
            setattr(settings, field, list(value))
    if "webdav_config" in payload:
        _apply_webdav_config(settings, payload.get("webdav_config"))

    response = {"deleted_tags": [], "updated_bookmarks": 0}
    if "tag_list" in payload:
        tag_list = payload.get("tag_list")
        if not isinstance(tag_list, list):
            return jsonify({"error": "tag_list must be a list"}), 400
        update = apply_vocabulary_update(user.id, tag_list)
        response["deleted_tags"] = update.deleted_tags
        response["updated_bookmarks"] = update.updated_bookmarks
    else:
        store.save_record(settings)
        db.session.commit()

    response["settings"] = settings.as_dict()
    return jsonify(response)


@api_bp.route("/tags", methods=["GET"])
@api_auth_required()
def tags_list():
    user = g.api_user
    return jsonify({"items": list(require_settings(user.id).tag_list or [])})


@api_bp.route("/tags/batch-delete", methods=["POST"])
@api_auth_required()
def tags_batch_delete():
    user = g.api_user
    payload = request.get_json(silent=True) or {}
    tags = payload.get("tags")
    if not isinstance(tags, list) or not tags:
        return jsonify({"error": "tags list cannot be empty"}), 400

    result = batch_delete_tags(user.id, tags)
    if result.deleted_tags:
        message = "Tags batch deleted successfully."
    else:
        message = "No tags were deleted; none of them were in the tag list."
    return jsonify(
        {
            "success": True,
            "message": message,
            "attempted_tags": result.attempted_tags,
            "deleted_tags_from_global_list": result.deleted_tags,
            "updated_bookmarks": result.updated_bookmarks,
        }
    )


@api_bp.route("/search", methods=["GET"])
@api_auth_required()
def search_api():
    user = g.api_user
    query = (request.args.get("q") or "").strip()
    if not query:
        return jsonify({"items": []})

    settings = require_settings(user.id)
    source = (
        Bookmark.query.filter_by(user_id=user.id)
        .order_by(Bookmark.updated_at.desc())
        .all()
    )
    ranked = search_bookmarks(
        source,
        query,
        limit=request.args.get("limit", type=int) or 50,
        fields=settings.search_fields,
    )
    return jsonify(
        {
            "items": [
                {
                    **item["bookmark"].as_dict(),
                    "score": item["score"],
                    "match_reasons": item["reasons"],
                }
                for item in ranked
            ]
        }
    )


@api_bp.route("/pages/preview", methods=["POST"])
@api_auth_required()
def page_preview_api():
    payload = request.get_json(silent=True) or {}
    url = (payload.get("url") or "").strip()
    if not url:
        return jsonify({"error": "url is required"}), 400

    page = fetch_page(
        url,
        timeout=current_app.config["CONTENT_FETCH_TIMEOUT"],
        max_bytes=current_app.config["CONTENT_MAX_BYTES"],
    )
    return jsonify(page.as_dict())


@api_bp.route("/favicon", methods=["POST"])
@api_auth_required()
def favicon_api():
    payload = request.get_json(silent=True) or {}
    url = payload.get("url") or ""
    favicon_url = find_favicon(url, timeout=current_app.config["FAVICON_TIMEOUT"])
    if not favicon_url:
        return jsonify({"error": "no favicon found", "requested_url": url}), 404
    return jsonify({"requested_url": url, "favicon_url": favicon_url})
