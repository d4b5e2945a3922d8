"""Whole-account data endpoints: export, backup and restore, clear-all, import."""

from __future__ import annotations

from flask import current_app, g, jsonify, request

from shelfmark.api import api_bp
from shelfmark.errors import ServiceError
from shelfmark.services.backup import backup_to_remote, restore_from_remote
from shelfmark.services.bookmark_import import import_bookmarks, parse_bookmark_html
from shelfmark.services.clearing import (
    CLEAR_CONFIRM_PHRASE,
    clear_user_data,
    count_user_data,
    create_clear_token,
    verify_clear_token,
)
from shelfmark.services.common import parse_timestamp
from shelfmark.services.restore import restore_snapshot
from shelfmark.services.security import api_auth_required
from shelfmark.services.snapshot import (
    build_snapshot,
    export_user_data,
    parse_snapshot,
)


@api_bp.route("/sync/export-data", methods=["GET"])
@api_auth_required()
def sync_export_data():
    user = g.api_user
    raw_since = request.args.get("since") or request.args.get("lastSyncTime")
    since = None
    if raw_since:
        since = parse_timestamp(raw_since)
        if since is None:
            return jsonify({"error": "invalid since timestamp"}), 400

    data = export_user_data(user.id, since=since)
    return jsonify({"success": True, "data": data})


@api_bp.route("/backup/snapshot", methods=["GET"])
@api_auth_required()
def backup_snapshot_download():
    user = g.api_user
    response = jsonify(build_snapshot(user.id))
    response.headers["Content-Disposition"] = (
        'attachment; filename="shelfmark_backup.json"'
    )
    return response


@api_bp.route("/backup/restore", methods=["POST"])
@api_auth_required()
def backup_restore_upload():
    user = g.api_user
    upload = request.files.get("file")
    if upload:
        raw = upload.read()
        source = upload.filename or "upload"
    else:
        raw = request.get_data()
        source = "upload"
    if not raw:
        return jsonify({"error": "backup file or JSON body is required"}), 400

    result = restore_snapshot(user.id, parse_snapshot(raw), source=source)
    return jsonify(
        {
            "success": True,
            "message": f"Restore successful from {source}",
            **result.as_dict(),
        }
    )


@api_bp.route("/webdav/backup", methods=["POST"])
@api_auth_required()
def webdav_backup():
    user = g.api_user
    file_name = backup_to_remote(user.id)
    return jsonify(
        {"success": True, "message": "Backup successful", "file_name": file_name}
    )


@api_bp.route("/webdav/restore", methods=["POST"])
@api_auth_required()
def webdav_restore():
    user = g.api_user
    result = restore_from_remote(user.id)
    return jsonify(
        {
            "success": True,
            "message": f"Restore successful from {result.source}",
            **result.as_dict(),
        }
    )


@api_bp.route("/user-data/clear-all/preflight", methods=["POST"])
@api_auth_required()
def clear_all_preflight():
    user = g.api_user
    counts = count_user_data(user.id)
    token = create_clear_token(
        current_app.config["SECRET_KEY"],
        user.id,
        folder_count=counts["folders"],
        bookmark_count=counts["bookmarks"],
    )
    return jsonify(
        {
            "folders": counts["folders"],
            "bookmarks": counts["bookmarks"],
            "confirmation_token": token,
            "required_phrase": CLEAR_CONFIRM_PHRASE,
            "expires_in_seconds": current_app.config["CLEAR_CONFIRM_TTL_SECONDS"],
        }
    )


@api_bp.route("/user-data/clear-all", methods=["POST"])
@api_auth_required()
def clear_all_user_data():
    user = g.api_user
    payload = request.get_json(silent=True) or {}
    if (payload.get("confirm_phrase") or "").strip() != CLEAR_CONFIRM_PHRASE:
        return jsonify({"error": "destructive confirmation failed"}), 400

    token_payload = verify_clear_token(
        current_app.config["SECRET_KEY"],
        payload.get("confirmation_token") or "",
        max_age=current_app.config["CLEAR_CONFIRM_TTL_SECONDS"],
        expected_user_id=user.id,
    )
    if not token_payload:
        return jsonify({"error": "invalid or expired confirmation token"}), 400

    try:
        result = clear_user_data(user.id)
    except ServiceError:
        raise
    except Exception:
        current_app.logger.exception("Clearing data for user %s failed", user.id)
        return jsonify({"error": "failed to clear user data, nothing was deleted"}), 500

    return jsonify(
        {
            "success": True,
            "message": "All bookmarks, folders and tags have been cleared.",
            **result.as_dict(),
        }
    )


@api_bp.route("/import/browser-html", methods=["POST"])
@api_auth_required()
def import_browser_html_api():
    user = g.api_user
    upload = request.files.get("file")
    if not upload:
        return jsonify({"error": "file field is required"}), 400

    html = upload.read().decode("utf-8", errors="ignore")
    entries = parse_bookmark_html(html)
    result = import_bookmarks(user.id, entries)
    return jsonify({"status": "done", "total": len(entries), **result.as_dict()})
