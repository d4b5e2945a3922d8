from __future__ import annotations

import json
import posixpath
import re
from contextlib import contextmanager
from datetime import datetime, timezone

from flask import current_app

from shelfmark.errors import BlobNotFoundError, NotFoundError
from shelfmark.models import utcnow
from shelfmark.services.restore import RestoreResult, restore_snapshot
from shelfmark.services.snapshot import build_snapshot, parse_snapshot
from shelfmark.services.vocabulary import require_settings
from shelfmark.services.webdav import WebDAVClient, WebDAVConfig


WELL_KNOWN_BACKUP_NAME = "shelfmark_backup.json"
BACKUP_NAME_PATTERN = re.compile(r"^backup_.+\.json$")

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def load_webdav_config(user_id: int) -> WebDAVConfig:
    return WebDAVConfig.from_settings(require_settings(user_id))


@contextmanager
def _client_scope(config: WebDAVConfig, client: WebDAVClient | None):
    if client is not None:
        yield client
        return
    with WebDAVClient(
        config.url,
        config.username,
        config.password,
        timeout=current_app.config["WEBDAV_TIMEOUT"],
    ) as own_client:
        yield own_client


def backup_file_name(moment: datetime | None = None) -> str:
    return f"backup_{(moment or utcnow()).strftime('%Y%m%d_%H%M%S')}.json"


def backup_to_remote(user_id: int, client: WebDAVClient | None = None) -> str:
    """Upload a snapshot of the user's data; returns the uploaded file name."""
    config = load_webdav_config(user_id)
    data = json.dumps(build_snapshot(user_id), indent=2, ensure_ascii=False).encode(
        "utf-8"
    )
    file_name = backup_file_name()
    remote_path = posixpath.join(config.path, file_name)

    with _client_scope(config, client) as dav:
        try:
            dav.mkdir_all(config.path)
        except Exception as exc:
            current_app.logger.warning(
                "Failed to create WebDAV directory %s: %s", config.path, exc
            )
        dav.write(remote_path, data)

    current_app.logger.info(
        "Backed up data for user %s to WebDAV at %s", user_id, remote_path
    )
    return file_name


def fetch_latest_backup(dav: WebDAVClient, directory: str) -> tuple[bytes, str]:
    """Read the well-known backup file, or else the newest ``backup_*.json``."""
    try:
        return (
            dav.read(posixpath.join(directory, WELL_KNOWN_BACKUP_NAME)),
            WELL_KNOWN_BACKUP_NAME,
        )
    except BlobNotFoundError:
        current_app.logger.info(
            "%s not found in %s, searching for the latest backup",
            WELL_KNOWN_BACKUP_NAME,
            directory,
        )

    candidates = [
        entry
        for entry in dav.list_dir(directory)
        if not entry.is_dir and BACKUP_NAME_PATTERN.match(entry.name)
    ]
    if not candidates:
        raise NotFoundError("no backup files found in WebDAV storage")

    latest = max(candidates, key=lambda entry: (entry.mod_time or _OLDEST, entry.name))
    current_app.logger.info("Found latest backup file %s", latest.name)
    return dav.read(posixpath.join(directory, latest.name)), latest.name


def restore_from_remote(
    user_id: int, client: WebDAVClient | None = None
) -> RestoreResult:
    config = load_webdav_config(user_id)
    with _client_scope(config, client) as dav:
        data, source = fetch_latest_backup(dav, config.path)
    return restore_snapshot(user_id, parse_snapshot(data), source=source)
