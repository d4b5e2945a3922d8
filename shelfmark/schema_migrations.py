from __future__ import annotations

from flask import current_app
from sqlalchemy import inspect, text

from shelfmark.extensions import db
from shelfmark.models import User, UserSettings


BOOKMARK_COLUMNS = {
    "description": "TEXT",
    "img": "TEXT",
    "chrome_bookmark_id": "VARCHAR(120)",
}


def add_missing_bookmark_columns() -> list[str]:
    """Add bookmark columns that databases created by older releases lack."""
    engine = db.engine
    if engine.dialect.name != "sqlite":
        return []

    inspector = inspect(engine)
    if not inspector.has_table("bookmarks"):
        return []

    existing = {column["name"] for column in inspector.get_columns("bookmarks")}
    added = []
    for name, column_type in BOOKMARK_COLUMNS.items():
        if name in existing:
            continue
        db.session.execute(text(f"ALTER TABLE bookmarks ADD COLUMN {name} {column_type}"))
        added.append(name)
    if added:
        db.session.commit()
        current_app.logger.info("Added bookmark columns: %s", ", ".join(added))
    return added


def backfill_user_settings() -> int:
    """Give every user without one an empty settings row."""
    missing = (
        User.query.outerjoin(UserSettings, UserSettings.user_id == User.id)
        .filter(UserSettings.id.is_(None))
        .all()
    )
    for user in missing:
        db.session.add(UserSettings(user_id=user.id, tag_list=[]))
    if missing:
        db.session.commit()
        current_app.logger.info("Created settings for %s users", len(missing))
    return len(missing)


def run_schema_migrations() -> None:
    add_missing_bookmark_columns()
    backfill_user_settings()
