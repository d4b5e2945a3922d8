from datetime import datetime, timezone

from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

from shelfmark.extensions import db, login_manager


MASKED_PASSWORD = "******"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(120), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    is_admin = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    bookmarks = db.relationship("Bookmark", backref="user", lazy=True)
    folders = db.relationship("Folder", backref="user", lazy=True)
    settings = db.relationship("UserSettings", backref="user", uselist=False)

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)


@login_manager.user_loader
def load_user(user_id: str):
    return db.session.get(User, int(user_id))


class Folder(db.Model):
    __tablename__ = "folders"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=False, index=True
    )
    name = db.Column(db.String(255), nullable=False)
    parent_id = db.Column(db.Integer, db.ForeignKey("folders.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    children = db.relationship("Folder", backref=db.backref("parent", remote_side=[id]))

    __table_args__ = (
        db.Index("ix_folder_user_name_parent", "user_id", "name", "parent_id"),
    )

    def as_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "parent_id": self.parent_id,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }


class Bookmark(db.Model):
    __tablename__ = "bookmarks"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=False, index=True
    )
    folder_id = db.Column(
        db.Integer, db.ForeignKey("folders.id"), nullable=True, index=True
    )

    url = db.Column(db.Text, nullable=False)
    title = db.Column(db.String(512), nullable=False, default="")
    tags = db.Column(db.JSON, nullable=False, default=list)
    favicon_url = db.Column(db.Text, nullable=True)
    description = db.Column(db.Text, nullable=True)
    img = db.Column(db.Text, nullable=True)
    is_favorite = db.Column(db.Boolean, nullable=False, default=False)
    chrome_bookmark_id = db.Column(db.String(120), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    folder = db.relationship("Folder", backref="bookmarks")

    __table_args__ = (
        db.Index("ix_bookmark_user_url", "user_id", "url"),
        db.Index("ix_bookmark_user_updated", "user_id", "updated_at"),
    )

    def as_dict(self):
        return {
            "id": self.id,
            "url": self.url,
            "title": self.title,
            "folder_id": self.folder_id,
            "folder_name": self.folder.name if self.folder else None,
            "tags": list(self.tags or []),
            "favicon_url": self.favicon_url,
            "description": self.description,
            "img": self.img,
            "is_favorite": self.is_favorite,
            "chrome_bookmark_id": self.chrome_bookmark_id,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }


class UserSettings(db.Model):
    __tablename__ = "user_settings"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True, index=True
    )
    tag_list = db.Column(db.JSON, nullable=False, default=list)
    dark_mode = db.Column(db.Boolean, nullable=False, default=False)
    accent_color = db.Column(db.String(64), nullable=True)
    default_view = db.Column(db.String(64), nullable=True)
    language = db.Column(db.String(16), nullable=True)
    sort_option = db.Column(db.String(64), nullable=True)
    search_fields = db.Column(db.JSON, nullable=False, default=list)
    favorite_folder_ids = db.Column(db.JSON, nullable=False, default=list)
    webdav_config = db.Column(db.JSON, nullable=True)
    version_id = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __mapper_args__ = {"version_id_col": version_id}

    def as_dict(self):
        webdav = dict(self.webdav_config or {})
        if webdav.get("password"):
            webdav["password"] = MASKED_PASSWORD
        return {
            "tag_list": list(self.tag_list or []),
            "dark_mode": self.dark_mode,
            "accent_color": self.accent_color,
            "default_view": self.default_view,
            "language": self.language,
            "sort_option": self.sort_option,
            "search_fields": list(self.search_fields or []),
            "favorite_folder_ids": list(self.favorite_folder_ids or []),
            "webdav_config": webdav or None,
            "updated_at": isoformat(self.updated_at),
        }


class ApiToken(db.Model):
    __tablename__ = "api_tokens"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=False, index=True
    )
    name = db.Column(db.String(120), nullable=False)
    token_hash = db.Column(db.String(128), nullable=False, unique=True)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    user = db.relationship("User", backref="api_tokens")


def create_user(username: str, password: str, is_admin: bool = False) -> User:
    """Create a user together with the settings row that holds its vocabulary."""
    user = User(username=username, is_admin=is_admin, is_active=True)
    user.set_password(password)
    db.session.add(user)
    db.session.flush()
    db.session.add(UserSettings(user_id=user.id, tag_list=[]))
    return user
