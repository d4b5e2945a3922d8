"""Credentials and API tokens.

Tokens are shown to the caller once and stored only as a sha256 digest. A
request is authenticated by a Flask-Login session or by an unrevoked bearer
token belonging to an active user.
"""

import hashlib
import secrets
from functools import wraps

from flask import g, jsonify, request
from flask_login import current_user

from shelfmark.errors import NotFoundError
from shelfmark.extensions import db
from shelfmark.models import ApiToken, User, utcnow


TOKEN_PREFIX = "sm"
DEFAULT_TOKEN_NAME = "Shelfmark API Token"


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def authenticate_credentials(username: str, password: str) -> User | None:
    user = User.query.filter_by(username=(username or "").strip()).first()
    if not user or not user.is_active or not user.check_password(password or ""):
        return None
    return user


def issue_api_token(user: User, name: str | None = None) -> tuple[str, ApiToken]:
    """Create a token for ``user``; the plain value is only returned here."""
    token = f"{TOKEN_PREFIX}_{secrets.token_urlsafe(32)}"
    row = ApiToken(
        user_id=user.id,
        name=(name or "").strip() or DEFAULT_TOKEN_NAME,
        token_hash=hash_token(token),
    )
    db.session.add(row)
    db.session.commit()
    return token, row


def active_tokens(user_id: int) -> list[ApiToken]:
    return (
        ApiToken.query.filter_by(user_id=user_id)
        .filter(ApiToken.revoked_at.is_(None))
        .order_by(ApiToken.created_at.desc())
        .all()
    )


def revoke_api_token(user_id: int, token_id: int) -> ApiToken:
    row = ApiToken.query.filter_by(id=token_id, user_id=user_id).first()
    if row is None:
        raise NotFoundError("token not found")
    if row.revoked_at is None:
        row.revoked_at = utcnow()
        db.session.commit()
    return row


def bearer_token_from_request() -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    return auth_header.removeprefix("Bearer ").strip() or None


def user_for_token(token: str) -> User | None:
    row = ApiToken.query.filter_by(token_hash=hash_token(token)).first()
    if not row or row.revoked_at is not None or not row.user.is_active:
        return None
    row.last_used_at = utcnow()
    db.session.commit()
    return row.user


def get_authenticated_api_user():
    if current_user.is_authenticated:
        return current_user
    token = bearer_token_from_request()
    return user_for_token(token) if token else None


def api_auth_required(admin=False):
    def decorator(func):
        @wraps(func)
        def wrapped(*args, **kwargs):
            user = get_authenticated_api_user()
            if not user:
                return jsonify({"error": "authentication required"}), 401
            if admin and not user.is_admin:
                return jsonify({"error": "admin access required"}), 403
            g.api_user = user
            return func(*args, **kwargs)

        return wrapped

    return decorator
