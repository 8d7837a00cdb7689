import hashlib
import secrets
from datetime import timedelta

from flask import current_app, request

from models import db
from models.auth_token import AuthToken
from models.db import utcnow


def _hash_token(token: str) -> str:
    # SHA-256 is fine for hashing random bearer tokens
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def issue_token(user_id: int) -> str:
    """
    Creates an API token and returns the RAW value (shown to the client once).
    Only the hash is stored in DB.
    """
    raw_token = secrets.token_urlsafe(32)
    lifetime = current_app.config.get("TOKEN_LIFETIME_SECONDS", 8 * 60 * 60)

    row = AuthToken(
        user_id=user_id,
        token_hash=_hash_token(raw_token),
        expires_at=utcnow() + timedelta(seconds=lifetime),
    )
    db.session.add(row)
    db.session.commit()
    return raw_token


def _bearer_from_request():
    header = request.headers.get("Authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


def get_token_from_request():
    raw_token = _bearer_from_request()
    if not raw_token:
        return None

    row = db.session.execute(
        db.select(AuthToken).filter_by(token_hash=_hash_token(raw_token), revoked=False)
    ).scalar_one_or_none()
    if row is None or row.expires_at <= utcnow():
        return None
    return row


def revoke_token(raw_token: str) -> bool:
    if not raw_token:
        return False
    row = db.session.execute(
        db.select(AuthToken).filter_by(token_hash=_hash_token(raw_token))
    ).scalar_one_or_none()
    if row is None:
        return False
    row.revoked = True
    db.session.commit()
    return True
