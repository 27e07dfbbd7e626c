# Overview: Service-layer operations for auth; password hashing and credential checks.

"""
Authentication Service

- Passwords hashed with bcrypt; cost factor from BCRYPT_ROUNDS
- Minimum 6 characters
- Login by username or email; inactive users cannot log in
- Session tokens managed separately (see session_service.py)
"""

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import User
from bizdesk.time_utils import utcnow

MIN_PASSWORD_LENGTH = 6


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


class AuthorizationError(Exception):
    """Raised when the acting user may not perform an operation (403)."""
    pass


def validate_password_strength(password: str) -> None:
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if password.strip() != password:
        raise PasswordValidationError("Password must not start or end with whitespace")


def hash_password(password: str) -> str:
    """Validate strength, then hash with bcrypt."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=current_app.config.get("BCRYPT_ROUNDS", 12))
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe check; malformed hashes never match."""
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def authenticate(username: str, password: str) -> User | None:
    """
    Returns the active User for valid credentials, None otherwise.
    Updates last_login_at on success.
    """
    if not username or not password:
        return None

    user = db.session.query(User).filter(
        db.or_(User.username == username, User.email == username),
        User.is_active.is_(True),
    ).first()

    if not user:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None


def change_password(user: User, current_password: str, new_password: str) -> None:
    if not verify_password(current_password, user.password_hash):
        raise AuthorizationError("Current password is incorrect")
    user.password_hash = hash_password(new_password)
    db.session.commit()


def ensure_default_admin() -> User | None:
    """
    Create the bootstrap admin (DEFAULT_ADMIN_USERNAME / DEFAULT_ADMIN_PASSWORD)
    when no admin exists yet. Returns the created user, or None.
    """
    existing = db.session.query(User).filter_by(role="admin").first()
    if existing:
        return None

    username = current_app.config["DEFAULT_ADMIN_USERNAME"]
    user = User(
        username=username,
        full_name="Administrator",
        password_hash=hash_password(current_app.config["DEFAULT_ADMIN_PASSWORD"]),
        role="admin",
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    current_app.logger.warning("Created default admin user '%s'; change its password", username)
    return user
