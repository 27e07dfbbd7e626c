# Overview: Service-layer operations for user accounts.

"""
User management rules

- Only admins create or delete users, or change role / is_active.
- A non-admin may update only their own profile.
- Nobody can delete their own account.
- The last active admin can be neither deleted, deactivated nor demoted.
"""

from __future__ import annotations

from sqlalchemy import func, or_

from ..extensions import db
from ..models import User, Order, StockTransaction
from ..validation import ConflictError, NotFoundError
from .auth_service import AuthorizationError, hash_password
from .pagination import paginate, like_pattern
from .session_service import revoke_all_user_sessions

USER_PROFILE_FIELDS = {"full_name", "email", "phone"}
USER_ADMIN_FIELDS = USER_PROFILE_FIELDS | {"username", "role", "is_active"}


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def _active_admin_count() -> int:
    return (
        db.session.query(func.count(User.id))
        .filter(User.role == "admin", User.is_active.is_(True))
        .scalar()
        or 0
    )


def _normalize(patch: dict) -> dict:
    if patch.get("email") == "":
        patch = {**patch, "email": None}
    return patch


def _ensure_unique(username: str | None, email: str | None, exclude_id: int | None = None) -> None:
    if username:
        query = db.session.query(User).filter(func.lower(User.username) == username.lower())
        if exclude_id is not None:
            query = query.filter(User.id != exclude_id)
        if query.first():
            raise ConflictError("Username already exists")
    if email:
        query = db.session.query(User).filter(func.lower(User.email) == email.lower())
        if exclude_id is not None:
            query = query.filter(User.id != exclude_id)
        if query.first():
            raise ConflictError("Email already exists")


def list_users(
    *,
    page: int = 1,
    limit: int = 10,
    search: str | None = None,
    role: str | None = None,
    is_active: bool | None = None,
) -> dict:
    query = db.session.query(User)
    if search:
        pattern = like_pattern(search)
        query = query.filter(or_(
            User.username.ilike(pattern, escape="\\"),
            User.full_name.ilike(pattern, escape="\\"),
            User.email.ilike(pattern, escape="\\"),
            User.phone.ilike(pattern, escape="\\"),
        ))
    if role:
        query = query.filter(User.role == role)
    if is_active is not None:
        query = query.filter(User.is_active.is_(is_active))

    query = query.order_by(User.created_at.desc(), User.id.desc())
    return paginate(query, page=page, limit=limit)


def create_user(*, patch: dict, password: str, actor: User) -> User:
    if not actor.is_admin:
        raise AuthorizationError("Only admins can create users")

    patch = _normalize(patch)
    _ensure_unique(patch.get("username"), patch.get("email"))

    user = User(role="employee", is_active=True)
    for key, value in patch.items():
        if key in USER_ADMIN_FIELDS:
            setattr(user, key, value)
    user.password_hash = hash_password(password)

    db.session.add(user)
    db.session.commit()
    return user


def update_user(*, user_id: int, patch: dict, actor: User, password: str | None = None) -> User:
    patch = _normalize(patch)
    user = get_user(user_id)

    if not actor.is_admin:
        if actor.id != user.id:
            raise AuthorizationError("You can only update your own profile")
        forbidden = sorted(set(patch) - USER_PROFILE_FIELDS)
        if forbidden:
            raise AuthorizationError(f"Not allowed to change: {', '.join(forbidden)}")

    _ensure_unique(patch.get("username"), patch.get("email"), exclude_id=user.id)

    loses_admin = user.role == "admin" and user.is_active and (
        patch.get("role", "admin") != "admin" or patch.get("is_active", True) is False
    )
    if loses_admin and _active_admin_count() <= 1:
        raise ConflictError("Cannot deactivate or demote the last active admin")

    allowed = USER_ADMIN_FIELDS if actor.is_admin else USER_PROFILE_FIELDS
    for key, value in patch.items():
        if key in allowed:
            setattr(user, key, value)

    if password:
        user.password_hash = hash_password(password)

    db.session.commit()

    if patch.get("is_active") is False or password:
        revoke_all_user_sessions(user.id, reason="Account updated")
    return user


def delete_user(*, user_id: int, actor: User) -> None:
    if not actor.is_admin:
        raise AuthorizationError("Only admins can delete users")

    user = get_user(user_id)
    if user.id == actor.id:
        raise ConflictError("You cannot delete your own account")
    if user.role == "admin" and user.is_active and _active_admin_count() <= 1:
        raise ConflictError("Cannot delete the last active admin")

    has_history = (
        db.session.query(Order.id).filter(Order.created_by_user_id == user.id).first() is not None
        or db.session.query(StockTransaction.id).filter(StockTransaction.user_id == user.id).first() is not None
    )
    if has_history:
        raise ConflictError("User has recorded orders or stock transactions; deactivate instead")

    db.session.delete(user)
    db.session.commit()
