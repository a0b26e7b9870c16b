"""
Staff Service

Staff accounts that invoices, purchase orders and ledger entries are
attributed to. Passwords are hashed with bcrypt (cost factor from
BCRYPT_ROUNDS, default 12); login and sessions live outside this package.
"""

from __future__ import annotations

import re

import bcrypt
from flask import current_app

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import User
from ..models.auth import ROLE_STAFF, VALID_ROLES
from ..validation import choice, optional_text, required_text


MIN_PASSWORD_LENGTH = 8


def validate_password_strength(password: str) -> None:
    """
    Minimum 8 characters with at least one letter and one digit.

    Raises ValidationError otherwise.
    """
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long", {"field": "password"}
        )
    if not re.search(r"[A-Za-z]", password):
        raise ValidationError("Password must contain at least one letter", {"field": "password"})
    if not re.search(r"\d", password):
        raise ValidationError("Password must contain at least one digit", {"field": "password"})


def hash_password(password: str) -> str:
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=current_app.config.get("BCRYPT_ROUNDS", 12))
    hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe comparison; malformed hashes never match."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_staff(
    *,
    username,
    password: str,
    full_name,
    role: str = ROLE_STAFF,
    email=None,
    phone=None,
) -> User:
    username = required_text("username", username, 64)
    full_name = required_text("full_name", full_name)
    role = choice("role", role, VALID_ROLES)

    if db.session.query(User.id).filter(User.username == username).first() is not None:
        raise ValidationError(f"Username {username!r} already exists", {"field": "username"})

    user = User(
        username=username,
        password_hash=hash_password(password),
        full_name=full_name,
        role=role,
        email=optional_text("email", email),
        phone=optional_text("phone", phone, 32),
    )
    db.session.add(user)
    db.session.commit()
    current_app.logger.info("Staff account %s created with role %s", username, role)
    return user


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found", {"user_id": user_id})
    return user


def change_password(user_id: int, current_password: str, new_password: str) -> User:
    user = get_user(user_id)
    if not verify_password(current_password, user.password_hash):
        raise ValidationError("Current password is incorrect", {"field": "current_password"})
    user.password_hash = hash_password(new_password)
    db.session.commit()
    return user


def set_active(user_id: int, is_active: bool) -> User:
    user = get_user(user_id)
    user.is_active = bool(is_active)
    db.session.commit()
    current_app.logger.info("Staff account %s %s", user.username, "activated" if user.is_active else "deactivated")
    return user


def list_staff(*, include_inactive: bool = False) -> list[User]:
    q = db.session.query(User)
    if not include_inactive:
        q = q.filter(User.is_active.is_(True))
    return q.order_by(User.username.asc()).all()
