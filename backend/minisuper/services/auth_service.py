# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication Service

Every sale and session must be attributable to a user. Passwords are stored
as bcrypt hashes; plaintext never touches the database.

SECURITY NOTES:
- Cost factor from BCRYPT_ROUNDS (12 in production)
- Minimum 6 characters, at least one letter and one digit
- Session tokens managed separately (see session_service.py)
"""

import re

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import User
from ..models.auth import ROLES, ROLE_CASHIER
from minisuper.time_utils import utcnow


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


USERNAME_RE = re.compile(r"^[A-Za-z0-9]{3,50}$")


def validate_password_strength(password: str) -> None:
    """
    Requirements:
    - Minimum 6 characters
    - At least one letter
    - At least one digit
    """
    if len(password) < 6:
        raise PasswordValidationError("Password must be at least 6 characters long")

    if not re.search(r"[A-Za-z]", password):
        raise PasswordValidationError("Password must contain at least one letter")

    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str) -> str:
    """Validate strength, then bcrypt-hash with the configured cost factor."""
    validate_password_strength(password)
    rounds = current_app.config.get("BCRYPT_ROUNDS", 12)
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds))
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    bcrypt.checkpw() is timing-safe. A malformed stored hash counts as a
    mismatch.
    """
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_user(
    username: str,
    password: str,
    full_name: str,
    role: str = ROLE_CASHIER,
    email: str | None = None,
) -> User:
    """
    Create new user with bcrypt password hashing.

    Raises:
        ValueError: bad username/role, or username already taken
        PasswordValidationError: password doesn't meet requirements
    """
    if not USERNAME_RE.match(username or ""):
        raise ValueError("Username must be 3-50 letters or digits")
    if role not in ROLES:
        raise ValueError(f"Role must be one of: {', '.join(ROLES)}")
    if not full_name or len(full_name.strip()) < 2:
        raise ValueError("Full name must be at least 2 characters")

    existing = db.session.query(User).filter_by(username=username).first()
    if existing:
        raise ValueError("Username already exists")

    user = User(
        username=username,
        full_name=full_name.strip(),
        email=email,
        password_hash=hash_password(password),
        role=role,
        is_active=True,
    )

    db.session.add(user)
    db.session.commit()
    return user


def authenticate(username: str, password: str) -> User | None:
    """
    Authenticate user with username and password.

    Returns User if credentials valid and the account is active, None
    otherwise. Updates last_login_at on success.
    """
    user = db.session.query(User).filter(
        User.username == username,
        User.is_active.is_(True),
    ).first()

    if not user:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None
