"""
User records, credentials and the password-reset token lifecycle.

Passwords are stored as bcrypt hashes. Reset tokens are handed out in
plaintext exactly once; only their sha256 digest and an absolute expiry are
persisted, and both are cleared by the same UPDATE that sets the new password.
"""

import hashlib
import logging
import secrets
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

import bcrypt
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError

from database import Database
from errors import (
    DuplicateEmail,
    InvalidOrExpiredToken,
    InvalidValue,
    LastAdminProtected,
    NotFound,
    Unauthorized,
)
from models import ROLE_ADMIN, ROLE_USER, ROLES, User, utcnow
from schemas import UserOut

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("full_name", "phone_number", "address", "city", "state", "pincode")
DEFAULT_BCRYPT_ROUNDS = 10


# ---------------------- Credentials ----------------------

def hash_password(password: str, rounds: int = DEFAULT_BCRYPT_ROUNDS) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def compare_password(password: str, hashed: str) -> bool:
    if not password or not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # malformed hash or a password bcrypt refuses
        return False


def hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------- Lookups ----------------------

def _get_user(session, user_id: int) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


def _count_admins(session, lock: bool = False) -> int:
    if lock:
        stmt = select(User.id).where(User.role == ROLE_ADMIN).with_for_update()
        return len(session.scalars(stmt).all())
    return session.scalar(select(func.count(User.id)).where(User.role == ROLE_ADMIN))


def find_by_id(db: Database, user_id: int) -> Optional[UserOut]:
    with db.session() as session:
        user = session.get(User, user_id)
        return UserOut.model_validate(user) if user else None


def find_by_email(db: Database, email: str) -> Optional[UserOut]:
    with db.session() as session:
        user = session.scalars(select(User).where(User.email == normalize_email(email))).first()
        return UserOut.model_validate(user) if user else None


def find_all(db: Database) -> List[UserOut]:
    with db.session() as session:
        users = session.scalars(select(User).order_by(User.id.desc())).all()
        return [UserOut.model_validate(u) for u in users]


def count_admins(db: Database) -> int:
    with db.session() as session:
        return _count_admins(session)


def total_count(db: Database) -> int:
    with db.session() as session:
        return session.scalar(select(func.count(User.id)))


# ---------------------- Mutations ----------------------

def create(
    db: Database,
    full_name: str,
    email: str,
    password: str,
    role: str = ROLE_USER,
    bcrypt_rounds: int = DEFAULT_BCRYPT_ROUNDS,
    **profile: Any,
) -> UserOut:
    if role not in ROLES:
        raise InvalidValue(f"Invalid role: {role}. Valid values are: {', '.join(ROLES)}")
    email = normalize_email(email)
    # fast path for a friendly error; the unique index is the real guard
    if find_by_email(db, email) is not None:
        raise DuplicateEmail()

    hashed = hash_password(password, bcrypt_rounds)
    extra = {k: v for k, v in profile.items() if k in PROFILE_FIELDS and k != "full_name"}
    with db.transaction() as session:
        user = User(full_name=full_name, email=email, password=hashed, role=role, **extra)
        session.add(user)
        try:
            session.flush()
        except IntegrityError as exc:
            raise DuplicateEmail() from exc
        logger.info("User %s created with role %s", user.id, role)
        return UserOut.model_validate(user)


def authenticate(db: Database, email: str, password: str) -> UserOut:
    with db.session() as session:
        user = session.scalars(select(User).where(User.email == normalize_email(email))).first()
        if user is None or not compare_password(password, user.password):
            logger.warning("Failed login attempt for %s", email)
            raise Unauthorized("Invalid credentials")
        return UserOut.model_validate(user)


def update_profile(db: Database, user_id: int, data: Dict[str, Any]) -> UserOut:
    with db.transaction() as session:
        user = _get_user(session, user_id)
        for field, value in data.items():
            if field in PROFILE_FIELDS:
                setattr(user, field, value)
        session.flush()
        return UserOut.model_validate(user)


def change_password(
    db: Database,
    user_id: int,
    current_password: str,
    new_password: str,
    bcrypt_rounds: int = DEFAULT_BCRYPT_ROUNDS,
) -> None:
    hashed = hash_password(new_password, bcrypt_rounds)
    with db.transaction() as session:
        user = _get_user(session, user_id)
        if not compare_password(current_password, user.password):
            raise Unauthorized("Current password is incorrect")
        user.password = hashed
    logger.info("Password changed for user %s", user_id)


def update_user(
    db: Database,
    user_id: int,
    data: Dict[str, Any],
    bcrypt_rounds: int = DEFAULT_BCRYPT_ROUNDS,
) -> UserOut:
    """Admin edit of any user field, including role and password."""
    role = data.get("role")
    if role is not None and role not in ROLES:
        raise InvalidValue(f"Invalid role: {role}. Valid values are: {', '.join(ROLES)}")
    password = data.get("password")
    hashed = hash_password(password, bcrypt_rounds) if password else None

    with db.transaction() as session:
        user = _get_user(session, user_id)

        email = data.get("email")
        if email:
            email = normalize_email(email)
            if email != user.email:
                taken = session.scalars(
                    select(User.id).where(User.email == email, User.id != user_id)
                ).first()
                if taken is not None:
                    raise DuplicateEmail("Email is already taken by another user")
                user.email = email

        if role is not None and role != user.role:
            if user.role == ROLE_ADMIN and _count_admins(session, lock=True) <= 1:
                raise LastAdminProtected("Cannot remove the admin role from the last admin user")
            user.role = role

        for field in PROFILE_FIELDS:
            if field in data:
                if field == "full_name" and not data[field]:
                    continue
                setattr(user, field, data[field])

        if hashed:
            user.password = hashed

        try:
            session.flush()
        except IntegrityError as exc:
            raise DuplicateEmail("Email is already taken by another user") from exc
        return UserOut.model_validate(user)


def delete_user(db: Database, user_id: int) -> None:
    with db.transaction() as session:
        user = _get_user(session, user_id)
        if user.role == ROLE_ADMIN and _count_admins(session, lock=True) <= 1:
            logger.warning("Refusing to delete last admin user %s", user_id)
            raise LastAdminProtected()
        session.execute(delete(User).where(User.id == user_id))
    logger.info("User %s deleted", user_id)


# ---------------------- Password reset ----------------------

def generate_password_reset_token(db: Database, email: str, expire_minutes: int = 60) -> Tuple[str, UserOut]:
    """
    Issue a reset token for the user owning `email`.

    Returns the plaintext token (to be sent to the user, never stored) and the
    user it was issued for. Raises NotFound when no user has that email.
    """
    token = secrets.token_hex(32)
    expires = utcnow() + timedelta(minutes=expire_minutes)

    with db.transaction() as session:
        user = session.scalars(select(User).where(User.email == normalize_email(email))).first()
        if user is None:
            raise NotFound("User not found")
        user.reset_password_token = hash_reset_token(token)
        user.reset_password_expire = expires
        session.flush()
        logger.info("Password reset token issued for user %s", user.id)
        return token, UserOut.model_validate(user)


def clear_password_reset_token(db: Database, user_id: int) -> None:
    """Withdraw an outstanding reset token, e.g. when it could not be delivered."""
    with db.transaction() as session:
        session.execute(
            update(User)
            .where(User.id == user_id)
            .values(reset_password_token=None, reset_password_expire=None)
        )
    logger.info("Password reset token withdrawn for user %s", user_id)


def reset_password(
    db: Database,
    token: str,
    new_password: str,
    bcrypt_rounds: int = DEFAULT_BCRYPT_ROUNDS,
) -> UserOut:
    hashed_token = hash_reset_token(token)
    hashed_password = hash_password(new_password, bcrypt_rounds)
    now = utcnow()

    with db.transaction() as session:
        user = session.scalars(
            select(User).where(
                User.reset_password_token == hashed_token,
                User.reset_password_expire > now,
            )
        ).first()
        if user is None:
            logger.warning("Rejected invalid or expired password reset token")
            raise InvalidOrExpiredToken()

        # the token match in the WHERE clause keeps a token single-use
        result = session.execute(
            update(User)
            .where(User.id == user.id, User.reset_password_token == hashed_token)
            .values(
                password=hashed_password,
                reset_password_token=None,
                reset_password_expire=None,
                updated_at=now,
            )
        )
        if result.rowcount != 1:
            raise InvalidOrExpiredToken()
        session.refresh(user)
        logger.info("Password reset completed for user %s", user.id)
        return UserOut.model_validate(user)
