"""
User domain service.
- register(payload)
- login(email, password)
- get_user(user_id)
"""

from typing import Any, Dict, Optional
import logging

from sqlalchemy import func, insert, select
from sqlalchemy.exc import IntegrityError

from flashdeck.core.auth import create_access_token, hash_password, verify_password
from flashdeck.core.database import ROLE_MEMBER, get_db_session, users
from flashdeck.core.errors import AuthenticationError, ConflictError
from flashdeck.models.user import RegisterRequest, User


logger = logging.getLogger(__name__)


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def _to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        role_id=row.role_id,
        image=row.image,
        created_at=row.created_at,
    )


def public_user(user: User) -> Dict[str, Any]:
    return {"id": user.id, "name": user.name, "email": user.email, "roleId": user.role_id, "image": user.image}


def get_user(user_id: int) -> Optional[User]:
    with get_db_session() as session:
        row = session.execute(select(users).where(users.c.id == user_id)).first()
        if not row:
            return None
        return _to_user(row)


def register(payload: RegisterRequest) -> Dict[str, Any]:
    email = _normalize_email(payload.email)
    try:
        with get_db_session() as session:
            taken = session.execute(
                select(users.c.id).where(func.lower(users.c.email) == email)
            ).first()
            if taken:
                raise ConflictError("Email already registered")
            user_id = session.execute(
                insert(users).values(
                    name=payload.name.strip(),
                    email=email,
                    password_hash=hash_password(payload.password),
                    role_id=ROLE_MEMBER,
                )
            ).inserted_primary_key[0]
    except IntegrityError:
        raise ConflictError("Email already registered")

    user = get_user(user_id)
    logger.info("[users] registered", extra={"user_id": user_id})
    return {"token": create_access_token(user.id, user.role_id), "user": public_user(user)}


def login(email: str, password: str) -> Dict[str, Any]:
    with get_db_session() as session:
        row = session.execute(
            select(users).where(func.lower(users.c.email) == _normalize_email(email))
        ).first()

    # Same message for unknown email and wrong password
    if row is None or not verify_password(password, row.password_hash):
        raise AuthenticationError("Invalid email or password")

    user = _to_user(row)
    return {"token": create_access_token(user.id, user.role_id), "user": public_user(user)}
