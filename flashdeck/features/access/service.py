"""
flashdeck/features/access/service.py

Set access decision engine.

Resolves who may see a set's card content. First match wins:
- validate ids
- load set (missing or hidden -> AccessError, never a verdict)
- free sets are open to everyone, anonymous included
- anonymous callers are denied anything priced or subscriber-only
- owner, then admin
- purchase (priced sets only)
- subscription to the set's educator (subscriber-only sets only)
- structured denial

Read-only: no writes, no caching. Verdicts are per caller and must never be
stored under a shared cache key.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, ContextManager, Dict, Optional
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from flashdeck.core.database import (
    MAX_INTEGER,
    ROLE_ADMIN,
    get_db_session,
    purchases,
    sets,
    subscriptions,
    users,
)
from flashdeck.core.errors import AppError


logger = logging.getLogger(__name__)


class AccessErrorCode(str, Enum):
    INVALID_SET_ID = "INVALID_SET_ID"
    INVALID_USER_ID = "INVALID_USER_ID"
    SET_NOT_FOUND = "SET_NOT_FOUND"
    SET_HIDDEN = "SET_HIDDEN"
    USER_NOT_FOUND = "USER_NOT_FOUND"


class SetType(str, Enum):
    OWNED = "owned"
    ADMIN = "admin"
    FREE = "free"
    PURCHASED = "purchased"
    SUBSCRIBED = "subscribed"
    PREMIUM = "premium"
    SUBSCRIBER = "subscriber"


class DenialReason(str, Enum):
    PREMIUM = "PREMIUM"
    SUBSCRIBER_ONLY = "SUBSCRIBER_ONLY"


DENIAL_MESSAGES = {
    DenialReason.SUBSCRIBER_ONLY: "This set is only available to subscribers",
    DenialReason.PREMIUM: "This is a premium set. Purchase to access.",
}

# Hidden sets answer exactly like missing ones so their existence never leaks
_PUBLIC_ERRORS = {
    AccessErrorCode.INVALID_SET_ID: (400, "validation_error", "Invalid set ID"),
    AccessErrorCode.INVALID_USER_ID: (400, "validation_error", "Invalid user ID"),
    AccessErrorCode.SET_NOT_FOUND: (404, "not_found", "Set not found"),
    AccessErrorCode.SET_HIDDEN: (404, "not_found", "Set not found"),
    AccessErrorCode.USER_NOT_FOUND: (404, "not_found", "User not found"),
}


class AccessError(AppError):
    """Raised for malformed ids and sets that cannot be shown at all."""

    def __init__(self, reason: AccessErrorCode, *, set_id: Optional[Any] = None):
        status_code, code, message = _PUBLIC_ERRORS[reason]
        super().__init__(message, code=code, status_code=status_code)
        self.reason = reason
        self.set_id = set_id


@dataclass(frozen=True)
class AccessVerdict:
    has_access: bool
    set_type: SetType
    set_id: int
    set_title: str
    reason: Optional[DenialReason] = None
    message: Optional[str] = None
    price: Optional[Decimal] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "hasAccess": self.has_access,
            "setType": self.set_type.value,
            "setTitle": self.set_title,
            "setId": self.set_id,
        }
        if not self.has_access:
            data["reason"] = self.reason.value if self.reason else None
            data["message"] = self.message
            data["price"] = float(self.price) if self.price is not None else 0.0
        return data


def parse_positive_int(value: Any) -> Optional[int]:
    """
    Return value as a positive int, or None when it is not integer-like.

    Ids above MAX_INTEGER are rejected too; no row can carry them and the
    driver cannot bind them.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, float):
        if not value.is_integer():
            return None
        value = int(value)
    if isinstance(value, str):
        text = value.strip()
        if not text.isdecimal() or len(text) > len(str(MAX_INTEGER)):
            return None
        value = int(text)
    if isinstance(value, int) and 0 < value <= MAX_INTEGER:
        return value
    return None


def _is_free(price: Decimal, is_subscriber_only: bool) -> bool:
    return price == 0 and not is_subscriber_only


def denial_for(set_row) -> AccessVerdict:
    reason = DenialReason.SUBSCRIBER_ONLY if set_row.is_subscriber_only else DenialReason.PREMIUM
    return AccessVerdict(
        has_access=False,
        set_type=SetType.SUBSCRIBER if reason is DenialReason.SUBSCRIBER_ONLY else SetType.PREMIUM,
        set_id=set_row.id,
        set_title=set_row.title,
        reason=reason,
        message=DENIAL_MESSAGES[reason],
        price=Decimal(set_row.price or 0),
    )


class SetAccessService:
    """Decides access to a set for an optional caller."""

    def __init__(self, session_scope: Callable[[], ContextManager[Session]] = get_db_session):
        self._session_scope = session_scope

    def check_access(self, set_id: Any, user_id: Any = None) -> AccessVerdict:
        parsed_set_id = parse_positive_int(set_id)
        if parsed_set_id is None:
            raise AccessError(AccessErrorCode.INVALID_SET_ID, set_id=set_id)

        parsed_user_id: Optional[int] = None
        if user_id is not None:
            parsed_user_id = parse_positive_int(user_id)
            if parsed_user_id is None:
                raise AccessError(AccessErrorCode.INVALID_USER_ID, set_id=parsed_set_id)

        try:
            with self._session_scope() as session:
                return self._resolve(session, parsed_set_id, parsed_user_id)
        except AccessError:
            raise
        except Exception:
            logger.exception(
                "[access] unexpected error during access check",
                extra={"set_id": parsed_set_id, "user_id": parsed_user_id},
            )
            raise

    def has_access(self, set_id: Any, user_id: Any = None) -> bool:
        return self.check_access(set_id, user_id).has_access

    def _resolve(self, session: Session, set_id: int, user_id: Optional[int]) -> AccessVerdict:
        set_row = session.execute(
            select(
                sets.c.id,
                sets.c.title,
                sets.c.educator_id,
                sets.c.price,
                sets.c.is_subscriber_only,
                sets.c.hidden,
            ).where(sets.c.id == set_id)
        ).first()

        if set_row is None:
            raise AccessError(AccessErrorCode.SET_NOT_FOUND, set_id=set_id)
        if set_row.hidden:
            raise AccessError(AccessErrorCode.SET_HIDDEN, set_id=set_id)

        price = Decimal(set_row.price or 0)
        subscriber_only = bool(set_row.is_subscriber_only)

        if _is_free(price, subscriber_only):
            return self._grant(set_row, SetType.FREE)

        if user_id is None:
            return self._deny(set_row, user_id)

        if set_row.educator_id == user_id:
            return self._grant(set_row, SetType.OWNED)

        role_id = session.execute(select(users.c.role_id).where(users.c.id == user_id)).scalar()
        if role_id is None:
            raise AccessError(AccessErrorCode.USER_NOT_FOUND, set_id=set_id)
        if role_id == ROLE_ADMIN:
            return self._grant(set_row, SetType.ADMIN)

        if price > 0:
            purchased = session.execute(
                select(purchases.c.id)
                .where(purchases.c.set_id == set_id)
                .where(purchases.c.user_id == user_id)
            ).first()
            if purchased:
                return self._grant(set_row, SetType.PURCHASED)

        if subscriber_only:
            subscribed = session.execute(
                select(subscriptions.c.id)
                .where(subscriptions.c.educator_id == set_row.educator_id)
                .where(subscriptions.c.user_id == user_id)
            ).first()
            if subscribed:
                return self._grant(set_row, SetType.SUBSCRIBED)

        return self._deny(set_row, user_id)

    @staticmethod
    def _grant(set_row, set_type: SetType) -> AccessVerdict:
        return AccessVerdict(
            has_access=True,
            set_type=set_type,
            set_id=set_row.id,
            set_title=set_row.title,
        )

    @staticmethod
    def _deny(set_row, user_id: Optional[int]) -> AccessVerdict:
        verdict = denial_for(set_row)
        logger.info(
            "[access] denied",
            extra={"set_id": set_row.id, "user_id": user_id, "reason": verdict.reason.value},
        )
        return verdict
