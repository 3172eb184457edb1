# flashdeck/conftest.py
from decimal import Decimal
from typing import Iterable, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import insert, select

from flashdeck.core.config import settings
from flashdeck.core.cache import MemoryCache
from flashdeck.core.database import (
    ROLE_ADMIN,
    ROLE_MEMBER,
    categories,
    create_all_tables,
    dispose_engine,
    drop_all_tables,
    get_db_session,
    init_engine,
    purchases,
    set_tags,
    sets,
    subscriptions,
    tags,
    users,
)


class FakeClock:
    """Monotonic clock the tests advance by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Seed:
    """Insert helpers for test fixtures."""

    def user(self, name: str = "User", email: Optional[str] = None, role_id: int = ROLE_MEMBER) -> int:
        email = email or f"{name.lower().replace(' ', '.')}@example.com"
        with get_db_session() as session:
            return session.execute(
                insert(users).values(name=name, email=email, role_id=role_id)
            ).inserted_primary_key[0]

    def admin(self, name: str = "Admin") -> int:
        return self.user(name=name, role_id=ROLE_ADMIN)

    def category(self, name: str) -> int:
        with get_db_session() as session:
            return session.execute(insert(categories).values(name=name)).inserted_primary_key[0]

    def set(
        self,
        educator_id: int,
        *,
        title: str = "Set",
        description: str = "Cards",
        price: str = "0",
        is_subscriber_only: bool = False,
        hidden: bool = False,
        featured: bool = False,
        category_id: Optional[int] = None,
        tag_names: Iterable[str] = (),
    ) -> int:
        with get_db_session() as session:
            set_id = session.execute(
                insert(sets).values(
                    title=title,
                    description=description,
                    educator_id=educator_id,
                    price=Decimal(price),
                    is_subscriber_only=is_subscriber_only,
                    hidden=hidden,
                    featured=featured,
                    category_id=category_id,
                )
            ).inserted_primary_key[0]
            for name in tag_names:
                tag_id = session.execute(select(tags.c.id).where(tags.c.name == name)).scalar()
                if tag_id is None:
                    tag_id = session.execute(insert(tags).values(name=name)).inserted_primary_key[0]
                session.execute(insert(set_tags).values(set_id=set_id, tag_id=tag_id))
        return set_id

    def purchase(self, user_id: int, set_id: int) -> None:
        with get_db_session() as session:
            session.execute(insert(purchases).values(user_id=user_id, set_id=set_id))

    def subscription(self, user_id: int, educator_id: int, stripe_subscription_id: Optional[str] = None) -> None:
        with get_db_session() as session:
            session.execute(
                insert(subscriptions).values(
                    user_id=user_id,
                    educator_id=educator_id,
                    stripe_subscription_id=stripe_subscription_id,
                )
            )


@pytest.fixture(autouse=True)
def jwt_secret(monkeypatch):
    monkeypatch.setattr(settings, "JWT_SECRET", "test-secret")
    yield


@pytest.fixture(autouse=True)
def db():
    """Fresh in-memory SQLite database per test."""
    init_engine("sqlite://")
    create_all_tables()
    yield
    drop_all_tables()
    dispose_engine()


@pytest.fixture
def seed(db) -> Seed:
    return Seed()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock) -> MemoryCache:
    return MemoryCache(default_ttl=300, max_keys=1000, time_fn=clock)


@pytest.fixture
def client(cache):
    from flashdeck.main import create_app

    app = create_app(cache=cache, create_tables=False)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_header():
    from flashdeck.core.auth import create_access_token

    def _make(user_id: int, role_id: int = ROLE_MEMBER) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user_id, role_id)}"}

    return _make
