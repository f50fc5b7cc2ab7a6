import pytest
from datetime import datetime, date
import pytz
from fastapi import Depends
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from mindreminder import models  # noqa: F401
from mindreminder.core.auth import create_access_token
from mindreminder.core.deps import get_tracker
from mindreminder.db.base import Base
from mindreminder.db.session import get_db
from mindreminder.main import app
from mindreminder.models import User, MicroAction
from mindreminder.services.habit_tracker import HabitCompletionTracker

# 2024-01-01 was a Monday
MONDAY = date(2024, 1, 1)


class FixedClock:
    """Clock returning a pinned UTC instant"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set_day(self, day: date, hour: int = 12) -> None:
        self.now = pytz.UTC.localize(datetime(day.year, day.month, day.day, hour))


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    clock = FixedClock(None)
    clock.set_day(MONDAY)
    return clock


@pytest.fixture
def tracker(db, clock):
    return HabitCompletionTracker(db, clock=clock)


def make_user(db, email: str) -> User:
    user = User(email=email, password_hash="not-a-real-hash")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def user(db):
    return make_user(db, "alice@example.com")


@pytest.fixture
def other_user(db):
    return make_user(db, "bob@example.com")


@pytest.fixture
def third_user(db):
    return make_user(db, "carol@example.com")


@pytest.fixture
def habit(tracker, user) -> MicroAction:
    return tracker.create_habit(user.id, "Drink a glass of water", category="health")


@pytest.fixture
def client(session_factory, clock):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    def override_get_tracker(db: Session = Depends(get_db)):
        return HabitCompletionTracker(db, clock=clock)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_tracker] = override_get_tracker
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth_headers_for(user: User) -> dict:
    token = create_access_token(data={"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers(user):
    return auth_headers_for(user)


@pytest.fixture
def other_auth_headers(other_user):
    return auth_headers_for(other_user)


@pytest.fixture
def third_auth_headers(third_user):
    return auth_headers_for(third_user)
