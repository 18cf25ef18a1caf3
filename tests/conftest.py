from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base, init_db
from app.services.codes import NumericCodeGenerator
from app.services.otp import OtpService
from app.services.store import SqlAlchemyOtpStore

TTL_SECONDS = 300


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.fail_with: Exception | None = None

    def send(self, to_address: str, subject: str, body: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append((to_address, subject, body))


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class SequenceRandom:
    """Returns queued values from randrange and remembers the bounds it saw."""

    def __init__(self, *values: int) -> None:
        self._values = list(values)
        self.bounds: list[int] = []

    def randrange(self, stop: int) -> int:
        self.bounds.append(stop)
        return self._values.pop(0)


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return SqlAlchemyOtpStore(session_factory)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def rng():
    return SequenceRandom(42391, 7, 123456, 999999)


@pytest.fixture
def service(store, notifier, clock, rng):
    return OtpService(
        store,
        notifier,
        ttl_seconds=TTL_SECONDS,
        subject="Your OTP",
        code_generator=NumericCodeGenerator(6, rng=rng),
        clock=clock,
    )

