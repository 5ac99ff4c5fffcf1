"""Pytest configuration: in-memory database and collaborator fakes."""

import os

# Message assertions are written against English formatting
os.environ["LOCALE"] = "en_US"

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from duesbot.models import Base
from duesbot.services.group_service import GroupService
from duesbot.services.policy_service import PolicyCache, PolicyService


class FakeWallet:
    """In-memory WalletGateway."""

    def __init__(self, balances: dict[str, Decimal] | None = None):
        self.balances = {k: Decimal(v) for k, v in (balances or {}).items()}
        self.debit_ok = True
        self.credit_ok = True
        self.calls: list[tuple[str, str, Decimal, str]] = []

    async def get_balance(self, owner_id: str) -> Decimal:
        return self.balances.get(str(owner_id), Decimal("0"))

    async def debit(self, owner_id: str, amount: Decimal, reason: str) -> bool:
        self.calls.append(("debit", str(owner_id), Decimal(amount), reason))
        balance = self.balances.get(str(owner_id), Decimal("0"))
        if not self.debit_ok or balance < amount:
            return False
        self.balances[str(owner_id)] = balance - amount
        return True

    async def credit(self, owner_id: str, amount: Decimal, reason: str) -> bool:
        self.calls.append(("credit", str(owner_id), Decimal(amount), reason))
        if not self.credit_ok:
            return False
        self.balances[str(owner_id)] = self.balances.get(str(owner_id), Decimal("0")) + amount
        return True


class FakeMembership:
    """In-memory MembershipGateway."""

    def __init__(self, members: list[str] | None = None):
        self.members = list(members or [])
        self.removed: list[tuple[str, str]] = []
        self.refuse: set[str] = set()

    async def remove_member(self, group_id: str, subscriber_id: str) -> bool:
        if str(subscriber_id) in self.refuse:
            return False
        self.removed.append((str(group_id), str(subscriber_id)))
        return True

    async def list_members(self, group_id: str) -> list[str]:
        return list(self.members)


class FakeNotifier:
    """Records notifications instead of sending them."""

    def __init__(self):
        self.sent: list[tuple[str, str]] = []

    async def notify(self, destination: str, text: str) -> None:
        self.sent.append((str(destination), text))

    def to(self, destination: str) -> list[str]:
        return [text for dest, text in self.sent if dest == str(destination)]


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database per test."""
    engine = create_engine(
        "sqlite:///:memory:",
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
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def policy_cache():
    return PolicyCache()


@pytest.fixture
def wallet():
    return FakeWallet()


@pytest.fixture
def membership():
    return FakeMembership()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def make_group(db_session, policy_cache):
    """Set up a dues group with members and optional policy overrides."""

    def _make(group_id="-100", members=("1",), joined=None, **policy):
        policy_service = PolicyService(db_session, policy_cache)
        joined = joined or datetime(2026, 1, 10, 12, tzinfo=timezone.utc)
        GroupService(db_session, policy_service).setup_group(
            group_id, members, title="Test Group", now=joined
        )
        if policy:
            policy_service.update_policy(group_id, **policy)
        return policy_service.get_policy(group_id)

    return _make


@pytest.fixture
def fund(db_session):
    """Give a subscriber a dedicated balance directly."""

    def _fund(subscriber_id, group_id, amount):
        subscriber = GroupService(db_session).get_subscriber(subscriber_id, group_id)
        subscriber.dedicated_balance = Decimal(str(amount))
        db_session.commit()
        return subscriber

    return _fund
