"""
Pytest configuration and fixtures
"""

import os
from datetime import timedelta
from decimal import Decimal
from typing import Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

# Set test environment variables before importing the app
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_URL"] = "redis://localhost:6379/1"  # Use DB 1 for tests
os.environ["SECRET_KEY"] = "test-secret-key-min-32-chars-for-testing-only"
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["DEV_MODE"] = "true"
os.environ["WALLET_PROVISIONER"] = "hot_wallet"
# Well-known development key (anvil / hardhat account #0)
os.environ["HOT_WALLET_PRIVATE_KEY"] = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
os.environ["PYUSD_ADDRESS"] = "0xCaC524BcA292aaade2DF8A05cC58F0a65B1B3bB9"
os.environ["CHAIN_ID"] = "11155111"
os.environ["MAX_TX_AMOUNT"] = "100"
os.environ["DAILY_TX_CAP"] = "500"
os.environ["TX_EXPIRY_MINUTES"] = "30"

from emailpay.infrastructure.database import Base, get_db
from emailpay.infrastructure.settings import get_settings
from emailpay.main import app
from emailpay.api.dependencies import get_wallet_service
from emailpay.core.transactions.models import EmailTransaction, TransactionStatus
from emailpay.core.users.models import WalletUser, HOT_WALLET_SENTINEL
from emailpay.services.container import ServiceContainer
from emailpay.services.signing import OperatorAccount

from tests.fakes import (
    FakeChain,
    FakeCustodyClient,
    FakeGateway,
    FrozenClock,
    RecordingScheduler,
    deterministic_test_wallet,
)

OPERATOR_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"

# Create test database engine
test_engine = create_engine(
    os.environ["DATABASE_URL"],
    poolclass=StaticPool,
    connect_args={"check_same_thread": False},
)

TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function")
def db_session() -> Session:
    """
    Create a fresh database session for each test.
    Recreates all tables before and drops them after each test.
    """
    Base.metadata.drop_all(bind=test_engine)
    Base.metadata.create_all(bind=test_engine)

    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def operator(settings) -> OperatorAccount:
    return OperatorAccount(settings.HOT_WALLET_PRIVATE_KEY)


@pytest.fixture
def fake_chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def fake_custody() -> FakeCustodyClient:
    return FakeCustodyClient()


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def scheduler() -> RecordingScheduler:
    return RecordingScheduler()


@pytest.fixture
def container(settings, scheduler, operator, fake_chain, fake_custody, fake_gateway, clock) -> ServiceContainer:
    """Fully wired services with every external collaborator faked"""
    services = ServiceContainer(
        settings,
        scheduler=scheduler,
        operator=operator,
        chain=fake_chain,
        custody=fake_custody,
        gateway=fake_gateway,
        clock=clock,
    ).start()
    yield services
    services.close()


@pytest.fixture
def engine(container):
    return container.engine


@pytest.fixture
def wallet_service(container):
    return container.wallet_service


@pytest.fixture
def make_user(db_session: Session, operator: OperatorAccount):
    """
    Factory for wallet users.

    signing="hot_wallet" binds the operator wallet, signing="custody" binds a
    custody wallet with a full-length token id, signing=None leaves the user
    without a wallet.
    """

    def _make_user(
        email: str,
        *,
        verified: bool = True,
        signing: Optional[str] = "hot_wallet",
        signing_backend_id: Optional[str] = None,
    ) -> WalletUser:
        user = WalletUser(email=email, verified=verified)
        if signing == "hot_wallet":
            user.assign_wallet(
                public_key=operator.public_key,
                address=operator.address,
                signing_backend_id=signing_backend_id or HOT_WALLET_SENTINEL,
            )
        elif signing == "custody":
            wallet = deterministic_test_wallet(email)
            user.assign_wallet(
                public_key=wallet.public_key,
                address=wallet.address,
                signing_backend_id=signing_backend_id or "0x" + "ab" * 32,
            )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_transaction(db_session: Session, clock: FrozenClock):
    """Insert a transaction row directly, bypassing create validation"""

    def _make_transaction(
        tx_id: str,
        *,
        sender_email: str = "a@x.com",
        recipient_email: str = "b@x.com",
        amount: str = "10",
        asset: str = "PYUSD",
        status: TransactionStatus = TransactionStatus.PENDING,
        age: timedelta = timedelta(0),
        **values,
    ) -> EmailTransaction:
        created_at = clock() - age
        tx = EmailTransaction(
            tx_id=tx_id,
            amount=Decimal(amount),
            asset=asset,
            sender_email=sender_email,
            recipient_email=recipient_email,
            status=status,
            created_at=created_at,
            expires_at=values.pop("expires_at", created_at + timedelta(minutes=30)),
            meta=values.pop("meta", {}),
            **values,
        )
        db_session.add(tx)
        db_session.commit()
        db_session.refresh(tx)
        return tx

    return _make_transaction


@pytest.fixture(scope="function")
def client(db_session: Session, wallet_service):
    """
    Create FastAPI test client with dependency overrides.
    """
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_wallet_service] = lambda: wallet_service

    yield TestClient(app)

    app.dependency_overrides.clear()
