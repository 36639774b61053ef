"""Shared fixtures: a throwaway SQLite database per test and in-memory collaborators."""

import json
import os
import uuid
from datetime import date, datetime, timedelta
from decimal import Decimal

os.environ.setdefault("OTP_BCRYPT_ROUNDS", "4")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test-escrow.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import models.event_listener  # noqa: F401
from core.dependencies import Collaborators
from core.distributed_lock import InMemoryLock
from core.get_current_user import Actor
from core.get_db import Base
from core.get_provider import ProviderResolver
from core.pdf_generate import LocalDocumentStore
from fintechs.base import ProviderConfirmation, ProviderError, ProviderInitiation
from fintechs.manual import ManualSettlementClient
from fintechs.mtn_momo import MtnMomoClient
from fintechs.orange_money import OrangeMoneyClient
from models.enums import ContractStatus, PaymentMethod, ProviderOutcome, TransactionType, UserRole
from schemas.schema import ContractCreate
from security.security_generate import security_generate
from services.contract_service import ContractLifecycle
from services.signature_service import SignatureService

WEBHOOK_SECRET = "whsec-test"
LANDLORD_PHONE = "+224621000001"
TENANT_PHONE = "+224621000002"


class FrozenClock:
    def __init__(self, at: datetime = datetime(2026, 1, 1, 9, 0, 0)):
        self.current = at

    def now(self) -> datetime:
        return self.current

    def today(self) -> date:
        return self.current.date()

    def advance(self, **delta) -> datetime:
        self.current = self.current + timedelta(**delta)
        return self.current

    def set(self, at: datetime) -> None:
        self.current = at


class InMemoryJobQueue:
    def __init__(self):
        self.jobs: list[tuple[str, tuple, int]] = []

    def enqueue(self, name: str, *args, delay_seconds: int = 0) -> str:
        self.jobs.append((name, args, delay_seconds))
        return f"job-{len(self.jobs)}"

    def named(self, name: str) -> list[tuple[str, tuple, int]]:
        return [job for job in self.jobs if job[0] == name]


class RecordingNotifier:
    def __init__(self):
        self.codes: list[tuple[str | None, str]] = []
        self.notifications: list[tuple[str, str, dict]] = []
        self.fail = False

    async def send_otp(self, phone, code) -> bool:
        if self.fail:
            raise RuntimeError("gateway down")
        self.codes.append((phone, code))
        return True

    async def notify(self, party_id, kind, payload) -> bool:
        self.notifications.append((str(party_id), kind, payload))
        return True

    @property
    def last_code(self) -> str:
        return self.codes[-1][1]


class FakeProviderMixin:
    """Provider double: no network, webhook parsing and HMAC checks stay real."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.webhook_secret = WEBHOOK_SECRET
        self.fail_with: Exception | None = None
        self.status_outcome = ProviderOutcome.PENDING
        self.initiated: list[tuple[Decimal, str, str | None]] = []
        self.released: list[tuple[str, Decimal]] = []
        self.refunded: list[tuple[str, Decimal]] = []

    def _maybe_fail(self):
        if self.fail_with is not None:
            raise self.fail_with

    async def initiate(self, amount, reference, payer_phone=None):
        self._maybe_fail()
        self.initiated.append((amount, reference, payer_phone))
        return ProviderInitiation(
            provider_txn_id=f"TXN-{len(self.initiated)}-{reference}",
            redirect_url=f"https://pay.example.test/{reference}",
        )

    async def check_status(self, provider_txn_id):
        self._maybe_fail()
        return ProviderConfirmation(external_txn_id=provider_txn_id, outcome=self.status_outcome)

    async def release(self, provider_txn_id, amount):
        self._maybe_fail()
        self.released.append((provider_txn_id, amount))

    async def refund(self, provider_txn_id, amount):
        self._maybe_fail()
        self.refunded.append((provider_txn_id, amount))


class FakeOrangeMoney(FakeProviderMixin, OrangeMoneyClient):
    pass


class FakeMtnMomo(FakeProviderMixin, MtnMomoClient):
    pass


def sign_body(body: bytes) -> str:
    return security_generate.hmac_sha256(WEBHOOK_SECRET, body)


def orange_webhook_body(txn: str, status: str = "SUCCESS", amount=None, order_id=None) -> bytes:
    payload = {"pay_token": txn, "status": status}
    if amount is not None:
        payload["amount"] = str(amount)
    if order_id is not None:
        payload["order_id"] = order_id
    return json.dumps(payload).encode()


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'escrow-test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def jobs():
    return InMemoryJobQueue()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def providers():
    return ProviderResolver(
        {
            PaymentMethod.ORANGE_MONEY: FakeOrangeMoney(),
            PaymentMethod.MTN_MOMO: FakeMtnMomo(),
            PaymentMethod.BANK_TRANSFER: ManualSettlementClient(PaymentMethod.BANK_TRANSFER),
            PaymentMethod.CASH: ManualSettlementClient(PaymentMethod.CASH),
            PaymentMethod.CHECK: ManualSettlementClient(PaymentMethod.CHECK),
        }
    )


@pytest.fixture
def orange(providers):
    return providers.get(PaymentMethod.ORANGE_MONEY)


@pytest.fixture
def collab(tmp_path, jobs, notifier, providers, clock):
    return Collaborators(
        jobs=jobs,
        documents=LocalDocumentStore(tmp_path / "documents"),
        locks=InMemoryLock(),
        notifier=notifier,
        providers=providers,
        clock=clock,
        provider_timeout=2.0,
    )


@pytest.fixture
def landlord() -> Actor:
    return Actor(id=uuid.uuid4(), roles=frozenset({UserRole.LANDLORD}))


@pytest.fixture
def tenant() -> Actor:
    return Actor(id=uuid.uuid4(), roles=frozenset({UserRole.TENANT}))


@pytest.fixture
def admin() -> Actor:
    return Actor(id=uuid.uuid4(), roles=frozenset({UserRole.ADMIN}))


@pytest.fixture
def stranger() -> Actor:
    return Actor(id=uuid.uuid4(), roles=frozenset({UserRole.TENANT}))


@pytest.fixture
def lifecycle(db, collab):
    return ContractLifecycle(db, collab)


@pytest.fixture
def signatures(db, collab):
    return SignatureService(db, collab)


@pytest.fixture
def contract_terms(tenant):
    def build(**overrides):
        values = {
            "listing_id": uuid.uuid4(),
            "transaction_type": TransactionType.RESIDENTIAL_LEASE,
            "monthly_rent": Decimal("1000000"),
            "duration_months": 12,
            "start_date": date(2026, 1, 1),
            "tenant_id": tenant.id,
            "tenant_phone": TENANT_PHONE,
            "landlord_phone": LANDLORD_PHONE,
        }
        values.update(overrides)
        return ContractCreate(**values)

    return build


@pytest.fixture
def issued_contract(lifecycle, landlord, contract_terms):
    """A contract awaiting the tenant's signature, with its public signing token."""

    async def build(**overrides):
        return await lifecycle.create(landlord, contract_terms(**overrides))

    return build


@pytest.fixture
def active_contract(issued_contract, signatures, landlord, tenant, notifier):
    """Both parties signed through the authenticated OTP path."""

    async def build(**overrides):
        issued = await issued_contract(**overrides)
        contract_id = issued.contract.id
        await signatures.request_otp(contract_id, tenant)
        await signatures.verify_and_sign(contract_id, tenant, notifier.last_code, ip="10.0.0.2")
        await signatures.request_otp(contract_id, landlord)
        contract = await signatures.verify_and_sign(
            contract_id, landlord, notifier.last_code, ip="10.0.0.1"
        )
        assert contract.status == ContractStatus.ACTIVE
        return contract

    return build
