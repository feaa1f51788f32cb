import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")

import uuid
from typing import Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import purchase_workflow.models  # noqa: F401
from purchase_workflow.database import Base, get_db
from purchase_workflow.schemas.auth import Actor
from purchase_workflow.schemas.purchase_request import PurchaseRequestCreate, RequestItemCreate
from purchase_workflow.schemas.quotation import (
    QuotationCreate,
    SupplierQuotationCreate,
    SupplierQuotationItemCreate,
)
from purchase_workflow.services.approval_service import submit_approval
from purchase_workflow.services.auth_service import create_access_token
from purchase_workflow.services.event_gateway import gateway
from purchase_workflow.services.phase_registry import Gate, Phase
from purchase_workflow.services.quotation_service import add_supplier_quotation, create_quotation
from purchase_workflow.services.request_service import create_purchase_request
from purchase_workflow.services.transition_service import transition_phase


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Actors
# ---------------------------------------------------------------------------

def make_actor(**flags) -> Actor:
    actor_id = flags.pop("id", None) or uuid.uuid4()
    return Actor(id=actor_id, email=f"{str(actor_id)[:8]}@acme.com.br", **flags)


@pytest.fixture
def requester() -> Actor:
    return make_actor()


@pytest.fixture
def approver_a() -> Actor:
    return make_actor(is_approver_a1=True, is_approver_a2=True)


@pytest.fixture
def approver_b() -> Actor:
    return make_actor(is_approver_a1=True, is_approver_a2=True)


@pytest.fixture
def buyer() -> Actor:
    return make_actor(is_buyer=True)


@pytest.fixture
def admin() -> Actor:
    return make_actor(is_admin=True)


def auth_headers(actor: Actor) -> dict:
    token = create_access_token(
        actor.id,
        email=actor.email,
        is_approver_a1=actor.is_approver_a1,
        is_approver_a2=actor.is_approver_a2,
        is_buyer=actor.is_buyer,
        is_admin=actor.is_admin,
    )
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

@pytest.fixture
def events():
    """Every event published by the gateway while the test runs."""
    recorded = []

    async def record(event):
        recorded.append(event)

    gateway.subscribe(record)
    yield recorded
    gateway.unsubscribe(record)


# ---------------------------------------------------------------------------
# Workflow driver
# ---------------------------------------------------------------------------

class Workflow:
    """Drives requests through the real services, step by step."""

    def __init__(self, session, requester, approver_a, approver_b, buyer):
        self.session = session
        self.requester = requester
        self.approver_a = approver_a
        self.approver_b = approver_b
        self.buyer = buyer

    async def create_request(self, items: list[dict], **fields):
        body = PurchaseRequestCreate(
            items=[RequestItemCreate(**item) for item in items], **fields
        )
        return await create_purchase_request(self.session, self.requester, body)

    async def approve_gate(self, request_id, gate: Gate, dual: bool):
        pr = await submit_approval(self.session, request_id, self.approver_a, gate, True)
        if dual:
            pr = await submit_approval(self.session, request_id, self.approver_b, gate, True)
        return pr

    async def to_cotacao(self, pr):
        pr = await transition_phase(self.session, pr.id, Phase.APROVACAO_A1, self.requester)
        return await self.approve_gate(pr.id, Gate.A1, pr.requires_dual_approval)

    async def open_quotation(self, pr):
        return await create_quotation(
            self.session, self.buyer, QuotationCreate(purchase_request_id=pr.id)
        )

    async def supplier_answer(
        self,
        quotation,
        quotation_items,
        prices: list[int],
        available: Optional[list[bool]] = None,
        available_quantity: Optional[list[Optional[int]]] = None,
        supplier_id: Optional[uuid.UUID] = None,
    ):
        available = available or [True] * len(quotation_items)
        available_quantity = available_quantity or [None] * len(quotation_items)
        body = SupplierQuotationCreate(
            supplier_id=supplier_id or uuid.uuid4(),
            items=[
                SupplierQuotationItemCreate(
                    quotation_item_id=qi.id,
                    unit_price_cents=price,
                    is_available=ok,
                    available_quantity=qty,
                )
                for qi, price, ok, qty in zip(
                    quotation_items, prices, available, available_quantity
                )
            ],
        )
        return await add_supplier_quotation(self.session, self.buyer, quotation.id, body)


@pytest.fixture
def workflow(db, requester, approver_a, approver_b, buyer) -> Workflow:
    return Workflow(db, requester, approver_a, approver_b, buyer)


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def client(session_factory):
    from purchase_workflow.main import app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def headers_for():
    """Bearer headers for an actor, signed like the identity service's tokens."""
    return auth_headers
