"""
Concurrency tests: two sessions on a file-backed SQLite database, with the
second operation forced to interleave with the first at the worst moment.

Tests: concurrent approvals of the same request, colliding document numbers.
"""

from datetime import datetime

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from purchase_workflow.database import Base
from purchase_workflow.exceptions import ConcurrentModification
from purchase_workflow.models.approval import ApprovalHistory
from purchase_workflow.schemas.purchase_request import PurchaseRequestCreate, RequestItemCreate
from purchase_workflow.services import approval_service, request_service
from purchase_workflow.services.approval_service import submit_approval
from purchase_workflow.services.phase_registry import Gate, Phase
from purchase_workflow.services.request_service import create_purchase_request, get_request
from purchase_workflow.services.transition_service import transition_phase

CHAIR = {"description": "Cadeira", "requested_quantity": 1, "estimated_unit_price_cents": 80_000}


@pytest_asyncio.fixture
async def file_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'workflow.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def file_sessions(file_engine):
    return async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)


def _body() -> PurchaseRequestCreate:
    return PurchaseRequestCreate(items=[RequestItemCreate(**CHAIR)])


@pytest.mark.asyncio
async def test_only_one_of_two_concurrent_approvals_commits(
    file_sessions, requester, approver_a, approver_b, monkeypatch, events
):
    async with file_sessions() as setup:
        pr = await create_purchase_request(setup, requester, _body())
        await transition_phase(setup, pr.id, Phase.APROVACAO_A1, requester)
        pr_id = pr.id

    original_lock = approval_service.lock_request
    raced = []

    async def lock_then_lose_race(session, request_id):
        pr = await original_lock(session, request_id)
        if session is late and not raced:
            raced.append(True)
            await submit_approval(early, request_id, approver_a, Gate.A1, True)
        return pr

    monkeypatch.setattr(approval_service, "lock_request", lock_then_lose_race)

    async with file_sessions() as early, file_sessions() as late:
        events.clear()
        with pytest.raises(ConcurrentModification) as exc_info:
            await submit_approval(late, pr_id, approver_b, Gate.A1, True)

    assert raced == [True]
    assert exc_info.value.retryable is True
    assert exc_info.value.request_id == str(pr_id)

    async with file_sessions() as check:
        pr = await get_request(check, pr_id)
        assert pr.current_phase == Phase.COTACAO.value
        assert pr.first_approver_id == approver_a.id
        history_rows = (await check.execute(
            select(func.count(ApprovalHistory.id)).where(ApprovalHistory.purchase_request_id == pr_id)
        )).scalar()
        assert history_rows == 1

    # only the winning approval was published
    assert [e.new_phase for e in events] == [Phase.COTACAO.value]


@pytest.mark.asyncio
async def test_colliding_request_number_is_retryable(file_sessions, requester, monkeypatch):
    original_number = request_service.next_document_number
    raced = []

    async def allocate_then_lose_race(session, column, prefix):
        number = await original_number(session, column, prefix)
        if session is late and not raced:
            raced.append(number)
            await create_purchase_request(early, requester, _body())
        return number

    monkeypatch.setattr(request_service, "next_document_number", allocate_then_lose_race)
    year = datetime.utcnow().year

    async with file_sessions() as early, file_sessions() as late:
        with pytest.raises(ConcurrentModification) as exc_info:
            await create_purchase_request(late, requester, _body())
        assert exc_info.value.retryable is True
        assert raced == [f"SOL-{year}-001"]

        retried = await create_purchase_request(late, requester, _body())
        assert retried.request_number == f"SOL-{year}-002"
