# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Unit tests for enrollment persistence and the wake-up scheduler
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from crm_workflows.core.errors import NotFoundError
from crm_workflows.workflow.models import Enrollment, EnrollmentStatus
from crm_workflows.workflow.scheduler import InMemoryScheduler


T0 = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


def enrollment(event_key="wf:evt", workflow_id="wf_1", **kwargs):
    return Enrollment(workflow_id=workflow_id, workflow_version=1, event_key=event_key, **kwargs)


@pytest.mark.asyncio
async def test_save_and_get_round_trip(store):
    record = enrollment(fact_snapshot={"patient": {"email": "a@b.com"}}, occurrences={"n1": 2})
    await store.save(record)

    loaded = await store.get(record.enrollment_id)
    assert loaded.fact_snapshot == {"patient": {"email": "a@b.com"}}
    assert loaded.occurrences == {"n1": 2}


@pytest.mark.asyncio
async def test_get_missing_enrollment(store):
    with pytest.raises(NotFoundError):
        await store.get("enr_missing")


@pytest.mark.asyncio
async def test_event_key_claimed_once(store):
    first = enrollment()
    second = enrollment()

    assert await store.claim_event(first) is None
    assert await store.claim_event(second) == first.enrollment_id


@pytest.mark.asyncio
async def test_concurrent_claims_have_one_winner(store):
    contenders = [enrollment() for _ in range(5)]
    owners = await asyncio.gather(*(store.claim_event(e) for e in contenders))

    assert owners.count(None) == 1


@pytest.mark.asyncio
async def test_find_by_event_key(store):
    record = enrollment(event_key="wf_1:manual:p1:e1")
    await store.claim_event(record)
    await store.save(record)

    found = await store.find_by_event_key("wf_1:manual:p1:e1")
    assert found.enrollment_id == record.enrollment_id
    assert await store.find_by_event_key("other") is None


@pytest.mark.asyncio
async def test_list_filters(store):
    await store.save(enrollment(event_key="a", workflow_id="wf_1"))
    await store.save(enrollment(event_key="b", workflow_id="wf_2", status=EnrollmentStatus.FAILED))

    assert len(store.list()) == 2
    assert [e.workflow_id for e in store.list(workflow_id="wf_2")] == ["wf_2"]
    assert [e.event_key for e in store.list(status=EnrollmentStatus.FAILED)] == ["b"]


@pytest.mark.asyncio
async def test_scheduler_delivers_only_due_wakeups():
    scheduler = InMemoryScheduler()
    handler = AsyncMock()
    scheduler.on_wakeup(handler)

    await scheduler.schedule_at(T0, "wk_1", {"enrollment_id": "e1"})
    await scheduler.schedule_at(T0 + timedelta(hours=1), "wk_2", {"enrollment_id": "e2"})

    assert await scheduler.deliver_due(T0) == 1
    handler.assert_awaited_once_with("wk_1", {"enrollment_id": "e1"})
    assert [w.wakeup_id for w in scheduler.pending()] == ["wk_2"]


@pytest.mark.asyncio
async def test_failed_delivery_stays_pending():
    scheduler = InMemoryScheduler()
    scheduler.on_wakeup(AsyncMock(side_effect=RuntimeError("store offline")))
    await scheduler.schedule_at(T0, "wk_1", {})

    assert await scheduler.deliver_due(T0) == 0
    [pending] = scheduler.pending()
    assert pending.attempts == 1


@pytest.mark.asyncio
async def test_scheduler_batches_deliveries():
    scheduler = InMemoryScheduler(batch_size=2)
    handler = AsyncMock()
    scheduler.on_wakeup(handler)
    for i in range(5):
        await scheduler.schedule_at(T0, f"wk_{i}", {})

    assert await scheduler.deliver_due(T0) == 5
    assert handler.await_count == 5
    assert scheduler.pending() == []


@pytest.mark.asyncio
async def test_repeatedly_failing_wakeup_is_dead_lettered():
    scheduler = InMemoryScheduler(max_attempts=3)
    handler = AsyncMock(side_effect=RuntimeError("workflow version missing"))
    scheduler.on_wakeup(handler)
    await scheduler.schedule_at(T0, "wk_1", {"enrollment_id": "e1"})

    for _ in range(5):
        assert await scheduler.deliver_due(T0) == 0

    assert handler.await_count == 3
    assert scheduler.pending() == []
    [dead] = scheduler.dead_letters
    assert dead.wakeup_id == "wk_1"
    assert dead.attempts == 3
