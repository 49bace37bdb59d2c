# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Shared fixtures: a controllable clock, in-memory collaborators and a runner
wired to a temporary enrollment store.
"""

from datetime import datetime, timedelta, timezone
from tempfile import TemporaryDirectory
from unittest.mock import AsyncMock

import pytest

from crm_workflows.core.config import Config
from crm_workflows.workflow.actions import ActionDispatcher
from crm_workflows.workflow.collaborators import (
    Collaborators,
    InMemoryMailer,
    InMemoryNotifier,
    InMemoryRepository,
    InMemoryUserDirectory,
)
from crm_workflows.workflow.runner import EnrollmentRunner, RetryPolicy
from crm_workflows.workflow.scheduler import InMemoryScheduler
from crm_workflows.workflow.store import EnrollmentStore


T0 = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to"""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tmp_dir():
    with TemporaryDirectory() as tmp:
        yield tmp


@pytest.fixture
def collaborators():
    return Collaborators(
        mailer=InMemoryMailer(),
        notifier=InMemoryNotifier(),
        tasks=InMemoryRepository("Task"),
        deals=InMemoryRepository("Deal", {"deal-1": {"id": "deal-1", "stage_id": "lead"}}),
        patients=InMemoryRepository("Patient", {"pat-1": {"id": "pat-1", "email": "jane@example.com"}}),
        http=AsyncMock(request=AsyncMock(return_value=200)),
        users=InMemoryUserDirectory({"user-1": {"id": "user-1", "email": "doctor@example.com"}}),
    )


@pytest.fixture
def dispatcher(collaborators):
    return ActionDispatcher.from_collaborators(collaborators, Config())


@pytest.fixture
def scheduler():
    return InMemoryScheduler(batch_size=10)


@pytest.fixture
def store(tmp_dir):
    return EnrollmentStore(tmp_dir)


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def runner(dispatcher, scheduler, store, clock, sleep):
    return EnrollmentRunner(
        dispatcher=dispatcher,
        scheduler=scheduler,
        store=store,
        retry_policy=RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=30.0),
        clock=clock,
        sleep=sleep,
    )
