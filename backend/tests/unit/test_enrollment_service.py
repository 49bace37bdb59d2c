# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Unit tests for EnrollmentService: event routing and wake-up handling
"""

from pathlib import Path

import pytest

from crm_workflows.core.errors import ExecutionError, ValidationError
from crm_workflows.services.enrollment_service import EnrollmentService
from crm_workflows.services.workflow_service import WorkflowService
from crm_workflows.workflow.models import CRMEvent, Enrollment, EnrollmentStatus, NodeKind, TriggerType


@pytest.fixture
def workflow_service(tmp_dir):
    return WorkflowService(workflows_dir=Path(tmp_dir) / "workflows")


@pytest.fixture
def service(workflow_service, runner, store, scheduler):
    enrollment_service = EnrollmentService(workflow_service, runner, store)
    scheduler.on_wakeup(enrollment_service.handle_wakeup)
    return enrollment_service


async def active_workflow(workflow_service, name, trigger_type, trigger_config=None, steps=(NodeKind.ACTION,)):
    workflow = await workflow_service.create_workflow(name, trigger_type, trigger_config)
    parent = workflow["config"]["nodes"][0]["id"]
    for kind in steps:
        result = await workflow_service.insert_node(workflow["id"], parent, None, kind)
        parent = result["node_id"]
    return await workflow_service.set_active(workflow["id"], True)


def stage_event(to_stage, event_id="evt-1", from_stage="lead"):
    return CRMEvent(
        trigger_type=TriggerType.DEAL_STAGE_CHANGED,
        entity_id="deal-1",
        event_id=event_id,
        snapshot={
            "from_stage_id": from_stage,
            "to_stage_id": to_stage,
            "pipeline": "sales",
            "patient": {"id": "pat-1", "email": "jane@example.com"},
            "deal": {"id": "deal-1"},
        },
    )


@pytest.mark.asyncio
async def test_event_enrolls_matching_workflows(service, workflow_service, collaborators):
    won = await active_workflow(workflow_service, "Won", TriggerType.DEAL_STAGE_CHANGED, {"to_stage_id": "won"})
    await active_workflow(workflow_service, "Lost", TriggerType.DEAL_STAGE_CHANGED, {"to_stage_id": "lost"})
    await active_workflow(workflow_service, "New patient", TriggerType.PATIENT_CREATED)

    enrollments = await service.handle_event(stage_event("won"))

    assert [e.workflow_id for e in enrollments] == [won["id"]]
    assert enrollments[0].workflow_version == won["version"]
    assert enrollments[0].status == EnrollmentStatus.COMPLETED
    assert len(collaborators.mailer.sent) == 1


@pytest.mark.asyncio
async def test_inactive_workflows_are_ignored(service, workflow_service):
    workflow = await active_workflow(workflow_service, "Won", TriggerType.DEAL_STAGE_CHANGED)
    await workflow_service.set_active(workflow["id"], False)

    assert await service.handle_event(stage_event("won")) == []


@pytest.mark.asyncio
async def test_duplicate_event_is_enrolled_once(service, workflow_service, collaborators):
    await active_workflow(workflow_service, "Won", TriggerType.DEAL_STAGE_CHANGED)

    first = await service.handle_event(stage_event("won", event_id="evt-7"))
    second = await service.handle_event(stage_event("won", event_id="evt-7"))

    assert first[0].enrollment_id == second[0].enrollment_id
    assert len(collaborators.mailer.sent) == 1


@pytest.mark.asyncio
async def test_wakeup_resumes_on_pinned_version(service, workflow_service, scheduler, clock, collaborators):
    workflow = await active_workflow(
        workflow_service, "Nurture", TriggerType.DEAL_STAGE_CHANGED, steps=(NodeKind.DELAY, NodeKind.ACTION)
    )
    [enrollment] = await service.handle_event(stage_event("won"))
    assert enrollment.status == EnrollmentStatus.WAITING_DELAY

    # Editing the workflow afterwards does not affect the running enrollment
    delay_id = workflow["config"]["nodes"][1]["id"]
    await workflow_service.delete_node(workflow["id"], delay_id)

    clock.advance(hours=1)
    assert await scheduler.deliver_due(clock.now) == 1

    resumed = await service.get_enrollment(enrollment.enrollment_id)
    assert resumed.status == EnrollmentStatus.COMPLETED
    assert resumed.workflow_version == workflow["version"]
    assert len(collaborators.mailer.sent) == 1


@pytest.mark.asyncio
async def test_wakeup_without_enrollment_id(service):
    with pytest.raises(ValidationError):
        await service.handle_wakeup("wk_1", {})


@pytest.mark.asyncio
async def test_wakeup_for_missing_version(service, store):
    orphan = Enrollment(workflow_id="wf_gone", workflow_version=4, event_key="k")
    await store.save(orphan)

    with pytest.raises(ExecutionError):
        await service.handle_wakeup("wk_1", {"enrollment_id": orphan.enrollment_id})


@pytest.mark.asyncio
async def test_list_enrollments(service, workflow_service):
    workflow = await active_workflow(workflow_service, "Won", TriggerType.DEAL_STAGE_CHANGED)
    await service.handle_event(stage_event("won", event_id="a"))
    await service.handle_event(stage_event("won", event_id="b"))

    enrollments = await service.list_enrollments(workflow_id=workflow["id"])
    assert len(enrollments) == 2
