# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Enrollment Service

Routes CRM events to matching active workflows and wake-ups to the
enrollments they belong to.
"""

import asyncio
from typing import Any, Dict, List, Optional

from crm_workflows.core.errors import ExecutionError, NotFoundError, ValidationError
from crm_workflows.core.logging import get_service_logger, log_event
from crm_workflows.services.workflow_service import WorkflowService
from crm_workflows.workflow.exceptions import WorkflowValidationError
from crm_workflows.workflow.models import CRMEvent, Enrollment, EnrollmentStatus
from crm_workflows.workflow.runner import EnrollmentRunner
from crm_workflows.workflow.store import EnrollmentStore
from crm_workflows.workflow.triggers import matches_trigger
from crm_workflows.workflow.validation import validate_definition

logger = get_service_logger("enrollment")


class EnrollmentService:
    """
    Starts and resumes enrollments.

    Responsibilities:
    - Match an event against every active workflow for its trigger type
    - Run the matching enrollments concurrently
    - Resume the enrollment a wake-up belongs to, on its pinned version
    """

    def __init__(self, workflow_service: WorkflowService, runner: EnrollmentRunner, store: EnrollmentStore):
        self.workflow_service = workflow_service
        self.runner = runner
        self.store = store

    async def handle_event(self, event: CRMEvent) -> List[Enrollment]:
        """Enroll the event into every matching active workflow"""
        candidates = await self.workflow_service.list_active(event.trigger_type)

        matching = []
        for definition in candidates:
            if not matches_trigger(definition, event):
                continue
            try:
                validate_definition(definition, require_steps=True)
            except WorkflowValidationError as e:
                log_event(
                    logger, "workflow_skipped_invalid", level="WARNING",
                    workflow_id=definition.workflow_id, error=str(e)
                )
                continue
            matching.append(definition)

        log_event(
            logger, "event_received",
            trigger_type=event.trigger_type.value, entity_id=event.entity_id,
            event_id=event.event_id, matched=len(matching)
        )

        # Enrollments share nothing mutable, so they run side by side
        return list(await asyncio.gather(
            *(self.runner.start(definition, event) for definition in matching)
        ))

    async def handle_wakeup(self, wakeup_id: str, payload: Dict[str, Any]) -> Enrollment:
        """Scheduler callback: resume the enrollment named in the payload"""
        enrollment_id = payload.get("enrollment_id")
        if not enrollment_id:
            raise ValidationError("Wake-up payload has no enrollment_id", field="enrollment_id")

        enrollment = await self.store.get(enrollment_id)
        try:
            definition = await self.workflow_service.get_definition(
                enrollment.workflow_id, enrollment.workflow_version
            )
        except NotFoundError:
            raise ExecutionError(
                f"Workflow {enrollment.workflow_id} v{enrollment.workflow_version} is missing",
                enrollment_id=enrollment_id,
            )

        return await self.runner.resume(definition, enrollment_id, wakeup_id)

    async def get_enrollment(self, enrollment_id: str) -> Enrollment:
        return await self.store.get(enrollment_id)

    async def list_enrollments(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[EnrollmentStatus] = None,
        limit: int = 100,
    ) -> List[Enrollment]:
        return self.store.list(workflow_id=workflow_id, status=status, limit=limit)
