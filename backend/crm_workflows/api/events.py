# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Event, wake-up and enrollment API Routes
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from crm_workflows.core.dependencies import get_enrollment_service, get_scheduler
from crm_workflows.core.errors import ExecutionError, NotFoundError, ValidationError
from crm_workflows.core.logging import get_api_logger
from crm_workflows.services.enrollment_service import EnrollmentService
from crm_workflows.workflow.models import CRMEvent, EnrollmentStatus

router = APIRouter(tags=["enrollments"])
logger = get_api_logger()


class WakeupRequest(BaseModel):
    wakeup_id: str
    enrollment_id: str
    payload: Dict[str, Any] = Field(default_factory=dict)


class SweepRequest(BaseModel):
    now: Optional[datetime] = None


@router.post("/events")
async def ingest_event(
    event: CRMEvent,
    service: EnrollmentService = Depends(get_enrollment_service)
) -> Dict[str, Any]:
    """Enroll a CRM event into every matching active workflow"""
    enrollments = await service.handle_event(event)
    return {
        "event_id": event.event_id,
        "enrollments": [e.model_dump(mode="json") for e in enrollments],
    }


@router.post("/wakeups")
async def deliver_wakeup(
    request: WakeupRequest,
    service: EnrollmentService = Depends(get_enrollment_service)
) -> Dict[str, Any]:
    """Deliver one wake-up to its enrollment"""
    try:
        enrollment = await service.handle_wakeup(
            request.wakeup_id, {**request.payload, "enrollment_id": request.enrollment_id}
        )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ExecutionError as e:
        logger.error(f"Wake-up {request.wakeup_id} failed: {e}")
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return enrollment.model_dump(mode="json")


@router.post("/wakeups/run")
async def run_due_wakeups(
    request: Optional[SweepRequest] = None,
    scheduler=Depends(get_scheduler)
) -> Dict[str, Any]:
    """Deliver every due wake-up (cron entry point)"""
    delivered = await scheduler.deliver_due(request.now if request else None)
    return {"delivered": delivered, "pending": len(scheduler.pending())}


@router.get("/enrollments")
async def list_enrollments(
    workflow_id: Optional[str] = None,
    status: Optional[EnrollmentStatus] = None,
    limit: int = 100,
    service: EnrollmentService = Depends(get_enrollment_service)
) -> List[Dict[str, Any]]:
    enrollments = await service.list_enrollments(workflow_id=workflow_id, status=status, limit=limit)
    return [e.model_dump(mode="json") for e in enrollments]


@router.get("/enrollments/{enrollment_id}")
async def get_enrollment(
    enrollment_id: str,
    service: EnrollmentService = Depends(get_enrollment_service)
) -> Dict[str, Any]:
    try:
        enrollment = await service.get_enrollment(enrollment_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return enrollment.model_dump(mode="json")
