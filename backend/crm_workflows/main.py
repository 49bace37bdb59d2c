# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
FastAPI application - CRM workflow automation API
Edits workflow graphs, ingests CRM events and resumes enrollments
"""
# Load environment variables from .env file (local development)
from dotenv import load_dotenv
from pathlib import Path as _PathForEnv
_env_path = _PathForEnv(__file__).parent.parent.parent / ".env"
if _env_path.exists():
    load_dotenv(_env_path)

import asyncio
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from crm_workflows.api import events, workflows
from crm_workflows.core.config import Config, get_config
from crm_workflows.core.errors import CRMWorkflowError, sanitize_error_for_user
from crm_workflows.core.logging import get_logger, log_event
from crm_workflows.services.enrollment_service import EnrollmentService
from crm_workflows.services.workflow_service import WorkflowService
from crm_workflows.workflow.actions import ActionDispatcher
from crm_workflows.workflow.collaborators import Collaborators, build_collaborators
from crm_workflows.workflow.exceptions import (
    GraphEditError,
    NodeNotFound,
    WorkflowException,
    WorkflowValidationError,
)
from crm_workflows.workflow.runner import EnrollmentRunner, RetryPolicy
from crm_workflows.workflow.scheduler import InMemoryScheduler
from crm_workflows.workflow.store import EnrollmentStore


logger = get_logger(__name__)


def _status_for(error: WorkflowException) -> int:
    if isinstance(error, NodeNotFound):
        return 404
    if isinstance(error, (GraphEditError, WorkflowValidationError)):
        return 400
    return 500


async def _sweep_loop(scheduler: InMemoryScheduler, interval: float) -> None:
    """Deliver due wake-ups every `interval` seconds until cancelled"""
    while True:
        await asyncio.sleep(interval)
        try:
            await scheduler.deliver_due()
        except CRMWorkflowError as e:
            logger.error(f"Wake-up sweep failed: {e}")


def create_app(config: Optional[Config] = None, collaborators: Optional[Collaborators] = None) -> FastAPI:
    """Build the API. Services are created on startup and stored in app.state"""
    app = FastAPI(
        title="CRM Workflow Engine",
        description="Workflow automation for clinic CRM events",
        version="0.1.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(workflows.router)
    app.include_router(events.router)

    @app.exception_handler(CRMWorkflowError)
    async def crm_error_handler(request: Request, exc: CRMWorkflowError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(WorkflowException)
    async def workflow_error_handler(request: Request, exc: WorkflowException):
        return JSONResponse(
            status_code=_status_for(exc),
            content={"error": exc.__class__.__name__, "message": sanitize_error_for_user(exc, include_type=False)},
        )

    @app.on_event("startup")
    async def startup():
        """
        Startup tasks:
        1. Build collaborators, store, scheduler and runner
        2. Store services in app.state for dependency injection
        3. Re-register wake-ups of enrollments left waiting
        4. Start the background wake-up sweep if configured
        """
        cfg = config or get_config()
        collab = collaborators or build_collaborators(cfg)

        scheduler = InMemoryScheduler(batch_size=cfg.wakeup_batch_size, max_attempts=cfg.wakeup_max_attempts)
        store = EnrollmentStore(cfg.enrollments_dir)
        runner = EnrollmentRunner(
            dispatcher=ActionDispatcher.from_collaborators(collab, cfg),
            scheduler=scheduler,
            store=store,
            retry_policy=RetryPolicy(
                max_attempts=cfg.retry_max_attempts,
                base_delay=cfg.retry_base_delay,
                max_delay=cfg.retry_max_delay,
            ),
        )
        workflow_service = WorkflowService(cfg.workflows_dir)
        enrollment_service = EnrollmentService(workflow_service, runner, store)
        scheduler.on_wakeup(enrollment_service.handle_wakeup)
        await runner.reschedule_waiting()

        app.state.config = cfg
        app.state.collaborators = collab
        app.state.scheduler = scheduler
        app.state.workflow_service = workflow_service
        app.state.enrollment_service = enrollment_service
        app.state.sweep_task = None

        if cfg.scheduler_poll_interval > 0:
            app.state.sweep_task = asyncio.create_task(_sweep_loop(scheduler, cfg.scheduler_poll_interval))

        log_event(
            logger, "service_started",
            workflows_path=cfg.workflows_path, enrollments_path=cfg.enrollments_path
        )

    @app.on_event("shutdown")
    async def shutdown():
        task = getattr(app.state, "sweep_task", None)
        if task is not None:
            task.cancel()

    @app.get("/health")
    async def health():
        """Health check"""
        return {"status": "healthy", "service": "crm-workflows"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    cfg = get_config()
    uvicorn.run(app, host=cfg.service_host, port=cfg.service_port)
