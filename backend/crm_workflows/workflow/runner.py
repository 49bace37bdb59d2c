# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Enrollment Runner

Drives one enrollment through a workflow version:

    running -> waiting_delay | completed | failed
    waiting_delay -> running   (on wake-up)

Steps run sequentially from the trigger's successor. The only suspension
point is a scheduled resume; state is persisted before the wake-up is
registered, so a wake-up never finds stale state.
"""

import asyncio
import copy
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

from crm_workflows.core.errors import sanitize_error_for_user
from crm_workflows.core.logging import get_logger, log_event
from .actions import ActionContext, ActionDispatcher, Outcome, Scheduled
from .conditions import evaluate_condition
from .definition import WorkflowDefinition
from .exceptions import ActionError, NodeNotFound, TransientActionError
from .models import (
    CRMEvent,
    Enrollment,
    EnrollmentStatus,
    NodeKind,
    StepRecord,
    StepStatus,
    WorkflowNode,
    utcnow,
)
from .store import EnrollmentStore


logger = get_logger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for transient action failures"""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0

    def delay(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)


def event_key(workflow_id: str, event: CRMEvent) -> str:
    return f"{workflow_id}:{event.trigger_type.value}:{event.entity_id}:{event.event_id}"


class EnrollmentRunner:
    """Executes enrollments; one runner serves every workflow"""

    def __init__(
        self,
        dispatcher: ActionDispatcher,
        scheduler,
        store: EnrollmentStore,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.dispatcher = dispatcher
        self.scheduler = scheduler
        self.store = store
        self.retry_policy = retry_policy or RetryPolicy()
        self.clock = clock
        self.sleep = sleep

    async def start(self, definition: WorkflowDefinition, event: CRMEvent) -> Enrollment:
        """
        Enroll an event into a workflow version and run until suspension or end.

        Delivering the same event again returns the existing enrollment.
        """
        enrollment = Enrollment(
            workflow_id=definition.workflow_id,
            workflow_version=definition.version or 1,
            event_key=event_key(definition.workflow_id, event),
            fact_snapshot=copy.deepcopy(event.snapshot),
            cursor=definition.trigger.next,
        )

        owner = await self.store.claim_event(enrollment)
        if owner is not None:
            log_event(
                logger, "enrollment_duplicate_event",
                workflow_id=definition.workflow_id, event_key=enrollment.event_key, enrollment_id=owner
            )
            return await self.store.get(owner)

        log_event(
            logger, "enrollment_started",
            enrollment_id=enrollment.enrollment_id,
            workflow_id=enrollment.workflow_id,
            workflow_version=enrollment.workflow_version,
            trigger_type=event.trigger_type.value,
            entity_id=event.entity_id,
        )

        async with self.store.run_lock(enrollment.enrollment_id):
            await self.store.save(enrollment)
            return await self._run(definition, enrollment)

    async def resume(self, definition: WorkflowDefinition, enrollment_id: str, wakeup_id: str) -> Enrollment:
        """
        Continue a suspended enrollment for one wake-up.

        Idempotent per wake-up id: a re-delivered, stale or early wake-up
        leaves the enrollment untouched.
        """
        async with self.store.run_lock(enrollment_id):
            enrollment = await self.store.get(enrollment_id)

            if wakeup_id in enrollment.consumed_wakeups:
                log_event(logger, "wakeup_already_consumed", enrollment_id=enrollment_id, wakeup_id=wakeup_id)
                return enrollment

            if (
                enrollment.status != EnrollmentStatus.WAITING_DELAY
                or enrollment.pending_wakeup_id != wakeup_id
            ):
                log_event(
                    logger, "wakeup_stale", level="WARNING",
                    enrollment_id=enrollment_id, wakeup_id=wakeup_id, status=enrollment.status.value
                )
                return enrollment

            now = self.clock()
            if enrollment.scheduled_resume_at is not None and now < enrollment.scheduled_resume_at:
                log_event(
                    logger, "wakeup_early", level="WARNING",
                    enrollment_id=enrollment_id, wakeup_id=wakeup_id,
                    due_at=enrollment.scheduled_resume_at.isoformat()
                )
                return enrollment

            # Persist the consumed marker before any side effect runs
            enrollment.consumed_wakeups.append(wakeup_id)
            enrollment.pending_wakeup_id = None
            enrollment.scheduled_resume_at = None
            enrollment.status = EnrollmentStatus.RUNNING
            await self.store.save(enrollment)

            log_event(logger, "enrollment_resumed", enrollment_id=enrollment_id, wakeup_id=wakeup_id)

            if enrollment.pending_node_id is not None:
                suspended = await self._deliver_pending(definition, enrollment)
                if suspended or enrollment.is_terminal:
                    return enrollment

            return await self._run(definition, enrollment)

    async def reschedule_waiting(self) -> int:
        """
        Re-register the wake-ups of suspended enrollments with the scheduler.

        The scheduler keeps wake-ups in memory only; called on startup so
        enrollments persisted as waiting resume after a restart. Returns the
        number of wake-ups registered.
        """
        count = 0
        for enrollment in self.store.list(status=EnrollmentStatus.WAITING_DELAY, limit=None):
            if not enrollment.pending_wakeup_id or enrollment.scheduled_resume_at is None:
                logger.warning(f"Waiting enrollment {enrollment.enrollment_id} has no pending wake-up")
                continue
            await self.scheduler.schedule_at(
                enrollment.scheduled_resume_at,
                enrollment.pending_wakeup_id,
                _wakeup_payload(enrollment, enrollment.pending_node_id or enrollment.cursor),
            )
            count += 1

        log_event(logger, "wakeups_rescheduled", count=count)
        return count

    # ------------------------------------------------------------------
    # Step loop
    # ------------------------------------------------------------------

    async def _run(self, definition: WorkflowDefinition, enrollment: Enrollment) -> Enrollment:
        while True:
            if enrollment.cursor is None:
                await self._complete(enrollment)
                return enrollment

            try:
                node = definition.nodes.get(enrollment.cursor)
            except NodeNotFound as e:
                await self._fail(enrollment, e, node_id=enrollment.cursor)
                return enrollment

            if node.kind == NodeKind.ACTION:
                if not await self._run_action(node, enrollment):
                    return enrollment

            elif node.kind == NodeKind.CONDITION:
                result = evaluate_condition(node.payload, enrollment.fact_snapshot)
                self._record(enrollment, node, StepStatus.COMPLETED, result={"result": result})
                enrollment.cursor = node.true_next if result else node.false_next
                await self.store.save(enrollment)

            elif node.kind == NodeKind.DELAY:
                resume_at = self.clock() + node.payload.duration()
                enrollment.cursor = node.next
                self._record(enrollment, node, StepStatus.SCHEDULED, result={"resume_at": resume_at.isoformat()})
                await self._suspend(enrollment, resume_at, node.id)
                return enrollment

            else:
                await self._fail(enrollment, ActionError(node.kind.value, "trigger reached mid-workflow"), node.id)
                return enrollment

    async def _run_action(self, node: WorkflowNode, enrollment: Enrollment) -> bool:
        """Execute an action node; returns True when the loop should continue"""
        try:
            outcome = await self._with_retry(
                node, enrollment, lambda ctx: self.dispatcher.execute(node.payload, ctx)
            )
        except ActionError as e:
            await self._fail(enrollment, e, node.id, node)
            return False

        if isinstance(outcome, Scheduled):
            enrollment.pending_node_id = node.id
            self._record(enrollment, node, StepStatus.SCHEDULED, result=outcome.result)
            await self._suspend(enrollment, outcome.at, node.id)
            return False

        status = StepStatus.SKIPPED if outcome.skipped else StepStatus.COMPLETED
        self._record(enrollment, node, status, result=outcome.result)
        enrollment.cursor = node.next
        await self.store.save(enrollment)
        return True

    async def _deliver_pending(self, definition: WorkflowDefinition, enrollment: Enrollment) -> bool:
        """
        Deliver the scheduled effect of the action at the cursor.

        Returns True when the enrollment suspended again.
        """
        try:
            node = definition.nodes.get(enrollment.pending_node_id)
        except NodeNotFound as e:
            await self._fail(enrollment, e, enrollment.pending_node_id)
            return False

        try:
            outcome = await self._with_retry(
                node, enrollment, lambda ctx: self.dispatcher.deliver_scheduled(node.payload, ctx)
            )
        except ActionError as e:
            await self._fail(enrollment, e, node.id, node)
            return False

        if outcome.result.get("sent"):
            enrollment.occurrences[node.id] = enrollment.occurrences.get(node.id, 0) + 1

        if isinstance(outcome, Scheduled):
            self._record(enrollment, node, StepStatus.SCHEDULED, result=outcome.result)
            await self._suspend(enrollment, outcome.at, node.id)
            return True

        status = StepStatus.SKIPPED if outcome.skipped else StepStatus.COMPLETED
        self._record(enrollment, node, status, result=outcome.result)
        enrollment.pending_node_id = None
        enrollment.cursor = node.next
        await self.store.save(enrollment)
        return False

    async def _with_retry(self, node: WorkflowNode, enrollment: Enrollment, call) -> Outcome:
        policy = self.retry_policy
        attempt = 1
        while True:
            ctx = ActionContext(
                fact=enrollment.fact_snapshot,
                enrollment=enrollment,
                node_id=node.id,
                now=self.clock(),
            )
            try:
                return await call(ctx)
            except TransientActionError as e:
                if attempt >= policy.max_attempts:
                    raise
                delay = policy.delay(attempt)
                log_event(
                    logger, "action_retry", level="WARNING",
                    enrollment_id=enrollment.enrollment_id, node_id=node.id,
                    attempt=attempt, delay=delay, error=str(e)
                )
                await self.sleep(delay)
                attempt += 1

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    async def _suspend(self, enrollment: Enrollment, resume_at: datetime, node_id: str) -> None:
        wakeup_id = f"wk_{uuid.uuid4().hex}"
        enrollment.status = EnrollmentStatus.WAITING_DELAY
        enrollment.scheduled_resume_at = resume_at
        enrollment.pending_wakeup_id = wakeup_id
        await self.store.save(enrollment)

        await self.scheduler.schedule_at(resume_at, wakeup_id, _wakeup_payload(enrollment, node_id))
        log_event(
            logger, "enrollment_waiting",
            enrollment_id=enrollment.enrollment_id, node_id=node_id,
            wakeup_id=wakeup_id, resume_at=resume_at.isoformat()
        )

    async def _complete(self, enrollment: Enrollment) -> None:
        enrollment.status = EnrollmentStatus.COMPLETED
        enrollment.scheduled_resume_at = None
        await self.store.save(enrollment)
        log_event(
            logger, "enrollment_completed",
            enrollment_id=enrollment.enrollment_id, steps=len(enrollment.steps)
        )

    async def _fail(
        self,
        enrollment: Enrollment,
        error: Exception,
        node_id: Optional[str],
        node: Optional[WorkflowNode] = None,
    ) -> None:
        message = sanitize_error_for_user(error)
        enrollment.status = EnrollmentStatus.FAILED
        enrollment.error = message
        enrollment.scheduled_resume_at = None
        enrollment.pending_wakeup_id = None
        if node is not None:
            self._record(enrollment, node, StepStatus.FAILED, error_message=message)
        await self.store.save(enrollment)
        log_event(
            logger, "enrollment_failed", level="ERROR",
            enrollment_id=enrollment.enrollment_id, node_id=node_id, error=message
        )

    def _record(
        self,
        enrollment: Enrollment,
        node: WorkflowNode,
        status: StepStatus,
        result: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None,
    ) -> None:
        action = None
        if node.kind == NodeKind.ACTION:
            action = node.payload.action_type.value
        elif node.kind == NodeKind.CONDITION:
            action = node.payload.operator.value
        enrollment.steps.append(StepRecord(
            node_id=node.id,
            step_type=node.kind,
            step_action=action,
            status=status,
            executed_at=self.clock(),
            result=result,
            error_message=error_message,
        ))
        log_event(
            logger, "step_executed",
            enrollment_id=enrollment.enrollment_id, node_id=node.id,
            step_type=node.kind.value, status=status.value
        )


def _wakeup_payload(enrollment: Enrollment, node_id: Optional[str]) -> Dict[str, Any]:
    return {
        "enrollment_id": enrollment.enrollment_id,
        "workflow_id": enrollment.workflow_id,
        "workflow_version": enrollment.workflow_version,
        "node_id": node_id,
    }
