# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Action Dispatcher

Maps every ActionType to a handler that performs the side effect through an
external collaborator. Handlers return an Outcome:

- Done: the effect happened (or was skipped), advance past the node
- Scheduled: the effect is due later, suspend until the wake-up

Handlers raise ActionConfigurationError for problems no retry can fix and
TransientActionError for failures worth retrying.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Union

from crm_workflows.core.config import Config, get_config
from crm_workflows.core.errors import ConfigurationError
from crm_workflows.core.logging import get_logger
from .collaborators import Collaborators
from .exceptions import (
    ActionConfigurationError,
    ActionError,
    CollaboratorError,
    TransientActionError,
)
from .models import ActionPayload, ActionType, DelayPayload, Enrollment
from .templates import render_template, resolve_path, text_to_html


logger = get_logger(__name__)


# ============================================================================
# Outcomes
# ============================================================================

@dataclass(frozen=True)
class Done:
    result: Dict[str, Any] = field(default_factory=dict)

    @property
    def skipped(self) -> bool:
        return bool(self.result.get("skipped"))


@dataclass(frozen=True)
class Scheduled:
    at: datetime
    result: Dict[str, Any] = field(default_factory=dict)


Outcome = Union[Done, Scheduled]


@dataclass
class ActionContext:
    """What a handler may read: the frozen fact snapshot and enrollment bookkeeping"""
    fact: Dict[str, Any]
    enrollment: Enrollment
    node_id: str
    now: datetime

    @property
    def occurrences(self) -> int:
        """Scheduled sends already delivered for this node"""
        return self.enrollment.occurrences.get(self.node_id, 0)


def _positive_int(value: Any) -> Optional[int]:
    """Parse a config value as a positive integer, None if it isn't one"""
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def _require(config: Dict[str, Any], key: str, action_type: ActionType) -> Any:
    value = config.get(key)
    if value is None or value == "":
        raise ActionConfigurationError(action_type.value, f"'{key}' is required")
    return value


# ============================================================================
# Handlers
# ============================================================================

class ActionHandler:
    """Base handler. Subclasses set action_type and implement execute()"""

    action_type: ActionType

    async def execute(self, config: Dict[str, Any], ctx: ActionContext) -> Outcome:
        raise NotImplementedError

    async def deliver_scheduled(self, config: Dict[str, Any], ctx: ActionContext) -> Outcome:
        """Perform an effect that execute() scheduled earlier"""
        raise ActionConfigurationError(self.action_type.value, "action has no scheduled effect")


@dataclass(frozen=True)
class SendPlan:
    mode: str
    delay_minutes: Optional[int] = None
    every_days: Optional[int] = None
    times: Optional[int] = None


class SendEmailHandler(ActionHandler):
    """
    Email with three send modes.

    immediate: send now.
    delay: send once after delay_minutes.
    recurring: send recurring_times occurrences, recurring_days apart, the
    first one right away. The count of sends so far lives on the enrollment.

    Invalid delay or recurring parameters fall back to immediate.
    """

    action_type = ActionType.SEND_EMAIL

    def __init__(self, mailer, users=None, max_recurring_times: int = 30):
        self.mailer = mailer
        self.users = users
        self.max_recurring_times = max_recurring_times

    def plan(self, config: Dict[str, Any]) -> SendPlan:
        mode = str(config.get("send_mode") or "immediate").lower()

        if mode == "delay":
            minutes = _positive_int(config.get("delay_minutes"))
            if minutes is not None:
                return SendPlan("delay", delay_minutes=minutes)
            logger.warning(f"Invalid delay_minutes {config.get('delay_minutes')!r}, sending immediately")

        elif mode == "recurring":
            every = _positive_int(config.get("recurring_days", config.get("recurring_every_days")))
            times = _positive_int(config.get("recurring_times"))
            if every is not None and times is not None:
                return SendPlan("recurring", every_days=every, times=min(times, self.max_recurring_times))
            logger.warning("Invalid recurring parameters, sending immediately")

        return SendPlan("immediate")

    async def execute(self, config: Dict[str, Any], ctx: ActionContext) -> Outcome:
        plan = self.plan(config)

        recipient = await self.resolve_recipient(config, ctx.fact)
        if not recipient:
            return Done({"skipped": True, "reason": "No recipient email address"})

        if plan.mode == "delay":
            return Scheduled(
                at=ctx.now + timedelta(minutes=plan.delay_minutes),
                result={"send_mode": "delay", "recipient": recipient},
            )
        if plan.mode == "recurring":
            return Scheduled(
                at=ctx.now,
                result={"send_mode": "recurring", "recipient": recipient, "times": plan.times},
            )

        return Done(await self._send(config, ctx, recipient))

    async def deliver_scheduled(self, config: Dict[str, Any], ctx: ActionContext) -> Outcome:
        plan = self.plan(config)

        if plan.mode == "recurring" and ctx.occurrences >= plan.times:
            return Done({"sent": False, "reason": "All occurrences already sent"})

        recipient = await self.resolve_recipient(config, ctx.fact)
        if not recipient:
            return Done({"skipped": True, "reason": "No recipient email address"})

        result = await self._send(config, ctx, recipient)
        occurrence = ctx.occurrences + 1
        result["occurrence"] = occurrence

        if plan.mode == "recurring" and occurrence < plan.times:
            return Scheduled(at=ctx.now + timedelta(days=plan.every_days), result=result)
        return Done(result)

    async def resolve_recipient(self, config: Dict[str, Any], fact: Dict[str, Any]) -> Optional[str]:
        """Recipient address for the configured recipient, None if unresolvable"""
        recipient_type = config.get("recipient") or config.get("recipient_type") or "patient"
        patient_email = resolve_path(fact, "patient.email")

        if recipient_type == "specific_email":
            return config.get("email_address") or config.get("specific_email") or None

        if recipient_type == "specific_user":
            user_id = config.get("user_id") or config.get("specific_user_id")
            if not user_id or self.users is None:
                return None
            user = await self.users.get_user(user_id)
            return (user or {}).get("email") or None

        if recipient_type == "deal_patient":
            return resolve_path(fact, "deal.patient.email") or patient_email or None

        # "patient" and "assigned_user" both land on the patient's address
        return patient_email or None

    async def _send(self, config: Dict[str, Any], ctx: ActionContext, recipient: str) -> Dict[str, Any]:
        subject = render_template(config.get("subject") or config.get("subject_template") or "", ctx.fact)
        body = text_to_html(render_template(config.get("body") or config.get("body_template") or "", ctx.fact))
        response = await self.mailer.send(
            recipient=recipient,
            subject=subject,
            body=body,
            template_id=config.get("template_id"),
        )
        return {"sent": True, "recipient": recipient, "subject": subject, **(response or {})}


class SendNotificationHandler(ActionHandler):
    action_type = ActionType.SEND_NOTIFICATION

    def __init__(self, notifier):
        self.notifier = notifier

    async def execute(self, config: Dict[str, Any], ctx: ActionContext) -> Outcome:
        user_id = config.get("user_id") or resolve_path(ctx.fact, "deal.assigned_to")
        if not user_id:
            raise ActionConfigurationError(self.action_type.value, "'user_id' is required")
        message = render_template(_require(config, "message", self.action_type), ctx.fact)
        notification = await self.notifier.notify(user_id, message)
        return Done({"user_id": user_id, "message": message, **(notification or {})})


class CreateTaskHandler(ActionHandler):
    """Task for the fact's patient; a list of assignees is served round-robin"""

    action_type = ActionType.CREATE_TASK

    def __init__(self, tasks):
        self.tasks = tasks

    async def execute(self, config: Dict[str, Any], ctx: ActionContext) -> Outcome:
        title = render_template(config.get("title") or "New Task", ctx.fact)
        due_days = _positive_int(config.get("due_days")) or 1
        assignee = await self._pick_assignee(config.get("assign_to"))

        deal_title = resolve_path(ctx.fact, "deal.title")
        data = {
            "title": title,
            "content": f"Auto-created by workflow for deal: {deal_title}" if deal_title else None,
            "patient_id": resolve_path(ctx.fact, "patient.id"),
            "deal_id": resolve_path(ctx.fact, "deal.id"),
            "assigned_to": assignee,
            "activity_date": (ctx.now + timedelta(days=due_days)).isoformat(),
            "priority": config.get("priority") or "medium",
            "status": "not_started",
        }
        task = await self.tasks.create(data)
        return Done({"task_id": task.get("id"), "title": title, "assigned_to": assignee})

    async def _pick_assignee(self, assign_to: Any) -> Optional[str]:
        if isinstance(assign_to, list):
            candidates = [a for a in assign_to if a]
            if not candidates:
                return None
            if len(candidates) == 1:
                return candidates[0]
            count = await self.tasks.count()
            return candidates[count % len(candidates)]
        return assign_to or None


class UpdateTaskHandler(ActionHandler):
    action_type = ActionType.UPDATE_TASK

    FIELDS = ("title", "status", "priority", "assigned_to", "content")

    def __init__(self, tasks):
        self.tasks = tasks

    async def execute(self, config: Dict[str, Any], ctx: ActionContext) -> Outcome:
        task_id = config.get("task_id") or resolve_path(ctx.fact, "task.id")
        if not task_id:
            raise ActionConfigurationError(self.action_type.value, "no task to update")

        updates = {
            key: render_template(value, ctx.fact) if isinstance(value, str) else value
            for key, value in config.items()
            if key in self.FIELDS and value not in (None, "")
        }
        due_days = _positive_int(config.get("due_days"))
        if due_days is not None:
            updates["activity_date"] = (ctx.now + timedelta(days=due_days)).isoformat()
        if not updates:
            raise ActionConfigurationError(self.action_type.value, "nothing to update")

        await self.tasks.update(task_id, updates)
        return Done({"task_id": task_id, "updated": sorted(updates)})


class CreateDealHandler(ActionHandler):
    action_type = ActionType.CREATE_DEAL

    DEFAULT_TITLE = "{{patient.first_name}} {{patient.last_name}} - New Inquiry"

    def __init__(self, deals):
        self.deals = deals

    async def execute(self, config: Dict[str, Any], ctx: ActionContext) -> Outcome:
        title = render_template(config.get("title") or self.DEFAULT_TITLE, ctx.fact).strip(" -")
        data = {
            "title": title or "New Inquiry",
            "patient_id": resolve_path(ctx.fact, "patient.id"),
            "stage_id": config.get("stage_id"),
            "pipeline": config.get("pipeline") or "sales",
            "value": config.get("value"),
        }
        deal = await self.deals.create(data)
        return Done({"deal_id": deal.get("id"), "title": data["title"]})


class UpdateDealHandler(ActionHandler):
    action_type = ActionType.UPDATE_DEAL

    def __init__(self, deals):
        self.deals = deals

    async def execute(self, config: Dict[str, Any], ctx: ActionContext) -> Outcome:
        deal_id = config.get("deal_id") or resolve_path(ctx.fact, "deal.id")
        if not deal_id:
            raise ActionConfigurationError(self.action_type.value, "no deal to update")

        updates: Dict[str, Any] = {}
        if config.get("new_stage_id"):
            updates["stage_id"] = config["new_stage_id"]
        for key in ("title", "pipeline", "value", "notes"):
            if config.get(key) not in (None, ""):
                value = config[key]
                updates[key] = render_template(value, ctx.fact) if isinstance(value, str) else value
        if not updates:
            raise ActionConfigurationError(self.action_type.value, "nothing to update")

        await self.deals.update(deal_id, updates)
        return Done({"deal_id": deal_id, "updated": sorted(updates)})


class UpdatePatientHandler(ActionHandler):
    action_type = ActionType.UPDATE_PATIENT

    def __init__(self, patients):
        self.patients = patients

    async def execute(self, config: Dict[str, Any], ctx: ActionContext) -> Outcome:
        patient_id = config.get("patient_id") or resolve_path(ctx.fact, "patient.id")
        if not patient_id:
            raise ActionConfigurationError(self.action_type.value, "no patient to update")

        fields = config.get("fields")
        if not isinstance(fields, dict) or not fields:
            raise ActionConfigurationError(self.action_type.value, "'fields' must be a non-empty mapping")

        updates = {
            key: render_template(value, ctx.fact) if isinstance(value, str) else value
            for key, value in fields.items()
        }
        await self.patients.update(patient_id, updates)
        return Done({"patient_id": patient_id, "updated": sorted(updates)})


class WebhookHandler(ActionHandler):
    """Calls an external URL; any non-2xx response is treated as retryable"""

    action_type = ActionType.WEBHOOK

    METHODS = ("POST", "GET", "PUT")

    def __init__(self, http):
        self.http = http

    async def execute(self, config: Dict[str, Any], ctx: ActionContext) -> Outcome:
        url = _require(config, "url", self.action_type)
        method = str(config.get("method") or "POST").upper()
        if method not in self.METHODS:
            raise ActionConfigurationError(self.action_type.value, f"unsupported method '{method}'")

        body = config.get("body")
        if body is None:
            body = {
                "workflow_id": ctx.enrollment.workflow_id,
                "enrollment_id": ctx.enrollment.enrollment_id,
                "data": ctx.fact,
            }

        status_code = await self.http.request(url, method, body)
        if not 200 <= status_code < 300:
            raise TransientActionError(self.action_type.value, f"{method} {url} returned {status_code}")
        return Done({"url": url, "method": method, "status_code": status_code})


class DelayActionHandler(ActionHandler):
    """Delay expressed as an action; waits like a Delay node"""

    action_type = ActionType.DELAY

    async def execute(self, config: Dict[str, Any], ctx: ActionContext) -> Outcome:
        try:
            delay = DelayPayload.model_validate(config or {})
        except ValueError as e:
            raise ActionConfigurationError(self.action_type.value, str(e))
        return Scheduled(at=ctx.now + delay.duration(), result={"delay": str(delay.duration())})

    async def deliver_scheduled(self, config: Dict[str, Any], ctx: ActionContext) -> Outcome:
        return Done({"waited": True})


# ============================================================================
# Dispatcher
# ============================================================================

class ActionDispatcher:
    """
    Routes an action payload to the handler registered for its type.

    The handler table must cover every ActionType; a gap is a configuration
    error raised at construction.
    """

    def __init__(self, handlers: List[ActionHandler]):
        self.handlers: Dict[ActionType, ActionHandler] = {h.action_type: h for h in handlers}
        missing = [t.value for t in ActionType if t not in self.handlers]
        if missing:
            raise ConfigurationError(f"No action handler registered for: {', '.join(missing)}")

    @classmethod
    def from_collaborators(cls, collaborators: Collaborators, config: Optional[Config] = None) -> "ActionDispatcher":
        config = config or get_config()
        return cls([
            SendEmailHandler(collaborators.mailer, collaborators.users, config.recurring_max_times),
            SendNotificationHandler(collaborators.notifier),
            CreateTaskHandler(collaborators.tasks),
            UpdateTaskHandler(collaborators.tasks),
            CreateDealHandler(collaborators.deals),
            UpdateDealHandler(collaborators.deals),
            UpdatePatientHandler(collaborators.patients),
            WebhookHandler(collaborators.http),
            DelayActionHandler(),
        ])

    async def execute(self, payload: ActionPayload, ctx: ActionContext) -> Outcome:
        handler = self.handlers[payload.action_type]
        return await self._call(payload, handler.execute(payload.config, ctx))

    async def deliver_scheduled(self, payload: ActionPayload, ctx: ActionContext) -> Outcome:
        handler = self.handlers[payload.action_type]
        return await self._call(payload, handler.deliver_scheduled(payload.config, ctx))

    async def _call(self, payload: ActionPayload, call) -> Outcome:
        action_type = payload.action_type.value
        try:
            return await call
        except ActionError:
            raise
        except CollaboratorError as e:
            if e.retryable:
                raise TransientActionError(action_type, str(e))
            raise ActionError(action_type, str(e))
        except Exception as e:
            raise ActionError(action_type, f"{type(e).__name__}: {e}")
