# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Trigger matching - decides whether a CRM event enrolls into a workflow.
"""

from typing import Any, Dict

from .definition import WorkflowDefinition
from .models import CRMEvent, TriggerType
from .templates import resolve_path


def _event_value(snapshot: Dict[str, Any], *paths: str) -> Any:
    for path in paths:
        value = resolve_path(snapshot, path)
        if value not in (None, ""):
            return value
    return None


def matches_deal_stage_changed(config: Dict[str, Any], snapshot: Dict[str, Any]) -> bool:
    """
    Filter for deal_stage_changed.

    A creation event carries no from-stage. With trigger_on_creation only the
    initial stage is checked; without it the workflow must not expect a
    from-stage. The pipeline filter applies when the event names a pipeline.
    """
    from_stage = _event_value(snapshot, "from_stage_id", "from_stage.id")
    to_stage = _event_value(snapshot, "to_stage_id", "to_stage.id")
    pipeline = _event_value(snapshot, "pipeline", "deal.pipeline")
    is_creation = from_stage is None

    if config.get("to_stage_id") and config["to_stage_id"] != to_stage:
        return False

    if config.get("from_stage_id"):
        if is_creation and not config.get("trigger_on_creation"):
            return False
        if not is_creation and config["from_stage_id"] != from_stage:
            return False

    wanted_pipeline = config.get("pipeline")
    if wanted_pipeline and pipeline and str(wanted_pipeline).lower() != str(pipeline).lower():
        return False

    return True


def matches_trigger(definition: WorkflowDefinition, event: CRMEvent) -> bool:
    if definition.trigger_type != event.trigger_type:
        return False
    if event.trigger_type == TriggerType.DEAL_STAGE_CHANGED:
        return matches_deal_stage_changed(definition.trigger_config, event.snapshot)
    return True
