# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Unit tests for placeholder rendering and trigger matching
"""

from crm_workflows.workflow.definition import WorkflowDefinition
from crm_workflows.workflow.models import CRMEvent, TriggerType
from crm_workflows.workflow.templates import render_template, resolve_path, text_to_html
from crm_workflows.workflow.triggers import matches_deal_stage_changed, matches_trigger


CONTEXT = {"patient": {"first_name": "Jane", "visits": [{"date": "2025-01-02"}]}}


def test_resolve_path_walks_mappings_and_lists():
    assert resolve_path(CONTEXT, "patient.first_name") == "Jane"
    assert resolve_path(CONTEXT, "patient.visits.0.date") == "2025-01-02"
    assert resolve_path(CONTEXT, "patient.visits.3.date") is None
    assert resolve_path(CONTEXT, "patient.last_name") is None


def test_render_template_fills_placeholders():
    assert render_template("Hi {{ patient.first_name }}!", CONTEXT) == "Hi Jane!"
    assert render_template("Hi {{patient.last_name}}.", CONTEXT) == "Hi ."
    assert render_template("", CONTEXT) == ""


def test_text_to_html_escapes_and_breaks_lines():
    assert text_to_html("a < b & c\nnext") == "a &lt; b &amp; c<br />next"


def test_deal_stage_filters():
    config = {"to_stage_id": "won", "pipeline": "Sales"}
    assert matches_deal_stage_changed(config, {"from_stage_id": "lead", "to_stage_id": "won", "pipeline": "sales"})
    assert not matches_deal_stage_changed(config, {"from_stage_id": "lead", "to_stage_id": "lost", "pipeline": "sales"})
    assert not matches_deal_stage_changed(config, {"from_stage_id": "lead", "to_stage_id": "won", "pipeline": "service"})


def test_from_stage_filter_reads_nested_stage():
    config = {"from_stage_id": "lead"}
    assert matches_deal_stage_changed(config, {"from_stage": {"id": "lead"}, "to_stage": {"id": "won"}})
    assert not matches_deal_stage_changed(config, {"from_stage": {"id": "new"}, "to_stage": {"id": "won"}})


def test_pipeline_filter_skipped_when_event_has_none():
    assert matches_deal_stage_changed({"pipeline": "sales"}, {"from_stage_id": "lead", "to_stage_id": "won"})


def test_creation_event_matches_initial_stage():
    creation = {"to_stage_id": "lead"}
    assert matches_deal_stage_changed({}, creation)
    assert matches_deal_stage_changed({"to_stage_id": "lead"}, creation)
    assert not matches_deal_stage_changed({"to_stage_id": "won"}, creation)


def test_creation_event_with_from_stage_filter():
    creation = {"to_stage_id": "lead"}
    assert not matches_deal_stage_changed({"from_stage_id": "new"}, creation)
    assert matches_deal_stage_changed({"from_stage_id": "new", "trigger_on_creation": True}, creation)
    assert not matches_deal_stage_changed(
        {"from_stage_id": "new", "to_stage_id": "won", "trigger_on_creation": True}, creation
    )


def test_matches_trigger_checks_type_first():
    definition = WorkflowDefinition.new(trigger_type=TriggerType.PATIENT_CREATED)
    assert matches_trigger(definition, CRMEvent(trigger_type="patient_created", entity_id="p1"))
    assert not matches_trigger(definition, CRMEvent(trigger_type="task_completed", entity_id="p1"))
