# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow API Routes

CRUD, activation and graph edits for workflow definitions.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from crm_workflows.core.dependencies import get_workflow_service
from crm_workflows.core.errors import NotFoundError, ValidationError
from crm_workflows.services.workflow_service import WorkflowService
from crm_workflows.workflow.models import NodeKind, TriggerType

router = APIRouter(prefix="/workflows", tags=["workflows"])


class CreateWorkflowRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    trigger_type: TriggerType = Field(TriggerType.DEAL_STAGE_CHANGED, alias="triggerType")
    trigger_config: Dict[str, Any] = Field(default_factory=dict, alias="config")


class DuplicateWorkflowRequest(BaseModel):
    name: Optional[str] = None


class InsertNodeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    parent_id: str = Field(alias="parentId")
    branch: Optional[str] = None
    kind: NodeKind = Field(alias="type")


@router.get("")
async def list_workflows(
    service: WorkflowService = Depends(get_workflow_service)
) -> List[Dict[str, Any]]:
    """List all workflows (latest versions)"""
    return await service.list_workflows()


@router.post("")
async def create_workflow(
    request: CreateWorkflowRequest,
    service: WorkflowService = Depends(get_workflow_service)
) -> Dict[str, Any]:
    """Create an inactive workflow holding only its trigger"""
    try:
        return await service.create_workflow(request.name, request.trigger_type, request.trigger_config)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{workflow_id}")
async def get_workflow(
    workflow_id: str,
    version: Optional[int] = None,
    service: WorkflowService = Depends(get_workflow_service)
) -> Dict[str, Any]:
    """Get a workflow, latest version unless one is given"""
    try:
        return await service.get_workflow(workflow_id, version)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.put("/{workflow_id}")
async def save_workflow(
    workflow_id: str,
    workflow_data: Dict[str, Any],
    service: WorkflowService = Depends(get_workflow_service)
) -> Dict[str, Any]:
    """Save the full persisted shape as a new version"""
    try:
        return await service.save_workflow(workflow_id, workflow_data)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/{workflow_id}")
async def delete_workflow(
    workflow_id: str,
    service: WorkflowService = Depends(get_workflow_service)
) -> Dict[str, str]:
    """Delete a workflow"""
    try:
        return await service.delete_workflow(workflow_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/{workflow_id}/duplicate")
async def duplicate_workflow(
    workflow_id: str,
    request: Optional[DuplicateWorkflowRequest] = None,
    service: WorkflowService = Depends(get_workflow_service)
) -> Dict[str, Any]:
    """Copy a workflow under a new name; the copy starts inactive"""
    try:
        return await service.duplicate_workflow(workflow_id, request.name if request else None)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/{workflow_id}/activate")
async def activate_workflow(
    workflow_id: str,
    service: WorkflowService = Depends(get_workflow_service)
) -> Dict[str, Any]:
    try:
        return await service.set_active(workflow_id, True)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/{workflow_id}/deactivate")
async def deactivate_workflow(
    workflow_id: str,
    service: WorkflowService = Depends(get_workflow_service)
) -> Dict[str, Any]:
    try:
        return await service.set_active(workflow_id, False)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


# Graph edits. Editor errors are mapped to responses by the app's
# exception handlers.

@router.post("/{workflow_id}/nodes")
async def insert_node(
    workflow_id: str,
    request: InsertNodeRequest,
    service: WorkflowService = Depends(get_workflow_service)
) -> Dict[str, Any]:
    """Insert a default node after parent_id on the given branch"""
    try:
        return await service.insert_node(workflow_id, request.parent_id, request.branch, request.kind)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.patch("/{workflow_id}/nodes/{node_id}")
async def update_node(
    workflow_id: str,
    node_id: str,
    partial: Dict[str, Any],
    service: WorkflowService = Depends(get_workflow_service)
) -> Dict[str, Any]:
    """Merge fields into a node's payload"""
    try:
        return await service.update_node(workflow_id, node_id, partial)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.delete("/{workflow_id}/nodes/{node_id}")
async def delete_node(
    workflow_id: str,
    node_id: str,
    keep_branch: Optional[str] = None,
    service: WorkflowService = Depends(get_workflow_service)
) -> Dict[str, Any]:
    """Delete a node; conditions with children need keep_branch=true|false"""
    try:
        return await service.delete_node(workflow_id, node_id, keep_branch)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
