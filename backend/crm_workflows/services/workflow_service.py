# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Service

Versioned workflow definitions on disk plus the graph edit operations.
"""

import json
import re
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from crm_workflows.core.errors import NotFoundError, ValidationError
from crm_workflows.core.logging import get_service_logger
from crm_workflows.workflow.definition import WorkflowDefinition
from crm_workflows.workflow.editor import GraphEditor
from crm_workflows.workflow.models import NodeKind, TriggerType, WorkflowNode
from crm_workflows.workflow.validation import validate_definition

logger = get_service_logger("workflow")

T = TypeVar("T")

VERSION_FILE = re.compile(r"^v(\d+)\.json$")
TOMBSTONE = "DELETED"


class WorkflowService:
    """
    Manages workflow definitions.

    Storage structure:
        workflows/
        └── {workflow_id}/
            ├── v1.json
            ├── v2.json
            └── DELETED      (present once the workflow is deleted)

    Every save writes a new version; earlier versions stay readable so
    in-flight enrollments keep running against the version they pinned.
    """

    def __init__(self, workflows_dir: Path):
        self.workflows_dir = Path(workflows_dir)
        self.workflows_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"WorkflowService initialized with directory: {workflows_dir}")

    # ------------------------------------------------------------------
    # Storage helpers
    # ------------------------------------------------------------------

    def _workflow_dir(self, workflow_id: str) -> Path:
        if not workflow_id or "/" in workflow_id or workflow_id.startswith("."):
            raise ValidationError(f"Invalid workflow id '{workflow_id}'", field="id")
        return self.workflows_dir / workflow_id

    def _versions(self, workflow_id: str) -> List[int]:
        workflow_dir = self._workflow_dir(workflow_id)
        if not workflow_dir.is_dir():
            return []
        versions = []
        for file in workflow_dir.iterdir():
            match = VERSION_FILE.match(file.name)
            if match:
                versions.append(int(match.group(1)))
        return sorted(versions)

    def _is_deleted(self, workflow_id: str) -> bool:
        return (self._workflow_dir(workflow_id) / TOMBSTONE).exists()

    def _write_version(self, definition: WorkflowDefinition) -> Dict[str, Any]:
        versions = self._versions(definition.workflow_id)
        definition.version = (versions[-1] + 1) if versions else 1

        workflow_dir = self._workflow_dir(definition.workflow_id)
        workflow_dir.mkdir(parents=True, exist_ok=True)
        data = definition.to_persisted()
        (workflow_dir / f"v{definition.version}.json").write_text(json.dumps(data, indent=2))

        logger.info(f"Saved workflow {definition.workflow_id} version {definition.version}")
        return data

    def _validate(self, definition: WorkflowDefinition) -> None:
        # Drafts may hold only a trigger; an active workflow needs a step
        validate_definition(definition, require_steps=definition.active)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def list_workflows(self) -> List[Dict[str, Any]]:
        """Latest version summary of every workflow"""
        workflows = []

        for workflow_dir in sorted(self.workflows_dir.iterdir()):
            if not workflow_dir.is_dir() or (workflow_dir / TOMBSTONE).exists():
                continue
            try:
                data = await self.get_workflow(workflow_dir.name)
                workflows.append({
                    "id": data.get("id"),
                    "name": data.get("name"),
                    "triggerType": data.get("triggerType"),
                    "active": data.get("active"),
                    "version": data.get("version"),
                    "node_count": len(data.get("config", {}).get("nodes", [])),
                })
            except (NotFoundError, ValueError) as e:
                logger.warning(f"Skipping invalid workflow {workflow_dir.name}: {e}")

        logger.info(f"Listed {len(workflows)} workflows")
        return workflows

    async def get_workflow(self, workflow_id: str, version: Optional[int] = None) -> Dict[str, Any]:
        """Persisted shape of a workflow version (latest when version is None)"""
        versions = self._versions(workflow_id)
        if not versions:
            raise NotFoundError("Workflow", workflow_id)

        if version is None:
            if self._is_deleted(workflow_id):
                raise NotFoundError("Workflow", workflow_id)
            version = versions[-1]
        elif version not in versions:
            raise NotFoundError("Workflow version", f"{workflow_id}@v{version}")

        file_path = self._workflow_dir(workflow_id) / f"v{version}.json"
        return json.loads(file_path.read_text())

    async def get_definition(self, workflow_id: str, version: Optional[int] = None) -> WorkflowDefinition:
        return WorkflowDefinition.from_persisted(await self.get_workflow(workflow_id, version))

    async def create_workflow(
        self,
        name: str,
        trigger_type: TriggerType = TriggerType.DEAL_STAGE_CHANGED,
        trigger_config: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """New inactive workflow holding only its trigger"""
        if not name or not name.strip():
            raise ValidationError("Workflow name is required", field="name")

        definition = WorkflowDefinition.new(
            name=name.strip(),
            trigger_type=trigger_type,
            trigger_config=trigger_config,
            workflow_id=f"wf_{uuid.uuid4().hex[:12]}",
            active=False,
        )
        data = self._write_version(definition)
        logger.info(f"Created workflow: {definition.workflow_id}")
        return data

    async def save_workflow(self, workflow_id: str, workflow_data: Dict[str, Any]) -> Dict[str, Any]:
        """Replace a workflow with a full persisted shape, as a new version"""
        if not self._versions(workflow_id) or self._is_deleted(workflow_id):
            raise NotFoundError("Workflow", workflow_id)

        definition = WorkflowDefinition.from_persisted({**workflow_data, "id": workflow_id})
        definition.workflow_id = workflow_id
        self._validate(definition)
        return self._write_version(definition)

    async def delete_workflow(self, workflow_id: str) -> Dict[str, str]:
        """Hide a workflow; stored versions remain for enrollments still running"""
        if not self._versions(workflow_id) or self._is_deleted(workflow_id):
            raise NotFoundError("Workflow", workflow_id)

        (self._workflow_dir(workflow_id) / TOMBSTONE).touch()
        logger.info(f"Deleted workflow: {workflow_id}")
        return {"message": f"Workflow '{workflow_id}' deleted"}

    async def duplicate_workflow(self, workflow_id: str, name: Optional[str] = None) -> Dict[str, Any]:
        """Copy of the latest version under a new id, always inactive"""
        source = await self.get_definition(workflow_id)
        copy = source.copy()
        copy.workflow_id = f"wf_{uuid.uuid4().hex[:12]}"
        copy.version = None
        copy.name = name or f"{source.name} (Copy)"
        copy.active = False

        data = self._write_version(copy)
        logger.info(f"Duplicated workflow {workflow_id} as {copy.workflow_id}")
        return data

    async def set_active(self, workflow_id: str, active: bool) -> Dict[str, Any]:
        definition = await self.get_definition(workflow_id)
        definition.active = active
        self._validate(definition)
        data = self._write_version(definition)
        logger.info(f"Workflow {workflow_id} {'activated' if active else 'deactivated'}")
        return data

    async def list_active(self, trigger_type: Optional[TriggerType] = None) -> List[WorkflowDefinition]:
        """Latest version of every active workflow, optionally for one trigger type"""
        definitions = []
        for summary in await self.list_workflows():
            if not summary.get("active"):
                continue
            if trigger_type is not None and summary.get("triggerType") != trigger_type.value:
                continue
            definitions.append(await self.get_definition(summary["id"]))
        return definitions

    # ------------------------------------------------------------------
    # Graph edits
    # ------------------------------------------------------------------

    async def edit(self, workflow_id: str, operation: Callable[[GraphEditor], T]) -> Tuple[T, Dict[str, Any]]:
        """
        Apply one editor operation to a working copy and save it as a new version.

        A rejected edit or a resulting graph that fails validation leaves the
        stored workflow untouched.
        """
        definition = (await self.get_definition(workflow_id)).copy()
        result = operation(GraphEditor(definition))
        self._validate(definition)
        return result, self._write_version(definition)

    async def insert_node(self, workflow_id: str, parent_id: str, branch: Any, kind: NodeKind) -> Dict[str, Any]:
        node_id, data = await self.edit(workflow_id, lambda editor: editor.insert_after(parent_id, branch, kind))
        return {"node_id": node_id, "workflow": data}

    async def update_node(self, workflow_id: str, node_id: str, partial: Dict[str, Any]) -> Dict[str, Any]:
        node, data = await self.edit(workflow_id, lambda editor: editor.update_payload(node_id, partial))
        return {"node": _node_summary(node), "workflow": data}

    async def delete_node(self, workflow_id: str, node_id: str, keep_branch: Any = None) -> Dict[str, Any]:
        _, data = await self.edit(workflow_id, lambda editor: editor.delete(node_id, keep_branch))
        return {"workflow": data}


def _node_summary(node: WorkflowNode) -> Dict[str, Any]:
    return {
        "id": node.id,
        "type": node.kind.value,
        "data": node.payload.model_dump(mode="json", by_alias=True),
    }
