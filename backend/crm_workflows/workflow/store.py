# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Enrollment Store - Persistent storage for enrollment state

Thread-safe with async file locking to prevent race conditions
"""
import asyncio
import hashlib
import json
from pathlib import Path
from typing import Dict, List, Optional, Union

import aiofiles

from crm_workflows.core.errors import NotFoundError
from crm_workflows.core.logging import get_logger
from .models import Enrollment, EnrollmentStatus, utcnow


logger = get_logger(__name__)


class EnrollmentStore:
    """
    Store and query enrollments.

    Storage structure:
        enrollments/
        ├── records/
        │   └── {enrollment_id}.json
        └── events/
            └── {sha256(event_key)}.json   -> {"event_key", "enrollment_id"}

    The events index guarantees one enrollment per triggering event instance.
    """

    def __init__(self, base_dir: Union[str, Path]):
        self.base_dir = Path(base_dir)
        self.records_dir = self.base_dir / "records"
        self.events_dir = self.base_dir / "events"
        self.records_dir.mkdir(parents=True, exist_ok=True)
        self.events_dir.mkdir(parents=True, exist_ok=True)

        # Async locks for file writes, plus one run lock per enrollment
        self._locks: Dict[str, asyncio.Lock] = {}
        self._run_locks: Dict[str, asyncio.Lock] = {}
        self._global_lock = asyncio.Lock()

    def _get_lock(self, file_path: str) -> asyncio.Lock:
        """Get or create lock for a specific file"""
        if file_path not in self._locks:
            self._locks[file_path] = asyncio.Lock()
        return self._locks[file_path]

    def run_lock(self, enrollment_id: str) -> asyncio.Lock:
        """Lock held while an enrollment is being advanced"""
        if enrollment_id not in self._run_locks:
            self._run_locks[enrollment_id] = asyncio.Lock()
        return self._run_locks[enrollment_id]

    def _record_path(self, enrollment_id: str) -> Path:
        return self.records_dir / f"{enrollment_id}.json"

    def _event_path(self, event_key: str) -> Path:
        digest = hashlib.sha256(event_key.encode("utf-8")).hexdigest()
        return self.events_dir / f"{digest}.json"

    async def save(self, enrollment: Enrollment) -> str:
        """Write the enrollment to disk, returns the file path"""
        enrollment.updated_at = utcnow()
        record_file = self._record_path(enrollment.enrollment_id)

        async with self._get_lock(str(record_file)):
            async with aiofiles.open(record_file, "w") as f:
                await f.write(enrollment.model_dump_json(indent=2))

        return str(record_file)

    async def get(self, enrollment_id: str) -> Enrollment:
        record_file = self._record_path(enrollment_id)
        if not record_file.exists():
            raise NotFoundError("Enrollment", enrollment_id)

        async with self._get_lock(str(record_file)):
            async with aiofiles.open(record_file, "r") as f:
                content = await f.read()
        return Enrollment.model_validate_json(content)

    async def claim_event(self, enrollment: Enrollment) -> Optional[str]:
        """
        Register the enrollment as the one for its event key.

        Returns None when the claim succeeded, otherwise the id of the
        enrollment that already owns the event.
        """
        event_file = self._event_path(enrollment.event_key)

        async with self._global_lock:
            if event_file.exists():
                async with aiofiles.open(event_file, "r") as f:
                    owner = json.loads(await f.read())
                return owner["enrollment_id"]

            async with aiofiles.open(event_file, "w") as f:
                await f.write(json.dumps({
                    "event_key": enrollment.event_key,
                    "enrollment_id": enrollment.enrollment_id,
                }))
        return None

    async def find_by_event_key(self, event_key: str) -> Optional[Enrollment]:
        event_file = self._event_path(event_key)
        if not event_file.exists():
            return None
        async with aiofiles.open(event_file, "r") as f:
            owner = json.loads(await f.read())
        return await self.get(owner["enrollment_id"])

    def list(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[EnrollmentStatus] = None,
        limit: Optional[int] = 100,
        offset: int = 0
    ) -> List[Enrollment]:
        """
        List enrollments with optional filters, newest first.

        Args:
            workflow_id: Filter by workflow
            status: Filter by enrollment status
            limit: Max results to return, None for all
            offset: Skip first N results
        """
        enrollments = []
        for record_file in self.records_dir.glob("*.json"):
            try:
                enrollment = Enrollment.model_validate_json(record_file.read_text())
            except ValueError as e:
                logger.warning(f"Failed to load enrollment {record_file.name}: {e}")
                continue

            if workflow_id and enrollment.workflow_id != workflow_id:
                continue
            if status and enrollment.status != status:
                continue
            enrollments.append(enrollment)

        enrollments.sort(key=lambda e: e.created_at, reverse=True)
        if limit is None:
            return enrollments[offset:]
        return enrollments[offset:offset + limit]
