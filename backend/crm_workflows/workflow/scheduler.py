# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
In-process wake-up scheduler.

Holds pending wake-ups and delivers the due ones to the registered handlers
when swept. Delivery is at-least-once: a wake-up stays pending until every
handler returned without raising, or moves to the dead letters once it has
failed max_attempts times.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from crm_workflows.core.logging import get_logger, log_event
from .models import utcnow


logger = get_logger(__name__)

WakeupHandler = Callable[[str, Dict[str, Any]], Awaitable[Any]]


@dataclass
class PendingWakeup:
    wakeup_id: str
    due_at: datetime
    payload: Dict[str, Any] = field(default_factory=dict)
    attempts: int = 0


class InMemoryScheduler:
    """Scheduler implementation backed by a dict, swept by deliver_due()"""

    def __init__(self, batch_size: int = 10, max_attempts: int = 5):
        self.batch_size = batch_size
        self.max_attempts = max_attempts
        self._pending: Dict[str, PendingWakeup] = {}
        self.dead_letters: List[PendingWakeup] = []
        self._handlers: List[WakeupHandler] = []

    async def schedule_at(self, timestamp: datetime, wakeup_id: str, payload: Dict[str, Any]) -> None:
        """Register a wake-up; scheduling the same id again replaces it"""
        self._pending[wakeup_id] = PendingWakeup(wakeup_id=wakeup_id, due_at=timestamp, payload=dict(payload))
        logger.debug(f"Scheduled wake-up {wakeup_id} at {timestamp.isoformat()}")

    def on_wakeup(self, handler: WakeupHandler) -> None:
        self._handlers.append(handler)

    def pending(self) -> List[PendingWakeup]:
        return sorted(self._pending.values(), key=lambda w: w.due_at)

    def next_due_at(self) -> Optional[datetime]:
        pending = self.pending()
        return pending[0].due_at if pending else None

    async def deliver_due(self, now: Optional[datetime] = None) -> int:
        """
        Deliver every wake-up due at `now`, batch_size at a time.

        Returns the number of wake-ups delivered successfully.
        """
        now = now or utcnow()
        due = [w for w in self.pending() if w.due_at <= now]
        delivered = 0

        for start in range(0, len(due), self.batch_size):
            batch = due[start:start + self.batch_size]
            results = await asyncio.gather(
                *(self._deliver(wakeup) for wakeup in batch),
                return_exceptions=True
            )
            for wakeup, result in zip(batch, results):
                if isinstance(result, Exception):
                    wakeup.attempts += 1
                    log_event(
                        logger, "wakeup_delivery_failed", level="ERROR",
                        wakeup_id=wakeup.wakeup_id, attempts=wakeup.attempts, error=str(result)
                    )
                    if wakeup.attempts >= self.max_attempts and self._pending.get(wakeup.wakeup_id) is wakeup:
                        del self._pending[wakeup.wakeup_id]
                        self.dead_letters.append(wakeup)
                        log_event(
                            logger, "wakeup_dead_lettered", level="ERROR",
                            wakeup_id=wakeup.wakeup_id, attempts=wakeup.attempts
                        )
                    continue
                # A handler may have rescheduled under the same id
                current = self._pending.get(wakeup.wakeup_id)
                if current is wakeup:
                    del self._pending[wakeup.wakeup_id]
                delivered += 1

        return delivered

    async def _deliver(self, wakeup: PendingWakeup) -> None:
        for handler in self._handlers:
            await handler(wakeup.wakeup_id, wakeup.payload)
