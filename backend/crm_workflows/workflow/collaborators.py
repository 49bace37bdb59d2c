# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
External collaborators invoked by workflow actions.

Protocols describe what the dispatcher needs; concrete implementations cover
HTTP (httpx) and Mailgun, plus in-memory repositories for local runs where
the hosted database is not available.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

import httpx

from crm_workflows.core.config import Config
from crm_workflows.core.logging import get_logger
from .exceptions import CollaboratorError
from .models import utcnow


logger = get_logger(__name__)


# ============================================================================
# Protocols
# ============================================================================

class Mailer(Protocol):
    async def send(
        self,
        recipient: str,
        subject: str,
        body: str,
        template_id: Optional[str] = None,
    ) -> Dict[str, Any]: ...


class Notifier(Protocol):
    async def notify(self, user_id: str, message: str) -> Dict[str, Any]: ...


class EntityRepository(Protocol):
    async def create(self, data: Dict[str, Any]) -> Dict[str, Any]: ...

    async def update(self, entity_id: str, data: Dict[str, Any]) -> Dict[str, Any]: ...

    async def count(self) -> int: ...


class UserDirectory(Protocol):
    async def get_user(self, user_id: str) -> Optional[Dict[str, Any]]: ...


class HTTPClient(Protocol):
    async def request(self, url: str, method: str, body: Optional[Dict[str, Any]] = None) -> int: ...


def _is_retryable_status(status_code: int) -> bool:
    return status_code >= 500 or status_code == 429


# ============================================================================
# HTTP
# ============================================================================

class HttpxClient:
    """Webhook transport - returns the status code, raises on transport failure"""

    def __init__(self, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.transport = transport

    async def request(self, url: str, method: str, body: Optional[Dict[str, Any]] = None) -> int:
        method = method.upper()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                if method == "GET":
                    response = await client.request(method, url, params=_flatten_params(body))
                else:
                    response = await client.request(method, url, json=body)
        except httpx.TimeoutException as e:
            raise CollaboratorError(f"Timeout calling {url}: {e}", retryable=True)
        except httpx.TransportError as e:
            raise CollaboratorError(f"Transport error calling {url}: {e}", retryable=True)
        return response.status_code


def _flatten_params(body: Optional[Dict[str, Any]]) -> Dict[str, str]:
    if not body:
        return {}
    return {
        key: value if isinstance(value, str) else str(value)
        for key, value in body.items()
        if not isinstance(value, (dict, list))
    }


class MailgunMailer:
    """Sends email through the Mailgun messages API"""

    def __init__(
        self,
        api_key: Optional[str],
        domain: Optional[str],
        from_email: Optional[str] = None,
        from_name: str = "Clinic",
        api_base_url: str = "https://api.mailgun.net",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.domain = domain
        self.from_email = from_email
        self.from_name = from_name
        self.api_base_url = api_base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_config(cls, config: Config) -> "MailgunMailer":
        return cls(
            api_key=config.get_mailgun_api_key(),
            domain=config.mailgun_domain,
            from_email=config.mailgun_from_email,
            from_name=config.mailgun_from_name,
            api_base_url=config.mailgun_api_base_url,
            timeout=config.http_timeout,
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.domain)

    async def send(
        self,
        recipient: str,
        subject: str,
        body: str,
        template_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not self.configured:
            raise CollaboratorError("Mailgun is not configured", retryable=False)

        from_address = self.from_email or f"no-reply@{self.domain}"
        data = {
            "from": f"{self.from_name} <{from_address}>",
            "to": recipient,
            "subject": subject,
            "html": body,
        }
        if template_id:
            data["v:template_id"] = template_id

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.api_base_url}/v3/{self.domain}/messages",
                    auth=("api", self.api_key),
                    data=data,
                )
        except httpx.TimeoutException as e:
            raise CollaboratorError(f"Mailgun timeout: {e}", retryable=True)
        except httpx.TransportError as e:
            raise CollaboratorError(f"Mailgun transport error: {e}", retryable=True)

        if not response.is_success:
            raise CollaboratorError(
                f"Mailgun returned {response.status_code}: {response.text[:200]}",
                retryable=_is_retryable_status(response.status_code),
            )

        payload = response.json()
        return {"message_id": payload.get("id"), "recipient": recipient}


# ============================================================================
# In-memory implementations
# ============================================================================

@dataclass
class SentEmail:
    recipient: str
    subject: str
    body: str
    template_id: Optional[str] = None
    sent_at: datetime = field(default_factory=utcnow)


class InMemoryMailer:
    """Records outgoing mail instead of sending it"""

    def __init__(self):
        self.sent: List[SentEmail] = []

    async def send(
        self,
        recipient: str,
        subject: str,
        body: str,
        template_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        email = SentEmail(recipient=recipient, subject=subject, body=body, template_id=template_id)
        self.sent.append(email)
        logger.info(f"Recorded email to {recipient}: {subject}")
        return {"message_id": f"mem_{len(self.sent)}", "recipient": recipient}


class InMemoryNotifier:
    def __init__(self):
        self.notifications: List[Dict[str, Any]] = []

    async def notify(self, user_id: str, message: str) -> Dict[str, Any]:
        notification = {"id": uuid.uuid4().hex, "user_id": user_id, "message": message}
        self.notifications.append(notification)
        return notification


class InMemoryRepository:
    """Entity store keyed by id (tasks, deals, patients)"""

    def __init__(self, resource: str, records: Optional[Dict[str, Dict[str, Any]]] = None):
        self.resource = resource
        self.records: Dict[str, Dict[str, Any]] = dict(records or {})

    async def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        entity_id = data.get("id") or uuid.uuid4().hex
        record = {**data, "id": entity_id}
        self.records[entity_id] = record
        return record

    async def update(self, entity_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        if entity_id not in self.records:
            raise CollaboratorError(f"{self.resource} not found: {entity_id}", retryable=False)
        self.records[entity_id] = {**self.records[entity_id], **data}
        return self.records[entity_id]

    async def count(self) -> int:
        return len(self.records)


class InMemoryUserDirectory:
    def __init__(self, users: Optional[Dict[str, Dict[str, Any]]] = None):
        self.users = dict(users or {})

    async def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self.users.get(user_id)


# ============================================================================
# Wiring
# ============================================================================

@dataclass
class Collaborators:
    """Everything the action dispatcher delegates to"""
    mailer: Any
    notifier: Any
    tasks: Any
    deals: Any
    patients: Any
    http: Any
    users: Any = None


def build_collaborators(config: Config) -> Collaborators:
    """Mailgun when configured, httpx for webhooks, in-memory repositories"""
    mailgun = MailgunMailer.from_config(config)
    if mailgun.configured:
        mailer = mailgun
    else:
        logger.warning("Mailgun not configured, outgoing email is recorded in memory")
        mailer = InMemoryMailer()

    return Collaborators(
        mailer=mailer,
        notifier=InMemoryNotifier(),
        tasks=InMemoryRepository("Task"),
        deals=InMemoryRepository("Deal"),
        patients=InMemoryRepository("Patient"),
        http=HttpxClient(timeout=config.http_timeout),
        users=InMemoryUserDirectory(),
    )
