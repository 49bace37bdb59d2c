# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow engine configuration - single source of truth.
YAML is king. Env vars ONLY for secrets and deployment overrides.

- ALL configuration in plain text (YAML)
- NO hidden state - everything inspectable via `cat`, `grep`
"""

import os
import yaml
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


# =============================================================================
# CONFIGURATION DATACLASS
# =============================================================================

@dataclass(frozen=True)
class Config:
    """
    Immutable engine configuration.
    All values from YAML. No hidden state.
    """

    # -- Storage --
    workflows_path: str = "/app/data/workflows"
    enrollments_path: str = "/app/data/enrollments"

    # -- Retry policy for transient collaborator errors --
    retry_max_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0

    # -- Actions --
    http_timeout: float = 10.0
    recurring_max_times: int = 30
    wakeup_batch_size: int = 10
    wakeup_max_attempts: int = 5  # failed deliveries before a wake-up is dead-lettered
    scheduler_poll_interval: float = 30.0  # seconds, 0 disables the background sweep

    # -- Mailgun --
    mailgun_domain: Optional[str] = None
    mailgun_from_email: Optional[str] = None
    mailgun_from_name: str = "Clinic"
    mailgun_api_base_url: str = "https://api.mailgun.net"

    # -- Runtime --
    service_host: str = "0.0.0.0"
    service_port: int = 8000
    log_level: str = "INFO"
    log_format: str = "json"

    @property
    def workflows_dir(self) -> Path:
        return Path(self.workflows_path)

    @property
    def enrollments_dir(self) -> Path:
        return Path(self.enrollments_path)

    def get_mailgun_api_key(self) -> Optional[str]:
        """Get Mailgun API key from environment"""
        return get_mailgun_api_key()


# =============================================================================
# SECRETS - The ONLY thing from environment variables
# =============================================================================

def get_mailgun_api_key() -> Optional[str]:
    """API keys cannot be in version control."""
    return os.getenv("MAILGUN_API_KEY")


# =============================================================================
# LOADER
# =============================================================================

def load_config(path: str = "/app/configs/workflows.yaml") -> Config:
    """
    Load configuration from YAML.
    Returns defaults if file doesn't exist.
    """
    if not Path(path).exists():
        return Config()

    with open(path) as f:
        y = yaml.safe_load(f) or {}

    # Helper to safely navigate nested dicts
    def get(d: dict, *keys, default=None):
        for k in keys:
            if not isinstance(d, dict):
                return default
            d = d.get(k, {})
        return d if d != {} else default

    return Config(
        # Storage
        workflows_path=get(y, "storage", "workflows") or "/app/data/workflows",
        enrollments_path=get(y, "storage", "enrollments") or "/app/data/enrollments",

        # Retry
        retry_max_attempts=get(y, "retry", "max_attempts") or 3,
        retry_base_delay=get(y, "retry", "base_delay") or 1.0,
        retry_max_delay=get(y, "retry", "max_delay") or 30.0,

        # Actions
        http_timeout=get(y, "http", "timeout") or 10.0,
        recurring_max_times=get(y, "actions", "recurring_max_times") or 30,
        wakeup_batch_size=get(y, "scheduler", "batch_size") or 10,
        wakeup_max_attempts=get(y, "scheduler", "max_attempts") or 5,
        scheduler_poll_interval=get(y, "scheduler", "poll_interval", default=30.0),

        # Mailgun
        mailgun_domain=os.getenv("MAILGUN_DOMAIN") or get(y, "mailgun", "domain"),
        mailgun_from_email=os.getenv("MAILGUN_FROM_EMAIL") or get(y, "mailgun", "from_email"),
        mailgun_from_name=os.getenv("MAILGUN_FROM_NAME") or get(y, "mailgun", "from_name") or "Clinic",
        mailgun_api_base_url=(
            os.getenv("MAILGUN_API_BASE_URL")
            or get(y, "mailgun", "api_base_url")
            or "https://api.mailgun.net"
        ),

        # Runtime
        service_host=get(y, "service", "host") or "0.0.0.0",
        service_port=get(y, "service", "port") or 8000,
        log_level=os.getenv("LOG_LEVEL", get(y, "logging", "level") or "INFO"),
        log_format=get(y, "logging", "format") or "json",
    )


# =============================================================================
# GLOBAL INSTANCE
# =============================================================================

_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create global config instance."""
    global _config
    if _config is None:
        config_path = os.getenv("CRM_WORKFLOWS_CONFIG_PATH", "/app/configs/workflows.yaml")
        _config = load_config(config_path)
    return _config


def reload_config() -> Config:
    """Force reload configuration."""
    global _config
    _config = None
    return get_config()
