# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Core utilities shared across the workflow engine.

This package contains:
- config: Configuration management
- dependencies: Dependency injection
- errors: Service exceptions
- logging: Structured logging
"""

from crm_workflows.core.config import get_config, Config
from crm_workflows.core.errors import CRMWorkflowError, NotFoundError, ValidationError
from crm_workflows.core.logging import get_logger

__all__ = [
    "get_config",
    "Config",
    "CRMWorkflowError",
    "NotFoundError",
    "ValidationError",
    "get_logger",
]
