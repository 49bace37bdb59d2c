# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Dependency injection for the workflow API.

Services are built once at startup and kept on app.state; these
dependencies hand them to the routes.
"""

from fastapi import Request


def get_workflow_service(request: Request):
    """WorkflowService initialized at startup"""
    return request.app.state.workflow_service


def get_enrollment_service(request: Request):
    """EnrollmentService initialized at startup"""
    return request.app.state.enrollment_service


def get_scheduler(request: Request):
    return request.app.state.scheduler
