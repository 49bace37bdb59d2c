# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Unit tests for the CRM workflow services and API.

Tests service classes against temporary storage and in-memory collaborators.
"""
