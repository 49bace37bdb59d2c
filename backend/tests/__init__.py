# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Test Suite for the CRM Workflow Engine

Structure:
- workflow/: Graph, evaluator, dispatcher and runner tests
- unit/: Service and API tests
"""
