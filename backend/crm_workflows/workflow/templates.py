# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Fact lookup and {{ placeholder }} rendering for action configs.
"""

import html
import re
from collections.abc import Mapping, Sequence
from typing import Any


PLACEHOLDER_PATTERN = re.compile(r"{{\s*([^}]+?)\s*}}")


def resolve_path(obj: Any, path: str) -> Any:
    """
    Resolve a dotted path ("patient.email", "items.0.name") against nested data.

    Returns None when any segment is missing.
    """
    if path is None:
        return None
    parts = [part.strip() for part in str(path).split(".") if part.strip()]
    if not parts:
        return None

    current = obj
    for key in parts:
        if isinstance(current, Mapping):
            if key not in current:
                return None
            current = current[key]
        elif isinstance(current, Sequence) and not isinstance(current, (str, bytes)):
            if not key.isdigit() or int(key) >= len(current):
                return None
            current = current[int(key)]
        else:
            return None
    return current


def render_template(template: str, context: Any) -> str:
    """Replace {{ path }} placeholders; missing values render as empty strings"""
    if not template:
        return ""

    def replace(match: "re.Match[str]") -> str:
        value = resolve_path(context, match.group(1))
        if value is None:
            return ""
        return str(value)

    return PLACEHOLDER_PATTERN.sub(replace, str(template))


def text_to_html(text: str) -> str:
    """Escape a plain-text body and turn line breaks into <br />"""
    escaped = html.escape(text or "", quote=False)
    return re.sub(r"\r?\n", "<br />", escaped)
