"""{{variable}} substitution for prompt templates."""

import re
from typing import Mapping

_VARIABLE_RE = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


def render(template: str, variables: Mapping[str, object]) -> str:
    """
    Replace {{name}} placeholders with values.

    Unknown placeholders are left as-is so a custom template with a typo
    still renders. Substituted values are never re-scanned.
    """
    def substitute(match: re.Match) -> str:
        name = match.group(1)
        if name not in variables:
            return match.group(0)
        value = variables[name]
        return "" if value is None else str(value)

    return _VARIABLE_RE.sub(substitute, template)


def extract_variables(template: str) -> list[str]:
    """Placeholder names in order of first use, without duplicates."""
    seen = []
    for match in _VARIABLE_RE.finditer(template):
        if match.group(1) not in seen:
            seen.append(match.group(1))
    return seen
