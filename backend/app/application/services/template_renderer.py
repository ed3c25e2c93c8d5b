import re
from typing import Any

TEMPLATE_VAR_PATTERN = re.compile(r"{{\s*([a-zA-Z0-9_.-]+)\s*}}")


def _format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(_format_value(item) for item in value if item is not None)
    return str(value)


def _resolve_path(payload: dict[str, Any], path: str) -> str:
    current: Any = payload
    for token in path.split("."):
        if isinstance(current, dict) and token in current:
            current = current[token]
        else:
            return ""
    return _format_value(current)


def render_prompt_template(template: str, variables: dict[str, Any]) -> str:
    """Substitute ``{{ dotted.path }}`` placeholders; lists render comma separated."""

    def _replace(match: re.Match[str]) -> str:
        return _resolve_path(variables, match.group(1).strip())

    return TEMPLATE_VAR_PATTERN.sub(_replace, template)
