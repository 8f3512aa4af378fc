# Overview: Small request-parsing helpers shared by the API blueprints.

from flask import current_app


def shared(name: str):
    """Resource built in create_app (verifier, channels)."""
    return current_app.extensions["orderflow"][name]


def parse_int(value, field: str, *, default: int | None = None, minimum: int | None = 0) -> int:
    """
    Coerce a JSON/query value to int.

    Raises:
        ValueError: not an integer, or below ``minimum``.
    """
    if value is None or value == "":
        if default is None:
            raise ValueError(f"{field} is required")
        return default
    if isinstance(value, bool):
        raise ValueError(f"{field} must be an integer")
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{field} must be an integer")
    if isinstance(value, float) and value != parsed:
        raise ValueError(f"{field} must be an integer")
    if minimum is not None and parsed < minimum:
        raise ValueError(f"{field} must be >= {minimum}")
    return parsed


def require_str(data: dict, field: str) -> str:
    value = data.get(field)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{field} is required")
    return value.strip()
