from __future__ import annotations

import uuid


def new_id(prefix: str) -> str:
    """Text primary key such as ``order_3f2a...`` (prefix makes ids self-describing in logs)."""
    return f"{prefix}_{uuid.uuid4().hex}"
