"""Subject profile model and durable-cache eligibility."""

from typing import Any, FrozenSet

from pydantic import BaseModel

DURABLE_ROLES: FrozenSet[str] = frozenset({"admin", "superadmin"})

DEFAULT_ROLE = "client"
DEFAULT_NAME = "User"


class UserProfile(BaseModel):
    """Minimal profile record served to dashboards.

    Attributes:
        id: Subject identifier.
        email: Contact email (may be empty for synthesized profiles).
        full_name: Display name.
        role: Authorization role, e.g. ``admin`` or ``client``.
    """

    id: str
    email: str = ""
    full_name: str = DEFAULT_NAME
    role: str = DEFAULT_ROLE


def is_durable_eligible(payload: Any) -> bool:
    """Only administrator profiles are kept in durable storage."""
    if isinstance(payload, dict):
        role = payload.get("role")
    else:
        role = getattr(payload, "role", None)
    return role in DURABLE_ROLES
