"""
Request context handed to the engine by its collaborators
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from autorest.connections.connection_config import ConnectionConfig


@dataclass(frozen=True)
class ServiceBinding:
    """A resolved service and the decrypted connection it points at."""
    service_id: str
    service_name: str
    connection: ConnectionConfig
    organization_id: Optional[str] = None
    connection_id: Optional[str] = None


@dataclass(frozen=True)
class CallerContext:
    """
    Resolved caller identity.

    ``user``, ``organization`` and ``role`` are plain mappings; row policy
    templates address them with dotted paths such as ``{{user.id}}``.
    """
    role_id: Optional[str] = None
    organization_id: Optional[str] = None
    user: Dict[str, Any] = field(default_factory=dict)
    organization: Dict[str, Any] = field(default_factory=dict)
    role: Dict[str, Any] = field(default_factory=dict)
    environment: str = "production"
    caller_mode: str = "modern"

    def template_context(self) -> Dict[str, Any]:
        """Objects visible to row policy templates."""
        organization = dict(self.organization)
        if self.organization_id is not None:
            organization.setdefault("id", self.organization_id)
        role = dict(self.role)
        if self.role_id is not None:
            role.setdefault("id", self.role_id)
        return {"user": dict(self.user), "organization": organization, "role": role}
