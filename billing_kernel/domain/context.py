"""
RequestContext -- explicit tenant and principal for every core operation.

Every service, selector and engine entry point takes a RequestContext as
its first argument.  Nothing in the core reads an ambient "current user";
the HTTP boundary builds the context from the authenticated request and
passes it down.
"""

from dataclasses import dataclass, field
from uuid import UUID, uuid4


@dataclass(frozen=True)
class RequestContext:
    """
    Authenticated tenant (vendor) and actor for one request.

    Guarantees:
        - tenant_id scopes every read and write; rows owned by another
          tenant are invisible.
        - actor_id is recorded as created_by_id / updated_by_id.
    """

    tenant_id: UUID
    actor_id: UUID
    correlation_id: str = field(default_factory=lambda: str(uuid4()))

    def __post_init__(self) -> None:
        if not isinstance(self.tenant_id, UUID):
            raise TypeError("tenant_id must be a UUID")
        if not isinstance(self.actor_id, UUID):
            raise TypeError("actor_id must be a UUID")

    def log_fields(self) -> dict[str, str]:
        return {
            "correlation_id": self.correlation_id,
            "tenant_id": str(self.tenant_id),
            "actor_id": str(self.actor_id),
        }
