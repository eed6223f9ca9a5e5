"""
Audit Schemas
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class AuditEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    timestamp: datetime
    actor_id: str
    actor_name: str
    action: str
    target_id: str
    details: dict[str, Any] | None = None


class AuditLogListResponse(BaseModel):
    """Paginated audit trail for the admin dashboard."""

    items: list[AuditEntry]
    total: int
    skip: int
    limit: int
