"""
Append-only audit records: admin force-actions and per-entity status history.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from domain.common.exceptions import DomainValidationException


@dataclass
class AuditLog:
    id: Optional[int]
    admin_email: str
    action_type: str
    target_type: str
    target_id: Optional[int]
    state_before: dict[str, Any] = field(default_factory=dict)
    state_after: dict[str, Any] = field(default_factory=dict)
    success: bool = True
    error_message: Optional[str] = None
    target_code: Optional[str] = None
    admin_id: Optional[int] = None
    admin_ip: Optional[str] = None
    admin_user_agent: Optional[str] = None
    reason: Optional[str] = None
    idempotency_key: Optional[str] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.admin_email:
            raise DomainValidationException("Audit row needs an admin email", field="admin_email")
        if not self.action_type or not self.target_type:
            raise DomainValidationException("Audit row needs action and target types", field="action_type")
        # state maps are always JSON objects, never null
        self.state_before = dict(self.state_before or {})
        self.state_after = dict(self.state_after or {})


@dataclass
class StatusHistory:
    id: Optional[int]
    entity_type: str
    entity_id: int
    from_status: Optional[str]
    to_status: str
    actor: str
    reason: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
