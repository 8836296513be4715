from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from skybook.db.repositories import AuditRepository


@dataclass
class AuditRecord:
    id: str
    timestamp: str
    action: str
    component: str
    reference: str | None
    user_id: int | None
    detail: dict[str, Any]


class AuditStore:
    def __init__(self, repository: AuditRepository | None = None) -> None:
        self.repository = repository or AuditRepository()

    def reset(self) -> None:
        self.repository.reset()

    def log(
        self,
        action: str,
        component: str,
        reference: str | None = None,
        user_id: int | None = None,
        detail: dict[str, Any] | None = None,
    ) -> AuditRecord:
        row = {
            "id": str(uuid4()),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "action": action,
            "component": component,
            "reference": reference,
            "user_id": user_id,
            "detail": detail or {},
        }
        stored = self.repository.insert(row)
        return AuditRecord(**stored)

    def get_history(self, reference: str) -> list[AuditRecord]:
        rows = self.repository.get_by_reference(reference)
        return [AuditRecord(**row) for row in rows]

    def get_by_action(self, action: str) -> list[AuditRecord]:
        rows = self.repository.get_by_action(action)
        return [AuditRecord(**row) for row in rows]
