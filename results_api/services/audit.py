"""Audit logging service."""

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from results_api.models.audit import AuditAction, AuditLog

logger = logging.getLogger(__name__)


class AuditService:
    """Audit logging service - append-only."""

    def __init__(self, db: Session):
        self.db = db

    def log(
        self,
        action: AuditAction,
        resource_type: str,
        resource_id: str | int | None = None,
        user_id: int | None = None,
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
        ip_address: str | None = None,
    ) -> AuditLog:
        """Create an audit log entry."""
        log = AuditLog(
            user_id=user_id,
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id is not None else None,
            description=description,
            extra_data=metadata,
            ip_address=ip_address,
        )
        self.db.add(log)
        self.db.flush()
        logger.debug(f"Audit {action.value} on {resource_type}:{resource_id} by user {user_id}")
        return log

    def list_for_resource(self, resource_type: str, resource_id: str | int) -> list[AuditLog]:
        """Audit history of one resource, oldest first."""
        result = self.db.execute(
            select(AuditLog)
            .where(
                AuditLog.resource_type == resource_type,
                AuditLog.resource_id == str(resource_id),
            )
            .order_by(AuditLog.created_at, AuditLog.id)
        )
        return list(result.scalars().all())
