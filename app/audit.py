from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from app.models import AuditActorType, AuditLog

logger = logging.getLogger("app.audit")


def log_audit(
    db: Session,
    *,
    tenant_id: int | None,
    actor_type: AuditActorType,
    actor_id: str | int,
    action: str,
    success: bool = True,
    entity_type: str | None = None,
    entity_id: str | int | None = None,
    details: dict[str, Any] | None = None,
    ts_utc: datetime | None = None,
) -> AuditLog:
    """Stage an audit row in the caller's transaction.

    The row is committed, or rolled back, together with the state change it
    describes; the caller owns the commit.
    """
    audit = AuditLog(
        tenant_id=tenant_id,
        ts_utc=ts_utc or datetime.now(timezone.utc),
        actor_type=actor_type,
        actor_id=str(actor_id),
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        success=success,
        details=details or {},
    )
    db.add(audit)

    logger.info(
        "audit_event",
        extra={
            "tenant_id": tenant_id,
            "action": action,
            "actor_type": actor_type.value,
            "actor_id": str(actor_id),
            "entity_type": entity_type,
            "entity_id": str(entity_id) if entity_id is not None else None,
            "success": success,
            "details": details or {},
        },
    )
    return audit
