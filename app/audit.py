from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import Request
from sqlalchemy.orm import Session

from app.models import AuditActorType, AuditLog

logger = logging.getLogger("app.audit")


def _request_meta(request: Request | None) -> tuple[str | None, str | None, str | None]:
    if request is None:
        return None, None, None
    ip = request.client.host if request.client else None
    user_agent = request.headers.get("user-agent")
    request_id = getattr(request.state, "request_id", None)
    return ip, user_agent, request_id


def log_audit(
    db: Session,
    *,
    actor_type: AuditActorType,
    actor_id: str | int,
    action: str,
    success: bool = True,
    entity_type: str | None = None,
    entity_id: str | int | None = None,
    details: dict[str, Any] | None = None,
    request: Request | None = None,
    commit: bool = True,
) -> None:
    """Record an audit row for a state change.

    With ``commit=False`` the row joins the caller's transaction so it lands
    atomically with the change it describes.
    """
    ip, user_agent, request_id = _request_meta(request)
    audit = AuditLog(
        ts_utc=datetime.now(timezone.utc),
        actor_type=actor_type,
        actor_id=str(actor_id),
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        ip=ip,
        user_agent=user_agent,
        success=success,
        details=details or {},
    )
    db.add(audit)
    if commit:
        try:
            db.commit()
        except Exception:
            db.rollback()
            logger.exception(
                "audit_log_write_failed",
                extra={
                    "request_id": request_id,
                    "action": action,
                    "actor_type": actor_type.value,
                    "actor_id": str(actor_id),
                },
            )
            return

    logger.info(
        "audit_event",
        extra={
            "request_id": request_id,
            "action": action,
            "actor_type": actor_type.value,
            "actor_id": str(actor_id),
            "entity_type": entity_type,
            "entity_id": audit.entity_id,
            "success": success,
        },
    )
