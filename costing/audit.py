from __future__ import annotations

import json
import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from costing.models import AuditLog

logger = logging.getLogger(__name__)


def log_event(
    db: Session,
    actor: Optional[str],
    action: str,
    entity_type: str,
    entity_id: Optional[str] = None,
    detail: Optional[dict[str, Any]] = None,
) -> None:
    row = AuditLog(
        actor=actor,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        detail=json.dumps(detail, ensure_ascii=False, default=str) if detail is not None else None,
    )
    db.add(row)
    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.warning("audit_event_not_saved", extra={"action": action}, exc_info=True)
