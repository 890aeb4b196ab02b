from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from costing.deps import session_dep

router = APIRouter(tags=["health"])


@router.get("/health")
def health(db: Session = Depends(session_dep)) -> dict[str, str]:
    db.execute(text("SELECT 1"))
    return {"status": "ok"}
