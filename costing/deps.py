from __future__ import annotations

from collections.abc import Generator
from typing import Optional

from fastapi import Header
from sqlalchemy.orm import Session

from costing.db import get_session


def session_dep() -> Generator[Session, None, None]:
    db = get_session()
    try:
        yield db
    finally:
        db.close()


def actor_dep(x_actor: Optional[str] = Header(default=None)) -> Optional[str]:
    """Who is making the request; recorded on audit rows and cost corrections."""
    if x_actor is None or not x_actor.strip():
        return None
    return x_actor.strip()[:64]
