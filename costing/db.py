from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from costing.config import load_costing_config

logger = logging.getLogger(__name__)

_config = load_costing_config()
DATABASE_URL = _config.database.url
TRANSACTION_TIMEOUT_SECONDS = _config.transactions.timeout_seconds


def build_engine(url: str, echo: bool = False, timeout_seconds: int = TRANSACTION_TIMEOUT_SECONDS) -> Engine:
    connect_args: dict = {}
    if url.startswith("sqlite"):
        # sqlite waits on a locked database for `timeout` seconds
        connect_args = {"check_same_thread": False, "timeout": timeout_seconds}

    if connect_args:
        return create_engine(url, connect_args=connect_args, pool_pre_ping=True, echo=echo)
    return create_engine(url, pool_pre_ping=True, echo=echo)


engine = build_engine(DATABASE_URL, echo=_config.database.echo)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


class Base(DeclarativeBase):
    pass


def get_session() -> Session:
    return SessionLocal()


def _apply_transaction_timeout(db: Session, timeout_seconds: int) -> None:
    bind = db.get_bind()
    if bind.dialect.name != "postgresql":
        return
    millis = int(timeout_seconds * 1000)
    db.execute(text(f"SET LOCAL statement_timeout = {millis}"))
    db.execute(text(f"SET LOCAL lock_timeout = {millis}"))


@contextmanager
def unit_of_work(db: Session, timeout_seconds: Optional[int] = None) -> Iterator[Session]:
    """Run a block as one transaction: commit on success, roll back on any error."""
    try:
        _apply_transaction_timeout(db, timeout_seconds or TRANSACTION_TIMEOUT_SECONDS)
        yield db
        db.commit()
    except Exception:
        db.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
