import json
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import Column, DateTime, Integer, Text, create_engine, func
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .config import DATABASE_URL

logger = logging.getLogger(__name__)

Base = declarative_base()
engine = None
SessionLocal: Optional[sessionmaker] = None

ACTION_TYPES = {
    "wave_create",
    "wave_update",
    "wave_delete",
    "on_behalf_submit",
    "submission_update",
    "submission_delete",
}


def init_db(database_url: Optional[str] = None) -> bool:
    """
    Initialise the engine + session factory and create missing tables.

    The action log is optional: without a URL the service runs and every
    helper below is a no-op. Returns True when the log is active.
    """
    global engine, SessionLocal
    if engine is not None:
        return True
    url = database_url or DATABASE_URL
    if not url:
        logger.warning("[ACTION_LOG_INIT] DATABASE_URL is not set; action history disabled")
        return False
    engine = create_engine(url)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)
    return True


def reset_db() -> None:
    """Drop the engine (tests, shutdown)."""
    global engine, SessionLocal
    if engine is not None:
        engine.dispose()
    engine = None
    SessionLocal = None


def get_session() -> Session:
    if SessionLocal is None:
        raise RuntimeError("DB not initialised")
    return SessionLocal()


# --- Models ---


class ActionHistory(Base):
    """
    One administrator mutation against the wave store.

    The store itself keeps the data; this table only answers "who changed
    what, when" for the admin panel.
    """
    __tablename__ = "action_history"
    id = Column(Integer, primary_key=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    action_type = Column(Text, nullable=False)
    wave_id = Column(Text, nullable=True, index=True)
    target_actor = Column(Text, nullable=True, index=True)   # actor the action was made for
    performed_by = Column(Text, nullable=True)
    detail = Column(Text, nullable=True)                     # JSON string


# --- Helpers ---


def log_action(
    action_type: str,
    wave_id: Optional[str] = None,
    target_actor: Optional[str] = None,
    performed_by: Optional[str] = None,
    detail: Optional[Dict[str, Any]] = None,
) -> None:
    if action_type not in ACTION_TYPES:
        raise ValueError(f"Invalid action_type: {action_type}")
    if engine is None:
        return
    session = get_session()
    try:
        session.add(
            ActionHistory(
                action_type=action_type,
                wave_id=wave_id,
                target_actor=target_actor,
                performed_by=performed_by,
                detail=json.dumps(detail or {}, default=str),
            )
        )
        session.commit()
    finally:
        session.close()


def get_recent_actions(
    limit: int = 100,
    offset: int = 0,
    target_actor: Optional[str] = None,
) -> List[Dict[str, Any]]:
    if engine is None:
        return []
    session = get_session()
    try:
        q = session.query(ActionHistory)
        if target_actor:
            q = q.filter(ActionHistory.target_actor == target_actor)
        q = q.order_by(ActionHistory.id.desc()).offset(offset).limit(limit)
        results: List[Dict[str, Any]] = []
        for r in q:
            det: Dict[str, Any] = {}
            if r.detail:
                try:
                    det = json.loads(r.detail)
                except ValueError:
                    det = {}
            results.append(
                {
                    "id": r.id,
                    "created_at": None if r.created_at is None else r.created_at.isoformat(),
                    "action_type": r.action_type,
                    "wave_id": r.wave_id,
                    "target_actor": r.target_actor,
                    "performed_by": r.performed_by,
                    "detail": det,
                }
            )
        return results
    finally:
        session.close()
