from __future__ import annotations

import logging
from typing import Any, Type

from sqlalchemy import event
from sqlalchemy.orm import Session

from .services.notifications import Broadcaster

logger = logging.getLogger(__name__)

PENDING_KEY = "pending_broadcasts"


def publish_after_commit(session: Session, broadcaster: Broadcaster, topic: str, payload: Any) -> None:
    """Queue an event that is published once the session's transaction commits."""
    session.info.setdefault(PENDING_KEY, []).append((broadcaster, topic, payload))


def pending_events(session: Session) -> list[tuple[Broadcaster, str, Any]]:
    return list(session.info.get(PENDING_KEY, []))


def _deliver_pending(session: Session) -> None:
    pending = session.info.pop(PENDING_KEY, None) or []
    for broadcaster, topic, payload in pending:
        try:
            broadcaster.publish(topic, payload)
        except Exception:  # noqa: BLE001 - delivery is best effort
            logger.warning("Failed to publish event to %s", topic, exc_info=True)


def _discard_pending(session: Session) -> None:
    dropped = session.info.pop(PENDING_KEY, None)
    if dropped:
        logger.debug("Discarded %d unpublished events after rollback", len(dropped))


def setup_broadcast_events(session_cls: Type[Session]) -> None:
    if not event.contains(session_cls, "after_commit", _deliver_pending):
        event.listen(session_cls, "after_commit", _deliver_pending)
    if not event.contains(session_cls, "after_rollback", _discard_pending):
        event.listen(session_cls, "after_rollback", _discard_pending)
