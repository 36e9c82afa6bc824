import logging
from typing import Any, Dict

from sqlalchemy.orm import Session

from crowdledger import models

logger = logging.getLogger("crowdledger.outbox")


def emit_outbox_event(db: Session, event_name: str, payload: Dict[str, Any]) -> models.OutboxEvent:
    """Queue a downstream notification in the caller's transaction.

    The row commits or rolls back together with the write that caused it.
    """
    outbox_event = models.OutboxEvent(event_name=event_name, payload=payload)
    db.add(outbox_event)
    logger.debug(f"Queued outbox event {event_name}: {payload}")
    return outbox_event
