import logging
from typing import Any, Dict

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from crowdledger import models
from crowdledger.commission_engine import validate_commission_config, validate_table_rate
from crowdledger.errors import ConflictError, NotFoundError

logger = logging.getLogger("crowdledger.promoters")


def get_event_for_update(db: Session, event_id: int) -> models.Event:
    """Row-lock the event; payout generation takes the same lock."""
    event = db.query(models.Event).filter(models.Event.id == event_id).with_for_update().first()
    if not event:
        logger.error(f"Event {event_id} not found")
        raise NotFoundError("Event not found")
    return event


def ensure_not_locked(event: models.Event):
    if event.is_locked:
        logger.warning(f"Rejected commission change on locked event {event.id}")
        raise ConflictError("Event already closed; commission settings are frozen")


def _get_event_promoter(db: Session, event_id: int, promoter_id: int) -> models.EventPromoter:
    ep = db.query(models.EventPromoter).filter(
        models.EventPromoter.event_id == event_id,
        models.EventPromoter.promoter_id == promoter_id,
    ).first()
    if not ep:
        raise NotFoundError("Promoter is not assigned to this event")
    return ep


def assign_promoter(
    db: Session,
    event_id: int,
    promoter_id: int,
    commission_type,
    commission_config: Dict[str, Any],
    table_commission_rate=None,
):
    try:
        event = get_event_for_update(db, event_id)
        ensure_not_locked(event)
        promoter = db.query(models.Promoter).filter(models.Promoter.id == promoter_id).first()
        if not promoter:
            raise NotFoundError("Promoter not found")
        config = validate_commission_config(commission_type, commission_config)

        ep = models.EventPromoter(
            event_id=event.id,
            promoter_id=promoter.id,
            commission_type=models.CommissionType(commission_type),
            commission_config=config,
            table_commission_rate=validate_table_rate(table_commission_rate),
        )
        db.add(ep)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Promoter is already assigned to this event")
    except Exception:
        db.rollback()
        raise
    db.refresh(ep)
    logger.info(f"Assigned promoter {promoter_id} to event {event_id} ({ep.commission_type.value})")
    return ep


def update_commission(
    db: Session,
    event_id: int,
    promoter_id: int,
    commission_type,
    commission_config: Dict[str, Any],
    table_commission_rate=None,
):
    try:
        event = get_event_for_update(db, event_id)
        ensure_not_locked(event)
        ep = _get_event_promoter(db, event.id, promoter_id)
        ep.commission_config = validate_commission_config(commission_type, commission_config)
        ep.commission_type = models.CommissionType(commission_type)
        ep.table_commission_rate = validate_table_rate(table_commission_rate)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(ep)
    logger.info(f"Updated commission for promoter {promoter_id} on event {event_id}")
    return ep


def remove_promoter(db: Session, event_id: int, promoter_id: int):
    try:
        event = get_event_for_update(db, event_id)
        ensure_not_locked(event)
        ep = _get_event_promoter(db, event.id, promoter_id)
        db.delete(ep)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info(f"Removed promoter {promoter_id} from event {event_id}")
