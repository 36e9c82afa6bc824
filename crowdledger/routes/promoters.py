import logging
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from crowdledger import models, schemas
from crowdledger.auth_utils import Caller, get_current_caller, get_managed_event
from crowdledger.database import get_db
from crowdledger.promoter_service import assign_promoter, remove_promoter, update_commission

logger = logging.getLogger("crowdledger.routes.promoters")

router = APIRouter(prefix="/events", tags=["Event Promoters"])


@router.get("/{event_id}/promoters", response_model=List[schemas.EventPromoterSchema])
def list_event_promoters(
    event_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
):
    get_managed_event(db, event_id, caller)
    return db.query(models.EventPromoter).filter(
        models.EventPromoter.event_id == event_id
    ).order_by(models.EventPromoter.promoter_id).all()


@router.post("/{event_id}/promoters", response_model=schemas.EventPromoterSchema, status_code=201)
def add_event_promoter(
    event_id: int,
    payload: schemas.EventPromoterCreate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
):
    logger.debug(f"Caller {caller.id} assigning promoter {payload.promoter_id} to event {event_id}")
    get_managed_event(db, event_id, caller)
    return assign_promoter(
        db, event_id, payload.promoter_id, payload.commission_type, payload.commission_config,
        payload.table_commission_rate,
    )


@router.put("/{event_id}/promoters/{promoter_id}", response_model=schemas.EventPromoterSchema)
def edit_event_promoter(
    event_id: int,
    promoter_id: int,
    payload: schemas.EventPromoterUpdate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
):
    logger.debug(f"Caller {caller.id} updating commission of promoter {promoter_id} on event {event_id}")
    get_managed_event(db, event_id, caller)
    return update_commission(
        db, event_id, promoter_id, payload.commission_type, payload.commission_config,
        payload.table_commission_rate,
    )


@router.delete("/{event_id}/promoters/{promoter_id}")
def delete_event_promoter(
    event_id: int,
    promoter_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
):
    get_managed_event(db, event_id, caller)
    remove_promoter(db, event_id, promoter_id)
    return {"message": "Promoter removed from event"}
