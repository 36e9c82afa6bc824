import logging
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from crowdledger import models, schemas
from crowdledger.auth_utils import Caller, get_current_caller, require_venue_admin
from crowdledger.database import get_db
from crowdledger.errors import NotFoundError
from crowdledger.table_commission_service import calculate_table_commissions, list_table_commissions

logger = logging.getLogger("crowdledger.routes.table_commissions")

router = APIRouter(prefix="/events", tags=["Table Commissions"])


@router.post("/{event_id}/tables/commissions/calculate", response_model=schemas.TableCommissionSummary)
def calculate_commissions(
    event_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
):
    logger.debug(f"Caller {caller.id} calculating table commissions for event {event_id}")
    return calculate_table_commissions(db, event_id, caller)


@router.get("/{event_id}/tables/commissions", response_model=List[schemas.TableCommissionSchema])
def read_table_commissions(
    event_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
):
    event = db.query(models.Event).filter(models.Event.id == event_id).first()
    if not event:
        raise NotFoundError("Event not found")
    require_venue_admin(caller, event.venue)
    return list_table_commissions(db, event_id)
