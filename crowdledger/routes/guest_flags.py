import logging
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from crowdledger import models, schemas
from crowdledger.auth_utils import Caller, get_current_caller
from crowdledger.database import get_db
from crowdledger.strike_service import flag_guest, flag_stats, list_flags

logger = logging.getLogger("crowdledger.routes.guest_flags")

router = APIRouter(prefix="/venues", tags=["Guest Flags"])


def flag_schema(flag: models.GuestFlag) -> schemas.GuestFlagSchema:
    data = schemas.GuestFlagSchema.model_validate(flag)
    if flag.attendee:
        data.attendee_name = " ".join(part for part in (flag.attendee.name, flag.attendee.surname) if part)
    return data


@router.post("/{venue_id}/guest-flags", response_model=schemas.GuestFlagSchema)
def create_guest_flag(
    venue_id: int,
    payload: schemas.GuestFlagCreate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
):
    logger.debug(f"Caller {caller.id} flagging attendee {payload.attendee_id} at venue {venue_id}")
    flag = flag_guest(db, venue_id, payload.attendee_id, caller, reason=payload.reason, expires_at=payload.expires_at)
    return flag_schema(flag)


@router.get("/{venue_id}/guest-flags", response_model=List[schemas.GuestFlagSchema])
def get_guest_flags(
    venue_id: int,
    min_strikes: int = Query(1, ge=1),
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
):
    return [flag_schema(flag) for flag in list_flags(db, venue_id, caller, min_strikes=min_strikes)]


@router.get("/{venue_id}/guest-flags/stats", response_model=schemas.GuestFlagStats)
def get_guest_flag_stats(
    venue_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
):
    return flag_stats(db, venue_id, caller)
