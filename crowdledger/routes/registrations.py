import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from crowdledger import schemas
from crowdledger.auth_utils import Caller, get_optional_caller
from crowdledger.database import get_db
from crowdledger.registration_service import register_attendee

logger = logging.getLogger("crowdledger.routes.registrations")

router = APIRouter(prefix="/events", tags=["Registrations"])


def event_summary(event) -> schemas.EventSummary:
    return schemas.EventSummary(
        id=event.id,
        name=event.name,
        slug=event.slug,
        start_time=event.start_time,
        venue=event.venue.name if event.venue else None,
        organizer=event.organizer.name if event.organizer else None,
    )


@router.post("/{slug}/register", response_model=schemas.RegisterResponse)
def register_for_event(
    slug: str,
    payload: schemas.RegisterRequest,
    ref: Optional[int] = Query(None, description="Referral promoter id from the promoter's link"),
    db: Session = Depends(get_db),
    caller: Optional[Caller] = Depends(get_optional_caller),
):
    logger.debug(f"Registration request for event {slug} (ref={ref}, caller={caller.id if caller else None})")
    contact = payload.model_dump(exclude={"answers"})
    result = register_attendee(
        db,
        slug,
        contact,
        answers=payload.answers,
        referral_promoter_id=ref,
        user_id=caller.id if caller else None,
    )
    return schemas.RegisterResponse(
        registration=schemas.RegistrationSchema.model_validate(result.registration),
        attendee=schemas.AttendeeSchema.model_validate(result.attendee),
        event=event_summary(result.event),
        qr_pass_token=result.qr_pass_token,
        created=result.created,
    )
