import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from crowdledger import models, schemas
from crowdledger.auth_utils import Caller, get_current_caller, require_door_access
from crowdledger.checkin_service import (
    check_in,
    count_booking_checkins,
    get_party_guest,
    undo_check_in,
)
from crowdledger.database import get_db
from crowdledger.errors import AlreadyCheckedInError, NotFoundError, ValidationError
from crowdledger.qr_pass import verify_qr_pass_token
from crowdledger.strike_service import is_banned

logger = logging.getLogger("crowdledger.routes.checkins")

router = APIRouter(prefix="/events", tags=["Check-ins"])


def get_event_or_404(db: Session, event_id: int) -> models.Event:
    event = db.query(models.Event).filter(models.Event.id == event_id).first()
    if not event:
        raise NotFoundError("Event not found")
    return event


def build_checkin_response(
    db: Session,
    event: models.Event,
    registration_id: int,
    checkin: models.Checkin,
    duplicate: bool = False,
    booking_id: int = None,
) -> schemas.CheckinResponse:
    registration = db.query(models.Registration).filter(models.Registration.id == registration_id).first()
    db.refresh(event)
    return schemas.CheckinResponse(
        registration_id=registration.id,
        checked_in=registration.checked_in,
        duplicate=duplicate,
        checkin=schemas.CheckinSchema.model_validate(checkin),
        attendee=schemas.AttendeeSchema.model_validate(registration.attendee),
        event_checkins_count=event.checkins_count,
        booking_checked_in_count=count_booking_checkins(db, booking_id) if booking_id is not None else None,
        banned_at_venue=bool(event.venue_id) and is_banned(db, event.venue_id, registration.attendee_id),
    )


@router.post("/{event_id}/checkin", response_model=schemas.CheckinResponse)
def scan_checkin(
    event_id: int,
    payload: schemas.CheckinRequest,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
):
    """Door scan by QR pass token or registration id. A repeat scan reports the existing check-in."""
    logger.debug(f"Check-in scan on event {event_id} by {caller.id} (undo={payload.undo})")
    event = get_event_or_404(db, event_id)
    require_door_access(caller, event)

    if payload.qr_token:
        claims = verify_qr_pass_token(payload.qr_token)
        if claims["event_id"] != event.id:
            raise ValidationError("QR code is for a different event")
        registration_id = claims["registration_id"]
    elif payload.registration_id:
        registration_id = payload.registration_id
    else:
        raise ValidationError("qr_token or registration_id is required")

    registration = db.query(models.Registration).filter(
        models.Registration.id == registration_id,
        models.Registration.event_id == event.id,
    ).first()
    if not registration:
        raise NotFoundError("Registration not found")

    duplicate = False
    if payload.undo:
        checkin = undo_check_in(db, registration_id, caller.id)
    else:
        try:
            checkin = check_in(db, registration_id, caller.id)
        except AlreadyCheckedInError as e:
            logger.info(f"Duplicate scan for registration {registration_id}")
            checkin = e.checkin
            duplicate = True

    return build_checkin_response(db, event, registration_id, checkin, duplicate=duplicate)


@router.post(
    "/{event_id}/bookings/{booking_id}/guests/{guest_id}/checkin",
    response_model=schemas.CheckinResponse,
)
def party_guest_checkin(
    event_id: int,
    booking_id: int,
    guest_id: int,
    payload: schemas.GuestCheckinRequest = schemas.GuestCheckinRequest(),
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
):
    logger.debug(f"Guest {guest_id} of booking {booking_id} check-in by {caller.id} (undo={payload.undo})")
    event = get_event_or_404(db, event_id)
    require_door_access(caller, event)
    guest = get_party_guest(db, event.id, booking_id, guest_id)
    registration_id = guest.registration_id

    if payload.undo:
        checkin = undo_check_in(db, registration_id, caller.id)
    else:
        checkin = check_in(db, registration_id, caller.id)

    logger.info(f"Guest {guest_id} of booking {booking_id} {'undone' if payload.undo else 'checked in'}")
    return build_checkin_response(db, event, registration_id, checkin, booking_id=booking_id)
