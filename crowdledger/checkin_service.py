import logging
import os
from typing import Dict, Optional

from sqlalchemy import distinct, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from crowdledger import models
from crowdledger.errors import AlreadyCheckedInError, ConflictError, NotFoundError, ValidationError
from crowdledger.outbox import emit_outbox_event

logger = logging.getLogger("crowdledger.checkin")

CHECKIN_XP_AWARD = int(os.getenv("CHECKIN_XP_AWARD", "100"))


def get_registration_for_update(db: Session, registration_id: int) -> models.Registration:
    registration = db.query(models.Registration).filter(
        models.Registration.id == registration_id
    ).with_for_update().first()
    if not registration:
        logger.error(f"Registration {registration_id} not found")
        raise NotFoundError("Registration not found")
    return registration


def get_active_checkin(db: Session, registration_id: int) -> Optional[models.Checkin]:
    return db.query(models.Checkin).filter(
        models.Checkin.registration_id == registration_id,
        models.Checkin.undo_at.is_(None),
    ).first()


def _refresh_checked_in_cache(db: Session, registration: models.Registration):
    db.flush()
    registration.checked_in = get_active_checkin(db, registration.id) is not None


def _bump_event_counter(db: Session, event_id: int, delta: int):
    query = db.query(models.Event).filter(models.Event.id == event_id)
    if delta < 0:
        query = query.filter(models.Event.checkins_count > 0)
    query.update(
        {models.Event.checkins_count: models.Event.checkins_count + delta},
        synchronize_session=False,
    )


def _ensure_event_open(registration: models.Registration):
    if registration.event.is_locked:
        raise ConflictError("Event is closed; check-ins can no longer change")


def check_in(db: Session, registration_id: int, operator_id) -> models.Checkin:
    """Append an active ledger row for the registration.

    Raises AlreadyCheckedInError (carrying the active row) when one exists;
    the partial unique index settles races between concurrent scans.
    """
    try:
        registration = get_registration_for_update(db, registration_id)
        if registration.status in models.TERMINAL_REGISTRATION_STATUSES:
            raise ConflictError(f"Cannot check in a {registration.status.value} registration")
        _ensure_event_open(registration)

        active = get_active_checkin(db, registration.id)
        if active:
            raise AlreadyCheckedInError(active)

        first_visit = db.query(models.Checkin.id).filter(
            models.Checkin.registration_id == registration.id
        ).first() is None

        checkin = models.Checkin(registration_id=registration.id, checked_in_by=str(operator_id))
        db.add(checkin)
        db.flush()

        _refresh_checked_in_cache(db, registration)
        _bump_event_counter(db, registration.event_id, 1)

        if first_visit and CHECKIN_XP_AWARD:
            attendee = registration.attendee
            attendee.xp_points = (attendee.xp_points or 0) + CHECKIN_XP_AWARD
            logger.info(f"Awarded {CHECKIN_XP_AWARD} XP to attendee {attendee.id}")

        emit_outbox_event(db, "attendee_checked_in", {
            "checkin_id": checkin.id,
            "registration_id": registration.id,
            "event_id": registration.event_id,
            "attendee_id": registration.attendee_id,
            "checked_in_by": str(operator_id),
        })
        db.commit()
    except IntegrityError:
        db.rollback()
        active = get_active_checkin(db, registration_id)
        if active is None:
            raise ConflictError("Check-in changed concurrently; please retry")
        logger.info(f"Concurrent check-in detected for registration {registration_id}")
        raise AlreadyCheckedInError(active)
    except Exception:
        db.rollback()
        raise

    db.refresh(checkin)
    logger.info(f"Registration {registration_id} checked in by {operator_id} (checkin {checkin.id})")
    return checkin


def undo_check_in(db: Session, registration_id: int, operator_id) -> models.Checkin:
    """Void the active ledger row. The row stays for the audit trail."""
    try:
        registration = get_registration_for_update(db, registration_id)
        _ensure_event_open(registration)

        active = get_active_checkin(db, registration.id)
        if not active:
            raise ValidationError("Registration is not checked in")

        active.undo_at = models.utcnow()
        active.undone_by = str(operator_id)
        _refresh_checked_in_cache(db, registration)
        _bump_event_counter(db, registration.event_id, -1)

        emit_outbox_event(db, "checkin_undone", {
            "checkin_id": active.id,
            "registration_id": registration.id,
            "event_id": registration.event_id,
            "undone_by": str(operator_id),
        })
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(active)
    logger.info(f"Check-in {active.id} undone for registration {registration_id} by {operator_id}")
    return active


def count_event_checkins(db: Session, event_id: int) -> int:
    """Distinct registrations of the event with an active check-in."""
    return db.query(func.count(distinct(models.Checkin.registration_id))).join(
        models.Registration, models.Registration.id == models.Checkin.registration_id
    ).filter(
        models.Registration.event_id == event_id,
        models.Checkin.undo_at.is_(None),
    ).scalar() or 0


def count_attributable_checkins(db: Session, event_id: int) -> Dict[int, int]:
    """Per promoter: distinct referred registrations with at least one active check-in."""
    rows = db.query(
        models.Registration.referral_promoter_id,
        func.count(distinct(models.Registration.id)),
    ).join(
        models.Checkin, models.Checkin.registration_id == models.Registration.id
    ).filter(
        models.Registration.event_id == event_id,
        models.Registration.referral_promoter_id.isnot(None),
        models.Checkin.undo_at.is_(None),
    ).group_by(models.Registration.referral_promoter_id).all()
    return {promoter_id: count for promoter_id, count in rows}


# Bookings in these states admit their party at the door.
ADMITTING_BOOKING_STATUSES = {models.BookingStatus.confirmed, models.BookingStatus.completed}
REJECTED_GUEST_STATUSES = {models.PartyGuestStatus.removed, models.PartyGuestStatus.declined}


def get_party_guest(db: Session, event_id: int, booking_id: int, guest_id: int) -> models.TablePartyGuest:
    booking = db.query(models.TableBooking).filter(
        models.TableBooking.id == booking_id,
        models.TableBooking.event_id == event_id,
    ).first()
    if not booking:
        raise NotFoundError("Booking not found")
    if booking.status not in ADMITTING_BOOKING_STATUSES:
        raise ConflictError(f"Booking is {booking.status.value}; guests cannot be checked in")

    guest = db.query(models.TablePartyGuest).filter(
        models.TablePartyGuest.id == guest_id,
        models.TablePartyGuest.booking_id == booking.id,
    ).first()
    if not guest:
        raise NotFoundError("Guest not found")
    if guest.status in REJECTED_GUEST_STATUSES:
        raise ConflictError(f"Guest was {guest.status.value}; cannot check in")
    if guest.registration is None or guest.registration.event_id != event_id:
        raise NotFoundError("Guest has no registration for this event")
    return guest


def count_booking_checkins(db: Session, booking_id: int) -> int:
    return db.query(models.TablePartyGuest).join(
        models.Registration, models.Registration.id == models.TablePartyGuest.registration_id
    ).filter(
        models.TablePartyGuest.booking_id == booking_id,
        models.Registration.checked_in.is_(True),
    ).count()
