import logging
import os
from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from crowdledger import models
from crowdledger.auth_utils import Caller, require_venue_admin
from crowdledger.errors import ConflictError, NotFoundError
from crowdledger.outbox import emit_outbox_event

logger = logging.getLogger("crowdledger.guest_flags")

STRIKE_BAN_THRESHOLD = int(os.getenv("STRIKE_BAN_THRESHOLD", "3"))
FLAG_WRITE_ATTEMPTS = 2


def get_venue(db: Session, venue_id: int) -> models.Venue:
    venue = db.query(models.Venue).filter(models.Venue.id == venue_id).first()
    if not venue:
        raise NotFoundError("Venue not found")
    return venue


def _find_flag_for_update(db: Session, venue_id: int, attendee_id: int) -> Optional[models.GuestFlag]:
    return db.query(models.GuestFlag).filter(
        models.GuestFlag.venue_id == venue_id,
        models.GuestFlag.attendee_id == attendee_id,
    ).with_for_update().first()


def _add_strike(db: Session, venue_id: int, attendee_id: int, caller: Caller, reason, expires_at) -> models.GuestFlag:
    flag = _find_flag_for_update(db, venue_id, attendee_id)
    if not flag:
        flag = models.GuestFlag(venue_id=venue_id, attendee_id=attendee_id, strike_count=0, permanent_ban=False)
        db.add(flag)

    flag.strike_count = (flag.strike_count or 0) + 1
    if flag.strike_count >= STRIKE_BAN_THRESHOLD:
        flag.permanent_ban = True
    if reason:
        flag.reason = reason
    flag.expires_at = expires_at
    flag.flagged_by = caller.id
    db.flush()

    emit_outbox_event(db, "guest_flagged", {
        "venue_id": venue_id,
        "attendee_id": attendee_id,
        "strike_count": flag.strike_count,
        "permanent_ban": flag.permanent_ban,
    })
    return flag


def flag_guest(
    db: Session,
    venue_id: int,
    attendee_id: int,
    caller: Caller,
    reason: Optional[str] = None,
    expires_at: Optional[datetime] = None,
) -> models.GuestFlag:
    """Add one strike for the attendee at this venue.

    The ban latches at STRIKE_BAN_THRESHOLD strikes and stays set; later
    strikes only keep counting. When a concurrent first strike inserts the row
    first, the strike is applied again to that row.
    """
    for attempt in range(FLAG_WRITE_ATTEMPTS):
        try:
            venue = get_venue(db, venue_id)
            require_venue_admin(caller, venue)
            attendee = db.query(models.Attendee).filter(models.Attendee.id == attendee_id).first()
            if not attendee:
                raise NotFoundError("Attendee not found")

            flag = _add_strike(db, venue.id, attendee.id, caller, reason, expires_at)
            db.commit()
            break
        except IntegrityError:
            db.rollback()
            if attempt + 1 == FLAG_WRITE_ATTEMPTS:
                raise ConflictError("Guest was flagged concurrently, retry")
            logger.info(f"Flag for attendee {attendee_id} at venue {venue_id} was created concurrently, re-applying")
        except Exception:
            db.rollback()
            raise

    db.refresh(flag)
    if flag.permanent_ban:
        logger.warning(f"Attendee {attendee_id} is banned at venue {venue_id} ({flag.strike_count} strikes)")
    else:
        logger.info(f"Attendee {attendee_id} flagged at venue {venue_id} ({flag.strike_count} strikes)")
    return flag


def list_flags(db: Session, venue_id: int, caller: Caller, min_strikes: int = 1):
    venue = get_venue(db, venue_id)
    require_venue_admin(caller, venue)
    return db.query(models.GuestFlag).options(
        joinedload(models.GuestFlag.attendee)
    ).filter(
        models.GuestFlag.venue_id == venue.id,
        models.GuestFlag.strike_count >= min_strikes,
    ).order_by(models.GuestFlag.strike_count.desc(), models.GuestFlag.id).all()


def flag_stats(db: Session, venue_id: int, caller: Caller) -> dict:
    venue = get_venue(db, venue_id)
    require_venue_admin(caller, venue)
    base = db.query(models.GuestFlag).filter(models.GuestFlag.venue_id == venue.id)
    total_flagged = base.count()
    banned = base.filter(models.GuestFlag.permanent_ban.is_(True)).count()
    total_strikes = db.query(func.coalesce(func.sum(models.GuestFlag.strike_count), 0)).filter(
        models.GuestFlag.venue_id == venue.id
    ).scalar()
    return {
        "venue_id": venue.id,
        "flagged_guests": total_flagged,
        "banned_guests": banned,
        "total_strikes": int(total_strikes or 0),
        "ban_threshold": STRIKE_BAN_THRESHOLD,
    }


def is_banned(db: Session, venue_id: int, attendee_id: int) -> bool:
    flag = db.query(models.GuestFlag).filter(
        models.GuestFlag.venue_id == venue_id,
        models.GuestFlag.attendee_id == attendee_id,
    ).first()
    return bool(flag and flag.permanent_ban)
