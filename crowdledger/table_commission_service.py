import logging
import os
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from crowdledger import models
from crowdledger.auth_utils import Caller, require_venue_admin
from crowdledger.commission_engine import percent_of, to_money
from crowdledger.errors import ConflictError
from crowdledger.promoter_service import get_event_for_update

logger = logging.getLogger("crowdledger.table_commissions")

DEFAULT_VENUE_TABLE_RATE = Decimal(os.getenv("DEFAULT_VENUE_TABLE_RATE", "10"))

COMMISSIONABLE_BOOKING_STATUSES = (models.BookingStatus.confirmed, models.BookingStatus.completed)


def booking_spend(booking: models.TableBooking):
    """Actual spend when recorded, otherwise the booking's minimum spend."""
    if booking.actual_spend is not None:
        return to_money(booking.actual_spend), "actual"
    return to_money(booking.minimum_spend or 0), "minimum"


def list_table_commissions(db: Session, event_id: int):
    return db.query(models.TableBookingCommission).filter(
        models.TableBookingCommission.event_id == event_id
    ).order_by(models.TableBookingCommission.booking_id).all()


def calculate_table_commissions(db: Session, event_id: int, caller: Caller) -> dict:
    """Split the spend of every confirmed or completed booking between promoter and venue.

    Bookings locked at closeout and commission rows already locked are left as
    they are. Other rows are recalculated in place, one per booking.
    """
    created = updated = skipped = 0
    try:
        event = get_event_for_update(db, event_id)
        require_venue_admin(caller, event.venue)
        if event.is_locked:
            raise ConflictError("Event already closed; table commissions are frozen")

        venue_rate = DEFAULT_VENUE_TABLE_RATE
        if event.venue is not None and event.venue.table_commission_rate is not None:
            venue_rate = Decimal(event.venue.table_commission_rate)

        promoter_rates = {
            ep.promoter_id: ep.table_commission_rate
            for ep in db.query(models.EventPromoter).filter(models.EventPromoter.event_id == event.id)
        }

        bookings = db.query(models.TableBooking).options(
            joinedload(models.TableBooking.commission)
        ).filter(
            models.TableBooking.event_id == event.id,
            models.TableBooking.status.in_(COMMISSIONABLE_BOOKING_STATUSES),
        ).order_by(models.TableBooking.id).all()

        for booking in bookings:
            existing = booking.commission
            if booking.closeout_locked or (existing is not None and existing.locked):
                skipped += 1
                continue

            spend, source = booking_spend(booking)
            promoter_rate = promoter_rates.get(booking.promoter_id) if booking.promoter_id else None
            values = {
                "promoter_id": booking.promoter_id,
                "spend_amount": spend,
                "spend_source": source,
                "promoter_commission_rate": promoter_rate,
                "promoter_commission_amount": percent_of(spend, promoter_rate) if promoter_rate is not None else to_money(0),
                "venue_commission_rate": venue_rate,
                "venue_commission_amount": percent_of(spend, venue_rate),
            }
            if existing is None:
                db.add(models.TableBookingCommission(booking_id=booking.id, event_id=event.id, **values))
                created += 1
            else:
                for key, value in values.items():
                    setattr(existing, key, value)
                updated += 1

        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Table commissions changed concurrently; please retry")
    except Exception:
        db.rollback()
        raise

    commissions = list_table_commissions(db, event_id)
    logger.info(
        f"Calculated table commissions for event {event_id}: "
        f"{created} created, {updated} updated, {skipped} skipped"
    )
    return {
        "event_id": event_id,
        "bookings_processed": created + updated,
        "commissions_created": created,
        "commissions_updated": updated,
        "bookings_skipped": skipped,
        "total_spend": to_money(sum((c.spend_amount for c in commissions), 0)),
        "total_promoter_commission": to_money(sum((c.promoter_commission_amount for c in commissions), 0)),
        "total_venue_commission": to_money(sum((c.venue_commission_amount for c in commissions), 0)),
        "commissions": commissions,
    }
