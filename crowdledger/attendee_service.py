import logging
from datetime import date
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from crowdledger import models
from crowdledger.errors import ValidationError

logger = logging.getLogger("crowdledger.attendees")

# Fields copied from the incoming contact data onto the attendee row.
CONTACT_FIELDS = (
    "name",
    "surname",
    "phone",
    "email",
    "whatsapp",
    "date_of_birth",
    "instagram_handle",
    "tiktok_handle",
    "avatar_url",
)


def _clean(value):
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def _clean_handle(value: Optional[str]) -> Optional[str]:
    value = _clean(value)
    if value:
        value = value.lstrip("@") or None
    return value


def normalize_contact(contact: dict) -> dict:
    """Strip whitespace, drop empty values and the leading @ of social handles."""
    cleaned = {}
    for field in CONTACT_FIELDS:
        value = contact.get(field)
        if field in ("instagram_handle", "tiktok_handle"):
            value = _clean_handle(value)
        else:
            value = _clean(value)
        if field == "email" and value:
            value = value.lower()
        if field == "date_of_birth" and isinstance(value, str):
            try:
                value = date.fromisoformat(value)
            except ValueError:
                raise ValidationError("date_of_birth must be an ISO date (YYYY-MM-DD)")
        if value is not None:
            cleaned[field] = value
    return cleaned


def find_attendee(db: Session, phone: Optional[str], email: Optional[str], user_id: Optional[int] = None):
    """Best-effort identity lookup: user link, then phone, then email, then either."""
    query = db.query(models.Attendee).order_by(models.Attendee.id)
    if user_id is not None:
        attendee = query.filter(models.Attendee.user_id == user_id).first()
        if attendee:
            logger.debug(f"Matched attendee {attendee.id} by user_id {user_id}")
            return attendee
    if phone:
        attendee = query.filter(models.Attendee.phone == phone).first()
        if attendee:
            logger.debug(f"Matched attendee {attendee.id} by phone")
            return attendee
    if email:
        attendee = query.filter(models.Attendee.email == email).first()
        if attendee:
            logger.debug(f"Matched attendee {attendee.id} by email")
            return attendee
    if phone and email:
        return query.filter(or_(models.Attendee.phone == phone, models.Attendee.email == email)).first()
    return None


def resolve_attendee(db: Session, contact: dict, user_id: Optional[int] = None) -> models.Attendee:
    """Find-or-create the attendee for a set of contact fields.

    Matching rows are merge-updated: a field is only overwritten when the
    incoming value is non-empty, so phone and email survive updates that omit
    them. New identities need a name and a phone (WhatsApp stands in for it).
    Flushes, never commits.
    """
    data = normalize_contact(contact)
    if not data.get("name"):
        raise ValidationError("Name is required")

    attendee = find_attendee(db, data.get("phone"), data.get("email"), user_id=user_id)

    if attendee:
        for field, value in data.items():
            setattr(attendee, field, value)
        if user_id is not None and attendee.user_id is None:
            attendee.user_id = user_id
        db.flush()
        logger.info(f"Updated attendee {attendee.id}")
        return attendee

    if not data.get("phone") and not data.get("whatsapp"):
        logger.error("Missing phone/whatsapp for new attendee")
        raise ValidationError("Phone number or WhatsApp is required")
    if not data.get("phone"):
        data["phone"] = data["whatsapp"]

    attendee = models.Attendee(user_id=user_id, **data)
    db.add(attendee)
    db.flush()
    logger.info(f"Created attendee {attendee.id}")
    return attendee
