import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from crowdledger import models
from crowdledger.attendee_service import resolve_attendee
from crowdledger.errors import ConflictError, NotFoundError, ValidationError
from crowdledger.outbox import emit_outbox_event
from crowdledger.qr_pass import generate_qr_pass_token

logger = logging.getLogger("crowdledger.registrations")


@dataclass
class RegistrationResult:
    registration: models.Registration
    attendee: models.Attendee
    event: models.Event
    qr_pass_token: str
    created: bool


def get_published_event(db: Session, slug: str) -> models.Event:
    event = db.query(models.Event).filter(
        models.Event.slug == slug,
        models.Event.status == models.EventStatus.published,
    ).first()
    if not event:
        logger.error(f"Published event not found for slug: {slug}")
        raise NotFoundError("Event not found")
    return event


def _is_answered(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, dict)):
        return bool(value)
    return True


def _normalize_answers(event: models.Event, answers: Optional[Dict[Any, Any]]) -> Dict[int, Any]:
    """Key answers by question id, keeping only questions that belong to the event."""
    questions = {q.id: q for q in event.questions}
    normalized = {}
    for key, value in (answers or {}).items():
        try:
            question_id = int(key)
        except (TypeError, ValueError):
            continue
        if question_id in questions and _is_answered(value):
            normalized[question_id] = value

    missing = [q.label for q in event.questions if q.required and q.id not in normalized]
    if missing:
        raise ValidationError(
            f"Required question(s) not answered: {', '.join(missing)}",
            extra={"missing_questions": missing},
        )
    return normalized


def _resolve_referral(db: Session, referral_promoter_id: Optional[int]) -> Optional[int]:
    if referral_promoter_id is None:
        return None
    promoter = db.query(models.Promoter).filter(models.Promoter.id == referral_promoter_id).first()
    if not promoter:
        logger.warning(f"Referral promoter {referral_promoter_id} not found; registering without attribution")
        return None
    return promoter.id


def register_attendee(
    db: Session,
    slug: str,
    contact: Dict[str, Any],
    answers: Optional[Dict[Any, Any]] = None,
    referral_promoter_id: Optional[int] = None,
    user_id: Optional[int] = None,
) -> RegistrationResult:
    """Upsert the registration of a person for a published event.

    A repeat registration returns the existing row untouched: attribution is
    decided once, by the first registration. The pass token is re-derived
    either way.
    """
    event = get_published_event(db, slug)

    try:
        attendee = resolve_attendee(db, contact, user_id=user_id)

        existing = db.query(models.Registration).filter(
            models.Registration.attendee_id == attendee.id,
            models.Registration.event_id == event.id,
        ).first()
        if existing:
            db.commit()
            logger.info(f"Attendee {attendee.id} already registered for event {event.id} (registration {existing.id})")
            return RegistrationResult(
                registration=existing,
                attendee=attendee,
                event=event,
                qr_pass_token=generate_qr_pass_token(existing.id, event.id, attendee.id),
                created=False,
            )

        normalized_answers = _normalize_answers(event, answers)

        registration = models.Registration(
            attendee_id=attendee.id,
            event_id=event.id,
            referral_promoter_id=_resolve_referral(db, referral_promoter_id),
        )
        db.add(registration)
        db.flush()

        for question_id, value in normalized_answers.items():
            db.add(models.EventAnswer(
                registration_id=registration.id,
                question_id=question_id,
                answer_text=value if isinstance(value, str) else None,
                answer_json=None if isinstance(value, str) else value,
            ))

        emit_outbox_event(db, "registration_created", {
            "registration_id": registration.id,
            "event_id": event.id,
            "attendee_id": attendee.id,
        })
        db.commit()
    except IntegrityError as e:
        db.rollback()
        logger.error(f"Registration write conflict for event {event.id}: {e}")
        raise ConflictError("Registration changed concurrently; please retry")
    except Exception:
        db.rollback()
        raise

    db.refresh(registration)
    logger.info(
        f"Created registration {registration.id} for attendee {attendee.id} on event {event.id} "
        f"(referral promoter: {registration.referral_promoter_id})"
    )
    return RegistrationResult(
        registration=registration,
        attendee=attendee,
        event=event,
        qr_pass_token=generate_qr_pass_token(registration.id, event.id, attendee.id),
        created=True,
    )
