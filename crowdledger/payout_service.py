import logging
import os
import uuid
from typing import Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from crowdledger import models, statement_service, storage
from crowdledger.auth_utils import Caller, get_managed_event, require_event_manager
from crowdledger.commission_engine import compute_event_commissions, to_money
from crowdledger.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from crowdledger.outbox import emit_outbox_event
from crowdledger.promoter_service import get_event_for_update

logger = logging.getLogger("crowdledger.payouts")

PAYMENT_PROOFS_BUCKET = os.getenv("PAYMENT_PROOFS_BUCKET", "payment-proofs")


def get_payout_run(db: Session, event_id: int) -> models.PayoutRun:
    run = db.query(models.PayoutRun).options(
        joinedload(models.PayoutRun.lines).joinedload(models.PayoutLine.promoter)
    ).filter(models.PayoutRun.event_id == event_id).first()
    if not run:
        raise NotFoundError("No payout run for this event")
    return run


def render_run_statement(db: Session, run: models.PayoutRun) -> Optional[str]:
    """Render and attach the statement. Failure is recorded on the run, never rolled back into the snapshot."""
    try:
        pdf_path = statement_service.generate_statement(run, run.lines, run.event)
    except Exception as e:
        logger.error(f"Statement rendering failed for payout run {run.id}: {e}", exc_info=True)
        run.statement_error = str(e)[:1000]
        db.commit()
        return None

    run.statement_pdf_path = pdf_path
    run.statement_error = None
    db.commit()
    logger.info(f"Attached statement to payout run {run.id}")
    return pdf_path


def generate_payout_run(db: Session, event_id: int, caller: Caller) -> models.PayoutRun:
    """Snapshot commissions into a payout run and lock the event.

    The lock check, run insert, line inserts and lock timestamp commit together
    under the event row lock; the unique constraint on payout_runs.event_id is
    the backstop when the row lock is unavailable.
    """
    try:
        event = get_event_for_update(db, event_id)
        require_event_manager(caller, event)

        existing_run = db.query(models.PayoutRun.id).filter(models.PayoutRun.event_id == event.id).first()
        if event.is_locked or existing_run:
            logger.warning(f"Payout generation rejected: event {event.id} already closed")
            raise ConflictError("Event already closed")

        promoter_count = db.query(models.EventPromoter).filter(models.EventPromoter.event_id == event.id).count()
        if promoter_count == 0:
            raise ValidationError("No promoters configured for this event")

        results = compute_event_commissions(db, event.id)

        run = models.PayoutRun(event_id=event.id, generated_by=caller.id, generated_at=models.utcnow())
        db.add(run)
        db.flush()

        for result in results:
            db.add(models.PayoutLine(
                payout_run_id=run.id,
                promoter_id=result.promoter_id,
                commission_type=result.commission_type,
                checkins_count=result.checkins_count,
                tables_count=result.tables_count,
                table_commission_amount=result.table_commission_amount,
                commission_amount=result.commission_amount,
                payment_status=models.PaymentStatus.pending,
            ))

        event.locked_at = models.utcnow()
        db.commit()
    except IntegrityError as e:
        db.rollback()
        logger.warning(f"Payout run insert conflicted for event {event_id}: {e}")
        raise ConflictError("Event already closed")
    except Exception:
        db.rollback()
        raise

    logger.info(f"Generated payout run {run.id} for event {event_id} with {len(results)} lines")

    run = get_payout_run(db, event_id)
    pdf_path = render_run_statement(db, run)

    total = to_money(sum((line.commission_amount for line in run.lines), 0))
    table_total = to_money(sum((line.table_commission_amount for line in run.lines), 0))
    emit_outbox_event(db, "payout_generated", {
        "payout_run_id": run.id,
        "event_id": event_id,
        "lines": len(run.lines),
        "total_amount": str(total),
        "table_commission_amount": str(table_total),
        "pdf_path": pdf_path,
    })
    db.commit()
    return get_payout_run(db, event_id)


def retry_statement(db: Session, event_id: int, caller: Caller) -> models.PayoutRun:
    get_managed_event(db, event_id, caller)
    run = get_payout_run(db, event_id)
    render_run_statement(db, run)
    return get_payout_run(db, event_id)


def _get_line(db: Session, line_id: int) -> models.PayoutLine:
    line = db.query(models.PayoutLine).filter(models.PayoutLine.id == line_id).with_for_update().first()
    if not line:
        raise NotFoundError("Payout line not found")
    return line


def mark_line_paid(
    db: Session,
    line_id: int,
    caller: Caller,
    proof: Optional[Tuple[str, bytes, str]] = None,
) -> models.PayoutLine:
    """pending -> paid, optionally attaching a proof file (filename, bytes, mime).

    Re-marking a paid line replaces its proof. Snapshot columns are untouched.
    """
    old_proof = None
    new_proof = None
    try:
        line = _get_line(db, line_id)
        require_event_manager(caller, line.payout_run.event)
        if line.payment_status == models.PaymentStatus.confirmed:
            raise ConflictError("Payment already confirmed by the promoter")

        if proof is not None:
            filename, data, mime = proof
            path = f"events/{line.payout_run.event_id}/lines/{line.id}/{uuid.uuid4().hex}-{storage.sanitize_filename(filename)}"
            old_proof = line.payment_proof_path
            new_proof = storage.upload_to_storage(PAYMENT_PROOFS_BUCKET, path, data, mime)
            line.payment_proof_path = new_proof

        line.payment_status = models.PaymentStatus.paid
        line.payment_marked_by = caller.id
        line.payment_marked_at = models.utcnow()
        db.commit()
    except Exception:
        db.rollback()
        if new_proof:
            # Nothing references the upload once the update is rolled back.
            try:
                storage.delete_from_storage(PAYMENT_PROOFS_BUCKET, new_proof)
            except Exception as e:
                logger.warning(f"Could not delete orphaned payment proof {new_proof}: {e}")
        raise

    if old_proof:
        try:
            storage.delete_from_storage(PAYMENT_PROOFS_BUCKET, old_proof)
        except Exception as e:
            logger.warning(f"Could not delete replaced payment proof {old_proof}: {e}")

    db.refresh(line)
    logger.info(f"Payout line {line.id} marked paid by {caller.id}")
    return line


def confirm_line_payment(db: Session, line_id: int, caller: Caller) -> models.PayoutLine:
    """paid -> confirmed, by the promoter who received the money (or an admin)."""
    try:
        line = _get_line(db, line_id)
        promoter = line.promoter
        if not (caller.is_superadmin or (promoter is not None and promoter.user_id == caller.id)):
            raise ForbiddenError("Only the promoter can confirm this payment")
        if line.payment_status != models.PaymentStatus.paid:
            raise ConflictError(f"Cannot confirm a payment that is {line.payment_status.value}")

        line.payment_status = models.PaymentStatus.confirmed
        line.payment_confirmed_by = caller.id
        line.payment_confirmed_at = models.utcnow()
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(line)
    logger.info(f"Payout line {line.id} confirmed by {caller.id}")
    return line
