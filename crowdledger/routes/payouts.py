import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile
from sqlalchemy.orm import Session

from crowdledger import models, schemas
from crowdledger.auth_utils import Caller, get_current_caller, get_managed_event
from crowdledger.commission_engine import to_money
from crowdledger.database import get_db
from crowdledger.errors import ValidationError
from crowdledger.payout_service import (
    confirm_line_payment,
    generate_payout_run,
    get_payout_run,
    mark_line_paid,
    retry_statement,
)

logger = logging.getLogger("crowdledger.routes.payouts")

router = APIRouter(tags=["Payouts"])

ALLOWED_PROOF_TYPES = {"image/jpeg", "image/png", "image/webp", "application/pdf"}
MAX_PROOF_BYTES = 10 * 1024 * 1024


def line_schema(line: models.PayoutLine) -> schemas.PayoutLineSchema:
    data = schemas.PayoutLineSchema.model_validate(line)
    data.promoter_name = line.promoter.name if line.promoter else None
    return data


def run_response(run: models.PayoutRun) -> schemas.PayoutRunResponse:
    return schemas.PayoutRunResponse(
        payout_run=schemas.PayoutRunSchema.model_validate(run),
        payout_lines=[line_schema(line) for line in run.lines],
        pdf_path=run.statement_pdf_path,
        total_amount=to_money(sum((line.commission_amount for line in run.lines), 0)),
    )


@router.post("/events/{event_id}/payouts/generate", response_model=schemas.PayoutRunResponse, status_code=201)
def generate_payouts(
    event_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
):
    logger.debug(f"Caller {caller.id} generating payouts for event {event_id}")
    run = generate_payout_run(db, event_id, caller)
    return run_response(run)


@router.get("/events/{event_id}/payouts", response_model=schemas.PayoutRunResponse)
def read_payouts(
    event_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
):
    get_managed_event(db, event_id, caller)
    return run_response(get_payout_run(db, event_id))


@router.post("/events/{event_id}/payouts/statement", response_model=schemas.PayoutRunResponse)
def rerender_statement(
    event_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
):
    logger.debug(f"Caller {caller.id} re-rendering statement for event {event_id}")
    return run_response(retry_statement(db, event_id, caller))


@router.post("/payouts/lines/{line_id}/mark-paid", response_model=schemas.PayoutLineSchema)
async def mark_paid(
    line_id: int,
    proof: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
):
    logger.debug(f"Caller {caller.id} marking payout line {line_id} paid (proof: {bool(proof)})")
    proof_file = None
    if proof is not None and proof.filename:
        if proof.content_type not in ALLOWED_PROOF_TYPES:
            raise ValidationError(f"Unsupported proof file type: {proof.content_type}")
        data = await proof.read()
        if len(data) > MAX_PROOF_BYTES:
            raise ValidationError("Proof file is too large (max 10MB)")
        proof_file = (proof.filename, data, proof.content_type)
    return line_schema(mark_line_paid(db, line_id, caller, proof_file))


@router.post("/payouts/lines/{line_id}/confirm", response_model=schemas.PayoutLineSchema)
def confirm_payment(
    line_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_current_caller),
):
    logger.debug(f"Caller {caller.id} confirming payout line {line_id}")
    return line_schema(confirm_line_payment(db, line_id, caller))
