from decimal import Decimal

import pytest

from crowdledger import models, payout_service, statement_service
from crowdledger.auth_utils import Caller
from crowdledger.checkin_service import check_in
from crowdledger.database import SessionLocal
from crowdledger.errors import ConflictError

PROMOTER_USER_ID = 40
ORGANIZER_ID = 10
ORGANIZER = Caller(id=ORGANIZER_ID, roles=frozenset({"event_organizer"}))

TIERS = {"tiers": [{"threshold": 2, "amount": "50"}, {"threshold": 4, "amount": "120"}]}


@pytest.fixture
def closed_night(db, factory):
    """Event with a flat and a tiered promoter and some scanned referrals."""
    event = factory.event()
    flat = factory.promoter("Flat Promoter", user_id=PROMOTER_USER_ID)
    tiered = factory.promoter("Tier Promoter")
    factory.assign(event, flat, "flat_per_head", {"amount_per_head": "5"})
    factory.assign(event, tiered, "tiered_thresholds", TIERS)
    for promoter, scanned in ((flat, 3), (tiered, 2)):
        for _ in range(scanned):
            registration = factory.registration(event, promoter=promoter)
            check_in(db, registration.id, "door-1")
    return event, flat, tiered


def generate(client, event, headers):
    return client.post(f"/events/{event.id}/payouts/generate", headers=headers)


def test_generate_snapshots_lines_and_locks_event(client, db, closed_night, headers, fake_storage):
    event, flat, tiered = closed_night

    response = generate(client, event, headers.organizer)
    assert response.status_code == 201
    body = response.json()

    lines = {line["promoter_id"]: line for line in body["payout_lines"]}
    assert lines[flat.id]["checkins_count"] == 3
    assert Decimal(lines[flat.id]["commission_amount"]) == Decimal("15.00")
    assert lines[tiered.id]["checkins_count"] == 2
    assert Decimal(lines[tiered.id]["commission_amount"]) == Decimal("50.00")
    assert lines[flat.id]["payment_status"] == "pending"
    assert lines[flat.id]["promoter_name"] == "Flat Promoter"
    assert Decimal(body["total_amount"]) == Decimal("65.00")

    assert body["pdf_path"].startswith("https://files.test/statements/events/")
    assert body["payout_run"]["statement_error"] is None
    [(key, (pdf_bytes, mime))] = fake_storage.uploads.items()
    assert mime == "application/pdf"
    assert pdf_bytes.startswith(b"%PDF")

    db.expire_all()
    assert db.get(models.Event, event.id).locked_at is not None
    outbox = db.query(models.OutboxEvent).filter(models.OutboxEvent.event_name == "payout_generated").one()
    assert outbox.payload["total_amount"] == "65.00"


def test_second_generation_is_a_conflict(client, db, closed_night, headers):
    event, _, _ = closed_night
    assert generate(client, event, headers.organizer).status_code == 201

    again = generate(client, event, headers.admin)
    assert again.status_code == 409
    assert again.json()["detail"] == "Event already closed"
    assert db.query(models.PayoutRun).count() == 1


def test_snapshot_survives_config_changes(client, db, closed_night, headers):
    event, flat, _ = closed_night
    generate(client, event, headers.organizer)

    blocked = client.put(f"/events/{event.id}/promoters/{flat.id}", json={
        "commission_type": "flat_per_head",
        "commission_config": {"amount_per_head": 500},
    }, headers=headers.organizer)
    assert blocked.status_code == 409

    # Even a direct write to the assignment leaves the frozen lines alone.
    ep = db.query(models.EventPromoter).filter(models.EventPromoter.promoter_id == flat.id).one()
    ep.commission_config = {"amount_per_head": "500.00"}
    db.commit()

    payouts = client.get(f"/events/{event.id}/payouts", headers=headers.organizer).json()
    flat_line = [line for line in payouts["payout_lines"] if line["promoter_id"] == flat.id][0]
    assert Decimal(flat_line["commission_amount"]) == Decimal("15.00")

    preview = client.get(f"/events/{event.id}/commissions", headers=headers.organizer).json()
    assert preview["locked"] is True
    assert Decimal(preview["total_amount"]) == Decimal("65.00")


def test_check_ins_after_lock_are_rejected(client, db, factory, closed_night, headers):
    event, flat, _ = closed_night
    late = factory.registration(event, promoter=flat)
    generate(client, event, headers.organizer)

    response = client.post(f"/events/{event.id}/checkin", json={"registration_id": late.id}, headers=headers.door)
    assert response.status_code == 409


def test_statement_failure_keeps_the_run(client, db, closed_night, headers, monkeypatch):
    event, _, _ = closed_night

    def broken(run, lines, event):
        raise RuntimeError("renderer offline")

    working = statement_service.generate_statement
    monkeypatch.setattr(statement_service, "generate_statement", broken)
    response = generate(client, event, headers.organizer)
    assert response.status_code == 201
    assert response.json()["pdf_path"] is None
    assert response.json()["payout_run"]["statement_error"] == "renderer offline"
    assert len(response.json()["payout_lines"]) == 2

    monkeypatch.setattr(statement_service, "generate_statement", working)
    retried = client.post(f"/events/{event.id}/payouts/statement", headers=headers.organizer)
    assert retried.status_code == 200
    assert retried.json()["pdf_path"].endswith(".pdf")
    assert retried.json()["payout_run"]["statement_error"] is None


def test_generation_needs_promoters(client, db, factory, headers):
    event = factory.event()
    response = generate(client, event, headers.organizer)
    assert response.status_code == 400
    db.expire_all()
    assert db.get(models.Event, event.id).locked_at is None


def test_generation_needs_organizer_or_admin(client, db, closed_night, headers):
    event, _, _ = closed_night
    assert generate(client, event, headers.door).status_code == 403
    assert generate(client, event, headers.venue_admin).status_code == 403
    assert db.query(models.PayoutRun).count() == 0


def test_reading_missing_run_is_not_found(client, factory, headers):
    event = factory.event()
    assert client.get(f"/events/{event.id}/payouts", headers=headers.organizer).status_code == 404


def _line_for(client, event, promoter, headers):
    body = client.get(f"/events/{event.id}/payouts", headers=headers.organizer).json()
    return [line for line in body["payout_lines"] if line["promoter_id"] == promoter.id][0]


def test_payment_workflow(client, db, closed_night, headers, fake_storage):
    event, flat, _ = closed_night
    generate(client, event, headers.organizer)
    line = _line_for(client, event, flat, headers)
    url = f"/payouts/lines/{line['id']}"

    early = client.post(f"{url}/confirm", headers=headers.promoter)
    assert early.status_code == 409

    paid = client.post(
        f"{url}/mark-paid",
        files={"proof": ("receipt one.png", b"\x89PNG-first", "image/png")},
        headers=headers.organizer,
    )
    assert paid.status_code == 200
    assert paid.json()["payment_status"] == "paid"
    first_proof = paid.json()["payment_proof_path"]
    assert first_proof.startswith("https://files.test/payment-proofs/")

    replaced = client.post(
        f"{url}/mark-paid",
        files={"proof": ("receipt-two.pdf", b"%PDF-second", "application/pdf")},
        headers=headers.organizer,
    )
    assert replaced.json()["payment_proof_path"] != first_proof
    assert fake_storage.deleted == [first_proof]

    assert client.post(f"{url}/confirm", headers=headers.outsider).status_code == 403

    confirmed = client.post(f"{url}/confirm", headers=headers.promoter)
    assert confirmed.status_code == 200
    assert confirmed.json()["payment_status"] == "confirmed"
    assert confirmed.json()["payment_confirmed_by"] == PROMOTER_USER_ID
    assert Decimal(confirmed.json()["commission_amount"]) == Decimal("15.00")

    assert client.post(f"{url}/confirm", headers=headers.promoter).status_code == 409
    assert client.post(f"{url}/mark-paid", headers=headers.organizer).status_code == 409


def test_mark_paid_without_proof_and_bad_file_type(client, closed_night, headers):
    event, _, tiered = closed_night
    generate(client, event, headers.organizer)
    line = _line_for(client, event, tiered, headers)

    rejected = client.post(
        f"/payouts/lines/{line['id']}/mark-paid",
        files={"proof": ("notes.txt", b"hello", "text/plain")},
        headers=headers.organizer,
    )
    assert rejected.status_code == 400

    paid = client.post(f"/payouts/lines/{line['id']}/mark-paid", headers=headers.organizer)
    assert paid.status_code == 200
    assert paid.json()["payment_proof_path"] is None
    assert paid.json()["payment_marked_by"] == ORGANIZER_ID

    assert client.post(f"/payouts/lines/{line['id']}/mark-paid", headers=headers.promoter).status_code == 403


def test_concurrent_generation_keeps_one_run(db, closed_night, monkeypatch):
    event, _, _ = closed_night
    real_compute = payout_service.compute_event_commissions
    raced = []

    def compute_then_generate_elsewhere(session, event_id):
        results = real_compute(session, event_id)
        if not raced:
            raced.append(True)
            other = SessionLocal()
            try:
                payout_service.generate_payout_run(other, event_id, ORGANIZER)
            finally:
                other.close()
        return results

    monkeypatch.setattr(payout_service, "compute_event_commissions", compute_then_generate_elsewhere)

    with pytest.raises(ConflictError):
        payout_service.generate_payout_run(db, event.id, ORGANIZER)

    db.expire_all()
    assert db.query(models.PayoutRun).count() == 1
    assert db.query(models.PayoutLine).count() == 2
    assert db.get(models.Event, event.id).locked_at is not None


def test_failed_mark_paid_removes_the_uploaded_proof(db, closed_night, monkeypatch, fake_storage):
    event, flat, _ = closed_night
    run = payout_service.generate_payout_run(db, event.id, ORGANIZER)
    line_id = [line.id for line in run.lines if line.promoter_id == flat.id][0]

    def failing_commit():
        raise RuntimeError("connection dropped")

    monkeypatch.setattr(db, "commit", failing_commit)
    with pytest.raises(RuntimeError):
        payout_service.mark_line_paid(db, line_id, ORGANIZER, proof=("receipt.png", b"\x89PNG", "image/png"))

    [proof_key] = [key for key in fake_storage.uploads if key.startswith("payment-proofs/")]
    assert fake_storage.deleted == [f"https://files.test/{proof_key}"]
    line = db.get(models.PayoutLine, line_id)
    assert line.payment_status == models.PaymentStatus.pending
    assert line.payment_proof_path is None
