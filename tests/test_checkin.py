import pytest

from crowdledger import checkin_service, models
from crowdledger.checkin_service import (
    CHECKIN_XP_AWARD,
    check_in,
    count_attributable_checkins,
    count_event_checkins,
    undo_check_in,
)
from crowdledger.database import SessionLocal
from crowdledger.errors import AlreadyCheckedInError, ConflictError, ValidationError
from crowdledger.qr_pass import generate_qr_pass_token


def test_check_in_updates_cache_counter_and_xp(db, factory):
    event = factory.event()
    registration = factory.registration(event)

    checkin = check_in(db, registration.id, "door-1")

    assert checkin.undo_at is None
    assert checkin.checked_in_by == "door-1"
    assert registration.checked_in is True
    assert db.get(models.Event, event.id).checkins_count == 1
    assert registration.attendee.xp_points == CHECKIN_XP_AWARD


def test_second_check_in_is_a_conflict_carrying_the_first_row(db, factory):
    event = factory.event()
    registration = factory.registration(event)
    first = check_in(db, registration.id, "door-1")

    with pytest.raises(AlreadyCheckedInError) as excinfo:
        check_in(db, registration.id, "door-2")

    assert excinfo.value.checkin.id == first.id
    assert excinfo.value.extra["checked_in_at"] is not None
    assert db.query(models.Checkin).count() == 1
    assert db.get(models.Event, event.id).checkins_count == 1


def test_undo_voids_row_without_deleting_it(db, factory):
    event = factory.event()
    registration = factory.registration(event)
    check_in(db, registration.id, "door-1")

    undone = undo_check_in(db, registration.id, "door-1")

    assert undone.undo_at is not None
    assert undone.undone_by == "door-1"
    assert registration.checked_in is False
    assert db.query(models.Checkin).count() == 1
    assert db.get(models.Event, event.id).checkins_count == 0


def test_undo_without_active_check_in_is_rejected(db, factory):
    registration = factory.registration(factory.event())
    with pytest.raises(ValidationError):
        undo_check_in(db, registration.id, "door-1")


def test_check_in_undo_check_in_counts_once(db, factory):
    event = factory.event()
    promoter = factory.promoter()
    registration = factory.registration(event, promoter=promoter)

    check_in(db, registration.id, "door-1")
    undo_check_in(db, registration.id, "door-1")
    check_in(db, registration.id, "door-1")

    assert count_attributable_checkins(db, event.id) == {promoter.id: 1}
    assert count_event_checkins(db, event.id) == 1
    assert db.query(models.Checkin).filter(models.Checkin.registration_id == registration.id).count() == 2
    # XP is only awarded for the first visit.
    assert registration.attendee.xp_points == CHECKIN_XP_AWARD


def test_undone_check_in_is_not_attributable(db, factory):
    event = factory.event()
    promoter = factory.promoter()
    kept = factory.registration(event, promoter=promoter)
    voided = factory.registration(event, promoter=promoter)
    factory.registration(event, promoter=promoter)

    check_in(db, kept.id, "door-1")
    check_in(db, voided.id, "door-1")
    undo_check_in(db, voided.id, "door-1")

    assert count_attributable_checkins(db, event.id) == {promoter.id: 1}


@pytest.mark.parametrize("status", [
    models.RegistrationStatus.cancelled,
    models.RegistrationStatus.removed,
    models.RegistrationStatus.declined,
])
def test_terminal_registrations_cannot_check_in(db, factory, status):
    registration = factory.registration(factory.event(), status=status)
    with pytest.raises(ConflictError):
        check_in(db, registration.id, "door-1")
    assert db.query(models.Checkin).count() == 0


def test_locked_event_rejects_ledger_writes(db, factory):
    event = factory.event()
    registration = factory.registration(event)
    event.locked_at = models.utcnow()
    db.commit()

    with pytest.raises(ConflictError):
        check_in(db, registration.id, "door-1")


def test_check_in_queues_outbox_events(db, factory):
    registration = factory.registration(factory.event())
    check_in(db, registration.id, "door-1")
    undo_check_in(db, registration.id, "door-1")

    names = [e.event_name for e in db.query(models.OutboxEvent).order_by(models.OutboxEvent.id)]
    assert names == ["attendee_checked_in", "checkin_undone"]


# API


def test_qr_scan_duplicate_reports_existing_check_in(client, factory, headers):
    event = factory.event()
    registration = factory.registration(event)
    token = generate_qr_pass_token(registration.id, event.id, registration.attendee_id)

    first = client.post(f"/events/{event.id}/checkin", json={"qr_token": token}, headers=headers.door)
    assert first.status_code == 200
    assert first.json()["duplicate"] is False
    assert first.json()["checked_in"] is True
    assert first.json()["event_checkins_count"] == 1

    second = client.post(f"/events/{event.id}/checkin", json={"qr_token": token}, headers=headers.door)
    assert second.status_code == 200
    assert second.json()["duplicate"] is True
    assert second.json()["checkin"]["id"] == first.json()["checkin"]["id"]
    assert second.json()["event_checkins_count"] == 1


def test_qr_scan_for_another_event_is_rejected(client, factory, headers):
    event = factory.event()
    other = factory.event(slug="other-night")
    registration = factory.registration(other)
    token = generate_qr_pass_token(registration.id, other.id, registration.attendee_id)

    response = client.post(f"/events/{event.id}/checkin", json={"qr_token": token}, headers=headers.door)
    assert response.status_code == 400


def test_scan_undo_by_registration_id(client, factory, headers):
    event = factory.event()
    registration = factory.registration(event)
    client.post(f"/events/{event.id}/checkin", json={"registration_id": registration.id}, headers=headers.door)

    response = client.post(
        f"/events/{event.id}/checkin",
        json={"registration_id": registration.id, "undo": True},
        headers=headers.door,
    )
    assert response.status_code == 200
    assert response.json()["checked_in"] is False
    assert response.json()["event_checkins_count"] == 0


def test_scan_requires_door_access(client, factory, headers):
    event = factory.event()
    registration = factory.registration(event)
    response = client.post(
        f"/events/{event.id}/checkin", json={"registration_id": registration.id}, headers=headers.outsider
    )
    assert response.status_code == 403

    venue_admin = client.post(
        f"/events/{event.id}/checkin", json={"registration_id": registration.id}, headers=headers.venue_admin
    )
    assert venue_admin.status_code == 200


def test_scan_requires_authentication(client, factory):
    event = factory.event()
    response = client.post(f"/events/{event.id}/checkin", json={"registration_id": 1})
    assert response.status_code == 401


def _booking_with_guest(db, event, registration, booking_status, guest_status=models.PartyGuestStatus.joined):
    booking = models.TableBooking(event_id=event.id, table_name="VIP 1", status=booking_status)
    db.add(booking)
    db.flush()
    guest = models.TablePartyGuest(booking_id=booking.id, registration_id=registration.id, status=guest_status)
    db.add(guest)
    db.commit()
    return booking, guest


def test_party_guest_check_in_and_undo(client, db, factory, headers):
    event = factory.event()
    registration = factory.registration(event)
    booking, guest = _booking_with_guest(db, event, registration, models.BookingStatus.confirmed)
    url = f"/events/{event.id}/bookings/{booking.id}/guests/{guest.id}/checkin"

    response = client.post(url, json={}, headers=headers.door)
    assert response.status_code == 200
    assert response.json()["booking_checked_in_count"] == 1
    assert response.json()["event_checkins_count"] == 1

    again = client.post(url, json={}, headers=headers.door)
    assert again.status_code == 409
    assert again.json()["checked_in_at"]

    undone = client.post(url, json={"undo": True}, headers=headers.door)
    assert undone.status_code == 200
    assert undone.json()["checked_in"] is False
    assert undone.json()["booking_checked_in_count"] == 0

    not_checked_in = client.post(url, json={"undo": True}, headers=headers.door)
    assert not_checked_in.status_code == 400


def test_party_guest_on_unconfirmed_booking_is_rejected(client, db, factory, headers):
    event = factory.event()
    registration = factory.registration(event)
    booking, guest = _booking_with_guest(db, event, registration, models.BookingStatus.pending)

    response = client.post(
        f"/events/{event.id}/bookings/{booking.id}/guests/{guest.id}/checkin", json={}, headers=headers.door
    )
    assert response.status_code == 409


def test_removed_party_guest_is_rejected(client, db, factory, headers):
    event = factory.event()
    registration = factory.registration(event)
    booking, guest = _booking_with_guest(
        db, event, registration, models.BookingStatus.confirmed, models.PartyGuestStatus.removed
    )

    response = client.post(
        f"/events/{event.id}/bookings/{booking.id}/guests/{guest.id}/checkin", json={}, headers=headers.door
    )
    assert response.status_code == 409
    assert db.query(models.Checkin).count() == 0


def test_concurrent_scans_leave_one_active_row(db, factory, monkeypatch):
    event = factory.event()
    registration = factory.registration(event)
    real_lookup = checkin_service.get_active_checkin
    raced = []

    def lookup_then_scan_elsewhere(session, registration_id):
        active = real_lookup(session, registration_id)
        if not raced:
            raced.append(True)
            other = SessionLocal()
            try:
                check_in(other, registration_id, "door-2")
            finally:
                other.close()
        return active

    monkeypatch.setattr(checkin_service, "get_active_checkin", lookup_then_scan_elsewhere)

    with pytest.raises(AlreadyCheckedInError) as excinfo:
        check_in(db, registration.id, "door-1")

    assert excinfo.value.checkin.checked_in_by == "door-2"
    db.expire_all()
    assert db.query(models.Checkin).filter(models.Checkin.undo_at.is_(None)).count() == 1
    assert db.get(models.Event, event.id).checkins_count == 1
