from crowdledger import models
from crowdledger.qr_pass import verify_qr_pass_token


def register(client, slug, ref=None, **body):
    params = {"ref": ref} if ref is not None else {}
    return client.post(f"/events/{slug}/register", params=params, json=body)


def test_repeat_registration_keeps_first_attribution(client, db, factory):
    event = factory.event()
    first_promoter = factory.promoter("Promo One")
    second_promoter = factory.promoter("Promo Two")

    first = register(client, event.slug, ref=first_promoter.id, name="Ana", phone="+31600000001")
    assert first.status_code == 200
    assert first.json()["created"] is True

    second = register(client, event.slug, ref=second_promoter.id, name="Ana", phone="+31600000001")
    assert second.status_code == 200
    body = second.json()
    assert body["created"] is False
    assert body["registration"]["id"] == first.json()["registration"]["id"]
    assert body["registration"]["referral_promoter_id"] == first_promoter.id
    assert body["qr_pass_token"] == first.json()["qr_pass_token"]
    assert db.query(models.Registration).count() == 1


def test_registration_returns_pass_and_event_summary(client, factory):
    event = factory.event()
    response = register(client, event.slug, name="Ana", phone="+31600000001", email="ana@example.com")
    body = response.json()

    claims = verify_qr_pass_token(body["qr_pass_token"])
    assert claims == {
        "registration_id": body["registration"]["id"],
        "event_id": event.id,
        "attendee_id": body["attendee"]["id"],
    }
    assert body["event"]["slug"] == event.slug
    assert body["event"]["venue"] == "Warehouse 9"
    assert body["event"]["organizer"] == "Night Owls"
    assert body["registration"]["checked_in"] is False


def test_same_phone_with_new_email_updates_one_attendee(client, db, factory):
    event = factory.event()
    register(client, event.slug, name="Ana", phone="+31600000001")
    register(client, event.slug, name="Ana", phone="+31600000001", email="ana@example.com")

    attendees = db.query(models.Attendee).all()
    assert len(attendees) == 1
    assert attendees[0].phone == "+31600000001"
    assert attendees[0].email == "ana@example.com"


def test_unknown_referral_registers_unattributed(client, factory):
    event = factory.event()
    response = register(client, event.slug, ref=12345, name="Ana", phone="+31600000001")
    assert response.status_code == 200
    assert response.json()["registration"]["referral_promoter_id"] is None


def test_unpublished_event_is_not_found(client, factory):
    event = factory.event(status=models.EventStatus.draft)
    response = register(client, event.slug, name="Ana", phone="+31600000001")
    assert response.status_code == 404


def test_missing_phone_is_rejected(client, db, factory):
    event = factory.event()
    response = register(client, event.slug, name="Ana", email="ana@example.com")
    assert response.status_code == 400
    assert "Phone" in response.json()["detail"]
    assert db.query(models.Attendee).count() == 0


def test_required_question_must_be_answered(client, db, factory):
    event = factory.event(questions=[("Dietary needs", False), ("Age check", True)])
    required = [q for q in event.questions if q.required][0]

    missing = register(client, event.slug, name="Ana", phone="+31600000001", answers={})
    assert missing.status_code == 400
    assert missing.json()["missing_questions"] == ["Age check"]
    assert db.query(models.Registration).count() == 0

    ok = register(
        client, event.slug, name="Ana", phone="+31600000001",
        answers={str(required.id): "yes", "999": "ignored"},
    )
    assert ok.status_code == 200
    answers = db.query(models.EventAnswer).all()
    assert [(a.question_id, a.answer_text) for a in answers] == [(required.id, "yes")]


def test_structured_answers_are_stored_as_json(client, db, factory):
    event = factory.event(questions=[("Genres", False)])
    question = event.questions[0]
    register(client, event.slug, name="Ana", phone="+31600000001", answers={str(question.id): ["house", "techno"]})

    answer = db.query(models.EventAnswer).one()
    assert answer.answer_text is None
    assert answer.answer_json == ["house", "techno"]


def test_registration_queues_outbox_event(client, db, factory):
    event = factory.event()
    register(client, event.slug, name="Ana", phone="+31600000001")
    register(client, event.slug, name="Ana", phone="+31600000001")

    events = db.query(models.OutboxEvent).filter(models.OutboxEvent.event_name == "registration_created").all()
    assert len(events) == 1
    assert events[0].payload["event_id"] == event.id


def test_authenticated_registration_links_user(client, db, factory, headers):
    event = factory.event()
    response = client.post(
        f"/events/{event.slug}/register",
        json={"name": "Pat", "phone": "+31600000009"},
        headers=headers.promoter,
    )
    assert response.json()["attendee"]["user_id"] == 40
