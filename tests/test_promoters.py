from crowdledger import models

TIERS = {"tiers": [{"threshold": 10, "amount": 50}, {"threshold": 20, "amount": 120}]}


def test_organizer_assigns_updates_and_removes_promoter(client, db, factory, headers):
    event = factory.event()
    promoter = factory.promoter()
    url = f"/events/{event.id}/promoters"

    created = client.post(url, json={
        "promoter_id": promoter.id,
        "commission_type": "flat_per_head",
        "commission_config": {"amount_per_head": 5},
    }, headers=headers.organizer)
    assert created.status_code == 201
    assert created.json()["commission_config"] == {"amount_per_head": "5.00"}

    updated = client.put(f"{url}/{promoter.id}", json={
        "commission_type": "tiered_thresholds",
        "commission_config": TIERS,
    }, headers=headers.organizer)
    assert updated.status_code == 200
    assert updated.json()["commission_type"] == "tiered_thresholds"
    assert updated.json()["commission_config"]["tiers"][1] == {"threshold": 20, "amount": "120.00"}

    listed = client.get(url, headers=headers.organizer)
    assert [ep["promoter_id"] for ep in listed.json()] == [promoter.id]

    removed = client.delete(f"{url}/{promoter.id}", headers=headers.organizer)
    assert removed.status_code == 200
    assert db.query(models.EventPromoter).count() == 0


def test_duplicate_assignment_is_a_conflict(client, factory, headers):
    event = factory.event()
    promoter = factory.promoter()
    body = {"promoter_id": promoter.id, "commission_type": "flat_per_head", "commission_config": {"amount_per_head": 5}}

    assert client.post(f"/events/{event.id}/promoters", json=body, headers=headers.organizer).status_code == 201
    assert client.post(f"/events/{event.id}/promoters", json=body, headers=headers.organizer).status_code == 409


def test_invalid_config_is_rejected_on_save(client, db, factory, headers):
    event = factory.event()
    promoter = factory.promoter()
    response = client.post(f"/events/{event.id}/promoters", json={
        "promoter_id": promoter.id,
        "commission_type": "tiered_thresholds",
        "commission_config": {"tiers": [{"threshold": 20, "amount": 120}, {"threshold": 10, "amount": 50}]},
    }, headers=headers.organizer)

    assert response.status_code == 400
    assert response.json()["thresholds"] == [20, 10]
    assert db.query(models.EventPromoter).count() == 0


def test_locked_event_rejects_commission_changes(client, db, factory, headers):
    event = factory.event()
    promoter = factory.promoter()
    factory.assign(event, promoter, "flat_per_head", {"amount_per_head": "5"})
    event.locked_at = models.utcnow()
    db.commit()

    update = client.put(f"/events/{event.id}/promoters/{promoter.id}", json={
        "commission_type": "flat_per_head",
        "commission_config": {"amount_per_head": 50},
    }, headers=headers.organizer)
    assert update.status_code == 409

    removal = client.delete(f"/events/{event.id}/promoters/{promoter.id}", headers=headers.organizer)
    assert removal.status_code == 409

    db.expire_all()
    assert db.query(models.EventPromoter).one().commission_config == {"amount_per_head": "5.00"}


def test_only_the_events_organizer_manages_promoters(client, factory, headers):
    event = factory.event()
    promoter = factory.promoter()
    body = {"promoter_id": promoter.id, "commission_type": "flat_per_head", "commission_config": {"amount_per_head": 5}}

    assert client.post(f"/events/{event.id}/promoters", json=body, headers=headers.door).status_code == 403
    assert client.post(f"/events/{event.id}/promoters", json=body, headers=headers.admin).status_code == 201


def test_unknown_event_is_not_found(client, headers):
    response = client.get("/events/404/promoters", headers=headers.admin)
    assert response.status_code == 404
