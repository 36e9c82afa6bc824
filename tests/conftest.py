import os
import tempfile
from datetime import datetime
from decimal import Decimal
from types import SimpleNamespace

# Configuration must be in place before crowdledger.database builds the engine.
_db_dir = tempfile.mkdtemp(prefix="crowdledger-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_db_dir, 'test.db')}"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret"
os.environ["QR_JWT_SECRET"] = "test-qr-secret"
os.environ["CLOUDFLARE_WORKER_URL"] = "https://files.test"

import pytest
from fastapi.testclient import TestClient

from crowdledger.main import app
from crowdledger.database import Base, SessionLocal, engine
from crowdledger import models, storage
from crowdledger.auth_utils import create_access_token
from crowdledger.promoter_service import assign_promoter

ADMIN_ID = 1
ORGANIZER_ID = 10
VENUE_ADMIN_ID = 20
DOOR_STAFF_ID = 30
PROMOTER_USER_ID = 40
OUTSIDER_ID = 99


def auth_headers(user_id, *roles):
    token = create_access_token({"sub": str(user_id), "roles": list(roles)}, "user")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(autouse=True)
def reset_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture(autouse=True)
def fake_storage(monkeypatch):
    store = SimpleNamespace(uploads={}, deleted=[])

    def upload(bucket, path, data, mime):
        store.uploads[f"{bucket}/{path}"] = (data, mime)
        return f"https://files.test/{bucket}/{path}"

    def delete(bucket, path):
        store.deleted.append(path)

    monkeypatch.setattr(storage, "upload_to_storage", upload)
    monkeypatch.setattr(storage, "delete_from_storage", delete)
    return store


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def headers():
    return SimpleNamespace(
        admin=auth_headers(ADMIN_ID, "superadmin"),
        organizer=auth_headers(ORGANIZER_ID, "event_organizer"),
        venue_admin=auth_headers(VENUE_ADMIN_ID, "venue_admin"),
        door=auth_headers(DOOR_STAFF_ID, "door_staff"),
        promoter=auth_headers(PROMOTER_USER_ID, "promoter"),
        outsider=auth_headers(OUTSIDER_ID, "promoter"),
    )


class Factory:
    """Builds committed rows for the tables the API has no create endpoints for."""

    def __init__(self, db):
        self.db = db

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        self.db.refresh(obj)
        return obj

    def venue(self, name="Warehouse 9", admin_id=VENUE_ADMIN_ID):
        slug = f"{name.lower().replace(' ', '-')}-{self.db.query(models.Venue).count() + 1}"
        return self._save(models.Venue(name=name, slug=slug, created_by=admin_id))

    def event(
        self,
        slug="launch-night",
        status=models.EventStatus.published,
        venue=None,
        questions=(),
        start_time=datetime(2026, 11, 20, 23, 30),
        timezone="Europe/Amsterdam",
    ):
        venue = venue or self.venue()
        organizer = self._save(models.Organizer(name="Night Owls", created_by=ORGANIZER_ID))
        event = self._save(models.Event(
            slug=slug,
            name=slug.replace("-", " ").title(),
            status=status,
            venue_id=venue.id,
            organizer_id=organizer.id,
            start_time=start_time,
            timezone=timezone,
            currency="EUR",
        ))
        for position, (label, required) in enumerate(questions):
            self.db.add(models.EventQuestion(event_id=event.id, label=label, required=required, position=position))
        self.db.commit()
        self.db.refresh(event)
        return event

    def promoter(self, name="Promo One", user_id=None):
        slug = f"{name.lower().replace(' ', '-')}-{self.db.query(models.Promoter).count() + 1}"
        return self._save(models.Promoter(name=name, slug=slug, user_id=user_id))

    def attendee(self, name="Ana", phone="+31600000001", email=None):
        return self._save(models.Attendee(name=name, phone=phone, email=email))

    def registration(self, event, attendee=None, promoter=None, status=models.RegistrationStatus.active):
        attendee = attendee or self.attendee(phone=f"+3160{self.db.query(models.Attendee).count() + 1:07d}")
        return self._save(models.Registration(
            attendee_id=attendee.id,
            event_id=event.id,
            referral_promoter_id=promoter.id if promoter else None,
            status=status,
        ))

    def assign(self, event, promoter, commission_type, config, table_commission_rate=None):
        return assign_promoter(self.db, event.id, promoter.id, commission_type, config, table_commission_rate)

    def booking(
        self,
        event,
        promoter=None,
        status=models.BookingStatus.confirmed,
        minimum_spend=None,
        actual_spend=None,
        closeout_locked=False,
    ):
        return self._save(models.TableBooking(
            event_id=event.id,
            table_name=f"Table {self.db.query(models.TableBooking).count() + 1}",
            promoter_id=promoter.id if promoter else None,
            status=status,
            minimum_spend=Decimal(minimum_spend) if minimum_spend is not None else None,
            actual_spend=Decimal(actual_spend) if actual_spend is not None else None,
            closeout_locked=closeout_locked,
        ))


@pytest.fixture
def factory(db):
    return Factory(db)
