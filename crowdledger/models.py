from sqlalchemy import (
    Column, Integer, String, DateTime, Date, ForeignKey, Enum, Boolean, Numeric, JSON,
    UniqueConstraint, Index, text,
)
import enum
import pytz
from sqlalchemy.orm import relationship
from .database import Base
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def event_tzinfo(event) -> pytz.BaseTzInfo:
    """Event's configured timezone; unknown names fall back to UTC."""
    try:
        return pytz.timezone(event.timezone or "UTC")
    except pytz.UnknownTimeZoneError:
        return pytz.utc


def to_event_local(event, dt: datetime | None) -> datetime | None:
    if dt is None:
        return None
    # Naive datetimes from the database are UTC.
    if dt.tzinfo is None:
        dt = pytz.utc.localize(dt)
    return dt.astimezone(event_tzinfo(event))


class EventStatus(enum.Enum):
    draft = "draft"
    published = "published"
    ended = "ended"
    cancelled = "cancelled"


class RegistrationStatus(enum.Enum):
    active = "active"
    cancelled = "cancelled"
    removed = "removed"
    declined = "declined"


# Registrations in these states can never be checked in.
TERMINAL_REGISTRATION_STATUSES = {
    RegistrationStatus.cancelled,
    RegistrationStatus.removed,
    RegistrationStatus.declined,
}


class BookingStatus(enum.Enum):
    pending = "pending"
    confirmed = "confirmed"
    completed = "completed"
    cancelled = "cancelled"


class PartyGuestStatus(enum.Enum):
    invited = "invited"
    joined = "joined"
    removed = "removed"
    declined = "declined"


class CommissionType(enum.Enum):
    flat_per_head = "flat_per_head"
    tiered_thresholds = "tiered_thresholds"


class PaymentStatus(enum.Enum):
    pending = "pending"
    paid = "paid"
    confirmed = "confirmed"


class Venue(Base):
    __tablename__ = "venues"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, index=True)
    created_by = Column(Integer, nullable=True)  # user id of the venue admin
    # Percent of table spend the venue keeps; unset means DEFAULT_VENUE_TABLE_RATE.
    table_commission_rate = Column(Numeric(5, 2), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    events = relationship("Event", back_populates="venue")


class Organizer(Base):
    __tablename__ = "organizers"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    events = relationship("Event", back_populates="organizer")


class Promoter(Base):
    __tablename__ = "promoters"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, index=True, nullable=True)
    email = Column(String(255), nullable=True)
    user_id = Column(Integer, nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow)


class Event(Base):
    __tablename__ = "events"
    id = Column(Integer, primary_key=True, index=True)
    slug = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=False)
    status = Column(Enum(EventStatus, name="event_status"), default=EventStatus.draft, nullable=False)
    venue_id = Column(Integer, ForeignKey("venues.id"), nullable=True)
    organizer_id = Column(Integer, ForeignKey("organizers.id"), nullable=True)
    start_time = Column(DateTime, nullable=True)
    timezone = Column(String(64), default="UTC")
    currency = Column(String(3), default="USD")
    # Closeout: once locked_at is set, commission-affecting writes are rejected.
    locked_at = Column(DateTime, nullable=True)
    tables_closeout_at = Column(DateTime, nullable=True)
    # Live counter for door dashboards; the checkins ledger is the source of truth.
    checkins_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    venue = relationship("Venue", back_populates="events")
    organizer = relationship("Organizer", back_populates="events")
    questions = relationship("EventQuestion", back_populates="event", order_by="EventQuestion.position")
    event_promoters = relationship("EventPromoter", back_populates="event")

    @property
    def is_locked(self):
        return self.locked_at is not None or self.tables_closeout_at is not None


class EventQuestion(Base):
    __tablename__ = "event_questions"
    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    label = Column(String(500), nullable=False)
    required = Column(Boolean, default=False)
    position = Column(Integer, default=0)
    event = relationship("Event", back_populates="questions")


class Attendee(Base):
    __tablename__ = "attendees"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=True, index=True)
    name = Column(String(255), nullable=False)
    surname = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True, index=True)
    email = Column(String(255), nullable=True, index=True)
    whatsapp = Column(String(50), nullable=True)
    date_of_birth = Column(Date, nullable=True)
    instagram_handle = Column(String(100), nullable=True)
    tiktok_handle = Column(String(100), nullable=True)
    xp_points = Column(Integer, default=0, nullable=False)
    avatar_url = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    registrations = relationship("Registration", back_populates="attendee")


class Registration(Base):
    __tablename__ = "registrations"
    __table_args__ = (
        UniqueConstraint("attendee_id", "event_id", name="uq_registrations_attendee_event"),
    )

    id = Column(Integer, primary_key=True, index=True)
    attendee_id = Column(Integer, ForeignKey("attendees.id"), nullable=False)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    # Set once at creation; never reassigned.
    referral_promoter_id = Column(Integer, ForeignKey("promoters.id"), nullable=True, index=True)
    status = Column(
        Enum(RegistrationStatus, name="registration_status"),
        default=RegistrationStatus.active,
        nullable=False,
    )
    registered_at = Column(DateTime, default=utcnow)
    # Cache of "has an active checkin row"; recomputed on every ledger write.
    checked_in = Column(Boolean, default=False, nullable=False)

    attendee = relationship("Attendee", back_populates="registrations")
    event = relationship("Event")
    referral_promoter = relationship("Promoter")
    answers = relationship("EventAnswer", back_populates="registration")
    checkins = relationship("Checkin", back_populates="registration", order_by="Checkin.id")


class EventAnswer(Base):
    __tablename__ = "event_answers"
    id = Column(Integer, primary_key=True, index=True)
    registration_id = Column(Integer, ForeignKey("registrations.id"), nullable=False, index=True)
    question_id = Column(Integer, ForeignKey("event_questions.id"), nullable=False)
    answer_text = Column(String(2000), nullable=True)
    answer_json = Column(JSON, nullable=True)
    registration = relationship("Registration", back_populates="answers")


class Checkin(Base):
    """Append-style door ledger. Undo voids a row in place; it is never deleted."""
    __tablename__ = "checkins"
    __table_args__ = (
        # At most one active (non-undone) row per registration.
        Index(
            "uq_checkins_active_registration",
            "registration_id",
            unique=True,
            postgresql_where=text("undo_at IS NULL"),
            sqlite_where=text("undo_at IS NULL"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    registration_id = Column(Integer, ForeignKey("registrations.id"), nullable=False, index=True)
    checked_in_at = Column(DateTime, default=utcnow, nullable=False)
    checked_in_by = Column(String(255), nullable=True)
    undo_at = Column(DateTime, nullable=True)
    undone_by = Column(String(255), nullable=True)
    registration = relationship("Registration", back_populates="checkins")


class TableBooking(Base):
    __tablename__ = "table_bookings"
    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    table_name = Column(String(255), nullable=True)
    guest_name = Column(String(255), nullable=True)
    guest_email = Column(String(255), nullable=True)
    promoter_id = Column(Integer, ForeignKey("promoters.id"), nullable=True)
    status = Column(Enum(BookingStatus, name="booking_status"), default=BookingStatus.pending, nullable=False)
    minimum_spend = Column(Numeric(12, 2), nullable=True)
    actual_spend = Column(Numeric(12, 2), nullable=True)
    closeout_locked = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    guests = relationship("TablePartyGuest", back_populates="booking")
    commission = relationship("TableBookingCommission", back_populates="booking", uselist=False)


class TableBookingCommission(Base):
    """Per-booking split of table spend between the promoter and the venue."""
    __tablename__ = "table_booking_commissions"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("table_bookings.id"), nullable=False, unique=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    promoter_id = Column(Integer, ForeignKey("promoters.id"), nullable=True, index=True)
    spend_amount = Column(Numeric(12, 2), nullable=False)
    spend_source = Column(String(20), nullable=False)  # "actual" or "minimum"
    promoter_commission_rate = Column(Numeric(5, 2), nullable=True)
    promoter_commission_amount = Column(Numeric(12, 2), nullable=False, default=0)
    venue_commission_rate = Column(Numeric(5, 2), nullable=False)
    venue_commission_amount = Column(Numeric(12, 2), nullable=False, default=0)
    locked = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    booking = relationship("TableBooking", back_populates="commission")


class TablePartyGuest(Base):
    __tablename__ = "table_party_guests"
    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("table_bookings.id"), nullable=False, index=True)
    registration_id = Column(Integer, ForeignKey("registrations.id"), nullable=False)
    guest_name = Column(String(255), nullable=True)
    status = Column(Enum(PartyGuestStatus, name="party_guest_status"), default=PartyGuestStatus.joined, nullable=False)
    booking = relationship("TableBooking", back_populates="guests")
    registration = relationship("Registration")


class EventPromoter(Base):
    __tablename__ = "event_promoters"
    __table_args__ = (
        UniqueConstraint("event_id", "promoter_id", name="uq_event_promoters_event_promoter"),
    )

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    promoter_id = Column(Integer, ForeignKey("promoters.id"), nullable=False)
    commission_type = Column(Enum(CommissionType, name="commission_type"), nullable=False)
    commission_config = Column(JSON, nullable=False, default=dict)
    # Percent of table spend on bookings this promoter brought in.
    table_commission_rate = Column(Numeric(5, 2), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    event = relationship("Event", back_populates="event_promoters")
    promoter = relationship("Promoter")


class PayoutRun(Base):
    """One immutable snapshot per event. Only the statement fields are written after creation."""
    __tablename__ = "payout_runs"
    __table_args__ = (
        UniqueConstraint("event_id", name="uq_payout_runs_event"),
    )

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False)
    generated_by = Column(Integer, nullable=False)
    generated_at = Column(DateTime, default=utcnow, nullable=False)
    statement_pdf_path = Column(String(500), nullable=True)
    statement_error = Column(String(1000), nullable=True)

    event = relationship("Event")
    lines = relationship("PayoutLine", back_populates="payout_run", order_by="PayoutLine.promoter_id")


class PayoutLine(Base):
    __tablename__ = "payout_lines"
    __table_args__ = (
        UniqueConstraint("payout_run_id", "promoter_id", name="uq_payout_lines_run_promoter"),
    )

    id = Column(Integer, primary_key=True, index=True)
    payout_run_id = Column(Integer, ForeignKey("payout_runs.id"), nullable=False, index=True)
    promoter_id = Column(Integer, ForeignKey("promoters.id"), nullable=False)
    commission_type = Column(Enum(CommissionType, name="commission_type"), nullable=False)
    # Snapshot values, frozen at generation time.
    checkins_count = Column(Integer, nullable=False)
    tables_count = Column(Integer, default=0, nullable=False)
    table_commission_amount = Column(Numeric(12, 2), default=0, nullable=False)
    # Check-in commission plus table commission.
    commission_amount = Column(Numeric(12, 2), nullable=False)
    payment_status = Column(Enum(PaymentStatus, name="payment_status"), default=PaymentStatus.pending, nullable=False)
    payment_proof_path = Column(String(500), nullable=True)
    payment_marked_by = Column(Integer, nullable=True)
    payment_marked_at = Column(DateTime, nullable=True)
    payment_confirmed_by = Column(Integer, nullable=True)
    payment_confirmed_at = Column(DateTime, nullable=True)

    payout_run = relationship("PayoutRun", back_populates="lines")
    promoter = relationship("Promoter")


class GuestFlag(Base):
    __tablename__ = "guest_flags"
    __table_args__ = (
        UniqueConstraint("venue_id", "attendee_id", name="uq_guest_flags_venue_attendee"),
    )

    id = Column(Integer, primary_key=True, index=True)
    venue_id = Column(Integer, ForeignKey("venues.id"), nullable=False, index=True)
    attendee_id = Column(Integer, ForeignKey("attendees.id"), nullable=False)
    strike_count = Column(Integer, default=0, nullable=False)
    permanent_ban = Column(Boolean, default=False, nullable=False)
    reason = Column(String(1000), nullable=True)
    expires_at = Column(DateTime, nullable=True)
    flagged_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    attendee = relationship("Attendee")


class OutboxEvent(Base):
    __tablename__ = "outbox_events"
    id = Column(Integer, primary_key=True, index=True)
    event_name = Column(String(100), nullable=False, index=True)
    payload = Column(JSON, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    processed_at = Column(DateTime, nullable=True)
