from pydantic import BaseModel, EmailStr, Field
from typing import Optional, List, Dict, Any
from datetime import date, datetime
from decimal import Decimal

from crowdledger.models import CommissionType, PaymentStatus, RegistrationStatus


class AttendeeContact(BaseModel):
    name: Optional[str] = None
    surname: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    whatsapp: Optional[str] = None
    date_of_birth: Optional[date] = None
    instagram_handle: Optional[str] = None
    tiktok_handle: Optional[str] = None
    avatar_url: Optional[str] = None


class RegisterRequest(AttendeeContact):
    # question id -> answer; strings or structured values
    answers: Optional[Dict[str, Any]] = None


class AttendeeSchema(BaseModel):
    id: int
    user_id: Optional[int] = None
    name: str
    surname: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    whatsapp: Optional[str] = None
    date_of_birth: Optional[date] = None
    instagram_handle: Optional[str] = None
    tiktok_handle: Optional[str] = None
    xp_points: int = 0
    avatar_url: Optional[str] = None

    class Config:
        from_attributes = True


class RegistrationSchema(BaseModel):
    id: int
    attendee_id: int
    event_id: int
    referral_promoter_id: Optional[int] = None
    status: RegistrationStatus
    registered_at: Optional[datetime] = None
    checked_in: bool

    class Config:
        from_attributes = True
        use_enum_values = True


class EventSummary(BaseModel):
    id: int
    name: str
    slug: str
    start_time: Optional[datetime] = None
    venue: Optional[str] = None
    organizer: Optional[str] = None


class RegisterResponse(BaseModel):
    registration: RegistrationSchema
    attendee: AttendeeSchema
    event: EventSummary
    qr_pass_token: str
    created: bool


class CheckinRequest(BaseModel):
    qr_token: Optional[str] = None
    registration_id: Optional[int] = None
    undo: bool = False


class GuestCheckinRequest(BaseModel):
    undo: bool = False


class CheckinSchema(BaseModel):
    id: int
    registration_id: int
    checked_in_at: datetime
    checked_in_by: Optional[str] = None
    undo_at: Optional[datetime] = None
    undone_by: Optional[str] = None

    class Config:
        from_attributes = True


class CheckinResponse(BaseModel):
    registration_id: int
    checked_in: bool
    duplicate: bool = False
    checkin: CheckinSchema
    attendee: Optional[AttendeeSchema] = None
    event_checkins_count: int
    booking_checked_in_count: Optional[int] = None
    banned_at_venue: bool = False


class EventPromoterCreate(BaseModel):
    promoter_id: int
    commission_type: CommissionType
    commission_config: Dict[str, Any] = Field(default_factory=dict)
    table_commission_rate: Optional[Decimal] = None


class EventPromoterUpdate(BaseModel):
    commission_type: CommissionType
    commission_config: Dict[str, Any] = Field(default_factory=dict)
    table_commission_rate: Optional[Decimal] = None


class EventPromoterSchema(BaseModel):
    id: int
    event_id: int
    promoter_id: int
    commission_type: CommissionType
    commission_config: Dict[str, Any]
    table_commission_rate: Optional[Decimal] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
        use_enum_values = True


class CommissionLineSchema(BaseModel):
    promoter_id: int
    promoter_name: Optional[str] = None
    commission_type: CommissionType
    checkins_count: int
    tables_count: int = 0
    table_commission_amount: Decimal = Decimal("0.00")
    commission_amount: Decimal

    class Config:
        from_attributes = True
        use_enum_values = True


class CommissionSummary(BaseModel):
    event_id: int
    currency: Optional[str] = None
    locked: bool
    lines: List[CommissionLineSchema]
    total_checkins: int
    total_tables: int = 0
    total_table_amount: Decimal = Decimal("0.00")
    total_amount: Decimal


class PayoutLineSchema(BaseModel):
    id: int
    payout_run_id: int
    promoter_id: int
    promoter_name: Optional[str] = None
    commission_type: CommissionType
    checkins_count: int
    tables_count: int = 0
    table_commission_amount: Decimal = Decimal("0.00")
    commission_amount: Decimal
    payment_status: PaymentStatus
    payment_proof_path: Optional[str] = None
    payment_marked_by: Optional[int] = None
    payment_marked_at: Optional[datetime] = None
    payment_confirmed_by: Optional[int] = None
    payment_confirmed_at: Optional[datetime] = None

    class Config:
        from_attributes = True
        use_enum_values = True


class PayoutRunSchema(BaseModel):
    id: int
    event_id: int
    generated_by: int
    generated_at: datetime
    statement_pdf_path: Optional[str] = None
    statement_error: Optional[str] = None

    class Config:
        from_attributes = True


class PayoutRunResponse(BaseModel):
    payout_run: PayoutRunSchema
    payout_lines: List[PayoutLineSchema]
    pdf_path: Optional[str] = None
    total_amount: Decimal


class TableCommissionSchema(BaseModel):
    id: int
    booking_id: int
    promoter_id: Optional[int] = None
    spend_amount: Decimal
    spend_source: str
    promoter_commission_rate: Optional[Decimal] = None
    promoter_commission_amount: Decimal
    venue_commission_rate: Decimal
    venue_commission_amount: Decimal
    locked: bool

    class Config:
        from_attributes = True


class TableCommissionSummary(BaseModel):
    event_id: int
    bookings_processed: int
    commissions_created: int
    commissions_updated: int
    bookings_skipped: int
    total_spend: Decimal
    total_promoter_commission: Decimal
    total_venue_commission: Decimal
    commissions: List[TableCommissionSchema]


class GuestFlagCreate(BaseModel):
    attendee_id: int
    reason: Optional[str] = None
    expires_at: Optional[datetime] = None


class GuestFlagSchema(BaseModel):
    id: int
    venue_id: int
    attendee_id: int
    attendee_name: Optional[str] = None
    strike_count: int
    permanent_ban: bool
    reason: Optional[str] = None
    expires_at: Optional[datetime] = None
    flagged_by: Optional[int] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class GuestFlagStats(BaseModel):
    venue_id: int
    flagged_guests: int
    banned_guests: int
    total_strikes: int
    ban_threshold: int
