import os
import jwt
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import FrozenSet, Optional
from fastapi import HTTPException, Depends
from fastapi.security import OAuth2PasswordBearer
import logging

from crowdledger import models
from crowdledger.errors import ForbiddenError, NotFoundError

logger = logging.getLogger(__name__)

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "crowdledger-dev-secret")
ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = 30

SUPERADMIN = "superadmin"
EVENT_ORGANIZER = "event_organizer"
VENUE_ADMIN = "venue_admin"
DOOR_STAFF = "door_staff"
PROMOTER = "promoter"

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


@dataclass(frozen=True)
class Caller:
    """Identity resolved from the session token: a user id plus its roles."""
    id: int
    roles: FrozenSet[str] = field(default_factory=frozenset)

    def has_role(self, *roles: str) -> bool:
        return any(role in self.roles for role in roles)

    @property
    def is_superadmin(self) -> bool:
        return SUPERADMIN in self.roles


def create_access_token(data: dict, token_type: str, expires_delta: timedelta = None):
    to_encode = data.copy()
    to_encode.update({"token_type": token_type})
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    logger.debug(f"Created access token for sub={data.get('sub')} with expiration: {expire}")
    return encoded_jwt


def decode_caller(token: str) -> Caller:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    if payload.get("token_type") != "user":
        raise HTTPException(status_code=401, detail="Invalid credentials")
    user_id = payload.get("sub")
    if user_id is None:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    try:
        caller_id = int(user_id)
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return Caller(id=caller_id, roles=frozenset(payload.get("roles") or []))


def get_current_caller(token: str = Depends(oauth2_scheme)) -> Caller:
    return decode_caller(token)


def get_optional_caller(token: Optional[str] = Depends(optional_oauth2_scheme)) -> Optional[Caller]:
    if not token:
        return None
    return decode_caller(token)


def is_event_organizer(caller: Caller, event: models.Event) -> bool:
    organizer = event.organizer
    return (
        caller.has_role(EVENT_ORGANIZER)
        and organizer is not None
        and organizer.created_by == caller.id
    )


def is_venue_admin(caller: Caller, venue: Optional[models.Venue]) -> bool:
    return caller.has_role(VENUE_ADMIN) and venue is not None and venue.created_by == caller.id


def require_event_manager(caller: Caller, event: models.Event):
    """Organizer of the event or platform admin."""
    if caller.is_superadmin or is_event_organizer(caller, event):
        return
    logger.warning(f"Caller {caller.id} is not allowed to manage event {event.id}")
    raise ForbiddenError("Only the event organizer or an admin can do this")


def require_door_access(caller: Caller, event: models.Event):
    if caller.is_superadmin or caller.has_role(DOOR_STAFF):
        return
    if is_venue_admin(caller, event.venue) or is_event_organizer(caller, event):
        return
    logger.warning(f"Caller {caller.id} has no door access to event {event.id}")
    raise ForbiddenError("No access to this event")


def require_venue_admin(caller: Caller, venue: models.Venue):
    if caller.is_superadmin or is_venue_admin(caller, venue):
        return
    raise ForbiddenError("Only the venue admin can do this")


def get_managed_event(db, event_id: int, caller: Caller) -> models.Event:
    """Load the event and check the caller may manage it: 404 before 403."""
    event = db.query(models.Event).filter(models.Event.id == event_id).first()
    if not event:
        raise NotFoundError("Event not found")
    require_event_manager(caller, event)
    return event
