"""Domain errors raised by the services and mapped to HTTP responses in main.py."""
from typing import Any, Dict, Optional


class DomainError(Exception):
    status_code = 400

    def __init__(self, detail: str, extra: Optional[Dict[str, Any]] = None):
        super().__init__(detail)
        self.detail = detail
        self.extra = extra or {}


class ValidationError(DomainError):
    """Missing contact field, malformed input, unanswered required question."""
    status_code = 400


class ConfigError(ValidationError):
    """Commission config rejected at save time."""


class ForbiddenError(DomainError):
    status_code = 403


class NotFoundError(DomainError):
    status_code = 404


class ConflictError(DomainError):
    """State changed underneath the caller; re-read before retrying."""
    status_code = 409


class AlreadyCheckedInError(ConflictError):
    def __init__(self, checkin):
        super().__init__(
            "Registration is already checked in",
            extra={"checked_in_at": checkin.checked_in_at.isoformat() if checkin.checked_in_at else None},
        )
        self.checkin = checkin
