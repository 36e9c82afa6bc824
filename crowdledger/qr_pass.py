import logging
import os
from io import BytesIO
from typing import Dict

import jwt
import qrcode

from crowdledger.errors import ValidationError

logger = logging.getLogger("crowdledger.qr_pass")

QR_PASS_ALGORITHM = "HS256"
QR_PASS_TYPE = "qr_pass"


def _secret() -> str:
    return os.getenv("QR_JWT_SECRET") or os.getenv("JWT_SECRET_KEY", "crowdledger-dev-secret")


def generate_qr_pass_token(registration_id: int, event_id: int, attendee_id: int) -> str:
    """Signed, stateless pass token.

    No issue time or expiry is embedded, so the same registration always yields
    the same token and a lost pass can be shown again without storing anything.
    """
    payload = {
        "type": QR_PASS_TYPE,
        "registration_id": registration_id,
        "event_id": event_id,
        "attendee_id": attendee_id,
    }
    return jwt.encode(payload, _secret(), algorithm=QR_PASS_ALGORITHM)


def verify_qr_pass_token(token: str) -> Dict[str, int]:
    try:
        payload = jwt.decode(token, _secret(), algorithms=[QR_PASS_ALGORITHM])
    except jwt.InvalidTokenError as e:
        logger.warning(f"QR pass token rejected: {e}")
        raise ValidationError(f"Invalid QR code: {e}")

    if payload.get("type") != QR_PASS_TYPE:
        raise ValidationError("Invalid QR code: not a pass token")
    try:
        return {
            "registration_id": int(payload["registration_id"]),
            "event_id": int(payload["event_id"]),
            "attendee_id": int(payload["attendee_id"]),
        }
    except (KeyError, TypeError, ValueError):
        raise ValidationError("Invalid QR code: malformed payload")


def render_qr_png(data: str, box_size: int = 8) -> bytes:
    qr = qrcode.QRCode(version=None, box_size=box_size, border=2)
    qr.add_data(data)
    qr.make(fit=True)
    qr_img = qr.make_image(fill_color="black", back_color="white")
    buffer = BytesIO()
    qr_img.save(buffer, format="PNG")
    return buffer.getvalue()
