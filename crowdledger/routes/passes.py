import logging

from fastapi import APIRouter, Response

from crowdledger.qr_pass import render_qr_png, verify_qr_pass_token

logger = logging.getLogger("crowdledger.routes.passes")

router = APIRouter(prefix="/passes", tags=["Passes"])


@router.get("/{token}.png")
def get_pass_image(token: str):
    """Re-display a pass. The token is verified, not looked up."""
    claims = verify_qr_pass_token(token)
    logger.debug(f"Rendering pass for registration {claims['registration_id']}")
    return Response(
        content=render_qr_png(token),
        media_type="image/png",
        headers={"Cache-Control": "private, max-age=86400"},
    )
