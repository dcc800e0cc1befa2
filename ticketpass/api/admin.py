import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from ticketpass.api.deps import get_services, require_role
from ticketpass.core.errors import ConfigurationError, InvalidFormat

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/credential")
async def upload_credential(request: Request, role: str = Depends(require_role("admin_roles"))):
    """Recibe el JSON de la service account tal cual (cuerpo crudo) y lo guarda cifrado."""
    services = get_services(request)
    raw = await request.body()
    try:
        credential = services.vault.configure(raw)
    except InvalidFormat as e:
        logger.warning("Rejected credential upload by %s: %s", role, e)
        raise HTTPException(status_code=400, detail=str(e))
    except ConfigurationError as e:
        logger.error("Credential upload failed: %s", e)
        raise HTTPException(status_code=500, detail="credential could not be stored")
    services.wallet.reset_token()
    return {"ok": True, "issuer_email": credential.issuer_email, "issuer_id": credential.issuer_id}


@router.get("/credential")
async def credential_status(request: Request, role: str = Depends(require_role("admin_roles"))):
    services = get_services(request)
    if not services.vault.is_configured():
        return {"configured": False}
    try:
        credential = services.vault.load_credential()
    except ConfigurationError as e:
        logger.error("Stored credential unusable: %s", e)
        return {"configured": True, "usable": False}
    return {
        "configured": True,
        "usable": True,
        "issuer_email": credential.issuer_email,
        "issuer_id": credential.issuer_id,
    }
