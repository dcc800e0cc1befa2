from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse
from io import BytesIO
import qrcode

from ticketpass.api.deps import get_services

router = APIRouter()


@router.get("/qr/{ticket_number}")
async def qr_for_ticket(ticket_number: str, request: Request):
    """PNG con el mismo payload que lleva el código de barras del pase."""
    issued = await get_services(request).issuer.find_by_ticket(ticket_number)
    if not issued:
        raise HTTPException(status_code=404, detail="Pass not found")
    img = qrcode.make(issued.ticket_number)
    buf = BytesIO(); img.save(buf, format="PNG"); buf.seek(0)
    return StreamingResponse(buf, media_type="image/png")
