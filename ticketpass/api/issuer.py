# ticketpass/api/issuer.py
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel

from ticketpass.api.deps import get_services, require_role
from ticketpass.core.errors import InvalidPurchaserData, WalletUnavailable
from ticketpass.services.issuer import OrderContext

router = APIRouter()


class OrderCompletedInput(BaseModel):
    purchaser_id: str
    order: OrderContext


@router.post("/orders/completed")
async def order_completed(body: OrderCompletedInput, request: Request):
    services = get_services(request)
    try:
        outcome = await services.pipeline.on_order_completed(body.purchaser_id, body.order)
    except InvalidPurchaserData as e:
        raise HTTPException(status_code=422, detail=str(e))
    except WalletUnavailable:
        # el detalle queda en el log; al cliente solo un aviso genérico
        raise HTTPException(status_code=502, detail="Pass issuance is temporarily unavailable.")
    return outcome.as_dict()


@router.get("/passes")
async def list_passes(
    request: Request,
    limit: int = Query(100, ge=1, le=1000),
    role: str = Depends(require_role("admin_roles")),
):
    rows = await get_services(request).issuer.list_passes(limit)
    return [
        {
            "object_id": r.object_id,
            "order_id": r.order_id,
            "ticket_number": r.ticket_number,
            "issued_at": r.issued_at.isoformat(),
        }
        for r in rows
    ]


@router.get("/passes/{object_id}")
async def pass_detail(object_id: str, request: Request, role: str = Depends(require_role("admin_roles"))):
    services = get_services(request)
    r = await services.issuer.find_by_object(object_id)
    if not r:
        raise HTTPException(status_code=404, detail="pass not found")
    redeemed = await services.ledger.find_record(object_id)
    return {
        "object_id": r.object_id,
        "class_id": r.class_id,
        "order_id": r.order_id,
        "purchaser_id": r.purchaser_id,
        "ticket_number": r.ticket_number,
        "issued_at": r.issued_at.isoformat(),
        "redeemed_at": redeemed.redeemed_at.isoformat() if redeemed else None,
    }


@router.get("/passes/{object_id}/save-link")
async def fresh_save_link(object_id: str, request: Request, role: str = Depends(require_role("admin_roles"))):
    services = get_services(request)
    if not await services.issuer.find_by_object(object_id):
        raise HTTPException(status_code=404, detail="pass not found")
    try:
        link = await services.issuer.save_link(object_id)
    except WalletUnavailable:
        raise HTTPException(status_code=503, detail="Save links are temporarily unavailable.")
    return {"object_id": object_id, "save_link": link}
