import logging

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from ticketpass.api.deps import get_services, require_role
from ticketpass.core.errors import RedemptionError

router = APIRouter()
logger = logging.getLogger(__name__)


class RedeemInput(BaseModel):
    ticket: str


@router.post("/redeem")
async def redeem(body: RedeemInput, request: Request, role: str = Depends(require_role("redemption_roles"))):
    ledger = get_services(request).ledger
    try:
        outcome = await ledger.redeem(body.ticket, actor=role)
    except RedemptionError as e:
        # el detalle del backend solo va al log
        logger.info("Redemption of %r refused: %s (%s)", body.ticket, e.code, e.detail)
        return {"ok": False, "code": e.code, "message": e.message}
    return {
        "ok": True,
        "code": "redeemed",
        "message": outcome.message,
        "object_id": outcome.object_id,
        "ticket_number": outcome.ticket_number,
        "redeemed_at": outcome.redeemed_at.isoformat(),
    }


@router.get("/records")
async def list_records(
    request: Request,
    limit: int = Query(100, ge=1, le=1000),
    role: str = Depends(require_role("redemption_roles")),
):
    rows = await get_services(request).ledger.records(limit)
    return [
        {
            "object_id": r.object_id,
            "ticket_number": r.ticket_number,
            "redeemed_by": r.redeemed_by,
            "redeemed_at": r.redeemed_at.isoformat(),
        }
        for r in rows
    ]
