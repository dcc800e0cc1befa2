from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Header, HTTPException, Request

if TYPE_CHECKING:
    from ticketpass.main import Services


def get_services(request: Request) -> "Services":
    return request.app.state.services


def require_role(setting: str):
    """Dependencia: el rol del actor (ya autenticado aguas arriba) debe estar en ``settings.<setting>``."""

    def _check(request: Request, x_actor_role: str | None = Header(None)) -> str:
        allowed = getattr(get_services(request).settings, setting)
        if not x_actor_role or x_actor_role not in allowed:
            raise HTTPException(status_code=403, detail="You do not have permission to perform this action.")
        return x_actor_role

    return _check
