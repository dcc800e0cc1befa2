# ticketpass/wallet/models.py
"""Recursos eventTicketClass / eventTicketObject del backend de wallet."""
from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class PassState(str, Enum):
    ACTIVE = "ACTIVE"
    REDEEMED = "REDEEMED"
    # estados que el backend puede devolver aunque aquí nunca se asignen
    EXPIRED = "EXPIRED"
    INACTIVE = "INACTIVE"


def _localized(value: str) -> dict:
    return {"defaultValue": {"language": "en-US", "value": value}}


def _unlocalized(resource: dict | None) -> str:
    if not resource:
        return ""
    return (resource.get("defaultValue") or {}).get("value", "")


class PassClass(BaseModel):
    class_id: str
    event_name: str
    venue_name: str
    event_datetime: str
    issuer_name: str

    def to_resource(self) -> dict:
        return {
            "id": self.class_id,
            "issuerName": self.issuer_name,
            "reviewStatus": "UNDER_REVIEW",
            "eventName": _localized(self.event_name),
            "venue": {"name": _localized(self.venue_name)},
            "dateTime": {"start": self.event_datetime},
        }

    @classmethod
    def from_resource(cls, res: dict) -> "PassClass":
        return cls(
            class_id=res["id"],
            event_name=_unlocalized(res.get("eventName")),
            venue_name=_unlocalized((res.get("venue") or {}).get("name")),
            event_datetime=(res.get("dateTime") or {}).get("start", ""),
            issuer_name=res.get("issuerName", ""),
        )


class TicketHolder(BaseModel):
    first_name: str
    last_name: str
    email: str
    phone: str = ""


class PassObject(BaseModel):
    object_id: str
    class_id: str
    holder: TicketHolder
    ticket_number: str
    expiration_time: str
    barcode_payload: str
    state: PassState = PassState.ACTIVE

    def to_resource(self) -> dict:
        return {
            "id": self.object_id,
            "classId": self.class_id,
            "state": self.state.value,
            "ticketHolderName": f"{self.holder.first_name} {self.holder.last_name}".strip(),
            "ticketHolder": {
                "firstName": self.holder.first_name,
                "lastName": self.holder.last_name,
                "email": self.holder.email,
                "phone": self.holder.phone,
            },
            "ticketNumber": self.ticket_number,
            "validTimeInterval": {"end": {"date": self.expiration_time}},
            "barcode": {"type": "QR_CODE", "value": self.barcode_payload},
        }

    @classmethod
    def from_resource(cls, res: dict) -> "PassObject":
        holder = res.get("ticketHolder") or {}
        state = res.get("state", PassState.INACTIVE.value)
        try:
            state = PassState(str(state).upper())
        except ValueError:
            state = PassState.INACTIVE
        return cls(
            object_id=res["id"],
            class_id=res.get("classId", ""),
            holder=TicketHolder(
                first_name=holder.get("firstName", ""),
                last_name=holder.get("lastName", ""),
                email=holder.get("email", ""),
                phone=holder.get("phone", ""),
            ),
            ticket_number=res.get("ticketNumber", ""),
            expiration_time=((res.get("validTimeInterval") or {}).get("end") or {}).get("date", ""),
            barcode_payload=(res.get("barcode") or {}).get("value", ""),
            state=state,
        )
