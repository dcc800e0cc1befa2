# ticketpass/services/pipeline.py
"""Evento OrderCompleted → emisión → aviso al comprador → write-back al origen de pedidos."""
from __future__ import annotations

import html
import logging
from dataclasses import dataclass
from string import Template
from typing import Protocol

from ticketpass.core.errors import IssuanceError
from ticketpass.services.issuer import IssuanceOutcome, OrderContext, PassIssuer

logger = logging.getLogger(__name__)

EMAIL_SUBJECT = "Your Wallet Ticket for Order #$order_number"

EMAIL_TEMPLATE = Template("""<!DOCTYPE html>
<html>
<head><meta charset="UTF-8"><title>Your Wallet Ticket</title></head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
  <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
    <h1>Your Wallet Ticket</h1>
    <p>Hello $first_name,</p>
    <p>Thank you for your order #$order_number! Your ticket for <strong>$event_name</strong> on $event_date is ready.</p>
    <p style="text-align: center;"><a href="$save_link">Add to Wallet</a></p>
    <p>If the button doesn't work, copy and paste this URL into your browser:</p>
    <p><a href="$save_link">$save_link</a></p>
    <p>Enjoy your event!</p>
  </div>
</body>
</html>
""")


@dataclass
class TicketNotice:
    to: str
    subject: str
    body: str
    order_id: str
    object_id: str


class Notifier(Protocol):
    async def send(self, notice: TicketNotice) -> None: ...


class OrderWriteBack(Protocol):
    async def record_pass(self, order_id: str, object_id: str, ticket_number: str) -> None: ...


class LogNotifier:
    """Notifier por defecto: el transporte de email es externo, aquí solo se registra."""

    async def send(self, notice: TicketNotice) -> None:
        logger.info("Ticket notice for order %s (%s) ready for %s", notice.order_id, notice.object_id, notice.to)


def render_notice(order: OrderContext, outcome: IssuanceOutcome, holder_email: str, first_name: str,
                  event_name: str, event_date: str) -> TicketNotice:
    values = {
        "first_name": html.escape(first_name),
        "order_number": html.escape(order.order_id),
        "event_name": html.escape(event_name or "Your Event"),
        "event_date": html.escape(event_date or "TBD"),
        "save_link": html.escape(outcome.save_link or "", quote=True),
    }
    return TicketNotice(
        to=holder_email,
        subject=Template(EMAIL_SUBJECT).substitute(order_number=order.order_id),
        body=EMAIL_TEMPLATE.substitute(values),
        order_id=order.order_id,
        object_id=outcome.object_id or "",
    )


class OrderCompletedPipeline:
    def __init__(self, issuer: PassIssuer, notifier: Notifier, write_back: OrderWriteBack | None = None):
        self.issuer = issuer
        self.notifier = notifier
        self.write_back = write_back

    async def on_order_completed(self, purchaser_id: str, order: OrderContext,
                                 timeout: float | None = None) -> IssuanceOutcome:
        try:
            outcome = await self.issuer.issue_pass(purchaser_id, order, timeout=timeout)
        except IssuanceError as e:
            logger.error("Pass issuance failed for order %s: %s", order.order_id, e)
            raise
        if not outcome.issued:
            return outcome

        if self.write_back is not None:
            await self.write_back.record_pass(order.order_id, outcome.object_id, outcome.ticket_number)

        issued = await self.issuer.find_by_order(order.order_id)
        if issued is not None and issued.notified_at is not None:
            # el aviso ya salió en una entrega anterior del evento
            return outcome

        holder = self.issuer.resolve_purchaser(order)
        mapped = self.issuer.map_fields(order)
        notice = render_notice(order, outcome, holder.email, holder.first_name,
                               mapped["event_name"], mapped["event_time"])
        await self.notifier.send(notice)
        await self.issuer.mark_notified(order.order_id)
        return outcome
