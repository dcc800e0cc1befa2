# ticketpass/services/issuer.py
"""Emisión idempotente de pases: clase (una por class_id) y objeto (uno por pedido)."""
from __future__ import annotations

import asyncio
import hashlib
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

from pydantic import BaseModel, Field
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from ticketpass.core.config import Settings
from ticketpass.core.errors import (
    AuthError,
    ConfigurationError,
    InvalidPurchaserData,
    SigningError,
    WalletConflict,
    WalletError,
    WalletNotFound,
    WalletUnavailable,
)
from ticketpass.core.locks import KeyedLock
from ticketpass.core.sanitize import sanitize_email, sanitize_identifier, sanitize_string
from ticketpass.core.vault import CredentialVault, ServiceAccountCredential
from ticketpass.db.models import IssuedPass
from ticketpass.wallet.client import WalletClient
from ticketpass.wallet.models import PassClass, PassObject, PassState, TicketHolder
from ticketpass.wallet.savelink import SaveLinkSigner

logger = logging.getLogger(__name__)


class PurchaserProfile(BaseModel):
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""


class OrderContext(BaseModel):
    order_id: str = Field(min_length=1, max_length=128)
    product_category: str = ""
    billing_first_name: str | None = None
    billing_last_name: str | None = None
    billing_email: str | None = None
    billing_phone: str | None = None
    # metadatos del pedido de los que lee el mapeo de campos
    fields: dict[str, str | int | float] = Field(default_factory=dict)
    profile: PurchaserProfile | None = None


@dataclass
class IssuanceOutcome:
    ISSUED = "issued"
    NOT_APPLICABLE = "not_applicable"

    status: str
    order_id: str
    object_id: str | None = None
    class_id: str | None = None
    ticket_number: str | None = None
    save_link: str | None = None
    reused: bool = False
    reason: str | None = None

    @property
    def issued(self) -> bool:
        return self.status == self.ISSUED

    def as_dict(self) -> dict:
        return asdict(self)


class PassIssuer:
    def __init__(
        self,
        settings: Settings,
        vault: CredentialVault,
        wallet: WalletClient,
        signer: SaveLinkSigner,
        sessionmaker: async_sessionmaker,
    ):
        self.settings = settings
        self.vault = vault
        self.wallet = wallet
        self.signer = signer
        self.sessionmaker = sessionmaker
        self.mapping = settings.field_mapping
        self._eligible = {c.strip().lower() for c in settings.eligible_categories if c.strip()}
        self._locks = KeyedLock()
        self._known_classes: set[str] = set()

    # --- reglas puras ---

    def is_eligible(self, category: str) -> bool:
        return sanitize_string(category).lower() in self._eligible

    def resolve_purchaser(self, order: OrderContext) -> TicketHolder:
        billing = [order.billing_first_name, order.billing_last_name, order.billing_email]
        if all(billing):
            first, last, email, phone = billing + [order.billing_phone]
        else:
            profile = order.profile or PurchaserProfile()
            first = order.billing_first_name or profile.first_name
            last = order.billing_last_name or profile.last_name
            email = order.billing_email or profile.email
            phone = order.billing_phone or profile.phone

        holder = TicketHolder(
            first_name=sanitize_string(first),
            last_name=sanitize_string(last),
            email=sanitize_email(email),
            phone=sanitize_string(phone),
        )
        missing = [k for k in ("first_name", "last_name", "email") if not getattr(holder, k)]
        if missing:
            raise InvalidPurchaserData(f"order {order.order_id}: missing or invalid {', '.join(missing)}")
        return holder

    def _mapped(self, key: str, order: OrderContext) -> str:
        field = getattr(self.mapping, key)
        if not field:
            return ""
        value = order.fields.get(field)
        return "" if value is None else str(value)

    def map_fields(self, order: OrderContext, now: datetime | None = None) -> dict:
        now = now or datetime.now(timezone.utc)
        ticket = sanitize_identifier(self._mapped("ticket_number", order))
        return {
            "event_name": sanitize_string(self._mapped("event_name", order)) or self.settings.default_event_name,
            "venue_name": sanitize_string(self._mapped("venue_name", order)) or self.settings.default_venue_name,
            "event_time": _as_iso(
                self._mapped("event_time", order), now + self.settings.event_time_default, "event_time"
            ),
            "expiration_date": _as_iso(
                self._mapped("expiration_date", order), now + self.settings.expiration_default, "expiration_date"
            ),
            "ticket_number": ticket
            or sanitize_identifier(f"{self.settings.ticket_number_prefix}{order.order_id}"),
        }

    def class_id_for(self, issuer_id: str, category: str) -> str:
        name = sanitize_identifier(self.settings.class_name or category.lower())
        return f"{issuer_id}.{name}"

    @staticmethod
    def object_id_for(class_id: str, purchaser_id: str, order_id: str) -> str:
        # función pura de la clave de idempotencia: mismo pedido → mismo object_id
        suffix = hashlib.sha256(order_id.encode()).hexdigest()[:16]
        return f"{class_id}.{sanitize_identifier(str(purchaser_id))}.{suffix}"

    # --- emisión ---

    async def issue_pass(self, purchaser_id: str, order: OrderContext, timeout: float | None = None) -> IssuanceOutcome:
        if not self.is_eligible(order.product_category):
            logger.info("Order %s skipped: category %r not eligible", order.order_id, order.product_category)
            return IssuanceOutcome(
                status=IssuanceOutcome.NOT_APPLICABLE,
                order_id=order.order_id,
                reason=f"category {order.product_category!r} is not eligible for passes",
            )

        holder = self.resolve_purchaser(order)
        credential = await self._credential(timeout)
        if not credential.issuer_id:
            raise WalletUnavailable("issuer id is not configured")

        mapped = self.map_fields(order)
        class_id = self.class_id_for(credential.issuer_id, order.product_category)
        object_id = self.object_id_for(class_id, purchaser_id, order.order_id)

        async with self._locks.hold(f"order:{order.order_id}"):
            existing = await self.find_by_order(order.order_id)
            if existing is not None:
                logger.info("Order %s already issued as %s", order.order_id, existing.object_id)
                return IssuanceOutcome(
                    status=IssuanceOutcome.ISSUED,
                    order_id=order.order_id,
                    object_id=existing.object_id,
                    class_id=existing.class_id,
                    ticket_number=existing.ticket_number,
                    save_link=self._sign(existing.object_id, credential),
                    reused=True,
                )

            # el número de ticket se reserva hasta que el registro local queda escrito:
            # dos pedidos con el mismo valor mapeado no pueden obtener el mismo número
            async with self._locks.hold(f"ticket:{mapped['ticket_number']}"):
                ticket_number = await self._unique_ticket_number(mapped["ticket_number"], order.order_id)
                pass_object = PassObject(
                    object_id=object_id,
                    class_id=class_id,
                    holder=holder,
                    ticket_number=ticket_number,
                    expiration_time=mapped["expiration_date"],
                    barcode_payload=ticket_number,
                    state=PassState.ACTIVE,
                )
                try:
                    await self._ensure_class(class_id, mapped, timeout)
                    # una vez enviado el insert, la cancelación no debe perder el registro local
                    created = await asyncio.shield(
                        self._insert_and_record(pass_object, order.order_id, str(purchaser_id), timeout)
                    )
                except (WalletError, AuthError, ConfigurationError) as e:
                    logger.error("Issuance failed for order %s: %s", order.order_id, e)
                    raise WalletUnavailable(f"wallet backend unavailable: {e}") from e

        logger.info("Pass %s issued for order %s", object_id, order.order_id)
        return IssuanceOutcome(
            status=IssuanceOutcome.ISSUED,
            order_id=order.order_id,
            object_id=object_id,
            class_id=class_id,
            ticket_number=ticket_number,
            save_link=self._sign(object_id, credential),
            reused=not created,
        )

    async def save_link(self, object_id: str) -> str:
        credential = await self._credential(None)
        return self._sign(object_id, credential)

    async def _credential(self, timeout: float | None) -> ServiceAccountCredential:
        try:
            return await asyncio.wait_for(asyncio.to_thread(self.vault.load_credential), timeout)
        except ConfigurationError as e:
            logger.error("Wallet credential unavailable: %s", e)
            raise WalletUnavailable(f"wallet credential unavailable: {e}") from e
        except asyncio.TimeoutError as e:
            raise WalletUnavailable("timed out loading the wallet credential") from e

    def _sign(self, object_id: str, credential: ServiceAccountCredential) -> str:
        try:
            return self.signer.sign(object_id, credential)
        except SigningError as e:
            raise WalletUnavailable(f"could not sign save link: {e}") from e

    async def _ensure_class(self, class_id: str, mapped: dict, timeout: float | None) -> None:
        if class_id in self._known_classes:
            return
        try:
            await self.wallet.get_class(class_id, timeout)
        except WalletNotFound:
            logger.info("Pass class %s not found; creating it", class_id)
            pass_class = PassClass(
                class_id=class_id,
                event_name=mapped["event_name"],
                venue_name=mapped["venue_name"],
                event_datetime=mapped["event_time"],
                issuer_name=self.settings.issuer_name,
            )
            try:
                await self.wallet.insert_class(pass_class, timeout)
            except WalletConflict:
                logger.info("Pass class %s created concurrently", class_id)
        self._known_classes.add(class_id)

    async def _insert_and_record(
        self, pass_object: PassObject, order_id: str, purchaser_id: str, timeout: float | None
    ) -> bool:
        try:
            await self.wallet.insert_object(pass_object, timeout)
            created = True
        except WalletConflict:
            logger.info("Pass object %s already exists upstream; reusing it", pass_object.object_id)
            await self.wallet.get_object(pass_object.object_id, timeout)
            created = False

        async with self.sessionmaker() as s:
            s.add(
                IssuedPass(
                    order_id=order_id,
                    object_id=pass_object.object_id,
                    class_id=pass_object.class_id,
                    purchaser_id=purchaser_id,
                    ticket_number=pass_object.ticket_number,
                )
            )
            try:
                await s.commit()
            except IntegrityError:
                await s.rollback()
                res = await s.execute(select(IssuedPass).where(IssuedPass.order_id == order_id))
                if res.scalar_one_or_none() is None:
                    # el choque es con otro pedido (ticket u object_id): el pase no queda localizable
                    logger.error(
                        "Pass %s for order %s clashes with another order's record (ticket %s)",
                        pass_object.object_id, order_id, pass_object.ticket_number,
                    )
                    raise WalletUnavailable(
                        f"ticket number {pass_object.ticket_number} is already held by another order"
                    ) from None
                logger.info("Issuance of order %s already recorded", order_id)
        return created

    async def _unique_ticket_number(self, ticket_number: str, order_id: str) -> str:
        async with self.sessionmaker() as s:
            res = await s.execute(select(IssuedPass).where(IssuedPass.ticket_number == ticket_number))
            clash = res.scalar_one_or_none()
        if clash is None or clash.order_id == order_id:
            return ticket_number
        # otro pedido ya usa este número: se desambigua de forma estable con el pedido
        return sanitize_identifier(f"{ticket_number}-{order_id}")

    # --- consultas ---

    async def find_by_order(self, order_id: str) -> IssuedPass | None:
        async with self.sessionmaker() as s:
            res = await s.execute(select(IssuedPass).where(IssuedPass.order_id == order_id))
            return res.scalar_one_or_none()

    async def find_by_object(self, object_id: str) -> IssuedPass | None:
        async with self.sessionmaker() as s:
            res = await s.execute(select(IssuedPass).where(IssuedPass.object_id == object_id))
            return res.scalar_one_or_none()

    async def find_by_ticket(self, ticket_number: str) -> IssuedPass | None:
        async with self.sessionmaker() as s:
            res = await s.execute(select(IssuedPass).where(IssuedPass.ticket_number == ticket_number))
            return res.scalar_one_or_none()

    async def list_passes(self, limit: int = 100) -> list[IssuedPass]:
        async with self.sessionmaker() as s:
            res = await s.execute(select(IssuedPass).order_by(IssuedPass.id.desc()).limit(limit))
            return list(res.scalars().all())

    async def mark_notified(self, order_id: str) -> None:
        async with self.sessionmaker() as s:
            await s.execute(
                update(IssuedPass)
                .where(IssuedPass.order_id == order_id)
                .values(notified_at=datetime.now(timezone.utc))
            )
            await s.commit()


def _as_iso(value: str, default: datetime, key: str) -> str:
    if not value:
        return default.isoformat(timespec="seconds")
    text = value.strip()
    try:
        if text.lstrip("-").isdigit():
            when = datetime.fromtimestamp(int(text), tz=timezone.utc)
        else:
            when = datetime.fromisoformat(text.replace("Z", "+00:00"))
            if when.tzinfo is None:
                when = when.replace(tzinfo=timezone.utc)
    except (ValueError, OverflowError, OSError):
        logger.warning("Unparseable %s value %r; using default", key, value)
        return default.isoformat(timespec="seconds")
    return when.isoformat(timespec="seconds")
