# ticketpass/services/ledger.py
"""Libro de canjes: como mucho un canje por pase (ACTIVE → REDEEMED, terminal).

Orden de cada canje, protegido por un lock por object_id:
  1. resolver ticket → object_id
  2. registro local existente → AlreadyRedeemed
  3. estado remoto distinto de ACTIVE → NotActive
  4. patch remoto a REDEEMED
  5. solo con el patch confirmado, insertar el registro local

Un patch fallido nunca deja registro local. El índice único sobre object_id
cubre además a otros procesos que compartan la base de datos.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from ticketpass.core.errors import (
    AlreadyRedeemed,
    AuthError,
    ConfigurationError,
    NotActive,
    RedemptionTimeout,
    RedemptionUnavailable,
    TicketNotFound,
    WalletError,
    WalletNotFound,
    WalletTimeout,
)
from ticketpass.core.locks import KeyedLock
from ticketpass.core.sanitize import sanitize_identifier
from ticketpass.db.models import IssuedPass, RedemptionRecord
from ticketpass.wallet.client import WalletClient
from ticketpass.wallet.models import PassState

logger = logging.getLogger(__name__)


@dataclass
class RedemptionOutcome:
    object_id: str
    ticket_number: str
    redeemed_at: datetime
    message: str = "Pass redeemed successfully."


class RedemptionLedger:
    def __init__(self, wallet: WalletClient, sessionmaker: async_sessionmaker, timeout: float | None = None):
        self.wallet = wallet
        self.sessionmaker = sessionmaker
        self.timeout = timeout
        self._locks = KeyedLock()

    async def resolve(self, ticket_identifier: str) -> tuple[str, str]:
        """Devuelve (object_id, ticket_number) para un número de ticket o un object_id escaneado."""
        # misma normalización con la que se guardan los números de ticket
        ident = sanitize_identifier(ticket_identifier)
        if not ident:
            raise TicketNotFound("empty ticket identifier")
        async with self.sessionmaker() as s:
            res = await s.execute(
                select(IssuedPass).where(
                    or_(IssuedPass.ticket_number == ident, IssuedPass.object_id == ident)
                )
            )
            issued = res.scalars().first()
            if issued is not None:
                return issued.object_id, issued.ticket_number
            res = await s.execute(
                select(RedemptionRecord).where(
                    or_(RedemptionRecord.ticket_number == ident, RedemptionRecord.object_id == ident)
                )
            )
            record = res.scalars().first()
            if record is not None:
                return record.object_id, record.ticket_number
        raise TicketNotFound(f"no pass for ticket {ident!r}")

    async def redeem(self, ticket_identifier: str, actor: str | None = None, timeout: float | None = None) -> RedemptionOutcome:
        timeout = self.timeout if timeout is None else timeout
        object_id, ticket_number = await self.resolve(ticket_identifier)

        async with self._locks.hold(object_id):
            if await self.find_record(object_id) is not None:
                logger.info("Redemption refused for %s: already redeemed", object_id)
                raise AlreadyRedeemed(object_id)

            try:
                current = await self._bounded(self.wallet.get_object(object_id, timeout), timeout)
                if current.state != PassState.ACTIVE:
                    logger.info("Redemption refused for %s: state is %s", object_id, current.state.value)
                    raise NotActive(f"state={current.state.value}")
                await self._bounded(self.wallet.patch_object_state(object_id, PassState.REDEEMED, timeout), timeout)
            except WalletNotFound:
                logger.warning("Redemption refused for %s: pass not found upstream", object_id)
                raise NotActive("pass not found upstream") from None
            except (WalletTimeout, asyncio.TimeoutError) as e:
                logger.error("Redemption of %s timed out: %s", object_id, e)
                raise RedemptionTimeout(str(e)) from e
            except (WalletError, AuthError, ConfigurationError) as e:
                logger.error("Redemption of %s failed against wallet backend: %s", object_id, e)
                raise RedemptionUnavailable(str(e)) from e

            record = RedemptionRecord(object_id=object_id, ticket_number=ticket_number, redeemed_by=actor)
            async with self.sessionmaker() as s:
                s.add(record)
                try:
                    await s.commit()
                except IntegrityError:
                    await s.rollback()
                    logger.warning("Redemption of %s recorded concurrently by another process", object_id)
                    raise AlreadyRedeemed(object_id) from None

        logger.info("Pass %s (ticket %s) redeemed by %s", object_id, ticket_number, actor or "unknown")
        return RedemptionOutcome(object_id=object_id, ticket_number=ticket_number, redeemed_at=record.redeemed_at)

    async def find_record(self, object_id: str) -> RedemptionRecord | None:
        async with self.sessionmaker() as s:
            res = await s.execute(select(RedemptionRecord).where(RedemptionRecord.object_id == object_id))
            return res.scalar_one_or_none()

    async def records(self, limit: int = 100) -> list[RedemptionRecord]:
        async with self.sessionmaker() as s:
            res = await s.execute(select(RedemptionRecord).order_by(RedemptionRecord.id.desc()).limit(limit))
            return list(res.scalars().all())

    @staticmethod
    async def _bounded(coro, timeout: float | None):
        return await asyncio.wait_for(coro, timeout)
