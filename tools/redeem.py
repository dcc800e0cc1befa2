"""Canje desde la taquilla: python tools/redeem.py <ticket> [rol]"""
import asyncio
import sys

from ticketpass.core.config import Settings
from ticketpass.core.errors import RedemptionError
from ticketpass.db.models import Base
from ticketpass.main import build_services


async def main(ticket: str, role: str) -> int:
    services = build_services(Settings())
    if role not in services.settings.redemption_roles:
        print("You do not have permission to redeem passes.")
        return 2
    async with services.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        outcome = await services.ledger.redeem(ticket, actor=role)
    except RedemptionError as e:
        print(e.message)
        return 1
    finally:
        await services.engine.dispose()
    print(f"{outcome.message} ({outcome.ticket_number})")
    return 0


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(64)
    sys.exit(asyncio.run(main(sys.argv[1], sys.argv[2] if len(sys.argv) > 2 else "ticket_validator")))
