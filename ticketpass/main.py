# ticketpass/main.py
from dataclasses import dataclass
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from ticketpass.api.admin import router as admin_router
from ticketpass.api.holder import router as holder_router
from ticketpass.api.issuer import router as issuer_router
from ticketpass.api.redemption import router as redemption_router
from ticketpass.core.config import Settings
from ticketpass.core.logging import configure_logging
from ticketpass.core.vault import CredentialVault
from ticketpass.db.models import Base
from ticketpass.db.session import make_engine, make_sessionmaker
from ticketpass.services.issuer import PassIssuer
from ticketpass.services.ledger import RedemptionLedger
from ticketpass.services.pipeline import LogNotifier, Notifier, OrderCompletedPipeline, OrderWriteBack
from ticketpass.wallet.client import WalletClient
from ticketpass.wallet.savelink import SaveLinkSigner


@dataclass
class Services:
    settings: Settings
    engine: AsyncEngine
    sessionmaker: async_sessionmaker
    vault: CredentialVault
    wallet: WalletClient
    signer: SaveLinkSigner
    issuer: PassIssuer
    ledger: RedemptionLedger
    pipeline: OrderCompletedPipeline


def build_services(
    settings: Settings,
    notifier: Notifier | None = None,
    write_back: OrderWriteBack | None = None,
) -> Services:
    """Raíz de composición: cada componente se construye una sola vez aquí."""
    engine = make_engine(settings.db_url)
    sessionmaker = make_sessionmaker(engine)
    vault = CredentialVault(settings.vault_dir, default_issuer_id=settings.issuer_id)
    wallet = WalletClient(settings, vault)
    signer = SaveLinkSigner(settings)
    issuer = PassIssuer(settings, vault, wallet, signer, sessionmaker)
    ledger = RedemptionLedger(wallet, sessionmaker, timeout=settings.backend_timeout)
    pipeline = OrderCompletedPipeline(issuer, notifier or LogNotifier(), write_back)
    return Services(settings, engine, sessionmaker, vault, wallet, signer, issuer, ledger, pipeline)


def create_app(settings: Settings | None = None, services: Services | None = None) -> FastAPI:
    settings = settings or (services.settings if services else Settings())
    configure_logging(settings.log_level, settings.log_json)
    services = services or build_services(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # === STARTUP ===
        async with services.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        yield
        # === SHUTDOWN ===
        await services.engine.dispose()

    app = FastAPI(title="Ticket wallet passes", lifespan=lifespan)
    app.state.services = services

    app.include_router(admin_router, prefix="/admin", tags=["admin"])
    app.include_router(issuer_router, prefix="/issuer", tags=["issuer"])
    app.include_router(redemption_router, prefix="/redemption", tags=["redemption"])
    app.include_router(holder_router, prefix="/holder", tags=["holder"])

    @app.get("/")
    def root():
        return {"ok": True, "credential_configured": services.vault.is_configured()}

    return app
