# ticketpass/db/models.py
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy import String, Integer, DateTime
from datetime import datetime, timezone


class Base(DeclarativeBase):
    pass


class IssuedPass(Base):
    """Write-back de la emisión: pedido → objeto, e índice ticket → objeto."""

    __tablename__ = "issued_passes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    object_id: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    class_id: Mapped[str] = mapped_column(String(255))
    purchaser_id: Mapped[str] = mapped_column(String(128))
    ticket_number: Mapped[str] = mapped_column(String(128), unique=True, index=True)

    issued_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    # se fija cuando el aviso al comprador sale; nulo = pendiente
    notified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class RedemptionRecord(Base):
    """Solo se inserta; su existencia prueba que el pase ya fue canjeado."""

    __tablename__ = "redemptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    object_id: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    ticket_number: Mapped[str] = mapped_column(String(128), index=True)
    redeemed_by: Mapped[str | None] = mapped_column(String(128), nullable=True)

    redeemed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
