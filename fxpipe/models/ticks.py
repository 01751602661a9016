"""Fact table. Only the upsert engine writes here."""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Numeric, SmallInteger
from sqlalchemy.orm import Mapped, mapped_column

from fxpipe.models.base import Base

PRICE = Numeric(18, 8)


class FxTick(Base):
    """One bid/mid/ask/volume observation; at most one per (time, pair, source)."""

    __tablename__ = "fx_ticks"

    time: Mapped[datetime] = mapped_column(DateTime(timezone=True), primary_key=True)

    pair_id: Mapped[int] = mapped_column(SmallInteger, ForeignKey("currency_pairs.id"), primary_key=True)

    source_id: Mapped[int] = mapped_column(SmallInteger, ForeignKey("sources.id"), primary_key=True)

    bid: Mapped[Decimal] = mapped_column(PRICE, nullable=False)
    mid: Mapped[Decimal] = mapped_column(PRICE, nullable=False)
    ask: Mapped[Decimal] = mapped_column(PRICE, nullable=False)

    volume: Mapped[Decimal | None] = mapped_column(PRICE, nullable=True)
