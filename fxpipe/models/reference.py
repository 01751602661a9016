"""Dimension tables shared by every normalizer; append-mostly, never deleted."""

from sqlalchemy import Integer, SmallInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from fxpipe.models.base import Base

# SQLite only autoincrements INTEGER PRIMARY KEY columns
SmallId = SmallInteger().with_variant(Integer, "sqlite")


class Source(Base):
    """Quote provider, e.g. 'VietcomBank' or 'Yahoo Finance'."""

    __tablename__ = "sources"

    id: Mapped[int] = mapped_column(SmallId, primary_key=True)

    name: Mapped[str] = mapped_column(String, nullable=False, unique=True)

    # Reserved for weighted consensus pricing; ingestion never reads it
    priority: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0, server_default="0")


class CurrencyPair(Base):
    """Ordered base/quote pair keyed by its concatenated symbol (e.g. 'USDVND')."""

    __tablename__ = "currency_pairs"

    id: Mapped[int] = mapped_column(SmallId, primary_key=True)

    symbol: Mapped[str] = mapped_column(String, nullable=False, unique=True)

    base_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    quote_currency: Mapped[str] = mapped_column(String(3), nullable=False)
