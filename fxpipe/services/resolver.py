"""Get-or-create for the Source and CurrencyPair dimension tables."""

from __future__ import annotations

from typing import Dict, Tuple

from sqlalchemy.orm import Session

from fxpipe.core.db import dialect_insert
from fxpipe.core.logging import get_logger
from fxpipe.models.reference import CurrencyPair, Source

log = get_logger("resolver")


class ReferenceResolver:
    """Resolves dimension ids inside the caller's transaction.

    The conflict clause rewrites the key to itself so ``RETURNING`` yields the
    existing id; concurrent writers converge on the same row. Ids are cached
    for the lifetime of the resolver, i.e. one ingestion run.
    """

    def __init__(self, db: Session):
        self.db = db
        self._sources: Dict[str, int] = {}
        self._pairs: Dict[Tuple[str, str], int] = {}

    def resolve_source(self, name: str) -> int:
        if name in self._sources:
            return self._sources[name]

        stmt = dialect_insert(self.db, Source).values(name=name, priority=0)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Source.name],
            set_={"name": stmt.excluded.name},
        ).returning(Source.id)
        source_id = self.db.execute(stmt).scalar_one()

        self._sources[name] = source_id
        return source_id

    def resolve_pair(self, base_currency: str, quote_currency: str) -> int:
        key = (base_currency.upper(), quote_currency.upper())
        if key in self._pairs:
            return self._pairs[key]

        base, quote = key
        stmt = dialect_insert(self.db, CurrencyPair).values(
            symbol=f"{base}{quote}",
            base_currency=base,
            quote_currency=quote,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[CurrencyPair.symbol],
            set_={"symbol": stmt.excluded.symbol},
        ).returning(CurrencyPair.id)
        pair_id = self.db.execute(stmt).scalar_one()

        log.debug(f"Resolved pair {base}{quote} -> {pair_id}")
        self._pairs[key] = pair_id
        return pair_id
