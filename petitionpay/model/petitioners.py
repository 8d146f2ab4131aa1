from __future__ import annotations
import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from loguru import logger
from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import StoreError
from ..helpers import as_utc, is_digits
from ..infra.sql import Gated
from .orm import Admin, Petitioner


petitioners = Petitioner.__table__
admins = Admin.__table__

# petitioner_number is a 32-bit INTEGER on Postgres
SERIAL_NUMBER_MAX = 2**31 - 1


def _record(row) -> Dict[str, Any]:
    rec = dict(row)
    if rec.get("confirmed_at") is not None:
        rec["confirmed_at"] = as_utc(rec["confirmed_at"])
    return rec


def _serial_number(q: str) -> Optional[int]:
    if not is_digits(q):
        return None
    n = int(q)
    return n if n <= SERIAL_NUMBER_MAX else None


@asynccontextmanager
async def _store_errors(op: str):
    try:
        yield
    except SQLAlchemyError as e:
        logger.exception(f"petitioner store: {op} failed")
        raise StoreError(f"Error during {op} in database.") from e


class PetitionerStore:
    """Per-request view of the petitioners/admins tables.

    Every call holds a gate slot and runs in its own transaction, bounded
    by ``timeout`` seconds; running out of time is a StoreError.
    """

    def __init__(self, *, db: AsyncSession, gated: Gated,
                 timeout: float = 10.0) -> None:
        self.db = db
        self.gated = gated
        self.timeout = timeout

    async def _fetch(self, op: str, stmt):
        async def run():
            async with self.gated():
                async with self.db.begin():
                    return (await self.db.execute(stmt)).mappings().all()

        async with _store_errors(op):
            try:
                return await asyncio.wait_for(run(), timeout=self.timeout)
            except asyncio.TimeoutError as e:
                logger.error(f"petitioner store: {op} timed out after "
                             f"{self.timeout}s")
                raise StoreError(f"Error during {op} in database.") from e

    async def confirm_payment(
        self, petitioner_id: str, *, payment_id: str, confirmed_by: str,
        confirmed_at: datetime,
    ) -> Optional[Dict[str, Any]]:
        """Flip payment_confirmed false -> true and stamp the receipt fields.

        The predicate on payment_confirmed makes this a compare-and-swap:
        of any number of concurrent callers at most one gets a row back.
        Returns None when nothing matched (unknown id or already confirmed).
        """
        stmt = (
            update(petitioners)
            .where(petitioners.c.id == petitioner_id)
            .where(petitioners.c.payment_confirmed.is_(False))
            .values(
                payment_confirmed=True,
                payment_id=payment_id,
                confirmed_by=confirmed_by,
                confirmed_at=confirmed_at,
            )
            .returning(*petitioners.c)
        )
        rows = await self._fetch("payment confirmation", stmt)
        return _record(rows[0]) if rows else None

    async def search(self, q: str) -> List[Dict[str, Any]]:
        conds = [petitioners.c.name.icontains(q, autoescape=True)]
        serial = _serial_number(q)
        if serial is not None:
            conds.append(petitioners.c.petitioner_number == serial)
        stmt = (
            select(petitioners)
            .where(or_(*conds))
            .order_by(petitioners.c.name.asc())
        )
        return [_record(r) for r in await self._fetch("search", stmt)]

    async def get_admin(self, admin_code: str) -> Optional[Dict[str, Any]]:
        stmt = (
            select(admins.c.name, admins.c.admin_code)
            .where(admins.c.admin_code == admin_code)
        )
        rows = await self._fetch("login", stmt)
        return dict(rows[0]) if rows else None
