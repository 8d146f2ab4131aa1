"""Seed the petitioner roster and the admin codes.

    DATABASE_URL=sqlite:///./petitionpay.db \\
    ADMINS="Asha Rao:CODE-1,Vikram Sen:CODE-2" \\
        python -m petitionpay.roster roster.csv

roster.csv columns: id,name,email,department,petitioner_number,petitioner_group
Rows whose id already exists are left alone, so re-running never resets a
confirmed payment.
"""
from __future__ import annotations
import asyncio
import csv
import os
import sys
from typing import Dict, Iterable, List, Tuple

from loguru import logger
from sqlalchemy import select

from .config import Settings
from .infra.sql import make_async_engine
from .model.orm import Admin, Base, Petitioner


def _int_or_none(value: str | None):
    value = (value or "").strip()
    return int(value) if value else None


def read_roster(lines: Iterable[str]) -> List[Dict]:
    rows = []
    for rec in csv.DictReader(lines):
        rows.append({
            "id": rec["id"].strip(),
            "name": rec["name"].strip(),
            "email": rec["email"].strip(),
            "department": (rec.get("department") or "").strip() or None,
            "petitioner_number": _int_or_none(rec.get("petitioner_number")),
            "petitioner_group": _int_or_none(rec.get("petitioner_group")),
        })
    return rows


def parse_admins(spec: str) -> List[Tuple[str, str]]:
    admins = []
    for item in spec.split(","):
        if not item.strip():
            continue
        name, _, code = item.partition(":")
        if not name.strip() or not code.strip():
            raise ValueError(f"bad admin entry {item!r}, want NAME:CODE")
        admins.append((name.strip(), code.strip()))
    return admins


async def seed(session_factory, petitioners: List[Dict],
               admins: List[Tuple[str, str]]) -> Tuple[int, int]:
    added_p = added_a = 0
    async with session_factory() as db:
        async with db.begin():
            known = set((await db.execute(select(Petitioner.id))).scalars())
            for row in petitioners:
                if row["id"] in known:
                    continue
                db.add(Petitioner(**row, payment_confirmed=False))
                known.add(row["id"])
                added_p += 1

            codes = set((await db.execute(select(Admin.admin_code))).scalars())
            for name, code in admins:
                if code in codes:
                    continue
                db.add(Admin(name=name, admin_code=code))
                codes.add(code)
                added_a += 1
    return added_p, added_a


async def main(argv: List[str]) -> int:
    settings = Settings.from_env()
    if not settings.database_url:
        logger.error("NEED DATABASE_URL!")
        return 1

    petitioners = []
    if len(argv) > 1:
        with open(argv[1], newline="", encoding="utf-8") as f:
            petitioners = read_roster(f)
    admins = parse_admins(os.environ.get("ADMINS", ""))

    engine, session_factory, _ = make_async_engine(
        settings.database_url, **settings.engine_options()
    )
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        added_p, added_a = await seed(session_factory, petitioners, admins)
    finally:
        await engine.dispose()
    logger.info(f"seeded {added_p} petitioners and {added_a} admins")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main(sys.argv)))
