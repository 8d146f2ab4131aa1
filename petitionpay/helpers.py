import secrets
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo


IST = ZoneInfo("Asia/Kolkata")


# ----------------------------
# Helpers
# ----------------------------
def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    # sqlite hands timestamps back naive; we only ever write UTC
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_iso(dt: datetime | None) -> Optional[str]:
    if dt is None:
        return None
    return as_utc(dt).isoformat()


def to_ist_display(dt: datetime) -> str:
    # e.g. "19/10/2026, 03:30:00 PM"
    return as_utc(dt).astimezone(IST).strftime("%d/%m/%Y, %I:%M:%S %p")


def new_payment_id() -> str:
    return secrets.token_hex(5).upper()


def is_digits(value: str) -> bool:
    return value.isascii() and value.isdigit()
