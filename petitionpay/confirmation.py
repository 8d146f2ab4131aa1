from __future__ import annotations
import asyncio
from dataclasses import dataclass
from typing import Any, Dict, NamedTuple, Optional

from loguru import logger

from .auth import Actor
from .errors import ConflictError, StoreError, ValidationError
from .helpers import new_payment_id, utc_now
from .model.petitioners import PetitionerStore


class PaymentDisplay(NamedTuple):
    amount: str
    description: str
    case_number: str


# petitioner_group -> what the receipt and the dashboard show
PAYMENT_DISPLAY = {
    1: PaymentDisplay("₹1950", "for fourth phase collection",
                      "WPA3028/2024"),
    2: PaymentDisplay("₹1950", "for fourth phase collection",
                      "WPA13054/2024"),
    3: PaymentDisplay("₹1050", "for third phase collection",
                      "WPA26400/2024"),
}
UNSPECIFIED = PaymentDisplay("Amount not specified", "for registration",
                             "Case not specified")


def payment_display(group: Optional[int]) -> PaymentDisplay:
    return PAYMENT_DISPLAY.get(group, UNSPECIFIED)


@dataclass(frozen=True)
class Confirmation:
    petitioner: Dict[str, Any]
    display: PaymentDisplay
    confirmed_by: str


def _petitioner_id(raw: Any) -> str:
    if isinstance(raw, bool) or not isinstance(raw, (str, int)):
        raise ValidationError("Petitioner ID is required.")
    pid = str(raw).strip()
    if not pid:
        raise ValidationError("Petitioner ID is required.")
    return pid


class ConfirmationService:
    def __init__(self, store: PetitionerStore, *,
                 timeout: float = 10.0) -> None:
        self.store = store
        self.timeout = timeout

    async def confirm(self, petitioner_id: Any, actor: Actor) -> Confirmation:
        """Mark a petitioner's payment as confirmed by `actor`.

        Exactly one caller can win for a given petitioner; everybody else
        (and anyone naming an unknown id) gets ConflictError. The store is
        not consulted again to tell those two cases apart.
        """
        pid = _petitioner_id(petitioner_id)
        payment_id = new_payment_id()
        confirmed_at = utc_now()

        try:
            row = await asyncio.wait_for(
                self.store.confirm_payment(
                    pid,
                    payment_id=payment_id,
                    confirmed_by=actor.name,
                    confirmed_at=confirmed_at,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error(f"confirm {pid}: store timed out after "
                         f"{self.timeout}s")
            raise StoreError("Error confirming payment in database.") from e

        if row is None:
            logger.info(f"confirm {pid}: already confirmed or not found")
            raise ConflictError(
                "Payment already confirmed or petitioner not found."
            )

        group = row.get("petitioner_group")
        if group not in PAYMENT_DISPLAY:
            logger.warning(
                f"Petitioner {pid} has unhandled group: {group}."
            )
        logger.info(
            f"Payment confirmed for petitioner {pid} by {actor.name}. "
            f"Payment ID: {row['payment_id']}"
        )
        return Confirmation(
            petitioner=row,
            display=payment_display(group),
            confirmed_by=actor.name,
        )
