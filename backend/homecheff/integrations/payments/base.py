from __future__ import annotations

from dataclasses import dataclass


@dataclass
class TransferResult:
    id: str
    amount_cents: int
    currency: str
    destination: str
    provider: str
    raw: dict | None = None


class PayoutDestination:
    """Moves money from the platform balance to a payee's connected account."""

    name = "unknown"

    def create_transfer(
        self,
        *,
        amount_cents: int,
        currency: str,
        destination: str,
        transfer_group: str,
        metadata: dict | None = None,
        idempotency_key: str | None = None,
    ) -> TransferResult:
        raise NotImplementedError
