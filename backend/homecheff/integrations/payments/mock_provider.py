from __future__ import annotations

import os
import uuid

from homecheff.integrations.common import IntegrationCallError
from homecheff.integrations.payments.base import PayoutDestination, TransferResult


class MockPayoutDestination(PayoutDestination):
    name = "mock"

    # Shared across instances so tests and sandbox runs can inspect what was sent.
    transfers: list[TransferResult] = []
    _by_idempotency_key: dict[str, TransferResult] = {}

    @classmethod
    def reset(cls) -> None:
        cls.transfers = []
        cls._by_idempotency_key = {}

    def _force_failure(self) -> bool:
        return (os.getenv("MOCK_TRANSFER_FORCE_FAIL") or "").strip() == "1"

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
        if self._force_failure():
            raise IntegrationCallError("mock forced failure", provider=self.name, code="MOCK_TRANSFER_DOWN")
        key = (idempotency_key or "").strip()
        if key and key in self._by_idempotency_key:
            return self._by_idempotency_key[key]
        result = TransferResult(
            id=f"tr_mock_{uuid.uuid4().hex[:16]}",
            amount_cents=int(amount_cents),
            currency=currency,
            destination=destination,
            provider=self.name,
            raw={"transfer_group": transfer_group, "metadata": metadata or {}},
        )
        type(self).transfers.append(result)
        if key:
            type(self)._by_idempotency_key[key] = result
        return result
