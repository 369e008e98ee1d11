from __future__ import annotations

import requests

from homecheff.integrations.common import IntegrationCallError
from homecheff.integrations.payments.base import PayoutDestination, TransferResult

STRIPE_API_BASE = "https://api.stripe.com/v1"


class StripePayoutDestination(PayoutDestination):
    name = "stripe"

    def __init__(self, secret_key: str, *, timeout: int = 25):
        self.secret_key = secret_key
        self.timeout = timeout

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
        form = {
            "amount": str(int(amount_cents)),
            "currency": (currency or "eur").lower(),
            "destination": destination,
            "transfer_group": transfer_group,
        }
        for key, value in (metadata or {}).items():
            form[f"metadata[{key}]"] = "" if value is None else str(value)
        headers = {}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        try:
            r = requests.post(
                f"{STRIPE_API_BASE}/transfers",
                auth=(self.secret_key, ""),
                data=form,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise IntegrationCallError(f"STRIPE_TRANSFER_UNREACHABLE:{e}", provider=self.name) from e
        j = r.json() if r.content else {}
        if r.status_code < 200 or r.status_code >= 300:
            err = (j.get("error") or {}) if isinstance(j, dict) else {}
            msg = (err.get("message") or f"HTTP {r.status_code}").strip()
            raise IntegrationCallError(
                f"STRIPE_TRANSFER_FAILED:{msg}", provider=self.name, code=str(err.get("code") or "")
            )
        return TransferResult(
            id=str(j.get("id") or ""),
            amount_cents=int(j.get("amount") or amount_cents),
            currency=str(j.get("currency") or currency),
            destination=str(j.get("destination") or destination),
            provider=self.name,
            raw=j if isinstance(j, dict) else {"payload": j},
        )
