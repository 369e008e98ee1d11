from __future__ import annotations

from homecheff.integrations.common import (
    IntegrationDisabledError,
    IntegrationMisconfiguredError,
    config_value,
)
from homecheff.integrations.payments.base import PayoutDestination
from homecheff.integrations.payments.mock_provider import MockPayoutDestination
from homecheff.integrations.payments.stripe_provider import StripePayoutDestination


def build_payout_destination(config) -> PayoutDestination:
    provider = (config_value(config, "PAYMENTS_PROVIDER", "disabled") or "disabled").strip().lower()

    if provider == "disabled":
        raise IntegrationDisabledError("INTEGRATION_DISABLED:payouts")

    if provider == "mock":
        return MockPayoutDestination()

    if provider != "stripe":
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:payments_provider={provider}")

    secret_key = (config_value(config, "STRIPE_SECRET_KEY", "") or "").strip()
    if not secret_key:
        raise IntegrationMisconfiguredError("INTEGRATION_MISCONFIGURED:missing STRIPE_SECRET_KEY")

    return StripePayoutDestination(secret_key=secret_key)


def payout_health(config) -> dict:
    provider = (config_value(config, "PAYMENTS_PROVIDER", "disabled") or "disabled").strip().lower()
    missing = []
    if provider == "stripe" and not (config_value(config, "STRIPE_SECRET_KEY", "") or "").strip():
        missing.append("STRIPE_SECRET_KEY")
    if provider == "disabled":
        status = "disabled"
    elif provider not in ("mock", "stripe"):
        status = "misconfigured"
    elif missing:
        status = "misconfigured"
    else:
        status = "configured"
    return {"status": status, "provider": provider, "missing": missing}
