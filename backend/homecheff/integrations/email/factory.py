from __future__ import annotations

from homecheff.integrations.common import (
    IntegrationDisabledError,
    IntegrationMisconfiguredError,
    config_value,
)
from homecheff.integrations.email.base import EmailProvider
from homecheff.integrations.email.mock_provider import MockEmailProvider
from homecheff.integrations.email.smtp_provider import SmtpEmailProvider


def build_email_provider(config) -> EmailProvider:
    provider = (config_value(config, "EMAIL_PROVIDER", "disabled") or "disabled").strip().lower()
    if provider == "disabled":
        raise IntegrationDisabledError("INTEGRATION_DISABLED:email")
    if provider == "mock":
        return MockEmailProvider()
    if provider != "smtp":
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:email_provider={provider}")

    host = (config_value(config, "SMTP_HOST", "") or "").strip()
    if not host:
        raise IntegrationMisconfiguredError("INTEGRATION_MISCONFIGURED:missing SMTP_HOST")
    try:
        port = int(config_value(config, "SMTP_PORT", 587) or 587)
    except (TypeError, ValueError):
        port = 587
    user = (config_value(config, "SMTP_USER", "") or "").strip()
    return SmtpEmailProvider(
        host=host,
        port=port,
        user=user,
        password=(config_value(config, "SMTP_PASS", "") or "").strip(),
        sender=(config_value(config, "SMTP_FROM", "") or user or "no-reply@homecheff.nl").strip(),
        reply_to=(config_value(config, "SMTP_REPLY_TO", "") or "").strip(),
    )
