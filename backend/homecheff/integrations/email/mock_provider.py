from __future__ import annotations

import os

from homecheff.integrations.email.base import EmailProvider, EmailResult


class MockEmailProvider(EmailProvider):
    name = "mock"

    outbox: list[dict] = []

    @classmethod
    def reset(cls) -> None:
        cls.outbox = []

    def _force_failure(self, subject: str) -> bool:
        return "[fail]" in (subject or "").lower() or (os.getenv("MOCK_EMAIL_FORCE_FAIL") or "").strip() == "1"

    def send(self, *, to: str, subject: str, text: str, html: str | None = None, reference: str = "") -> EmailResult:
        if self._force_failure(subject):
            return EmailResult(ok=False, code="MOCK_EMAIL_DOWN", message="mock forced failure")
        type(self).outbox.append({"to": to, "subject": subject, "text": text, "reference": reference})
        return EmailResult(ok=True, code="OK", message="mock_sent", raw={"to": to, "reference": reference})
