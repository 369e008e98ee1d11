from __future__ import annotations

from dataclasses import dataclass


@dataclass
class EmailResult:
    ok: bool
    code: str = ""
    message: str = ""
    raw: dict | None = None


class EmailProvider:
    name = "unknown"

    def send(self, *, to: str, subject: str, text: str, html: str | None = None, reference: str = "") -> EmailResult:
        raise NotImplementedError
