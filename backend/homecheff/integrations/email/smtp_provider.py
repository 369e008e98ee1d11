from __future__ import annotations

import smtplib
from email.message import EmailMessage

from homecheff.integrations.email.base import EmailProvider, EmailResult


class SmtpEmailProvider(EmailProvider):
    name = "smtp"

    def __init__(self, *, host: str, port: int, user: str = "", password: str = "", sender: str, reply_to: str = ""):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender
        self.reply_to = reply_to

    def send(self, *, to: str, subject: str, text: str, html: str | None = None, reference: str = "") -> EmailResult:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = to
        if self.reply_to:
            msg["Reply-To"] = self.reply_to
        msg.set_content(text)
        if html:
            msg.add_alternative(html, subtype="html")
        try:
            with smtplib.SMTP(self.host, self.port, timeout=10) as server:
                server.ehlo()
                try:
                    server.starttls()
                except smtplib.SMTPException:
                    pass
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            return EmailResult(ok=False, code="SMTP_SEND_FAILED", message=str(e))
        return EmailResult(ok=True, code="OK", message="sent", raw={"to": to, "reference": reference})
