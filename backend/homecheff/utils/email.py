from __future__ import annotations

from flask import current_app

from homecheff.integrations.email.factory import build_email_provider


class EmailSendError(RuntimeError):
    pass


def public_base_url() -> str:
    base = (current_app.config.get("PUBLIC_BASE_URL") or "").strip()
    return (base or "https://homecheff.nl").rstrip("/")


def review_url(token: str) -> str:
    return f"{public_base_url()}/review/{token}"


def send_review_request_email(
    *,
    email: str,
    buyer_name: str,
    order_number: str,
    product_title: str,
    review_token: str,
    seller_name: str,
    product_image: str | None = None,
) -> None:
    """Raises on any failure; callers decide whether that matters."""
    if not (email or "").strip():
        raise EmailSendError("missing recipient")
    provider = build_email_provider(current_app.config)
    link = review_url(review_token)
    text = (
        f"Hoi {buyer_name or 'Klant'},\n\n"
        f"Je bestelling {order_number} is bezorgd. Wat vond je van {product_title} van {seller_name}?\n"
        f"Laat hier je review achter: {link}\n\n"
        "Bedankt namens HomeCheff!"
    )
    html = None
    if product_image:
        html = (
            f"<p>Hoi {buyer_name or 'Klant'},</p>"
            f"<p>Je bestelling {order_number} is bezorgd. Wat vond je van <b>{product_title}</b> van {seller_name}?</p>"
            f'<p><img src="{product_image}" alt="" width="240"></p>'
            f'<p><a href="{link}">Schrijf een review</a></p>'
        )
    result = provider.send(
        to=email.strip(),
        subject=f"Hoe was {product_title}? Laat een review achter",
        text=text,
        html=html,
        reference=f"review:{review_token[:12]}",
    )
    if not result.ok:
        raise EmailSendError(f"{result.code}:{result.message}")
