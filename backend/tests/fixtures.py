from __future__ import annotations

import itertools
import unittest

from homecheff import create_app
from homecheff.extensions import db
from homecheff.integrations.email.mock_provider import MockEmailProvider
from homecheff.integrations.payments.mock_provider import MockPayoutDestination
from homecheff.models import (
    DeliveryOrder,
    DeliveryProfile,
    Order,
    OrderItem,
    PaymentEscrow,
    Product,
    SellerProfile,
    User,
)
from homecheff.utils.jwt_utils import create_access_token

_seq = itertools.count(1)

TEST_CONFIG = {
    "TESTING": True,
    "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
    "PAYMENTS_PROVIDER": "mock",
    "EMAIL_PROVIDER": "mock",
    "ECTAROSHIP_WEBHOOK_SECRET": "",
    "PUBLIC_BASE_URL": "https://homecheff.test",
    "DELIVERY_PAYOUT_TRANSFERS_ENABLED": False,
}


class FulfillmentTestCase(unittest.TestCase):
    """Fresh in-memory database and empty mock providers per test."""

    config_overrides: dict = {}

    def setUp(self):
        self.app = create_app({**TEST_CONFIG, **self.config_overrides})
        self.ctx = self.app.app_context()
        self.ctx.push()
        db.create_all()
        self.client = self.app.test_client()
        MockPayoutDestination.reset()
        MockEmailProvider.reset()

    def tearDown(self):
        db.session.remove()
        db.drop_all()
        self.ctx.pop()

    def make_user(self, *, role: str = "user", name: str = "", connect_account: str | None = None) -> User:
        n = next(_seq)
        u = User(
            name=name or f"User {n}",
            username=f"user{n}",
            email=f"user{n}@homecheff.test",
            role=role,
            stripe_connect_account_id=connect_account,
        )
        u.set_password("Passw0rd!")
        db.session.add(u)
        db.session.commit()
        return u

    def auth(self, user: User) -> dict:
        return {"Authorization": f"Bearer {create_access_token(int(user.id))}"}

    def make_product(self, seller: User, *, title: str = "Lasagne", price_cents: int = 1250, via_profile: bool = True) -> Product:
        if via_profile:
            profile = SellerProfile.query.filter_by(user_id=int(seller.id)).first()
            if profile is None:
                profile = SellerProfile(user_id=int(seller.id), display_name=seller.name)
                db.session.add(profile)
                db.session.flush()
            product = Product(title=title, price_cents=price_cents, seller_profile_id=int(profile.id))
        else:
            product = Product(title=title, price_cents=price_cents, user_id=int(seller.id))
        db.session.add(product)
        db.session.commit()
        return product

    def make_order(self, buyer: User, products, *, paid: bool = True, **fields) -> Order:
        n = next(_seq)
        order = Order(
            order_number=f"HC-T{n:05d}",
            buyer_id=int(buyer.id),
            stripe_session_id=f"cs_test_{n}" if paid else None,
            total_amount_cents=sum(int(p.price_cents) for p in products),
            **fields,
        )
        db.session.add(order)
        db.session.flush()
        for p in products:
            db.session.add(OrderItem(order_id=int(order.id), product_id=int(p.id), price_cents=int(p.price_cents)))
        db.session.commit()
        return order

    def make_escrow(self, order: Order, seller: User, *, amount_cents: int = 8800, trigger: str = "DELIVERED") -> PaymentEscrow:
        escrow = PaymentEscrow(
            order_id=int(order.id),
            seller_id=int(seller.id),
            amount_cents=amount_cents,
            payout_trigger=trigger,
            current_status="held",
        )
        db.session.add(escrow)
        db.session.commit()
        return escrow

    def make_deliverer(self, *, connect_account: str | None = None) -> tuple[User, DeliveryProfile]:
        user = self.make_user(role="delivery", connect_account=connect_account)
        profile = DeliveryProfile(user_id=int(user.id))
        db.session.add(profile)
        db.session.commit()
        return user, profile

    def make_delivery_order(self, order: Order, *, profile: DeliveryProfile | None = None, status: str = "PENDING", fee_cents: int = 500) -> DeliveryOrder:
        row = DeliveryOrder(
            order_id=int(order.id),
            delivery_profile_id=int(profile.id) if profile is not None else None,
            status=status,
            delivery_fee_cents=fee_cents,
        )
        db.session.add(row)
        db.session.commit()
        return row
