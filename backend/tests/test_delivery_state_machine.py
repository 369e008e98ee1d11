from __future__ import annotations

import json
import unittest
from datetime import datetime, timedelta
from unittest import mock

from fixtures import FulfillmentTestCase

from homecheff.extensions import db
from homecheff.integrations.email.mock_provider import MockEmailProvider
from homecheff.integrations.payments.mock_provider import MockPayoutDestination
from homecheff.models import (
    ConversationParticipant,
    DeliveryCountdown,
    DeliveryOrder,
    DeliveryProfile,
    Notification,
    Order,
    PaymentEscrow,
    Payout,
    ProductReview,
)
from homecheff.services.delivery_service import DeliveryStatus, can_transition


class TransitionTableTestCase(unittest.TestCase):
    def test_forward_only(self):
        self.assertTrue(can_transition("ACCEPTED", "PICKED_UP"))
        self.assertTrue(can_transition("ACCEPTED", "DELIVERED"))
        self.assertTrue(can_transition("PICKED_UP", "CANCELLED"))
        self.assertTrue(can_transition("PICKED_UP", "PICKED_UP"))
        self.assertFalse(can_transition("PICKED_UP", "ACCEPTED"))
        self.assertFalse(can_transition("DELIVERED", "CANCELLED"))
        self.assertFalse(can_transition("CANCELLED", "ACCEPTED"))
        self.assertTrue(can_transition(None, "ACCEPTED"))


class DeliveryRoutesTestCase(FulfillmentTestCase):
    def setUp(self):
        super().setUp()
        self.seller = self.make_user(role="seller", connect_account="acct_seller")
        self.buyer = self.make_user(role="buyer")
        self.order = self.make_order(self.buyer, [self.make_product(self.seller)])
        self.rider, self.profile = self.make_deliverer()

    def _accept(self, delivery_id, user=None, **payload):
        return self.client.post(
            f"/api/delivery/orders/{delivery_id}/accept",
            data=json.dumps(payload),
            content_type="application/json",
            headers=self.auth(user or self.rider),
        )

    def _update(self, delivery_id, status, user=None, **extra):
        return self.client.post(
            f"/api/delivery/orders/{delivery_id}/update-status",
            data=json.dumps({"status": status, **extra}),
            content_type="application/json",
            headers=self.auth(user or self.rider),
        )

    def test_requires_login(self):
        delivery = self.make_delivery_order(self.order)
        res = self.client.post(f"/api/delivery/orders/{delivery.id}/update-status", json={"status": "PICKED_UP"})
        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.get_json()["error"], "Niet ingelogd")

    def test_invalid_status_is_400(self):
        delivery = self.make_delivery_order(self.order, profile=self.profile, status="ACCEPTED")
        res = self._update(delivery.id, "TELEPORTED")
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["error"], "Ongeldige status")

    def test_user_without_profile_is_404(self):
        delivery = self.make_delivery_order(self.order, profile=self.profile, status="ACCEPTED")
        res = self._update(delivery.id, "PICKED_UP", user=self.buyer)
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.get_json()["error"], "Geen bezorger profiel gevonden")

    def test_order_assigned_to_someone_else_is_404(self):
        delivery = self.make_delivery_order(self.order, profile=self.profile, status="ACCEPTED")
        other, _profile = self.make_deliverer()
        res = self._update(delivery.id, "PICKED_UP", user=other)
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.get_json()["error"], "Bezorgopdracht niet gevonden")

    def test_regression_is_409(self):
        delivery = self.make_delivery_order(self.order, profile=self.profile, status="PICKED_UP")
        res = self._update(delivery.id, "ACCEPTED")
        self.assertEqual(res.status_code, 409)
        db.session.expire_all()
        self.assertEqual(db.session.get(DeliveryOrder, delivery.id).status, "PICKED_UP")

    def test_accept_assigns_starts_countdown_and_opens_conversation(self):
        delivery = self.make_delivery_order(self.order)
        res = self._accept(delivery.id, estimatedMinutes=25)
        self.assertEqual(res.status_code, 200)
        body = res.get_json()
        self.assertTrue(body["success"])
        self.assertEqual(body["order"]["status"], "ACCEPTED")
        self.assertEqual(body["order"]["delivery_profile_id"], self.profile.id)
        self.assertEqual(body["order"]["order"]["id"], self.order.id)

        countdown = DeliveryCountdown.query.filter_by(delivery_order_id=delivery.id).first()
        self.assertEqual(countdown.status, "running")
        self.assertEqual(countdown.estimated_minutes, 25)
        participants = {p.user_id for p in ConversationParticipant.query.all()}
        self.assertEqual(participants, {self.buyer.id, self.rider.id})

    def test_second_rider_cannot_take_accepted_order(self):
        delivery = self.make_delivery_order(self.order)
        self.assertEqual(self._accept(delivery.id).status_code, 200)
        other, _profile = self.make_deliverer()
        res = self._accept(delivery.id, user=other)
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()["error"], "Deze bestelling is al geaccepteerd door een andere bezorger")

    def test_picked_up_notifies_buyer_and_seller(self):
        delivery = self.make_delivery_order(self.order, profile=self.profile, status="ACCEPTED")
        res = self._update(delivery.id, "PICKED_UP", notes="Onderweg")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["order"]["notes"], "Onderweg")
        self.assertIsNotNone(res.get_json()["order"]["picked_up_at"])
        kinds = {(n.user_id, n.kind) for n in Notification.query.all()}
        self.assertIn((self.buyer.id, "DELIVERY_PICKED_UP"), kinds)
        self.assertIn((self.seller.id, "DELIVERY_PICKED_UP"), kinds)

    def test_delivered_records_time_earnings_and_payout(self):
        delivery = self.make_delivery_order(self.order, fee_cents=500)
        self._accept(delivery.id)
        countdown = DeliveryCountdown.query.filter_by(delivery_order_id=delivery.id).first()
        countdown.started_at = datetime.utcnow() - timedelta(minutes=17, seconds=30)
        db.session.commit()

        res = self._update(delivery.id, "DELIVERED")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["order"]["actual_delivery_time"], 17)

        db.session.expire_all()
        countdown = DeliveryCountdown.query.filter_by(delivery_order_id=delivery.id).first()
        self.assertEqual(countdown.status, "stopped")
        self.assertEqual(countdown.actual_minutes, 17)
        profile = db.session.get(DeliveryProfile, self.profile.id)
        self.assertEqual(profile.total_deliveries, 1)
        self.assertEqual(profile.total_earnings_cents, 440)
        payouts = Payout.query.filter_by(kind="delivery_fee").all()
        self.assertEqual(len(payouts), 1)
        self.assertEqual(payouts[0].amount_cents, 440)

    def test_resending_delivered_changes_nothing(self):
        delivery = self.make_delivery_order(self.order, profile=self.profile, status="ACCEPTED", fee_cents=500)
        self.assertEqual(self._update(delivery.id, "DELIVERED").status_code, 200)
        res = self._update(delivery.id, "DELIVERED", notes="Bij de buren")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["order"]["notes"], "Bij de buren")

        db.session.expire_all()
        profile = db.session.get(DeliveryProfile, self.profile.id)
        self.assertEqual(profile.total_deliveries, 1)
        self.assertEqual(profile.total_earnings_cents, 440)
        self.assertEqual(Payout.query.filter_by(kind="delivery_fee").count(), 1)

    def test_cancel_stops_countdown(self):
        delivery = self.make_delivery_order(self.order)
        self._accept(delivery.id)
        res = self._update(delivery.id, "CANCELLED")
        self.assertEqual(res.status_code, 200)
        db.session.expire_all()
        self.assertEqual(DeliveryCountdown.query.filter_by(delivery_order_id=delivery.id).first().status, "stopped")
        self.assertEqual(self._update(delivery.id, "DELIVERED").status_code, 409)

    def test_order_promoted_only_when_every_delivery_is_done(self):
        first = self.make_delivery_order(self.order, profile=self.profile, status="PICKED_UP")
        second = self.make_delivery_order(self.order, profile=self.profile, status="PICKED_UP")

        self._update(first.id, "DELIVERED")
        db.session.expire_all()
        self.assertNotEqual(db.session.get(Order, self.order.id).status, "DELIVERED")
        self.assertEqual(ProductReview.query.count(), 0)

        self._update(second.id, "DELIVERED")
        db.session.expire_all()
        order = db.session.get(Order, self.order.id)
        self.assertEqual(order.status, "DELIVERED")
        self.assertIsNotNone(order.delivered_at)

        reviews = ProductReview.query.filter_by(buyer_id=self.buyer.id).all()
        self.assertEqual(len(reviews), 1)
        self.assertTrue(reviews[0].review_token)
        self.assertEqual(reviews[0].rating, 0)
        self.assertEqual(len(MockEmailProvider.outbox), 1)
        self.assertIn(reviews[0].review_token, MockEmailProvider.outbox[0]["text"])
        requests = Notification.query.filter_by(user_id=self.buyer.id, kind="REVIEW_REQUEST").all()
        self.assertEqual(len(requests), 1)
        self.assertEqual(
            requests[0].meta_dict()["link"], f"https://homecheff.test/review/{reviews[0].review_token}"
        )

        self._update(second.id, "DELIVERED")
        self.assertEqual(len(MockEmailProvider.outbox), 1)
        self.assertEqual(Notification.query.filter_by(kind="REVIEW_REQUEST").count(), 1)

    def test_completing_last_delivery_releases_delivered_escrow(self):
        escrow = self.make_escrow(self.order, self.seller, amount_cents=1100, trigger="DELIVERED")
        delivery = self.make_delivery_order(self.order, profile=self.profile, status="PICKED_UP")

        self.assertEqual(self._update(delivery.id, "DELIVERED").status_code, 200)
        db.session.expire_all()
        self.assertEqual(db.session.get(Order, self.order.id).status, "DELIVERED")
        self.assertEqual(db.session.get(PaymentEscrow, escrow.id).current_status, "paid_out")
        self.assertEqual(len(MockPayoutDestination.transfers), 1)
        self.assertEqual(MockPayoutDestination.transfers[0].destination, "acct_seller")
        self.assertEqual(MockPayoutDestination.transfers[0].amount_cents, 1100)
        sale = Payout.query.filter_by(kind="product_sale").one()
        self.assertEqual(sale.escrow_id, escrow.id)

        self.assertEqual(self._update(delivery.id, "DELIVERED").status_code, 200)
        self.assertEqual(len(MockPayoutDestination.transfers), 1)
        self.assertEqual(Payout.query.filter_by(kind="product_sale").count(), 1)

    def test_each_delivery_order_gets_its_own_partner_payout(self):
        first = self.make_delivery_order(self.order, profile=self.profile, status="PICKED_UP", fee_cents=500)
        second = self.make_delivery_order(self.order, profile=self.profile, status="PICKED_UP", fee_cents=500)

        self.assertEqual(self._update(first.id, "DELIVERED").status_code, 200)
        self.assertEqual(self._update(second.id, "DELIVERED").status_code, 200)

        db.session.expire_all()
        rows = Payout.query.filter_by(kind="delivery_fee", to_user_id=self.rider.id).all()
        self.assertEqual(len(rows), 2)
        self.assertEqual({r.delivery_order_id for r in rows}, {first.id, second.id})
        self.assertEqual(sum(r.amount_cents for r in rows), 880)
        profile = db.session.get(DeliveryProfile, self.profile.id)
        self.assertEqual(profile.total_deliveries, 2)
        self.assertEqual(profile.total_earnings_cents, 880)

    def test_review_requests_cover_every_item_after_last_delivery(self):
        products = [self.make_product(self.seller, title=t) for t in ("Soep", "Brood", "Taart")]
        order = self.make_order(self.buyer, products)
        first = self.make_delivery_order(order, profile=self.profile, status="PICKED_UP")
        second = self.make_delivery_order(order, profile=self.profile, status="PICKED_UP")

        self._update(first.id, "DELIVERED")
        self.assertEqual(len(MockEmailProvider.outbox), 0)
        self.assertEqual(Notification.query.filter_by(kind="REVIEW_REQUEST").count(), 0)

        self._update(second.id, "DELIVERED")
        self.assertEqual(len(MockEmailProvider.outbox), 3)
        requests = Notification.query.filter_by(user_id=self.buyer.id, kind="REVIEW_REQUEST").all()
        self.assertEqual(len(requests), 3)
        self.assertEqual({n.meta_dict()["productId"] for n in requests}, {p.id for p in products})
        self.assertEqual(ProductReview.query.filter_by(order_id=order.id).count(), 3)

    def test_failed_review_email_does_not_block_other_items(self):
        products = [self.make_product(self.seller, title=t) for t in ("Soep", "[fail] Brood", "Taart")]
        order = self.make_order(self.buyer, products)
        delivery = self.make_delivery_order(order, profile=self.profile, status="PICKED_UP")

        self.assertEqual(self._update(delivery.id, "DELIVERED").status_code, 200)
        subjects = [m["subject"] for m in MockEmailProvider.outbox]
        self.assertEqual(len(subjects), 2)
        self.assertFalse(any("[fail]" in s for s in subjects))
        self.assertEqual(Notification.query.filter_by(user_id=self.buyer.id, kind="REVIEW_REQUEST").count(), 3)

    def test_review_fan_out_survives_email_exception(self):
        products = [self.make_product(self.seller, title=t) for t in ("Soep", "Brood", "Taart")]
        order = self.make_order(self.buyer, products)
        delivery = self.make_delivery_order(order, profile=self.profile, status="PICKED_UP")
        broken = products[0].title

        def send(**kwargs):
            if kwargs["product_title"] == broken:
                raise RuntimeError("smtp down")

        with mock.patch("homecheff.services.review_service.send_review_request_email", side_effect=send) as sender:
            self.assertEqual(self._update(delivery.id, "DELIVERED").status_code, 200)
        self.assertEqual(sender.call_count, 3)
        self.assertEqual(Notification.query.filter_by(user_id=self.buyer.id, kind="REVIEW_REQUEST").count(), 3)

    def test_earnings_survive_concurrent_delivery(self):
        self.profile.total_deliveries = 4
        self.profile.total_earnings_cents = 1000
        db.session.commit()
        delivery = self.make_delivery_order(self.order, profile=self.profile, status="PICKED_UP", fee_cents=500)

        # Another delivery by the same rider lands while this one is mid-transition.
        def other_delivery_lands(*_args, **_kwargs):
            db.session.execute(
                DeliveryProfile.__table__.update()
                .where(DeliveryProfile.__table__.c.id == self.profile.id)
                .values(total_deliveries=5, total_earnings_cents=1440)
            )

        with mock.patch("homecheff.services.countdown_service.stop_countdown", side_effect=other_delivery_lands):
            self.assertEqual(self._update(delivery.id, "DELIVERED").status_code, 200)

        db.session.expire_all()
        profile = db.session.get(DeliveryProfile, self.profile.id)
        self.assertEqual(profile.total_deliveries, 6)
        self.assertEqual(profile.total_earnings_cents, 1880)


class StatusConstantsTestCase(unittest.TestCase):
    def test_updatable_excludes_pending(self):
        self.assertNotIn(DeliveryStatus.PENDING, DeliveryStatus.UPDATABLE)


if __name__ == "__main__":
    unittest.main()
