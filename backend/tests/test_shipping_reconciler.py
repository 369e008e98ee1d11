from __future__ import annotations

import hashlib
import hmac
import json
import unittest

from fixtures import FulfillmentTestCase

from homecheff.extensions import db
from homecheff.integrations.payments.mock_provider import MockPayoutDestination
from homecheff.models import Notification, Order, PaymentEscrow, Payout, ShippingLabel, WebhookEvent
from homecheff.services.shipping_reconciler import (
    NormalizedStatus,
    normalize_carrier_status,
    status_for_event,
    verify_carrier_signature,
)


class CarrierStatusMappingTestCase(unittest.TestCase):
    def test_fixed_table_is_case_insensitive(self):
        cases = {
            "created": "label_created",
            "label_created": "label_created",
            "SHIPPED": "shipped",
            "In_Transit": "in_transit",
            "out_for_delivery": "out_for_delivery",
            "Delivered": "delivered",
            "failed": "failed",
            "EXCEPTION": "failed",
        }
        for raw, expected in cases.items():
            self.assertEqual(normalize_carrier_status(raw).value, expected, raw)

    def test_unknown_status_passes_through_verbatim(self):
        status = normalize_carrier_status("customs_hold")
        self.assertEqual(status, NormalizedStatus(None, "customs_hold"))
        self.assertEqual(status.value, "customs_hold")

    def test_missing_status_is_label_created(self):
        self.assertEqual(normalize_carrier_status(None).value, "label_created")
        self.assertEqual(normalize_carrier_status("").value, "label_created")

    def test_event_type_implies_status_when_body_has_none(self):
        self.assertEqual(status_for_event("shipment.delivered", None).value, "delivered")
        self.assertEqual(status_for_event("shipment.shipped", "").value, "shipped")
        self.assertEqual(status_for_event("shipment.delivered", "in_transit").value, "in_transit")
        self.assertIsNone(status_for_event("shipment.status_changed", None))

    def test_signature_verification(self):
        body = b'{"type":"shipment.shipped"}'
        sig = hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()
        self.assertTrue(verify_carrier_signature(body, sig, "s3cret"))
        self.assertFalse(verify_carrier_signature(body, sig, "other"))
        self.assertFalse(verify_carrier_signature(body, None, "s3cret"))


class ShippingWebhookTestCase(FulfillmentTestCase):
    def _seed(self, *, trigger: str = "DELIVERED"):
        seller = self.make_user(role="seller", connect_account="acct_seller_1")
        buyer = self.make_user(role="buyer")
        product = self.make_product(seller)
        order = self.make_order(buyer, [product], shipping_label_id="L1")
        db.session.add(ShippingLabel(order_id=int(order.id), ectaro_ship_label_id="L1"))
        db.session.commit()
        escrow = self.make_escrow(order, seller, amount_cents=8800, trigger=trigger)
        return seller, order, escrow

    def _post(self, payload: dict, headers: dict | None = None):
        return self.client.post(
            "/api/webhooks/ectaroship",
            data=json.dumps(payload),
            content_type="application/json",
            headers=headers or {},
        )

    def test_delivered_webhook_pays_out_once(self):
        seller, order, escrow = self._seed()
        event = {"type": "shipment.delivered", "shipment_id": "L1", "status": "delivered", "delivered_at": "2026-03-01T10:00:00Z"}

        res = self._post(event)
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json(), {"received": True})

        db.session.expire_all()
        order = db.session.get(Order, order.id)
        self.assertEqual(order.status, "DELIVERED")
        self.assertEqual(order.shipping_status, "delivered")
        self.assertEqual(order.delivered_at.isoformat(), "2026-03-01T10:00:00")
        self.assertEqual(db.session.get(PaymentEscrow, escrow.id).current_status, "paid_out")
        payouts = Payout.query.filter_by(transaction_id=int(order.id)).all()
        self.assertEqual(len(payouts), 1)
        self.assertEqual(payouts[0].amount_cents, 8800)
        self.assertEqual(len(MockPayoutDestination.transfers), 1)
        self.assertEqual(MockPayoutDestination.transfers[0].destination, "acct_seller_1")

        res = self._post(event)
        self.assertEqual(res.status_code, 200)
        db.session.expire_all()
        self.assertEqual(db.session.get(Order, order.id).delivered_at.isoformat(), "2026-03-01T10:00:00")
        self.assertEqual(Payout.query.filter_by(transaction_id=int(order.id)).count(), 1)
        self.assertEqual(len(MockPayoutDestination.transfers), 1)

    def test_delivered_event_without_status_pays_out_once(self):
        _seller, order, escrow = self._seed()
        event = {"type": "shipment.delivered", "shipment_id": "L1", "delivered_at": "2026-03-01T10:00:00Z"}

        self.assertEqual(self._post(event).status_code, 200)
        db.session.expire_all()
        order = db.session.get(Order, order.id)
        self.assertEqual(order.status, "DELIVERED")
        self.assertEqual(order.shipping_status, "delivered")
        self.assertEqual(order.delivered_at.isoformat(), "2026-03-01T10:00:00")
        self.assertEqual(db.session.get(PaymentEscrow, escrow.id).current_status, "paid_out")
        self.assertEqual([t.amount_cents for t in MockPayoutDestination.transfers], [8800])
        self.assertEqual([p.amount_cents for p in Payout.query.filter_by(transaction_id=int(order.id))], [8800])
        self.assertEqual(ShippingLabel.query.filter_by(ectaro_ship_label_id="L1").first().status, "shipped")

        self.assertEqual(self._post(event).status_code, 200)
        db.session.expire_all()
        order = db.session.get(Order, order.id)
        self.assertEqual(order.shipping_status, "delivered")
        self.assertEqual(order.delivered_at.isoformat(), "2026-03-01T10:00:00")
        self.assertEqual(len(MockPayoutDestination.transfers), 1)
        self.assertEqual(Payout.query.filter_by(transaction_id=int(order.id)).count(), 1)

    def test_shipped_event_without_status_marks_shipped(self):
        _seller, order, escrow = self._seed(trigger="SHIPPED")
        self.assertEqual(self._post({"type": "shipment.shipped", "shipment_id": "L1"}).status_code, 200)
        db.session.expire_all()
        order = db.session.get(Order, order.id)
        self.assertEqual(order.status, "SHIPPED")
        self.assertEqual(order.shipping_status, "shipped")
        self.assertIsNotNone(order.shipped_at)
        self.assertEqual(db.session.get(PaymentEscrow, escrow.id).current_status, "paid_out")

    def test_status_change_without_status_keeps_current_status(self):
        _seller, order, _escrow = self._seed()
        self._post({"type": "shipment.shipped", "shipment_id": "L1", "status": "shipped"})
        self._post({"type": "shipment.status_changed", "shipment_id": "L1", "tracking_number": "3STLATE"})
        db.session.expire_all()
        order = db.session.get(Order, order.id)
        self.assertEqual(order.shipping_status, "shipped")
        self.assertEqual(order.status, "SHIPPED")
        self.assertEqual(order.shipping_tracking_number, "3STLATE")
        self.assertEqual(ShippingLabel.query.filter_by(ectaro_ship_label_id="L1").first().status, "shipped")

    def test_shipped_transition_is_idempotent_and_fires_shipped_escrow(self):
        _seller, order, escrow = self._seed(trigger="SHIPPED")
        event = {"type": "shipment.shipped", "label_id": "L1", "status": "shipped", "tracking_number": "3STEST1"}

        self.assertEqual(self._post(event).status_code, 200)
        db.session.expire_all()
        first = db.session.get(Order, order.id)
        shipped_at = first.shipped_at
        self.assertIsNotNone(shipped_at)
        self.assertEqual(first.status, "SHIPPED")
        self.assertEqual(first.shipping_tracking_number, "3STEST1")
        self.assertEqual(db.session.get(PaymentEscrow, escrow.id).current_status, "paid_out")
        self.assertEqual(ShippingLabel.query.filter_by(ectaro_ship_label_id="L1").first().status, "shipped")

        self.assertEqual(self._post(event).status_code, 200)
        db.session.expire_all()
        self.assertEqual(db.session.get(Order, order.id).shipped_at, shipped_at)
        self.assertEqual(len(MockPayoutDestination.transfers), 1)

    def test_delivered_event_leaves_shipped_trigger_escrow_alone(self):
        _seller, _order, escrow = self._seed(trigger="SHIPPED")
        self._post({"type": "shipment.delivered", "shipment_id": "L1", "status": "delivered"})
        db.session.expire_all()
        self.assertEqual(db.session.get(PaymentEscrow, escrow.id).current_status, "held")
        self.assertEqual(len(MockPayoutDestination.transfers), 0)

    def test_unknown_order_is_acknowledged(self):
        res = self._post({"type": "shipment.status_changed", "shipment_id": "nope", "status": "in_transit"})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(WebhookEvent.query.filter_by(status="ignored").count(), 1)

    def test_passthrough_status_is_stored(self):
        _seller, order, _escrow = self._seed()
        self._post({"type": "shipment.status_changed", "shipment_id": "L1", "status": "customs_hold"})
        db.session.expire_all()
        order = db.session.get(Order, order.id)
        self.assertEqual(order.shipping_status, "customs_hold")
        self.assertIsNone(order.shipped_at)
        self.assertEqual(ShippingLabel.query.filter_by(ectaro_ship_label_id="L1").first().status, "generated")

    def test_unhandled_event_type_is_acknowledged(self):
        res = self._post({"type": "pickup.scheduled"})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json(), {"received": True})

    def test_invalid_json_returns_500(self):
        res = self.client.post("/api/webhooks/ectaroship", data=b"{not json", content_type="application/json")
        self.assertEqual(res.status_code, 500)
        body = res.get_json()
        self.assertEqual(body["error"], "Webhook processing failed")
        self.assertIn("details", body)

    def test_label_created_upserts_label_and_notifies_seller(self):
        seller = self.make_user(role="seller")
        buyer = self.make_user(role="buyer")
        order = self.make_order(buyer, [self.make_product(seller)], shipping_label_id="LBL9")

        res = self._post({
            "type": "label.created",
            "label_id": "LBL9",
            "tracking_number": "3STRACK9",
            "pdf_url": "https://labels.test/9.pdf",
            "price": 6.95,
        })
        self.assertEqual(res.status_code, 200)
        db.session.expire_all()
        order = db.session.get(Order, order.id)
        self.assertEqual(order.shipping_status, "label_created")
        self.assertEqual(order.shipping_label_cost_cents, 695)
        label = ShippingLabel.query.filter_by(ectaro_ship_label_id="LBL9").first()
        self.assertIsNotNone(label)
        self.assertEqual(label.carrier, "PostNL")
        self.assertEqual(label.price_cents, 695)
        self.assertEqual(label.pdf_url, "https://labels.test/9.pdf")
        self.assertEqual(Notification.query.filter_by(user_id=int(seller.id), kind="SHIPPING_LABEL_READY").count(), 1)


class SignedShippingWebhookTestCase(FulfillmentTestCase):
    config_overrides = {"ECTAROSHIP_WEBHOOK_SECRET": "whsec_test"}

    def test_bad_signature_is_rejected(self):
        body = json.dumps({"type": "shipment.shipped", "shipment_id": "L1"}).encode()
        res = self.client.post(
            "/api/webhooks/ectaroship",
            data=body,
            content_type="application/json",
            headers={"X-Ectaroship-Signature": "deadbeef"},
        )
        self.assertEqual(res.status_code, 401)
        self.assertIn("error", res.get_json())
        self.assertEqual(WebhookEvent.query.filter_by(status="rejected").count(), 1)

    def test_missing_signature_is_rejected(self):
        res = self.client.post("/api/webhooks/ectaroship", data=b"{}", content_type="application/json")
        self.assertEqual(res.status_code, 401)

    def test_valid_signature_is_accepted(self):
        body = json.dumps({"type": "pickup.scheduled"}).encode()
        sig = hmac.new(b"whsec_test", body, hashlib.sha256).hexdigest()
        res = self.client.post(
            "/api/webhooks/ectaroship",
            data=body,
            content_type="application/json",
            headers={"X-Signature": sig},
        )
        self.assertEqual(res.status_code, 200)
        event = WebhookEvent.query.first()
        self.assertTrue(event.signature_verified)


if __name__ == "__main__":
    unittest.main()
