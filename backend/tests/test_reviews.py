from __future__ import annotations

import unittest
from datetime import datetime, timedelta

from fixtures import FulfillmentTestCase

from homecheff.extensions import db
from homecheff.models import Notification, ProductReview, ReviewImage
from homecheff.services.errors import ValidationError
from homecheff.services.review_service import (
    MAX_URL_IMAGE_BYTES,
    filter_review_images,
    issue_review_tokens,
)


class ImageFilterTestCase(FulfillmentTestCase):
    def test_drops_empty_oversized_and_non_string_entries(self):
        small = "https://cdn.homecheff.test/a.jpg"
        big_url = "https://cdn.homecheff.test/" + "x" * MAX_URL_IMAGE_BYTES
        data_image = "data:image/png;base64," + "A" * (MAX_URL_IMAGE_BYTES + 10)
        kept = filter_review_images([small, "", "   ", None, 42, big_url, data_image])
        self.assertEqual(kept, [small, data_image])

    def test_rejects_non_list(self):
        with self.assertRaises(ValidationError):
            filter_review_images("https://cdn.homecheff.test/a.jpg")
        self.assertEqual(filter_review_images(None), [])


class TokenReviewTestCase(FulfillmentTestCase):
    def setUp(self):
        super().setUp()
        self.seller = self.make_user(role="seller", name="Chef Anna")
        self.buyer = self.make_user(role="buyer", name="Bram")
        self.product = self.make_product(self.seller, title="Stamppot")
        self.order = self.make_order(self.buyer, [self.product])
        self.review = issue_review_tokens(self.order)[0]
        self.token = self.review.review_token

    def _submit(self, token=None, **payload):
        body = {"token": token or self.token, "rating": 5, "comment": "Heerlijk!", **payload}
        return self.client.post("/api/reviews/create", json=body)

    def test_placeholder_is_minted_once_per_item(self):
        self.assertEqual(self.review.rating, 0)
        self.assertEqual(len(self.token), 43)
        self.assertEqual(issue_review_tokens(self.order), [])
        self.assertEqual(ProductReview.query.count(), 1)

    def test_lookup_by_token(self):
        res = self.client.get(f"/api/reviews/token/{self.token}")
        self.assertEqual(res.status_code, 200)
        body = res.get_json()
        self.assertEqual(body["product"]["id"], self.product.id)
        self.assertEqual(body["order_number"], self.order.order_number)
        self.assertEqual(body["seller_name"], "Chef Anna")

    def test_unknown_token_is_404(self):
        res = self.client.get("/api/reviews/token/nope")
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.get_json()["error"], "Review niet gevonden")

    def test_expired_token_is_410(self):
        self.review.review_token_expires = datetime.utcnow() - timedelta(minutes=1)
        db.session.commit()
        self.assertEqual(self.client.get(f"/api/reviews/token/{self.token}").status_code, 410)
        self.assertEqual(self._submit().status_code, 410)

    def test_token_is_single_use(self):
        res = self._submit(title="Top", images=["https://cdn.homecheff.test/p.jpg"])
        self.assertEqual(res.status_code, 201)
        body = res.get_json()
        self.assertTrue(body["success"])
        self.assertEqual(body["review"]["rating"], 5)
        self.assertEqual(body["review"]["title"], "Top")
        self.assertTrue(body["review"]["is_verified"])
        self.assertEqual([i["url"] for i in body["review"]["images"]], ["https://cdn.homecheff.test/p.jpg"])

        db.session.expire_all()
        review = db.session.get(ProductReview, self.review.id)
        self.assertIsNone(review.review_token)
        self.assertEqual(review.consumed_review_token, self.token)
        self.assertIsNotNone(review.review_submitted_at)
        self.assertEqual(
            Notification.query.filter_by(user_id=self.seller.id, kind="REVIEW_RECEIVED").count(), 1
        )

        again = self._submit(rating=1)
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.get_json()["error"], "Deze review is al ingediend")
        self.assertEqual(self.client.get(f"/api/reviews/token/{self.token}").status_code, 409)
        db.session.expire_all()
        self.assertEqual(db.session.get(ProductReview, self.review.id).rating, 5)

    def test_validation(self):
        self.assertEqual(self._submit(rating=0).get_json()["error"], "Invalid rating")
        self.assertEqual(self._submit(rating=6).status_code, 400)
        self.assertEqual(self._submit(rating="abc").status_code, 400)
        self.assertEqual(self._submit(comment="   ").get_json()["error"], "Comment is required")
        self.assertEqual(self._submit(images="nope").get_json()["error"], "Images must be an array")
        db.session.expire_all()
        self.assertEqual(db.session.get(ProductReview, self.review.id).review_token, self.token)

    def test_token_accepted_under_either_key(self):
        res = self.client.post(
            "/api/reviews/create", json={"reviewToken": self.token, "rating": 4, "comment": "Prima"}
        )
        self.assertEqual(res.status_code, 201)


class ProductReviewRouteTestCase(FulfillmentTestCase):
    def setUp(self):
        super().setUp()
        self.seller = self.make_user(role="seller")
        self.buyer = self.make_user(role="buyer")
        self.product = self.make_product(self.seller)

    def _post(self, user=None, **payload):
        body = {"rating": 4, "comment": "Lekker", **payload}
        headers = self.auth(user) if user is not None else {}
        return self.client.post(f"/api/products/{self.product.id}/reviews", json=body, headers=headers)

    def test_requires_login(self):
        res = self._post()
        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.get_json()["error"], "Not authenticated")

    def test_requires_paid_purchase(self):
        self.make_order(self.buyer, [self.product], paid=False)
        res = self._post(self.buyer)
        self.assertEqual(res.status_code, 403)
        self.assertEqual(res.get_json()["error"], "You must purchase this product before you can review it")

    def test_unknown_product_is_404(self):
        self.make_order(self.buyer, [self.product])
        res = self.client.post(
            "/api/products/99999/reviews", json={"rating": 4, "comment": "x"}, headers=self.auth(self.buyer)
        )
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.get_json()["error"], "Product not found")

    def test_creates_verified_review_then_refuses_second(self):
        self.make_order(self.buyer, [self.product])
        res = self._post(self.buyer, images=["https://cdn.homecheff.test/r.jpg"])
        self.assertEqual(res.status_code, 201)
        self.assertTrue(res.get_json()["review"]["is_verified"])
        self.assertEqual(ReviewImage.query.count(), 1)

        again = self._post(self.buyer)
        self.assertEqual(again.status_code, 400)
        self.assertEqual(again.get_json()["error"], "You have already reviewed this product")

    def test_completes_placeholder_and_burns_its_token(self):
        order = self.make_order(self.buyer, [self.product])
        placeholder = issue_review_tokens(order)[0]
        token = placeholder.review_token

        res = self._post(self.buyer, rating=3)
        self.assertEqual(res.status_code, 201)
        self.assertEqual(res.get_json()["review"]["id"], placeholder.id)
        self.assertEqual(ProductReview.query.count(), 1)

        db.session.expire_all()
        review = db.session.get(ProductReview, placeholder.id)
        self.assertEqual(review.rating, 3)
        self.assertIsNone(review.review_token)
        self.assertEqual(review.consumed_review_token, token)
        self.assertEqual(
            self.client.post("/api/reviews/create", json={"token": token, "rating": 5, "comment": "x"}).status_code,
            409,
        )

    def test_listing_sorts_filters_and_hides_placeholders(self):
        ratings = [5, 2, 4]
        for rating in ratings:
            buyer = self.make_user(role="buyer")
            self.make_order(buyer, [self.product])
            self.assertEqual(self._post(buyer, rating=rating).status_code, 201)
        pending_buyer = self.make_user(role="buyer")
        issue_review_tokens(self.make_order(pending_buyer, [self.product]))

        url = f"/api/products/{self.product.id}/reviews"
        res = self.client.get(url)
        self.assertEqual(res.status_code, 200)
        self.assertEqual(len(res.get_json()["reviews"]), 3)

        highest = [r["rating"] for r in self.client.get(url + "?sortBy=highest").get_json()["reviews"]]
        self.assertEqual(highest, [5, 4, 2])
        lowest = [r["rating"] for r in self.client.get(url + "?sortBy=lowest").get_json()["reviews"]]
        self.assertEqual(lowest, [2, 4, 5])
        only_fours = self.client.get(url + "?filterBy=4").get_json()["reviews"]
        self.assertEqual([r["rating"] for r in only_fours], [4])


if __name__ == "__main__":
    unittest.main()
