import json
from decimal import Decimal

from django.contrib.auth.models import User
from django.test import TestCase

from catalog.models import Product
from orders.models import Order, OrderItem

from .models import HelpfulMark, Review


def place_order(user, product, status=Order.STATUS_DELIVERED):
    order = Order.objects.create(
        user=user,
        email=user.email,
        full_name="Asha Rao",
        phone_number="9876543210",
        address_line1="12 Lake Road",
        city="Kolkata",
        state="West Bengal",
        pin_code="700029",
        subtotal=Decimal("500"),
        total=Decimal("500"),
        status=status,
    )
    OrderItem.objects.create(order=order, product=product, name=product.name, price=product.price)
    return order


class ReviewTestCase(TestCase):
    def setUp(self):
        self.user = User.objects.create_user("asha", "asha@example.com", "pass", first_name="Asha", last_name="Rao")
        self.other = User.objects.create_user("ravi", "ravi@example.com", "pass")
        self.product = Product.objects.create(name="Block Print Tee", category="tees", price=Decimal("500"))

    def post_review(self, **overrides):
        body = {"productId": self.product.pk, "rating": 5, "comment": "Lovely print"}
        body.update(overrides)
        return self.client.post("/reviews/", data=json.dumps(body), content_type="application/json")

    def add_review(self, user, rating, helpful=0):
        return Review.objects.create(
            product=self.product, user=user, user_name=user.username,
            rating=rating, comment="ok", verified=True, helpful=helpful,
        )


class ProductReviewListTests(ReviewTestCase):
    def test_lists_active_reviews_with_stats(self):
        self.add_review(self.user, 5)
        self.add_review(self.other, 2)
        hidden = self.add_review(User.objects.create_user("meera", "meera@example.com", "pass"), 1)
        hidden.is_active = False
        hidden.save()

        response = self.client.get(f"/reviews/product/{self.product.pk}")

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(len(data["reviews"]), 2)
        self.assertEqual(data["stats"]["totalReviews"], 2)
        self.assertEqual(data["stats"]["averageRating"], 3.5)
        self.assertEqual(data["stats"]["ratingStats"], {"1": 0, "2": 1, "3": 0, "4": 0, "5": 1})

    def test_sorts_and_paginates(self):
        self.add_review(self.user, 3, helpful=1)
        self.add_review(self.other, 4, helpful=7)

        response = self.client.get(f"/reviews/product/{self.product.pk}?sort=helpful&limit=1")
        data = response.json()
        self.assertEqual([r["helpful"] for r in data["reviews"]], [7])
        self.assertEqual(data["pagination"], {"currentPage": 1, "totalPages": 2, "totalReviews": 2, "hasMore": True})

        response = self.client.get(f"/reviews/product/{self.product.pk}?sort=lowest&limit=1&page=2")
        data = response.json()
        self.assertEqual([r["rating"] for r in data["reviews"]], [4])
        self.assertFalse(data["pagination"]["hasMore"])

    def test_empty_product_has_zero_average(self):
        data = self.client.get(f"/reviews/product/{self.product.pk}").json()

        self.assertEqual(data["reviews"], [])
        self.assertEqual(data["stats"]["averageRating"], 0)


class CanReviewTests(ReviewTestCase):
    def test_requires_login(self):
        response = self.client.get(f"/reviews/can-review/{self.product.pk}")

        self.assertEqual(response.status_code, 401)

    def test_pending_order_is_not_enough(self):
        place_order(self.user, self.product, status=Order.STATUS_PENDING)
        self.client.force_login(self.user)

        data = self.client.get(f"/reviews/can-review/{self.product.pk}").json()

        self.assertFalse(data["canReview"])
        self.assertEqual(data["reason"], "not_purchased")

    def test_delivered_order_makes_user_eligible(self):
        place_order(self.user, self.product)
        self.client.force_login(self.user)

        data = self.client.get(f"/reviews/can-review/{self.product.pk}").json()

        self.assertTrue(data["canReview"])
        self.assertEqual(data["reason"], "eligible")

    def test_another_users_delivery_does_not_count(self):
        place_order(self.other, self.product)
        self.client.force_login(self.user)

        data = self.client.get(f"/reviews/can-review/{self.product.pk}").json()

        self.assertEqual(data["reason"], "not_purchased")

    def test_existing_review_is_returned(self):
        review = self.add_review(self.user, 4)
        self.client.force_login(self.user)

        data = self.client.get(f"/reviews/can-review/{self.product.pk}").json()

        self.assertFalse(data["canReview"])
        self.assertEqual(data["reason"], "already_reviewed")
        self.assertEqual(data["existingReview"]["id"], review.pk)


class CreateReviewTests(ReviewTestCase):
    def test_creates_verified_review_after_delivery(self):
        place_order(self.user, self.product)
        self.client.force_login(self.user)

        response = self.post_review(title="Great", size="M", color="Indigo")

        self.assertEqual(response.status_code, 201)
        review = Review.objects.get(product=self.product, user=self.user)
        self.assertTrue(review.verified)
        self.assertEqual(review.user_name, "Asha Rao")
        self.assertEqual(review.size, "M")
        self.assertEqual(response.json()["review"]["id"], review.pk)

    def test_rejects_product_not_received(self):
        place_order(self.user, self.product, status=Order.STATUS_SHIPPED)
        self.client.force_login(self.user)

        response = self.post_review()

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "not_purchased")
        self.assertFalse(Review.objects.exists())

    def test_second_review_is_refused(self):
        place_order(self.user, self.product)
        self.client.force_login(self.user)
        self.post_review()

        response = self.post_review(rating=1, comment="Changed my mind")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "already_reviewed")
        self.assertEqual(Review.objects.count(), 1)

    def test_deleted_review_still_blocks_a_new_one(self):
        place_order(self.user, self.product)
        review = self.add_review(self.user, 3)
        review.is_active = False
        review.save()
        self.client.force_login(self.user)

        response = self.post_review()

        self.assertEqual(response.json()["code"], "already_reviewed")

    def test_validates_body(self):
        place_order(self.user, self.product)
        self.client.force_login(self.user)

        self.assertEqual(self.post_review(comment=" ").status_code, 400)
        self.assertEqual(self.post_review(rating=6).status_code, 400)
        self.assertEqual(self.post_review(rating=True).status_code, 400)
        self.assertEqual(self.post_review(productId="abc").status_code, 400)
        self.assertEqual(self.post_review(productId=999999).status_code, 404)
        self.assertFalse(Review.objects.exists())


class ReviewDetailTests(ReviewTestCase):
    def setUp(self):
        super().setUp()
        self.review = self.add_review(self.user, 3)

    def put(self, body):
        return self.client.put(
            f"/reviews/{self.review.pk}", data=json.dumps(body), content_type="application/json"
        )

    def test_owner_updates_review(self):
        self.client.force_login(self.user)

        response = self.put({"rating": 5, "comment": "Better after a wash", "title": ""})

        self.assertEqual(response.status_code, 200)
        self.review.refresh_from_db()
        self.assertEqual(self.review.rating, 5)
        self.assertEqual(self.review.comment, "Better after a wash")

    def test_invalid_rating_leaves_review_untouched(self):
        self.client.force_login(self.user)

        response = self.put({"rating": 0})

        self.assertEqual(response.status_code, 400)
        self.review.refresh_from_db()
        self.assertEqual(self.review.rating, 3)

    def test_owner_deletes_review(self):
        self.client.force_login(self.user)

        response = self.client.delete(f"/reviews/{self.review.pk}")

        self.assertEqual(response.status_code, 200)
        self.review.refresh_from_db()
        self.assertFalse(self.review.is_active)
        self.assertEqual(self.client.delete(f"/reviews/{self.review.pk}").status_code, 404)

    def test_other_user_cannot_touch_review(self):
        self.client.force_login(self.other)

        self.assertEqual(self.put({"rating": 1}).status_code, 404)
        self.assertEqual(self.client.delete(f"/reviews/{self.review.pk}").status_code, 404)
        self.review.refresh_from_db()
        self.assertTrue(self.review.is_active)


class HelpfulTests(ReviewTestCase):
    def test_toggle_marks_and_unmarks(self):
        review = self.add_review(self.user, 4)
        self.client.force_login(self.other)

        first = self.client.post(f"/reviews/{review.pk}/helpful")
        second = self.client.post(f"/reviews/{review.pk}/helpful")

        self.assertEqual(first.json()["helpful"], 1)
        self.assertEqual(first.json()["message"], "Marked as helpful")
        self.assertEqual(second.json()["helpful"], 0)
        self.assertFalse(HelpfulMark.objects.exists())

    def test_each_user_counts_once(self):
        review = self.add_review(self.user, 4)
        for user in (self.user, self.other):
            self.client.force_login(user)
            self.client.post(f"/reviews/{review.pk}/helpful")

        review.refresh_from_db()
        self.assertEqual(review.helpful, 2)

    def test_hidden_review_is_not_found(self):
        review = self.add_review(self.user, 4)
        review.is_active = False
        review.save()
        self.client.force_login(self.other)

        self.assertEqual(self.client.post(f"/reviews/{review.pk}/helpful").status_code, 404)
