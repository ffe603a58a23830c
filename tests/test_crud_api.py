from __future__ import annotations

from support import AppTestCase


def course_payload(**overrides):
    payload = {
        "title": "Precision Cutting",
        "slug": "precision-cutting",
        "description": "Sharp lines and clean finishes.",
        "price": 149,
        "duration": 6,
    }
    payload.update(overrides)
    return payload


class CrudAccessTests(AppTestCase):
    def test_anonymous_requests_are_rejected(self) -> None:
        body = self.envelope(self.client.get("/api/courses"), 401)
        self.assertEqual({"success": False, "error": "Unauthorized"}, body)

    def test_editor_cannot_delete(self) -> None:
        course = self.seed("courses", **course_payload())
        self.login_as("editor")

        body = self.envelope(self.client.delete(f"/api/courses/{course['id']}"), 403)

        self.assertEqual("Insufficient permissions", body["error"])
        self.assertIsNotNone(self.db.get("courses", course["id"]))

    def test_smtp_settings_require_super_admin(self) -> None:
        self.login_as("admin")
        self.envelope(self.client.get("/api/email/smtp"), 403)

    def test_non_object_body_is_rejected(self) -> None:
        self.login_as()
        response = self.client.post("/api/courses", json=["not", "an", "object"])
        self.assertEqual("Request body must be a JSON object", self.envelope(response, 400)["error"])


class CourseCrudTests(AppTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.user = self.login_as()

    def test_create_reports_missing_fields(self) -> None:
        body = self.envelope(self.client.post("/api/courses", json={"title": "Cutting"}), 400)
        self.assertEqual("Missing required fields: slug, description, price, duration", body["error"])

    def test_create_embeds_category_and_applies_defaults(self) -> None:
        category = self.seed("courses_categories", name="Hair", slug="hair")

        response = self.client.post("/api/courses", json=course_payload(category_id=category["id"]))
        body = self.envelope(response, 201)

        self.assertTrue(body["success"])
        self.assertEqual("Course created successfully", body["message"])
        self.assertTrue(body["data"]["is_active"])
        self.assertEqual("Hair", body["data"]["courses_categories"]["name"])
        self.assertIn("updated_at", body["data"])

    def test_duplicate_slug_conflicts(self) -> None:
        self.seed("courses", **course_payload())
        body = self.envelope(self.client.post("/api/courses", json=course_payload(title="Copy")), 409)
        self.assertEqual("Course slug must be unique", body["error"])

    def test_update_may_keep_its_own_slug(self) -> None:
        course = self.seed("courses", **course_payload())
        response = self.client.put(
            f"/api/courses/{course['id']}",
            json={"slug": "precision-cutting", "price": 199},
        )
        body = self.envelope(response, 200)
        self.assertEqual(199, body["data"]["price"])
        self.assertEqual("Course updated successfully", body["message"])

    def test_missing_record_is_404(self) -> None:
        body = self.envelope(self.client.put("/api/courses/nope", json={"price": 1}), 404)
        self.assertEqual("Course not found", body["error"])

    def test_paginated_listing(self) -> None:
        for index in range(12):
            self.seed("courses", **course_payload(slug=f"course-{index}", created_at=f"2024-05-{index + 1:02d}T09:00:00Z"))

        body = self.envelope(self.client.get("/api/courses?page=2&limit=5"), 200)

        self.assertEqual({"page": 2, "limit": 5, "total": 12, "totalPages": 3}, body["data"]["pagination"])
        self.assertEqual(["course-6", "course-5", "course-4", "course-3", "course-2"],
                         [row["slug"] for row in body["data"]["data"]])

    def test_listing_filters_and_search(self) -> None:
        self.seed("courses", **course_payload(slug="a", title="Balayage", is_active=True))
        self.seed("courses", **course_payload(slug="b", title="Bridal", is_active=False))

        inactive = self.envelope(self.client.get("/api/courses?is_active=false"), 200)
        searched = self.envelope(self.client.get("/api/courses?search=balay"), 200)

        self.assertEqual(["b"], [row["slug"] for row in inactive["data"]["data"]])
        self.assertEqual(["a"], [row["slug"] for row in searched["data"]["data"]])

    def test_delete(self) -> None:
        course = self.seed("courses", **course_payload())
        body = self.envelope(self.client.delete(f"/api/courses/{course['id']}"), 200)
        self.assertEqual({"success": True, "data": None, "message": "Course deleted successfully"}, body)
        self.assertIsNone(self.db.get("courses", course["id"]))


class ReferenceGuardTests(AppTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.login_as()

    def test_category_in_use_cannot_be_deleted(self) -> None:
        category = self.seed("courses_categories", name="Hair", slug="hair")
        self.seed("courses", **course_payload(category_id=category["id"]))

        body = self.envelope(self.client.delete(f"/api/categories/{category['id']}"), 409)

        self.assertEqual("Cannot delete category that is assigned to courses", body["error"])

    def test_sent_campaign_cannot_be_deleted(self) -> None:
        campaign = self.seed("email_campaigns", name="May", subject="News", content="Hi", status="sent")

        body = self.envelope(self.client.delete(f"/api/email/campaigns/{campaign['id']}"), 400)

        self.assertEqual("Cannot delete a campaign that has been sent or is currently sending", body["error"])

    def test_campaign_listing_uses_offsets(self) -> None:
        created = self.envelope(
            self.client.post("/api/email/campaigns", json={"name": "June", "subject": "News", "content": "Hi"}),
            201,
        )
        self.seed("email_campaigns", name="May", subject="News", content="Hi", status="sent")

        body = self.envelope(self.client.get("/api/email/campaigns?limit=1"), 200)

        self.assertEqual("draft", created["data"]["status"])
        self.assertEqual(0, created["data"]["sent_count"])
        self.assertEqual(2, body["data"]["count"])
        self.assertEqual((1, 0), (body["data"]["limit"], body["data"]["offset"]))
        self.assertEqual(1, len(body["data"]["data"]))


class WorkflowTests(AppTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.user = self.login_as("admin", user_id="admin-7")

    def test_review_approval_and_response_are_stamped(self) -> None:
        review = self.seed("reviews", name="Sam", email="sam@example.com", rating=5, title="Great", content="Loved it", is_approved=False)

        body = self.envelope(
            self.client.put(f"/api/reviews/{review['id']}", json={"is_approved": True, "response": "  Thanks Sam!  "}),
            200,
        )["data"]

        self.assertTrue(body["is_approved"])
        self.assertEqual("admin-7", body["approved_by"])
        self.assertTrue(body["approved_at"])
        self.assertEqual("Thanks Sam!", body["response"])
        self.assertEqual("admin-7", body["responded_by"])

        cleared = self.envelope(
            self.client.put(f"/api/reviews/{review['id']}", json={"is_approved": False}), 200
        )["data"]
        self.assertIsNone(cleared["approved_at"])
        self.assertIsNone(cleared["approved_by"])

    def test_rating_must_be_in_range(self) -> None:
        payload = {"name": "Sam", "email": "sam@example.com", "rating": 9, "title": "Hmm", "content": "Too high"}
        body = self.envelope(self.client.post("/api/reviews", json=payload), 400)
        self.assertEqual("Rating must be between 1 and 5", body["error"])

    def test_contact_response_sets_responded_at(self) -> None:
        contact = self.seed("contact_submissions", name="Alex", email="alex@example.com", subject="Dates", message="When?")

        body = self.envelope(
            self.client.put(f"/api/contacts/{contact['id']}", json={"response": "Next month", "is_read": True}),
            200,
        )["data"]

        self.assertTrue(body["responded_at"])
        self.assertNotIn("updated_at", body)

    def test_contact_email_is_validated(self) -> None:
        payload = {"name": "Alex", "email": "not-an-email", "subject": "Dates", "message": "When?"}
        body = self.envelope(self.client.post("/api/contacts", json=payload), 400)
        self.assertEqual("Invalid email format", body["error"])

    def test_newsletter_subscription_lifecycle(self) -> None:
        created = self.envelope(self.client.post("/api/newsletter", json={"email": "Riley@Example.com"}), 201)["data"]
        self.assertEqual("riley@example.com", created["email"])
        self.assertEqual("pending", created["status"])

        duplicate = self.envelope(self.client.post("/api/newsletter", json={"email": "riley@example.com"}), 409)
        self.assertEqual("Email is already subscribed to the newsletter", duplicate["error"])

        invalid = self.envelope(self.client.put(f"/api/newsletter/{created['id']}", json={"status": "gone"}), 400)
        self.assertEqual("Invalid status. Must be pending, subscribed, or unsubscribed", invalid["error"])

        updated = self.envelope(
            self.client.put(f"/api/newsletter/{created['id']}", json={"status": "unsubscribed"}), 200
        )["data"]
        self.assertTrue(updated["unsubscribed_at"])

    def test_offer_rules(self) -> None:
        payload = {
            "title": "Spring",
            "description": "Big savings",
            "discount_type": "percentage",
            "discount_value": 150,
            "valid_from": "2024-01-01",
            "valid_until": "2024-02-01",
        }
        too_large = self.envelope(self.client.post("/api/offers", json=payload), 400)
        self.assertEqual("Percentage discount cannot exceed 100%", too_large["error"])

        payload.update(discount_value=20, valid_until="2023-12-01")
        backwards = self.envelope(self.client.post("/api/offers", json=payload), 400)
        self.assertEqual("Valid until date must be after valid from date", backwards["error"])

        payload.update(valid_until="2024-03-01")
        created = self.envelope(self.client.post("/api/offers", json=payload), 201)["data"]
        self.assertEqual(0, created["usage_count"])

    def test_site_setting_values_are_type_checked(self) -> None:
        payload = {"key": "maintenance_mode", "type": "boolean", "category": "general", "value": "yes"}
        body = self.envelope(self.client.post("/api/site-settings", json=payload), 400)
        self.assertEqual('Value must be a boolean for type "boolean"', body["error"])

        payload["value"] = False
        created = self.envelope(self.client.post("/api/site-settings", json=payload), 201)["data"]
        self.assertIs(created["value"], False)

    def test_business_info_type_is_validated(self) -> None:
        payload = {"key": "phone", "value": "01234", "type": "fax"}
        body = self.envelope(self.client.post("/api/business-info", json=payload), 400)
        self.assertTrue(body["error"].startswith("Invalid type. Must be one of: text, email"))

    def test_faq_listing_tolerates_string_sort_order(self) -> None:
        self.envelope(self.client.post("/api/faqs", json={"question": "Parking?", "answer": "Yes"}), 201)
        self.envelope(self.client.post("/api/faqs", json={"question": "Refunds?", "answer": "No", "sort_order": "2"}), 201)

        body = self.envelope(self.client.get("/api/faqs"), 200)

        self.assertEqual(["Parking?", "Refunds?"], [row["question"] for row in body["data"]["data"]])


class EmailSettingsTests(AppTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.login_as("super_admin")

    def test_templates_alias_and_trigger_template_check(self) -> None:
        template = self.envelope(
            self.client.post("/api/email/templates", json={"name": "Welcome", "subject": "Hi", "content": "<p>Hi</p>"}),
            201,
        )["data"]
        listed = self.envelope(self.client.get("/api/newsletter/templates?active_only=true"), 200)
        self.assertEqual([template["id"]], [row["id"] for row in listed["data"]])

        missing = self.envelope(
            self.client.post("/api/email/triggers", json={"name": "Signup", "event_type": "newsletter_signup", "template_id": "nope"}),
            404,
        )
        self.assertEqual("Email template not found", missing["error"])

        trigger = self.envelope(
            self.client.post(
                "/api/email/triggers",
                json={"name": "Signup", "event_type": "newsletter_signup", "template_id": template["id"]},
            ),
            201,
        )["data"]
        self.assertEqual("Welcome", trigger["email_templates"]["name"])

    def test_only_one_smtp_configuration_is_active(self) -> None:
        first = self.envelope(
            self.client.post("/api/email/smtp", json={"host": "smtp.one.test", "port": "587", "from_email": "a@one.test", "password": "secret"}),
            201,
        )["data"]
        second = self.envelope(
            self.client.post("/api/email/smtp", json={"host": "smtp.two.test", "port": 465, "from_email": "a@two.test"}),
            201,
        )["data"]

        self.assertNotIn("password", first)
        self.assertEqual(587, first["port"])
        self.assertTrue(second["is_active"])
        self.assertFalse(self.db.get("email_smtp_settings", first["id"])["is_active"])

        listed = self.envelope(self.client.get("/api/email/smtp"), 200)["data"]
        self.assertTrue(all("password" not in row for row in listed))
