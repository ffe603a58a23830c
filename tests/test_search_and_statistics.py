from __future__ import annotations

from unittest.mock import patch

from support import AppTestCase

from fringe_admin.services.queries import DatabaseError, eq
from fringe_admin.services.search import SearchService
from fringe_admin.services.statistics import StatisticsTracker
from fringe_admin.utils.dates import date_stamp


class GlobalSearchTests(AppTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.login_as("editor")
        self.seed("courses", title="Balayage Masterclass", slug="balayage", description="Hand painted colour", is_active=True)
        self.seed("courses", title="Balayage Basics", slug="basics", description="Retired", is_active=False)
        self.seed("faqs", question="Balayage aftercare?", answer="Use a gentle shampoo.", category="colour", is_active=True)
        self.seed("testimonials", name="Jo", company="Studio J", content="My balayage was great", rating=5, is_approved=True)
        self.seed("testimonials", name="Kim", content="Balayage pending approval", rating=4, is_approved=False)

    def test_search_spans_active_content(self) -> None:
        body = self.envelope(self.client.get("/api/search?q=balayage"), 200)["data"]

        self.assertEqual("all", body["type"])
        self.assertEqual("balayage", body["query"])
        self.assertEqual(
            [("course", "Balayage Masterclass"), ("faq", "Balayage aftercare?"), ("testimonial", "Jo - Studio J")],
            [(item["type"], item["title"]) for item in body["results"]],
        )
        course = body["results"][0]
        self.assertEqual("/admin/courses", course["url"])
        self.assertEqual({"slug": "balayage"}, course["metadata"])
        self.assertEqual("Hand painted colour...", course["description"])

    def test_type_filter_and_validation(self) -> None:
        body = self.envelope(self.client.get("/api/search?q=balayage&type=faq"), 200)["data"]
        self.assertEqual(["faq"], [item["type"] for item in body["results"]])

        invalid = self.envelope(self.client.get("/api/search?q=balayage&type=invoice"), 400)
        self.assertTrue(invalid["error"].startswith("Invalid search type. Must be one of: course, service"))

    def test_short_queries_return_nothing(self) -> None:
        self.assertEqual(
            {"results": [], "total": 0, "query": "b", "type": "all"},
            SearchService(self.db).search(" b "),
        )

    def test_failing_source_is_skipped(self) -> None:
        original = self.db.select

        def select(query):
            if query.table == "faqs":
                raise DatabaseError("relation does not exist")
            return original(query)

        with patch.object(self.db, "select", side_effect=select):
            results = SearchService(self.db).search("balayage")["results"]

        self.assertNotIn("faq", [item["type"] for item in results])
        self.assertIn("course", [item["type"] for item in results])


class StatisticsApiTests(AppTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.login_as("admin")

    def test_create_read_update_delete(self) -> None:
        created = self.envelope(
            self.client.post("/api/statistics", json={"key": "happy_students", "label": "Happy Students", "value": 0}),
            201,
        )["data"]
        self.assertEqual(("current", "general"), (created["period"], created["category"]))

        duplicate = self.envelope(
            self.client.post("/api/statistics", json={"key": "happy_students", "label": "Again", "value": 1}), 409
        )
        self.assertEqual("Statistic already exists for this period", duplicate["error"])

        updated = self.envelope(self.client.put("/api/statistics/happy_students", json={"value": 250}), 200)["data"]
        self.assertEqual(250, updated["value"])
        self.assertEqual(250, self.envelope(self.client.get("/api/statistics/happy_students"), 200)["data"]["value"])

        self.envelope(self.client.delete("/api/statistics/happy_students"), 200)
        self.envelope(self.client.get("/api/statistics/happy_students"), 404)

    def test_value_is_required(self) -> None:
        body = self.envelope(self.client.post("/api/statistics", json={"key": "k", "label": "K"}), 400)
        self.assertEqual("Missing required fields: value", body["error"])

    def test_bulk_update(self) -> None:
        for key in ("a", "b"):
            self.seed("statistics", key=key, label=key.upper(), value=1, category="general", period="current")

        body = self.envelope(
            self.client.put("/api/statistics", json={"updates": [{"key": "a", "value": 5}, {"key": "b", "value": 7}]}),
            200,
        )

        self.assertEqual("2 statistics updated successfully", body["message"])
        listed = self.envelope(self.client.get("/api/statistics?category=general"), 200)["data"]
        self.assertEqual({"a": 5, "b": 7}, {row["key"]: row["value"] for row in listed})

        invalid = self.envelope(self.client.put("/api/statistics", json={"updates": [{"key": "a"}]}), 400)
        self.assertEqual("Each update requires key and value", invalid["error"])

    def test_bulk_update_with_one_bad_item_writes_nothing(self) -> None:
        for key in ("a", "b"):
            self.seed("statistics", key=key, label=key.upper(), value=1, category="general", period="current")

        body = self.envelope(
            self.client.put("/api/statistics", json={"updates": [{"key": "a", "value": 99}, {"key": "b"}]}),
            400,
        )

        self.assertEqual("Each update requires key and value", body["error"])
        stored = self.envelope(self.client.get("/api/statistics/a"), 200)["data"]
        self.assertEqual(1, stored["value"])

    def test_refresh_recomputes_counts(self) -> None:
        self.seed("courses", title="Cutting", slug="cutting", is_active=True)
        self.seed("courses", title="Colour", slug="colour", is_active=False)
        self.seed("contact_submissions", name="Alex", email="alex@example.com", subject="Dates", message="When?")

        body = self.envelope(self.client.post("/api/statistics/refresh"), 200)

        self.assertEqual({"user_engagement": 4, "content": 6, "performance": 1}, body["data"])
        self.assertEqual(2, self.db.find_one("statistics", [eq("key", "total_courses")])["value"])
        self.assertEqual(1, self.db.find_one("statistics", [eq("key", "active_courses")])["value"])
        self.assertEqual(1, self.db.find_one("statistics", [eq("key", "total_contacts")])["value"])
        uptime = self.db.find_one("statistics", [eq("key", "system_uptime")])
        self.assertEqual(("performance", date_stamp()), (uptime["category"], uptime["period"]))

    def test_editor_cannot_delete(self) -> None:
        self.login_as("editor")
        self.envelope(self.client.delete("/api/statistics/anything"), 403)


class StatisticsTrackerTests(AppTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.tracker = StatisticsTracker(self.db)

    def _value(self, key: str):
        return self.db.find_one("statistics", [eq("key", key), eq("period", "current")])["value"]

    def test_increment_creates_then_adds(self) -> None:
        self.tracker.increment_statistic("page_views")
        self.tracker.increment_statistic("page_views", 4)

        self.assertEqual(5, self._value("page_views"))
        self.assertEqual("Page Views", self.db.find_one("statistics", [eq("key", "page_views")])["label"])

    def test_refresh_is_idempotent(self) -> None:
        self.seed("offers", title="Spring", is_active=True)
        self.tracker.refresh_all()
        self.tracker.refresh_all()

        self.assertEqual(1, self._value("active_offers"))
        self.assertEqual(1, self.db.count("statistics", [eq("key", "total_offers")]))

    def test_write_failures_are_logged_not_raised(self) -> None:
        with patch.object(self.db, "upsert", side_effect=DatabaseError("permission denied")):
            with self.assertLogs("fringe_admin.services.statistics", level="WARNING"):
                result = self.tracker.update_statistic("total_courses", 3)

        self.assertIsNone(result)
        self.assertEqual(0, self.tracker.bulk_update([]))
