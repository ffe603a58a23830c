from __future__ import annotations

import json
from datetime import datetime, timezone
from unittest import TestCase

from support import AppTestCase

from fringe_admin.services.analytics import AnalyticsService, month_range, parse_range, percentage_change


class PeriodHelperTests(TestCase):
    def test_percentage_change(self) -> None:
        self.assertEqual(100.0, percentage_change(10, 5))
        self.assertEqual(-50.0, percentage_change(5, 10))
        self.assertEqual(100.0, percentage_change(3, 0))
        self.assertEqual(0.0, percentage_change(0, 0))

    def test_parse_range_messages(self) -> None:
        with self.assertRaisesRegex(ValueError, "Start date and end date are required"):
            parse_range("2024-05-01", None)
        with self.assertRaisesRegex(ValueError, "Invalid date format"):
            parse_range("yesterday", "2024-05-01")
        with self.assertRaisesRegex(ValueError, "Start date must be before end date"):
            parse_range("2024-05-02", "2024-05-01")

    def test_previous_window_has_equal_length(self) -> None:
        window = parse_range("2024-05-11", "2024-05-21")
        previous = window.previous()
        self.assertEqual(datetime(2024, 5, 1, tzinfo=timezone.utc), previous.start)
        self.assertLess(previous.end, window.start)

    def test_month_range_wraps_year(self) -> None:
        window = month_range(datetime(2024, 1, 15, tzinfo=timezone.utc), 1)
        self.assertEqual(datetime(2023, 12, 1, tzinfo=timezone.utc), window.start)
        self.assertEqual(datetime(2023, 12, 31, 23, 59, 59, tzinfo=timezone.utc), window.end)


class AnalyticsDataTests(AppTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.login_as("admin")
        for created in ("2024-05-03T09:00:00Z", "2024-05-10T09:00:00Z", "2024-04-15T09:00:00Z"):
            self.seed("contact_submissions", name="Alex", email="alex@example.com", subject="Dates", message="When?", created_at=created)
        self.seed("newsletter_subscriptions", email="a@example.com", status="subscribed", subscribed_at="2024-05-02T09:00:00Z")
        self.seed("newsletter_subscriptions", email="b@example.com", status="unsubscribed", subscribed_at="2024-05-05T09:00:00Z")
        self.seed("newsletter_subscriptions", email="c@example.com", status="subscribed", subscribed_at="2024-03-01T09:00:00Z")
        self.seed("courses", title="Cutting", slug="cutting", is_active=True)
        self.seed("courses", title="Colour", slug="colour", is_active=False)
        self.seed("reviews", name="Sam", title="Great", rating=4, is_approved=True, course_id="c-1", created_at="2024-05-12T09:00:00Z")
        self.seed("email_campaigns", name="April", status="sent", sent_count=3, created_at="2024-04-20T09:00:00Z")
        self.seed("email_campaigns", name="June", status="draft", sent_count=0, created_at="2024-05-20T09:00:00Z")

    def test_dashboard_statistics_and_trends(self) -> None:
        stats = AnalyticsService(self.db).dashboard_stats(now=datetime(2024, 5, 20, tzinfo=timezone.utc))

        self.assertEqual(1, stats["statistics"]["totalCourses"])
        self.assertEqual(3, stats["statistics"]["totalContacts"])
        self.assertEqual(2, stats["statistics"]["totalNewsletter"])
        self.assertEqual(1, stats["statistics"]["totalReviews"])
        self.assertEqual(2, stats["statistics"]["totalCampaigns"])
        self.assertEqual(1, stats["statistics"]["sentCampaigns"])
        self.assertEqual(3, stats["statistics"]["totalEmailsSent"])

        self.assertEqual({"current": 2, "previous": 1, "change": 100.0}, stats["trends"]["contacts"])
        self.assertEqual({"current": 1, "previous": 0, "change": 100.0}, stats["trends"]["newsletter"])
        self.assertEqual(stats["trends"]["contacts"], stats["trends"]["bookings"])
        self.assertEqual(
            ["review", "contact", "contact", "contact"],
            [item["type"] for item in stats["recentActivity"]],
        )
        self.assertEqual("New review: Great", stats["recentActivity"][0]["title"])

    def test_dashboard_endpoint(self) -> None:
        body = self.envelope(self.client.get("/api/dashboard/stats"), 200)
        self.assertEqual(3, body["data"]["statistics"]["totalContacts"])

    def test_period_report(self) -> None:
        response = self.client.post("/api/analytics", json={"startDate": "2024-05-01", "endDate": "2024-05-31T23:59:59Z"})
        data = self.envelope(response, 200)["data"]

        engagement = data["userEngagement"]
        self.assertEqual(2, engagement["totalContacts"])
        self.assertEqual(2, engagement["totalNewsletter"])
        self.assertEqual(100.0, engagement["contactTrend"])
        self.assertEqual({"total": 2, "active": 1, "averageRating": 4.0, "totalViews": 50}, data["contentPerformance"]["courses"])
        self.assertEqual(0, data["contentPerformance"]["offers"]["conversionRate"])
        self.assertEqual({"startDate": "2024-05-01", "endDate": "2024-05-31T23:59:59Z"}, data["dateRange"])

    def test_period_report_validation(self) -> None:
        body = self.envelope(self.client.post("/api/analytics", json={"startDate": "2024-05-01"}), 400)
        self.assertEqual("Start date and end date are required", body["error"])

    def test_export_as_csv_sections(self) -> None:
        response = self.client.post(
            "/api/analytics/export",
            json={"startDate": "2024-05-01", "endDate": "2024-05-31", "format": "csv"},
        )

        self.assertEqual(200, response.status_code)
        self.assertEqual(
            'attachment; filename="analytics-report-2024-05-01-to-2024-05-31.csv"',
            response.headers["Content-Disposition"],
        )
        text = response.get_data(as_text=True)
        self.assertTrue(text.startswith("SUMMARY\n"))
        self.assertIn("\nCONTACTS\n", text)
        self.assertIn("\nOFFERS\nNo records\n", text)

    def test_export_as_json(self) -> None:
        response = self.client.post(
            "/api/analytics/export",
            json={"startDate": "2024-05-01", "endDate": "2024-05-31T23:59:59Z", "format": "json"},
        )
        document = json.loads(response.get_data(as_text=True))

        self.assertEqual(2, document["summary"]["totals"]["contacts"])
        self.assertEqual(1, document["summary"]["totals"]["campaigns"])
        self.assertEqual(["a@example.com", "b@example.com"], sorted(row["email"] for row in document["newsletter"]))

    def test_export_format_is_validated(self) -> None:
        response = self.client.post(
            "/api/analytics/export",
            json={"startDate": "2024-05-01", "endDate": "2024-05-31", "format": "pdf"},
        )
        self.assertEqual("Invalid format. Supported formats: csv, json", self.envelope(response, 400)["error"])


class CampaignReportTests(AppTestCase):
    def test_rates_and_hourly_breakdown(self) -> None:
        self.login_as("admin")
        campaign = self.seed("email_campaigns", name="May", subject="News", content="Hi", status="sent", total_recipients=4, sent_count=4)
        sends = [
            {"opened_at": "2024-05-01T09:15:00Z", "clicked_at": "2024-05-01T09:20:00Z"},
            {"opened_at": "2024-05-01T09:45:00Z"},
            {"opened_at": "2024-05-01T18:00:00Z"},
            {"bounced_at": "2024-05-01T08:00:00Z"},
        ]
        for send in sends:
            self.seed("email_campaign_sends", campaign_id=campaign["id"], status="sent", **send)

        data = self.envelope(self.client.get(f"/api/email/campaigns/{campaign['id']}/analytics"), 200)["data"]

        self.assertEqual(3, data["overview"]["opened_count"])
        self.assertEqual(
            {"open_rate": 75.0, "click_rate": 25.0, "click_to_open_rate": 33.33, "bounce_rate": 25.0, "unsubscribe_rate": 0.0},
            data["rates"],
        )
        self.assertEqual({"9": 2, "18": 1}, data["hourly_breakdown"])

    def test_unknown_campaign(self) -> None:
        self.login_as("admin")
        body = self.envelope(self.client.get("/api/email/campaigns/missing/analytics"), 404)
        self.assertEqual("Campaign not found", body["error"])
