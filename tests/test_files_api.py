from __future__ import annotations

import io
import re
from unittest import TestCase

from support import AppTestCase

from fringe_admin.services.file_storage import MB, FileValidationError, generate_file_path, validate_file


class FileRuleTests(TestCase):
    def test_validate_file(self) -> None:
        validate_file("hero.png", "image/png", 1024, "image")
        validate_file("syllabus.pdf", "application/pdf", 9 * MB, "document")

        with self.assertRaisesRegex(FileValidationError, "exceeds the 5MB limit"):
            validate_file("hero.png", "image/png", 5 * MB + 1, "image")
        with self.assertRaisesRegex(FileValidationError, "text/plain is not allowed"):
            validate_file("notes.txt", "text/plain", 10, "document")
        with self.assertRaisesRegex(FileValidationError, "invalid characters"):
            validate_file("../hero.png", "image/png", 10, "image")
        with self.assertRaisesRegex(FileValidationError, "Unknown file type category"):
            validate_file("hero.png", "image/png", 10, "audio")

    def test_generated_paths_are_unique_and_sanitised(self) -> None:
        first = generate_file_path("courses", "Hero Image!.PNG", prefix="course-1")
        second = generate_file_path("courses", "Hero Image!.PNG", prefix="course-1")

        self.assertRegex(first, r"^courses/course-1-\d+-[a-z0-9]{6}-hero-image-\.png$")
        self.assertNotEqual(first, second)


class UploadApiTests(AppTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.login_as("admin")

    def _upload(self, data: bytes = b"\x89PNG", filename: str = "hero.png", mimetype: str = "image/png", **form):
        payload = {"file": (io.BytesIO(data), filename, mimetype), **form}
        return self.client.post("/api/upload", data=payload, content_type="multipart/form-data")

    def test_public_upload_is_served_and_deleted(self) -> None:
        stored = self.envelope(self._upload(folder="courses"), 200)["data"]

        self.assertTrue(re.match(r"^courses/\d+-[a-z0-9]{6}-hero\.png$", stored["path"]))
        self.assertEqual(f"/uploads/public/{stored['path']}", stored["url"])
        self.assertEqual((4, "image/png", "public"), (stored["size"], stored["type"], stored["bucket"]))

        served = self.client.get(stored["url"])
        self.assertEqual(b"\x89PNG", served.data)
        served.close()

        self.envelope(self.client.delete(f"/api/upload?path={stored['path']}&bucket=public"), 200)
        self.assertEqual(404, self.client.get(stored["url"]).status_code)

    def test_private_files_are_not_served(self) -> None:
        stored = self.envelope(self._upload(bucket="private", folder="temp"), 200)["data"]
        self.assertIsNone(stored["url"])
        self.assertEqual(404, self.client.get(f"/uploads/private/{stored['path']}").status_code)

    def test_upload_validation(self) -> None:
        self.assertEqual("Invalid bucket specified", self.envelope(self._upload(bucket="archive"), 400)["error"])
        self.assertEqual("Invalid folder specified", self.envelope(self._upload(folder="invoices"), 400)["error"])
        self.assertEqual(
            "File size exceeds the 5MB limit",
            self.envelope(self._upload(data=b"x" * (5 * MB + 1)), 400)["error"],
        )
        no_file = self.client.post("/api/upload", data={"folder": "temp"}, content_type="multipart/form-data")
        self.assertEqual("No file provided", self.envelope(no_file, 400)["error"])
        self.assertEqual("File path is required", self.envelope(self.client.delete("/api/upload"), 400)["error"])

    def test_storage_initialisation_requires_super_admin(self) -> None:
        self.envelope(self.client.post("/api/storage/init"), 403)

        self.login_as("super_admin")
        first = self.envelope(self.client.post("/api/storage/init"), 200)["data"]
        second = self.envelope(self.client.post("/api/storage/init"), 200)["data"]

        self.assertEqual(["public", "private", "temp"], first["created"])
        self.assertEqual([], second["created"])


class WebVitalsTests(AppTestCase):
    def test_beacon_is_public_and_logged(self) -> None:
        with self.assertLogs("fringe_admin.api.files", level="INFO") as logs:
            response = self.client.post("/api/web-vitals", json={"name": "LCP", "value": 1830.5, "id": "v1", "label": "web-vital"})

        self.assertEqual({"success": True, "data": None}, self.envelope(response, 200))
        self.assertIn("name=LCP", logs.output[0])
