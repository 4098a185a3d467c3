from __future__ import annotations

import tempfile
import unittest

from fastapi.testclient import TestClient

from internhub.db import get_db
from internhub.main import app
from internhub.models import UserRole
from internhub.storage.local_provider import LocalStorageProvider, get_storage_provider
from tests.support import bearer, make_session_factory, make_trainee, make_user, override_get_db


class OnboardingEndpointTests(unittest.TestCase):
    def setUp(self) -> None:
        self.factory = make_session_factory()
        self.db = self.factory()
        self.storage_dir = tempfile.TemporaryDirectory()
        self.storage = LocalStorageProvider(self.storage_dir.name)
        app.dependency_overrides[get_db] = override_get_db(self.factory)
        app.dependency_overrides[get_storage_provider] = lambda: self.storage
        self.client = TestClient(app)

        self.hr = make_user(self.db, role=UserRole.HR, email="hr@example.com")
        self.mentor = make_user(self.db, role=UserRole.MENTOR, email="mentor@example.com", department="ICT")
        self.intern, _profile = make_trainee(self.db, email="intern@example.com", mentor=self.mentor)
        self.peer, _profile = make_trainee(self.db, email="peer@example.com")

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        self.db.close()
        self.storage_dir.cleanup()

    def _upload(self, item_name: str = "Submit National ID Copy", data: bytes = b"%PDF-1.4 id"):
        return self.client.post(
            "/api/onboarding/checklist/documents",
            data={"item_name": item_name},
            files={"file": ("id.pdf", data, "application/pdf")},
            headers=bearer(self.intern),
        )

    def test_checklist_starts_empty(self) -> None:
        response = self.client.get("/api/onboarding/checklist", headers=bearer(self.intern))

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["key"], "47")
        self.assertEqual(len(body["items"]), 6)
        self.assertEqual(body["percentage"], 0.0)

    def test_upload_then_download_with_access_rules(self) -> None:
        response = self._upload()
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["completed_items"], ["Submit National ID Copy"])

        ref = f"documents/{self.intern.id}/Submit_National_ID_Copy/id.pdf"
        for viewer in (self.intern, self.mentor, self.hr):
            download = self.client.get(f"/files/{ref}", headers=bearer(viewer))
            self.assertEqual(download.status_code, 200)
            self.assertEqual(download.content, b"%PDF-1.4 id")

        blocked = self.client.get(f"/files/{ref}", headers=bearer(self.peer))
        self.assertEqual(blocked.status_code, 403)

        missing = self.client.get(f"/files/documents/{self.intern.id}/other/none.pdf", headers=bearer(self.intern))
        self.assertEqual(missing.status_code, 404)

    def test_upload_to_checkbox_item_is_rejected(self) -> None:
        response = self._upload(item_name="Sign Internship Agreement")
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "ITEM_NOT_FILE")

    def test_mentor_cannot_use_trainee_checklist(self) -> None:
        response = self.client.get("/api/onboarding/checklist", headers=bearer(self.mentor))
        self.assertEqual(response.status_code, 403)

    def test_hr_sees_trainee_progress(self) -> None:
        self.client.post(
            "/api/onboarding/checklist/mark",
            json={"item_name": "Sign Internship Agreement"},
            headers=bearer(self.intern),
        )

        response = self.client.get(f"/api/hr/onboarding/{self.intern.id}", headers=bearer(self.hr))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["percentage"], 16.67)


if __name__ == "__main__":
    unittest.main()
