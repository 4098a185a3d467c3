from __future__ import annotations

import tempfile
import unittest

from internhub.errors import ApiError, NotFound
from internhub.models import Checklist, UserRole
from internhub.schemas import ChecklistItem
from internhub.services.checklists import (
    COUNTY_TEMPLATES,
    DEFAULT_COUNTY_ITEMS,
    NEW_CHECKLIST_ITEMS,
    add_item,
    create_checklist,
    delete_checklist,
    get_checklist,
    get_progress,
    mark_item_done,
    normalize_items,
    replace_items,
    seed_county_checklists,
    set_form_value,
    upload_document,
)
from internhub.storage.local_provider import LocalStorageProvider
from tests.support import make_session_factory, make_trainee, make_user, session_of


class ChecklistItemTests(unittest.TestCase):
    def test_legacy_string_items_become_required_checkboxes(self) -> None:
        items = normalize_items(["Read the handbook", {"name": "Phone", "type": "text", "required": False}])
        self.assertEqual(items[0], {"name": "Read the handbook", "type": "checkbox", "required": True})
        self.assertEqual(items[1], {"name": "Phone", "type": "text", "required": False})

    def test_duplicate_names_are_rejected(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            normalize_items(["Sign NDA", {"name": " Sign NDA ", "type": "checkbox"}])
        self.assertEqual(ctx.exception.code, "DUPLICATE_ITEM")

    def test_select_items_need_options(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            normalize_items([{"name": "Shirt size", "type": "select"}])
        self.assertEqual(ctx.exception.code, "INVALID_CHECKLIST_ITEM")


class OnboardingProgressTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.storage_dir = tempfile.TemporaryDirectory()
        self.storage = LocalStorageProvider(self.storage_dir.name)
        self.hr = make_user(self.db, role=UserRole.HR, email="hr@example.com")
        self.intern, _profile = make_trainee(self.db, email="intern@example.com", county_code=47)

    def tearDown(self) -> None:
        self.db.close()
        self.storage_dir.cleanup()

    def test_new_county_intern_gets_default_checklist_at_zero(self) -> None:
        progress = get_progress(self.db, self.intern)

        self.assertEqual(progress.key, "47")
        self.assertEqual(len(progress.items), 6)
        self.assertEqual([item["name"] for item in progress.items], [item["name"] for item in DEFAULT_COUNTY_ITEMS])
        self.assertEqual(progress.completed_items, [])
        self.assertEqual(progress.percentage, 0.0)
        self.assertIsNotNone(self.db.get(Checklist, "47"))

    def test_marking_form_and_upload_advance_progress(self) -> None:
        progress = mark_item_done(self.db, self.intern, "Sign Internship Agreement")
        self.assertEqual(progress.percentage, 16.67)

        progress = set_form_value(self.db, self.intern, "Complete Personal Information Form", True)
        self.assertEqual(progress.percentage, 33.33)
        self.assertIs(progress.form_data["Complete Personal Information Form"], True)

        progress = upload_document(
            self.db,
            self.intern,
            "Submit National ID Copy",
            filename="id.pdf",
            data=b"%PDF-1.4 national id",
            storage=self.storage,
            content_type="application/pdf",
        )
        self.assertEqual(progress.percentage, 50.0)
        url = progress.documents["Submit National ID Copy"]
        self.assertTrue(url.endswith(f"/files/documents/{self.intern.id}/Submit_National_ID_Copy/id.pdf"))
        self.assertEqual(
            self.storage.open(f"documents/{self.intern.id}/Submit_National_ID_Copy/id.pdf"),
            b"%PDF-1.4 national id",
        )

    def test_marking_twice_counts_once(self) -> None:
        mark_item_done(self.db, self.intern, "Sign Internship Agreement")
        progress = mark_item_done(self.db, self.intern, "Sign Internship Agreement")
        self.assertEqual(progress.completed_items, ["Sign Internship Agreement"])

    def test_item_type_is_enforced(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            set_form_value(self.db, self.intern, "Submit KRA PIN Certificate", "A123")
        self.assertEqual(ctx.exception.code, "ITEM_REQUIRES_UPLOAD")

        with self.assertRaises(ApiError) as ctx:
            upload_document(
                self.db,
                self.intern,
                "Sign Internship Agreement",
                filename="agreement.pdf",
                data=b"signed",
                storage=self.storage,
            )
        self.assertEqual(ctx.exception.code, "ITEM_NOT_FILE")

        with self.assertRaises(ApiError) as ctx:
            upload_document(
                self.db,
                self.intern,
                "Submit KRA PIN Certificate",
                filename="kra.pdf",
                data=b"",
                storage=self.storage,
            )
        self.assertEqual(ctx.exception.code, "EMPTY_UPLOAD")

        with self.assertRaises(NotFound):
            mark_item_done(self.db, self.intern, "Climb Mount Kenya")

    def test_empty_form_value_does_not_complete_item(self) -> None:
        progress = set_form_value(self.db, self.intern, "Complete Personal Information Form", "   ")
        self.assertEqual(progress.completed_items, [])
        self.assertEqual(progress.form_data["Complete Personal Information Form"], "")

    def test_progress_only_counts_current_items(self) -> None:
        mark_item_done(self.db, self.intern, "Sign Internship Agreement")
        remaining = [item for item in DEFAULT_COUNTY_ITEMS if item["name"] != "Sign Internship Agreement"]

        replace_items(self.db, key="47", items=remaining, actor=session_of(self.hr))
        progress = get_progress(self.db, self.intern)

        self.assertEqual(len(progress.items), 5)
        self.assertEqual(progress.completed_items, [])
        self.assertEqual(progress.percentage, 0.0)

    def test_attachee_uses_attachee_checklist(self) -> None:
        attachee, _profile = make_trainee(self.db, email="attachee@example.com", role=UserRole.ATTACHEE)
        progress = get_progress(self.db, attachee)
        self.assertEqual(progress.key, "attachee")
        self.assertIn("Submit Institution Introduction Letter", [item["name"] for item in progress.items])


class ChecklistAdministrationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.hr = make_user(self.db, role=UserRole.HR, email="hr@example.com")
        self.mentor = make_user(self.db, role=UserRole.MENTOR, email="mentor@example.com")

    def tearDown(self) -> None:
        self.db.close()

    def test_new_checklist_starts_from_hr_template(self) -> None:
        checklist = create_checklist(self.db, key=" 12 ", items=None, actor=session_of(self.hr))
        self.assertEqual(checklist.key, "12")
        self.assertEqual([item["name"] for item in checklist.items], [item["name"] for item in NEW_CHECKLIST_ITEMS])

        with self.assertRaises(ApiError) as ctx:
            create_checklist(self.db, key="12", items=[], actor=session_of(self.hr))
        self.assertEqual(ctx.exception.code, "CHECKLIST_EXISTS")

    def test_adding_duplicate_item_conflicts(self) -> None:
        create_checklist(self.db, key="9", items=["Sign NDA"], actor=session_of(self.hr))
        with self.assertRaises(ApiError) as ctx:
            add_item(
                self.db,
                key="9",
                item=ChecklistItem(name="Sign NDA", type="checkbox"),
                actor=session_of(self.hr),
            )
        self.assertEqual(ctx.exception.code, "DUPLICATE_ITEM")

    def test_deleted_checklist_is_gone(self) -> None:
        create_checklist(self.db, key="30", items=["Sign NDA"], actor=session_of(self.hr))

        delete_checklist(self.db, key="30", actor=session_of(self.hr))

        with self.assertRaises(NotFound):
            get_checklist(self.db, "30")

    def test_only_hr_manages_checklists(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            create_checklist(self.db, key="3", items=None, actor=session_of(self.mentor))
        self.assertEqual(ctx.exception.code, "UNAUTHORIZED")

    def test_seeding_keeps_existing_checklists(self) -> None:
        create_checklist(self.db, key="47", items=["Custom step"], actor=session_of(self.hr))

        written = seed_county_checklists(self.db)

        self.assertEqual(sorted(written), sorted(str(code) for code in COUNTY_TEMPLATES if code != 47))
        self.assertEqual(self.db.get(Checklist, "47").items, [{"name": "Custom step", "type": "checkbox", "required": True}])

        written = seed_county_checklists(self.db, overwrite=True)
        self.assertIn("47", written)
        self.assertEqual(len(self.db.get(Checklist, "47").items), len(COUNTY_TEMPLATES[47]))


if __name__ == "__main__":
    unittest.main()
