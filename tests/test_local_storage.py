from __future__ import annotations

import tempfile
import unittest

from internhub.storage.local_provider import LocalStorageProvider
from internhub.storage.provider import StorageError, document_key


class DocumentKeyTests(unittest.TestCase):
    def test_segments_are_sanitised(self) -> None:
        self.assertEqual(
            document_key(7, "Submit KRA PIN Certificate", "../../etc/passwd"),
            "documents/7/Submit_KRA_PIN_Certificate/_.._etc_passwd",
        )
        self.assertEqual(document_key(7, "Bank / Account", "  "), "documents/7/Bank___Account/file")


class LocalStorageProviderTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.storage = LocalStorageProvider(self.tmp.name)

    def tearDown(self) -> None:
        self.tmp.cleanup()

    def test_upload_open_delete(self) -> None:
        ref = self.storage.upload("documents/1/id/id.pdf", b"pdf-bytes", "application/pdf")

        self.assertEqual(ref, "documents/1/id/id.pdf")
        self.assertTrue(self.storage.exists(ref))
        self.assertEqual(self.storage.open(ref), b"pdf-bytes")
        self.assertTrue(self.storage.get_url(ref).endswith("/files/documents/1/id/id.pdf"))

        self.storage.delete(ref)
        self.assertFalse(self.storage.exists(ref))
        self.assertIsNone(self.storage.get_url(ref))

    def test_keys_cannot_escape_the_root(self) -> None:
        with self.assertRaises(StorageError):
            self.storage.upload("../outside.txt", b"nope")
        self.assertFalse(self.storage.exists("../../etc/passwd"))

    def test_open_missing_object_fails(self) -> None:
        with self.assertRaises(StorageError):
            self.storage.open("documents/1/missing.pdf")


if __name__ == "__main__":
    unittest.main()
