"""
Local filesystem storage for onboarding documents.
"""
from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from urllib.parse import quote

from internhub.settings import get_public_base_url, get_settings
from internhub.storage.provider import StorageError, StorageProvider

logger = logging.getLogger("internhub.storage")


class LocalStorageProvider(StorageProvider):
    def __init__(self, base_dir: str = "var/storage"):
        self.base_dir = Path(base_dir).resolve()

    def _get_path(self, key: str) -> Path:
        clean_key = key.lstrip("/").replace("\\", "/")
        path = (self.base_dir / clean_key).resolve()
        if self.base_dir not in path.parents:
            raise StorageError(f"Storage key escapes the storage root: {key!r}")
        return path

    def upload(self, key: str, data: bytes, content_type: str | None = None) -> str:
        path = self._get_path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as exc:
            logger.exception("storage_upload_failed", extra={"key": key})
            raise StorageError(str(exc)) from exc
        logger.info(
            "storage_upload",
            extra={"key": key, "size": len(data), "content_type": content_type},
        )
        return key.lstrip("/")

    def get_url(self, ref: str) -> str | None:
        if not self.exists(ref):
            return None
        return f"{get_public_base_url()}/files/{quote(ref.lstrip('/'))}"

    def exists(self, ref: str) -> bool:
        try:
            return self._get_path(ref).is_file()
        except StorageError:
            return False

    def open(self, ref: str) -> bytes:
        path = self._get_path(ref)
        if not path.is_file():
            raise StorageError(f"No stored object for {ref!r}")
        return path.read_bytes()

    def path_for(self, ref: str) -> Path:
        return self._get_path(ref)

    def delete(self, ref: str) -> None:
        path = self._get_path(ref)
        if path.exists():
            path.unlink()


@lru_cache
def get_storage_provider() -> StorageProvider:
    return LocalStorageProvider(get_settings().storage_dir)
