from __future__ import annotations


class StorageProvider:
    def upload(self, key: str, data: bytes, content_type: str | None = None) -> str:
        """Store ``data`` under ``key`` and return the reference to persist."""
        raise NotImplementedError

    def get_url(self, ref: str) -> str | None:
        raise NotImplementedError

    def exists(self, ref: str) -> bool:
        raise NotImplementedError

    def open(self, ref: str) -> bytes:
        raise NotImplementedError

    def delete(self, ref: str) -> None:
        raise NotImplementedError


class StorageError(RuntimeError):
    pass


def document_key(user_id: int, item_name: str, filename: str) -> str:
    return f"documents/{user_id}/{_safe_segment(item_name)}/{_safe_segment(filename)}"


def _safe_segment(value: str) -> str:
    cleaned = "".join(ch if ch.isalnum() or ch in "._- " else "_" for ch in (value or "").strip())
    cleaned = cleaned.strip(" .") or "file"
    return cleaned.replace(" ", "_")[:120]
