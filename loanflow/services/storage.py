from __future__ import annotations

import hashlib
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Protocol, Sequence

from loanflow.config import settings
from loanflow.core.errors import NotFound, ValidationFailed

logger = logging.getLogger("loanflow.storage")

_URL_SCHEME = "file://"


@dataclass(frozen=True)
class IncomingFile:
    file_name: str
    content: bytes
    mime_type: str

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class StoredFile:
    url: str
    key: str
    file_name: str
    file_size: int
    mime_type: str
    checksum: str


class StorageBackend(Protocol):
    def upload_files(
        self,
        files: Sequence[IncomingFile],
        *,
        folder: str,
        allowed_mime_types: Iterable[str] | None = None,
        max_size_bytes: int | None = None,
    ) -> list[StoredFile]: ...

    def get_file(self, key: str) -> bytes: ...

    def extract_key_from_url(self, url: str) -> str: ...

    def delete_file(self, key: str) -> None: ...


def storage_root() -> Path:
    """Absolute storage root for this instance."""

    root = Path(settings.storage_dir)
    if root.is_absolute():
        return root
    repo_root = Path(__file__).resolve().parents[2]
    return (repo_root / root).resolve()


def check_file_constraints(
    files: Sequence[IncomingFile],
    *,
    allowed_mime_types: Iterable[str] | None = None,
    max_size_bytes: int | None = None,
) -> None:
    allowed = {str(m).lower() for m in (allowed_mime_types or [])}
    for f in files:
        if allowed and str(f.mime_type).lower() not in allowed:
            raise ValidationFailed(
                f"File type {f.mime_type} is not allowed for {f.file_name}",
                file_name=f.file_name,
            )
        if max_size_bytes is not None and f.size > int(max_size_bytes):
            raise ValidationFailed(
                f"File {f.file_name} exceeds the maximum size of {int(max_size_bytes)} bytes",
                file_name=f.file_name,
            )


class LocalStorage:
    """Stores objects under ``storage_root()`` and hands out ``file://`` URLs.

    Writes are atomic (tmp file then replace). Keys are relative POSIX paths
    so that they can be resolved back with ``get_file``.
    """

    def __init__(self, root: Path | None = None) -> None:
        self._root = root

    @property
    def root(self) -> Path:
        return (self._root or storage_root()).resolve()

    def _resolve(self, key: str) -> Path:
        root = self.root
        target = (root / key).resolve()
        if not target.is_relative_to(root):
            raise ValidationFailed("Invalid storage key", key=key)
        return target

    def upload_files(
        self,
        files: Sequence[IncomingFile],
        *,
        folder: str,
        allowed_mime_types: Iterable[str] | None = None,
        max_size_bytes: int | None = None,
    ) -> list[StoredFile]:
        check_file_constraints(
            files, allowed_mime_types=allowed_mime_types, max_size_bytes=max_size_bytes
        )

        stored: list[StoredFile] = []
        for f in files:
            safe_name = Path(f.file_name).name or "upload.bin"
            key = f"{folder.strip('/')}/{uuid.uuid4().hex}_{safe_name}"
            target = self._resolve(key)
            target.parent.mkdir(parents=True, exist_ok=True)

            tmp_path = target.with_suffix(target.suffix + ".tmp")
            tmp_path.write_bytes(f.content)
            tmp_path.replace(target)

            stored.append(
                StoredFile(
                    url=f"{_URL_SCHEME}{target.as_posix()}",
                    key=key,
                    file_name=safe_name,
                    file_size=f.size,
                    mime_type=f.mime_type or "application/octet-stream",
                    checksum=f"sha256:{hashlib.sha256(f.content).hexdigest()}",
                )
            )
        logger.info("storage_upload", extra={"folder": folder, "count": len(stored)})
        return stored

    def get_file(self, key: str) -> bytes:
        target = self._resolve(key)
        if not target.exists():
            raise NotFound("File not found", key=key)
        return target.read_bytes()

    def extract_key_from_url(self, url: str) -> str:
        if not url.startswith(_URL_SCHEME):
            raise ValidationFailed("Unsupported storage URL", url=url)
        path = Path(url[len(_URL_SCHEME) :]).resolve()
        root = self.root
        if not path.is_relative_to(root):
            raise ValidationFailed("Storage URL is outside the storage root", url=url)
        return path.relative_to(root).as_posix()

    def delete_file(self, key: str) -> None:
        target = self._resolve(key)
        target.unlink(missing_ok=True)


_default_storage: StorageBackend | None = None


def get_storage() -> StorageBackend:
    global _default_storage
    if _default_storage is None:
        _default_storage = LocalStorage()
    return _default_storage
