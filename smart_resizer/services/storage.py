from __future__ import annotations

import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath

from smart_resizer.models.jobs import StoredObject

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    """Raised when a storage operation fails in a non-recoverable way."""


def result_path(job_id: str, format_id: str) -> str:
    """Storage key for a format artifact; stable across re-runs."""
    return f"smart-resizer/{job_id}/{format_id}.png"


class ObjectStorage(ABC):
    """
    Durable byte storage addressed by relative POSIX paths.

    `put` must be overwrite-safe: writing the same path twice leaves exactly
    one object holding the latest bytes.
    """

    @abstractmethod
    def put(self, path: str, data: bytes, content_type: str = "image/png") -> StoredObject: ...

    @abstractmethod
    def get(self, path: str) -> bytes: ...


class LocalObjectStorage(ObjectStorage):
    """
    Filesystem-backed storage with URLs served under a public base.

    Writes go to a temporary file in the destination directory and are then
    renamed into place, so readers never see a partially written artifact.
    """

    def __init__(self, root: Path, public_base_url: str) -> None:
        self._root = Path(root)
        self._public_base_url = public_base_url.rstrip("/")
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def _resolve(self, path: str) -> Path:
        relative = PurePosixPath(path)
        if relative.is_absolute() or ".." in relative.parts or not relative.parts:
            raise StorageError(f"Invalid storage path {path!r}")
        return self._root.joinpath(*relative.parts)

    def public_url(self, path: str) -> str:
        return f"{self._public_base_url}/{path}"

    def put(self, path: str, data: bytes, content_type: str = "image/png") -> StoredObject:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.")
            try:
                with os.fdopen(fd, "wb") as handle:
                    handle.write(data)
                os.replace(tmp_name, target)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise StorageError(f"Failed to write {path}: {exc}") from exc

        logger.debug("Stored %d bytes (%s) at %s", len(data), content_type, target)
        return StoredObject(path=path, public_url=self.public_url(path))

    def get(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            return target.read_bytes()
        except OSError as exc:
            raise StorageError(f"Failed to read {path}: {exc}") from exc
