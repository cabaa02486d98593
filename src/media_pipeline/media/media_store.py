"""Blob storage for pipeline inputs and outputs."""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Protocol

from ..config import MediaPaths
from .media_models import MediaRef

logger = logging.getLogger(__name__)


class MediaStoreError(Exception):
    """Raised when the store cannot read or write a blob."""


class MediaNotFoundError(MediaStoreError, KeyError):
    """Raised when a path does not exist in the store."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "media not found"


class InvalidMediaPathError(MediaStoreError, ValueError):
    """Raised for absolute paths, parent references or URLs."""


def normalize_store_path(path: str) -> str:
    """Validate a store-relative path and return its canonical POSIX form."""
    if not path or not path.strip():
        raise InvalidMediaPathError("Media path is empty")
    if "://" in path:
        raise InvalidMediaPathError(f"Media path must not be a URL: {path}")
    candidate = PurePosixPath(path.strip())
    if candidate.is_absolute():
        raise InvalidMediaPathError(f"Media path must be relative: {path}")
    if any(part == ".." for part in candidate.parts):
        raise InvalidMediaPathError(f"Media path must not contain '..': {path}")
    return candidate.as_posix()


class MediaStore(Protocol):
    """Content store addressed by relative path."""

    def read(self, path: str) -> bytes: ...

    def write(self, path: str, data: bytes, content_type: str) -> MediaRef: ...

    def exists(self, path: str) -> bool: ...

    def url_for(self, path: str) -> str: ...


@dataclass(slots=True)
class LocalMediaStore:
    """Media store backed by a directory on the local filesystem."""

    paths: MediaPaths
    log: logging.Logger = field(default_factory=lambda: logger)

    def _resolve(self, path: str) -> Path:
        return self.paths.root / normalize_store_path(path)

    def read(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            return target.read_bytes()
        except FileNotFoundError as exc:
            raise MediaNotFoundError(f"Media not found: {path}") from exc
        except OSError as exc:
            raise MediaStoreError(f"Failed to read media {path}: {exc}") from exc

    def write(self, path: str, data: bytes, content_type: str) -> MediaRef:
        canonical = normalize_store_path(path)
        target = self.paths.root / canonical
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".upload-")
            try:
                with os.fdopen(fd, "wb") as sink:
                    sink.write(data)
                os.replace(tmp_name, target)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise MediaStoreError(f"Failed to write media {path}: {exc}") from exc

        self.log.info(
            "media.store.written",
            extra={"path": canonical, "size_bytes": len(data), "content_type": content_type},
        )
        return MediaRef(
            path=canonical,
            mime_type=content_type,
            size_bytes=len(data),
            url=self.url_for(canonical),
        )

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()

    def url_for(self, path: str) -> str:
        return f"{self.paths.public_base_url}/{normalize_store_path(path)}"
