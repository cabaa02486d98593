"""Media data models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(slots=True, frozen=True)
class MediaRef:
    """Reference to a blob held by the media store."""

    path: str
    mime_type: str
    size_bytes: int
    captured_at: datetime | None = None
    url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "mimeType": self.mime_type,
            "sizeBytes": self.size_bytes,
            "capturedAt": self.captured_at.isoformat() if self.captured_at else None,
            "url": self.url,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MediaRef":
        captured_at = data.get("capturedAt")
        return cls(
            path=data["path"],
            mime_type=data.get("mimeType") or "application/octet-stream",
            size_bytes=int(data.get("sizeBytes") or 0),
            captured_at=datetime.fromisoformat(captured_at) if captured_at else None,
            url=data.get("url"),
        )

    @property
    def is_video(self) -> bool:
        return self.mime_type.startswith("video/")
