"""Resolution of branded overlay frames for a project."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .media_store import MediaNotFoundError, MediaStore

logger = logging.getLogger(__name__)


def overlay_path(project_id: str, aspect_ratio: str) -> str:
    return f"projects/{project_id}/overlays/{aspect_ratio}.png"


@dataclass(slots=True)
class OverlayResolver:
    """Load the overlay PNG configured for a project and aspect ratio."""

    media_store: MediaStore
    log: logging.Logger = field(default_factory=lambda: logger)

    def load(self, project_id: str, aspect_ratio: str) -> bytes | None:
        """Return overlay bytes, or ``None`` when the project has none configured."""
        path = overlay_path(project_id, aspect_ratio)
        try:
            data = self.media_store.read(path)
        except MediaNotFoundError:
            self.log.info(
                "overlay.not_configured",
                extra={"project_id": project_id, "aspect_ratio": aspect_ratio},
            )
            return None
        self.log.info(
            "overlay.loaded",
            extra={"project_id": project_id, "aspect_ratio": aspect_ratio, "size_bytes": len(data)},
        )
        return data
