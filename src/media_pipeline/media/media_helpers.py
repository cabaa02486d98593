"""Helpers shared by stages that read or produce media bytes."""

from __future__ import annotations

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
    "video/mp4": "mp4",
    "video/quicktime": "mov",
    "video/webm": "webm",
}


def sniff_image_mime(data: bytes, default: str = "image/png") -> str:
    """Detect the image MIME type from magic bytes."""
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    return default


def extension_for(content_type: str) -> str:
    return _EXTENSIONS.get(content_type, "bin")


def result_path(project_id: str, session_id: str, job_id: str, extension: str) -> str:
    """Deterministic output location for a job's final asset.

    Retried attempts of one job share ``job_id`` and therefore overwrite the
    same blob instead of leaving orphans behind.
    """
    return f"projects/{project_id}/sessions/{session_id}/results/{job_id}.{extension}"


__all__ = ["sniff_image_mime", "extension_for", "result_path"]
