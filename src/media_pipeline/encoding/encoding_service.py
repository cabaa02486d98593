"""Encoding stage: crop, overlay and encode media with ffmpeg."""

from __future__ import annotations

import logging
import tempfile
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from ..config import EncodingSettings
from ..media.media_helpers import extension_for, sniff_image_mime
from .encoding_errors import EncodingError, EncodingFailureKind
from .ffmpeg import TIMEOUTS, FfmpegRunner, sequence_timeout, validate_input_file

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class EncodedMedia:
    data: bytes
    content_type: str
    extension: str
    width: int
    height: int


@dataclass(slots=True)
class EncodingService:
    """Turn input buffers into the final asset for one output format.

    The service is stateless apart from its settings; it never touches the
    session or the media store. All work happens inside a private temporary
    directory removed before returning.
    """

    settings: EncodingSettings
    runner: FfmpegRunner
    log: logging.Logger = field(default_factory=lambda: logger)

    def dimensions(self, aspect_ratio: str) -> tuple[int, int]:
        try:
            return self.settings.dimensions[aspect_ratio]
        except KeyError as exc:
            raise EncodingError(
                f"Unsupported aspect ratio '{aspect_ratio}'", EncodingFailureKind.VALIDATION
            ) from exc

    def encode(
        self,
        output_format: str,
        frames: Sequence[bytes],
        aspect_ratio: str,
        overlay: bytes | None = None,
        *,
        video_input: bool = False,
    ) -> EncodedMedia:
        """Encode ``frames`` into ``output_format``.

        ``video_input`` marks a single captured clip to transcode instead of a
        still-frame sequence; it is only honoured for ``video`` output.
        """
        if not frames:
            raise EncodingError("No frames to encode", EncodingFailureKind.VALIDATION)
        width, height = self.dimensions(aspect_ratio)

        with tempfile.TemporaryDirectory(prefix="encode-") as tmp:
            workdir = Path(tmp)
            overlay_file = self._write_overlay(workdir, overlay)
            if output_format == "image":
                source = self._write_frame(workdir, 0, frames[0])
                output = workdir / "output.jpg"
                self._encode_image(source, overlay_file, output, width, height)
                content_type = "image/jpeg"
            elif output_format == "gif":
                sources = [self._write_frame(workdir, i, data) for i, data in enumerate(frames)]
                output = workdir / "output.gif"
                self._encode_gif(workdir, sources, overlay_file, output, width, height)
                content_type = "image/gif"
            elif output_format == "video":
                output = workdir / "output.mp4"
                if video_input:
                    source = workdir / "input-video"
                    source.write_bytes(frames[0])
                    validate_input_file(source)
                    self._transcode_video(source, overlay_file, output, width, height)
                else:
                    sources = [
                        self._write_frame(workdir, i, data) for i, data in enumerate(frames)
                    ]
                    self._encode_video(workdir, sources, overlay_file, output, width, height)
                content_type = "video/mp4"
            else:
                raise EncodingError(
                    f"Unsupported output format '{output_format}'",
                    EncodingFailureKind.VALIDATION,
                )

            if not output.is_file() or output.stat().st_size == 0:
                raise EncodingError(
                    f"ffmpeg produced no {output_format} output", EncodingFailureKind.UNKNOWN
                )
            data = output.read_bytes()

        self.log.info(
            "encoding.completed",
            extra={
                "output_format": output_format,
                "aspect_ratio": aspect_ratio,
                "frame_count": len(frames),
                "overlay": overlay is not None,
                "size_bytes": len(data),
            },
        )
        return EncodedMedia(
            data=data,
            content_type=content_type,
            extension=extension_for(content_type),
            width=width,
            height=height,
        )

    def _encode_image(
        self, source: Path, overlay: Path | None, output: Path, width: int, height: int
    ) -> None:
        args = ["-i", str(source)]
        if overlay is not None:
            args += ["-i", str(overlay)]
        args += [
            "-filter_complex",
            _filter_graph(width, height, overlay is not None),
            "-map",
            "[out]",
            "-frames:v",
            "1",
            "-q:v",
            "2",
            str(output),
        ]
        timeout = TIMEOUTS["overlay"] if overlay is not None else TIMEOUTS["image"]
        self.runner.run(args, timeout=timeout, description="image encode")

    def _encode_gif(
        self,
        workdir: Path,
        sources: Sequence[Path],
        overlay: Path | None,
        output: Path,
        width: int,
        height: int,
    ) -> None:
        playlist = _write_concat_list(workdir, sources, 1.0 / self.settings.gif_fps)
        args = ["-f", "concat", "-safe", "0", "-i", str(playlist)]
        if overlay is not None:
            args += ["-i", str(overlay)]
        graph = _filter_graph(
            width, height, overlay is not None, fps=self.settings.gif_fps, label="[frames]"
        )
        graph += (
            ";[frames]split[a][b];[a]palettegen=stats_mode=diff[palette];"
            "[b][palette]paletteuse=dither=bayer:bayer_scale=5:diff_mode=rectangle[out]"
        )
        args += ["-filter_complex", graph, "-map", "[out]", "-loop", "0", str(output)]
        self.runner.run(
            args, timeout=sequence_timeout("gif", len(sources)), description="gif encode"
        )

    def _encode_video(
        self,
        workdir: Path,
        sources: Sequence[Path],
        overlay: Path | None,
        output: Path,
        width: int,
        height: int,
    ) -> None:
        playlist = _write_concat_list(workdir, sources, 1.0 / self.settings.video_fps)
        args = ["-f", "concat", "-safe", "0", "-i", str(playlist)]
        if overlay is not None:
            args += ["-i", str(overlay)]
        graph = _filter_graph(width, height, overlay is not None, fps=self.settings.video_fps)
        args += ["-filter_complex", graph, "-map", "[out]", *_H264_ARGS, str(output)]
        self.runner.run(
            args, timeout=sequence_timeout("video", len(sources)), description="video encode"
        )

    def _transcode_video(
        self, source: Path, overlay: Path | None, output: Path, width: int, height: int
    ) -> None:
        args = ["-i", str(source)]
        if overlay is not None:
            args += ["-i", str(overlay)]
        graph = _filter_graph(width, height, overlay is not None)
        args += ["-filter_complex", graph, "-map", "[out]", *_H264_ARGS, str(output)]
        self.runner.run(args, timeout=TIMEOUTS["video_long"], description="video transcode")

    @staticmethod
    def _write_frame(workdir: Path, index: int, data: bytes) -> Path:
        extension = extension_for(sniff_image_mime(data, "application/octet-stream"))
        path = workdir / f"frame-{index:03d}.{extension}"
        path.write_bytes(data)
        validate_input_file(path)
        return path

    @staticmethod
    def _write_overlay(workdir: Path, overlay: bytes | None) -> Path | None:
        if overlay is None:
            return None
        path = workdir / "overlay.png"
        path.write_bytes(overlay)
        validate_input_file(path)
        return path


_H264_ARGS = (
    "-c:v",
    "libx264",
    "-preset",
    "medium",
    "-crf",
    "22",
    "-pix_fmt",
    "yuv420p",
    "-movflags",
    "+faststart",
    "-an",
)


def _filter_graph(
    width: int,
    height: int,
    with_overlay: bool,
    *,
    fps: int | None = None,
    label: str = "[out]",
) -> str:
    """Scale-to-fill, centre crop and optionally composite input 1 on top."""
    base = (
        f"[0:v]scale={width}:{height}:force_original_aspect_ratio=increase,"
        f"crop={width}:{height},setsar=1"
    )
    if fps is not None:
        base += f",fps={fps}"
    if not with_overlay:
        return f"{base}{label}"
    return f"{base}[base];[1:v]scale={width}:{height}[ov];[base][ov]overlay=0:0{label}"


def _write_concat_list(workdir: Path, sources: Sequence[Path], duration: float) -> Path:
    # The concat demuxer ignores the duration of the final entry unless it is repeated.
    lines = ["ffconcat version 1.0"]
    for source in sources:
        lines.append(f"file '{source.name}'")
        lines.append(f"duration {duration:.6f}")
    lines.append(f"file '{sources[-1].name}'")
    playlist = workdir / "frames.txt"
    playlist.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return playlist
