"""FFmpeg encoding utilities.

Produces one segmented HLS rendition per quality rung and probes source
files for metadata and thumbnails.
"""

import json
import logging
import os
import subprocess
from dataclasses import dataclass, field
from fractions import Fraction
from pathlib import Path
from typing import Optional

from app.modules.transcoding.abr import AUDIO_BITRATE, SEGMENT_DURATION_SECONDS
from app.modules.transcoding.exceptions import RenditionEncodingError, TranscodingError
from app.modules.transcoding.schemas import QualityRung

logger = logging.getLogger(__name__)

# stderr kept on failed encodes
_STDERR_TAIL_CHARS = 2000


@dataclass
class VideoMetadata:
    """Source file properties read with ffprobe."""
    duration: int  # seconds
    width: int = 0
    height: int = 0
    bitrate: int = 0  # kbps
    fps: float = 0.0
    codec: str = "unknown"
    audio_codec: str = "unknown"


@dataclass
class EncodedRendition:
    """Files written for one quality rung."""
    quality: str
    playlist_path: str
    segment_paths: list[str] = field(default_factory=list)
    file_size: int = 0  # playlist plus segments, bytes


def playlist_filename(quality: str) -> str:
    return f"{quality}.m3u8"


def segment_pattern(quality: str) -> str:
    return f"{quality}_%03d.ts"


def _parse_frame_rate(value: Optional[str]) -> float:
    if not value:
        return 0.0
    try:
        return float(Fraction(value))
    except (ValueError, ZeroDivisionError):
        return 0.0


class FFmpegTranscoder:
    """FFmpeg-based HLS encoder for a single quality rung."""

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        ffprobe_path: str = "ffprobe",
        preset: str = "fast",
        keyframe_interval: int = 2,
        timeout: Optional[float] = None,
    ):
        """Initialize transcoder.

        Args:
            ffmpeg_path: Path to ffmpeg binary
            ffprobe_path: Path to ffprobe binary
            preset: x264 preset
            keyframe_interval: Keyframe interval in seconds
            timeout: Optional wall-clock limit per ffmpeg invocation
        """
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.preset = preset
        self.keyframe_interval = keyframe_interval
        self.timeout = timeout

    def get_video_info(self, input_path: str) -> dict:
        """Get raw ffprobe output for a file.

        Raises:
            TranscodingError: If ffprobe fails or returns invalid JSON
        """
        cmd = [
            self.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            input_path,
        ]

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=True)
            return json.loads(result.stdout)
        except (OSError, subprocess.CalledProcessError, json.JSONDecodeError) as e:
            raise TranscodingError(f"Could not probe {input_path}: {e}") from e

    def probe_metadata(self, input_path: str) -> VideoMetadata:
        """Read duration, dimensions and codecs of a source file."""
        info = self.get_video_info(input_path)
        streams = info.get("streams", [])
        video_stream = next((s for s in streams if s.get("codec_type") == "video"), {})
        audio_stream = next((s for s in streams if s.get("codec_type") == "audio"), {})
        fmt = info.get("format", {})

        return VideoMetadata(
            duration=int(float(fmt.get("duration") or 0)),
            width=int(video_stream.get("width") or 0),
            height=int(video_stream.get("height") or 0),
            bitrate=int(float(fmt.get("bit_rate") or 0)) // 1000,
            fps=_parse_frame_rate(video_stream.get("r_frame_rate")),
            codec=video_stream.get("codec_name", "unknown"),
            audio_codec=audio_stream.get("codec_name", "unknown"),
        )

    def build_hls_command(
        self,
        input_path: str,
        rung: QualityRung,
        output_dir: str,
    ) -> list[str]:
        """Build the FFmpeg command producing one HLS rendition.

        Args:
            input_path: Source video
            rung: Target quality
            output_dir: Directory receiving the playlist and segments

        Returns:
            FFmpeg command as list of arguments
        """
        playlist_path = os.path.join(output_dir, playlist_filename(rung.name))
        segments = os.path.join(output_dir, segment_pattern(rung.name))
        width, height = rung.width, rung.height

        return [
            self.ffmpeg_path,
            "-y",
            "-i", input_path,
            # Video settings
            "-c:v", "libx264",
            "-preset", self.preset,
            "-crf", str(rung.crf),
            "-b:v", f"{rung.bitrate}k",
            "-maxrate", f"{rung.bitrate}k",
            "-bufsize", f"{rung.bitrate * 2}k",
            "-vf", f"scale={width}:{height}:force_original_aspect_ratio=decrease,pad={width}:{height}:(ow-iw)/2:(oh-ih)/2",
            "-g", str(self.keyframe_interval * 30),  # assuming 30fps
            "-sc_threshold", "0",
            # Audio settings
            "-c:a", "aac",
            "-b:a", str(AUDIO_BITRATE),
            "-ar", "48000",
            "-ac", "2",
            # Segmented output
            "-f", "hls",
            "-hls_time", str(SEGMENT_DURATION_SECONDS),
            "-hls_list_size", "0",
            "-hls_playlist_type", "vod",
            "-hls_segment_filename", segments,
            "-start_number", "0",
            playlist_path,
        ]

    def encode_rendition(
        self,
        input_path: str,
        rung: QualityRung,
        output_dir: str,
    ) -> EncodedRendition:
        """Encode one quality rung into a playlist plus numbered segments.

        Raises:
            RenditionEncodingError: On non-zero exit or missing output
        """
        os.makedirs(output_dir, exist_ok=True)
        cmd = self.build_hls_command(input_path, rung, output_dir)
        logger.debug("FFmpeg command: %s", " ".join(cmd))

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise RenditionEncodingError(rung.name, f"timed out after {e.timeout}s") from e
        except OSError as e:
            raise RenditionEncodingError(rung.name, str(e)) from e

        if result.returncode != 0:
            raise RenditionEncodingError(
                rung.name,
                (result.stderr or "").strip()[-_STDERR_TAIL_CHARS:] or "ffmpeg failed",
                exit_code=result.returncode,
            )

        playlist_path = Path(output_dir) / playlist_filename(rung.name)
        if not playlist_path.is_file():
            raise RenditionEncodingError(rung.name, f"playlist {playlist_path} was not written")

        segment_paths = sorted(str(p) for p in Path(output_dir).glob(f"{rung.name}_*.ts"))
        if not segment_paths:
            raise RenditionEncodingError(rung.name, "no segments were written")

        file_size = playlist_path.stat().st_size + sum(
            os.path.getsize(p) for p in segment_paths
        )

        return EncodedRendition(
            quality=rung.name,
            playlist_path=str(playlist_path),
            segment_paths=segment_paths,
            file_size=file_size,
        )

    def generate_thumbnail(
        self,
        input_path: str,
        output_path: str,
        at_seconds: float = 0.0,
        size: str = "320x180",
    ) -> str:
        """Extract a single frame as a JPEG thumbnail.

        Raises:
            TranscodingError: If ffmpeg fails
        """
        os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
        cmd = [
            self.ffmpeg_path,
            "-y",
            "-ss", f"{at_seconds:.3f}",
            "-i", input_path,
            "-frames:v", "1",
            "-s", size,
            output_path,
        ]

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise TranscodingError(f"Thumbnail extraction failed: {e}") from e

        if result.returncode != 0 or not os.path.exists(output_path):
            raise TranscodingError(
                f"Thumbnail extraction failed: {(result.stderr or '').strip()[-500:]}"
            )
        return output_path
