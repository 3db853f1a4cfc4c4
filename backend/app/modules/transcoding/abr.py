"""Adaptive bitrate ladder and rendition selection.

The ladder drives both encoding strategies; the selector picks the
rendition a client should start playback with.
"""

from typing import Iterable, Optional, Protocol, Sequence

from app.modules.transcoding.schemas import QualityRung


# Segment length shared by the local encoder and the cloud job so that
# playlists are structurally comparable regardless of strategy.
SEGMENT_DURATION_SECONDS = 10

# Share of measured bandwidth a rendition may use (overhead and fluctuation).
BANDWIDTH_HEADROOM = 0.8

AUDIO_BITRATE = 128000  # bps


DEFAULT_QUALITY_LADDER: tuple[QualityRung, ...] = (
    QualityRung(name="240p", bitrate=400, crf=28, width=426, height=240),
    QualityRung(name="360p", bitrate=800, crf=25, width=640, height=360),
    QualityRung(name="480p", bitrate=1200, crf=23, width=854, height=480),
    QualityRung(name="720p", bitrate=2500, crf=21, width=1280, height=720),
    QualityRung(name="1080p", bitrate=5000, crf=20, width=1920, height=1080),
)


class HasBitrate(Protocol):
    quality: str
    bitrate: int


def build_ladder(raw: Optional[Iterable[dict]]) -> tuple[QualityRung, ...]:
    """Build a ladder from configuration, falling back to the default."""
    rungs = tuple(QualityRung(**entry) for entry in (raw or ()))
    return rungs or DEFAULT_QUALITY_LADDER


def validate_quality_ladder(ladder: Sequence[QualityRung]) -> tuple[bool, list[str]]:
    """Validate a quality ladder.

    Returns:
        Tuple of (is_valid, error_messages)
    """
    errors = []

    if not ladder:
        errors.append("Quality ladder must have at least one rung")

    names = [rung.name for rung in ladder]
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        errors.append(f"Duplicate quality labels: {', '.join(duplicates)}")

    for rung in ladder:
        if rung.width % 2 or rung.height % 2:
            errors.append(f"{rung.name} dimensions must be even for H.264")

    return len(errors) == 0, errors


def lowest_rung(ladder: Sequence[QualityRung]) -> QualityRung:
    """Rung with the smallest bitrate."""
    return min(ladder, key=lambda rung: (rung.bitrate, rung.name))


def target_bitrate_for(bandwidth_kbps: float) -> float:
    """Highest rendition bitrate (kbps) a client with this bandwidth should get."""
    return bandwidth_kbps * BANDWIDTH_HEADROOM


def select_optimal_quality(
    renditions: Iterable[HasBitrate],
    bandwidth_kbps: float,
    default: str,
) -> str:
    """Pick the starting rendition for a measured bandwidth.

    Walks renditions from the lowest to the highest bitrate and keeps the
    last one whose bitrate fits in the target. When none fits, the lowest
    bitrate rendition is used; with no renditions at all, ``default``.
    """
    ordered = sorted(renditions, key=lambda r: (r.bitrate, r.quality))
    if not ordered:
        return default

    target = target_bitrate_for(bandwidth_kbps)
    selected = ordered[0]
    for rendition in ordered:
        if rendition.bitrate <= target:
            selected = rendition
        else:
            break

    return selected.quality


def exceeds_failure_threshold(total: int, failed: int, max_failure_ratio: float) -> bool:
    """Decide whether a run with ``failed`` of ``total`` rungs failing is Failed.

    A run with zero successful rungs always fails. Otherwise it fails when
    the failed share is strictly greater than ``max_failure_ratio``; the
    default ratio of 1.0 therefore only fails runs that produced nothing.
    """
    if total <= 0 or failed >= total:
        return True
    return failed / total > max_failure_ratio
