"""
Quality ladder and playback URL resolution.

Pure functions over plain data: given a source asset URL, the stored quality
labels and an optional requested quality, derive the renditions a player can
choose from and the URL for each.

Labels:
- AUTO: automatic-quality progressive rendition (default)
- MAX: the untransformed source asset
- 2160p ... 144p: height-capped renditions
"""

import re
from typing import Dict, Iterable, List, Optional

QUALITY_HEIGHTS_DESC = [2160, 1440, 1080, 720, 480, 360, 240, 144]
FALLBACK_MANUAL_QUALITIES = ["1080p", "720p", "480p"]
MIN_MANUAL_QUALITY = "144p"

AUTO = "AUTO"
MAX = "MAX"

VIDEO_UPLOAD_MARKER = "/video/upload/"
AUTO_TRANSFORMATION = "q_auto:good"

_MAX_ALIASES = ("max", "original", "source")


def _parse_positive_int(value) -> Optional[int]:
    match = re.match(r"^\s*([+-]?\d+)", str(value if value is not None else ""))
    if not match:
        return None
    parsed = int(match.group(1))
    return parsed if parsed > 0 else None


def _manual_label(height: int) -> str:
    return f"{height}p"


def _label_height(label: str) -> Optional[int]:
    return _parse_positive_int(label[:-1] if label.lower().endswith("p") else label)


def to_canonical_quality(value) -> Optional[str]:
    """
    Map a user or stored quality label onto the canonical set.

    "auto" -> AUTO; "max"/"original"/"source" -> MAX; "720" or "720p" -> "720p"
    when 720 is a ladder rung. Anything else (including "4k") -> None.
    """
    normalized = str(value if value is not None else "").strip().lower()
    if not normalized:
        return None

    if normalized == "auto":
        return AUTO
    if normalized in _MAX_ALIASES:
        return MAX

    height = _parse_positive_int(normalized[:-1] if normalized.endswith("p") else normalized)
    if not height or height not in QUALITY_HEIGHTS_DESC:
        return None

    return _manual_label(height)


def build_available_manual_qualities_from_height(source_height) -> List[str]:
    """Every ladder rung at or below the source height (at least 144p)."""
    height = _parse_positive_int(source_height)
    if not height:
        return list(FALLBACK_MANUAL_QUALITIES)

    rungs = [_manual_label(candidate) for candidate in QUALITY_HEIGHTS_DESC if candidate <= height]
    return rungs or [MIN_MANUAL_QUALITY]


def normalize_available_qualities(
    raw_qualities: Optional[Iterable[str]],
    source_height: Optional[int] = None,
) -> List[str]:
    """
    Canonicalize stored quality labels into [AUTO, MAX, <manual rungs desc>].

    Unknown labels are dropped. When no manual rung survives the ladder is
    derived from the source height, or the fixed fallback when that is unknown.
    """
    canonical = []
    for raw in raw_qualities or []:
        quality = to_canonical_quality(raw)
        if quality:
            canonical.append(quality)

    manual = {quality for quality in canonical if quality.endswith("p")}
    if not manual:
        manual.update(build_available_manual_qualities_from_height(source_height))

    ordered = sorted(manual, key=lambda label: _label_height(label) or 0, reverse=True)
    return [AUTO, MAX] + ordered


def apply_video_transformation(source_url: Optional[str], transformation: str) -> Optional[str]:
    """
    Splice a transformation segment right after the upload marker of a source URL.

    URLs without the marker are returned unchanged.
    """
    if not source_url or not isinstance(source_url, str):
        return source_url or None

    marker_index = source_url.find(VIDEO_UPLOAD_MARKER)
    if marker_index == -1:
        return source_url

    split_at = marker_index + len(VIDEO_UPLOAD_MARKER)
    prefix = source_url[:split_at]
    suffix = source_url[split_at:].lstrip("/")
    cleaned = str(transformation or "").strip().strip("/")

    if not cleaned:
        return f"{prefix}{suffix}"
    return f"{prefix}{cleaned}/{suffix}"


def build_auto_playback_url(source_url: Optional[str], current_playback_url: Optional[str] = None) -> Optional[str]:
    """Progressive auto-quality URL (not an adaptive manifest, so plain video tags can play it)."""
    if not source_url:
        return current_playback_url or None
    return apply_video_transformation(source_url, AUTO_TRANSFORMATION)


def build_manual_quality_url(source_url: Optional[str], quality: str) -> Optional[str]:
    if not source_url:
        return None

    canonical = to_canonical_quality(quality)
    if not canonical or canonical in (AUTO, MAX):
        return source_url

    height = _label_height(canonical)
    return apply_video_transformation(source_url, f"c_limit,h_{height},{AUTO_TRANSFORMATION}")


def build_quality_urls(
    source_url: Optional[str],
    playback_url: Optional[str] = None,
    available_qualities: Optional[Iterable[str]] = None,
) -> Dict[str, Optional[str]]:
    """Map every available quality label to its playback URL."""
    qualities = normalize_available_qualities(available_qualities)

    auto_url = build_auto_playback_url(source_url, playback_url) or source_url or None
    urls: Dict[str, Optional[str]] = {AUTO: auto_url, MAX: source_url or auto_url}

    for quality in qualities:
        if quality in (AUTO, MAX):
            continue
        urls[quality] = build_manual_quality_url(source_url or auto_url, quality)

    return urls


def resolve_requested_quality(requested, available_qualities: Optional[Iterable[str]]) -> str:
    """
    Pick the quality to serve: the requested one when available, else AUTO,
    else the first available entry. Never raises on garbage input.
    """
    qualities = normalize_available_qualities(available_qualities)
    canonical = to_canonical_quality(requested)

    if canonical and canonical in qualities:
        return canonical
    if AUTO in qualities:
        return AUTO
    return qualities[0]


def build_video_streaming_payload(
    source_url: Optional[str],
    playback_url: Optional[str] = None,
    available_qualities: Optional[Iterable[str]] = None,
    requested_quality: Optional[str] = None,
    source_height: Optional[int] = None,
    master_playlist_url: Optional[str] = None,
) -> dict:
    """
    Compose the player-facing streaming block.

    Returns:
        Dict with defaultQuality, selectedQuality, selectedPlaybackUrl,
        masterPlaylistUrl, availableQualities and qualityUrls. The master
        playlist falls back to the AUTO URL unless an explicit manifest URL
        is given.
    """
    qualities = normalize_available_qualities(available_qualities, source_height)
    quality_urls = build_quality_urls(source_url, playback_url, qualities)
    selected = resolve_requested_quality(requested_quality, qualities)
    selected_url = quality_urls.get(selected) or quality_urls.get(AUTO) or playback_url or source_url or None

    return {
        "defaultQuality": AUTO,
        "selectedQuality": selected,
        "selectedPlaybackUrl": selected_url,
        "masterPlaylistUrl": master_playlist_url or quality_urls.get(AUTO) or selected_url,
        "availableQualities": qualities,
        "qualityUrls": quality_urls,
    }
