"""Normalization of provider payloads into ``VideoRecord``.

Each provider gets a pure function mapping its ``data`` payload to a record.
Field lookups follow JavaScript-style fallback chains: a candidate that is
missing, ``None``, empty or zero falls through to the next one.
"""
from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from tiktok_downloader.domain.video import (
    Author,
    Quality,
    QualityOption,
    Statistics,
    VideoRecord,
)

TIKWM_BASE_URL: str = "https://www.tikwm.com"


class UnusablePayload(ValueError):
    """A provider answered, but the payload cannot produce a record."""


def _first(*values: Any) -> Any:
    """Return the first truthy value, or ``None``."""

    for value in values:
        if value:
            return value
    return None


def _dig(data: Any, *path: str) -> Any:
    """Walk nested dicts, returning ``None`` on the first missing step."""

    node: Any = data
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def _as_int(value: Any) -> int:
    """Coerce counters and durations to ``int``, defaulting to 0.

    Notes
    -----
    - Accepts ints, floats and numeric strings (some providers quote counters).
    - Booleans and anything unparsable map to 0.
    """

    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    try:
        return int(float(str(value).strip()))
    except ValueError:
        return 0


def _url(value: Any) -> Optional[str]:
    """Return ``value`` if it is a non-empty string, else ``None``."""

    return value if isinstance(value, str) and value else None


def _absolute(value: Any, base: str) -> Optional[str]:
    url: Optional[str] = _url(value)
    if url and url.startswith("/"):
        return f"{base}{url}"
    return url


def build_qualities(standard: Any, hd: Any, watermark: Any) -> list[QualityOption]:
    """Build the ordered quality list, skipping absent variants.

    Values that are not non-empty strings count as absent.
    """

    candidates: list[tuple[Quality, Optional[str]]] = [
        (Quality.STANDARD, _url(standard)),
        (Quality.HD, _url(hd)),
        (Quality.WATERMARK, _url(watermark)),
    ]
    return [QualityOption(quality=q, url=url) for q, url in candidates if url]


def _timestamp_id() -> str:
    return str(int(time.time() * 1000))


def _build_record(
    source: str,
    *,
    video_id: Any,
    title: Optional[str],
    description: Optional[str],
    author: Author,
    duration: Any,
    cover: Any,
    music: Any,
    statistics: Statistics,
    qualities: list[QualityOption],
) -> VideoRecord:
    if not qualities:
        raise UnusablePayload("No playable video URL")
    return VideoRecord(
        id=str(video_id) if video_id else _timestamp_id(),
        title=title or "TikTok Video",
        description=description or title or "",
        author=author,
        duration=_as_int(duration),
        cover=_url(cover),
        music=music if music else {},
        statistics=statistics,
        qualities=qualities,
        analyzedAt=datetime.now(timezone.utc).isoformat(),
        sourceTag=source,
    )


def _author(nickname: Any, unique_id: Any, avatar: Any) -> Author:
    return Author(
        nickname=str(nickname) if nickname else "Unknown Creator",
        uniqueId=str(unique_id) if unique_id else "unknown",
        avatar=str(avatar) if avatar else "",
    )


def normalize_tikwm(data: dict[str, Any], source: str = "tikwm") -> VideoRecord:
    """Normalize a tikwm.com ``data`` payload.

    Notes
    -----
    - tikwm sometimes returns site-relative media paths; they are made
      absolute against ``TIKWM_BASE_URL``.
    - ``likes`` prefers ``digg_count`` and falls back to ``like_count``.
    """

    qualities: list[QualityOption] = build_qualities(
        _absolute(data.get("play"), TIKWM_BASE_URL),
        _absolute(data.get("hdplay"), TIKWM_BASE_URL),
        _absolute(data.get("wmplay"), TIKWM_BASE_URL),
    )
    author: Author = _author(
        _dig(data, "author", "nickname"),
        _dig(data, "author", "unique_id"),
        _absolute(_dig(data, "author", "avatar"), TIKWM_BASE_URL),
    )
    statistics: Statistics = Statistics(
        likes=_as_int(_first(data.get("digg_count"), data.get("like_count"))),
        shares=_as_int(data.get("share_count")),
        comments=_as_int(data.get("comment_count")),
        plays=_as_int(data.get("play_count")),
        downloads=_as_int(data.get("download_count")),
    )
    return _build_record(
        source,
        video_id=data.get("id"),
        title=data.get("title"),
        description=data.get("desc"),
        author=author,
        duration=data.get("duration"),
        cover=_absolute(_first(data.get("cover"), data.get("thumbnail")), TIKWM_BASE_URL),
        music=_first(data.get("music"), data.get("music_info")),
        statistics=statistics,
        qualities=qualities,
    )


def normalize_tiklydown(data: dict[str, Any], source: str = "tiklydown") -> VideoRecord:
    """Normalize a tiklydown ``data`` payload.

    tikwm-style field names are honored first so mirrors speaking that shape
    keep working; tiklydown's own nested ``video``/``stats``/``author`` blocks
    fill whatever is still missing.
    """

    video: dict[str, Any] = data.get("video") if isinstance(data.get("video"), dict) else {}
    stats: dict[str, Any] = data.get("stats") if isinstance(data.get("stats"), dict) else {}

    qualities: list[QualityOption] = build_qualities(
        _first(data.get("play"), video.get("noWatermark")),
        data.get("hdplay"),
        _first(data.get("wmplay"), video.get("watermark")),
    )
    author: Author = _author(
        _first(_dig(data, "author", "nickname"), _dig(data, "author", "name")),
        _dig(data, "author", "unique_id"),
        _dig(data, "author", "avatar"),
    )
    statistics: Statistics = Statistics(
        likes=_as_int(_first(data.get("digg_count"), data.get("like_count"), stats.get("likeCount"))),
        shares=_as_int(_first(data.get("share_count"), stats.get("shareCount"))),
        comments=_as_int(_first(data.get("comment_count"), stats.get("commentCount"))),
        plays=_as_int(_first(data.get("play_count"), stats.get("playCount"))),
        downloads=_as_int(data.get("download_count")),
    )
    return _build_record(
        source,
        video_id=data.get("id"),
        title=data.get("title"),
        description=data.get("desc"),
        author=author,
        duration=_first(data.get("duration"), video.get("duration")),
        cover=_first(data.get("cover"), data.get("thumbnail"), video.get("cover")),
        music=_first(data.get("music"), data.get("music_info")),
        statistics=statistics,
        qualities=qualities,
    )


def _is_progressive(fmt: dict[str, Any]) -> bool:
    vcodec: Optional[str] = fmt.get("vcodec")
    acodec: Optional[str] = fmt.get("acodec")
    return bool(vcodec and vcodec != "none" and acodec and acodec != "none")


def _is_watermarked(fmt: dict[str, Any]) -> bool:
    label: str = f"{fmt.get('format_id') or ''} {fmt.get('format_note') or ''}".lower()
    return "watermark" in label


def _ytdlp_urls(info: dict[str, Any]) -> tuple[Optional[str], Optional[str]]:
    """Pick (standard, watermark) URLs from a yt-dlp info dict.

    Notes
    -----
    - Standard is the tallest progressive format that is not watermarked;
      yt-dlp's own top-level ``url`` is the fallback.
    - Formats with unknown codecs are treated as progressive, which is how
      yt-dlp reports TikTok's single-file downloads.
    """

    formats: list[dict[str, Any]] = [f for f in info.get("formats") or [] if f.get("url")]
    playable: list[dict[str, Any]] = [
        f for f in formats if _is_progressive(f) or (f.get("vcodec") is None and f.get("acodec") is None)
    ]
    clean: list[dict[str, Any]] = [f for f in playable if not _is_watermarked(f)]
    clean.sort(key=lambda f: _as_int(f.get("height")), reverse=True)
    watermarked: list[dict[str, Any]] = [f for f in playable if _is_watermarked(f)]

    standard: Optional[str] = clean[0]["url"] if clean else info.get("url")
    watermark: Optional[str] = watermarked[0]["url"] if watermarked else None
    return standard, watermark


def normalize_ytdlp(info: dict[str, Any], source: str = "ytdlp") -> VideoRecord:
    """Normalize a yt-dlp ``extract_info`` result."""

    standard, watermark = _ytdlp_urls(info)
    author: Author = _author(
        _first(info.get("uploader"), info.get("channel"), info.get("creator")),
        _first(info.get("uploader_id"), info.get("channel_id")),
        None,
    )
    statistics: Statistics = Statistics(
        likes=_as_int(info.get("like_count")),
        shares=_as_int(info.get("repost_count")),
        comments=_as_int(info.get("comment_count")),
        plays=_as_int(info.get("view_count")),
    )
    music: dict[str, Any] = {
        key: info[key] for key in ("track", "artist", "album") if info.get(key)
    }
    return _build_record(
        source,
        video_id=info.get("id"),
        title=info.get("title"),
        description=info.get("description"),
        author=author,
        duration=info.get("duration"),
        cover=info.get("thumbnail"),
        music=music,
        statistics=statistics,
        qualities=build_qualities(standard, None, watermark),
    )


NORMALIZERS: dict[str, Callable[[dict[str, Any], str], VideoRecord]] = {
    "tikwm": normalize_tikwm,
    "tiklydown": normalize_tiklydown,
    "ytdlp": normalize_ytdlp,
}


def normalize(payload: dict[str, Any], source: str) -> VideoRecord:
    """Dispatch ``payload`` to the normalizer registered for ``source``.

    Raises
    ------
    UnusablePayload
        If the payload holds no playable URL.
    KeyError
        If no normalizer is registered for ``source``.
    """

    return NORMALIZERS[source](payload, source)
