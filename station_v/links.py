"""Safety-filtered link and image extraction for chat content.

Generated chat tends to invent URLs: tracking pixels, dead YouTube videos,
rickrolls and image hosts that refuse cross-origin loads. Only links that
survive the block lists are kept, and only placeholder-image URLs from a
small allow-list are treated as displayable images.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

URL_RE = re.compile(r"https?://[^\s<>\"']+", re.IGNORECASE)
IMAGE_EXT_RE = re.compile(r"\.(jpg|jpeg|png|gif|webp|svg)(\?[^\s<>\"']*)?$", re.IGNORECASE)

UNSAFE_DOMAINS = (
    "3lift.com",
    "ads.assemblyexchange.com",
    "doubleclick.net",
    "googlesyndication.com",
    "googleadservices.com",
    "amazon-adsystem.com",
    "facebook.com/tr",
    "google-analytics.com",
    "googletagmanager.com",
    "imgur.com",
)

RICKROLL_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (r"dQw4w9WgXcQ", r"rick.*astley", r"never.*gonna.*give.*you.*up", r"rickroll")
)

OUTDATED_RE = re.compile(
    r"201[0-5]|old|classic|vintage|retro|ancient|archived|deprecated|legacy|obsolete|outdated",
    re.IGNORECASE,
)

# Video ids cannot be verified offline, so any concrete video link is dropped.
YOUTUBE_VIDEO_RE = re.compile(
    r"(youtube\.com/watch\?v=|youtu\.be/|youtube\.com/embed/|youtube\.com/v/)[a-zA-Z0-9_-]{11}",
    re.IGNORECASE,
)

BLOCKED_IMAGE_SERVICES = (
    "gyazo.com", "prnt.sc", "postimg.cc", "imgchest.com", "freeimage.host", "imgbb.com",
    "imgbox.com", "picsum.photos", "httpbin.org", "labs.google",
)

ALLOWED_IMAGE_PATTERNS = (
    re.compile(
        r"placehold\.co/[0-9]+x[0-9]+(/[a-f0-9]{6})?(/[a-f0-9]{6})?(/[a-z]+|\.[a-z]+)?(\?.*)?$",
        re.IGNORECASE,
    ),
    re.compile(
        r"via\.placeholder\.com/[0-9]+x[0-9]+(/[a-f0-9]{6})?(/[a-f0-9]{6})?(\.[a-z]+)?(\?.*)?$",
        re.IGNORECASE,
    ),
)


@dataclass
class ExtractedLinks:
    links: list[str] = field(default_factory=list)
    images: list[str] = field(default_factory=list)

    @property
    def urls(self) -> list[str]:
        return [*self.links, *self.images]


def _is_youtube(url: str) -> bool:
    return "youtube.com/" in url or "youtu.be/" in url


def block_reason(url: str) -> str | None:
    """Why ``url`` must not be shown, or None when it is acceptable."""
    lowered = url.lower()
    if any(p.search(url) for p in RICKROLL_PATTERNS):
        return "rickroll"
    if _is_youtube(lowered):
        if OUTDATED_RE.search(url):
            return "outdated youtube link"
        if YOUTUBE_VIDEO_RE.search(url):
            return "unverifiable youtube video"
    if any(domain in lowered for domain in UNSAFE_DOMAINS):
        return "unsafe domain"
    return None


def is_allowed_image(url: str) -> bool:
    lowered = url.lower()
    if any(service in lowered for service in BLOCKED_IMAGE_SERVICES):
        return False
    return any(p.search(url) for p in ALLOWED_IMAGE_PATTERNS)


def _is_image_url(url: str) -> bool:
    return bool(IMAGE_EXT_RE.search(url)) or any(p.search(url) for p in ALLOWED_IMAGE_PATTERNS)


def extract_links(content: str) -> ExtractedLinks:
    """Split the URLs found in ``content`` into safe links and allowed images.

    Malformed URLs are dropped silently. Order of first appearance is kept
    and duplicates are removed.
    """
    result = ExtractedLinks()
    for url in dict.fromkeys(URL_RE.findall(content)):
        try:
            parts = urlsplit(url)
        except ValueError:
            logger.debug("dropping malformed url %r", url)
            continue
        if not parts.netloc:
            continue

        reason = block_reason(url)
        if reason is not None:
            logger.debug("blocked %s: %s", reason, url)
            continue

        if _is_image_url(url):
            if is_allowed_image(url):
                result.images.append(url)
            else:
                logger.debug("blocked non-allow-listed image: %s", url)
        else:
            result.links.append(url)
    return result


def strip_urls(content: str, urls: list[str]) -> str:
    """Remove each of ``urls`` from ``content`` and normalise whitespace."""
    if not urls:
        return content
    for url in urls:
        content = re.sub(rf"\s*{re.escape(url)}\s*", " ", content, flags=re.IGNORECASE)
    return re.sub(r"\s+", " ", content).strip()
