"""HTML transformation steps for offline entry documents.

Each step takes the previous step's HTML and returns new HTML:

    normalize_video_embeds -> discover_images -> (download) ->
    rewrite_images -> strip_unsafe_elements -> build_entry_document
"""

from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from urllib.parse import urlsplit

from bs4 import BeautifulSoup

from miniflux_offline.images import discover_images, normalize_image_url
from miniflux_offline.models import UNSAFE_ELEMENTS, Entry, ImageDescriptor

logger = logging.getLogger(__name__)

_YOUTUBE_ID = re.compile(
    r"(?:youtube(?:-nocookie)?\.com/(?:embed/|v/|watch\?v=)|youtu\.be/)([A-Za-z0-9_-]{11})"
)


def youtube_video_id(url: str | None) -> str | None:
    if not url:
        return None
    match = _YOUTUBE_ID.search(url)
    return match.group(1) if match else None


def normalize_video_embeds(content: str) -> str:
    """Replace YouTube iframes with a thumbnail that links to the video."""
    soup = BeautifulSoup(content or "", "html.parser")
    replaced = 0
    for iframe in soup.find_all("iframe"):
        video_id = youtube_video_id(iframe.get("src"))
        if video_id is None:
            continue
        link = soup.new_tag("a", attrs={"href": f"https://www.youtube.com/watch?v={video_id}"})
        link.append(
            soup.new_tag(
                "img",
                attrs={
                    "src": f"https://img.youtube.com/vi/{video_id}/hqdefault.jpg",
                    "alt": "YouTube video",
                },
            )
        )
        wrapper = soup.new_tag("p", attrs={"class": "video-embed"})
        wrapper.append(link)
        iframe.replace_with(wrapper)
        replaced += 1
    if not replaced:
        return content or ""
    return str(soup)


def rewrite_images(content: str, descriptors: list[ImageDescriptor], base_url: str = "") -> str:
    """Point every discovered ``<img>`` at its local filename.

    Tags are rewritten whether or not the download succeeded, so a later
    image recovery fills in the missing files without touching the HTML.
    """
    by_url = {descriptor.url: descriptor for descriptor in descriptors}
    soup = BeautifulSoup(content or "", "html.parser")
    for img in soup.find_all("img"):
        url = normalize_image_url(img.get("src"), base_url)
        descriptor = by_url.get(url) if url else None
        if descriptor is None:
            continue
        attrs = {"src": descriptor.filename, "alt": ""}
        if descriptor.width and descriptor.height:
            attrs["style"] = f"width: {descriptor.width}px; height: {descriptor.height}px"
        img.replace_with(soup.new_tag("img", attrs=attrs))
    return str(soup)


def strip_unsafe_elements(content: str) -> tuple[str, int]:
    """Remove elements that cannot work offline. Returns (html, removed count)."""
    soup = BeautifulSoup(content or "", "html.parser")
    removed = 0
    for element in soup.find_all(list(UNSAFE_ELEMENTS)):
        # Already gone if an ancestor was decomposed earlier in this loop
        if element.decomposed:
            continue
        element.decompose()
        removed += 1
    return str(soup), removed


def _display_published(published_at: str) -> str:
    try:
        return datetime.fromisoformat(published_at).strftime("%Y-%m-%d %H:%M")
    except ValueError:
        return published_at


def _display_host(url: str) -> str:
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    if parts.scheme and parts.netloc:
        return f"{parts.scheme}://{parts.netloc}"
    return url


def build_entry_document(entry: Entry, body: str, entry_dir: Path) -> str:
    """Wrap rewritten content in a standalone document with a local ``<base>``."""
    title = html.escape(entry.title or "Untitled")
    base_href = entry_dir.resolve().as_uri().rstrip("/") + "/"
    meta_lines = [f"<h1>{title}</h1>"]
    if entry.feed and entry.feed.title:
        meta_lines.append(f"<p><strong>Feed:</strong> {html.escape(entry.feed.title)}</p>")
    if entry.published_at:
        published = html.escape(_display_published(entry.published_at))
        meta_lines.append(f"<p><strong>Published:</strong> {published}</p>")
    if entry.url:
        href = html.escape(entry.url, quote=True)
        label = html.escape(_display_host(entry.url))
        meta_lines.append(f'<p><strong>URL:</strong> <a href="{href}">{label}</a></p>')
    meta = "\n".join(meta_lines)
    return (
        "<!DOCTYPE html>\n"
        "<html>\n"
        "<head>\n"
        '<meta charset="UTF-8">\n'
        '<meta name="viewport" content="width=device-width, initial-scale=1">\n'
        f"<title>{title}</title>\n"
        f'<base href="{html.escape(base_href, quote=True)}">\n'
        "</head>\n"
        "<body>\n"
        f'<div class="entry-meta">\n{meta}\n</div>\n'
        f'<div class="entry-content">\n{body}\n</div>\n'
        "</body>\n"
        "</html>\n"
    )


@dataclass(slots=True)
class PreparedContent:
    """Entry HTML after video normalization, plus its discovered images."""

    html: str
    base_url: str
    images: list[ImageDescriptor] = field(default_factory=list)


@dataclass(slots=True)
class RenderedContent:
    """Final document and the filename → source URL map to persist."""

    html: str
    images: dict[str, str]
    stripped_elements: int = 0


class HtmlContentPipeline:
    """Default content pipeline built on the module-level steps."""

    def prepare(self, raw_html: str, base_url: str = "") -> PreparedContent:
        normalized = normalize_video_embeds(raw_html or "")
        return PreparedContent(
            html=normalized,
            base_url=base_url,
            images=discover_images(normalized, base_url),
        )

    def render(
        self, prepared: PreparedContent, entry: Entry, entry_dir: Path | None
    ) -> tuple[RenderedContent | None, str | None]:
        if entry_dir is None:
            return None, "Entry directory is required"
        if entry.id <= 0:
            return None, f"Invalid entry id: {entry.id}"
        body = rewrite_images(prepared.html, prepared.images, prepared.base_url)
        body, stripped = strip_unsafe_elements(body)
        if stripped:
            logger.debug(
                "Stripped %d offline-incompatible elements from entry %d", stripped, entry.id
            )
        document = build_entry_document(entry, body, entry_dir)
        images = {descriptor.filename: descriptor.url for descriptor in prepared.images}
        return RenderedContent(html=document, images=images, stripped_elements=stripped), None


__all__ = [
    "HtmlContentPipeline",
    "PreparedContent",
    "RenderedContent",
    "build_entry_document",
    "normalize_video_embeds",
    "rewrite_images",
    "strip_unsafe_elements",
    "youtube_video_id",
]
