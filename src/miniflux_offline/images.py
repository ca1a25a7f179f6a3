"""Image discovery, URL normalization and validated downloads."""

from __future__ import annotations

import logging
import os
import re
import tempfile
import time
from collections.abc import Callable
from pathlib import Path
from urllib.parse import quote, urljoin, urlsplit

import httpx
from bs4 import BeautifulSoup

from miniflux_offline.models import (
    DEFAULT_IMAGE_EXTENSION,
    IMAGE_BLOCK_TIMEOUT_SECONDS,
    IMAGE_EXTENSIONS,
    IMAGE_MAX_BYTES,
    IMAGE_MIN_BYTES,
    IMAGE_TOTAL_TIMEOUT_SECONDS,
    ImageDescriptor,
    UserConfig,
)

logger = logging.getLogger(__name__)

IMAGE_USER_AGENT = "miniflux-offline/0.1"
MOBILE_BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Linux; Android 10; Mobile) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.120 Mobile Safari/537.36"
)
DEFAULT_REDDIT_REFERER = "https://www.reddit.com/"
_REDDIT_HOSTS = ("redd.it", "reddit.com")
_ACCEPTED_CONTENT_TYPES = ("image/", "application/octet-stream")
_DENSITY_DESCRIPTOR = re.compile(r"^(\d+(?:\.\d+)?)x$")
_DIMENSION = re.compile(r"^\s*(\d+)(?:px)?\s*$")


# ============================================================================
# Discovery
# ============================================================================


def normalize_image_url(src: str | None, base_url: str = "") -> str | None:
    """Resolve an image source to an absolute URL.

    Protocol-relative sources get ``https:``; relative and root-relative paths
    are joined against ``base_url``. Empty sources, ``data:`` URIs and URLs
    that cannot be parsed yield None.
    """
    if not src:
        return None
    src = src.strip()
    if not src or src.lower().startswith("data:"):
        return None
    try:
        if src.startswith("//"):
            url = f"https:{src}"
        elif base_url and not src.lower().startswith(("http://", "https://")):
            url = urljoin(base_url, src)
        else:
            url = src
        urlsplit(url)
    except ValueError as e:
        logger.debug("Skipping malformed image URL %r: %s", src, e)
        return None
    return url


def image_extension(url: str) -> str:
    """Extension taken from the URL path when it is a known image type."""
    try:
        path = urlsplit(url).path
    except ValueError:
        return DEFAULT_IMAGE_EXTENSION
    _, dot, ext = path.rpartition(".")
    ext = ext.lower()
    if dot and ext in IMAGE_EXTENSIONS and "/" not in ext:
        return ext
    return DEFAULT_IMAGE_EXTENSION


def image_filename(index: int, url: str) -> str:
    """Sequential local filename, e.g. ``image_001.png``."""
    return f"image_{index:03d}.{image_extension(url)}"


def pick_high_res_variant(srcset: str | None, base_url: str = "") -> str | None:
    """Return the srcset candidate with the highest pixel density above 1x."""
    if not srcset:
        return None
    best_url: str | None = None
    best_density = 1.0
    for candidate in srcset.split(","):
        parts = candidate.split()
        if len(parts) != 2:
            continue
        match = _DENSITY_DESCRIPTOR.match(parts[1])
        if not match:
            continue
        density = float(match.group(1))
        if density > best_density:
            url = normalize_image_url(parts[0], base_url)
            if url:
                best_url, best_density = url, density
    return best_url


def _parse_dimension(value: object) -> int | None:
    if not isinstance(value, str):
        return None
    match = _DIMENSION.match(value)
    if not match:
        return None
    number = int(match.group(1))
    return number if number > 0 else None


def discover_images(html: str, base_url: str = "") -> list[ImageDescriptor]:
    """Collect one descriptor per distinct absolute image URL, in document order."""
    soup = BeautifulSoup(html or "", "html.parser")
    descriptors: list[ImageDescriptor] = []
    seen: set[str] = set()
    for img in soup.find_all("img"):
        url = normalize_image_url(img.get("src"), base_url)
        if url is None or url in seen:
            continue
        seen.add(url)
        descriptors.append(
            ImageDescriptor(
                url=url,
                filename=image_filename(len(descriptors) + 1, url),
                url2x=pick_high_res_variant(img.get("srcset"), base_url),
                width=_parse_dimension(img.get("width")),
                height=_parse_dimension(img.get("height")),
            )
        )
    return descriptors


# ============================================================================
# Download
# ============================================================================


def is_reddit_url(url: str) -> bool:
    try:
        host = (urlsplit(url).hostname or "").lower()
    except ValueError:
        return False
    return any(host == name or host.endswith(f".{name}") for name in _REDDIT_HOSTS)


def build_image_request(
    image_url: str, entry_url: str = "", config: UserConfig | None = None
) -> tuple[str, dict[str, str]]:
    """Return the URL to fetch and the headers to send for one image."""
    image_url = image_url.replace("&amp;", "&")
    headers = {"User-Agent": IMAGE_USER_AGENT}
    if is_reddit_url(image_url):
        headers["User-Agent"] = MOBILE_BROWSER_USER_AGENT
        referer = entry_url.split("?", 1)[0] if entry_url else ""
        headers["Referer"] = referer or DEFAULT_REDDIT_REFERER

    request_url = image_url
    if config is not None and config.proxy_image_downloader_enabled:
        proxy_url = config.proxy_image_downloader_url.strip()
        if proxy_url:
            request_url = proxy_url + quote(image_url, safe="")
            token = config.proxy_image_downloader_token.strip()
            if token:
                headers["Authorization"] = f"Bearer {token}"
    return request_url, headers


class ImageRejected(Exception):
    """Response failed a size or type sanity check."""


def _check_headers(response: httpx.Response) -> int | None:
    """Validate status and content type. Returns the declared length, if any."""
    if response.status_code != 200:
        raise ImageRejected(f"HTTP {response.status_code}")
    content_type = response.headers.get("content-type", "").lower()
    if content_type and not content_type.startswith(_ACCEPTED_CONTENT_TYPES):
        raise ImageRejected(f"unexpected content type {content_type}")
    raw_length = response.headers.get("content-length")
    if raw_length is None:
        return None
    try:
        declared = int(raw_length)
    except ValueError:
        return None
    if declared > IMAGE_MAX_BYTES:
        raise ImageRejected(f"too large ({declared} bytes)")
    return declared


class ImageFetcher:
    """Downloads images into an entry directory with size/type validation.

    A rejected or failed download never leaves a file behind.
    """

    def __init__(
        self,
        client: httpx.Client | None = None,
        config: UserConfig | None = None,
        *,
        block_timeout: float = IMAGE_BLOCK_TIMEOUT_SECONDS,
        total_timeout: float = IMAGE_TOTAL_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.Client(follow_redirects=True)
        self.config = config
        self.block_timeout = block_timeout
        self.total_timeout = total_timeout
        self._clock = clock

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def fetch(self, descriptor: ImageDescriptor, target_dir: Path, entry_url: str = "") -> bool:
        """Download one descriptor, recording the outcome on it."""
        dest = target_dir / descriptor.filename
        ok, error = self.fetch_url(descriptor.fetch_url, dest, entry_url)
        descriptor.downloaded = ok
        descriptor.error = error
        return ok

    def fetch_url(self, url: str, dest: Path, entry_url: str = "") -> tuple[bool, str | None]:
        """Stream ``url`` to ``dest`` atomically. Returns (ok, failure reason)."""
        deadline = self._clock() + self.total_timeout
        tmp_path: str | None = None
        try:
            request_url, headers = build_image_request(url, entry_url, self.config)
            dest.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=dest.parent, prefix=f".{dest.stem}-", suffix=".tmp")
            with os.fdopen(fd, "wb") as tmp_file:
                with self._client.stream(
                    "GET",
                    request_url,
                    headers=headers,
                    timeout=httpx.Timeout(self.block_timeout),
                    follow_redirects=True,
                ) as response:
                    declared = _check_headers(response)
                    received = 0
                    for chunk in response.iter_bytes():
                        received += len(chunk)
                        if received > IMAGE_MAX_BYTES:
                            raise ImageRejected(f"too large (over {IMAGE_MAX_BYTES} bytes)")
                        if self._clock() > deadline:
                            raise ImageRejected("timed out")
                        tmp_file.write(chunk)
            if received < IMAGE_MIN_BYTES:
                raise ImageRejected(f"too small ({received} bytes)")
            if declared is not None and declared != received:
                raise ImageRejected(f"incomplete ({received} of {declared} bytes)")
            os.replace(tmp_path, dest)
            tmp_path = None
            return True, None
        except ImageRejected as e:
            logger.warning("Rejected image %s: %s", url, e)
            return False, str(e)
        except (httpx.HTTPError, httpx.InvalidURL, OSError, ValueError) as e:
            logger.warning("Image download failed for %s: %s", url, e)
            return False, str(e) or type(e).__name__
        finally:
            if tmp_path:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass


__all__ = [
    "MOBILE_BROWSER_USER_AGENT",
    "ImageFetcher",
    "ImageRejected",
    "build_image_request",
    "discover_images",
    "image_extension",
    "image_filename",
    "is_reddit_url",
    "normalize_image_url",
    "pick_high_res_variant",
]
