"""Web page, site crawl and video link converters.

Pages are fetched with ``requests``, cleaned and inspected with
BeautifulSoup (boilerplate removal, link absolutizing, image discovery) and
turned into Markdown by the shared MarkItDown engine.
"""

from __future__ import annotations

import base64
import io
import logging
import re
from collections import deque
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Any, Callable, Optional
from urllib.parse import urldefrag, urljoin, urlsplit, urlunsplit

import requests
from bs4 import BeautifulSoup

from .errors import ConversionFailure
from .models import ConversionOptions, ConverterOutput, ImageAsset, PageResult
from .output import markdown_text, render_document

__all__ = ["DEFAULT_HEADERS", "WebConverter", "normalize_url", "page_slug"]

DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml",
    "Accept-Language": "en-US,en;q=0.9",
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) markpack"
    ),
}
DEFAULT_TIMEOUT = 30.0

IMAGE_EXTENSIONS = frozenset(
    {"jpg", "jpeg", "png", "gif", "webp", "svg", "ico"}
)
_LAZY_SRC_ATTRS = (
    "src",
    "data-src",
    "data-original",
    "data-lazy",
    "loading-src",
    "lazy-src",
)
_REMOVE_SELECTORS = (
    "script",
    "style",
    "iframe",
    "noscript",
    "header nav",
    "footer nav",
    "aside",
    ".ads",
    ".social-share",
    ".comments",
)
_CONTENT_SELECTORS = (
    "article",
    "main",
    '[role="main"]',
    ".post-content",
    ".entry-content",
    ".article-content",
    "#content",
)
_EXCLUDED_IMAGE = re.compile(
    r"/(analytics|tracking|pixel|beacon|ad)/|\b(doubleclick|adsense)\b",
    re.IGNORECASE,
)
_EXCLUDED_LINK = re.compile(
    r"\.(pdf|zip|docx?|xlsx?|pptx?)$|\?(utm_|source=|campaign=)"
    r"|/api/|/feed/|/rss/",
    re.IGNORECASE,
)
_SLUG_INVALID = re.compile(r"[^a-z0-9]+")

_logger = logging.getLogger(__name__)


def normalize_url(raw: str) -> str:
    """Return ``raw`` as an absolute http(s) URL.

    A missing scheme defaults to https; anything that still lacks a host
    raises :class:`ConversionFailure`.
    """

    candidate = str(raw).strip()
    if not candidate:
        raise ConversionFailure("Invalid URL: empty value")
    if not re.match(r"^https?://", candidate, re.IGNORECASE):
        candidate = "https://" + candidate.lstrip("/")
    parts = urlsplit(candidate)
    if parts.scheme.lower() not in ("http", "https") or not parts.hostname:
        raise ConversionFailure(f"Invalid URL: {raw}")
    return urlunsplit(parts)


def page_slug(url: str) -> str:
    """File-safe slug for a crawled page derived from its path."""

    path = urlsplit(url).path.strip("/").lower()
    slug = _SLUG_INVALID.sub("-", path).strip("-")[:100]
    return slug or "index"


class WebConverter:
    """Converters for ``url``, ``parent-url`` and ``video-link`` items."""

    def __init__(
        self,
        engine: Any,
        *,
        session: Any = None,
        timeout: float = DEFAULT_TIMEOUT,
        clock: Optional[Callable[[], datetime]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._engine = engine
        self._session = session if session is not None else requests.Session()
        self._timeout = timeout
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._logger = logger or _logger

    def convert_url(
        self,
        content: str,
        *,
        name: str,
        credential: Optional[str],
        options: ConversionOptions,
    ) -> ConverterOutput:
        """Fetch one page and convert it with its images."""

        url = normalize_url(content)
        final_url, html = self._fetch_html(url)
        images: dict[str, ImageAsset] = {}
        markdown, title = self._render(final_url, html, options, images)
        return ConverterOutput(
            content=self._with_meta(markdown, title, url, options),
            images=tuple(images.values()),
            title=title,
        )

    def crawl_site(
        self,
        content: str,
        *,
        name: str,
        credential: Optional[str],
        options: ConversionOptions,
    ) -> ConverterOutput:
        """Breadth-first crawl of same-host pages starting at ``content``.

        The start page becomes the main document; every other page reached
        within ``crawl_depth`` links (at most ``max_pages`` pages in total)
        becomes an additional page. Pages that fail to load are skipped.
        """

        root = normalize_url(content)
        host = urlsplit(root).hostname or ""
        queue: deque[tuple[str, int]] = deque([(root, 0)])
        visited: set[str] = set()
        fetched: list[tuple[str, str]] = []

        while queue and len(fetched) < options.max_pages:
            url, depth = queue.popleft()
            if _visit_key(url) in visited:
                continue
            visited.add(_visit_key(url))
            try:
                final_url, html = self._fetch_html(url)
            except ConversionFailure:
                if url == root:
                    raise
                self._logger.warning(
                    "Skipping page that failed to load", extra={"url": url}
                )
                continue
            fetched.append((final_url, html))
            if depth >= options.crawl_depth:
                continue
            for link in _same_host_links(final_url, html, host):
                if _visit_key(link) not in visited:
                    queue.append((link, depth + 1))

        self._logger.info(
            "Crawled site",
            extra={"url": root, "page_count": len(fetched)},
        )

        images: dict[str, ImageAsset] = {}
        root_url, root_html = fetched[0]
        markdown, title = self._render(root_url, root_html, options, images)
        pages: list[PageResult] = []
        for page_url, page_html in fetched[1:]:
            page_markdown, page_title = self._render(
                page_url, page_html, options, images
            )
            pages.append(
                PageResult(
                    name=page_slug(page_url),
                    content=self._with_meta(
                        page_markdown, page_title, page_url, options
                    ),
                )
            )
        return ConverterOutput(
            content=self._with_meta(markdown, title, root, options),
            images=tuple(images.values()),
            pages=tuple(pages),
            title=title,
        )

    def convert_video_link(
        self,
        content: str,
        *,
        name: str,
        credential: Optional[str],
        options: ConversionOptions,
    ) -> str:
        """Let MarkItDown read a video page: title, description, captions."""

        url = normalize_url(content)
        try:
            result = self._engine.convert(url)
        except Exception as exc:
            raise ConversionFailure(
                f"Failed to convert video link: {exc}"
            ) from exc
        markdown = markdown_text(result)
        title = getattr(result, "title", None) or None
        return self._with_meta(markdown, title, url, options)

    def _fetch(self, url: str) -> Any:
        try:
            response = self._session.get(
                url, headers=DEFAULT_HEADERS, timeout=self._timeout
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            raise ConversionFailure(f"Failed to fetch {url}: {exc}") from exc
        return response

    def _fetch_html(self, url: str) -> tuple[str, str]:
        response = self._fetch(url)
        content_type = response.headers.get("Content-Type", "")
        if content_type and "html" not in content_type.lower():
            raise ConversionFailure(
                f"Expected an HTML page at {url}, got {content_type}"
            )
        return getattr(response, "url", None) or url, response.text

    def _render(
        self,
        url: str,
        html: str,
        options: ConversionOptions,
        images: dict[str, ImageAsset],
    ) -> tuple[str, Optional[str]]:
        soup = BeautifulSoup(html, "html.parser")
        title = soup.title.get_text(strip=True) if soup.title else None
        for selector in _REMOVE_SELECTORS:
            for element in soup.select(selector):
                element.decompose()
        body = _main_content(soup)

        if options.convert_links:
            for anchor in body.find_all("a", href=True):
                anchor["href"] = urljoin(url, anchor["href"])

        for img in body.find_all("img"):
            source = _image_source(url, img) if options.include_images else None
            if source is None:
                img.decompose()
                continue
            if source not in images:
                asset = self._download_image(source)
                if asset is None:
                    img.decompose()
                    continue
                images[source] = asset
            img["src"] = source

        result = self._engine.convert_stream(
            io.BytesIO(str(body).encode("utf-8")), file_extension=".html"
        )
        markdown = re.sub(r"\n{3,}", "\n\n", markdown_text(result)).strip()
        return markdown, title

    def _download_image(self, url: str) -> Optional[ImageAsset]:
        try:
            response = self._fetch(url)
        except ConversionFailure:
            self._logger.warning("Skipping image", extra={"url": url})
            return None
        filename = PurePosixPath(urlsplit(url).path).name or "image"
        return ImageAsset(
            name=filename,
            data=base64.b64encode(response.content).decode("ascii"),
            mime_type=response.headers.get(
                "Content-Type", "application/octet-stream"
            ),
            url=url,
        )

    def _with_meta(
        self,
        markdown: str,
        title: Optional[str],
        url: str,
        options: ConversionOptions,
    ) -> str:
        if not options.include_meta:
            return markdown
        return render_document(
            {"title": title, "source": url, "converted_at": self._clock()},
            markdown,
        )


def _main_content(soup: BeautifulSoup) -> Any:
    for selector in _CONTENT_SELECTORS:
        found = soup.select_one(selector)
        if found is not None:
            return found
    return soup.body or soup


def _image_source(base_url: str, img: Any) -> Optional[str]:
    for attribute in _LAZY_SRC_ATTRS:
        raw = img.get(attribute)
        if not raw or raw.strip().startswith("data:"):
            continue
        absolute = urljoin(base_url, raw.strip())
        parts = urlsplit(absolute)
        cleaned = urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))
        extension = PurePosixPath(parts.path).suffix.lower().lstrip(".")
        if extension not in IMAGE_EXTENSIONS or _EXCLUDED_IMAGE.search(cleaned):
            continue
        return cleaned
    return None


def _same_host_links(base_url: str, html: str, host: str) -> list[str]:
    soup = BeautifulSoup(html, "html.parser")
    links: list[str] = []
    for anchor in soup.find_all("a", href=True):
        absolute, _fragment = urldefrag(urljoin(base_url, anchor["href"]))
        parts = urlsplit(absolute)
        hostname = parts.hostname or ""
        if parts.scheme not in ("http", "https"):
            continue
        if hostname != host and not hostname.endswith(f".{host}"):
            continue
        if _EXCLUDED_LINK.search(absolute) or absolute in links:
            continue
        links.append(absolute)
    return links


def _visit_key(url: str) -> str:
    parts = urlsplit(url)
    path = parts.path.rstrip("/")
    return urlunsplit(
        (parts.scheme.lower(), parts.netloc.lower(), path, parts.query, "")
    )
