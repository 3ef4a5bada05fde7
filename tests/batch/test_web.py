from __future__ import annotations

import io
import zipfile
from datetime import datetime, timezone

import pytest
import requests

from fixtures.http import FakeSession
from fixtures.markitdown import FakeMarkItDown
from markpack.batch import web
from markpack.batch.converters import build_default_registry
from markpack.batch.errors import ConversionFailure
from markpack.batch.models import ConversionOptions, ItemKind
from markpack.batch.pipeline import BatchItem, convert_batch
from markpack.batch.service import TranscriptionService

NOW = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
JPEG = b"\xff\xd8\xff\xe0fake-jpeg"

ARTICLE = """
<html><head><title>Example Article</title></head>
<body>
  <header><nav><a href="/">Home</a></nav></header>
  <article>
    <h1>Hello</h1>
    <p>Read the <a href="/docs">docs</a>.</p>
    <img src="/pic.jpg?size=large" alt="pic">
    <img data-src="https://cdn.example.com/lazy.png" alt="lazy">
    <img src="https://example.com/tracking/pixel.gif">
    <img src="/not-an-image.php">
  </article>
  <script>alert("x")</script>
</body></html>
"""

ROOT = """
<html><head><title>Home</title></head><body><main>
  <h1>Welcome</h1>
  <a href="/">Home</a>
  <a href="/about">About</a>
  <a href="/docs/intro#top">Intro</a>
  <a href="https://other.org/page">Elsewhere</a>
  <a href="/files/manual.pdf">Manual</a>
  <a href="mailto:team@example.com">Mail</a>
</main></body></html>
"""


def _page(title: str, body: str = "") -> str:
    return (
        f"<html><head><title>{title}</title></head>"
        f"<body><main><h1>{title}</h1>{body}</main></body></html>"
    )


def _converter(session, engine=None) -> web.WebConverter:
    return web.WebConverter(
        engine or FakeMarkItDown(), session=session, clock=lambda: NOW
    )


def _site(session: FakeSession) -> FakeSession:
    session.add_page("https://example.com", ROOT)
    session.add_page("https://example.com/about", _page("About"))
    session.add_page(
        "https://example.com/docs/intro",
        _page("Intro", '<a href="/deeper">Deeper</a>'),
    )
    session.add_page("https://example.com/deeper", _page("Deeper"))
    return session


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("example.com/a", "https://example.com/a"),
        ("  http://example.com ", "http://example.com"),
        ("https://example.com/x?y=1", "https://example.com/x?y=1"),
    ],
)
def test_normalize_url(raw, expected):
    assert web.normalize_url(raw) == expected


@pytest.mark.parametrize("raw", ["", "ftp://example.com", "https://"])
def test_normalize_url_rejects_invalid(raw):
    with pytest.raises(ConversionFailure, match="Invalid URL"):
        web.normalize_url(raw)


@pytest.mark.parametrize(
    ("url", "slug"),
    [
        ("https://example.com/", "index"),
        ("https://example.com/Docs/Getting_Started/", "docs-getting-started"),
        ("https://example.com/about", "about"),
    ],
)
def test_page_slug(url, slug):
    assert web.page_slug(url) == slug


def test_convert_url_collects_images_and_cleans_page(session):
    session.add_page("https://example.com/article", ARTICLE)
    session.add_image("https://example.com/pic.jpg", JPEG, "image/jpeg")
    session.add_image("https://cdn.example.com/lazy.png", b"png")

    output = _converter(session).convert_url(
        "https://example.com/article",
        name="article",
        credential=None,
        options=ConversionOptions(),
    )

    assert output.title == "Example Article"
    assert [image.name for image in output.images] == ["pic.jpg", "lazy.png"]
    first = output.images[0]
    assert first.url == "https://example.com/pic.jpg"
    assert first.mime_type == "image/jpeg"
    assert first.decode() == JPEG

    assert "![pic](https://example.com/pic.jpg)" in output.content
    assert "[docs](https://example.com/docs)" in output.content
    assert "alert" not in output.content
    assert "Home" not in output.content
    assert "pixel.gif" not in output.content
    assert output.content.startswith('---\ntitle: "Example Article"\n')
    assert "https://example.com/tracking/pixel.gif" not in (
        session.requested_urls
    )


def test_convert_url_without_images_or_meta(session):
    session.add_page("https://example.com/article", ARTICLE)

    output = _converter(session).convert_url(
        "https://example.com/article",
        name="article",
        credential=None,
        options=ConversionOptions(
            include_images=False, include_meta=False, convert_links=False
        ),
    )

    assert output.images == ()
    assert "![" not in output.content
    assert "[docs](/docs)" in output.content
    assert not output.content.startswith("---")
    assert session.requested_urls == ["https://example.com/article"]


def test_missing_image_is_dropped(session):
    session.add_page(
        "https://example.com/a", _page("A", '<img src="/gone.png">')
    )
    output = _converter(session).convert_url(
        "https://example.com/a",
        name="a",
        credential=None,
        options=ConversionOptions(include_meta=False),
    )
    assert output.images == ()
    assert "gone.png" not in output.content


def test_convert_url_rejects_non_html(session):
    session.add_image("https://example.com/file.png", b"png")
    with pytest.raises(ConversionFailure, match="Expected an HTML page"):
        _converter(session).convert_url(
            "https://example.com/file.png",
            name="file",
            credential=None,
            options=ConversionOptions(),
        )


def test_fetch_errors_become_conversion_failures():
    session = FakeSession(
        {"https://example.com": requests.ConnectionError("refused")}
    )
    with pytest.raises(ConversionFailure, match="Failed to fetch"):
        _converter(session).convert_url(
            "https://example.com",
            name="x",
            credential=None,
            options=ConversionOptions(),
        )


def test_requests_send_headers_and_timeout(session):
    session.add_page("https://example.com", _page("Home"))
    converter = web.WebConverter(FakeMarkItDown(), session=session, timeout=7)
    converter.convert_url(
        "https://example.com",
        name="x",
        credential=None,
        options=ConversionOptions(),
    )
    call = session.calls[0]
    assert call["timeout"] == 7
    assert call["headers"] == web.DEFAULT_HEADERS


def test_crawl_site_follows_same_host_links_within_depth(session):
    _site(session)

    output = _converter(session).crawl_site(
        "https://example.com",
        name="example.com",
        credential=None,
        options=ConversionOptions(include_meta=False),
    )

    assert [page.name for page in output.pages] == ["about", "docs-intro"]
    assert "Welcome" in output.content
    assert "https://example.com/deeper" not in session.requested_urls
    assert "https://other.org/page" not in session.requested_urls
    assert "https://example.com/files/manual.pdf" not in (
        session.requested_urls
    )
    assert session.requested_urls.count("https://example.com") == 1


def test_crawl_site_respects_depth_and_page_limit(session):
    _site(session)
    converter = _converter(session)

    deep = converter.crawl_site(
        "https://example.com",
        name="example.com",
        credential=None,
        options=ConversionOptions(crawl_depth=2),
    )
    assert [page.name for page in deep.pages] == [
        "about",
        "docs-intro",
        "deeper",
    ]

    limited = converter.crawl_site(
        "https://example.com",
        name="example.com",
        credential=None,
        options=ConversionOptions(crawl_depth=2, max_pages=2),
    )
    assert [page.name for page in limited.pages] == ["about"]

    root_only = converter.crawl_site(
        "https://example.com",
        name="example.com",
        credential=None,
        options=ConversionOptions(crawl_depth=0),
    )
    assert root_only.pages == ()


def test_crawl_site_skips_broken_pages(session):
    _site(session)
    del session.routes["https://example.com/about"]

    output = _converter(session).crawl_site(
        "https://example.com",
        name="example.com",
        credential=None,
        options=ConversionOptions(),
    )
    assert [page.name for page in output.pages] == ["docs-intro"]


def test_crawl_site_root_failure_raises(session):
    with pytest.raises(ConversionFailure, match="Failed to fetch"):
        _converter(session).crawl_site(
            "https://example.com",
            name="example.com",
            credential=None,
            options=ConversionOptions(),
        )


def test_convert_video_link_uses_engine(session):
    engine = FakeMarkItDown()
    markdown = _converter(session, engine).convert_video_link(
        "https://www.youtube.com/watch?v=abc",
        name="video",
        credential=None,
        options=ConversionOptions(),
    )
    assert engine.url_calls == ["https://www.youtube.com/watch?v=abc"]
    assert 'title: "Demo video"' in markdown
    assert "# Video" in markdown


def test_convert_video_link_wraps_engine_errors(session):
    class _Broken(FakeMarkItDown):
        def convert(self, source, **kwargs):
            raise RuntimeError("no captions")

    with pytest.raises(ConversionFailure, match="no captions"):
        _converter(session, _Broken()).convert_video_link(
            "https://youtu.be/abc",
            name="video",
            credential=None,
            options=ConversionOptions(),
        )


def _registry(session, openai_factory):
    service = TranscriptionService(openai_factory, min_interval=0)
    return build_default_registry(FakeMarkItDown(), service, session=session)


def test_url_item_archive_references_local_image(session, openai_factory):
    session.add_page(
        "https://example.com/post",
        _page("Post", '<img src="https://example.com/pic.jpg" alt="p">'),
    )
    session.add_image("https://example.com/pic.jpg", JPEG, "image/jpeg")

    bundle = convert_batch(
        [
            BatchItem(
                kind=ItemKind.URL,
                name="example.com-post",
                content="https://example.com/post",
            )
        ],
        registry=_registry(session, openai_factory),
        now=lambda: NOW,
    )

    with zipfile.ZipFile(io.BytesIO(bundle.buffer)) as archive:
        index = archive.read("web/example.com/index.md").decode("utf-8")
        assert archive.read("web/example.com/assets/pic.jpg") == JPEG
    assert "![p](assets/pic.jpg)" in index
    assert "https://example.com/pic.jpg" not in index


def test_parent_url_item_archive_layout(session, openai_factory):
    _site(session)

    bundle = convert_batch(
        [
            {
                "kind": "parent-url",
                "name": "example.com",
                "content": {"url": "https://example.com"},
            }
        ],
        registry=_registry(session, openai_factory),
        now=lambda: NOW,
    )

    assert bundle.failure_count == 0
    with zipfile.ZipFile(io.BytesIO(bundle.buffer)) as archive:
        names = archive.namelist()
    assert {
        "web/example.com/index.md",
        "web/example.com/about.md",
        "web/example.com/docs-intro.md",
    } <= set(names)
    assert [
        name for name in names
        if name.startswith("errors/") and name != "errors/"
    ] == []
