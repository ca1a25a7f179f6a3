"""Tests for the HTML content pipeline steps."""

from __future__ import annotations

from bs4 import BeautifulSoup

from miniflux_offline.content import (
    HtmlContentPipeline,
    build_entry_document,
    normalize_video_embeds,
    rewrite_images,
    strip_unsafe_elements,
    youtube_video_id,
)
from miniflux_offline.models import ImageDescriptor


class TestVideoEmbeds:
    def test_youtube_ids(self):
        assert youtube_video_id("https://www.youtube.com/embed/dQw4w9WgXcQ?rel=0") == "dQw4w9WgXcQ"
        assert youtube_video_id("https://youtu.be/dQw4w9WgXcQ") == "dQw4w9WgXcQ"
        assert youtube_video_id("https://vimeo.com/123") is None
        assert youtube_video_id(None) is None

    def test_iframe_becomes_thumbnail_link(self):
        html = (
            '<p>Intro</p>'
            '<iframe src="https://www.youtube-nocookie.com/embed/dQw4w9WgXcQ"></iframe>'
        )
        soup = BeautifulSoup(normalize_video_embeds(html), "html.parser")
        assert soup.find("iframe") is None
        link = soup.select_one("p.video-embed > a")
        assert link["href"] == "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
        assert link.img["src"] == "https://img.youtube.com/vi/dQw4w9WgXcQ/hqdefault.jpg"

    def test_other_iframes_are_left_alone(self):
        html = '<iframe src="https://maps.example.com/embed"></iframe>'
        assert normalize_video_embeds(html) == html


class TestRewriteImages:
    def test_points_at_local_files_and_keeps_size(self):
        descriptors = [
            ImageDescriptor(url="https://x/a.png", filename="image_001.png", width=10, height=20),
            ImageDescriptor(url="https://x/b.jpg", filename="image_002.jpg"),
        ]
        html = '<img src="//x/a.png" class="hero"><img src="https://x/b.jpg" srcset="b2.jpg 2x">'
        soup = BeautifulSoup(rewrite_images(html, descriptors), "html.parser")
        first, second = soup.find_all("img")
        assert first.attrs == {
            "src": "image_001.png",
            "alt": "",
            "style": "width: 10px; height: 20px",
        }
        assert second.attrs == {"src": "image_002.jpg", "alt": ""}

    def test_unknown_images_are_untouched(self):
        html = '<img src="https://elsewhere/c.png">'
        assert "https://elsewhere/c.png" in rewrite_images(html, [])


class TestStripUnsafe:
    def test_counts_removed_elements(self):
        html = "<p>keep</p><script>x()</script><form><object></object></form><style>p{}</style>"
        cleaned, removed = strip_unsafe_elements(html)
        assert "keep" in cleaned
        assert "<script" not in cleaned and "<form" not in cleaned and "<style" not in cleaned
        assert removed == 3

    def test_nothing_to_strip(self):
        assert strip_unsafe_elements("<p>ok</p>") == ("<p>ok</p>", 0)


class TestDocument:
    def test_document_has_local_base_and_escaped_title(self, make_entry, tmp_path):
        entry = make_entry(title="Cats & <Dogs>", url="https://blog.example.com/a/b?c=1")
        document = build_entry_document(entry, "<p>body</p>", tmp_path)

        soup = BeautifulSoup(document, "html.parser")
        assert document.startswith("<!DOCTYPE html>")
        assert soup.title.string == "Cats & <Dogs>"
        assert "Cats &amp; &lt;Dogs&gt;" in document
        assert soup.base["href"] == tmp_path.resolve().as_uri() + "/"
        assert soup.select_one("div.entry-meta a").string == "https://blog.example.com"
        assert soup.select_one("div.entry-content p").string == "body"
        assert "2024-01-15 10:00" in document


class TestPipeline:
    def test_prepare_then_render(self, make_entry, tmp_path):
        entry = make_entry(
            content='<img src="/a.png"><script>bad()</script>',
            url="https://blog.example.com/post",
        )
        pipeline = HtmlContentPipeline()
        prepared = pipeline.prepare(entry.content, entry.url)
        assert [d.url for d in prepared.images] == ["https://blog.example.com/a.png"]

        rendered, error = pipeline.render(prepared, entry, tmp_path)
        assert error is None
        assert rendered.images == {"image_001.png": "https://blog.example.com/a.png"}
        assert rendered.stripped_elements == 1
        assert 'src="image_001.png"' in rendered.html

    def test_render_requires_directory(self, make_entry):
        pipeline = HtmlContentPipeline()
        rendered, error = pipeline.render(pipeline.prepare(""), make_entry(), None)
        assert rendered is None
        assert error == "Entry directory is required"
