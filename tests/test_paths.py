"""Tests for URL to local path mapping."""

from __future__ import annotations

import re

import pytest

from site_cloner import (
    asset_category,
    asset_filename,
    asset_local_path,
    origin_of,
    page_key,
    page_local_path,
    resolve_url,
    short_hash,
)

ORIGIN = "https://ex.com"


class TestPageLocalPath:
    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://ex.com/", "index.html"),
            ("https://ex.com", "index.html"),
            ("https://ex.com/docs/", "docs/index.html"),
            ("https://ex.com/about", "about.html"),
            ("https://ex.com/blog/post-1", "blog/post-1.html"),
            ("https://ex.com/feed.xml", "feed.xml"),
            ("https://ex.com/page.html", "page.html"),
            ("https://ex.com/search?q=x", "search.html"),
            ("https://ex.com/a:b", "a_b.html"),
            ("/relative/path", "relative/path.html"),
        ],
    )
    def test_mapping(self, url, expected):
        assert page_local_path(url, ORIGIN) == expected

    def test_fragment_ignored(self):
        assert page_local_path("https://ex.com/about#team", ORIGIN) == "about.html"

    def test_never_escapes_output_dir(self):
        local = page_local_path("https://ex.com/../../etc/passwd", ORIGIN)
        assert not local.startswith("/")
        assert ".." not in local.split("/")

    def test_malformed_url_falls_back_to_index(self):
        assert page_local_path("http://[::1", ORIGIN) == "index.html"

    def test_percent_encoded_segments_are_decoded(self):
        assert page_local_path("https://ex.com/caf%C3%A9", ORIGIN) == "café.html"
        assert page_local_path("https://ex.com/my%20docs/", ORIGIN) == "my docs/index.html"

    def test_encoded_slash_stays_in_one_segment(self):
        assert page_local_path("https://ex.com/a%2Fb", ORIGIN) == "a_b.html"


class TestShortHash:
    def test_shape(self):
        h = short_hash("https://ex.com/a.css")
        assert len(h) == 8
        assert re.fullmatch(r"[0-9a-z]{8}", h)

    def test_deterministic(self):
        assert short_hash("x") == short_hash("x")

    def test_distinct_inputs(self):
        assert short_hash("https://ex.com/a.css") != short_hash("https://ex.com/b.css")


class TestAssetPaths:
    def test_css_with_query(self):
        local = asset_local_path("https://cdn.ex.com/css/site.css?v=2")
        assert re.fullmatch(r"assets/css/site-[0-9a-z]{8}\.css", local)

    def test_query_variants_do_not_collide(self):
        a = asset_local_path("https://ex.com/app.js?v=1")
        b = asset_local_path("https://ex.com/app.js?v=2")
        assert a != b

    def test_same_url_same_path(self):
        u = "https://ex.com/img/logo.png"
        assert asset_local_path(u) == asset_local_path(u)

    @pytest.mark.parametrize(
        "url,category",
        [
            ("https://ex.com/site.css", "css"),
            ("https://ex.com/app.js", "js"),
            ("https://ex.com/mod.mjs", "js"),
            ("https://ex.com/photo.JPEG", "images"),
            ("https://ex.com/icon.svg", "images"),
            ("https://ex.com/favicon.ico", "images"),
            ("https://ex.com/f.woff2", "fonts"),
            ("https://ex.com/f.otf", "fonts"),
            ("https://ex.com/clip.mp4", "media"),
            ("https://ex.com/song.mp3", "media"),
            ("https://ex.com/data.bin", "misc"),
            ("https://ex.com/api/style?name=x.css", "css"),
            ("https://ex.com/download", "misc"),
        ],
    )
    def test_category(self, url, category):
        assert asset_category(url) == category

    def test_filename_for_directory_url(self):
        assert re.fullmatch(r"index-[0-9a-z]{8}", asset_filename("https://ex.com/"))

    def test_filename_infers_extension_from_url(self):
        name = asset_filename("https://ex.com/api/font?family=a.woff2")
        assert re.fullmatch(r"font-[0-9a-z]{8}\.woff2", name)

    def test_filename_sanitized(self):
        name = asset_filename('https://ex.com/we%22ird:name.png')
        assert ":" not in name
        assert name.endswith(".png")

    def test_filename_decodes_percent_escapes(self):
        name = asset_filename("https://ex.com/img/my%20logo.png")
        assert re.fullmatch(r"my logo-[0-9a-z]{8}\.png", name)


class TestResolveUrl:
    def test_protocol_relative(self):
        assert resolve_url("//cdn.ex.com/a.js", "https://ex.com/") == "https://cdn.ex.com/a.js"

    def test_protocol_relative_keeps_page_scheme(self):
        assert resolve_url("//cdn.ex.com/a.js", "http://ex.com/") == "http://cdn.ex.com/a.js"

    def test_absolute_passthrough(self):
        assert resolve_url("https://other.com/x.png", "https://ex.com/") == "https://other.com/x.png"

    def test_data_passthrough(self):
        data = "data:image/png;base64,AAAA"
        assert resolve_url(data, "https://ex.com/") == data

    def test_relative(self):
        assert resolve_url("../img/a.png", "https://ex.com/docs/p.html") == "https://ex.com/img/a.png"

    def test_strips_whitespace(self):
        assert resolve_url("  /a.css ", "https://ex.com/x") == "https://ex.com/a.css"


class TestOrigin:
    def test_default_port_dropped(self):
        assert origin_of("https://Ex.com:443/x") == "https://ex.com"

    def test_explicit_port_kept(self):
        assert origin_of("http://ex.com:8080/") == "http://ex.com:8080"

    def test_page_key_strips_fragment(self):
        assert page_key("https://ex.com/about#team") == "https://ex.com/about"

    def test_page_key_empty_path(self):
        assert page_key("https://ex.com") == "https://ex.com/"
