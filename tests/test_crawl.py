"""Tests for the crawl orchestrator."""

from __future__ import annotations

import dataclasses
import json
import re
from unittest.mock import patch
from urllib.parse import unquote

import pytest

from site_cloner import (
    DONE,
    FALLBACK_ATTR,
    CrawlResult,
    PageFetchError,
    SeedInvalidError,
    SiteCloner,
    asset_local_path,
    bs4_parse,
    crawl,
    resolve_served_path,
)
from tests.fakes import FakeAssetFetcher, FakePageFetcher

SEED = "https://ex.com/"


def _cloner(settings, pages, assets=None, sink=None, tiers=None):
    page_fetcher = FakePageFetcher(pages)
    tiers = tiers if tiers is not None else [FakeAssetFetcher("http", assets or {})]
    cloner = SiteCloner(
        SEED, settings, sink, page_fetcher=page_fetcher, asset_fetchers=tiers
    )
    return cloner, page_fetcher, tiers


def _read(settings, rel):
    with open(f"{settings.output_dir}/{rel}", encoding="utf-8") as f:
        return f.read()


class TestSinglePage:
    def test_no_assets_no_links(self, settings):
        pages = {SEED: "<html><body><p>Hello</p></body></html>"}
        cloner, fetcher, _ = _cloner(settings, pages)

        result = cloner.run()

        assert result.pages == ["index.html"]
        assert result.failed_pages == []
        assert result.assets == 0
        assert "Hello" in _read(settings, "index.html")
        assert not (cloner.output_dir / "assets").exists()
        assert fetcher.calls == [SEED]
        assert fetcher.closed
        assert cloner.state == DONE

    def test_seed_without_trailing_slash(self, settings):
        pages = {SEED: "<html><body>x</body></html>"}
        cloner, fetcher, _ = _cloner(settings, pages)
        cloner.seed_url = "https://ex.com"
        assert cloner.run().pages == ["index.html"]
        assert fetcher.calls == [SEED]


class TestBudget:
    PAGES = {
        SEED: '<html><body><a href="/about">About</a><a href="/team">Team</a></body></html>',
        "https://ex.com/about": '<html><body><a href="/">Home</a></body></html>',
        "https://ex.com/team": "<html><body>team</body></html>",
    }

    def test_two_pages(self, settings):
        settings.max_pages = 2
        cloner, fetcher, _ = _cloner(settings, self.PAGES)

        result = cloner.run()

        assert result.pages == ["index.html", "about.html"]
        assert fetcher.calls == [SEED, "https://ex.com/about"]
        about = bs4_parse(_read(settings, "about.html"))
        assert about.find("a")["href"] == "index.html"

    def test_budget_of_one(self, settings):
        settings.max_pages = 1
        cloner, fetcher, _ = _cloner(settings, self.PAGES)
        result = cloner.run()
        assert result.pages == ["index.html"]
        assert fetcher.calls == [SEED]

    def test_each_page_fetched_once(self, settings):
        settings.max_pages = 10
        cloner, fetcher, _ = _cloner(settings, self.PAGES)
        cloner.run()
        assert sorted(fetcher.calls) == sorted(self.PAGES)

    def test_cross_origin_links_never_fetched(self, settings):
        pages = {
            SEED: '<a href="/local">l</a><a href="https://other.com/page">o</a>',
            "https://ex.com/local": "<p>local</p>",
        }
        cloner, fetcher, _ = _cloner(settings, pages)
        result = cloner.run()
        assert fetcher.calls == [SEED, "https://ex.com/local"]
        assert result.pages == ["index.html", "local.html"]

    def test_five_links_budget_two(self, settings):
        links = "".join(f'<a href="/p{i}">{i}</a>' for i in range(5))
        pages = {SEED: f"<html><body>{links}</body></html>"}
        pages.update({f"https://ex.com/p{i}": "<p>x</p>" for i in range(5)})
        settings.max_pages = 2
        cloner, fetcher, _ = _cloner(settings, pages)

        cloner.run()

        html_files = sorted(p.name for p in cloner.output_dir.rglob("*.html"))
        assert html_files == ["index.html", "p0.html"]
        assert fetcher.calls == [SEED, "https://ex.com/p0"]

    def test_failed_page_counts_and_crawl_continues(self, settings, sink):
        pages = {
            SEED: '<a href="/broken">b</a><a href="/ok">ok</a>',
            "https://ex.com/broken": PageFetchError("https://ex.com/broken: HTTP 500"),
            "https://ex.com/ok": "<p>fine</p>",
        }
        settings.max_pages = 3
        cloner, _, _ = _cloner(settings, pages, sink=sink)

        result = cloner.run()

        assert result.failed_pages == ["https://ex.com/broken"]
        assert result.pages == ["index.html", "ok.html"]
        assert result.pages_processed == 3
        assert ("page_failure", "https://ex.com/broken", "https://ex.com/broken: HTTP 500") in sink.events
        assert not (cloner.output_dir / "broken.html").exists()

    def test_failed_seed_finishes_with_zero_pages(self, settings):
        cloner, _, _ = _cloner(settings, {})
        result = cloner.run()
        assert result.pages == []
        assert result.failed_pages == [SEED]

    def test_unexpected_error_is_a_page_failure(self, settings):
        pages = {SEED: '<a href="/next">n</a>', "https://ex.com/next": "<p>n</p>"}
        cloner, _, _ = _cloner(settings, pages)
        with patch("site_cloner.rewrite_document", side_effect=[RuntimeError("bad"), None]):
            result = cloner.run()
        assert result.failed_pages == [SEED]


class TestAssets:
    def test_unreachable_asset_uses_remote_url(self, settings, sink):
        pages = {SEED: '<html><body><img src="/img/gone.png"></body></html>'}
        cloner, _, _ = _cloner(settings, pages, sink=sink)

        result = cloner.run()

        img = bs4_parse(_read(settings, "index.html")).find("img")
        assert img["src"] == "https://ex.com/img/gone.png"
        assert img[FALLBACK_ATTR] == "true"
        assert result.failed_assets == ["https://ex.com/img/gone.png"]
        assert "asset_failure" in sink.kinds()
        assert sink.kinds()[-1] == "crawl_complete"

    def test_shared_asset_downloaded_once(self, settings):
        css = "https://ex.com/css/site.css"
        head = '<link rel="stylesheet" href="/css/site.css">'
        pages = {
            SEED: f'<html><head>{head}</head><body><a href="/docs/intro">i</a></body></html>',
            "https://ex.com/docs/intro": f"<html><head>{head}</head><body></body></html>",
        }
        cloner, _, tiers = _cloner(settings, pages, assets={css: b"body{}"})

        result = cloner.run()

        assert tiers[0].calls == [css]
        assert result.assets == 1
        local = asset_local_path(css)
        assert (cloner.output_dir / local).read_bytes() == b"body{}"
        root_link = bs4_parse(_read(settings, "index.html")).find("link")
        nested_link = bs4_parse(_read(settings, "docs/intro.html")).find("link")
        assert root_link["href"] == local
        assert nested_link["href"] == "../" + local

    def test_duplicate_stylesheet_on_one_page(self, settings):
        css = "https://ex.com/css/site.css"
        head = '<link rel="stylesheet" href="/css/site.css"><link rel="stylesheet" href="css/site.css">'
        cloner, _, tiers = _cloner(
            settings, {SEED: f"<html><head>{head}</head></html>"}, assets={css: b"x"}
        )
        cloner.run()

        assert tiers[0].calls == [css]
        css_files = list((cloner.output_dir / "assets" / "css").iterdir())
        assert len(css_files) == 1
        links = bs4_parse(_read(settings, "index.html")).find_all("link")
        assert {link["href"] for link in links} == {asset_local_path(css)}

    def test_every_asset_settles_before_write(self, settings):
        urls = [f"https://ex.com/img/{i}.png" for i in range(8)]
        body = "".join(f'<img src="{u}">' for u in urls)
        settings.concurrency = 3
        cloner, _, _ = _cloner(
            settings, {SEED: f"<html><body>{body}</body></html>"}, assets={u: b"x" for u in urls}
        )
        cloner.run()
        srcs = [img["src"] for img in bs4_parse(_read(settings, "index.html")).find_all("img")]
        assert all(s.startswith("assets/images/") for s in srcs)

    def test_percent_encoded_urls_resolve_offline(self, settings):
        logo = "https://ex.com/img/my%20logo.png"
        pages = {
            SEED: '<html><body><img src="/img/my%20logo.png"><a href="/caf%C3%A9">c</a></body></html>',
            "https://ex.com/caf%C3%A9": "<html><body>café</body></html>",
        }
        cloner, _, _ = _cloner(settings, pages, assets={logo: b"png"})

        result = cloner.run()

        assert result.pages == ["index.html", "café.html"]
        out = cloner.output_dir
        index = bs4_parse(_read(settings, "index.html"))
        src = index.find("img")["src"]
        assert src.startswith("assets/images/my%20logo-")
        served = resolve_served_path(out, "/" + src)
        assert served == (out / unquote(src)).resolve()
        assert served.read_bytes() == b"png"
        href = index.find("a")["href"]
        assert href == "caf%C3%A9.html"
        assert resolve_served_path(out, "/" + href) == (out / "café.html").resolve()


class TestOutputFailures:
    def test_unwritable_page_is_a_failure_and_crawl_continues(self, settings, sink):
        pages = {
            SEED: '<a href="/about">a</a><a href="/next">n</a>',
            "https://ex.com/about": "<p>about</p>",
            "https://ex.com/next": "<p>next</p>",
        }
        cloner, _, _ = _cloner(settings, pages, sink=sink)
        # a directory where the page file should go
        (cloner.output_dir / "about.html").mkdir(parents=True)

        result = cloner.run()

        assert result.failed_pages == ["https://ex.com/about"]
        assert result.pages == ["index.html", "next.html"]
        assert "next" in _read(settings, "next.html")
        failures = [e for e in sink.events if e[0] == "page_failure"]
        assert len(failures) == 1
        assert failures[0][1] == "https://ex.com/about"
        assert "cannot write" in failures[0][2]
        assert sink.kinds()[-1] == "crawl_complete"

    def test_output_dir_under_a_file_raises(self, settings, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        settings.output_dir = str(blocker / "out")
        cloner, fetcher, _ = _cloner(settings, {SEED: "<p>x</p>"})

        with pytest.raises(OSError):
            cloner.run()
        assert fetcher.calls == []

    def test_crawl_propagates_output_dir_error(self, settings, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        settings.output_dir = str(blocker / "out")
        with pytest.raises(OSError):
            crawl(SEED, settings)


class TestOfflineOutput:
    def test_service_worker_and_helpers(self, settings):
        settings.offline_helpers = True
        settings.max_pages = 2
        pages = {
            SEED: '<html><body><a href="/about">a</a></body></html>',
            "https://ex.com/about": "<html><body>about</body></html>",
        }
        cloner, _, _ = _cloner(settings, pages)
        cloner.run()

        sw = _read(settings, "sw.js")
        files = json.loads(re.search(r"const urlsToCache = (\[.*?\]);", sw, re.S).group(1))
        assert files == ["/about.html", "/index.html"]
        assert '"https://ex.com"' in sw
        index = bs4_parse(_read(settings, "index.html"))
        about = bs4_parse(_read(settings, "about.html"))
        assert index.find("script", attrs={"data-site-cloner": "service-worker"})
        assert about.find("script", attrs={"data-site-cloner": "routing"})
        assert not about.find("script", attrs={"data-site-cloner": "service-worker"})


class TestSeedValidation:
    @pytest.mark.parametrize("seed", ["ftp://ex.com/", "not a url", "", "https://"])
    def test_invalid_seed(self, settings, seed):
        cloner = SiteCloner(
            seed, settings, page_fetcher=FakePageFetcher({}), asset_fetchers=[]
        )
        with pytest.raises(SeedInvalidError):
            cloner.run()
        assert not (cloner.output_dir).exists()

    def test_seed_invalid_is_value_error(self):
        assert issubclass(SeedInvalidError, ValueError)


class TestCrawlFunction:
    def test_overrides_and_sink(self, settings, sink):
        captured = {}

        def fake_run(self):
            captured["settings"] = self.settings
            captured["sink"] = self.sink
            return CrawlResult(seed_url=self.seed_url, output_dir=str(self.output_dir))

        with patch.object(SiteCloner, "run", fake_run):
            result = crawl(SEED, settings, sink, max_pages=7, render_js=True)

        assert result.seed_url == SEED
        assert captured["settings"] == dataclasses.replace(settings, max_pages=7, render_js=True)
        assert captured["sink"] is sink
        assert settings.max_pages == 50

    def test_events_order_for_one_page(self, settings, sink):
        pages = {SEED: '<img src="/a.png">'}
        cloner, _, _ = _cloner(settings, pages, assets={"https://ex.com/a.png": b"p"}, sink=sink)
        cloner.run()
        assert sink.kinds() == [
            "page_start",
            "asset_start",
            "asset_success",
            "page_success",
            "crawl_complete",
        ]
        assert sink.events[0] == ("page_start", SEED, 1, settings.max_pages)
