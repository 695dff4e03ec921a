#!/usr/bin/env python3
import argparse
import dataclasses
import hashlib
import http.client
import http.server
import json
import logging
import os
import posixpath
import re
import sys
import threading
import urllib.error
import urllib.request
from collections import deque
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from threading import Event, Lock
from typing import Deque, Dict, Iterable, List, Optional, Set, Tuple, Union
from urllib.parse import quote, unquote, urldefrag, urljoin, urlparse

import requests
from bs4 import BeautifulSoup
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

# -------------------- Config --------------------

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36"
)
NATIVE_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

DEFAULT_HEADERS = {
    "User-Agent": DEFAULT_USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}

ASSET_HEADERS = {
    "Accept": "*/*",
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}

BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-web-security",
]

HTTP_SCHEMES = {"http", "https"}
DEFAULT_PORTS = {"http": 80, "https": 443}
CHUNK_SIZE = 64 * 1024

CSS_URL_RE = re.compile(r"url\(\s*([\"']?)([^)\"']+)\1\s*\)", re.IGNORECASE)
INVALID_FILENAME_CHARS_RE = re.compile(r'[<>:"/\\|?*]')
INVALID_PATH_CHARS_RE = re.compile(r'[<>:"|?*]')

ASSETS_DIRNAME = "assets"
ASSET_CATEGORIES = {
    "css": {".css"},
    "js": {".js", ".mjs"},
    "images": {
        ".jpg",
        ".jpeg",
        ".png",
        ".gif",
        ".svg",
        ".webp",
        ".ico",
        ".bmp",
        ".avif",
    },
    "fonts": {".woff", ".woff2", ".ttf", ".eot", ".otf"},
    "media": {".mp4", ".webm", ".ogg", ".mp3", ".wav", ".flac"},
}
FALLBACK_CATEGORY = "misc"
ASSET_EXTS = set().union(*ASSET_CATEGORIES.values())

# checked in order, first substring hit wins
EXTENSION_HINTS = (
    (".css", ".css"),
    (".js", ".js"),
    (".png", ".png"),
    (".jpg", ".jpg"),
    (".jpeg", ".jpg"),
    (".gif", ".gif"),
    (".svg", ".svg"),
    (".woff2", ".woff2"),
    (".woff", ".woff"),
    (".ttf", ".ttf"),
)
BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"

# <img> attributes carrying the primary and lazy-load source
IMG_SRC_ATTRS = ("src", "data-src")

FALLBACK_ATTR = "data-fallback"
ORIGINAL_HREF_ATTR = "data-original-href"
HELPER_ATTR = "data-site-cloner"
IMG_ONERROR = (
    "this.onerror=null;this.style.opacity='0.5';"
    "this.title='Image could not be loaded: '+this.src;"
)

# Heuristics for framework pages: bundler chunk literals and client-router paths
BUNDLE_LITERAL_RE = re.compile(
    r"(?P<q>[\"'`])"
    r"(?P<u>(?:(?:https?:)?//|\.{1,2}/|/)[^\"'`\s<>]+?"
    r"\.(?:m?js|css|woff2?|ttf|otf|png|jpe?g|gif|svg|webp|avif)"
    r"(?:\?[^\"'`\s<>]*)?)"
    r"(?P=q)"
)
BUNDLE_MARKERS = (
    "_next/",
    "_nuxt/",
    "/static/",
    "/assets/",
    "/dist/",
    "/build/",
    "chunk",
    "bundle",
)
ROUTE_LITERAL_RE = re.compile(
    r"[\"']?\b(?:path|pathname|href|to|route|page)[\"']?\s*[:=]\s*"
    r"(?P<q>[\"'`])(?P<u>/[A-Za-z0-9\-._~%/]*)(?P=q)"
)

# -------------------- Errors --------------------


class ClonerError(Exception):
    pass


class SeedInvalidError(ClonerError, ValueError):
    pass


class PageFetchError(ClonerError):
    pass


class AssetFetchError(ClonerError):
    pass


class PersistError(ClonerError):
    pass


# -------------------- Settings --------------------


@dataclass
class Settings:
    output_dir: str = "cloned-site"
    max_pages: int = 50
    concurrency: int = 5
    timeout: float = 30.0
    user_agent: str = DEFAULT_USER_AGENT

    # Rendering
    render_js: bool = False
    render_timeout_ms: int = 60000
    asset_render_timeout_ms: int = 30000
    wait_until: str = "networkidle"
    viewport_width: int = 1920
    viewport_height: int = 1080

    # Output
    offline_helpers: bool = True


# -------------------- Utils --------------------


def sanitize_filename(name: str) -> str:
    name = INVALID_FILENAME_CHARS_RE.sub("_", name)
    name = name or "asset"
    if name.startswith("."):
        name = "_" + name[1:]
    return name[:200]


def can_fetch_url(u: Optional[str]) -> bool:
    if not u:
        return False
    u = u.strip().lower()
    if not u:
        return False
    if u.startswith(("#", "mailto:", "tel:", "javascript:", "data:", "blob:")):
        return False
    return True


def is_http_url(u: str) -> bool:
    return urlparse(u).scheme.lower() in HTTP_SCHEMES


def origin_of(url: str) -> str:
    p = urlparse(url)
    scheme = p.scheme.lower()
    host = (p.hostname or "").lower()
    if ":" in host:
        host = f"[{host}]"
    port = p.port
    if port is None or DEFAULT_PORTS.get(scheme) == port:
        return f"{scheme}://{host}"
    return f"{scheme}://{host}:{port}"


def is_same_origin(origin: str, url: str) -> bool:
    try:
        return origin_of(url) == origin
    except ValueError:
        return False


def page_key(url: str) -> str:
    # frontier identity: no fragment, empty path means "/"
    u = urldefrag(url).url
    p = urlparse(u)
    if not p.path:
        u = p._replace(path="/").geturl()
    return u


def build_session(settings: Settings) -> requests.Session:
    s = requests.Session()
    # the asset fallback chain is the only retry layer
    retry = Retry(total=0, raise_on_status=False)
    pool = max(settings.concurrency, 1) * 2
    adapter = HTTPAdapter(max_retries=retry, pool_connections=pool, pool_maxsize=pool)
    s.mount("http://", adapter)
    s.mount("https://", adapter)
    s.headers.update(DEFAULT_HEADERS)
    s.headers["User-Agent"] = settings.user_agent
    return s


def ensure_parent_dir(p: Path) -> None:
    p.parent.mkdir(parents=True, exist_ok=True)


def discard_file(p: Path) -> None:
    try:
        p.unlink(missing_ok=True)
    except OSError:
        pass


# -------------------- HTML utils --------------------


def bs4_parse(html: str) -> BeautifulSoup:
    try:
        return BeautifulSoup(html, "lxml")
    except Exception:
        return BeautifulSoup(html, "html.parser")


def effective_base_url(soup: BeautifulSoup, fallback: str) -> str:
    tag = soup.find("base", href=True)
    if tag and tag.get("href"):
        return urljoin(fallback, tag["href"].strip())
    return fallback


def serialize_html(soup: BeautifulSoup) -> str:
    try:
        return soup.decode(formatter="html")
    except Exception:
        return str(soup)


# -------------------- Path mapping --------------------


def page_local_path(url: str, origin: str) -> str:
    """Map a page URL to its HTML file, relative to the output directory.

    ``/`` and ``/docs/`` become ``index.html`` and ``docs/index.html``,
    ``/about`` becomes ``about.html``, ``/feed.xml`` is kept verbatim.
    Segments are percent-decoded, so ``/caf%C3%A9`` is stored as
    ``café.html``. Never raises: anything unparsable maps to ``index.html``.
    """
    try:
        path = urlparse(urljoin(origin + "/", url)).path or "/"
        if path.endswith("/"):
            path += "index.html"
        elif not posixpath.splitext(path)[1]:
            path += ".html"
        segs = [unquote(seg).replace("/", "_") for seg in path.split("/")]
        segs = [seg for seg in segs if seg and seg not in (".", "..")]
        if not segs:
            return "index.html"
        return INVALID_PATH_CHARS_RE.sub("_", "/".join(segs))
    except Exception:
        return "index.html"


def short_hash(text: str) -> str:
    # 40 bits of md5, base-36, always 8 chars
    n = int(hashlib.md5(text.encode("utf-8")).hexdigest()[:10], 16)
    out = ""
    while n:
        n, r = divmod(n, 36)
        out = BASE36_DIGITS[r] + out
    return out.rjust(8, "0")


def infer_extension(url: str) -> str:
    low = url.lower()
    for needle, ext in EXTENSION_HINTS:
        if needle in low:
            return ext
    return ""


def _path_extension(url: str) -> str:
    try:
        return posixpath.splitext(urlparse(url).path)[1].lower()
    except ValueError:
        return ""


def asset_category(url: str) -> str:
    ext = _path_extension(url) or infer_extension(url)
    for cat, exts in ASSET_CATEGORIES.items():
        if ext in exts:
            return cat
    return FALLBACK_CATEGORY


def asset_filename(url: str) -> str:
    try:
        name = unquote(posixpath.basename(urlparse(url).path)) or "index"
    except ValueError:
        return f"asset-{short_hash(url)}"
    stem, ext = posixpath.splitext(name)
    if not ext:
        ext = infer_extension(url)
    stem = sanitize_filename(stem) if stem else "asset"
    ext = INVALID_FILENAME_CHARS_RE.sub("_", ext.lower())
    return f"{stem}-{short_hash(url)}{ext}"


def asset_local_path(url: str) -> str:
    return f"{ASSETS_DIRNAME}/{asset_category(url)}/{asset_filename(url)}"


# -------------------- Extraction --------------------


def resolve_url(candidate: str, page_url: str) -> str:
    c = candidate.strip()
    if c.startswith("//"):
        scheme = urlparse(page_url).scheme or "https"
        return f"{scheme}:{c}"
    if c.lower().startswith(("http://", "https://", "data:")):
        return c
    return urljoin(page_url, c)


def split_srcset(value: str) -> List[Tuple[str, str]]:
    # URL tokens run up to whitespace, so commas inside data: URLs survive
    out: List[Tuple[str, str]] = []
    pos, n = 0, len(value)
    while pos < n:
        while pos < n and (value[pos].isspace() or value[pos] == ","):
            pos += 1
        if pos >= n:
            break
        start = pos
        while pos < n and not value[pos].isspace():
            pos += 1
        url = value[start:pos]
        if url.endswith(","):
            out.append((url.rstrip(","), ""))
            continue
        start = pos
        while pos < n and value[pos] != ",":
            pos += 1
        out.append((url, value[start:pos].strip()))
        pos += 1
    return out


def parse_srcset(v: str) -> List[str]:
    return [u for u, _ in split_srcset(v or "") if u]


def parse_css_urls(text: str) -> List[str]:
    urls: List[str] = []
    for m in CSS_URL_RE.finditer(text):
        u = m.group(2).strip()
        if can_fetch_url(u):
            urls.append(u)
    return urls


def link_kind(tag) -> Optional[str]:
    rel = tag.get("rel") or []
    if isinstance(rel, str):
        rel = rel.split()
    rels = {r.lower() for r in rel}
    as_type = (tag.get("as") or "").lower()
    if "stylesheet" in rels or ("preload" in rels and as_type == "style"):
        return "style"
    if "modulepreload" in rels or ("preload" in rels and as_type == "script"):
        return "script"
    return None


def looks_like_bundle(u: str) -> bool:
    low = u.lower()
    return any(marker in low for marker in BUNDLE_MARKERS)


def extract_asset_urls(soup: BeautifulSoup, page_url: str) -> Set[str]:
    base = effective_base_url(soup, page_url)
    urls: Set[str] = set()

    def add(value: Optional[str]) -> None:
        if can_fetch_url(value):
            urls.add(resolve_url(value, base))

    for link in soup.find_all("link", href=True):
        if link_kind(link):
            add(link.get("href"))
    for script in soup.find_all("script", src=True):
        add(script.get("src"))
    for img in soup.find_all("img"):
        for a in IMG_SRC_ATTRS:
            add(img.get(a))
    for tag in soup.find_all(srcset=True):
        for u in parse_srcset(tag.get("srcset", "")):
            add(u)
    for tag in soup.find_all(style=True):
        for u in parse_css_urls(tag.get("style") or ""):
            add(u)
    for style in soup.find_all("style"):
        for u in parse_css_urls(style.string or ""):
            add(u)
    return urls


def scan_inline_scripts(soup: BeautifulSoup, page_url: str) -> Tuple[Set[str], List[str]]:
    """Best-effort scan of inline scripts for bundle chunks and router paths.

    Matches are approximate. A literal that is not really an asset just
    fails to download and keeps its remote URL; a missed one is simply
    not captured.
    """
    base = effective_base_url(soup, page_url)
    assets: Set[str] = set()
    routes: List[str] = []
    for script in soup.find_all("script"):
        if script.get("src"):
            continue
        text = script.string or ""
        if not text.strip():
            continue
        for m in BUNDLE_LITERAL_RE.finditer(text):
            u = m.group("u")
            if looks_like_bundle(u):
                assets.add(resolve_url(u, base))
        for m in ROUTE_LITERAL_RE.finditer(text):
            u = m.group("u")
            if u.startswith("//") or posixpath.splitext(u)[1].lower() in ASSET_EXTS:
                continue
            routes.append(resolve_url(u, base))
    return assets, routes


def extract_page_links(soup: BeautifulSoup, page_url: str, origin: str) -> List[str]:
    base = effective_base_url(soup, page_url)
    links: List[str] = []
    for a in soup.find_all("a", href=True):
        href = a.get("href")
        if not can_fetch_url(href):
            continue
        absu = resolve_url(href, base)
        if is_same_origin(origin, absu):
            links.append(page_key(absu))
    return list(dict.fromkeys(links))


def extract_references(
    soup: BeautifulSoup, page_url: str, origin: str
) -> Tuple[Set[str], List[str]]:
    assets = extract_asset_urls(soup, page_url)
    links = extract_page_links(soup, page_url, origin)
    script_assets, routes = scan_inline_scripts(soup, page_url)
    assets |= script_assets
    for r in routes:
        if is_same_origin(origin, r):
            links.append(page_key(r))
    assets = {u for u in assets if not u.lower().startswith("data:")}
    return assets, list(dict.fromkeys(links))


# -------------------- Page fetching --------------------


class PageFetcher:
    def fetch(self, url: str) -> str:
        raise NotImplementedError

    def close(self) -> None:
        pass


class HttpPageFetcher(PageFetcher):
    def __init__(self, session: requests.Session, timeout: float):
        self.session = session
        self.timeout = timeout

    def fetch(self, url: str) -> str:
        try:
            r = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise PageFetchError(f"{url}: {e}") from e
        if r.status_code >= 400:
            raise PageFetchError(f"{url}: HTTP {r.status_code}")
        ct = (r.headers.get("Content-Type") or "").lower()
        if ct and "text/html" not in ct and "application/xhtml+xml" not in ct:
            raise PageFetchError(f"{url}: not an HTML document ({ct})")
        if not r.encoding:
            try:
                r.encoding = r.apparent_encoding or "utf-8"
            except Exception:
                r.encoding = "utf-8"
        return r.text


class BrowserPageFetcher(PageFetcher):
    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout_ms: int = 60000,
        wait_until: str = "networkidle",
        viewport: Tuple[int, int] = (1920, 1080),
    ):
        self.user_agent = user_agent
        self.timeout_ms = timeout_ms
        self.wait_until = wait_until
        self.viewport = viewport
        self._pl = None
        self._browser = None

    def _ensure_browser(self):
        if self._browser is None:
            try:
                from playwright.sync_api import sync_playwright
            except ImportError as e:
                raise PageFetchError(
                    "Playwright not installed. Run: pip install playwright && playwright install"
                ) from e
            self._pl = sync_playwright().start()
            self._browser = self._pl.chromium.launch(headless=True, args=BROWSER_ARGS)
        return self._browser

    def fetch(self, url: str) -> str:
        context = None
        try:
            browser = self._ensure_browser()
            width, height = self.viewport
            context = browser.new_context(
                user_agent=self.user_agent,
                viewport={"width": width, "height": height},
                bypass_csp=True,
            )
            page = context.new_page()
            page.goto(url, wait_until=self.wait_until, timeout=self.timeout_ms)
            return page.content()
        except PageFetchError:
            raise
        except Exception as e:
            raise PageFetchError(f"render failed for {url}: {e}") from e
        finally:
            if context is not None:
                try:
                    context.close()
                except Exception:
                    pass

    def close(self) -> None:
        try:
            if self._browser:
                self._browser.close()
        except Exception:
            pass
        try:
            if self._pl:
                self._pl.stop()
        except Exception:
            pass
        self._browser = None
        self._pl = None


def get_page_fetcher(settings: Settings, session: requests.Session) -> PageFetcher:
    if settings.render_js:
        return BrowserPageFetcher(
            settings.user_agent,
            settings.render_timeout_ms,
            settings.wait_until,
            (settings.viewport_width, settings.viewport_height),
        )
    return HttpPageFetcher(session, settings.timeout)


# -------------------- Asset fetching --------------------


class AssetFetcher:
    """One tier of the asset fallback chain.

    ``fetch`` writes the body to ``dest`` and returns the byte count, or
    raises AssetFetchError. The caller removes partial files.
    """

    name = "base"

    def fetch(self, url: str, dest: Path) -> int:
        raise NotImplementedError

    def close(self) -> None:
        pass


class StreamingHttpFetcher(AssetFetcher):
    name = "http"

    def __init__(self, session: requests.Session, timeout: float):
        self.session = session
        self.timeout = timeout

    def fetch(self, url: str, dest: Path) -> int:
        written = 0
        try:
            resp = self.session.get(
                url, timeout=self.timeout, stream=True, headers=ASSET_HEADERS
            )
            try:
                if resp.status_code >= 400:
                    raise AssetFetchError(f"HTTP {resp.status_code}")
                ensure_parent_dir(dest)
                with open(dest, "wb") as f:
                    for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                        if not chunk:
                            continue
                        f.write(chunk)
                        written += len(chunk)
            finally:
                resp.close()
        except requests.RequestException as e:
            raise AssetFetchError(str(e)) from e
        if written == 0:
            raise AssetFetchError("empty response")
        return written


class BrowserAssetFetcher(AssetFetcher):
    name = "browser"

    def __init__(self, user_agent: str = DEFAULT_USER_AGENT, timeout_ms: int = 30000):
        self.user_agent = user_agent
        self.timeout_ms = timeout_ms
        # playwright sync objects are bound to the thread that started them
        self._local = threading.local()

    def _ensure_browser(self):
        browser = getattr(self._local, "browser", None)
        if browser is None:
            from playwright.sync_api import sync_playwright

            pl = sync_playwright().start()
            self._local.pl = pl
            browser = pl.chromium.launch(headless=True, args=BROWSER_ARGS)
            self._local.browser = browser
        return browser

    def fetch(self, url: str, dest: Path) -> int:
        context = None
        try:
            browser = self._ensure_browser()
            context = browser.new_context(
                user_agent=self.user_agent,
                extra_http_headers={"Accept": "*/*", "Accept-Language": "en-US,en;q=0.9"},
            )
            page = context.new_page()
            resp = page.goto(url, timeout=self.timeout_ms)
            if resp is None:
                raise AssetFetchError("no response")
            if not resp.ok:
                raise AssetFetchError(f"HTTP {resp.status}")
            body = resp.body()
        except AssetFetchError:
            raise
        except ImportError as e:
            raise AssetFetchError("Playwright not installed") from e
        except Exception as e:
            # a crashed or half-started browser is relaunched on the next call
            self.close()
            raise AssetFetchError(str(e)) from e
        finally:
            if context is not None:
                try:
                    context.close()
                except Exception:
                    pass
        if not body:
            raise AssetFetchError("empty response")
        ensure_parent_dir(dest)
        dest.write_bytes(body)
        return len(body)

    def close(self) -> None:
        # only releases the calling thread's browser
        browser = getattr(self._local, "browser", None)
        pl = getattr(self._local, "pl", None)
        self._local.browser = None
        self._local.pl = None
        try:
            if browser:
                browser.close()
        except Exception:
            pass
        try:
            if pl:
                pl.stop()
        except Exception:
            pass


class NativeHttpFetcher(AssetFetcher):
    name = "native"

    def __init__(self, timeout: float, user_agent: str = NATIVE_USER_AGENT):
        self.timeout = timeout
        self.user_agent = user_agent

    def fetch(self, url: str, dest: Path) -> int:
        req = urllib.request.Request(
            url, headers={"User-Agent": self.user_agent, "Accept": "*/*"}
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                body = resp.read()
        except urllib.error.HTTPError as e:
            raise AssetFetchError(f"HTTP {e.code}") from e
        except (OSError, ValueError, http.client.HTTPException) as e:
            raise AssetFetchError(str(e)) from e
        if not body:
            raise AssetFetchError("empty response")
        ensure_parent_dir(dest)
        dest.write_bytes(body)
        return len(body)


def default_asset_fetchers(
    settings: Settings, session: requests.Session
) -> List[AssetFetcher]:
    return [
        StreamingHttpFetcher(session, settings.timeout),
        BrowserAssetFetcher(settings.user_agent, settings.asset_render_timeout_ms),
        NativeHttpFetcher(settings.timeout),
    ]


# -------------------- Progress events --------------------


class ProgressSink:
    """Receives crawl progress. The base class ignores everything.

    Asset events are delivered from download worker threads.
    """

    def page_start(self, url: str, index: int, max_pages: int) -> None:
        pass

    def page_success(self, url: str, local_path: str, asset_count: int) -> None:
        pass

    def page_failure(self, url: str, error: Exception) -> None:
        pass

    def asset_start(self, url: str) -> None:
        pass

    def asset_success(self, record: "AssetRecord") -> None:
        pass

    def asset_warning(self, url: str, message: str) -> None:
        pass

    def asset_failure(self, url: str, message: str) -> None:
        pass

    def crawl_complete(self, result: "CrawlResult") -> None:
        pass


class LoggingSink(ProgressSink):
    def page_start(self, url: str, index: int, max_pages: int) -> None:
        logging.info("processing [%d/%d]: %s", index, max_pages, url)

    def page_success(self, url: str, local_path: str, asset_count: int) -> None:
        logging.info("saved page: %s -> %s (%d assets)", url, local_path, asset_count)

    def page_failure(self, url: str, error: Exception) -> None:
        logging.error("page failed: %s: %s", url, error)

    def asset_start(self, url: str) -> None:
        logging.debug("downloading: %s", url)

    def asset_success(self, record: "AssetRecord") -> None:
        logging.debug("asset ok via %s: %s", record.tier, record.url)

    def asset_warning(self, url: str, message: str) -> None:
        logging.warning("asset retry: %s (%s)", url, message)

    def asset_failure(self, url: str, message: str) -> None:
        logging.warning("will use original URL as fallback: %s (%s)", url, message)

    def crawl_complete(self, result: "CrawlResult") -> None:
        logging.info(
            "done: %d pages, %d failed pages, %d assets, %d unresolved assets",
            len(result.pages),
            len(result.failed_pages),
            result.assets,
            len(result.failed_assets),
        )


# -------------------- Asset cache + materializer --------------------


@dataclass
class AssetRecord:
    url: str
    category: str
    filename: str
    local_path: str
    ok: bool = False
    tier: Optional[str] = None
    size: int = 0


class AssetCache:
    # remote URL -> output-relative posix path; first write wins
    def __init__(self):
        self._m: Dict[str, str] = {}
        self._lock = Lock()

    def get(self, url: str) -> Optional[str]:
        with self._lock:
            return self._m.get(url)

    def set(self, url: str, path: str) -> None:
        with self._lock:
            self._m.setdefault(url, path)

    def __contains__(self, url: str) -> bool:
        with self._lock:
            return url in self._m

    def __len__(self) -> int:
        with self._lock:
            return len(self._m)

    def paths(self) -> List[str]:
        with self._lock:
            return list(self._m.values())

    def items(self) -> List[Tuple[str, str]]:
        with self._lock:
            return list(self._m.items())


def is_materializable(url: str) -> bool:
    if not url or url.lower().startswith("data:"):
        return False
    try:
        return is_http_url(url)
    except ValueError:
        return False


class AssetMaterializer:
    def __init__(
        self,
        output_dir: Union[str, Path],
        cache: AssetCache,
        fetchers: Iterable[AssetFetcher],
        sink: Optional[ProgressSink] = None,
        pool: Optional[ThreadPoolExecutor] = None,
    ):
        self.output_dir = Path(output_dir)
        self.cache = cache
        self.fetchers = list(fetchers)
        self.sink = sink or ProgressSink()
        self.pool = pool
        self.failed: Set[str] = set()
        self._inflight: Dict[str, Event] = {}
        self._lock = Lock()

    def materialize(self, url: str) -> Optional[str]:
        """Return the local path for ``url``, downloading it on first use.

        Runs the fallback chain at most once per URL: concurrent callers for
        a URL already in flight wait for that download, and URLs whose chain
        was exhausted stay unresolved for the rest of the run.
        """
        if not is_materializable(url):
            logging.debug("skip ineligible asset: %s", url)
            return None
        cached = self.cache.get(url)
        if cached is not None:
            return cached
        with self._lock:
            if url in self.failed:
                return None
            pending = self._inflight.get(url)
            owner = pending is None
            if owner:
                cached = self.cache.get(url)
                if cached is not None:
                    return cached
                pending = self._inflight[url] = Event()
        if not owner:
            pending.wait()
            return self.cache.get(url)
        try:
            return self._run_chain(url)
        finally:
            with self._lock:
                self._inflight.pop(url, None)
            pending.set()

    def _run_chain(self, url: str) -> Optional[str]:
        local_path = asset_local_path(url)
        record = AssetRecord(
            url=url,
            category=asset_category(url),
            filename=posixpath.basename(local_path),
            local_path=local_path,
        )
        dest = self.output_dir / local_path
        self.sink.asset_start(url)
        for fetcher in self.fetchers:
            try:
                size = fetcher.fetch(url, dest)
            except Exception as e:
                discard_file(dest)
                logging.warning("%s fetch failed for %s: %s", fetcher.name, url, e)
                self.sink.asset_warning(url, f"{fetcher.name}: {e}")
                continue
            record.ok = True
            record.tier = fetcher.name
            record.size = size
            self.cache.set(url, local_path)
            logging.info("downloaded asset: %s -> %s", url, local_path)
            self.sink.asset_success(record)
            return local_path
        with self._lock:
            self.failed.add(url)
        logging.warning("all download methods failed for: %s", url)
        self.sink.asset_failure(url, "all download methods failed")
        return None

    def materialize_all(self, urls: Iterable[str]) -> Dict[str, Optional[str]]:
        # returns only once every download has settled
        url_list = sorted(set(urls))
        result: Dict[str, Optional[str]] = {}
        if not url_list:
            return result
        if self.pool is None:
            for u in url_list:
                result[u] = self.materialize(u)
            return result
        future_map = {self.pool.submit(self.materialize, u): u for u in url_list}
        for fut in as_completed(future_map):
            result[future_map[fut]] = fut.result()
        return result

    def close(self) -> None:
        for f in self.fetchers:
            try:
                f.close()
            except Exception:
                pass

    def close_on_workers(self, workers: int) -> None:
        """Run ``close`` once on every pool thread.

        Fetchers may hold per-thread resources (a browser per worker). The
        barrier holds each task until all of them have started, which puts
        every task on a different thread.
        """
        if self.pool is None or workers < 1:
            return
        barrier = threading.Barrier(workers)

        def release() -> None:
            try:
                barrier.wait(timeout=30)
            except threading.BrokenBarrierError:
                logging.debug("worker release barrier broken")
            self.close()

        for fut in [self.pool.submit(release) for _ in range(workers)]:
            fut.result()


# -------------------- Rewriters --------------------


class RewriteContext:
    def __init__(self, base: str, origin: str, cache: AssetCache, page_path: str):
        self.base = base
        self.origin = origin
        self.cache = cache
        self.page_dir = posixpath.dirname(page_path) or "."
        self.local_refs = {self.relative(p) for p in cache.paths()}

    def relative(self, local_path: str) -> str:
        # local paths are decoded filesystem names; references must be URL-encoded
        return quote(posixpath.relpath(local_path, self.page_dir))

    def is_local(self, value: str) -> bool:
        return value.strip() in self.local_refs

    def lookup(self, value: str) -> Tuple[Optional[str], bool]:
        # (replacement, resolved); replacement is None for non-http targets
        absu = resolve_url(value, self.base)
        local = self.cache.get(absu)
        if local is not None:
            return self.relative(local), True
        if not is_http_url(absu):
            return None, False
        return absu, False


def rewrite_ref_attr(tag, attr: str, ctx: RewriteContext) -> Optional[bool]:
    val = tag.get(attr)
    if not can_fetch_url(val):
        return None
    if ctx.is_local(val):
        return True
    out, ok = ctx.lookup(val)
    if out is None:
        return None
    tag[attr] = out
    if ok:
        for rm in ("integrity", "crossorigin"):
            if rm in tag.attrs:
                del tag.attrs[rm]
    else:
        tag[FALLBACK_ATTR] = "true"
    return ok


def rewrite_asset_tags(soup: BeautifulSoup, ctx: RewriteContext) -> None:
    for link in soup.find_all("link", href=True):
        if link_kind(link):
            rewrite_ref_attr(link, "href", ctx)
    for script in soup.find_all("script", src=True):
        rewrite_ref_attr(script, "src", ctx)
    for img in soup.find_all("img"):
        outcomes = {a: rewrite_ref_attr(img, a, ctx) for a in IMG_SRC_ATTRS}
        if outcomes["src"] is False:
            img["onerror"] = IMG_ONERROR


def rewrite_srcsets(soup: BeautifulSoup, ctx: RewriteContext) -> None:
    for tag in soup.find_all(srcset=True):
        parts = []
        remote = False
        for url_part, desc in split_srcset(tag.get("srcset", "")):
            if can_fetch_url(url_part) and not ctx.is_local(url_part):
                out, ok = ctx.lookup(url_part)
                if out is not None:
                    url_part = out
                    remote = remote or not ok
            parts.append(f"{url_part} {desc}".strip())
        tag["srcset"] = ", ".join(parts)
        if remote:
            tag[FALLBACK_ATTR] = "true"


def rewrite_css_text(css_text: str, ctx: RewriteContext) -> str:
    def repl(m: re.Match) -> str:
        q = m.group(1) or ""
        u = m.group(2).strip()
        if not can_fetch_url(u) or ctx.is_local(u):
            return m.group(0)
        out, _ = ctx.lookup(u)
        if out is None:
            return m.group(0)
        return f"url({q}{out}{q})"

    return CSS_URL_RE.sub(repl, css_text)


def rewrite_inline_css(soup: BeautifulSoup, ctx: RewriteContext) -> None:
    for tag in soup.find_all(style=True):
        css = tag.get("style")
        if not css:
            continue
        new_css = rewrite_css_text(css, ctx)
        if new_css != css:
            tag["style"] = new_css
    for style in soup.find_all("style"):
        if style.string:
            new_text = rewrite_css_text(style.string, ctx)
            if new_text != style.string:
                style.string.replace_with(new_text)


def rewrite_inline_scripts(soup: BeautifulSoup, ctx: RewriteContext) -> None:
    # only materialized bundle literals are touched; router paths stay as is
    def repl(m: re.Match) -> str:
        u = m.group("u")
        if not looks_like_bundle(u):
            return m.group(0)
        local = ctx.cache.get(resolve_url(u, ctx.base))
        if local is None:
            return m.group(0)
        q = m.group("q")
        return f"{q}{ctx.relative(local)}{q}"

    for script in soup.find_all("script"):
        if script.get("src") or not script.string:
            continue
        text = script.string
        new_text = BUNDLE_LITERAL_RE.sub(repl, text)
        if new_text != text:
            script.string.replace_with(new_text)


def rewrite_page_links(soup: BeautifulSoup, ctx: RewriteContext) -> None:
    for a in soup.find_all("a", href=True):
        href = a.get("href")
        if not can_fetch_url(href):
            continue
        # a previous pass keeps the remote target in data-original-href
        original = a.get(ORIGINAL_HREF_ATTR) or href
        absu = resolve_url(original, ctx.base)
        if not is_same_origin(ctx.origin, absu):
            continue
        rel = ctx.relative(page_local_path(absu, ctx.origin))
        frag = urldefrag(absu).fragment
        if frag:
            rel = f"{rel}#{frag}"
        a["href"] = rel
        a[ORIGINAL_HREF_ATTR] = absu


def rewrite_document(
    soup: BeautifulSoup,
    page_url: str,
    origin: str,
    cache: AssetCache,
    page_path: str,
) -> None:
    """Point every reference in ``soup`` at its local copy, in place.

    References found in ``cache`` become paths relative to ``page_path``.
    The rest keep their absolute remote URL and are tagged with
    ``data-fallback``; same-origin links point at their mapped page and
    remember the remote target in ``data-original-href``.
    """
    ctx = RewriteContext(effective_base_url(soup, page_url), origin, cache, page_path)
    rewrite_asset_tags(soup, ctx)
    rewrite_srcsets(soup, ctx)
    rewrite_inline_css(soup, ctx)
    rewrite_inline_scripts(soup, ctx)
    rewrite_page_links(soup, ctx)


# -------------------- Offline helpers --------------------

ROUTING_SCRIPT = """
(function() {
  function handleRouting() {
    document.querySelectorAll('a[data-original-href]').forEach(function(link) {
      link.addEventListener('click', function(e) {
        var href = this.getAttribute('href');
        if (location.protocol === 'file:') return;
        e.preventDefault();
        fetch(href, { method: 'HEAD' })
          .then(function(r) { window.location.href = r.ok ? href : '/index.html'; })
          .catch(function() { window.location.href = '/index.html'; });
      });
    });
  }
  function handleImageErrors() {
    document.querySelectorAll('img[data-fallback="true"]').forEach(function(img) {
      if (img.hasAttribute('data-error-handled')) return;
      img.setAttribute('data-error-handled', 'true');
      img.addEventListener('error', function() {
        console.warn('Image failed to load:', this.src);
        this.style.opacity = '0.5';
        this.title = 'Image could not be loaded: ' + this.src;
      });
    });
  }
  if (document.readyState === 'loading') {
    document.addEventListener('DOMContentLoaded', function() {
      handleRouting();
      handleImageErrors();
    });
  } else {
    handleRouting();
    handleImageErrors();
  }
})();
"""

SW_REGISTRATION_SCRIPT = """
if ('serviceWorker' in navigator && location.protocol !== 'file:') {
  window.addEventListener('load', function() {
    navigator.serviceWorker.register('/sw.js')
      .catch(function(error) { console.log('SW registration failed:', error); });
  });
}
"""

SERVICE_WORKER_TEMPLATE = """const CACHE_NAME = 'cloned-site-v1';
const ORIGINAL_ORIGIN = __ORIGIN__;
const urlsToCache = __FILES__;

self.addEventListener('install', event => {
  event.waitUntil(
    caches.open(CACHE_NAME)
      .then(cache => cache.addAll(urlsToCache))
      .then(() => self.skipWaiting())
      .catch(error => console.error('Cache installation failed:', error))
  );
});

self.addEventListener('activate', event => {
  event.waitUntil(self.clients.claim());
});

self.addEventListener('fetch', event => {
  const url = new URL(event.request.url);
  if (url.origin === ORIGINAL_ORIGIN) {
    event.respondWith(fetch(event.request));
    return;
  }
  event.respondWith(
    caches.match(event.request).then(response => {
      if (response) return response;
      return caches.match(url.pathname).then(byPath => {
        if (byPath) return byPath;
        const accept = event.request.headers.get('accept') || '';
        if (accept.includes('text/html')) {
          const parts = url.pathname.split('/');
          parts.pop();
          return caches.match(parts.join('/') + '/index.html')
            .then(dirIndex => dirIndex || caches.match('/index.html'));
        }
        return fetch(event.request).catch(
          () => new Response('Resource not found', { status: 404 })
        );
      });
    })
  );
});
"""


def inject_helper_script(soup: BeautifulSoup, kind: str, js: str) -> bool:
    if soup.find("script", attrs={HELPER_ATTR: kind}):
        return False
    tag = soup.new_tag("script")
    tag[HELPER_ATTR] = kind
    tag.string = js
    (soup.body or soup).append(tag)
    return True


def inject_offline_helpers(soup: BeautifulSoup, page_path: str) -> None:
    inject_helper_script(soup, "routing", ROUTING_SCRIPT)
    if page_path == "index.html":
        inject_helper_script(soup, "service-worker", SW_REGISTRATION_SCRIPT)


def write_service_worker(output_dir: Path, origin: str) -> Path:
    files = sorted(
        "/" + quote(p.relative_to(output_dir).as_posix())
        for p in output_dir.rglob("*")
        if p.is_file() and p.name != "sw.js"
    )
    content = SERVICE_WORKER_TEMPLATE.replace("__ORIGIN__", json.dumps(origin))
    content = content.replace("__FILES__", json.dumps(files, indent=2))
    sw = output_dir / "sw.js"
    sw.write_text(content, encoding="utf-8")
    logging.info("service worker: %s (%d files)", sw, len(files))
    return sw


# -------------------- Crawl --------------------

IDLE = "idle"
SEEDING = "seeding"
DRAINING = "draining"
DONE = "done"


@dataclass
class PageRecord:
    url: str
    local_path: str
    html: str = ""
    assets: Set[str] = field(default_factory=set)
    links: List[str] = field(default_factory=list)


@dataclass
class CrawlResult:
    seed_url: str
    output_dir: str
    pages: List[str] = field(default_factory=list)
    failed_pages: List[str] = field(default_factory=list)
    assets: int = 0
    failed_assets: List[str] = field(default_factory=list)

    @property
    def pages_processed(self) -> int:
        return len(self.pages) + len(self.failed_pages)


class SiteCloner:
    """One crawl: owns the frontier, visited set and asset cache.

    Pages are processed one at a time in frontier order. Each page's
    assets go to a thread pool shared by the whole run, and the page waits
    for all of them before it is rewritten.
    """

    def __init__(
        self,
        seed_url: str,
        settings: Optional[Settings] = None,
        sink: Optional[ProgressSink] = None,
        *,
        session: Optional[requests.Session] = None,
        page_fetcher: Optional[PageFetcher] = None,
        asset_fetchers: Optional[Iterable[AssetFetcher]] = None,
    ):
        self.seed_url = (seed_url or "").strip()
        self.settings = settings or Settings()
        self.sink = sink or ProgressSink()
        self.output_dir = Path(self.settings.output_dir)
        self.session = session or build_session(self.settings)
        self.page_fetcher = page_fetcher or get_page_fetcher(self.settings, self.session)
        fetchers = (
            list(asset_fetchers)
            if asset_fetchers is not None
            else default_asset_fetchers(self.settings, self.session)
        )
        self.cache = AssetCache()
        self.materializer = AssetMaterializer(
            self.output_dir, self.cache, fetchers, self.sink
        )
        self.frontier: Deque[str] = deque()
        self.enqueued: Set[str] = set()
        self.visited: Set[str] = set()
        self.origin = ""
        self.pages_done = 0
        self.state = IDLE
        self.result = CrawlResult(seed_url=self.seed_url, output_dir=str(self.output_dir))

    def _seed(self) -> None:
        self.state = SEEDING
        try:
            p = urlparse(self.seed_url)
            valid = p.scheme.lower() in HTTP_SCHEMES and bool(p.hostname)
            origin = origin_of(self.seed_url) if valid else ""
        except ValueError as e:
            raise SeedInvalidError(f"invalid seed URL {self.seed_url!r}: {e}") from e
        if not valid:
            raise SeedInvalidError(f"invalid seed URL {self.seed_url!r}")
        self.origin = origin
        self.output_dir.mkdir(parents=True, exist_ok=True)
        start = page_key(self.seed_url)
        self.frontier.append(start)
        self.enqueued.add(start)

    def run(self) -> CrawlResult:
        self._seed()
        self.state = DRAINING
        max_pages = max(1, self.settings.max_pages)
        workers = max(1, self.settings.concurrency)
        try:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                self.materializer.pool = pool
                try:
                    while self.frontier and self.pages_done < max_pages:
                        url = self.frontier.popleft()
                        if url in self.visited:
                            continue
                        self.visited.add(url)
                        self.pages_done += 1
                        self._process_page(url)
                finally:
                    self.materializer.close_on_workers(workers)
        finally:
            self.materializer.pool = None
            try:
                self.page_fetcher.close()
            except Exception:
                pass
            self.materializer.close()

        if self.settings.offline_helpers and self.result.pages:
            try:
                write_service_worker(self.output_dir, self.origin)
            except OSError as e:
                logging.error("failed to write service worker: %s", e)

        self.result.assets = len(self.cache)
        self.result.failed_assets = sorted(self.materializer.failed)
        self.state = DONE
        self.sink.crawl_complete(self.result)
        return self.result

    def _process_page(self, url: str) -> None:
        max_pages = max(1, self.settings.max_pages)
        self.sink.page_start(url, self.pages_done, max_pages)
        logging.info("Fetch page [%d/%d]: %s", self.pages_done, max_pages, url)
        record = PageRecord(url=url, local_path=page_local_path(url, self.origin))
        try:
            record.html = self.page_fetcher.fetch(url)
            soup = bs4_parse(record.html)
            record.assets, record.links = extract_references(soup, url, self.origin)
            self.materializer.materialize_all(record.assets)
            rewrite_document(soup, url, self.origin, self.cache, record.local_path)
            if self.settings.offline_helpers:
                inject_offline_helpers(soup, record.local_path)
            self._persist(record.local_path, serialize_html(soup))
        except ClonerError as e:
            logging.error("failed to process %s: %s", url, e)
            self._page_failed(url, e)
            return
        except Exception as e:
            logging.exception("unexpected error processing %s", url)
            self._page_failed(url, e)
            return
        self.result.pages.append(record.local_path)
        self.sink.page_success(url, record.local_path, len(record.assets))
        self._enqueue_links(record.links)
        logging.info(
            "Processed: %d pages, %d assets", len(self.result.pages), len(self.cache)
        )

    def _page_failed(self, url: str, error: Exception) -> None:
        self.result.failed_pages.append(url)
        self.sink.page_failure(url, error)

    def _persist(self, local_path: str, html: str) -> None:
        dest = self.output_dir / local_path
        try:
            ensure_parent_dir(dest)
            dest.write_text(html, encoding="utf-8")
        except OSError as e:
            raise PersistError(f"cannot write {dest}: {e}") from e

    def _enqueue_links(self, links: Iterable[str]) -> None:
        max_pages = max(1, self.settings.max_pages)
        for link in links:
            if link in self.enqueued:
                continue
            if len(self.enqueued) >= max_pages:
                break
            self.enqueued.add(link)
            self.frontier.append(link)


def crawl(
    seed_url: str,
    settings: Optional[Settings] = None,
    sink: Optional[ProgressSink] = None,
    **overrides,
) -> CrawlResult:
    """Clone ``seed_url`` into ``settings.output_dir``.

    Keyword overrides replace individual settings, e.g.
    ``crawl(url, max_pages=10, render_js=True)``. Raises SeedInvalidError
    for a bad seed and OSError if the output directory cannot be created;
    every other failure is reported through ``sink`` and the result.
    """
    settings = settings or Settings()
    if overrides:
        settings = dataclasses.replace(settings, **overrides)
    return SiteCloner(seed_url, settings, sink).run()


# -------------------- Local server --------------------


def _within(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
        return True
    except ValueError:
        return False


def resolve_served_path(root: Union[str, Path], request_path: str) -> Optional[Path]:
    root = Path(root).resolve()
    rel = unquote(urlparse(request_path).path).lstrip("/")
    direct = (root / rel).resolve()
    if not _within(direct, root):
        return None
    if direct.is_file():
        return direct
    if posixpath.splitext(rel.rstrip("/"))[1]:
        return None
    stem = rel.rstrip("/")
    candidates = [
        root / f"{stem}.html" if stem else None,
        root / stem / "index.html",
        root / "index.html",
    ]
    for c in candidates:
        if c is None:
            continue
        c = c.resolve()
        if _within(c, root) and c.is_file():
            return c
    return None


class CloneRequestHandler(http.server.SimpleHTTPRequestHandler):
    def end_headers(self) -> None:
        self.send_header("Access-Control-Allow-Origin", "*")
        self.send_header("Access-Control-Allow-Methods", "GET, HEAD, OPTIONS")
        self.send_header(
            "Access-Control-Allow-Headers",
            "Origin, X-Requested-With, Content-Type, Accept",
        )
        super().end_headers()

    def send_head(self):
        root = Path(self.directory).resolve()
        target = resolve_served_path(root, self.path)
        if target is None:
            self.send_error(404, "Page not found")
            return None
        self.path = "/" + quote(target.relative_to(root).as_posix())
        return super().send_head()

    def log_message(self, format: str, *args) -> None:
        logging.debug("%s - %s", self.address_string(), format % args)


def serve_folder(folder: Union[str, Path], port: int = 3000, host: str = "127.0.0.1") -> None:
    root = Path(folder).resolve()
    if not root.is_dir():
        raise FileNotFoundError(f"no such directory: {root}")
    handler = partial(CloneRequestHandler, directory=str(root))
    with http.server.ThreadingHTTPServer((host, port), handler) as httpd:
        print(f"Serving {root} at http://{host}:{port}")
        print("Press CTRL+C to stop the server")
        try:
            httpd.serve_forever()
        except KeyboardInterrupt:
            logging.info("server stopped")


# -------------------- Config loader --------------------


def load_config_file(path: str) -> Dict[str, Union[str, int, float, bool, List[str]]]:
    p = Path(path)
    suf = p.suffix.lower()
    if suf in {".toml", ".tml"}:
        try:
            import tomllib  # py311+
        except ImportError:
            try:
                import tomli as tomllib  # backport
            except ImportError:
                raise RuntimeError("TOML config requires Python 3.11+ or 'tomli'")
        with open(p, "rb") as f:
            return tomllib.load(f) or {}
    elif suf in {".yaml", ".yml"}:
        try:
            import yaml
        except ImportError:
            raise RuntimeError("YAML config requires 'PyYAML'")
        with open(p, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise RuntimeError("Top-level YAML must be a mapping")
            return data
    else:
        raise RuntimeError("Unsupported config format. Use .toml or .yaml")


# -------------------- CLI --------------------


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        description="Clone a website for offline browsing, or serve a clone.",
        add_help=True,
    )
    p.add_argument("--config", type=str, help="path to config.toml|.yaml", default=None)

    p.add_argument("url", nargs="?", help="http(s) URL to clone")
    p.add_argument(
        "output_folder", nargs="?", default="cloned-site", help="output directory"
    )
    p.add_argument("--max-pages", type=int, default=50, help="max HTML pages")
    p.add_argument("--concurrency", type=int, default=5, help="concurrent downloads")
    p.add_argument(
        "--timeout", type=float, default=30.0, help="request timeout seconds"
    )
    p.add_argument("--verbose", action="store_true", help="debug logging")

    # render
    p.add_argument(
        "--render-js",
        action="store_true",
        help="render pages with a headless browser (Playwright)",
    )
    p.add_argument(
        "--render-timeout-ms", type=int, default=60000, help="render timeout ms"
    )
    p.add_argument(
        "--wait-until", type=str, default="networkidle", help="Playwright wait_until"
    )

    # output
    p.add_argument(
        "--no-offline-helpers",
        action="store_true",
        help="do not inject routing script or write sw.js",
    )

    # serve
    p.add_argument(
        "--serve", type=str, default=None, metavar="DIR", help="serve a cloned folder"
    )
    p.add_argument("--port", type=int, default=3000, help="port for --serve")

    return p


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = build_arg_parser()
    preliminary, _ = parser.parse_known_args(argv)
    if preliminary.config:
        cfg = load_config_file(preliminary.config)
        if isinstance(cfg, dict):
            flat = dict(cfg)
            for g in ("crawl", "render", "output", "serve", "general"):
                if isinstance(cfg.get(g), dict):
                    flat.update(cfg[g])
            parser.set_defaults(**flat)
    return parser.parse_args(argv)


def settings_from_args(args: argparse.Namespace) -> Settings:
    return Settings(
        output_dir=args.output_folder,
        max_pages=max(1, args.max_pages),
        concurrency=max(1, args.concurrency),
        timeout=args.timeout if args.timeout > 0 else 30.0,
        render_js=args.render_js,
        render_timeout_ms=max(1000, args.render_timeout_ms),
        wait_until=args.wait_until,
        offline_helpers=not args.no_offline_helpers,
    )


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    if args.serve:
        try:
            serve_folder(args.serve, args.port)
        except FileNotFoundError as e:
            print(f"Cannot serve: {e}")
            sys.exit(1)
        return

    if not args.url:
        build_arg_parser().print_help()
        sys.exit(1)
    if urlparse(args.url).scheme not in HTTP_SCHEMES:
        print("Invalid URL. Use http:// or https://")
        sys.exit(1)

    settings = settings_from_args(args)
    print("Reminder: only clone content you own or have permission to copy.")
    try:
        result = crawl(args.url, settings, LoggingSink())
    except SeedInvalidError as e:
        print(f"Invalid URL: {e}")
        sys.exit(1)
    except OSError as e:
        print(f"Cannot create output directory: {e}")
        sys.exit(1)

    print("Cloning complete")
    print(f"Pages saved: {len(result.pages)} ({len(result.failed_pages)} failed)")
    print(
        f"Assets saved: {result.assets} ({len(result.failed_assets)} using original URL)"
    )
    print(f"Root: {os.path.abspath(settings.output_dir)}")
    print(f"Preview: site-cloner --serve {settings.output_dir}")


if __name__ == "__main__":
    main()
