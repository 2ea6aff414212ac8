import gzip
import hashlib
import threading
from datetime import timedelta
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from remora.page import PageRequest
from remora.web import (
    Fetcher,
    NoOpVisitor,
    Sitemap,
    SitemapIndex,
    SkipURL,
    get_sitemap,
    parse_sitemap,
    parse_sitemap_index,
    url_key,
)


@pytest.fixture
def server():
    routes = {}
    agents = []

    class Handler(BaseHTTPRequestHandler):
        def do_GET(self):
            agents.append(self.headers.get("User-Agent"))
            status, headers, body = routes.get(self.path, (404, {}, b""))
            self.send_response(status)
            for key, value in headers.items():
                self.send_header(key, value)
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, *args):
            pass

    httpd = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    base = f"http://127.0.0.1:{httpd.server_address[1]}"
    yield base, routes, agents
    httpd.shutdown()
    httpd.server_close()


HTML = {"Content-Type": "text/html; charset=utf-8"}


def genpage(title, links):
    anchors = "".join(f'\n    <a href="{link}">{link}</a>' for link in links)
    return (
        "<!DOCTYPE html>\n<html lang=\"en\">\n<head>\n"
        '    <meta charset="UTF-8">\n'
        f"    <title>{title}</title>\n</head>\n<body>\n"
        f"    <h1>This page is titled {title}</h1>{anchors}\n</body>\n</html>\n"
    ).encode()


def sitemap_index(base):
    return f"""
<?xml version='1.0' encoding='UTF-8'?>
	<sitemapindex xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
	<sitemap>
		<loc>{base}/sitemap-latest.xml</loc>
		<lastmod>2021-08-05T07:35-04:00</lastmod>
	</sitemap>
</sitemapindex>""".encode()


def url_set(base):
    return f"""
<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
	<url>
		<loc>{base}/some-page</loc><lastmod>2021-07-09</lastmod>
		<priority>0.5</priority>
	</url>
</urlset>""".encode()


def test_url_key():
    link = "https://ar.wikipedia.org/wiki/%D9%85%D9%88%D8%B3%D9%88%D8%B9%D8%A9"
    assert url_key(link) == ("visited_" + link).encode()


def test_skip_url_message():
    err = SkipURL()
    assert isinstance(err, Exception)
    assert "skip url" in str(err)


def test_noop_visitor_returns_nothing():
    visitor = NoOpVisitor()
    req = PageRequest(url="https://example.com/")
    assert visitor.link_found("https://example.com/") is None
    assert visitor.filter(req, "https://example.com/") is None


def test_parse_sitemap_index():
    index = parse_sitemap_index(sitemap_index("http://host"))
    assert index.index == [
        Sitemap(
            loc="http://host/sitemap-latest.xml",
            last_modified="2021-08-05T07:35-04:00",
        )
    ]
    assert index.contents == []


def test_parse_sitemap():
    result = parse_sitemap(url_set("http://host"))
    assert len(result.urls) == 1
    assert result.urls[0].loc == "http://host/some-page"
    assert result.urls[0].last_modified == "2021-07-09"
    assert result.urls[0].priority == 0.5


def test_parse_sitemap_rejects_index():
    with pytest.raises(ValueError):
        parse_sitemap(sitemap_index("http://host"))


def test_parse_sitemap_rejects_garbage():
    with pytest.raises(ValueError):
        parse_sitemap_index(b"not xml at all")


def test_get_sitemap_index(server):
    base, routes, _ = server
    routes["/sitemap.xml"] = (200, {}, sitemap_index(base))
    sm = get_sitemap(base + "/sitemap.xml")
    assert [s.loc for s in sm.index] == [base + "/sitemap-latest.xml"]
    assert sm.contents == []


def test_get_sitemap_single(server):
    base, routes, _ = server
    routes["/sitemap.xml"] = (200, {}, url_set(base))
    sm = get_sitemap(base + "/sitemap.xml")
    assert sm.index == [Sitemap(loc=base + "/sitemap.xml")]
    assert sm.contents[0].urls[0].loc == base + "/some-page"


def test_fill_contents(server):
    base, routes, _ = server
    routes["/sitemap.xml"] = (200, {}, sitemap_index(base))
    routes["/sitemap-latest.xml"] = (
        200,
        {"Content-Type": "application/x-gzip"},
        gzip.compress(url_set(base)),
    )
    sm = get_sitemap(base + "/sitemap.xml")
    sm.fill_contents(1)
    assert len(sm.contents) == 1
    assert sm.contents[0].urls[0].loc == base + "/some-page"


def test_fill_contents_skips_failures(server):
    base, routes, _ = server
    routes["/a.xml"] = (200, {"Content-Type": "application/zip"}, b"zip")
    index = SitemapIndex(index=[Sitemap(loc=base + "/a.xml")])
    index.fill_contents(2)
    assert index.contents == []


def test_fill_contents_bad_limit():
    index = SitemapIndex(index=[Sitemap(loc="http://127.0.0.1:1/x.xml")])
    with pytest.raises(ValueError):
        index.fill_contents(0)


def test_fetch_test_pages(server):
    base, routes, agents = server
    pages = {
        "one": ["/two", "/three"],
        "two": ["/three", "/four", "/one/one"],
        "three": ["/one", "/two", "/four"],
        "four": ["/1/2/3"],
        "one/one": [],
    }
    for title, paths in pages.items():
        routes["/" + title] = (200, HTML, genpage(title, [base + p for p in paths]))
    fetcher = Fetcher("test-agent")
    for title, paths in pages.items():
        page = fetcher.fetch(PageRequest(url=f"{base}/{title}"))
        assert sorted(page.links) == sorted(base + p for p in paths)
        assert page.content_type == "text/html"
        assert page.is_html
        assert page.title() == title
    assert set(agents) == {"test-agent"}


def test_fetch_hash_and_status(server):
    base, routes, _ = server
    body = genpage("x", [])
    routes["/x"] = (200, HTML, body)
    page = Fetcher("agent").fetch(PageRequest(url=base + "/x", depth=3))
    assert page.status == 200
    assert page.depth == 3
    assert page.hash == hashlib.sha256(body).digest()[:16]
    assert page.encoding == "UTF-8"


def test_fetch_rate_limited(server):
    base, routes, _ = server
    routes["/busy"] = (429, {"Retry-After": "7"}, b"")
    page = Fetcher("agent").fetch(PageRequest(url=base + "/busy"))
    assert page.status == 429
    assert page.retry_after == timedelta(seconds=7)


def test_fetch_redirect(server):
    base, routes, _ = server
    routes["/old"] = (301, {"Location": base + "/new"}, b"")
    routes["/new"] = (200, HTML, genpage("new", []))
    page = Fetcher("agent").fetch(PageRequest(url=base + "/old"))
    assert page.redirected
    assert page.redirected_from == base + "/old"
    assert page.url == base + "/new"
    assert page.title() == "new"