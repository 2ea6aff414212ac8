# remora

A web crawler is built from a handful of parts. This library provides them as plain Python:

- **Pages** (`remora.page`): fetch a URL. The page records its status, content type, redirects,
  response time and body hash, along with its links, title, charset and words.
- **Fetcher and visitors** (`remora.web`): a `Fetcher` that sends a fixed user agent, plus
  `Visitor`, `NoOpVisitor`, `LinkFilter` and the `SkipURL` exception for crawl hooks.
- **robots.txt** (`remora.robots`): decide whether a set of user agents may visit a URL.
- **Sitemaps** (`remora.web`): read a sitemap or a sitemap index and gather the URLs it lists.
- **HTTP caching** (`remora.cache`): parse `Cache-Control` headers. A `requests` transport
  adapter keeps cacheable `GET` and `HEAD` responses.
- **URL sets and stores** (`remora.storage`): remember which URLs have been seen, in memory,
  in LMDB or in Redis. URL fragments are ignored.
- **Disk queue** (`remora.queue`): a FIFO queue kept in LMDB. Readers block until work
  arrives, and closing the queue releases them.

The library depends on `requests`, `beautifulsoup4` and `lmdb`. For Redis you pass in a
client object you already have (it needs `get`, `set` and `mget`), so no Redis library is
required.

## Fetching a page

```python
import requests
from remora.page import page_from_string

with requests.Session() as session:
    page = page_from_string("https://example.com/", 0)
    page.fetch(session)

print(page.status, page.content_type, page.redirected)
print(page.title())
for link in page.links:
    print(link)
```

`Page.fetch` sends a browser-like `User-Agent`. Links come from `<a href>` and `<img src>`.
They are made unique and resolved against the page URL, and inline `data:image/` sources are
skipped. Keywords are collected only for `text/html` and `text/plain` pages. They leave out
the text of `<script>` and `<style>`, and punctuation is removed. On a `429` response,
`retry_after` is set from the `X-Ratelimit-Rest` or `Retry-After` header.

Requests to crawl are described with `PageRequest`. Its key is the 128-bit FNV hash of the
host, so requests to one site can be grouped:

```python
from remora.page import parse_page_request

request = parse_page_request("https://example.com/docs", 1)
print(request.hex_key())
```

`remora.web.Fetcher` fetches a `PageRequest` and returns a `Page`:

```python
from remora.web import Fetcher

fetcher = Fetcher("remora-bot", timeout=30)
page = fetcher.fetch(request)
```

The fetcher can be given a session or a `requests` transport adapter, for example a
`CachingAdapter`. It fills `Page.hash` with the first 16 bytes of the body's SHA-256.
`Page.fetch` uses FNV-128 instead.

## Respecting robots.txt

```python
import requests
from remora.robots import new_robot_ctrl

with requests.Session() as session:
    robots = new_robot_ctrl("example.com", ["remora"], session)

if not robots.should_skip("https://example.com/private/page"):
    ...
```

`should_skip` returns true when any of the agents is disallowed. `allow_all()` gives rules
that allow every path. `robots_from_status(status, body)` builds rules from a response you
fetched yourself, and maps the status this way:

- 2xx: the body is parsed.
- 4xx: everything is allowed.
- 5xx: everything is disallowed.
- Anything else raises `ValueError`.

## Sitemaps

```python
import requests
from remora.web import get_sitemap

with requests.Session() as session:
    index = get_sitemap("https://example.com/sitemap.xml", session)
    index.fill_contents(4, session)

for url_set in index.contents:
    for entry in url_set.urls:
        print(entry.loc, entry.last_modified, entry.priority)
```

A single sitemap comes back as an index with one entry, already filled in. A real index is
filled by `fill_contents`:

- It fetches up to `limit` sitemaps at once.
- It decompresses responses served as `application/x-gzip`.
- It logs and skips sitemaps that cannot be fetched or read.

`parse_sitemap` and `parse_sitemap_index` parse documents you already have. They raise
`ValueError` for anything that is not a `<urlset>` or `<sitemapindex>`, respectively.

## Cache-Control and response caching

```python
from remora.cache import parse_cache_control

ctrl = parse_cache_control("max-age=3600, s-maxage=600, public, must-revalidate")
print(ctrl.scope, ctrl.max_age, ctrl.shared_max_age, ctrl.must_revalidate())
```

A malformed `max-age` or `s-maxage` value raises `ValueError`.

`CachingAdapter` is a `requests` transport adapter that works with a `Cache` such as
`MemoryCache`:

- Responses are stored under the key `METHOD.URL`.
- It answers from the cache when it holds an entry for the request.
- Any method other than `GET` or `HEAD` drops the cached entry for its key.
- A response is stored only if it carries a `Cache-Control` header without `no-cache` or
  `no-store`, and no `Pragma: no-cache`.
- Responses served from the cache carry `X-From-Cache: 1`.

```python
import requests
from remora.cache import CachingAdapter, MemoryCache

session = requests.Session()
adapter = CachingAdapter(MemoryCache())
session.mount("http://", adapter)
session.mount("https://", adapter)
```

## Seen-URL sets

```python
from remora.storage import InMemoryURLSet

seen = InMemoryURLSet()
seen.put("https://example.com/")
assert seen.has("https://example.com/#top")
print(seen.has_multi(["https://example.com/", "https://example.com/other"]))
```

`LMDBURLSet` takes an `lmdb.Environment` and `RedisURLSet` takes a Redis client. Both offer
the same operations, and `RedisURLSet.put_timed` adds entries that expire.

`LMDBStore` and `RedisStore` are simple byte key/value stores with `get`, `set` and `has`.
Their `get` raises `KeyError` for a missing key.

## Disk queue

```python
from remora.queue import QueueClosed, fnv128, open_queue

jobs = open_queue("/tmp/remora-queue", b"jobs_", fnv128)
jobs.put(b"https://example.com/")
print(len(jobs), jobs.peek(), jobs.pop())

jobs.close()
try:
    jobs.pop()
except QueueClosed:
    pass
```

`put` stores an item under the hash of its data, and `put_key` stores it under a key you
choose. `pop` and `peek` block while the queue is empty. After `close`, every waiting and
later call raises `QueueClosed`. A queue made by `open_queue` closes its LMDB environment
when it is closed. `DiskQueue(env, prefix)` works with an environment you manage yourself.

The queue tracks its head and tail in memory. Items written by an earlier process are
therefore not picked up when the queue is reopened.

## What this package does not do

It is a library of parts, not a crawler:

- It has no crawl loop that ties fetching, visitors, robots checks, URL sets and the queue
  together.
- It has no command-line program and no server or API.
- It does not render pages in a browser or run JavaScript.
- It has no message bus between crawler processes.