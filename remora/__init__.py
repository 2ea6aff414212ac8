"""Building blocks for a web crawler: pages, robots.txt, sitemaps, HTTP caching, URL sets and a disk queue."""

__version__ = "0.1.0"