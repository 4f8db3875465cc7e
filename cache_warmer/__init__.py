"""
Sitemap Cache Warmer - Source Package

Modules:
- config: Configuration loading and validation
- sitemap_fetcher: HTTP fetching of sitemap XML
- sitemap_parser: XML parsing for sitemap indexes and urlsets
- discovery: URL discovery, de-duplication and host filtering
- fetcher: Warming GET with bounded retry on transient errors
- classifier: Cache status / edge location from response headers
- purger: Purge policy and Cloudflare purge API
- scheduler: Batched concurrent warming
- run_logger: Per-run outcome rows and the Apps Script sink
"""

__version__ = "1.0.0"
