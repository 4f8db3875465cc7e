"""
1.0 URL Discovery
Turns a domain's sitemap entry points into the set of page URLs to warm.

Key features:
- Sitemap index traversal (nested indexes followed, each sitemap fetched once)
- Flat urlset sitemaps handled directly
- De-duplication in first-seen order
- Same-host filter (leading "www." ignored) to drop third-party <loc> entries
- A broken sitemap contributes zero URLs and never aborts discovery
"""

import logging
from typing import List, Optional, Set
from urllib.parse import urlparse

from cache_warmer.config import DomainTarget
from cache_warmer.sitemap_fetcher import SitemapFetcher
from cache_warmer.sitemap_parser import SitemapParser

logger = logging.getLogger(__name__)


def normalize_host(url: str) -> Optional[str]:
    """Lower-cased hostname without a leading "www.", or None for non-http(s) URLs."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return None
    host = parsed.hostname.lower()
    if host.startswith("www."):
        host = host[4:]
    return host


def filter_same_host(urls: List[str], base_url: str) -> List[str]:
    """
    2.0 De-duplicate and keep only absolute URLs on the base URL's host.

    Order of first appearance is preserved so batches are deterministic.
    """
    base_host = normalize_host(base_url)
    kept = []
    seen: Set[str] = set()
    for url in urls:
        if url in seen:
            continue
        seen.add(url)
        if base_host is not None and normalize_host(url) == base_host:
            kept.append(url)
    return kept


def collect_sitemap_urls(
    sitemap_url: str,
    fetcher: SitemapFetcher,
    parser: SitemapParser,
    processed_sitemap_urls: Set[str],
    label: str = "",
) -> List[str]:
    """
    3.0 Fetch and parse a single sitemap URL (index or urlset).

    Recursively processes sitemap indexes and collects all page URLs.

    Args:
        sitemap_url: URL of the sitemap to process
        fetcher: SitemapFetcher for the domain
        parser: SitemapParser instance
        processed_sitemap_urls: Sitemaps already handled for this domain
        label: Log prefix (region code)

    Returns:
        Page URLs in document order (not yet de-duplicated)
    """
    if sitemap_url in processed_sitemap_urls:
        logger.debug(f"[{label}] Sitemap {sitemap_url} already processed. Skipping.")
        return []
    processed_sitemap_urls.add(sitemap_url)

    try:
        xml_content = fetcher.fetch_sitemap_xml(sitemap_url)
        if not xml_content:
            logger.warning(f"[{label}] No XML content for {sitemap_url}. Skipping.")
            return []
        parsed_data = parser.parse_sitemap(xml_content, sitemap_url=sitemap_url)
    except Exception as e:
        logger.warning(f"[{label}] Failed to read sitemap {sitemap_url}: {type(e).__name__}: {e}")
        return []

    locs = parsed_data.get("urls") or []

    if parsed_data["type"] == "sitemapindex":
        logger.info(f"[{label}] Sitemap index {sitemap_url} contains {len(locs)} sub-sitemaps.")
        page_urls = []
        for sub_url in locs:
            page_urls.extend(
                collect_sitemap_urls(sub_url, fetcher, parser, processed_sitemap_urls, label)
            )
        return page_urls

    if parsed_data["type"] == "urlset":
        logger.info(f"[{label}] URL set {sitemap_url} contains {len(locs)} page URLs.")
        return list(locs)

    logger.warning(f"[{label}] Error parsing sitemap {sitemap_url}: {parsed_data.get('error_message')}")
    return []


def discover_urls(
    target: DomainTarget,
    fetcher: SitemapFetcher,
    parser: Optional[SitemapParser] = None,
) -> List[str]:
    """
    4.0 Produce the Discovered URL Set for a domain.

    Returns:
        Unique, same-host, absolute page URLs
    """
    parser = parser or SitemapParser()
    processed: Set[str] = set()
    raw_urls: List[str] = []

    for sitemap_url in target.sitemap_urls():
        raw_urls.extend(collect_sitemap_urls(sitemap_url, fetcher, parser, processed, target.region))

    urls = filter_same_host(raw_urls, target.base_url)
    dropped = len(raw_urls) - len(urls)
    if dropped:
        logger.info(f"[{target.region}] Dropped {dropped} duplicate or off-host sitemap entries")
    logger.info(f"[{target.region}] Discovered {len(urls)} URLs from {len(processed)} sitemaps")
    return urls
