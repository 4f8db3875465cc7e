"""
1.0 Sitemap Fetcher Module
Fetches XML sitemap content for one domain over its own transport.

Key features:
- Per-domain User-Agent and optional proxy
- Automatic retry on 429/5xx via a urllib3 Retry adapter
- Session reuse for connection pooling
- Never raises: failures are logged and reported as None
"""

import logging
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from cache_warmer.config import TransportConfig

logger = logging.getLogger(__name__)


class SitemapFetcher:
    """
    2.0 SitemapFetcher Class
    Fetches sitemap XML content with built-in retry logic.
    """

    def __init__(
        self,
        transport: TransportConfig,
        max_retries: int = 2,
        session: Optional[requests.Session] = None,
        label: str = "",
    ):
        """
        2.1 Initialize the fetcher.

        Args:
            transport: Headers, timeout and proxy for this domain
            max_retries: Adapter-level retries for 429/5xx replies
            session: Optional pre-built session (tests inject a fake)
            label: Prefix for log lines, usually the region code
        """
        self.transport = transport
        self.max_retries = max_retries
        self.label = label
        self.session = session or self._create_session_with_retries()

    def _create_session_with_retries(self) -> requests.Session:
        """
        2.2 Create a requests Session with automatic retry logic.

        Retries on 429, 500, 502, 503, 504 with 1s, 2s backoff.
        """
        session = requests.Session()

        retry_strategy = Retry(
            total=self.max_retries,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["HEAD", "GET"],
            raise_on_status=False,
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)

        session.headers.update(self.transport.headers)
        proxies = self.transport.proxies()
        if proxies:
            session.proxies.update(proxies)

        return session

    def fetch_sitemap_xml(self, sitemap_url: str) -> Optional[str]:
        """
        2.3 Fetch XML content from a sitemap URL.

        Returns:
            XML content as string if successful, None otherwise
        """
        if not sitemap_url or not sitemap_url.startswith(("http://", "https://")):
            logger.warning(f"[{self.label}] Invalid sitemap URL: {sitemap_url}")
            return None

        logger.info(f"[{self.label}] Fetching sitemap: {sitemap_url}")

        try:
            response = self.session.get(sitemap_url, timeout=self.transport.timeout)
        except requests.exceptions.Timeout:
            logger.warning(f"[{self.label}] Timeout fetching {sitemap_url} after {self.transport.timeout}s")
            return None
        except requests.exceptions.ConnectionError as e:
            logger.warning(f"[{self.label}] Connection error fetching {sitemap_url}: {e}")
            return None
        except requests.exceptions.RequestException as e:
            logger.warning(f"[{self.label}] Request error fetching {sitemap_url}: {e}")
            return None

        if response.status_code != 200:
            logger.warning(
                f"[{self.label}] Failed to fetch {sitemap_url}: status={response.status_code}"
            )
            return None

        logger.info(
            f"[{self.label}] Fetched {sitemap_url} "
            f"(status={response.status_code}, size={len(response.text):,} bytes)"
        )
        return response.text

    def close(self) -> None:
        self.session.close()
