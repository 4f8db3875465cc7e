"""
1.0 Cloudflare Purge
Decides whether a warmed URL needs a purge and calls the Cloudflare API.

Purge policy: anything that is not a HIT gets purged, including a missing
status header. Purge problems are logged and swallowed; they never change
the outcome recorded for the URL.
"""

import logging
import threading
from typing import Optional

import requests

from cache_warmer.classifier import CacheClassification

logger = logging.getLogger(__name__)

CLOUDFLARE_API_BASE = "https://api.cloudflare.com/client/v4"
DEFAULT_PURGE_TIMEOUT = 30


def should_purge(classification: CacheClassification, purge_on: str = "edge") -> bool:
    """True unless the selected cache layer reported HIT (case-insensitive)."""
    if purge_on == "origin":
        status = classification.origin_cache_status
    else:
        status = classification.edge_cache_status
    return str(status).strip().lower() != "hit"


class CloudflarePurger:
    """
    2.0 Purges single files from a Cloudflare zone.

    Without a zone id and token the purger is disabled and purge() is a no-op.
    """

    def __init__(
        self,
        zone_id: Optional[str],
        api_token: Optional[str],
        timeout: float = DEFAULT_PURGE_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.zone_id = zone_id
        self.api_token = api_token
        self.timeout = timeout
        self.session = session or requests.Session()
        self.purged = 0
        self.failed = 0
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return bool(self.zone_id and self.api_token)

    @property
    def endpoint(self) -> str:
        return f"{CLOUDFLARE_API_BASE}/zones/{self.zone_id}/purge_cache"

    def _count(self, ok: bool) -> None:
        with self._lock:
            if ok:
                self.purged += 1
            else:
                self.failed += 1

    def purge(self, url: str) -> bool:
        """
        2.1 Ask Cloudflare to drop its cached copy of one URL.

        Returns:
            True when the API reported success, False otherwise (or when disabled)
        """
        if not self.enabled:
            logger.debug(f"Cloudflare purge disabled, skipping {url}")
            return False

        try:
            response = self.session.post(
                self.endpoint,
                json={"files": [url]},
                headers={
                    "Authorization": f"Bearer {self.api_token}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
            )
            data = response.json()
        except requests.exceptions.JSONDecodeError as e:
            self._count(ok=False)
            logger.warning(f"Cloudflare purge for {url} returned non-JSON body (status={response.status_code}): {e}")
            return False
        except requests.exceptions.RequestException as e:
            self._count(ok=False)
            logger.warning(f"Error purging Cloudflare cache for {url}: {e}")
            return False

        if isinstance(data, dict) and data.get("success") is True:
            self._count(ok=True)
            logger.info(f"Cloudflare cache purged: {url}")
            return True

        self._count(ok=False)
        errors = data.get("errors") if isinstance(data, dict) else data
        logger.warning(f"Failed to purge Cloudflare cache for {url}: status={response.status_code}, errors={errors}")
        return False

    def purge_if_needed(self, url: str, classification: CacheClassification, purge_on: str = "edge") -> bool:
        """Apply the purge policy and trigger a purge when it says so."""
        if not should_purge(classification, purge_on):
            return False
        return self.purge(url)
