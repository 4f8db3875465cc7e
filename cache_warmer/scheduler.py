"""
1.0 Batch Scheduler
Warms a domain's URLs in fixed-size batches.

Key features:
- Batches keep sitemap order; ceil(n / batch_size) of them
- URLs inside a batch run concurrently on a thread pool
- Rows are collected in completion order and handed to the run logger
  once the whole batch has finished
- Fixed delay between batches to throttle outbound requests
- One URL failing never affects the rest of the batch
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, List, Optional, Sequence

import requests

from cache_warmer.classifier import classify_response
from cache_warmer.config import CacheHeaderNames, DomainTarget
from cache_warmer.fetcher import DEFAULT_BACKOFF_SECONDS, DEFAULT_MAX_RETRIES, warm_url
from cache_warmer.purger import CloudflarePurger
from cache_warmer.run_logger import OutcomeRow, RunLogger

logger = logging.getLogger(__name__)


def make_batches(urls: Sequence[str], batch_size: int) -> List[List[str]]:
    size = max(1, int(batch_size))
    return [list(urls[i:i + size]) for i in range(0, len(urls), size)]


class BatchScheduler:
    """
    2.0 Drives fetch -> classify -> log -> purge decision for each URL.
    """

    def __init__(
        self,
        purger: Optional[CloudflarePurger] = None,
        batch_size: int = 1,
        inter_batch_delay: float = 2.0,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_backoff: float = DEFAULT_BACKOFF_SECONDS,
        request_timeout: float = 15.0,
        header_names: Optional[CacheHeaderNames] = None,
        purge_on: str = "edge",
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.purger = purger
        self.batch_size = max(1, int(batch_size))
        self.inter_batch_delay = inter_batch_delay
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self.request_timeout = request_timeout
        self.header_names = header_names or CacheHeaderNames()
        self.purge_on = purge_on
        self.session = session
        self.sleep = sleep

    def process_url(self, url: str, target: DomainTarget, run_logger: RunLogger) -> OutcomeRow:
        """
        2.1 Warm a single URL and build its outcome row.

        A purge is only considered for successful fetches.
        """
        region = target.region
        outcome = warm_url(
            url,
            target.transport(self.request_timeout),
            max_retries=self.max_retries,
            backoff=self.retry_backoff,
            session=self.session,
            sleep=self.sleep,
        )

        if not outcome.ok:
            logger.warning(f"[{region}] Failed to warm {url}: {outcome.error}")
            return run_logger.new_row(
                region,
                region_tag=region,
                url=url,
                response_ms=outcome.latency_ms,
                error=1,
                message=outcome.error or "request failed",
            )

        classification = classify_response(outcome.headers, region, self.header_names)
        logger.info(
            f"[{region}] {outcome.status_code} "
            f"edge={classification.edge_cache_status} origin={classification.origin_cache_status} "
            f"colo={classification.edge_code} pop={classification.edge_pop_id} "
            f"{outcome.latency_ms}ms - {url}"
        )
        row = run_logger.new_row(
            region,
            region_tag=classification.region_tag,
            url=url,
            status=outcome.status_code,
            origin_cache=classification.origin_cache_status,
            edge_cache=classification.edge_cache_status,
            edge_ray=classification.edge_ray_id,
            edge_pop=classification.edge_pop_id,
            response_ms=outcome.latency_ms,
        )

        if self.purger is not None:
            try:
                self.purger.purge_if_needed(url, classification, self.purge_on)
            except Exception as e:
                logger.warning(f"[{region}] Purge failed for {url}: {type(e).__name__}: {e}")
        return row

    def _safe_process(self, url: str, target: DomainTarget, run_logger: RunLogger) -> OutcomeRow:
        try:
            return self.process_url(url, target, run_logger)
        except Exception as e:
            logger.exception(f"[{target.region}] Unexpected error warming {url}")
            return run_logger.new_row(
                target.region,
                region_tag=target.region,
                url=url,
                error=1,
                message=f"{type(e).__name__}: {e}",
            )

    def run_batch(self, batch: Sequence[str], target: DomainTarget, run_logger: RunLogger) -> List[OutcomeRow]:
        """
        3.0 Warm one batch concurrently; rows come back in completion order.
        """
        rows = []
        with ThreadPoolExecutor(max_workers=len(batch) or 1) as executor:
            futures = [executor.submit(self._safe_process, url, target, run_logger) for url in batch]
            for future in as_completed(futures):
                rows.append(future.result())
        return rows

    def warm(self, urls: Sequence[str], target: DomainTarget, run_logger: RunLogger) -> List[OutcomeRow]:
        """
        4.0 Warm every URL of a domain, batch after batch.

        Returns:
            All rows produced for the domain, in the order they were logged
        """
        batches = make_batches(urls, self.batch_size)
        logger.info(
            f"[{target.region}] Warming {len(urls)} URLs in {len(batches)} batches "
            f"(batch_size={self.batch_size}, delay={self.inter_batch_delay}s)"
        )

        all_rows: List[OutcomeRow] = []
        for index, batch in enumerate(batches):
            rows = self.run_batch(batch, target, run_logger)
            run_logger.extend(rows)
            all_rows.extend(rows)

            if (index + 1) % 20 == 0:
                logger.info(f"[{target.region}] Progress: {index + 1}/{len(batches)} batches")

            if index < len(batches) - 1 and self.inter_batch_delay > 0:
                self.sleep(self.inter_batch_delay)

        return all_rows
