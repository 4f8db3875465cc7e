"""
1.0 Main Orchestrator Module
Coordinates one cache-warming run across every configured domain.

Flow:
1. Load configuration (config.json + environment)
2. For each domain, concurrently:
   a. Discover URLs from the sitemap(s)
   b. Log a discovery summary row
   c. Warm URLs in batches, purging anything that was not a cache HIT
3. Finally, stamp the finish time and flush the run log exactly once

Usage:
    python -m cache_warmer.main
    python -m cache_warmer.main --region id --batch-size 2
    python -m cache_warmer.main --dry-run
"""

import argparse
import dataclasses
import logging
import os
import sys
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter

from cache_warmer.config import CONFIG_FILE_PATH, DomainTarget, WarmerConfig, load_config
from cache_warmer.discovery import discover_urls
from cache_warmer.purger import CloudflarePurger
from cache_warmer.run_logger import RunLogger
from cache_warmer.scheduler import BatchScheduler
from cache_warmer.sitemap_fetcher import SitemapFetcher
from cache_warmer.sitemap_parser import SitemapParser

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False, log_file: Optional[str] = "cache_warmer.log") -> None:
    """1.1 Console + file logging, configured once per process."""
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.insert(0, logging.FileHandler(log_file))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
    )
    # urllib3 retry chatter is noise at INFO
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def create_warm_session(config: WarmerConfig) -> requests.Session:
    """
    1.2 One pooled session shared by every warm request of the run.

    Sized so concurrent batches across all domains never exhaust the pool.
    """
    workers = config.max_concurrent_domains or max(1, len(config.targets))
    pool_size = max(10, workers * config.batch_size)
    session = requests.Session()
    adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def process_domain(
    target: DomainTarget,
    config: WarmerConfig,
    run_logger: RunLogger,
    scheduler: BatchScheduler,
    dry_run: bool = False,
) -> Tuple[str, Dict[str, Any]]:
    """
    2.0 Discover and warm a single domain (designed for concurrent execution).

    Returns:
        Tuple of (region, result_dict) for aggregation
    """
    region = target.region
    fetcher = SitemapFetcher(
        target.transport(config.sitemap_timeout),
        label=region,
    )
    try:
        logger.info(f"[{region}] Processing {target.base_url}, sitemaps: {target.sitemap_urls()}")
        urls = discover_urls(target, fetcher, SitemapParser())
    finally:
        fetcher.close()

    logger.info(f"[{region}] Found {len(urls)} URLs")
    run_logger.log(run_logger.new_row(
        region,
        region_tag=region,
        message=f"Found {len(urls)} URLs for {region}",
    ))

    if dry_run:
        return (region, {"status": "dry_run", "urls": len(urls)})
    if not urls:
        return (region, {"status": "warning", "message": "No URLs found"})

    rows = scheduler.warm(urls, target, run_logger)
    failed = sum(row.error for row in rows)
    return (region, {"status": "success", "urls": len(rows), "failed": failed})


def run(
    config: WarmerConfig,
    regions: Optional[List[str]] = None,
    dry_run: bool = False,
    no_purge: bool = False,
    output_dir: Optional[str] = None,
    run_logger: Optional[RunLogger] = None,
    scheduler: Optional[BatchScheduler] = None,
) -> RunLogger:
    """
    3.0 One full run over every enabled domain.

    The run log is finalized and flushed exactly once, even if a domain
    task blows up.
    """
    run_logger = run_logger or RunLogger(
        sink_url=config.apps_script_url,
        tz_offset_hours=config.sheet_tz_offset_hours,
        tz_label=config.sheet_tz_label,
        timeout=config.sink_timeout,
    )

    session = None
    if scheduler is None:
        purger = None
        if not no_purge:
            purger = CloudflarePurger(
                config.cloudflare_zone_id,
                config.cloudflare_api_token,
                timeout=config.purge_timeout,
            )
            if not purger.enabled:
                logger.info("Cloudflare purge disabled (missing CLOUDFLARE_ZONE_ID or CLOUDFLARE_API_TOKEN).")
        session = create_warm_session(config)
        scheduler = BatchScheduler(
            purger=purger,
            batch_size=config.batch_size,
            inter_batch_delay=config.inter_batch_delay,
            max_retries=config.max_retries,
            retry_backoff=config.retry_backoff,
            request_timeout=config.request_timeout,
            header_names=config.cache_headers,
            purge_on=config.purge_on,
            session=session,
        )

    targets = [t for t in config.targets if t.enabled]
    if regions:
        targets = [t for t in targets if t.region in regions]

    logger.info(f"Run {run_logger.run_id}: {len(targets)} domains, sheet '{run_logger.sheet_name}'")
    domain_results: Dict[str, Dict[str, Any]] = {}

    try:
        if not targets:
            logger.warning("No domains to process")
        else:
            max_workers = config.max_concurrent_domains or len(targets)
            with ThreadPoolExecutor(max_workers=max_workers) as executor:
                future_to_region = {
                    executor.submit(process_domain, target, config, run_logger, scheduler, dry_run): target.region
                    for target in targets
                }
                for future in as_completed(future_to_region):
                    region = future_to_region[future]
                    try:
                        result_region, result = future.result()
                        domain_results[result_region] = result
                        logger.info(f"Finished {result_region}: {result.get('status')}")
                    except Exception as e:
                        logger.exception(f"FAILED processing domain {region}: {type(e).__name__}: {e}")
                        domain_results[region] = {"status": "error", "message": str(e)}
                        run_logger.log(run_logger.new_row(
                            region,
                            region_tag=region,
                            error=1,
                            message=f"Domain failed: {type(e).__name__}: {e}",
                        ))
    finally:
        if session is not None:
            session.close()
        run_logger.finalize()
        run_logger.flush()

    if output_dir:
        try:
            run_logger.save_csv(output_dir)
        except OSError as e:
            logger.warning(f"Could not write run report to {output_dir}: {e}")

    logger.info("Domain Processing Summary:")
    for region, result in domain_results.items():
        status = result.get("status", "unknown")
        if status == "success":
            logger.info(f"  [OK] {region}: {result.get('urls', 0)} URLs warmed, {result.get('failed', 0)} failed")
        elif status == "dry_run":
            logger.info(f"  [DRY] {region}: {result.get('urls', 0)} URLs discovered")
        elif status == "warning":
            logger.warning(f"  [WARN] {region}: {result.get('message', 'warning')}")
        else:
            logger.error(f"  [FAIL] {region}: {result.get('message', 'failed')}")
    purger = scheduler.purger
    if isinstance(purger, CloudflarePurger) and purger.enabled:
        logger.info(f"Cloudflare purges: {purger.purged} succeeded, {purger.failed} failed")
    if not dry_run:
        run_logger.summarize()

    return run_logger


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Warm CDN and origin caches from sitemap URLs"
    )
    parser.add_argument(
        "--config", "-c",
        default=CONFIG_FILE_PATH,
        help=f"Path to the JSON config (default: {CONFIG_FILE_PATH})"
    )
    parser.add_argument(
        "--region", "-r",
        action="append",
        default=None,
        help="Only warm this region (repeatable; default: all enabled)"
    )
    parser.add_argument(
        "--batch-size", "-b",
        type=int,
        default=None,
        help="URLs warmed concurrently per batch (overrides config)"
    )
    parser.add_argument(
        "--delay",
        type=float,
        default=None,
        help="Seconds to wait between batches (overrides config)"
    )
    parser.add_argument(
        "--output-dir", "-o",
        default=None,
        help="Also write the run's rows to <dir>/<sheet>.csv"
    )
    parser.add_argument(
        "--no-purge",
        action="store_true",
        help="Never call the Cloudflare purge API this run"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Discover URLs only; do not warm or purge"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Debug logging"
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    4.0 CLI entry point. Returns the process exit code.
    """
    args = build_arg_parser().parse_args(argv)
    setup_logging(args.verbose)

    logger.info("=" * 60)
    logger.info(f"[CacheWarmer] Started: {datetime.now(timezone.utc).isoformat()}")
    logger.info("=" * 60)

    config = load_config(args.config)
    if not config:
        logger.error("Failed to load configuration. Exiting.")
        return 1

    overrides = {}
    if args.batch_size is not None:
        if args.batch_size < 1:
            logger.error("--batch-size must be at least 1. Exiting.")
            return 1
        overrides["batch_size"] = args.batch_size
    if args.delay is not None:
        overrides["inter_batch_delay"] = max(0.0, args.delay)
    if overrides:
        config = dataclasses.replace(config, **overrides)

    run(
        config,
        regions=args.region,
        dry_run=args.dry_run,
        no_purge=args.no_purge,
        output_dir=args.output_dir,
    )

    logger.info("=" * 60)
    logger.info(f"[CacheWarmer] Finished: {datetime.now(timezone.utc).isoformat()}")
    logger.info("=" * 60)
    return 0


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    # Entry point - find config.json at the project root when run from the package dir
    script_dir = os.path.dirname(os.path.abspath(__file__))
    project_root = os.path.dirname(script_dir)
    if not os.path.exists(CONFIG_FILE_PATH) and os.path.exists(os.path.join(project_root, CONFIG_FILE_PATH)):
        os.chdir(project_root)
    cli()
