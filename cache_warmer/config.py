import json
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any, Tuple

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

CONFIG_FILE_PATH = "config.json"

DEFAULT_USER_AGENT = "CacheWarmer/1.0"
DEFAULT_SITEMAP_PATHS = ("/sitemap_index.xml",)

# Response headers read by the classifier (deployment-specific)
DEFAULT_CACHE_HEADERS = {
    "origin": "x-litespeed-cache",
    "edge": "cf-cache-status",
    "ray": "cf-ray",
    "pop": "x-vercel-id",
}

PURGE_SOURCES = ("edge", "origin")


@dataclass(frozen=True)
class TransportConfig:
    """Per-domain HTTP transport: headers, timeout and optional proxy."""
    headers: Dict[str, str]
    timeout: float = 15.0
    proxy: Optional[str] = None

    def proxies(self) -> Optional[Dict[str, str]]:
        if not self.proxy:
            return None
        return {"http": self.proxy, "https": self.proxy}


@dataclass(frozen=True)
class DomainTarget:
    """One site to warm. Immutable for the lifetime of a run."""
    region: str
    base_url: str
    user_agent: str = DEFAULT_USER_AGENT
    proxy: Optional[str] = None
    sitemap_paths: Tuple[str, ...] = DEFAULT_SITEMAP_PATHS
    enabled: bool = True

    def sitemap_urls(self) -> List[str]:
        base = self.base_url.rstrip("/")
        return [f"{base}/{path.lstrip('/')}" for path in self.sitemap_paths]

    def transport(self, timeout: float) -> TransportConfig:
        return TransportConfig(
            headers={"User-Agent": self.user_agent},
            timeout=timeout,
            proxy=self.proxy,
        )


@dataclass(frozen=True)
class CacheHeaderNames:
    origin: str = DEFAULT_CACHE_HEADERS["origin"]
    edge: str = DEFAULT_CACHE_HEADERS["edge"]
    ray: str = DEFAULT_CACHE_HEADERS["ray"]
    pop: str = DEFAULT_CACHE_HEADERS["pop"]


@dataclass(frozen=True)
class WarmerConfig:
    """
    Everything a run needs, built once at startup and passed explicitly
    into discovery, the scheduler and the run logger.
    """
    targets: Tuple[DomainTarget, ...]
    batch_size: int = 1
    inter_batch_delay: float = 2.0
    max_retries: int = 3
    retry_backoff: float = 2.0
    request_timeout: float = 15.0
    sitemap_timeout: float = 15.0
    purge_timeout: float = 30.0
    sink_timeout: float = 20.0
    max_concurrent_domains: Optional[int] = None
    purge_on: str = "edge"
    cache_headers: CacheHeaderNames = field(default_factory=CacheHeaderNames)
    sheet_tz_offset_hours: float = 8.0
    sheet_tz_label: str = "WITA"
    apps_script_url: Optional[str] = None
    cloudflare_zone_id: Optional[str] = None
    cloudflare_api_token: Optional[str] = None

    @property
    def purge_enabled(self) -> bool:
        return bool(self.cloudflare_zone_id and self.cloudflare_api_token)


def _env(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def load_config(path: str = CONFIG_FILE_PATH) -> Optional[WarmerConfig]:
    """Loads config.json plus secrets from the environment (and .env)."""
    load_dotenv()

    if not os.path.exists(path):
        logger.error(f"Configuration file not found: {path}")
        return None
    try:
        with open(path, 'r') as f:
            config_data = json.load(f)
    except json.JSONDecodeError as e:
        logger.error(f"Error decoding JSON from {path}: {e}")
        return None
    except OSError as e:
        logger.error(f"Could not read configuration file {path}: {e}")
        return None

    logger.info(f"Successfully loaded configuration from {path}")
    if not validate_config(config_data):
        return None
    return build_config(config_data)


def validate_config(config: Dict[str, Any]) -> bool:
    """Validates the structure and content of the configuration."""
    if not isinstance(config, dict):
        logger.error("Configuration must be a dictionary.")
        return False

    if "targets" not in config or not isinstance(config["targets"], list):
        logger.error("'targets' key is missing or not a list in config.")
        return False

    if not config["targets"]:
        logger.warning("'targets' list is empty. Nothing will be warmed.")

    seen_regions = set()
    for i, target_entry in enumerate(config["targets"]):
        if not isinstance(target_entry, dict):
            logger.error(f"Target entry at index {i} is not a dictionary.")
            return False
        for key in ("region", "base_url"):
            value = target_entry.get(key)
            if not isinstance(value, str) or not value.strip():
                logger.error(f"Value for key '{key}' in target entry at index {i} must be a non-empty string.")
                return False
        if not target_entry["base_url"].startswith(("http://", "https://")):
            logger.error(f"Target entry at index {i} has a non-http base_url: {target_entry['base_url']}")
            return False
        region = target_entry["region"].strip()
        if region in seen_regions:
            logger.error(f"Duplicate region '{region}' in targets.")
            return False
        seen_regions.add(region)
        paths = target_entry.get("sitemap_paths")
        if paths is not None and (not isinstance(paths, list) or not all(isinstance(p, str) and p for p in paths)):
            logger.error(f"'sitemap_paths' in target entry at index {i} must be a list of non-empty strings.")
            return False

    for key in ("batch_size", "max_retries"):
        if key in config and (not isinstance(config[key], int) or config[key] < 1):
            logger.error(f"'{key}' must be a positive integer.")
            return False

    for key in ("inter_batch_delay", "retry_backoff", "request_timeout", "sitemap_timeout"):
        if key in config and (not isinstance(config[key], (int, float)) or config[key] < 0):
            logger.error(f"'{key}' must be a non-negative number.")
            return False

    workers = config.get("max_concurrent_domains")
    if workers is not None and (not isinstance(workers, int) or isinstance(workers, bool) or workers < 1):
        logger.error("'max_concurrent_domains' must be a positive integer or null.")
        return False

    offset = config.get("sheet_tz_offset_hours", 8)
    if not isinstance(offset, (int, float)) or isinstance(offset, bool) or not -24 < offset < 24:
        logger.error("'sheet_tz_offset_hours' must be a number of hours between -24 and 24.")
        return False

    label = config.get("sheet_tz_label", "WITA")
    if not isinstance(label, str) or not label.strip():
        logger.error("'sheet_tz_label' must be a non-empty string.")
        return False

    if config.get("purge_on", "edge") not in PURGE_SOURCES:
        logger.error(f"'purge_on' must be one of {PURGE_SOURCES}.")
        return False

    headers = config.get("cache_headers", {})
    if not isinstance(headers, dict) or any(k not in DEFAULT_CACHE_HEADERS for k in headers):
        logger.error(f"'cache_headers' may only set {sorted(DEFAULT_CACHE_HEADERS)}.")
        return False
    for key, value in headers.items():
        if not isinstance(value, str) or not value.strip():
            logger.error(f"'cache_headers.{key}' must be a non-empty header name.")
            return False

    logger.info("Configuration validation successful.")
    return True


def _build_target(entry: Dict[str, Any]) -> DomainTarget:
    region = entry["region"].strip()
    proxy_env = entry.get("proxy_env") or f"PROXY_{region.upper()}"
    paths = entry.get("sitemap_paths") or list(DEFAULT_SITEMAP_PATHS)
    return DomainTarget(
        region=region,
        base_url=entry["base_url"].strip().rstrip("/"),
        user_agent=entry.get("user_agent") or f"CacheWarmer-{region.upper()}/1.0",
        proxy=_env(proxy_env),
        sitemap_paths=tuple(paths),
        enabled=entry.get("enabled", True) is not False,
    )


def build_config(config_data: Dict[str, Any]) -> WarmerConfig:
    """Turns a validated config dict into a WarmerConfig (reads env for secrets)."""
    targets = tuple(_build_target(entry) for entry in config_data.get("targets", []))
    header_overrides = config_data.get("cache_headers", {})
    return WarmerConfig(
        targets=targets,
        batch_size=config_data.get("batch_size", 1),
        inter_batch_delay=float(config_data.get("inter_batch_delay", 2.0)),
        max_retries=config_data.get("max_retries", 3),
        retry_backoff=float(config_data.get("retry_backoff", 2.0)),
        request_timeout=float(config_data.get("request_timeout", 15.0)),
        sitemap_timeout=float(config_data.get("sitemap_timeout", 15.0)),
        max_concurrent_domains=config_data.get("max_concurrent_domains"),
        purge_on=config_data.get("purge_on", "edge"),
        cache_headers=CacheHeaderNames(**{**DEFAULT_CACHE_HEADERS, **header_overrides}),
        sheet_tz_offset_hours=float(config_data.get("sheet_tz_offset_hours", 8.0)),
        sheet_tz_label=config_data.get("sheet_tz_label", "WITA"),
        apps_script_url=_env("APPS_SCRIPT_URL"),
        cloudflare_zone_id=_env("CLOUDFLARE_ZONE_ID"),
        cloudflare_api_token=_env("CLOUDFLARE_API_TOKEN"),
    )


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    config = load_config()
    if config:
        logger.info(f"Targets: {[t.region for t in config.targets]}")
        logger.info(f"Purge enabled: {config.purge_enabled}, sink configured: {bool(config.apps_script_url)}")
    else:
        logger.error("Failed to load or validate configuration.")
