"""
1.0 Warm Fetcher
Single GET per URL with bounded retry on transient network failures.

Errors are sorted into three kinds before the retry loop looks at them:
- TRANSIENT: timeouts, connection reset/aborted, broken chunked transfer
- PERMANENT: DNS failure, refused connection, proxy failure, bad URL, ...
- PARSE_FAILURE: malformed XML / values (raised during discovery)

Only TRANSIENT errors are retried.
"""

import enum
import logging
import socket
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, Optional

import requests
from lxml import etree
from tenacity import RetryCallState, Retrying, retry_if_exception, stop_after_attempt, wait_fixed
from urllib3.exceptions import NameResolutionError, ProtocolError, ReadTimeoutError

from cache_warmer.config import TransportConfig

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_SECONDS = 2.0


class ErrorKind(enum.Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    PARSE_FAILURE = "parse_failure"


@dataclass
class FetchOutcome:
    """Result of warming one URL."""
    url: str
    status_code: Optional[int] = None
    latency_ms: int = 0
    headers: Dict[str, str] = field(default_factory=dict)
    ok: bool = False
    error: Optional[str] = None
    attempts: int = 0


def _iter_causes(exc: BaseException, limit: int = 10) -> Iterator[BaseException]:
    """Walk the wrapped-exception chain requests/urllib3 build around socket errors."""
    seen = set()
    pending = [exc]
    while pending and len(seen) < limit:
        current = pending.pop(0)
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        pending.append(getattr(current, "reason", None))
        pending.append(current.__cause__)
        pending.append(current.__context__)
        pending.extend(arg for arg in current.args if isinstance(arg, BaseException))


def classify_error(exc: BaseException) -> ErrorKind:
    """Map an exception raised while fetching or parsing to an ErrorKind."""
    if isinstance(exc, (etree.XMLSyntaxError, etree.ParserError)):
        return ErrorKind.PARSE_FAILURE

    causes = list(_iter_causes(exc))

    # DNS failures surface as ConnectionError too; never worth retrying.
    if any(isinstance(c, (NameResolutionError, socket.gaierror)) for c in causes):
        return ErrorKind.PERMANENT
    if isinstance(exc, (requests.exceptions.ProxyError, requests.exceptions.SSLError)):
        return ErrorKind.PERMANENT
    if isinstance(exc, (requests.exceptions.Timeout, requests.exceptions.ChunkedEncodingError)):
        return ErrorKind.TRANSIENT
    if isinstance(exc, requests.exceptions.RequestException):
        if any(
            isinstance(c, (ConnectionResetError, ConnectionAbortedError, ProtocolError,
                           ReadTimeoutError, socket.timeout))
            for c in causes
        ):
            return ErrorKind.TRANSIENT
        return ErrorKind.PERMANENT
    if isinstance(exc, (ConnectionResetError, ConnectionAbortedError, TimeoutError)):
        return ErrorKind.TRANSIENT
    if isinstance(exc, ValueError):
        return ErrorKind.PARSE_FAILURE
    return ErrorKind.PERMANENT


def is_transient(exc: BaseException) -> bool:
    kind = classify_error(exc)
    if kind is not ErrorKind.TRANSIENT:
        logger.debug(f"Not retrying: {kind.value} error {type(exc).__name__}")
    return kind is ErrorKind.TRANSIENT


def fetch_with_retry(
    url: str,
    transport: TransportConfig,
    max_retries: int = DEFAULT_MAX_RETRIES,
    backoff: float = DEFAULT_BACKOFF_SECONDS,
    session: Optional[requests.Session] = None,
    sleep: Callable[[float], None] = time.sleep,
    on_attempt: Optional[Callable[[int], None]] = None,
) -> requests.Response:
    """
    2.0 GET a URL, retrying transient network failures.

    Args:
        url: Target URL
        transport: Headers, timeout and proxy for the domain
        max_retries: Total attempts allowed (>= 1)
        backoff: Fixed wait in seconds between attempts
        session: Session to issue the request on (defaults to requests module)
        sleep: Sleep function (tests pass a recorder)
        on_attempt: Called with the attempt number before each request

    Returns:
        The response, whatever its status code

    Raises:
        The last error once retries are exhausted, or the first permanent one.
    """
    client = session or requests
    attempts = max(1, max_retries)

    def _before(retry_state: RetryCallState) -> None:
        if on_attempt:
            on_attempt(retry_state.attempt_number)

    def _before_sleep(retry_state: RetryCallState) -> None:
        e = retry_state.outcome.exception()
        logger.info(
            f"Transient error on {url} (attempt {retry_state.attempt_number}/{attempts}): {e}. "
            f"Retrying in {backoff}s"
        )

    retrying = Retrying(
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(backoff),
        retry=retry_if_exception(is_transient),
        before=_before,
        before_sleep=_before_sleep,
        sleep=sleep,
        reraise=True,
    )
    return retrying(
        client.get,
        url,
        headers=transport.headers,
        timeout=transport.timeout,
        proxies=transport.proxies(),
        allow_redirects=True,
    )


def warm_url(
    url: str,
    transport: TransportConfig,
    max_retries: int = DEFAULT_MAX_RETRIES,
    backoff: float = DEFAULT_BACKOFF_SECONDS,
    session: Optional[requests.Session] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> FetchOutcome:
    """
    3.0 Warm one URL and capture what the caches reported. Never raises.

    Latency covers the whole call, retries and backoff included.
    """
    outcome = FetchOutcome(url=url)

    def _count(attempt: int) -> None:
        outcome.attempts = attempt

    start = time.monotonic()
    try:
        response = fetch_with_retry(
            url, transport,
            max_retries=max_retries,
            backoff=backoff,
            session=session,
            sleep=sleep,
            on_attempt=_count,
        )
    except Exception as e:
        outcome.latency_ms = round((time.monotonic() - start) * 1000)
        outcome.error = str(e) or type(e).__name__
        return outcome

    outcome.latency_ms = round((time.monotonic() - start) * 1000)
    outcome.status_code = response.status_code
    outcome.headers = {k.lower(): v for k, v in response.headers.items()}
    outcome.ok = True
    return outcome
