"""
HTTP client module
==================

Plain GETs for the static strategies. Each worker thread keeps its own
``requests`` sessions (one per domain) cloned from a shared template, so the
async pipeline can push blocking fetches onto ``asyncio.to_thread`` without
sharing connection pools across threads.

``HtmlFetcher`` is the async face of the client: it races each fetch against
a timer and turns every failure into ``None``.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import Counter
from typing import Dict, Optional
from urllib.parse import urlparse, urlunparse, urljoin

import requests
import urllib3
from requests.adapters import HTTPAdapter
from requests.exceptions import ConnectionError, ConnectTimeout, ReadTimeout, SSLError, TooManyRedirects
from urllib3.exceptions import InsecureRequestWarning
from urllib3.util.retry import Retry

from mailfinder.admission import UrlAdmission
from mailfinder.config import Config, config as default_config

log = logging.getLogger(__name__)

# ALLOW_INSECURE_SSL turns verification off per request; keep the log quiet
urllib3.disable_warnings(InsecureRequestWarning)
logging.getLogger("urllib3.connectionpool").setLevel(logging.ERROR)


HTML_CONTENT_TYPES = ("text/html", "application/xhtml", "text/plain")

BASE_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}
MAX_REDIRECTS = 5
REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})


# -- URL helpers --

def normalise_domain(url: str) -> str:
    """Bare lower-case host of a URL or host string, www. stripped."""
    host = urlparse(url).hostname if url.startswith(("http://", "https://")) else url
    return (host or "").lower().removeprefix("www.")


def origin_of(url: str) -> str:
    p = urlparse(url)
    return urlunparse((p.scheme.lower(), p.netloc.lower(), "", "", "", ""))


def join_url(base: str, path: str) -> str:
    """Resolve ``path`` against ``base``; bare hosts are treated as https."""
    if "://" not in base:
        base = f"https://{base}"
    return urljoin(base, path)


def is_expected_failure(exc: BaseException) -> bool:
    """Network failures that are the common case against arbitrary sites."""
    if isinstance(exc, (ConnectTimeout, ReadTimeout, ConnectionError, TooManyRedirects,
                        asyncio.TimeoutError, TimeoutError)):
        return True
    message = str(exc).lower()
    return any(token in message for token in (
        "404", "timeout", "timed out", "name or service not known",
        "nodename nor servname", "err_name_not_resolved", "connection refused",
        "err_connection_refused", "getaddrinfo failed",
    ))


# -- sessions --

class _SessionManager:
    """Hands every worker thread its own session per host, sharing one retry adapter."""

    def __init__(self, user_agent: str) -> None:
        self._headers = dict(BASE_HEADERS, **{"User-Agent": user_agent})
        self._local = threading.local()
        # one retry on transient gateway errors; a job itself never retries
        self._adapter = HTTPAdapter(max_retries=Retry(
            total=1,
            backoff_factor=0.3,
            status_forcelist=(502, 503, 504),
            allowed_methods=("GET", "HEAD"),
            raise_on_status=False,
        ))

    def _new_session(self) -> requests.Session:
        sess = requests.Session()
        sess.headers.update(self._headers)
        for prefix in ("http://", "https://"):
            sess.mount(prefix, self._adapter)
        sess.max_redirects = MAX_REDIRECTS
        return sess

    def session(self, domain: str) -> requests.Session:
        by_host: Dict[str, requests.Session] = self._local.__dict__.setdefault("sessions", {})
        sess = by_host.get(domain)
        if sess is None:
            sess = by_host[domain] = self._new_session()
        return sess


# -- client --

class HttpClient:
    """Blocking GET client with per-thread sessions and request statistics."""

    def __init__(self, cfg: Optional[Config] = None) -> None:
        self.config = cfg or default_config
        self.stats = Counter()
        self._sessions = _SessionManager(self.config.desktop_user_agent)
        self._admission = UrlAdmission(self.config)
        self._stats_lock = threading.Lock()

    def _count(self, key: str) -> None:
        with self._stats_lock:
            self.stats[key] += 1

    def _send(self, url: str, timeout: float,
              headers: Optional[Dict[str, str]]) -> Optional[requests.Response]:
        sess = self._sessions.session(normalise_domain(url))
        self._count("total_requests")
        try:
            return sess.get(
                url,
                allow_redirects=False,
                timeout=timeout,
                headers=headers,
                verify=not self.config.insecure_ssl,
            )
        except SSLError as err:
            log.debug("SSL error for %s: %s", url, err)
            self._count("status_ssl-error")
        except requests.RequestException as err:
            if is_expected_failure(err):
                log.debug("Network error for %s: %s", url, err)
            else:
                log.warning("Request failed for %s: %s", url, err)
            self._count("status_no-response")
        return None

    def _redirect_target(self, current: str, response: requests.Response) -> Optional[str]:
        """Admitted absolute URL of the next hop, or ``None`` when the hop is refused."""
        target = urljoin(current, response.headers.get("Location", ""))
        check = self._admission.validate_url(target)
        if not check.valid:
            log.warning("Refusing redirect %s -> %s: %s", current, target, "; ".join(check.errors))
            self._count("blocked_redirects")
            return None
        return check.sanitized

    def safe_get(
        self,
        url: str,
        timeout: Optional[float] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Optional[requests.Response]:
        """
        GET ``url`` and return the response, or ``None`` on any failure.

        Redirects are followed by hand so every hop passes admission control
        again; a hop to a private or loopback target ends the request. Non-2xx
        statuses count as failures. Expected network failures are logged at
        debug level only.
        """
        parsed = urlparse(url)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            log.debug("Skipping invalid URL: %s", url)
            self._count("skipped_urls")
            return None

        if timeout is None:
            timeout = self.config.fetch_timeout

        current = url
        for _ in range(MAX_REDIRECTS + 1):
            response = self._send(current, timeout, headers)
            if response is None:
                return None
            status = response.status_code
            self._count(f"status_{status}")
            log.debug("HTTP GET %s → %s", current, status)
            if status not in REDIRECT_STATUSES or not response.headers.get("Location"):
                break
            current = self._redirect_target(current, response)
            if current is None:
                return None
        else:
            log.debug("Too many redirects for %s", url)
            self._count("too_many_redirects")
            return None

        if not (200 <= status < 300):
            return None
        return response

    def get_html(self, url: str, timeout: Optional[float] = None) -> Optional[str]:
        """Return the body of an HTML/text response, else ``None``."""
        response = self.safe_get(url, timeout=timeout)
        if response is None:
            return None
        content_type = response.headers.get("Content-Type", "text/html").lower()
        if not any(t in content_type for t in HTML_CONTENT_TYPES):
            log.debug("Skipping non-HTML content %s on %s", content_type, url)
            return None
        return response.text


class HtmlFetcher:
    """Async, bounded-timeout HTML fetcher used by the cascade strategies."""

    def __init__(self, client: Optional[HttpClient] = None, cfg: Optional[Config] = None):
        self.config = cfg or (client.config if client else default_config)
        self.client = client or HttpClient(self.config)

    async def fetch(self, url: str) -> Optional[str]:
        timeout = self.config.fetch_timeout
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.client.get_html, url, timeout),
                timeout=timeout + 0.5 if timeout else timeout,
            )
        except asyncio.TimeoutError:
            log.debug("Fetch of %s exceeded %.1fs", url, timeout)
            return None
        except Exception as exc:
            if is_expected_failure(exc):
                log.debug("Fetch of %s failed: %s", url, exc)
            else:
                log.warning("Unexpected fetch failure for %s: %s", url, exc)
            return None
