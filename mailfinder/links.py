"""
Same-domain link discovery for crawl frontiers and contact-page probing.
"""

import logging
from typing import Iterable, List, Optional
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlunparse

from bs4 import BeautifulSoup

from mailfinder.http import normalise_domain, origin_of

log = logging.getLogger(__name__)

SKIPPED_SCHEMES = ("mailto:", "tel:", "javascript:", "data:", "sms:", "#")

SKIPPED_EXTENSIONS = (
    ".pdf", ".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg", ".zip", ".mp4",
    ".mp3", ".css", ".js", ".ico", ".xml", ".doc", ".docx", ".xls", ".xlsx",
)

# Lower rank is visited first
LINK_PRIORITIES = (
    ("contact", 0),
    ("kontakt", 0),
    ("about", 1),
    ("impressum", 1),
    ("support", 2),
    ("help", 2),
    ("team", 3),
    ("company", 3),
    ("business", 3),
    ("legal", 4),
    ("privacy", 4),
)
DEFAULT_PRIORITY = 9


def canonicalize_url(url: str) -> str:
    """
    Comparison key for a URL: lower-case host without ``www.``, no fragment,
    no trailing slash, ``utm_*`` parameters dropped and the rest sorted.
    """
    parsed = urlparse(url)
    scheme, netloc, path, params, query, _ = parsed
    pairs = parse_qsl(query, keep_blank_values=True)
    filtered = [(k, v) for k, v in pairs if not k.startswith("utm_")]
    filtered.sort()
    normalized_query = urlencode(filtered)
    path = path.rstrip("/") or "/"
    netloc = netloc.lower().removeprefix("www.")
    return urlunparse((scheme.lower(), netloc, path, params, normalized_query, ""))


def same_site(url: str, base_url: str) -> bool:
    """True when ``url`` is on the base domain or one of its subdomains."""
    host = normalise_domain(url)
    base = normalise_domain(base_url)
    return bool(host) and (host == base or host.endswith("." + base))


def resolve_paths(base_url: str, paths: Iterable[str]) -> List[str]:
    """Resolve a path catalogue against the origin of ``base_url``."""
    origin = origin_of(base_url)
    urls: List[str] = []
    for path in paths:
        url = f"{origin}/{path.strip('/')}"
        if url not in urls:
            urls.append(url)
    return urls


def link_priority(url: str) -> int:
    path = urlparse(url).path.lower()
    for keyword, rank in LINK_PRIORITIES:
        if keyword in path:
            return rank
    return DEFAULT_PRIORITY


def prioritise(urls: Iterable[str]) -> List[str]:
    """Stable sort putting contact/about/support-like links first."""
    return sorted(urls, key=link_priority)


def _admissible_href(href: str) -> bool:
    lowered = href.lower()
    if not lowered or lowered.startswith(SKIPPED_SCHEMES):
        return False
    return not urlparse(lowered).path.endswith(SKIPPED_EXTENSIONS)


def filter_links(base_url: str, hrefs: Iterable[Optional[str]]) -> List[str]:
    """Absolute, canonical, same-site links from raw hrefs, first-seen order."""
    links: List[str] = []
    seen = set()
    for href in hrefs:
        if not href:
            continue
        href = href.strip()
        if not _admissible_href(href):
            continue
        full_url = urljoin(base_url, href)
        if urlparse(full_url).scheme not in {"http", "https"}:
            continue
        if not same_site(full_url, base_url):
            continue
        canon = canonicalize_url(full_url)
        if canon not in seen:
            seen.add(canon)
            links.append(canon)
    return links


def extract_internal_links(base_url: str, html: Optional[str]) -> List[str]:
    """Same-domain links found in ``html``."""
    if not html:
        return []
    soup = BeautifulSoup(html, "html.parser")
    return filter_links(base_url, (a.get("href") for a in soup.find_all("a", href=True)))
