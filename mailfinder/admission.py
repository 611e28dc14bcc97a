"""
URL admission control.

The pipeline fetches caller-supplied URLs server side (including through a
full browser), so every candidate passes through here before any network
I/O. Validation covers shape (scheme, length, host) and SSRF exposure
(loopback, private and link-local targets, IP literals, pseudo-TLDs).
"""

import ipaddress
import logging
import re
import socket
from dataclasses import dataclass, field
from typing import Iterable, List, Optional
from urllib.parse import urlparse, urlunparse

import idna

from mailfinder.config import Config, config as default_config

log = logging.getLogger(__name__)

ALLOWED_SCHEMES = {"http", "https"}

LOCALHOST_NAMES = {"localhost", "localhost.localdomain", "ip6-localhost", "ip6-loopback"}

_SUSPICIOUS_HOST_PATTERNS = [
    re.compile(r"^[0-9]+$"),                        # all numeric
    re.compile(r"^[0-9]+\.[0-9]+\.[0-9]+\.[0-9]+$"),  # dotted quad
    re.compile(r"^0x[0-9a-f]+$", re.I),             # hex-encoded address
    re.compile(r"\.local$", re.I),
    re.compile(r"\.internal$", re.I),
    re.compile(r"\.test$", re.I),
    re.compile(r"\.example$", re.I),
    re.compile(r"\.localhost$", re.I),
]

_HOST_RE = re.compile(
    r"^(?=.{1,253}$)[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?"
    r"(?:\.[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?)*$",
    re.I,
)


@dataclass
class UrlCheck:
    """Outcome of validating a single URL."""
    url: str
    valid: bool
    errors: List[str] = field(default_factory=list)
    sanitized: Optional[str] = None


@dataclass
class BatchCheck:
    """Outcome of validating a batch of URLs."""
    valid: bool
    urls: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


def _parse_ip(hostname: str):
    try:
        return ipaddress.ip_address(hostname)
    except ValueError:
        return None


def is_private_address(address) -> bool:
    """True for loopback, RFC1918, link-local, reserved and unspecified space."""
    if isinstance(address, str):
        address = _parse_ip(address)
        if address is None:
            return False
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped:
        address = address.ipv4_mapped
    return (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_reserved
        or address.is_multicast
        or address.is_unspecified
    )


def to_ascii_hostname(hostname: str) -> Optional[str]:
    """Punycode form of an internationalised hostname; ``None`` if it cannot be encoded."""
    if hostname.isascii():
        return hostname
    try:
        return idna.encode(hostname, uts46=True).decode("ascii")
    except (idna.IDNAError, UnicodeError) as exc:
        log.debug("Rejecting hostname %r: %s", hostname, exc)
        return None


def is_suspicious_hostname(hostname: str) -> bool:
    return any(p.search(hostname) for p in _SUSPICIOUS_HOST_PATTERNS)


def resolve_addresses(hostname: str) -> List[str]:
    """Resolve a hostname to its addresses; an empty list when resolution fails."""
    try:
        infos = socket.getaddrinfo(hostname, None)
    except (socket.gaierror, UnicodeError, OSError) as exc:
        log.debug("Could not resolve %s during admission: %s", hostname, exc)
        return []
    return sorted({info[4][0] for info in infos})


class UrlAdmission:
    """Validates and sanitizes candidate URLs before they reach the pipeline."""

    def __init__(self, cfg: Optional[Config] = None):
        self.config = cfg or default_config

    def sanitize(self, raw: str) -> str:
        url = str(raw).strip()
        if url and "://" not in url and not url.lower().startswith(("mailto:", "javascript:", "data:", "file:")):
            url = f"https://{url}"
        return url

    def validate_url(self, raw) -> UrlCheck:
        """
        Validate one candidate URL.

        Args:
            raw: Candidate URL as supplied by the caller

        Returns:
            UrlCheck with the sanitized URL when valid
        """
        errors: List[str] = []
        if raw is None or not str(raw).strip():
            return UrlCheck(url="", valid=False, errors=["URL is required"])

        url = self.sanitize(raw)
        if len(url) > self.config.max_url_length:
            return UrlCheck(
                url=url,
                valid=False,
                errors=[f"URL is too long (max {self.config.max_url_length} characters)"],
            )

        try:
            parsed = urlparse(url)
            hostname = (parsed.hostname or "").lower().rstrip(".")
            parsed.port  # raises ValueError for malformed ports
        except ValueError:
            return UrlCheck(url=url, valid=False, errors=["Invalid URL format"])

        if parsed.scheme.lower() not in ALLOWED_SCHEMES:
            errors.append("Protocol must be one of: http, https")
        if not hostname:
            errors.append("Invalid URL format")
            return UrlCheck(url=url, valid=False, errors=errors)
        if parsed.username or parsed.password:
            errors.append("Credentials in URLs are not allowed")

        address = _parse_ip(hostname.strip("[]"))
        if address is None:
            hostname = to_ascii_hostname(hostname)
            if not hostname or not _HOST_RE.match(hostname):
                errors.append("Invalid hostname")
                return UrlCheck(url=url, valid=False, errors=errors)

        if not self.config.allow_private_networks:
            errors.extend(self._ssrf_errors(hostname, address))

        if errors:
            return UrlCheck(url=url, valid=False, errors=errors)

        netloc = hostname if not parsed.port else f"{hostname}:{parsed.port}"
        if address is not None and address.version == 6:
            netloc = f"[{hostname}]" if not parsed.port else f"[{hostname}]:{parsed.port}"
        sanitized = urlunparse((parsed.scheme.lower(), netloc, parsed.path, parsed.params, parsed.query, ""))
        return UrlCheck(url=url, valid=True, sanitized=sanitized)

    def _ssrf_errors(self, hostname: str, address) -> List[str]:
        errors: List[str] = []
        loopback = hostname in LOCALHOST_NAMES or (address is not None and address.is_loopback)
        if loopback and not self.config.allow_localhost:
            errors.append("Localhost URLs are not allowed")
        elif address is not None and not loopback and is_private_address(address):
            errors.append("Private IP addresses are not allowed")

        if address is not None or is_suspicious_hostname(hostname):
            if not (loopback and self.config.allow_localhost):
                errors.append("Suspicious hostname detected")

        if not errors and address is None and not loopback and self.config.resolve_hostnames:
            resolved = resolve_addresses(hostname)
            private = [a for a in resolved if is_private_address(a)]
            if private:
                log.warning("Rejecting %s: resolves to private address %s", hostname, private[0])
                errors.append("Hostname resolves to a private address")
        return errors

    def validate_urls(self, urls, max_count: Optional[int] = None) -> BatchCheck:
        """
        Validate a batch of URLs.

        A count above ``max_count`` rejects the whole batch. Otherwise invalid
        entries are itemised in ``errors`` and the batch is valid as long as
        at least one URL survives.
        """
        max_count = max_count or self.config.interactive_max_urls

        if urls is None or urls == "":
            return BatchCheck(valid=False, errors=["URLs are required"])
        if isinstance(urls, str):
            items = [urls]
        elif isinstance(urls, Iterable):
            items = list(urls)
        else:
            return BatchCheck(valid=False, errors=["URLs must be provided as a string or list"])

        if not items:
            return BatchCheck(valid=False, errors=["At least one URL is required"])
        if len(items) > max_count:
            return BatchCheck(valid=False, errors=[f"Maximum {max_count} URLs allowed per request"])

        accepted: List[str] = []
        seen = set()
        errors: List[str] = []
        for i, raw in enumerate(items, start=1):
            check = self.validate_url(raw)
            if not check.valid:
                errors.append(f"URL {i}: {', '.join(check.errors)}")
                continue
            if check.sanitized in seen:
                log.debug("Dropping duplicate URL %s", check.sanitized)
                continue
            seen.add(check.sanitized)
            accepted.append(check.sanitized)

        if not accepted:
            errors.append("No valid URLs provided")
            return BatchCheck(valid=False, urls=[], errors=errors)

        return BatchCheck(valid=True, urls=accepted, errors=errors)

    def max_urls_for(self, mode: str) -> int:
        return self.config.bulk_max_urls if mode == "csv" else self.config.interactive_max_urls
