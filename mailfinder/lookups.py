"""
Auxiliary, best-effort lookups used late in the cascade.

``WhoisLookup`` scrapes the public WHOIS presentation pages for the site's
registrable domain. ``SocialProfileLookup`` guesses profile URLs from the
domain label and scans the ones that answer. Neither guarantees fresh data
and both return an empty set whenever nothing can be reached.
"""

import logging
from typing import Iterable, Optional, Set

import tldextract

from mailfinder.config import Config, config as default_config
from mailfinder.email_extractor import EmailExtractor, email_extractor
from mailfinder.http import HtmlFetcher, normalise_domain

log = logging.getLogger(__name__)

# Offline: the bundled public-suffix snapshot, never a network refresh.
_extract = tldextract.TLDExtract(suffix_list_urls=())

# Substrings marking privacy-proxy mailboxes
PRIVACY_MARKERS = ("privacy", "whoisguard", "domainsbyproxy", "withheld", "redacted", "proxy")

# Registrars and the WHOIS sites themselves (domain or any subdomain)
REGISTRAR_DOMAINS = (
    "godaddy.com", "namecheap.com", "tucows.com", "enom.com", "networksolutions.com",
    "name.com", "gandi.net", "ovh.net", "ionos.com", "hostinger.com", "markmonitor.com",
    "cscglobal.com", "whois.com", "who.is", "icann.org", "verisign.com",
)

SOCIAL_HOSTS = (
    "facebook.com", "instagram.com", "x.com", "twitter.com", "linkedin.com",
    "youtube.com", "fb.com",
)


def registrable_domain(url: str) -> str:
    """``https://www.shop.acme.co.uk/x`` -> ``acme.co.uk``."""
    host = normalise_domain(url)
    ext = _extract(host)
    if ext.domain and ext.suffix:
        return f"{ext.domain}.{ext.suffix}"
    return host


def domain_label(url: str) -> str:
    """``https://www.acme.co.uk`` -> ``acme``."""
    return _extract(normalise_domain(url)).domain or ""


def _domain_in(email: str, domains: Iterable[str]) -> bool:
    domain = email.rpartition("@")[2]
    return any(domain == d or domain.endswith("." + d) for d in domains)


def is_registrar_email(email: str) -> bool:
    domain = email.rpartition("@")[2]
    return any(m in domain for m in PRIVACY_MARKERS) or _domain_in(email, REGISTRAR_DOMAINS)


class WhoisLookup:
    """Scrape registrant contacts from public WHOIS pages."""

    def __init__(
        self,
        fetcher: Optional[HtmlFetcher] = None,
        extractor: Optional[EmailExtractor] = None,
        cfg: Optional[Config] = None,
    ):
        self.config = cfg or default_config
        self.fetcher = fetcher or HtmlFetcher(cfg=self.config)
        self.extractor = extractor or email_extractor

    def filter(self, emails: Set[str]) -> Set[str]:
        return {e for e in emails if not is_registrar_email(e)}

    async def lookup(self, url: str) -> Set[str]:
        domain = registrable_domain(url)
        if not domain:
            return set()

        found: Set[str] = set()
        for template in self.config.whois_endpoints:
            endpoint = template.format(domain=domain)
            markup = await self.fetcher.fetch(endpoint)
            if not markup:
                log.debug("WHOIS endpoint unavailable: %s", endpoint)
                continue
            found |= self.filter(self.extractor.extract_from_html(markup, endpoint))
            if found:
                break

        log.debug("WHOIS lookup for %s: %d emails", domain, len(found))
        return found


class SocialProfileLookup:
    """Probe guessed social-profile URLs for a published address."""

    def __init__(
        self,
        fetcher: Optional[HtmlFetcher] = None,
        extractor: Optional[EmailExtractor] = None,
        cfg: Optional[Config] = None,
    ):
        self.config = cfg or default_config
        self.fetcher = fetcher or HtmlFetcher(cfg=self.config)
        self.extractor = extractor or email_extractor

    def profile_urls(self, url: str):
        name = domain_label(url)
        if not name:
            return []
        return [t.format(name=name) for t in self.config.social_profile_templates]

    async def lookup(self, url: str) -> Set[str]:
        found: Set[str] = set()
        for profile in self.profile_urls(url):
            markup = await self.fetcher.fetch(profile)
            if not markup:
                continue
            hits = self.extractor.extract_from_html(markup, profile)
            found |= {e for e in hits if not _domain_in(e, SOCIAL_HOSTS)}
        log.debug("Social lookup for %s: %d emails", url, len(found))
        return found
