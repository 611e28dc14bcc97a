"""
Cascade strategies.

Each strategy is one named state of the per-URL cascade and exposes
``attempt(context) -> StepOutcome``. Strategies share a ``CascadeContext``
carrying the URL, the homepage markup once fetched and the addresses found
so far with the step that produced each of them.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from mailfinder.config import Config, config as default_config
from mailfinder.crawler import HeadlessCrawler
from mailfinder.email_extractor import EmailExtractor, email_extractor
from mailfinder.http import HtmlFetcher
from mailfinder.links import canonicalize_url, extract_internal_links, link_priority, resolve_paths
from mailfinder.lookups import SocialProfileLookup, WhoisLookup, registrable_domain
from mailfinder.models import Step, StepStatus

log = logging.getLogger(__name__)

# Contact-like links discovered on the homepage, on top of the path catalogue
MAX_DISCOVERED_CONTACT_LINKS = 5


@dataclass
class CascadeContext:
    url: str
    html: Optional[str] = None
    emails: Set[str] = field(default_factory=set)
    provenance: Dict[str, str] = field(default_factory=dict)

    def add(self, emails: Set[str], step: str) -> Set[str]:
        """Record newly found addresses, keeping the first step that found each."""
        new = {e.lower() for e in emails} - self.emails
        for email in new:
            self.provenance[email] = step
        self.emails |= new
        return new


@dataclass
class StepOutcome:
    status: str
    message: str = ""
    emails: Set[str] = field(default_factory=set)
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def completed(cls, message: str, emails: Optional[Set[str]] = None, **details) -> "StepOutcome":
        return cls(StepStatus.COMPLETED, message, set(emails or ()), details)

    @classmethod
    def failed(cls, message: str, **details) -> "StepOutcome":
        return cls(StepStatus.FAILED, message, set(), details)

    @classmethod
    def skipped(cls, message: str, **details) -> "StepOutcome":
        return cls(StepStatus.SKIPPED, message, set(), details)


def _found_message(count: int, where: str) -> str:
    if not count:
        return f"No emails found {where}"
    return f"Found {count} email{'s' if count != 1 else ''} {where}"


class Strategy:
    """One state of the cascade."""

    name = ""

    async def attempt(self, context: CascadeContext) -> StepOutcome:
        raise NotImplementedError


class HomepageScan(Strategy):
    name = Step.HOMEPAGE_SCAN

    def __init__(self, fetcher: HtmlFetcher):
        self.fetcher = fetcher

    async def attempt(self, context: CascadeContext) -> StepOutcome:
        html = await self.fetcher.fetch(context.url)
        if html is None:
            return StepOutcome.failed("Could not fetch homepage")
        context.html = html
        return StepOutcome.completed("Homepage fetched", bytes=len(html))


class HomepageEmailExtraction(Strategy):
    name = Step.HOMEPAGE_EMAIL_EXTRACTION

    def __init__(self, extractor: EmailExtractor):
        self.extractor = extractor

    async def attempt(self, context: CascadeContext) -> StepOutcome:
        if context.html is None:
            return StepOutcome.skipped("No homepage content to scan")
        emails = self.extractor.extract_from_html(context.html, context.url)
        return StepOutcome.completed(_found_message(len(emails), "on homepage"), emails)


class ContactPages(Strategy):
    """Fetch well-known contact paths plus contact-like homepage links in small batches."""

    name = Step.CONTACT_PAGES

    def __init__(self, fetcher: HtmlFetcher, extractor: EmailExtractor, cfg: Config):
        self.fetcher = fetcher
        self.extractor = extractor
        self.config = cfg

    def candidate_urls(self, context: CascadeContext) -> List[str]:
        urls = resolve_paths(context.url, self.config.contact_paths)
        if context.html:
            discovered = [
                link for link in extract_internal_links(context.url, context.html)
                if link_priority(link) <= 2
            ]
            urls.extend(discovered[:MAX_DISCOVERED_CONTACT_LINKS])

        seen = {canonicalize_url(context.url)}
        unique: List[str] = []
        for url in urls:
            key = canonicalize_url(url)
            if key not in seen:
                seen.add(key)
                unique.append(url)
        return unique

    async def _scan(self, url: str) -> Set[str]:
        html = await self.fetcher.fetch(url)
        if not html:
            return set()
        return self.extractor.extract_from_html(html, url)

    async def attempt(self, context: CascadeContext) -> StepOutcome:
        urls = self.candidate_urls(context)
        size = self.config.contact_batch_size
        emails: Set[str] = set()
        scanned = 0

        for i in range(0, len(urls), size):
            batch = urls[i:i + size]
            results = await asyncio.gather(*(self._scan(u) for u in batch), return_exceptions=True)
            for url, result in zip(batch, results):
                if isinstance(result, Exception):
                    log.debug("Contact page %s failed: %s", url, result)
                    continue
                scanned += 1
                emails |= result

        return StepOutcome.completed(
            _found_message(len(emails), f"across {len(urls)} contact pages"),
            emails,
            pages_checked=len(urls),
            pages_scanned=scanned,
        )


class HeadlessScan(Strategy):
    name = Step.PUPPETEER_SCAN

    def __init__(self, crawler: HeadlessCrawler, cfg: Config):
        self.crawler = crawler
        self.config = cfg

    async def attempt(self, context: CascadeContext) -> StepOutcome:
        if not self.config.browser_enabled:
            return StepOutcome.skipped("Headless browser scan disabled")
        report = await self.crawler.crawl(context.url)
        return StepOutcome.completed(
            _found_message(len(report.emails), "by headless crawl"),
            report.emails,
            pages_visited=report.pages_visited,
        )


class DomainLookup(Strategy):
    """WHOIS first, then social profiles when WHOIS turned up nothing."""

    name = Step.WHOIS_LOOKUP

    def __init__(self, whois: WhoisLookup, social: SocialProfileLookup, cfg: Config):
        self.whois = whois
        self.social = social
        self.config = cfg

    async def attempt(self, context: CascadeContext) -> StepOutcome:
        emails = await self.whois.lookup(context.url)
        source = "whois"
        if not emails and self.config.social_lookup_enabled:
            emails = await self.social.lookup(context.url)
            source = "social"
        return StepOutcome.completed(
            _found_message(len(emails), f"via {source} lookup"), emails, source=source
        )


class FallbackGeneration(Strategy):
    """Conventional mailboxes at the registrable domain; guesses, never observed."""

    name = Step.FALLBACK_GENERATION

    def __init__(self, extractor: EmailExtractor, cfg: Config):
        self.extractor = extractor
        self.config = cfg

    async def attempt(self, context: CascadeContext) -> StepOutcome:
        domain = registrable_domain(context.url)
        if not domain:
            return StepOutcome.failed("Could not determine domain")
        guesses = {f"{local}@{domain}" for local in self.config.fallback_local_parts}
        emails = self.extractor.filter_emails(guesses)
        return StepOutcome.completed(
            f"Generated {len(emails)} fallback emails for {domain}",
            emails,
            domain=domain,
            guessed=True,
        )


def default_strategies(
    cfg: Optional[Config] = None,
    fetcher: Optional[HtmlFetcher] = None,
    extractor: Optional[EmailExtractor] = None,
    crawler: Optional[HeadlessCrawler] = None,
    whois: Optional[WhoisLookup] = None,
    social: Optional[SocialProfileLookup] = None,
) -> List[Strategy]:
    """The cascade in order, with any collaborator replaceable."""
    cfg = cfg or default_config
    fetcher = fetcher or HtmlFetcher(cfg=cfg)
    extractor = extractor or email_extractor
    return [
        HomepageScan(fetcher),
        HomepageEmailExtraction(extractor),
        ContactPages(fetcher, extractor, cfg),
        HeadlessScan(crawler or HeadlessCrawler(extractor=extractor, cfg=cfg), cfg),
        DomainLookup(
            whois or WhoisLookup(fetcher, extractor, cfg),
            social or SocialProfileLookup(fetcher, extractor, cfg),
            cfg,
        ),
        FallbackGeneration(extractor, cfg),
    ]
