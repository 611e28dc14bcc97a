"""
Breadth-first headless crawler.

One browser per ``crawl()`` call. The frontier is a FIFO of (url, depth)
pairs seeded with the start URL; a canonical visited-set keeps URLs from
being queued twice. Only the seed page feeds the frontier: the path
catalogue plus the same-site links found on it, contact-like links first.
"""

import asyncio
import logging
import random
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, Set, Tuple

from mailfinder.browser_service import Browser, NavigationError, playwright_browser_factory
from mailfinder.config import Config, config as default_config
from mailfinder.email_extractor import EmailExtractor, email_extractor
from mailfinder.http import is_expected_failure
from mailfinder.links import canonicalize_url, filter_links, prioritise, resolve_paths

log = logging.getLogger(__name__)

# Collected inside the page; emails are extracted on the Python side.
PAGE_SCRIPT = r"""
() => {
  const grab = (sel, fn) => Array.from(document.querySelectorAll(sel)).map(fn).filter(Boolean);
  const hotspotSel = [
    'header', 'footer', 'address', '[class*="contact"]', '[id*="contact"]',
    '[class*="about"]', '[id*="about"]', '[class*="footer"]', '[id*="footer"]'
  ].join(',');
  return {
    html: document.documentElement ? document.documentElement.outerHTML : '',
    text: document.body ? document.body.innerText : '',
    forms: grab('input, textarea', el => [el.value, el.placeholder].filter(Boolean).join(' ')),
    meta: grab('meta[content]', el => el.getAttribute('content')),
    jsonld: grab('script[type="application/ld+json"]', el => el.textContent),
    microdata: grab('[itemprop]', el => el.getAttribute('content') || el.getAttribute('href') || el.textContent),
    hotspots: grab(hotspotSel, el => el.innerText),
    links: grab('a[href]', el => el.href)
  };
}
"""


@dataclass
class CrawlResult:
    """Addresses found by one crawl and the number of pages that loaded."""
    emails: Set[str] = field(default_factory=set)
    pages_visited: int = 0


class HeadlessCrawler:
    """Deep scan of one site through an isolated headless browser."""

    def __init__(
        self,
        browser_factory: Optional[Callable[[], Browser]] = None,
        extractor: Optional[EmailExtractor] = None,
        cfg: Optional[Config] = None,
    ):
        self.config = cfg or default_config
        self.browser_factory = browser_factory or playwright_browser_factory(self.config)
        self.extractor = extractor or email_extractor

    def emails_from_payload(self, payload: Any, url: Optional[str] = None) -> Set[str]:
        """Extract addresses from what ``PAGE_SCRIPT`` returned."""
        if isinstance(payload, str):
            return self.extractor.extract_from_html(payload, url)
        if not isinstance(payload, dict):
            return set()

        found = self.extractor.extract_from_html(payload.get("html") or "", url)
        extra: List[str] = [payload.get("text") or ""]
        for key in ("forms", "meta", "jsonld", "microdata", "hotspots"):
            extra.extend(str(v) for v in payload.get(key) or [] if v)
        found |= self.extractor.extract_from_text("\n".join(extra))
        return found

    def _page_limit(self, found: Set[str]) -> int:
        # Keep exploring longer while nothing has turned up.
        return self.config.crawl_max_pages if found else self.config.crawl_max_pages * 2

    def _seed_links(self, start_url: str, payload: Any) -> List[str]:
        hrefs = payload.get("links") or [] if isinstance(payload, dict) else []
        catalogue = resolve_paths(start_url, self.config.crawl_paths)
        candidates = filter_links(start_url, catalogue + [h for h in hrefs if isinstance(h, str)])
        return prioritise(candidates)

    async def _pause(self) -> None:
        low, high = self.config.min_crawl_delay, self.config.max_crawl_delay
        if high > 0:
            await asyncio.sleep(random.uniform(low, max(low, high)))

    async def crawl(self, start_url: str) -> CrawlResult:
        """
        Crawl ``start_url`` breadth first and report every address found.

        Navigation failures are isolated per page; the browser is released on
        every exit path, including cancellation by the cascade timeout.
        """
        found: Set[str] = set()
        frontier: Deque[Tuple[str, int]] = deque([(start_url, 0)])
        visited: Set[str] = {canonicalize_url(start_url)}
        pages_visited = 0

        log.info("Starting headless crawl of %s", start_url)
        try:
            async with self.browser_factory() as browser:
                while frontier and pages_visited < self._page_limit(found):
                    url, depth = frontier.popleft()
                    if pages_visited:
                        await self._pause()

                    payload = await self._visit(browser, url)
                    if payload is None:
                        continue
                    pages_visited += 1

                    hits = self.emails_from_payload(payload, url)
                    if hits:
                        log.debug("Found %d emails on %s", len(hits), url)
                    found |= hits

                    if depth == 0 and depth < self.config.crawl_max_depth:
                        queued = 0
                        for link in self._seed_links(start_url, payload):
                            if queued >= self.config.crawl_max_new_links:
                                break
                            canon = canonicalize_url(link)
                            if canon in visited:
                                continue
                            visited.add(canon)
                            frontier.append((link, depth + 1))
                            queued += 1
                        log.debug("Queued %d links from seed page %s", queued, url)
        except NavigationError as exc:
            log.debug("Headless crawl of %s stopped: %s", start_url, exc)
        except Exception as exc:
            if is_expected_failure(exc):
                log.debug("Headless crawl of %s stopped: %s", start_url, exc)
            else:
                log.warning("Headless crawl of %s failed: %s", start_url, exc)

        log.info(
            "Headless crawl of %s completed: %d pages, %d emails",
            start_url, pages_visited, len(found),
        )
        return CrawlResult(found, pages_visited)

    async def _visit(self, browser: Browser, url: str) -> Optional[Dict[str, Any]]:
        try:
            handle = await browser.navigate(url, self.config.browser_nav_timeout)
            return await browser.evaluate(handle, PAGE_SCRIPT)
        except Exception as exc:
            if isinstance(exc, NavigationError) or is_expected_failure(exc):
                log.debug("Skipping %s: %s", url, exc)
            else:
                log.warning("Unexpected failure visiting %s: %s", url, exc)
            return None
