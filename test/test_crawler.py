import asyncio
import unittest

from mailfinder.crawler import HeadlessCrawler

from fakes import FakeBrowser, make_config


def payload(html="", text="", links=(), **extra):
    data = {"html": html, "text": text, "forms": [], "meta": [], "jsonld": [],
            "microdata": [], "hotspots": [], "links": list(links)}
    data.update(extra)
    return data


class TestHeadlessCrawler(unittest.IsolatedAsyncioTestCase):
    """Tests for the BFS headless crawler."""

    def make_crawler(self, payloads, **overrides):
        self.browser = FakeBrowser(payloads)
        cfg = make_config(**overrides)
        return HeadlessCrawler(browser_factory=lambda: self.browser, cfg=cfg)

    async def test_collects_from_seed_and_catalogue_pages(self):
        crawler = self.make_crawler({
            "https://acme.com": payload(html="<p>Welcome</p>", links=["https://acme.com/team-page"]),
            "https://acme.com/contact": payload(text="Reach us: help@acme.com"),
            "https://acme.com/team-page": payload(hotspots=["Jobs: jobs@acme.com"]),
        })
        emails = (await crawler.crawl("https://acme.com")).emails
        self.assertEqual(emails, {"help@acme.com", "jobs@acme.com"})
        self.assertTrue(self.browser.closed)
        # contact page is visited before discovered links
        self.assertEqual(self.browser.visited[1], "https://acme.com/contact")

    async def test_only_seed_page_feeds_frontier(self):
        crawler = self.make_crawler({
            "https://acme.com": payload(links=["https://acme.com/about"]),
            "https://acme.com/about": payload(links=["https://acme.com/deeper"]),
            "https://acme.com/deeper": payload(text="deep@acme.com"),
        })
        emails = (await crawler.crawl("https://acme.com")).emails
        self.assertEqual(emails, set())
        self.assertNotIn("https://acme.com/deeper", self.browser.visited)

    async def test_new_link_cap(self):
        links = [f"https://acme.com/page{i}" for i in range(40)]
        crawler = self.make_crawler(
            {"https://acme.com": payload(links=links)},
            crawl_paths=[],
            crawl_max_new_links=5,
        )
        await crawler.crawl("https://acme.com")
        self.assertEqual(len(self.browser.visited), 6)

    async def test_page_ceiling(self):
        links = [f"https://acme.com/page{i}" for i in range(10)]
        pages = {url: payload(text="sales@acme.com") for url in links}
        pages["https://acme.com"] = payload(text="info@acme.com", links=links)
        crawler = self.make_crawler(pages, crawl_paths=[], crawl_max_pages=3)
        report = await crawler.crawl("https://acme.com")
        self.assertEqual(report.pages_visited, 3)

    async def test_page_ceiling_relaxed_while_nothing_found(self):
        links = [f"https://acme.com/page{i}" for i in range(10)]
        pages = {url: payload(text="nothing here") for url in links}
        pages["https://acme.com"] = payload(links=links)
        crawler = self.make_crawler(pages, crawl_paths=[], crawl_max_pages=3)
        report = await crawler.crawl("https://acme.com")
        self.assertEqual(report.pages_visited, 6)

    async def test_depth_zero_visits_only_seed(self):
        crawler = self.make_crawler(
            {"https://acme.com": payload(links=["https://acme.com/contact"])},
            crawl_max_depth=0,
        )
        await crawler.crawl("https://acme.com")
        self.assertEqual(self.browser.visited, ["https://acme.com"])

    async def test_navigation_failure_is_isolated(self):
        crawler = self.make_crawler({
            "https://acme.com/contact": payload(text="office@acme.com"),
        })
        emails = (await crawler.crawl("https://acme.com")).emails
        # seed failed to load, so nothing was queued
        self.assertEqual(emails, set())
        self.assertTrue(self.browser.closed)

    async def test_browser_released_when_crawl_raises(self):
        class ExplodingBrowser(FakeBrowser):
            async def evaluate(self, handle, script):
                raise RuntimeError("renderer crashed")

        browser = ExplodingBrowser({"https://acme.com": payload()})
        crawler = HeadlessCrawler(browser_factory=lambda: browser, cfg=make_config())
        self.assertEqual((await crawler.crawl("https://acme.com")).emails, set())
        self.assertTrue(browser.closed)

    async def test_browser_released_when_timeout_cancels_navigation(self):
        class HangingBrowser(FakeBrowser):
            async def navigate(self, url, timeout):
                self.visited.append(url)
                await asyncio.sleep(30)

        browser = HangingBrowser({})
        crawler = HeadlessCrawler(browser_factory=lambda: browser, cfg=make_config())
        with self.assertRaises(asyncio.TimeoutError):
            await asyncio.wait_for(crawler.crawl("https://acme.com"), timeout=0.05)
        self.assertEqual(browser.visited, ["https://acme.com"])
        self.assertTrue(browser.closed)

    def test_emails_from_payload_reads_every_channel(self):
        crawler = HeadlessCrawler(browser_factory=lambda: None, cfg=make_config())
        found = crawler.emails_from_payload(payload(
            html='<a href="mailto:a@acme.com">a</a>',
            text="b [at] acme [dot] com",
            forms=["c@acme.com"],
            meta=["d@acme.com"],
            jsonld=['{"email": "e@acme.com"}'],
            microdata=["f@acme.com"],
        ))
        self.assertEqual(found, {f"{c}@acme.com" for c in "abcdef"})


if __name__ == "__main__":
    unittest.main()
