"""
In-process stand-ins for the network-facing collaborators.
"""

import asyncio
from typing import Dict, List, Optional, Set

from mailfinder.browser_service import Browser, NavigationError
from mailfinder.config import Config
from mailfinder.errors import ProgressStoreError
from mailfinder.store import MemoryProgressStore


def make_config(**overrides) -> Config:
    """Deterministic configuration: no DNS, no delays, browser off."""
    cfg = Config()
    cfg.update_from_dict({
        "resolve_hostnames": False,
        "min_crawl_delay": 0.0,
        "max_crawl_delay": 0.0,
        "fetch_timeout": 1.0,
        "cascade_timeout": 5.0,
        "browser_enabled": False,
        "progress_store_path": "",
    })
    cfg.update_from_dict(overrides)
    return cfg


class FakeFetcher:
    """Serves canned markup by exact URL; anything else is a failed fetch."""

    def __init__(self, pages: Optional[Dict[str, str]] = None, delay: float = 0.0):
        self.pages = dict(pages or {})
        self.delay = delay
        self.calls: List[str] = []

    async def fetch(self, url: str) -> Optional[str]:
        self.calls.append(url)
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.pages.get(url)


class FakeLookup:
    def __init__(self, emails: Optional[Set[str]] = None):
        self.emails = set(emails or ())
        self.calls: List[str] = []

    async def lookup(self, url: str) -> Set[str]:
        self.calls.append(url)
        return set(self.emails)


class FakeBrowser(Browser):
    """Serves canned page-script payloads; unknown URLs fail to navigate."""

    def __init__(self, payloads: Dict[str, dict]):
        self.payloads = payloads
        self.visited: List[str] = []
        self.closed = False

    async def navigate(self, url: str, timeout: float):
        self.visited.append(url)
        if url not in self.payloads:
            raise NavigationError(f"HTTP 404 for {url}")
        return url

    async def evaluate(self, handle, script: str):
        return self.payloads[handle]

    async def close(self) -> None:
        self.closed = True


class FailingStepStore(MemoryProgressStore):
    """Accepts job-level writes but fails every step write."""

    def update_step(self, *args, **kwargs):
        raise ProgressStoreError("disk full")


class RecordingQueue:
    def __init__(self):
        self.payloads: List[dict] = []

    def enqueue(self, payload: dict) -> None:
        self.payloads.append(payload)
