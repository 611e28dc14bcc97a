"""
Configuration module with range validation and environment overrides.

Every tunable of the extraction pipeline (timeouts, crawl ceilings, path
catalogues, user-agent pool, admission limits) lives on a ``Config`` instance
so components can be handed an explicit configuration instead of reading
module constants.
"""

import os
import logging
from typing import Dict, List, Any, Optional

from dotenv import load_dotenv

# Initialize logger
log = logging.getLogger(__name__)

# .env in the working directory, if any
load_dotenv()

TRUTHY = {"1", "true", "yes", "y", "on"}

DESKTOP_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36"
)

BROWSER_USER_AGENTS = "|".join([
    DESKTOP_USER_AGENT,
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_5) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:127.0) Gecko/20100101 Firefox/127.0",
])

DEFAULT_CONTACT_PATHS = "contact,contact-us,about,about-us,support"

DEFAULT_CRAWL_PATHS = (
    "contact,contact-us,about,about-us,support,business,team,company,"
    "checkout,cart,payment"
)

DEFAULT_FALLBACK_LOCAL_PARTS = (
    "contact,info,support,sales,admin,help,business,hello,office,enquiries"
)


class ConfigurationError(Exception):
    """Raised when settings are inconsistent with each other."""
    pass


class Config:
    """Pipeline configuration with validation and explicit overrides."""

    def __init__(self, env_file: Optional[str] = None):
        """
        Read every setting from the environment, clamped to its allowed range.

        Args:
            env_file: Optional extra .env file whose values take precedence
        """
        if env_file:
            load_dotenv(env_file, override=True)

        # Timeouts (seconds)
        self.fetch_timeout = self._parse_float("FETCH_TIMEOUT", 8.0, 0.0, 120.0)
        self.browser_nav_timeout = self._parse_float("BROWSER_NAV_TIMEOUT", 30.0, 0.0, 300.0)
        self.cascade_timeout = self._parse_float("CASCADE_TIMEOUT", 30.0, 0.0, 3600.0)

        # Headless crawl ceilings
        self.crawl_max_pages = self._parse_int("CRAWL_MAX_PAGES", 50, 1, 1000)
        self.crawl_max_depth = self._parse_int("CRAWL_MAX_DEPTH", 5, 0, 50)
        self.crawl_max_new_links = self._parse_int("CRAWL_MAX_NEW_LINKS", 20, 0, 500)

        # Crawl throttling (seconds)
        self.min_crawl_delay = self._parse_float("MIN_CRAWL_DELAY", 0.5, 0.0, 60.0)
        self.max_crawl_delay = self._parse_float("MAX_CRAWL_DELAY", 1.5, 0.0, 60.0)

        # Contact pages are fetched concurrently in batches of this size
        self.contact_batch_size = self._parse_int("CONTACT_BATCH_SIZE", 3, 1, 16)

        # Admission control
        self.max_url_length = self._parse_int("MAX_URL_LENGTH", 2048, 100, 10000)
        self.interactive_max_urls = self._parse_int("INTERACTIVE_MAX_URLS", 50, 1, 10000)
        self.bulk_max_urls = self._parse_int("BULK_MAX_URLS", 1000, 1, 100000)
        self.allow_localhost = self._parse_bool("ALLOW_LOCALHOST", False)
        self.allow_private_networks = self._parse_bool("ALLOW_PRIVATE_NETWORKS", False)
        self.resolve_hostnames = self._parse_bool("RESOLVE_HOSTNAMES", True)

        # Strategy switches
        self.browser_enabled = self._parse_bool("BROWSER_ENABLED", True)
        self.browser_headless = self._parse_bool("BROWSER_HEADLESS", True)
        self.social_lookup_enabled = self._parse_bool("SOCIAL_LOOKUP_ENABLED", True)

        # SSL verification
        self.insecure_ssl = self._parse_bool("ALLOW_INSECURE_SSL", False)

        # Quota and persistence
        self.daily_extraction_limit = self._parse_int("DAILY_EXTRACTION_LIMIT", 100, 0, 1_000_000)
        self.progress_store_path = os.getenv("PROGRESS_STORE_PATH", "")

        # Fixed desktop agent for plain GETs, rotating pool for the browser
        self.desktop_user_agent = os.getenv("DESKTOP_USER_AGENT", DESKTOP_USER_AGENT)
        self.user_agents = [
            ua.strip() for ua in os.getenv("BROWSER_USER_AGENTS", BROWSER_USER_AGENTS).split("|")
            if ua.strip()
        ]

        # Path catalogues
        self.contact_paths = self._parse_list("CONTACT_PATHS", DEFAULT_CONTACT_PATHS)
        self.crawl_paths = self._parse_list("CRAWL_PATHS", DEFAULT_CRAWL_PATHS)
        self.fallback_local_parts = self._parse_list(
            "FALLBACK_LOCAL_PARTS", DEFAULT_FALLBACK_LOCAL_PARTS
        )

        # Auxiliary lookup endpoints; {domain} and {name} are substituted
        self.whois_endpoints = [
            "https://www.whois.com/whois/{domain}",
            "https://who.is/whois/{domain}",
        ]
        self.social_profile_templates = [
            "https://www.facebook.com/{name}",
            "https://www.instagram.com/{name}",
            "https://x.com/{name}",
            "https://www.linkedin.com/company/{name}",
            "https://www.youtube.com/@{name}",
        ]

    def _parse_number(self, env_var: str, cast, default, min_val, max_val):
        raw = os.getenv(env_var)
        if raw is None or not raw.strip():
            return default
        try:
            value = cast(raw)
        except ValueError:
            log.warning("%s=%r is not a number; falling back to %s", env_var, raw, default)
            return default
        clamped = min(max(value, min_val), max_val)
        if clamped != value:
            log.warning("%s=%s outside [%s, %s]; clamped to %s",
                        env_var, value, min_val, max_val, clamped)
        return clamped

    def _parse_int(self, env_var: str, default: int, min_val: int, max_val: int) -> int:
        return self._parse_number(env_var, int, default, min_val, max_val)

    def _parse_float(self, env_var: str, default: float, min_val: float, max_val: float) -> float:
        return self._parse_number(env_var, float, default, min_val, max_val)

    def _parse_bool(self, env_var: str, default: bool) -> bool:
        raw = os.getenv(env_var, "").strip().lower()
        if not raw:
            return default
        return raw in TRUTHY

    def _parse_list(self, env_var: str, default: str) -> List[str]:
        return [
            p.strip().strip("/").lower()
            for p in os.getenv(env_var, default).split(",")
            if p.strip().strip("/")
        ]

    def as_dict(self) -> Dict[str, Any]:
        """Public settings keyed by attribute name."""
        return {k: v for k, v in vars(self).items() if not k.startswith("_")}

    def validate(self) -> List[str]:
        """Cross-field checks; returns one message per problem."""
        checks = [
            (self.min_crawl_delay > self.max_crawl_delay,
             "MIN_CRAWL_DELAY must not exceed MAX_CRAWL_DELAY"),
            (self.interactive_max_urls > self.bulk_max_urls,
             "INTERACTIVE_MAX_URLS must not exceed BULK_MAX_URLS"),
            (self.contact_batch_size < 1, "CONTACT_BATCH_SIZE must be at least 1"),
            (not self.user_agents, "At least one browser user agent is required"),
            (not self.fallback_local_parts, "FALLBACK_LOCAL_PARTS must not be empty"),
        ]
        return [message for failed, message in checks if failed]

    def validate_or_raise(self) -> None:
        """Raise ``ConfigurationError`` listing every failed check."""
        problems = self.validate()
        if problems:
            message = "Invalid configuration: " + "; ".join(problems)
            log.error(message)
            raise ConfigurationError(message)

    def update_from_dict(self, overrides: Dict[str, Any]) -> None:
        """Apply explicit overrides; unknown keys are ignored with a warning."""
        for key, value in overrides.items():
            if not hasattr(self, key):
                log.warning("Ignoring unknown configuration key %r", key)
                continue
            setattr(self, key, value)


# Default instance used when a component is not handed its own
config = Config()
