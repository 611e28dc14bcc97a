import os
import unittest
from unittest.mock import patch

from mailfinder.config import Config, ConfigurationError


class TestConfig(unittest.TestCase):
    """Tests for the configuration module."""

    def test_config_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            cfg = Config()
        self.assertEqual(cfg.fetch_timeout, 8.0)
        self.assertEqual(cfg.browser_nav_timeout, 30.0)
        self.assertEqual(cfg.cascade_timeout, 30.0)
        self.assertEqual(cfg.crawl_max_pages, 50)
        self.assertEqual(cfg.crawl_max_depth, 5)
        self.assertEqual(cfg.crawl_max_new_links, 20)
        self.assertEqual(cfg.contact_batch_size, 3)
        self.assertEqual(cfg.interactive_max_urls, 50)
        self.assertEqual(cfg.bulk_max_urls, 1000)
        self.assertEqual(cfg.max_url_length, 2048)
        self.assertEqual(cfg.contact_paths, ["contact", "contact-us", "about", "about-us", "support"])
        self.assertEqual(cfg.fallback_local_parts[:3], ["contact", "info", "support"])
        self.assertEqual(len(cfg.fallback_local_parts), 10)
        self.assertGreater(len(cfg.user_agents), 1)
        self.assertEqual(cfg.validate(), [])

    def test_environment_overrides_are_clamped(self):
        env = {"CRAWL_MAX_PAGES": "5000", "FETCH_TIMEOUT": "-3", "CONTACT_BATCH_SIZE": "oops",
               "BROWSER_ENABLED": "no", "CONTACT_PATHS": "/kontakt/, impressum"}
        with patch.dict(os.environ, env, clear=True):
            cfg = Config()
        self.assertEqual(cfg.crawl_max_pages, 1000)
        self.assertEqual(cfg.fetch_timeout, 0.0)
        self.assertEqual(cfg.contact_batch_size, 3)
        self.assertFalse(cfg.browser_enabled)
        self.assertEqual(cfg.contact_paths, ["kontakt", "impressum"])

    def test_config_validation(self):
        cfg = Config()
        cfg.update_from_dict({"min_crawl_delay": 5.0, "max_crawl_delay": 1.0})
        self.assertIn("MIN_CRAWL_DELAY must not exceed MAX_CRAWL_DELAY", cfg.validate())
        with self.assertRaises(ConfigurationError):
            cfg.validate_or_raise()

    def test_update_from_dict_ignores_unknown_keys(self):
        cfg = Config()
        cfg.update_from_dict({"cascade_timeout": 0, "no_such_option": 1})
        self.assertEqual(cfg.cascade_timeout, 0)
        self.assertFalse(hasattr(cfg, "no_such_option"))
        self.assertIn("cascade_timeout", cfg.as_dict())


if __name__ == "__main__":
    unittest.main()
