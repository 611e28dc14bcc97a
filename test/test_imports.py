import importlib
import unittest

MODULES = [
    "mailfinder.email_extractor",
    "mailfinder.strategies",
    "mailfinder.crawler",
    "mailfinder.lookups",
    "mailfinder.pipeline",
    "mailfinder.orchestrator",
    "mailfinder.cli",
]


class TestImports(unittest.TestCase):
    """Every module of the package loads cleanly."""

    def test_modules_import(self):
        for name in MODULES:
            with self.subTest(module=name):
                self.assertIsNotNone(importlib.import_module(name))


if __name__ == "__main__":
    unittest.main()
