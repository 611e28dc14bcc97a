import unittest

from mailfinder.links import (
    canonicalize_url,
    extract_internal_links,
    filter_links,
    prioritise,
    resolve_paths,
    same_site,
)


class TestLinks(unittest.TestCase):
    """Tests for link discovery helpers."""

    def test_canonicalize_url(self):
        self.assertEqual(
            canonicalize_url("HTTPS://Acme.com/About/?utm_source=x&b=2&a=1#team"),
            "https://acme.com/About?a=1&b=2",
        )
        self.assertEqual(canonicalize_url("https://acme.com"), "https://acme.com/")
        self.assertEqual(
            canonicalize_url("https://www.acme.com/contact/"),
            canonicalize_url("https://acme.com/contact"),
        )

    def test_same_site(self):
        self.assertTrue(same_site("https://shop.acme.com/x", "https://www.acme.com"))
        self.assertFalse(same_site("https://acme.com.evil.net", "https://acme.com"))

    def test_resolve_paths_against_origin(self):
        self.assertEqual(
            resolve_paths("https://acme.com/deep/page", ["contact", "/about-us/"]),
            ["https://acme.com/contact", "https://acme.com/about-us"],
        )

    def test_prioritise_is_stable(self):
        urls = [
            "https://acme.com/blog",
            "https://acme.com/team",
            "https://acme.com/support",
            "https://acme.com/about",
            "https://acme.com/contact-us",
            "https://acme.com/news",
        ]
        self.assertEqual(prioritise(urls), [
            "https://acme.com/contact-us",
            "https://acme.com/about",
            "https://acme.com/support",
            "https://acme.com/team",
            "https://acme.com/blog",
            "https://acme.com/news",
        ])

    def test_filter_links(self):
        hrefs = [
            "/contact",
            "mailto:a@acme.com",
            "tel:+100",
            "javascript:void(0)",
            "/brochure.pdf",
            "https://other.com/about",
            "https://acme.com/contact#form",
            None,
            "about",
        ]
        self.assertEqual(
            filter_links("https://acme.com/", hrefs),
            ["https://acme.com/contact", "https://acme.com/about"],
        )

    def test_extract_internal_links(self):
        html = '<a href="/about">About</a><a href="https://elsewhere.org">x</a>'
        self.assertEqual(extract_internal_links("https://acme.com", html), ["https://acme.com/about"])
        self.assertEqual(extract_internal_links("https://acme.com", None), [])


if __name__ == "__main__":
    unittest.main()
