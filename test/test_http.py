import unittest
from unittest.mock import MagicMock, patch

import requests

from mailfinder.http import (
    HtmlFetcher,
    HttpClient,
    is_expected_failure,
    join_url,
    normalise_domain,
    origin_of,
)

from fakes import make_config


class TestHelpers(unittest.TestCase):

    def test_normalise_domain(self):
        self.assertEqual(normalise_domain("acme.com"), "acme.com")
        self.assertEqual(normalise_domain("www.acme.com"), "acme.com")
        self.assertEqual(normalise_domain("https://www.Acme.com:8443/path"), "acme.com")

    def test_origin_and_join(self):
        self.assertEqual(origin_of("https://Acme.com/a/b?x=1"), "https://acme.com")
        self.assertEqual(join_url("acme.com", "/contact"), "https://acme.com/contact")
        self.assertEqual(join_url("https://acme.com/a/", "b"), "https://acme.com/a/b")

    def test_expected_failures(self):
        self.assertTrue(is_expected_failure(requests.exceptions.ConnectTimeout()))
        self.assertTrue(is_expected_failure(RuntimeError("net::ERR_NAME_NOT_RESOLVED")))
        self.assertFalse(is_expected_failure(RuntimeError("renderer crashed")))


class TestHttpClient(unittest.TestCase):
    """Tests for the HTTP module."""

    def setUp(self):
        self.client = HttpClient(make_config())

    def _response(self, status=200, content_type="text/html; charset=utf-8", text="<p>hi</p>"):
        response = MagicMock()
        response.status_code = status
        response.headers = {"Content-Type": content_type}
        response.text = text
        return response

    @patch("requests.Session.get")
    def test_safe_get(self, mock_get):
        mock_get.return_value = self._response()
        self.assertIsNotNone(self.client.safe_get("https://acme.com"))
        self.assertIsNone(self.client.safe_get("invalid-url"))
        self.assertEqual(self.client.stats["status_200"], 1)
        self.assertEqual(self.client.stats["skipped_urls"], 1)

    @patch("requests.Session.get")
    def test_non_2xx_is_failure(self, mock_get):
        mock_get.return_value = self._response(status=404)
        self.assertIsNone(self.client.safe_get("https://acme.com/contact"))
        self.assertEqual(self.client.stats["status_404"], 1)

    @patch("requests.Session.get")
    def test_follows_public_redirect(self, mock_get):
        moved = self._response(status=301)
        moved.headers = {"Location": "/home"}
        mock_get.side_effect = [moved, self._response()]
        response = self.client.safe_get("https://acme.com")
        self.assertEqual(response.text, "<p>hi</p>")
        self.assertEqual(mock_get.call_args_list[1][0][0], "https://acme.com/home")
        self.assertFalse(mock_get.call_args_list[0][1]["allow_redirects"])

    @patch("requests.Session.get")
    def test_redirect_to_private_address_is_refused(self, mock_get):
        for target in ("http://127.0.0.1/admin", "http://169.254.169.254/latest/meta-data"):
            moved = self._response(status=302)
            moved.headers = {"Location": target}
            mock_get.side_effect = [moved, self._response()]
            self.assertIsNone(self.client.safe_get("https://acme.com"))
        self.assertEqual(mock_get.call_count, 2)
        self.assertEqual(self.client.stats["blocked_redirects"], 2)

    @patch("requests.Session.get")
    def test_redirect_loop_gives_up(self, mock_get):
        moved = self._response(status=302)
        moved.headers = {"Location": "https://acme.com/again"}
        mock_get.return_value = moved
        self.assertIsNone(self.client.safe_get("https://acme.com"))
        self.assertEqual(self.client.stats["too_many_redirects"], 1)

    @patch("requests.Session.get")
    def test_request_exception(self, mock_get):
        mock_get.side_effect = requests.exceptions.ConnectionError("connection refused")
        self.assertIsNone(self.client.safe_get("https://acme.com"))
        self.assertEqual(self.client.stats["status_no-response"], 1)

    @patch("requests.Session.get")
    def test_get_html_rejects_binary(self, mock_get):
        mock_get.return_value = self._response(content_type="application/pdf")
        self.assertIsNone(self.client.get_html("https://acme.com/file"))
        mock_get.return_value = self._response()
        self.assertEqual(self.client.get_html("https://acme.com"), "<p>hi</p>")


class TestHtmlFetcher(unittest.IsolatedAsyncioTestCase):

    async def test_fetch_returns_markup(self):
        client = MagicMock()
        client.get_html.return_value = "<html></html>"
        fetcher = HtmlFetcher(client, make_config())
        self.assertEqual(await fetcher.fetch("https://acme.com"), "<html></html>")
        client.get_html.assert_called_once_with("https://acme.com", 1.0)

    async def test_fetch_swallows_errors(self):
        client = MagicMock()
        client.get_html.side_effect = RuntimeError("boom")
        fetcher = HtmlFetcher(client, make_config())
        self.assertIsNone(await fetcher.fetch("https://acme.com"))


if __name__ == "__main__":
    unittest.main()
