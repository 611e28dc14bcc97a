import unittest
from datetime import datetime, timezone

from mailfinder.export import extract_urls_from_csv, is_url_like, render_results_csv
from mailfinder.models import ExtractionJob, ExtractionResult


class TestRenderResultsCsv(unittest.TestCase):

    def test_one_row_per_url_and_email(self):
        stamp = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        job = ExtractionJob(
            job_id="j1",
            owner_id="o",
            urls=["https://acme.com", "https://globex.org"],
            results=[
                ExtractionResult(url="https://acme.com", emails=["a@acme.com", "b@acme.com"],
                                 status="success", extracted_at=stamp),
                ExtractionResult(url="https://globex.org", status="failed", error="Extraction timeout"),
            ],
        )
        self.assertEqual(render_results_csv(job).splitlines(), [
            '"URL","Email","Status","Extracted At"',
            '"https://acme.com","a@acme.com","success","2024-05-01T12:00:00+00:00"',
            '"https://acme.com","b@acme.com","success","2024-05-01T12:00:00+00:00"',
            '"https://globex.org","","failed",""',
        ])

    def test_empty_job_has_header_only(self):
        job = ExtractionJob(job_id="j", owner_id="o", urls=[])
        self.assertEqual(render_results_csv(job).strip(), '"URL","Email","Status","Extracted At"')


class TestExtractUrlsFromCsv(unittest.TestCase):

    def test_scans_cells_in_order_without_duplicates(self):
        text = (
            "Company,Website,Notes\n"
            "Acme,https://acme.com,call back\n"
            "Globex,globex.org,\n"
            "Acme again,https://acme.com,\n"
            "Initech,,www.initech.io/contact\n"
        )
        self.assertEqual(
            extract_urls_from_csv(text),
            ["https://acme.com", "globex.org", "www.initech.io/contact"],
        )

    def test_short_rows_and_blank_lines(self):
        text = "acme.com\n\nfoo,bar,https://globex.org\n"
        self.assertEqual(extract_urls_from_csv(text), ["acme.com", "https://globex.org"])

    def test_empty_text(self):
        self.assertEqual(extract_urls_from_csv(""), [])
        self.assertEqual(extract_urls_from_csv("   \n"), [])

    def test_is_url_like(self):
        self.assertTrue(is_url_like("http://acme.com/x?y=1"))
        self.assertTrue(is_url_like("acme.co.uk"))
        self.assertFalse(is_url_like("sales@acme.com"))
        self.assertFalse(is_url_like("call back"))
        self.assertFalse(is_url_like("12.50"))
        self.assertFalse(is_url_like("Acme"))


if __name__ == "__main__":
    unittest.main()
