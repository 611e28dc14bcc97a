import os
import tempfile
import unittest
from unittest.mock import patch

from mailfinder.errors import JobNotFoundError, ProgressStoreError
from mailfinder.models import ExtractionJob, JobStatus, Mode, StepStatus
from mailfinder.store import JsonProgressStore, MemoryProgressStore, build_store

URLS = ["https://acme.com", "https://globex.org"]


class TestMemoryProgressStore(unittest.TestCase):
    """Tests for the progress store."""

    def setUp(self):
        self.store = MemoryProgressStore()
        self.job = self.store.create_job(ExtractionJob.create("owner-1", URLS, Mode.MULTIPLE))

    def test_create_job_has_placeholder_per_url(self):
        job = self.store.get_job(self.job.job_id)
        self.assertEqual(job.status, JobStatus.PENDING)
        self.assertEqual([r.url for r in job.results], URLS)
        self.assertTrue(all(r.status == "processing" for r in job.results))

    def test_unknown_job(self):
        with self.assertRaises(JobNotFoundError):
            self.store.get_job("missing")

    def test_reads_are_copies(self):
        job = self.store.get_job(self.job.job_id)
        job.results[0].emails.append("leak@acme.com")
        self.assertEqual(self.store.get_job(self.job.job_id).results[0].emails, [])

    def test_update_result_keeps_total_in_sync(self):
        self.store.update_result(self.job.job_id, URLS[0], emails=["B@acme.com", "a@acme.com", "a@acme.com"])
        self.store.update_result(self.job.job_id, URLS[1], emails=["x@globex.org"])
        job = self.store.get_job(self.job.job_id)
        self.assertEqual(job.results[0].emails, ["a@acme.com", "b@acme.com"])
        self.assertEqual(job.total_emails, 3)

    def test_step_appears_once_and_terminal_is_final(self):
        job_id = self.job.job_id
        self.store.update_step(job_id, URLS[0], "homepage_scan", StepStatus.PROCESSING)
        self.store.update_step(job_id, URLS[0], "homepage_scan", StepStatus.COMPLETED, "done")
        self.store.update_step(job_id, URLS[0], "homepage_scan", StepStatus.FAILED, "late")

        result = self.store.get_job(job_id).results[0]
        self.assertEqual(len(result.progress), 1)
        step = result.progress[0]
        self.assertEqual(step.status, StepStatus.COMPLETED)
        self.assertEqual(step.message, "done")
        self.assertIsNotNone(step.completed_at)
        self.assertGreaterEqual(step.duration_ms, 0)
        self.assertEqual(result.current_step, "homepage_scan")

    def test_status_transitions_are_monotonic(self):
        job_id = self.job.job_id
        self.store.update_job(job_id, status=JobStatus.PROCESSING)
        self.store.update_job(job_id, status=JobStatus.COMPLETED)
        with self.assertRaises(ProgressStoreError):
            self.store.update_job(job_id, status=JobStatus.PROCESSING)

    def test_pending_cannot_complete_directly(self):
        with self.assertRaises(ProgressStoreError):
            self.store.update_job(self.job.job_id, status=JobStatus.COMPLETED)
        self.assertEqual(self.store.get_job(self.job.job_id).status, JobStatus.PENDING)

    def test_terminal_job_is_immutable(self):
        job_id = self.job.job_id
        self.store.update_job(job_id, status=JobStatus.CANCELLED)
        self.store.update_result(job_id, URLS[0], emails=["late@acme.com"])
        self.store.update_step(job_id, URLS[0], "homepage_scan", StepStatus.PROCESSING)
        job = self.store.get_job(job_id)
        self.assertEqual(job.results[0].emails, [])
        self.assertEqual(job.results[0].progress, [])

    def test_list_jobs_newest_first_with_paging(self):
        second = self.store.create_job(ExtractionJob.create("owner-1", URLS[:1]))
        self.store.create_job(ExtractionJob.create("owner-2", URLS[:1]))
        jobs = self.store.list_jobs("owner-1")
        self.assertEqual([j.job_id for j in jobs], [second.job_id, self.job.job_id])
        self.assertEqual(len(self.store.list_jobs("owner-1", limit=1, offset=1)), 1)

    def test_unknown_fields_rejected(self):
        with self.assertRaises(ValueError):
            self.store.update_result(self.job.job_id, URLS[0], colour="blue")


class TestJsonProgressStore(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmpdir.name, "jobs.json")

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_round_trip_through_disk(self):
        store = JsonProgressStore(self.path)
        job = store.create_job(ExtractionJob.create("owner-1", URLS))
        store.update_step(job.job_id, URLS[0], "contact_pages", StepStatus.COMPLETED, "ok",
                          {"pages_checked": 5})
        store.update_result(job.job_id, URLS[0], emails=["info@acme.com"],
                            provenance={"info@acme.com": "contact_pages"})

        reloaded = JsonProgressStore(self.path).get_job(job.job_id)
        self.assertEqual(reloaded.results[0].emails, ["info@acme.com"])
        self.assertEqual(reloaded.results[0].provenance, {"info@acme.com": "contact_pages"})
        self.assertEqual(reloaded.results[0].progress[0].details, {"pages_checked": 5})
        self.assertEqual(reloaded.created_at, job.created_at)

    def test_failed_write_leaves_previous_state(self):
        store = JsonProgressStore(self.path)
        job = store.create_job(ExtractionJob.create("owner-1", URLS))
        with patch.object(store, "_persist", side_effect=OSError("disk full")):
            with self.assertRaises(ProgressStoreError):
                store.update_result(job.job_id, URLS[0], emails=["info@acme.com"])
        self.assertEqual(store.get_job(job.job_id).results[0].emails, [])

    def test_build_store(self):
        self.assertIsInstance(build_store(""), MemoryProgressStore)
        self.assertIsInstance(build_store(self.path), JsonProgressStore)


if __name__ == "__main__":
    unittest.main()
