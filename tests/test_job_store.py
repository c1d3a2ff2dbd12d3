import threading
import time
import unittest
from pathlib import Path

from pdf_size_chooser.workers import job_store
from pdf_size_chooser.workers.job_store import JobStore


class TestJobStore(unittest.TestCase):
    def setUp(self):
        self.store = JobStore()

    def test_create_and_get(self):
        job = self.store.create("report.pdf", 1234, Path("/tmp/x.pdf"), job_id="abc")
        self.assertEqual(job.status, job_store.PENDING)
        self.assertIs(self.store.get("abc"), job)
        self.assertIsNone(self.store.get("missing"))

    def test_update_changes_fields_and_timestamp(self):
        job = self.store.create("report.pdf", 1234, Path("/tmp/x.pdf"))
        before = job.updated_at
        time.sleep(0.01)
        self.store.update(job.job_id, status=job_store.READY, progress=100)
        self.assertEqual(job.status, job_store.READY)
        self.assertEqual(job.progress, 100)
        self.assertGreater(job.updated_at, before)

    def test_update_rejects_unknown_field(self):
        job = self.store.create("report.pdf", 1, Path("/tmp/x.pdf"))
        with self.assertRaises(AttributeError):
            self.store.update(job.job_id, colour="blue")

    def test_update_missing_job_returns_none(self):
        self.assertIsNone(self.store.update("missing", status=job_store.DONE))

    def test_transition_is_guarded(self):
        job = self.store.create("report.pdf", 1, Path("/tmp/x.pdf"))
        self.assertIsNone(self.store.transition(job.job_id, (job_store.READY,), job_store.COMPRESSING))
        self.assertEqual(job.status, job_store.PENDING)
        self.assertIs(self.store.transition(job.job_id, (job_store.PENDING,), job_store.ESTIMATING), job)
        self.assertEqual(job.status, job_store.ESTIMATING)

    def test_concurrent_transition_has_one_winner(self):
        job = self.store.create("report.pdf", 1, Path("/tmp/x.pdf"))
        self.store.update(job.job_id, status=job_store.READY)
        winners = []

        def attempt():
            if self.store.transition(job.job_id, (job_store.READY,), job_store.COMPRESSING):
                winners.append(1)

        threads = [threading.Thread(target=attempt) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(len(winners), 1)

    def test_delete_sets_cancel_event(self):
        job = self.store.create("report.pdf", 1, Path("/tmp/x.pdf"))
        self.assertIs(self.store.delete(job.job_id), job)
        self.assertTrue(job.cancelled)
        self.assertIsNone(self.store.get(job.job_id))
        self.assertIsNone(self.store.delete(job.job_id))

    def test_purge_expired(self):
        old = self.store.create("old.pdf", 1, Path("/tmp/old.pdf"))
        fresh = self.store.create("new.pdf", 1, Path("/tmp/new.pdf"))
        old.created_at -= 7200

        expired = self.store.purge_expired(3600)
        self.assertEqual([j.job_id for j in expired], [old.job_id])
        self.assertTrue(old.cancelled)
        self.assertIsNone(self.store.get(old.job_id))
        self.assertIs(self.store.get(fresh.job_id), fresh)

    def test_counts_and_recent(self):
        a = self.store.create("a.pdf", 1, Path("/tmp/a.pdf"))
        b = self.store.create("b.pdf", 1, Path("/tmp/b.pdf"))
        b.created_at = a.created_at + 1
        self.store.update(a.job_id, status=job_store.DONE)

        counts = self.store.counts()
        self.assertEqual(counts[job_store.DONE], 1)
        self.assertEqual(counts[job_store.PENDING], 1)
        self.assertEqual([j.job_id for j in self.store.recent(1)], [b.job_id])
        self.assertEqual(len(self.store), 2)
