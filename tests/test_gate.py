import tempfile
import unittest
from pathlib import Path

from fakes import FakeBackend, write_file

from pdf_size_chooser.core.exceptions import BackendExecutionError
from pdf_size_chooser.core.settings import EngineSettings
from pdf_size_chooser.engine.gate import GateState, compress_at_quality, compress_to_target

SETTINGS = EngineSettings()


def _sizes(table, default=None):
    """Backend size function from a quality -> bytes table."""
    def size_for(input_bytes, quality):
        if quality in table:
            return table[quality]
        return default if default is not None else input_bytes
    return size_for


class TestVerificationGate(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.base = Path(self._tmp.name)
        self.pdf = write_file(self.base / "doc.pdf", 45_000)

    def tearDown(self):
        self._tmp.cleanup()

    def _run(self, backend, target, start, settings=SETTINGS, **kwargs):
        return compress_to_target(
            backend, self.pdf, target, start, work_dir=self.base, label="job", settings=settings, **kwargs
        )

    def test_first_attempt_under_target_is_done(self):
        backend = FakeBackend(size_for=_sizes({70: 20_000}))
        result = self._run(backend, 25_000, 70)
        self.assertTrue(result.guarantee_satisfied)
        self.assertEqual(result.attempt_count, 1)
        self.assertEqual(result.final_quality, 70)
        self.assertEqual(result.output_bytes, 20_000)
        self.assertEqual(result.discarded_paths, ())

    def test_oversized_result_retries_five_points_lower(self):
        backend = FakeBackend(size_for=_sizes({68: 26_000, 63: 24_000}))
        result = self._run(backend, 25_000, 68)
        self.assertTrue(result.guarantee_satisfied)
        self.assertEqual(backend.compress_calls, [68, 63])
        self.assertEqual(result.final_quality, 63)
        self.assertEqual(result.attempt_count, 2)
        self.assertLessEqual(result.output_bytes, 25_000)
        self.assertEqual(len(result.discarded_paths), 1)
        self.assertTrue(all(p == self.pdf for p in backend.compress_inputs))

    def test_exhausts_after_max_attempts(self):
        backend = FakeBackend(size_for=_sizes({}, default=30_000))
        result = self._run(backend, 25_000, 70)
        self.assertFalse(result.guarantee_satisfied)
        self.assertEqual(result.attempt_count, 3)
        self.assertEqual(backend.compress_calls, [70, 65, 60])
        self.assertEqual(result.final_quality, 60)
        self.assertEqual(result.output_path.name, "job_attempt3_q60.pdf")
        self.assertEqual(len(result.discarded_paths), 2)

    def test_one_byte_target_terminates_within_three_attempts(self):
        backend = FakeBackend()
        result = self._run(backend, 1, 100)
        self.assertFalse(result.guarantee_satisfied)
        self.assertLessEqual(len(backend.compress_calls), 3)
        self.assertGreater(result.output_bytes, 1)

    def test_floor_quality_stops_after_second_attempt(self):
        backend = FakeBackend(size_for=_sizes({}, default=30_000))
        result = self._run(backend, 25_000, 4)
        self.assertEqual(backend.compress_calls, [4, 1])
        self.assertFalse(result.guarantee_satisfied)

    def test_first_attempt_at_floor_may_retry(self):
        backend = FakeBackend(size_for=_sizes({}, default=30_000))
        result = self._run(backend, 25_000, 1)
        self.assertEqual(backend.compress_calls, [1, 1])
        self.assertEqual(result.attempt_count, 2)

    def test_single_attempt_gate(self):
        backend = FakeBackend(size_for=_sizes({}, default=30_000))
        result = self._run(backend, 25_000, 80, settings=EngineSettings(max_attempts=1))
        self.assertEqual(backend.compress_calls, [80])
        self.assertFalse(result.guarantee_satisfied)

    def test_backend_failure_counts_as_attempt(self):
        backend = FakeBackend(size_for=_sizes({70: 20_000}), fail_qualities={70: 1})
        result = self._run(backend, 25_000, 70)
        self.assertTrue(result.guarantee_satisfied)
        self.assertEqual(result.attempt_count, 2)
        self.assertEqual(result.attempts[0].error, "Ghostscript crashed at quality 70")

    def test_backend_failing_every_attempt_propagates(self):
        backend = FakeBackend(fail_qualities={70: 10})
        with self.assertRaises(BackendExecutionError):
            self._run(backend, 25_000, 70)
        self.assertEqual(len(backend.compress_calls), 3)

    def test_satisfied_result_never_exceeds_target(self):
        for target in (1, 5_000, 22_000, 30_000, 45_000, 90_000):
            for start in (1, 25, 50, 73, 100):
                backend = FakeBackend()
                result = self._run(backend, target, start)
                if result.guarantee_satisfied:
                    self.assertLessEqual(result.output_bytes, target)
                self.assertLessEqual(result.attempt_count, 3)

    def test_reports_state_transitions(self):
        states = []
        backend = FakeBackend(size_for=_sizes({68: 26_000, 63: 24_000}))
        self._run(backend, 25_000, 68, on_state=lambda state, attempt, q: states.append(state))
        self.assertEqual(
            states,
            [
                GateState.IDLE,
                GateState.COMPRESSING,
                GateState.VERIFYING,
                GateState.RETRYING,
                GateState.COMPRESSING,
                GateState.VERIFYING,
                GateState.DONE,
            ],
        )

    def test_invalid_inputs(self):
        with self.assertRaises(ValueError):
            self._run(FakeBackend(), 0, 50)
        with self.assertRaises(ValueError):
            self._run(FakeBackend(), 100, 0)

    def test_compress_at_quality_runs_once(self):
        backend = FakeBackend()
        output = compress_at_quality(backend, self.pdf, 40, work_dir=self.base, label="job", settings=SETTINGS)
        self.assertEqual(backend.compress_calls, [40])
        self.assertEqual(output.output_path.name, "job_q40.pdf")
        self.assertEqual(output.output_bytes, 18_000)
