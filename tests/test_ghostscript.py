import sys
import tempfile
import threading
import time
import unittest
from pathlib import Path

import pytest

from fakes import FakeRunner, write_file

from pdf_size_chooser.core.exceptions import (
    BackendExecutionError,
    BackendUnavailableError,
    JobCancelledError,
    ProcessingTimeoutError,
)
from pdf_size_chooser.core.settings import EngineSettings
from pdf_size_chooser.engine import ghostscript
from pdf_size_chooser.engine.ghostscript import (
    GhostscriptBackend,
    quality_to_profile,
    translate_ghostscript_error,
    validate_quality,
)
from pdf_size_chooser.engine.process import ProcessResult, SubprocessRunner


class TestQualityMapping(unittest.TestCase):
    def test_tiers(self):
        self.assertEqual(quality_to_profile(10).pdf_settings, "/screen")
        self.assertEqual(quality_to_profile(25).pdf_settings, "/screen")
        self.assertEqual(quality_to_profile(26).pdf_settings, "/ebook")
        self.assertEqual(quality_to_profile(75).pdf_settings, "/ebook")
        self.assertEqual(quality_to_profile(76).pdf_settings, "/printer")

    def test_anchor_resolutions(self):
        self.assertEqual(quality_to_profile(25).dpi, 72)
        self.assertEqual(quality_to_profile(50).dpi, 100)
        self.assertEqual(quality_to_profile(75).dpi, 150)
        self.assertEqual(quality_to_profile(100).dpi, 200)

    def test_mapping_is_monotonic(self):
        previous = quality_to_profile(1)
        for quality in range(2, 101):
            current = quality_to_profile(quality)
            self.assertGreaterEqual(current.dpi, previous.dpi)
            self.assertGreaterEqual(current.jpeg_quality, previous.jpeg_quality)
            self.assertGreaterEqual(current.mono_dpi, previous.mono_dpi)
            previous = current

    def test_rejects_out_of_range(self):
        for bad in (0, 101, -5, True, 50.5, "50"):
            with self.assertRaises(ValueError):
                validate_quality(bad)


class TestTranslateError(unittest.TestCase):
    def test_password(self):
        self.assertIn("password", translate_ghostscript_error("Error: /invalidfileaccess", 1))

    def test_damaged(self):
        self.assertIn("damaged", translate_ghostscript_error("Error: /syntaxerror in pdf", 1))

    def test_fallback_mentions_exit_code(self):
        self.assertIn("exit code 3", translate_ghostscript_error("something odd", 3))


class TestGhostscriptBackend(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.base = Path(self._tmp.name)
        self.pdf = write_file(self.base / "in.pdf", 1000)

    def tearDown(self):
        self._tmp.cleanup()

    def _backend(self, runner, **settings):
        return GhostscriptBackend(runner=runner, settings=EngineSettings(**settings), command="gs")

    def test_page_count_parses_last_line(self):
        runner = FakeRunner([ProcessResult(0, "GPL Ghostscript banner\n42\n", "")])
        self.assertEqual(self._backend(runner).get_page_count(self.pdf), 42)
        args = runner.calls[0]["args"]
        self.assertIn("-dNODISPLAY", args)
        self.assertTrue(args[-1].endswith("runpdfbegin pdfpagecount = quit"))

    def test_page_count_unparsable_output(self):
        runner = FakeRunner([ProcessResult(0, "no number here\n", "")])
        with self.assertRaises(BackendExecutionError):
            self._backend(runner).get_page_count(self.pdf)

    def test_page_count_non_zero_exit(self):
        runner = FakeRunner([ProcessResult(1, "", "Error: /undefined")])
        with self.assertRaises(BackendExecutionError) as ctx:
            self._backend(runner).get_page_count(self.pdf)
        self.assertEqual(ctx.exception.returncode, 1)

    def test_extract_pages_uses_one_based_sorted_list(self):
        output = self.base / "sample.pdf"
        runner = FakeRunner(on_run=lambda args: write_file(output, 500))
        self._backend(runner).extract_pages(self.pdf, [9, 0, 4], output)
        self.assertIn("-sPageList=1,5,10", runner.calls[0]["args"])

    def test_extract_pages_rejects_empty_selection(self):
        with self.assertRaises(ValueError):
            self._backend(FakeRunner()).extract_pages(self.pdf, [], self.base / "x.pdf")

    def test_compress_reports_output_size(self):
        output = self.base / "out.pdf"
        runner = FakeRunner(on_run=lambda args: write_file(output, 400))
        result = self._backend(runner).compress(self.pdf, output, 60)

        self.assertEqual(result.output_bytes, 400)
        self.assertEqual(result.input_bytes, 1000)
        self.assertEqual(result.quality, 60)
        args = runner.calls[0]["args"]
        self.assertIn("-dPDFSETTINGS=/ebook", args)
        self.assertIn("-dJPEGQ=60", args)
        self.assertEqual(args[-1], str(self.pdf))

    def test_compress_without_output_fails(self):
        with self.assertRaises(BackendExecutionError):
            self._backend(FakeRunner()).compress(self.pdf, self.base / "out.pdf", 60)

    def test_compress_non_zero_exit_fails(self):
        runner = FakeRunner([ProcessResult(1, "", "Error: /typecheck")])
        with self.assertRaises(BackendExecutionError) as ctx:
            self._backend(runner).compress(self.pdf, self.base / "out.pdf", 60)
        self.assertIn("corrupted", ctx.exception.message)

    def test_timeout_is_capped_by_backend_ceiling(self):
        output = self.base / "out.pdf"
        runner = FakeRunner(on_run=lambda args: write_file(output, 10))
        self._backend(runner, backend_timeout_sec=20.0).compress(self.pdf, output, 50, timeout=500)
        self.assertEqual(runner.calls[0]["timeout"], 20.0)

    def test_version(self):
        runner = FakeRunner([ProcessResult(0, "10.02.1\n", "")])
        self.assertEqual(self._backend(runner).version(), "10.02.1")


def test_missing_binary_raises_unavailable(monkeypatch):
    monkeypatch.setattr(ghostscript, "get_ghostscript_command", lambda: None)
    backend = GhostscriptBackend(runner=FakeRunner(), settings=EngineSettings())
    with pytest.raises(BackendUnavailableError):
        backend.compress(Path(__file__), Path("/tmp/never.pdf"), 50)
    assert backend.version() is None


class CountingRunner:
    """Holds each command briefly and records how many overlap."""

    def __init__(self, hold=0.1):
        self.hold = hold
        self.active = 0
        self.peak = 0
        self.calls = 0
        self._lock = threading.Lock()

    def run(self, args, timeout=None, cancel_event=None, stage="compression"):
        with self._lock:
            self.active += 1
            self.calls += 1
            self.peak = max(self.peak, self.active)
        try:
            time.sleep(self.hold)
            output = next(a for a in args if a.startswith("-sOutputFile="))
            write_file(Path(output.split("=", 1)[1]), 100)
            return ProcessResult(0, "", "")
        finally:
            with self._lock:
                self.active -= 1


def test_concurrent_compressions_respect_process_limit(tmp_path):
    source = write_file(tmp_path / "in.pdf", 1000)
    runner = CountingRunner()
    backend = GhostscriptBackend(runner=runner, settings=EngineSettings(max_backend_processes=2), command="gs")

    threads = [
        threading.Thread(target=backend.compress, args=(source, tmp_path / f"out{i}.pdf", 50))
        for i in range(6)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert runner.calls == 6
    assert runner.peak <= 2


class TestSubprocessRunner(unittest.TestCase):
    SLEEP = [sys.executable, "-c", "import time; time.sleep(30)"]

    def test_returns_output_and_exit_code(self):
        result = SubprocessRunner(poll_interval=0.05).run([sys.executable, "-c", "print('ok')"], timeout=30)
        self.assertEqual(result.returncode, 0)
        self.assertEqual(result.stdout.strip(), "ok")

    def test_cancel_kills_running_process(self):
        cancel = threading.Event()
        timer = threading.Timer(0.2, cancel.set)
        timer.start()
        start = time.monotonic()
        try:
            with self.assertRaises(JobCancelledError):
                SubprocessRunner(poll_interval=0.05).run(self.SLEEP, timeout=60, cancel_event=cancel)
        finally:
            timer.cancel()
        self.assertLess(time.monotonic() - start, 10)

    def test_timeout_kills_process(self):
        start = time.monotonic()
        with self.assertRaises(ProcessingTimeoutError) as ctx:
            SubprocessRunner(poll_interval=0.05).run(self.SLEEP, timeout=0.3, stage="estimation")
        self.assertEqual(ctx.exception.stage, "estimation")
        self.assertLess(time.monotonic() - start, 10)

    def test_already_cancelled_never_starts(self):
        cancel = threading.Event()
        cancel.set()
        with self.assertRaises(JobCancelledError):
            SubprocessRunner().run(["definitely-not-a-command"], cancel_event=cancel)

    def test_missing_executable_is_backend_error(self):
        with self.assertRaises(BackendExecutionError):
            SubprocessRunner().run(["definitely-not-a-command-xyz"], timeout=5)
