"""Test doubles for the compression backend and process runner."""

import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional

from pdf_size_chooser.core.exceptions import BackendExecutionError
from pdf_size_chooser.engine.models import CompressionOutput
from pdf_size_chooser.engine.process import ProcessResult


def _write(path: Path, size: int) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as handle:
        handle.write(b"%PDF-1.4\n")
        handle.write(b"0" * max(0, size - 9))


class FakeBackend:
    """Writes files of a chosen size instead of running Ghostscript.

    ``size_for(input_bytes, quality)`` decides each output size;
    ``fail_qualities`` makes compress raise at those qualities.
    """

    def __init__(
        self,
        size_for: Optional[Callable[[int, int], int]] = None,
        page_count: int = 10,
        fail_qualities: Optional[Dict[int, int]] = None,
        fail_extract: bool = False,
        version: Optional[str] = "10.02.1",
    ) -> None:
        self.size_for = size_for or (lambda input_bytes, quality: max(1, input_bytes * quality // 100))
        self.pages = page_count
        self.fail_qualities = dict(fail_qualities or {})
        self.fail_extract = fail_extract
        self._version = version
        self.compress_calls: List[int] = []
        self.compress_inputs: List[Path] = []
        self.extract_calls: List[List[int]] = []
        self._lock = threading.Lock()

    def get_page_count(self, pdf_path, timeout=None, cancel_event=None) -> int:
        return self.pages

    def extract_pages(self, pdf_path, page_indices, output_path, timeout=None, cancel_event=None):
        with self._lock:
            self.extract_calls.append(list(page_indices))
        if self.fail_extract:
            raise BackendExecutionError("extraction failed")
        full = Path(pdf_path).stat().st_size
        _write(Path(output_path), max(10, full * len(page_indices) // self.pages))
        return Path(output_path)

    def compress(self, input_path, output_path, quality, timeout=None, cancel_event=None):
        input_path = Path(input_path)
        output_path = Path(output_path)
        with self._lock:
            self.compress_calls.append(quality)
            self.compress_inputs.append(input_path)
            remaining = self.fail_qualities.get(quality, 0)
            if remaining:
                self.fail_qualities[quality] = remaining - 1
        if remaining:
            raise BackendExecutionError(f"Ghostscript crashed at quality {quality}")
        input_bytes = input_path.stat().st_size
        size = self.size_for(input_bytes, quality)
        _write(output_path, size)
        return CompressionOutput(output_path, output_path.stat().st_size, quality, input_bytes)

    def version(self):
        return self._version


class FakeRunner:
    """Records commands and returns canned ProcessResults."""

    def __init__(self, results=None, on_run=None) -> None:
        self.results = list(results or [])
        self.on_run = on_run
        self.calls = []

    def run(self, args, timeout=None, cancel_event=None, stage="compression"):
        self.calls.append({"args": list(args), "timeout": timeout, "stage": stage})
        if self.on_run is not None:
            self.on_run(args)
        if self.results:
            return self.results.pop(0)
        return ProcessResult(0, "", "")


def write_file(path: Path, size: int) -> Path:
    _write(Path(path), size)
    return Path(path)


class InlineRunner:
    """Runs submitted tasks immediately on the calling thread."""

    name = "inline"

    def __init__(self) -> None:
        self.submitted = []

    def submit(self, job_id, task) -> None:
        self.submitted.append(job_id)
        task()

    def stats(self):
        return {"runner": self.name, "submitted": len(self.submitted)}

    def shutdown(self, wait=False) -> None:
        return None


class DeferredRunner(InlineRunner):
    """Holds submitted tasks until ``run_all`` is called."""

    name = "deferred"

    def __init__(self) -> None:
        super().__init__()
        self.tasks = []

    def submit(self, job_id, task) -> None:
        self.submitted.append(job_id)
        self.tasks.append(task)

    def run_all(self) -> None:
        while self.tasks:
            self.tasks.pop(0)()


def make_blank_pdf(path: Path, pages: int = 1) -> Path:
    from PyPDF2 import PdfWriter

    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=72, height=72)
    with open(path, "wb") as handle:
        writer.write(handle)
    return Path(path)
