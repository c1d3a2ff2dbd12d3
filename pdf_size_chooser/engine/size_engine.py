"""Facade over the four engine stages.

The job layer talks only to SizeTargetEngine; the backend and settings are
injected so tests can run the whole pipeline against a fake backend.
"""

import logging
import threading
from pathlib import Path
from typing import Dict, Optional

from pdf_size_chooser.core.settings import EngineSettings, get_engine_settings
from pdf_size_chooser.engine import analyzer, gate, resolver, sampler
from pdf_size_chooser.engine.ghostscript import GhostscriptBackend
from pdf_size_chooser.engine.models import (
    CompressionOutput,
    EstimationCurve,
    QualityResolution,
    StructuralProfile,
    VerifiedResult,
)

logger = logging.getLogger(__name__)


class SizeTargetEngine:
    def __init__(
        self,
        backend=None,
        settings: Optional[EngineSettings] = None,
        size_factors: Optional[Dict[str, float]] = None,
    ) -> None:
        self.settings = settings or get_engine_settings()
        self.backend = backend or GhostscriptBackend(settings=self.settings)
        self.size_factors = size_factors

    def analyze(self, pdf_path: Path, cancel_event: Optional[threading.Event] = None) -> StructuralProfile:
        return analyzer.analyze_pdf(
            pdf_path,
            settings=self.settings,
            size_factors=self.size_factors,
            cancel_event=cancel_event,
        )

    def page_count(self, pdf_path: Path, cancel_event: Optional[threading.Event] = None) -> int:
        return self.backend.get_page_count(pdf_path, cancel_event=cancel_event)

    def estimate(
        self,
        pdf_path: Path,
        page_count: int,
        work_dir: Optional[Path] = None,
        label: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> EstimationCurve:
        return sampler.build_curve(
            self.backend,
            pdf_path,
            page_count,
            work_dir=work_dir,
            job_label=label,
            settings=self.settings,
            cancel_event=cancel_event,
        )

    def resolve_quality(self, curve: EstimationCurve, target_bytes: int) -> QualityResolution:
        return resolver.resolve_quality(curve, target_bytes)

    def plan(
        self,
        original_bytes: int,
        curve: Optional[EstimationCurve],
        target_bytes: Optional[int],
        requested_quality: Optional[int] = None,
    ) -> QualityResolution:
        """Starting quality for a request, short-circuiting small documents.

        A document already within the target starts at the top of the ladder
        and is achievable whether or not a curve exists.
        """
        if target_bytes is not None and original_bytes <= target_bytes:
            top = max(self.settings.quality_ladder)
            if requested_quality is not None:
                top = min(top, requested_quality)
            return QualityResolution(top, original_bytes, True)

        return resolver.choose_start_quality(
            curve, target_bytes, requested_quality, self.settings.default_quality
        )

    def compress_to_target(
        self,
        pdf_path: Path,
        target_bytes: int,
        start_quality: int,
        work_dir: Optional[Path] = None,
        label: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
        on_state=None,
    ) -> VerifiedResult:
        return gate.compress_to_target(
            self.backend,
            pdf_path,
            target_bytes,
            start_quality,
            work_dir=work_dir,
            label=label,
            settings=self.settings,
            cancel_event=cancel_event,
            on_state=on_state,
        )

    def compress_at_quality(
        self,
        pdf_path: Path,
        quality: int,
        work_dir: Optional[Path] = None,
        label: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> CompressionOutput:
        return gate.compress_at_quality(
            self.backend,
            pdf_path,
            quality,
            work_dir=work_dir,
            label=label,
            settings=self.settings,
            cancel_event=cancel_event,
        )

    def backend_version(self) -> Optional[str]:
        return self.backend.version()
