"""Immutable value types passed between the engine stages."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class ImageInfo:
    index: int
    width: int
    height: int
    bits_per_component: int
    color_space: str
    filter: str  # JPEG, Flate, JPEG2000, CCITT, JBIG2, None, ...
    estimated_bytes: int
    declared_length: bool  # True when the weight is the stream's /Length


@dataclass(frozen=True)
class FontInfo:
    name: str
    subtype: str
    embedded: bool


@dataclass(frozen=True)
class StructuralProfile:
    """Structure of one document, computed once per job."""

    page_count: int
    original_bytes: int
    images: Tuple[ImageInfo, ...]
    fonts: Tuple[FontInfo, ...]
    compressible_bytes: int
    fixed_overhead_bytes: int
    minimum_achievable_bytes: int
    title: Optional[str] = None
    author: Optional[str] = None
    creator: Optional[str] = None
    has_bookmarks: bool = False
    has_annotations: bool = False
    has_forms: bool = False
    analysis_time_ms: int = field(default=0, compare=False)

    @property
    def image_count(self) -> int:
        return len(self.images)

    @property
    def font_count(self) -> int:
        return len(self.fonts)

    @property
    def embedded_font_count(self) -> int:
        return sum(1 for font in self.fonts if font.embedded)

    def to_dict(self, include_items: bool = False) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "page_count": self.page_count,
            "original_bytes": self.original_bytes,
            "images": {"count": self.image_count, "total_estimated_bytes": self.compressible_bytes},
            "fonts": {"count": self.font_count, "embedded_count": self.embedded_font_count},
            "metadata": {
                "title": self.title,
                "author": self.author,
                "creator": self.creator,
                "has_bookmarks": self.has_bookmarks,
                "has_annotations": self.has_annotations,
                "has_forms": self.has_forms,
            },
            "compressible_bytes": self.compressible_bytes,
            "fixed_overhead_bytes": self.fixed_overhead_bytes,
            "minimum_achievable_bytes": self.minimum_achievable_bytes,
            "analysis_time_ms": self.analysis_time_ms,
        }
        if include_items:
            data["images"]["items"] = [asdict(image) for image in self.images]
            data["fonts"]["items"] = [asdict(font) for font in self.fonts]
        return data


@dataclass(frozen=True)
class SizeEstimate:
    quality: int
    estimated_bytes: int
    sample_compressed_bytes: int
    sample_page_count: int
    total_page_count: int


@dataclass(frozen=True)
class EstimationCurve:
    """Quality -> predicted size, sorted by quality ascending.

    Non-decreasing in ``estimated_bytes`` once built by the sampler.
    """

    original_bytes: int
    page_count: int
    estimates: Tuple[SizeEstimate, ...]
    sample_pages: Tuple[int, ...] = ()
    failed_qualities: Tuple[int, ...] = ()
    sampling_time_ms: int = field(default=0, compare=False)

    @property
    def highest(self) -> SizeEstimate:
        return self.estimates[-1]

    @property
    def lowest(self) -> SizeEstimate:
        return self.estimates[0]

    @property
    def sample_page_count(self) -> int:
        return self.estimates[0].sample_page_count if self.estimates else 0

    def is_monotonic(self) -> bool:
        return all(
            prev.quality < cur.quality and prev.estimated_bytes <= cur.estimated_bytes
            for prev, cur in zip(self.estimates, self.estimates[1:])
        )


@dataclass(frozen=True)
class QualityResolution:
    quality: int
    estimated_bytes: int
    achievable: bool


@dataclass(frozen=True)
class CompressionOutput:
    """One backend compression run."""

    output_path: Path
    output_bytes: int
    quality: int
    input_bytes: int = 0


@dataclass(frozen=True)
class AttemptRecord:
    attempt: int
    quality: int
    output_bytes: Optional[int] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class VerifiedResult:
    """Outcome of the verification gate.

    ``guarantee_satisfied`` False is a normal terminal state: the last
    output produced still exceeded the target.
    """

    output_path: Path
    output_bytes: int
    final_quality: int
    attempt_count: int
    guarantee_satisfied: bool
    target_bytes: int
    attempts: Tuple[AttemptRecord, ...] = ()
    discarded_paths: Tuple[Path, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "output_bytes": self.output_bytes,
            "final_quality": self.final_quality,
            "attempt_count": self.attempt_count,
            "guarantee_satisfied": self.guarantee_satisfied,
            "target_bytes": self.target_bytes,
            "attempts": [asdict(record) for record in self.attempts],
        }
