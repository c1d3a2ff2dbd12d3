"""Structural analysis of a PDF before any compression runs.

Walks every indirect object once to find image XObjects and fonts, then
derives how much of the file is compressible (images) versus fixed
overhead, and a conservative floor on the achievable output size.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple

from PyPDF2 import PdfReader
from PyPDF2.generic import ArrayObject, DictionaryObject, IndirectObject, StreamObject

from pdf_size_chooser.core.exceptions import (
    CorruptDocumentError,
    EncryptionError,
    JobCancelledError,
    ProcessingTimeoutError,
    UnsupportedDocumentError,
)
from pdf_size_chooser.core.settings import EngineSettings, get_engine_settings
from pdf_size_chooser.core.utils import round_half_up
from pdf_size_chooser.engine.models import FontInfo, ImageInfo, StructuralProfile

logger = logging.getLogger(__name__)

PDF_HEADER = b"%PDF-"
HEADER_SEARCH_BYTES = 1024

# Typical stored/uncompressed ratios per image encoding. Empirical defaults;
# only used when an image stream does not declare its /Length.
FILTER_SIZE_FACTORS: Dict[str, float] = {
    "JPEG": 0.10,
    "Flate": 0.40,
    "JPEG2000": 0.08,
}
DEFAULT_SIZE_FACTOR = 0.30

# Checked in order; the first match names the image encoding
FILTER_LABELS: Tuple[Tuple[str, str], ...] = (
    ("DCTDecode", "JPEG"),
    ("FlateDecode", "Flate"),
    ("JPXDecode", "JPEG2000"),
    ("CCITTFaxDecode", "CCITT"),
    ("JBIG2Decode", "JBIG2"),
)
CHANNELS = {"RGB": 3, "CMYK": 4}
FONT_FILE_KEYS = ("/FontFile", "/FontFile2", "/FontFile3")


def _resolve(obj: Any) -> Any:
    try:
        return obj.get_object()
    except AttributeError:
        return obj


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(_resolve(value))
    except (TypeError, ValueError):
        return None


def _clean_name(name: Any) -> str:
    label = str(name)
    return label[1:] if label.startswith("/") else label


def _check_deadline(deadline: Optional[float], timeout: float, stop: Optional[threading.Event]) -> None:
    if stop is not None and stop.is_set():
        raise JobCancelledError("Analysis stopped")
    if deadline is not None and time.monotonic() > deadline:
        raise ProcessingTimeoutError.for_stage("analysis", timeout)


def classify_color_space(color_space: Any) -> Tuple[str, int]:
    """Return (label, channels) for an image /ColorSpace entry."""
    color_space = _resolve(color_space)
    if color_space is None:
        return "Unknown", 1

    if isinstance(color_space, ArrayObject) and len(color_space) > 0:
        family = _clean_name(_resolve(color_space[0]))
        if family == "ICCBased" and len(color_space) > 1:
            stream = _resolve(color_space[1])
            n = _as_int(stream.get("/N")) if isinstance(stream, DictionaryObject) else None
            if n == 3:
                return "RGB", 3
            if n == 4:
                return "CMYK", 4
            return "Grayscale", 1
        if family == "Indexed":
            return "Indexed", 1
        text = " ".join(_clean_name(_resolve(item)) for item in color_space)
    else:
        text = _clean_name(color_space)

    if "RGB" in text:
        return "RGB", CHANNELS["RGB"]
    if "Gray" in text:
        return "Grayscale", 1
    if "CMYK" in text:
        return "CMYK", CHANNELS["CMYK"]
    if "Indexed" in text:
        return "Indexed", 1
    return text, 1


def classify_filter(filter_value: Any) -> str:
    """Name the image encoding from its /Filter entry (name or array)."""
    filter_value = _resolve(filter_value)
    if filter_value is None:
        return "None"
    if isinstance(filter_value, ArrayObject):
        names = [_clean_name(_resolve(item)) for item in filter_value]
    else:
        names = [_clean_name(filter_value)]
    for pdf_name, label in FILTER_LABELS:
        if pdf_name in names:
            return label
    return " ".join(names).strip() or "None"


def estimate_image_bytes(
    width: int,
    height: int,
    channels: int,
    bits_per_component: int,
    filter_label: str,
    size_factors: Optional[Dict[str, float]] = None,
) -> int:
    """Estimate stored bytes for an image with no declared length."""
    factors = FILTER_SIZE_FACTORS if size_factors is None else size_factors
    uncompressed = width * height * channels * (bits_per_component / 8)
    return round_half_up(uncompressed * factors.get(filter_label, DEFAULT_SIZE_FACTOR))


def _iter_indirect_objects(reader: PdfReader) -> Iterator[Any]:
    """Yield every indirect object once, in a stable order."""
    refs: List[Tuple[int, int]] = []
    for generation, entries in sorted(reader.xref.items()):
        for idnum in sorted(entries):
            refs.append((idnum, generation))
    for idnum in sorted(getattr(reader, "xref_objStm", {}) or {}):
        refs.append((idnum, 0))

    seen: Set[Tuple[int, int]] = set()
    for idnum, generation in refs:
        if idnum == 0 or (idnum, generation) in seen:
            continue
        seen.add((idnum, generation))
        try:
            obj = IndirectObject(idnum, generation, reader).get_object()
        except Exception as e:
            # A single unreadable object does not invalidate the document
            logger.debug("[ANALYZE] Skipping object %s %s: %s", idnum, generation, e)
            continue
        if obj is not None:
            yield obj


def _stored_length(obj: StreamObject) -> int:
    """Encoded byte length of a stream, 0 when unknown.

    PyPDF2 drops /Length from the dictionary once the stream is read, so the
    raw stored bytes are measured instead.
    """
    declared = _as_int(obj.get("/Length"))
    if declared and declared > 0:
        return declared
    data = getattr(obj, "_data", None)
    if isinstance(data, (bytes, bytearray)):
        return len(data)
    return 0


def _image_info(obj: StreamObject, index: int, size_factors: Optional[Dict[str, float]]) -> ImageInfo:
    width = _as_int(obj.get("/Width")) or 0
    height = _as_int(obj.get("/Height")) or 0
    bits = _as_int(obj.get("/BitsPerComponent")) or 8
    color_label, channels = classify_color_space(obj.get("/ColorSpace"))
    filter_label = classify_filter(obj.get("/Filter"))

    declared = _stored_length(obj)
    if declared:
        estimated, from_length = declared, True
    else:
        estimated = estimate_image_bytes(width, height, channels, bits, filter_label, size_factors)
        from_length = False

    return ImageInfo(
        index=index,
        width=width,
        height=height,
        bits_per_component=bits,
        color_space=color_label,
        filter=filter_label,
        estimated_bytes=estimated,
        declared_length=from_length,
    )


def _font_embedded(font: DictionaryObject) -> bool:
    descriptor = _resolve(font.get("/FontDescriptor"))
    if not isinstance(descriptor, DictionaryObject):
        return False
    return any(descriptor.get(key) is not None for key in FONT_FILE_KEYS)


def _scan_objects(
    reader: PdfReader,
    size_factors: Optional[Dict[str, float]],
    deadline: Optional[float],
    timeout: float,
    stop: Optional[threading.Event],
) -> Tuple[List[ImageInfo], List[FontInfo]]:
    images: List[ImageInfo] = []
    fonts: List[FontInfo] = []
    seen_fonts: Set[Tuple[str, str]] = set()

    for count, obj in enumerate(_iter_indirect_objects(reader)):
        if count % 200 == 0:
            _check_deadline(deadline, timeout, stop)

        if not isinstance(obj, DictionaryObject):
            continue

        try:
            if isinstance(obj, StreamObject) and obj.get("/Subtype") == "/Image":
                images.append(_image_info(obj, len(images), size_factors))
            elif obj.get("/Type") == "/Font":
                subtype = _clean_name(obj.get("/Subtype") or "/Unknown")
                name = _clean_name(obj.get("/BaseFont") or "/Unknown")
                if (name, subtype) in seen_fonts:
                    continue
                seen_fonts.add((name, subtype))
                fonts.append(FontInfo(name=name, subtype=subtype, embedded=_font_embedded(obj)))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.debug("[ANALYZE] Skipping malformed object: %s", e)

    return images, fonts


def _document_flags(reader: PdfReader) -> Dict[str, bool]:
    flags = {"has_bookmarks": False, "has_annotations": False, "has_forms": False}
    root = _resolve(reader.trailer.get("/Root"))
    if isinstance(root, DictionaryObject):
        flags["has_bookmarks"] = root.get("/Outlines") is not None
        flags["has_forms"] = root.get("/AcroForm") is not None

    for page in reader.pages:
        annots = page.get("/Annots")
        if annots is None:
            continue
        if isinstance(annots, IndirectObject):
            flags["has_annotations"] = True
            break
        if isinstance(annots, ArrayObject) and len(annots) > 0:
            flags["has_annotations"] = True
            break
    return flags


def _metadata_field(reader: PdfReader, key: str) -> Optional[str]:
    try:
        info = reader.metadata
    except Exception as e:
        logger.debug("[ANALYZE] Unreadable document info: %s", e)
        return None
    if not info:
        return None
    value = info.get(key)
    return str(value) if value else None


def _open_reader(pdf_path: Path) -> PdfReader:
    with open(pdf_path, "rb") as handle:
        head = handle.read(HEADER_SEARCH_BYTES)
    if PDF_HEADER not in head:
        raise UnsupportedDocumentError.not_a_pdf(pdf_path.name)

    try:
        reader = PdfReader(str(pdf_path), strict=False)
    except Exception as e:
        raise CorruptDocumentError.for_file(pdf_path.name, str(e)) from e

    if reader.is_encrypted:
        try:
            decrypted = reader.decrypt("")
        except Exception as e:
            raise EncryptionError.for_file(pdf_path.name) from e
        if not decrypted:
            raise EncryptionError.for_file(pdf_path.name)
    return reader


def _analyze_document(
    pdf_path: Path,
    settings: EngineSettings,
    size_factors: Optional[Dict[str, float]],
    deadline: Optional[float],
    stop: Optional[threading.Event],
) -> StructuralProfile:
    start = time.time()
    original_bytes = pdf_path.stat().st_size
    reader = _open_reader(pdf_path)
    timeout = settings.analysis_timeout_sec

    try:
        page_count = len(reader.pages)
        images, fonts = _scan_objects(reader, size_factors, deadline, timeout, stop)
        _check_deadline(deadline, timeout, stop)
        flags = _document_flags(reader)
    except (ProcessingTimeoutError, JobCancelledError):
        raise
    except Exception as e:
        raise CorruptDocumentError.for_file(pdf_path.name, str(e)) from e

    if page_count == 0:
        raise UnsupportedDocumentError.no_pages(pdf_path.name)

    # Images are the only content assumed compressible
    compressible = sum(image.estimated_bytes for image in images)
    fixed_overhead = max(0, original_bytes - compressible)
    minimum = round_half_up(
        compressible * settings.image_floor_ratio + fixed_overhead * settings.fixed_floor_ratio
    )

    profile = StructuralProfile(
        page_count=page_count,
        original_bytes=original_bytes,
        images=tuple(images),
        fonts=tuple(fonts),
        compressible_bytes=compressible,
        fixed_overhead_bytes=fixed_overhead,
        minimum_achievable_bytes=minimum,
        title=_metadata_field(reader, "/Title"),
        author=_metadata_field(reader, "/Author"),
        creator=_metadata_field(reader, "/Creator"),
        analysis_time_ms=int((time.time() - start) * 1000),
        **flags,
    )

    logger.info(
        "[ANALYZE] %s: %d pages, %d images (%.1fMB), %d fonts (%d embedded), floor %.1fMB, %dms",
        pdf_path.name,
        page_count,
        profile.image_count,
        compressible / (1024 * 1024),
        profile.font_count,
        profile.embedded_font_count,
        minimum / (1024 * 1024),
        profile.analysis_time_ms,
    )
    return profile


def analyze_pdf(
    pdf_path: Path,
    settings: Optional[EngineSettings] = None,
    size_factors: Optional[Dict[str, float]] = None,
    cancel_event: Optional[threading.Event] = None,
) -> StructuralProfile:
    """Analyze a PDF and return its StructuralProfile.

    Args:
        pdf_path: Path to the PDF file.
        settings: Engine settings (floor ratios, analysis budget).
        size_factors: Override for the per-filter size factors.
        cancel_event: Stops the walk early when set.

    Raises:
        UnsupportedDocumentError: Not a PDF, or a PDF without pages.
        CorruptDocumentError: The PDF cannot be parsed (EncryptionError when
            a password blocks it).
        ProcessingTimeoutError: The analysis budget was exceeded.
    """
    pdf_path = Path(pdf_path)
    settings = settings or get_engine_settings()
    if not pdf_path.exists():
        raise FileNotFoundError(f"File not found: {pdf_path}")

    timeout = settings.analysis_timeout_sec
    deadline = time.monotonic() + timeout
    stop = threading.Event()

    def _relay_cancel() -> None:
        if cancel_event is not None and cancel_event.is_set():
            stop.set()

    # PdfReader itself cannot be interrupted, so the walk runs on a helper
    # thread and the caller stops waiting once the budget is spent.
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pdf-analyze")
    future = executor.submit(_analyze_document, pdf_path, settings, size_factors, deadline, stop)
    try:
        while True:
            _relay_cancel()
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                stop.set()
                logger.warning("[ANALYZE] %s exceeded %.0fs budget", pdf_path.name, timeout)
                raise ProcessingTimeoutError.for_stage("analysis", timeout)
            try:
                return future.result(timeout=min(0.25, remaining))
            except FuturesTimeoutError:
                continue
    finally:
        executor.shutdown(wait=False)
