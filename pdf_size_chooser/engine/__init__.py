"""Size-targeting engine: analyzer, sampler, resolver and verification gate."""

from pdf_size_chooser.engine.size_engine import SizeTargetEngine

__all__ = ["SizeTargetEngine"]
