"""Elevation mapping parts: sensor noise models, transforms, input sources, postprocessing, motion updates and conversions."""

__version__ = "0.1.0"