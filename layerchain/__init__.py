"""Layerchain - layered bootstrap/blob builds for container image layers.

This package sequences per-layer runs of an external RAFS builder, threads
each layer's bootstrap into the next as its parent, and publishes the
produced data blobs under their content digest.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
