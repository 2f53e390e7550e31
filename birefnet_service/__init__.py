"""
BiRefNet background removal runtime package.

Exposes reusable primitives for decoding and resampling images, preparing the
model tensor, running inference, compositing the transparent output and
serving the JSON request boundary.
"""

__version__ = "0.1.0"
