"""markpack: convert batches of files and web content into Markdown archives."""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
