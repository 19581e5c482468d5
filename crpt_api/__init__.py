"""Rate-limited client for the CRPT document creation API.

The quota gate lives in the domain layer so every submission path (sync,
async, CLI) shares one admission protocol.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
