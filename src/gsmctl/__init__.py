"""gsmctl: game server instance lifecycle manager."""
from __future__ import annotations

__all__ = ["__version__"]

# Kept in step with ``pyproject.toml``.
__version__ = "0.1.0a0"
