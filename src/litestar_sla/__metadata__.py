"""Project metadata read from the installed ``litestar-sla`` distribution."""

from __future__ import annotations

import importlib.metadata

__all__ = ("__project__", "__version__")

_distribution = importlib.metadata.metadata("litestar-sla")

__version__: str = _distribution["Version"]
"""Installed version of the project."""
__project__: str = _distribution["Name"]
"""Distribution name of the project."""
