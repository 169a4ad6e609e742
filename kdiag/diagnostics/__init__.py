"""Diagnostic checks (per-domain catalogs) and the machinery that runs them.

- registries are immutable name -> check mappings, one per domain
- checks are pure functions of a `SubjectInfo` snapshot
- the engine wires gather -> run -> aggregate for a domain
"""

from .registry import CheckOptions, CheckRegistry
from .runner import CheckRunner

__all__ = ["CheckOptions", "CheckRegistry", "CheckRunner"]
