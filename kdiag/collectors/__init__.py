"""
Snapshot gathering (best-effort, read-only).

Gatherers build one `SubjectInfo` per evaluation cycle. They should:
- raise only when the primary resource cannot be read
- record every other failed read as an `Absence` on the snapshot
- never call back into checks
"""

from kdiag.collectors.gather import GatherOptions, gather

__all__ = ["GatherOptions", "gather"]
