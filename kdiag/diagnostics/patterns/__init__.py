"""Pattern library for known log failure modes.

Adding new pattern sets:
1. Create a new file (e.g., jvm_patterns.py)
2. Define patterns using LogPattern
3. Export as a list and splice it into ALL_PATTERNS ahead of the generic catch-all
"""

from kdiag.diagnostics.patterns.workload_patterns import WORKLOAD_LOG_PATTERNS

ALL_PATTERNS = [
    *WORKLOAD_LOG_PATTERNS,
]
