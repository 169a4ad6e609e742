"""Generic log pattern matching framework (first-match-wins classification)."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Pattern, Tuple

from kdiag.core.models import CheckResult, CheckStatus

# Exit/kill vocabulary in the last lines of a crashing container.
_EXIT_OR_KILL_RE = re.compile(r"\b(exit(?:ed|ing)?|killed|sigkill|sigterm|terminated)\b", re.IGNORECASE)


@dataclass(frozen=True)
class LogPattern:
    """A known failure signature that can be matched against log lines.

    Order matters: matchers evaluate patterns in declaration order and the first hit wins,
    so specific causes must be declared before generic catch-alls.
    """

    pattern_id: str
    """Unique identifier for this pattern (e.g., 'connection_refused')"""

    pattern: str
    """Regex matched against each log line (case-insensitive)"""

    message: str
    """Result message when this pattern matches"""

    suggestion: str
    """Remediation hint attached to the FAILED result"""

    _compiled: Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_compiled", re.compile(self.pattern, re.IGNORECASE))

    def matches(self, line: str) -> bool:
        return self._compiled.search(line) is not None


class LogPatternMatcher:
    """Classifies captured log text against an ordered pattern list.

    Usage:
        matcher = LogPatternMatcher(WORKLOAD_LOG_PATTERNS)
        result = matcher.classify("Container app - Log Analysis", text)
    """

    def __init__(self, patterns: Iterable[LogPattern]):
        self.patterns: Tuple[LogPattern, ...] = tuple(patterns)

    def find_first(self, lines: List[str]) -> Optional[Tuple[LogPattern, str]]:
        """Return (pattern, line) for the highest-precedence pattern matching any line."""
        for pattern in self.patterns:
            for line in lines:
                if pattern.matches(line):
                    return pattern, line
        return None

    def classify(self, name: str, text: str) -> CheckResult:
        lines = text.splitlines()
        hit = self.find_first(lines)
        if hit is None:
            return CheckResult(
                name=name,
                status=CheckStatus.PASSED,
                message="No critical errors detected in recent logs",
                details={"analyzed": f"{len(lines)} log lines"},
            )

        pattern, line = hit
        return CheckResult(
            name=name,
            status=CheckStatus.FAILED,
            message=pattern.message,
            suggestion=pattern.suggestion,
            details={"logLine": line.strip(), "pattern": pattern.pattern_id},
        )


def last_nonempty_lines(text: str, n: int = 3) -> List[str]:
    out: List[str] = []
    for line in reversed(text.splitlines()):
        s = line.strip()
        if s:
            out.append(s)
            if len(out) >= n:
                break
    out.reverse()
    return out


def analyze_crash_loop(
    name: str,
    text: str,
    restart_count: int,
    *,
    last_exit_code: Optional[int] = None,
) -> CheckResult:
    """
    Explain a crash-looping container from its tail of logs.

    Differentiates an explicit process exit / external kill from a silent startup failure.
    The last terminated exit code, when known, sharpens the suggestion.
    """
    tail = last_nonempty_lines(text, 3)
    joined = "; ".join(tail)

    suggestion = "Check container startup configuration and resource limits"
    if tail and _EXIT_OR_KILL_RE.search(joined):
        suggestion = "Container is being killed - check exit codes and resource limits"

    if last_exit_code == 137:
        suggestion = "Container was killed with SIGKILL (exit 137) - check memory limits and OOM events"
    elif last_exit_code == 143:
        suggestion = "Container was terminated with SIGTERM (exit 143) - check liveness checks and shutdown handling"
    elif last_exit_code not in (None, 0) and not tail:
        suggestion = f"Process exited with code {last_exit_code} without output - check command and entrypoint"

    details = {"recentLogs": joined}
    if last_exit_code is not None:
        details["exitCode"] = str(last_exit_code)

    return CheckResult(
        name=name,
        status=CheckStatus.FAILED,
        message=f"Container is crash looping (restart count: {restart_count})",
        suggestion=suggestion,
        details=details,
    )
