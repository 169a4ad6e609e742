from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Iterator, List, Mapping, Optional, Sequence, Union

from kdiag.core.models import CheckResult, SubjectInfo
from kdiag.diagnostics.log_pattern_matcher import LogPatternMatcher
from kdiag.diagnostics.patterns import ALL_PATTERNS


def default_log_matcher() -> LogPatternMatcher:
    return LogPatternMatcher(ALL_PATTERNS)


@dataclass(frozen=True)
class CheckOptions:
    """Read-only knobs handed to every check alongside the snapshot."""

    log_matcher: LogPatternMatcher = field(default_factory=default_log_matcher)


CheckOutput = Union[CheckResult, Sequence[CheckResult]]
Check = Callable[[SubjectInfo, CheckOptions], CheckOutput]


class CheckRegistry:
    """
    Immutable name -> check catalog for one domain.

    Checks must be pure functions of the snapshot: no API calls, no mutation. That is what
    makes them order-independent and safe to evaluate in parallel.
    """

    def __init__(self, checks: Mapping[str, Check]):
        self._checks: Mapping[str, Check] = MappingProxyType(dict(checks))

    def __contains__(self, name: object) -> bool:
        return name in self._checks

    def __iter__(self) -> Iterator[str]:
        return iter(self._checks)

    def __len__(self) -> int:
        return len(self._checks)

    def names(self) -> List[str]:
        return list(self._checks)

    def get(self, name: str) -> Optional[Check]:
        return self._checks.get(name)
