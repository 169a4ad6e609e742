from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence, Tuple

from kdiag.core.models import CheckResult, CheckStatus, SubjectInfo
from kdiag.diagnostics.registry import Check, CheckOptions, CheckRegistry

logger = logging.getLogger(__name__)


def _normalize(output) -> List[CheckResult]:
    if output is None:
        return []
    if isinstance(output, CheckResult):
        return [output]
    return list(output)


class CheckRunner:
    """
    Execute a selection of checks against one snapshot.

    Determinism goals:
    - output order is selection order; multi-result checks keep their own order in their slot
    - unknown names are ignored (catalogs drift across versions)
    - a check that raises becomes a FAILED result carrying the raw error text
    """

    def __init__(
        self,
        registry: CheckRegistry,
        default_selection: Callable[[SubjectInfo], List[str]],
        *,
        max_workers: Optional[int] = None,
    ):
        self.registry = registry
        self.default_selection = default_selection
        self.max_workers = max_workers

    def resolve(self, info: SubjectInfo, selection: Sequence[str] = ()) -> List[Tuple[str, Check]]:
        names = list(selection) if selection else self.default_selection(info)
        resolved: List[Tuple[str, Check]] = []
        for name in names:
            check = self.registry.get(name)
            if check is None:
                logger.debug("ignoring unknown check %r", name)
                continue
            resolved.append((name, check))
        return resolved

    def run(
        self,
        info: SubjectInfo,
        selection: Sequence[str] = (),
        options: Optional[CheckOptions] = None,
    ) -> List[CheckResult]:
        options = options or CheckOptions()
        resolved = self.resolve(info, selection)

        def _one(item: Tuple[str, Check]) -> List[CheckResult]:
            name, check = item
            try:
                return _normalize(check(info, options))
            except Exception as e:
                logger.exception("check %s raised", name)
                return [
                    CheckResult(
                        name=name,
                        status=CheckStatus.FAILED,
                        message=f"Check '{name}' could not be evaluated",
                        error=f"{type(e).__name__}: {e}",
                    )
                ]

        if self.max_workers and self.max_workers > 1 and len(resolved) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                slots = list(pool.map(_one, resolved))
        else:
            slots = [_one(item) for item in resolved]

        results: List[CheckResult] = []
        for slot in slots:
            results.extend(slot)
        return results
