from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from kdiag.collectors.gather import GatherOptions, gather
from kdiag.core.errors import ProviderError, TargetUnreachableError
from kdiag.core.models import DETAILS_SCHEMA_VERSION, CheckResult, CheckStatus, DiagnosticReport, ResourceRef, SubjectInfo
from kdiag.core.objects import dig, name_of, namespace_of
from kdiag.diagnostics.aggregate import build_report, combine
from kdiag.diagnostics.domains import Domain
from kdiag.diagnostics.registry import CheckOptions
from kdiag.diagnostics.runner import CheckRunner
from kdiag.providers.k8s_provider import K8sProvider

logger = logging.getLogger(__name__)


def _unavailable(info: SubjectInfo) -> List[str]:
    return [f"{a.kind}/{a.name}: {a.reason}" for a in info.absences]


class DiagnosticEngine:
    """
    Gather -> run checks -> aggregate, for one domain.

    One engine instance can serve single-target runs, bulk runs and live watches; it holds
    no per-run state.
    """

    def __init__(
        self,
        domain: Domain,
        provider: K8sProvider,
        *,
        check_options: Optional[CheckOptions] = None,
        check_workers: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.domain = domain
        self.provider = provider
        self.check_options = check_options or CheckOptions()
        self.runner = CheckRunner(domain.registry, domain.default_selection, max_workers=check_workers)
        self._clock = clock

    def ref(self, name: str, namespace: str) -> ResourceRef:
        return ResourceRef(kind=self.domain.kind, namespace=namespace, name=name)

    def gather(
        self,
        ref: ResourceRef,
        options: Optional[GatherOptions] = None,
        *,
        primary: Optional[Dict[str, Any]] = None,
    ) -> SubjectInfo:
        return gather(
            ref,
            self.provider,
            self.domain.collect_dependents,
            options,
            primary=primary,
            read_primary=self.domain.read_primary,
            clock=self._clock,
        )

    def evaluate(self, info: SubjectInfo, selection: Sequence[str] = ()) -> List[CheckResult]:
        return self.runner.run(info, selection, self.check_options)

    def _metadata(self, info: SubjectInfo) -> Dict[str, Any]:
        meta: Dict[str, Any] = {
            "resourceType": self.domain.kind,
            "resourceName": info.ref.name,
            "namespace": info.ref.namespace,
            "detailsSchema": DETAILS_SCHEMA_VERSION,
        }
        rv = dig(info.primary, "metadata", "resourceVersion")
        if rv:
            meta["resourceVersion"] = rv
        if info.absences:
            meta["unavailable"] = _unavailable(info)
        return meta

    def diagnose_ref(
        self,
        ref: ResourceRef,
        *,
        selection: Sequence[str] = (),
        options: Optional[GatherOptions] = None,
    ) -> DiagnosticReport:
        """Raises TargetUnreachableError if the primary resource cannot be read."""
        info = self.gather(ref, options)
        results = self.evaluate(info, selection)
        report = build_report(str(ref), results, self._metadata(info))
        logger.info(
            "diagnosed %s: %d checks, %d failed, %d warnings",
            ref,
            report.summary.total,
            report.summary.failed,
            report.summary.warnings,
        )
        return report

    def diagnose(
        self,
        name: str,
        namespace: str,
        *,
        selection: Sequence[str] = (),
        options: Optional[GatherOptions] = None,
    ) -> DiagnosticReport:
        return self.diagnose_ref(self.ref(name, namespace), selection=selection, options=options)

    def diagnose_all(
        self,
        namespace: Optional[str],
        *,
        selection: Sequence[str] = (),
        options: Optional[GatherOptions] = None,
        concurrency: int = 1,
    ) -> DiagnosticReport:
        """
        Diagnose every resource of this kind in `namespace` (None = all namespaces) and combine.

        Sections keep listing order regardless of concurrency. A resource that disappears
        between list and gather is logged and left out.
        """
        kind = self.domain.kind
        scope = namespace or "<all namespaces>"
        target = f"{kind.lower()}s/{namespace}" if namespace else f"{kind.lower()}s/all-namespaces"
        try:
            items = self.provider.list_resources(kind, namespace)
        except ProviderError as e:
            raise TargetUnreachableError(f"{kind} list in {scope}", e) from e

        meta: Dict[str, Any] = {
            "resourceType": kind,
            "namespace": namespace or "",
            "detailsSchema": DETAILS_SCHEMA_VERSION,
            "resourceCount": len(items),
        }
        if not items:
            discovery = CheckResult(
                name=f"{self.domain.label} Discovery",
                status=CheckStatus.SKIPPED,
                message=f"No {kind.lower()}s found in namespace '{scope}'",
            )
            return build_report(target, [discovery], meta)

        slots: Dict[int, Tuple[str, List[CheckResult], List[str]]] = {}
        lock = threading.Lock()

        def _one(index: int, item: Dict[str, Any]) -> None:
            ref = ResourceRef(kind=kind, namespace=namespace_of(item) or namespace or "", name=name_of(item))
            label = f"{self.domain.label} {ref.name}" if namespace else f"{self.domain.label} {ref.namespace}/{ref.name}"
            try:
                info = self.gather(ref, options, primary=item)
                results = self.evaluate(info, selection)
            except TargetUnreachableError as e:
                logger.warning("skipping %s: %s", ref, e)
                return
            with lock:
                slots[index] = (label, results, _unavailable(info))

        if concurrency > 1:
            with ThreadPoolExecutor(max_workers=concurrency) as pool:
                futures = [pool.submit(_one, i, item) for i, item in enumerate(items)]
                for f in futures:
                    f.result()
        else:
            for i, item in enumerate(items):
                _one(i, item)

        ordered = [slots[i] for i in sorted(slots)]
        sections = [(label, results) for label, results, _ in ordered]
        unavailable = [f"{label}: {entry}" for label, _, entries in ordered for entry in entries]
        if unavailable:
            meta["unavailable"] = unavailable
        logger.info("diagnosed %d of %d %ss in %s", len(sections), len(items), kind.lower(), scope)
        return combine(target, sections, meta)
