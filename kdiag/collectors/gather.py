"""Snapshot gatherer: the primary resource plus best-effort dependents.

Only the primary read is fatal. Every dependent read is independent: a failure (missing,
denied, timed out) is recorded on the snapshot as an `Absence` and never escalated, because
dependent lookups routinely fail under least-privilege credentials.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from kdiag.core.errors import AccessDeniedError, ProviderError, ResourceNotFoundError, TargetUnreachableError
from kdiag.core.models import Absence, AbsenceReason, ResourceRef, SubjectInfo
from kdiag.core.objects import (
    CONTROL_PLANE_SELECTOR,
    DNS_SELECTOR,
    SYSTEM_NAMESPACE,
    dig,
    ingress_backend_services,
    ingress_tls_secrets,
    selector_string,
)
from kdiag.diagnostics.suggestions import is_pod_failing
from kdiag.providers.k8s_provider import K8sProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GatherOptions:
    include_logs: bool = False
    log_lines: int = 20
    containers: Tuple[str, ...] = ()  # Empty = all containers + init containers
    events_limit: int = 20
    timeout: Optional[float] = None  # Bounds the sum of all fetch calls; None = unbounded


class Deadline:
    """Wall-clock budget shared by every fetch in one gather."""

    def __init__(self, timeout: Optional[float], clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._expires_at = None if timeout is None else clock() + max(0.0, timeout)

    def remaining(self) -> Optional[float]:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0.0


def _absence_reason(e: Exception) -> AbsenceReason:
    if isinstance(e, ResourceNotFoundError):
        return "not_found"
    if isinstance(e, AccessDeniedError):
        return "forbidden"
    return "error"


def _event_ts_key(e: Dict[str, Any]) -> str:
    return e.get("lastTimestamp") or e.get("eventTime") or e.get("firstTimestamp") or ""


class GatherContext:
    """Fetch helpers bound to one snapshot; each records absences instead of raising."""

    def __init__(self, provider: K8sProvider, info: SubjectInfo, deadline: Deadline, options: GatherOptions):
        self.provider = provider
        self.info = info
        self.deadline = deadline
        self.options = options

    @property
    def namespace(self) -> str:
        return self.info.ref.namespace

    def _record(self, kind: str, name: str, reason: AbsenceReason, detail: str) -> None:
        self.info.absences.append(Absence(kind=kind, name=name, reason=reason, detail=detail))
        logger.warning("dependent %s %s unavailable (%s): %s", kind, name, reason, detail)

    def _reason(self, e: Exception) -> AbsenceReason:
        reason = _absence_reason(e)
        # A request cut off by its share of the gather timeout.
        if reason == "error" and self.deadline.expired():
            return "deadline"
        return reason

    def _out_of_time(self, kind: str, name: str) -> bool:
        if self.deadline.expired():
            self._record(kind, name, "deadline", "gather deadline exceeded before fetch")
            return True
        return False

    def fetch(self, kind: str, name: str) -> Optional[Dict[str, Any]]:
        if self._out_of_time(kind, name):
            return None
        try:
            obj = self.provider.get_resource(kind, self.namespace, name, timeout=self.deadline.remaining())
        except Exception as e:
            self._record(kind, name, self._reason(e), str(e))
            return None
        self.info.add_dependent(kind, obj)
        return obj

    def fetch_list(
        self, kind: str, *, label_selector: Optional[str] = None, namespace: Optional[str] = None
    ) -> Optional[List[Dict[str, Any]]]:
        """List into the snapshot. `namespace=""` lists cluster-wide; None means the target's namespace."""
        # Absences for list calls are keyed by the selector.
        key = label_selector or "all"
        if self._out_of_time(kind, key):
            return None
        ns = self.namespace if namespace is None else namespace
        try:
            items = self.provider.list_resources(
                kind, ns, label_selector=label_selector, timeout=self.deadline.remaining()
            )
        except Exception as e:
            self._record(kind, key, self._reason(e), str(e))
            return None
        self.info.dependents.setdefault(kind, {})
        for item in items:
            self.info.add_dependent(kind, item)
        return items

    def fetch_events(self) -> None:
        ref = self.info.ref
        if self._out_of_time("Event", ref.name):
            return
        field_selector = f"involvedObject.name={ref.name},involvedObject.kind={ref.kind}"
        try:
            events = self.provider.list_resources(
                "Event", ref.namespace, field_selector=field_selector, timeout=self.deadline.remaining()
            )
        except Exception as e:
            self._record("Event", ref.name, self._reason(e), str(e))
            return
        events = sorted(events, key=_event_ts_key, reverse=True)
        self.info.events = events[: max(0, self.options.events_limit)]

    def fetch_logs(self, pod_name: str, container: str) -> None:
        """Current logs, then exactly one retry against the previous (pre-restart) stream."""
        if self._out_of_time("Log", container):
            return
        kwargs = {"tail_lines": self.options.log_lines}
        try:
            text = self.provider.read_log(
                pod_name, self.namespace, container, previous=False, timeout=self.deadline.remaining(), **kwargs
            )
        except Exception as current_err:
            logger.debug("current logs for %s[%s] unavailable, trying previous: %s", pod_name, container, current_err)
            if self._out_of_time("Log", container):
                return
            try:
                text = self.provider.read_log(
                    pod_name, self.namespace, container, previous=True, timeout=self.deadline.remaining(), **kwargs
                )
            except Exception as e:
                self._record("Log", container, self._reason(e), str(e))
                return
        self.info.logs[container] = text or ""


PrimaryReader = Callable[[K8sProvider, ResourceRef, Optional[float]], Dict[str, Any]]


def read_resource(provider: K8sProvider, ref: ResourceRef, timeout: Optional[float]) -> Dict[str, Any]:
    return provider.get_resource(ref.kind, ref.namespace, ref.name, timeout=timeout)


def read_cluster_primary(provider: K8sProvider, ref: ResourceRef, timeout: Optional[float]) -> Dict[str, Any]:
    """The cluster target is the API server itself: its version plus how long it took to answer."""
    started = time.monotonic()
    version = provider.server_version(timeout=timeout)
    elapsed = time.monotonic() - started
    return {
        "kind": "Cluster",
        "metadata": {"name": ref.name},
        "version": version,
        "status": {"responseSeconds": f"{elapsed:.3f}"},
    }


def gather(
    ref: ResourceRef,
    provider: K8sProvider,
    collect_dependents: Callable[[GatherContext], None],
    options: Optional[GatherOptions] = None,
    *,
    primary: Optional[Dict[str, Any]] = None,
    read_primary: PrimaryReader = read_resource,
    clock: Callable[[], float] = time.monotonic,
) -> SubjectInfo:
    """
    Build a SubjectInfo snapshot for `ref`.

    Raises TargetUnreachableError if the primary cannot be read. Pass `primary` to reuse an
    object that was already listed (bulk mode) and skip the primary read.
    """
    options = options or GatherOptions()
    deadline = Deadline(options.timeout, clock=clock)

    if primary is None:
        try:
            primary = read_primary(provider, ref, deadline.remaining())
        except ProviderError as e:
            raise TargetUnreachableError(str(ref), e) from e

    info = SubjectInfo(ref=ref, primary=primary, log_capture_requested=options.include_logs)
    ctx = GatherContext(provider, info, deadline, options)
    collect_dependents(ctx)
    return info


# --- per-domain dependent collectors ---


def collect_workload_dependents(ctx: GatherContext) -> None:
    pod = ctx.info.primary
    ctx.fetch_events()

    sa_name = dig(pod, "spec", "serviceAccountName")
    if sa_name:
        ctx.fetch("ServiceAccount", sa_name)

    node_name = dig(pod, "spec", "nodeName")
    if node_name:
        ctx.fetch("Node", node_name)

    if ctx.options.include_logs and is_pod_failing(pod):
        containers = list(ctx.options.containers)
        if not containers:
            containers = [c.get("name") for c in dig(pod, "spec", "containers", default=[]) or []]
            containers += [c.get("name") for c in dig(pod, "spec", "initContainers", default=[]) or []]
        for container in containers:
            if container:
                ctx.fetch_logs(ctx.info.ref.name, container)


def collect_service_dependents(ctx: GatherContext) -> None:
    svc = ctx.info.primary
    if dig(svc, "spec", "type") != "ExternalName":
        ctx.fetch("Endpoints", ctx.info.ref.name)

    selector = dig(svc, "spec", "selector", default={}) or {}
    if selector:
        ctx.fetch_list("Pod", label_selector=selector_string(selector))

    ctx.fetch_events()


def collect_route_dependents(ctx: GatherContext) -> None:
    ingress = ctx.info.primary
    for svc_name in ingress_backend_services(ingress):
        ctx.fetch("Service", svc_name)
        ctx.fetch("Endpoints", svc_name)

    for secret_name in ingress_tls_secrets(ingress):
        ctx.fetch("Secret", secret_name)

    ctx.fetch_events()


def collect_cluster_dependents(ctx: GatherContext) -> None:
    ctx.fetch_list("Node", namespace="")
    ctx.fetch_list("Pod", namespace=SYSTEM_NAMESPACE, label_selector=CONTROL_PLANE_SELECTOR)
    ctx.fetch_list("Pod", namespace=SYSTEM_NAMESPACE, label_selector=DNS_SELECTOR)
