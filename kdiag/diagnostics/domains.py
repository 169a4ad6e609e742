from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, List, Mapping

from kdiag.collectors.gather import (
    GatherContext,
    PrimaryReader,
    collect_cluster_dependents,
    collect_route_dependents,
    collect_service_dependents,
    collect_workload_dependents,
    read_cluster_primary,
    read_resource,
)
from kdiag.core.models import SubjectInfo
from kdiag.diagnostics.cluster import build_cluster_registry, default_cluster_selection
from kdiag.diagnostics.registry import CheckRegistry
from kdiag.diagnostics.route import build_route_registry, default_route_selection
from kdiag.diagnostics.service import build_service_registry, default_service_selection
from kdiag.diagnostics.workload import build_workload_registry, default_workload_selection


@dataclass(frozen=True)
class Domain:
    """Everything the engine needs to diagnose one resource kind."""

    kind: str  # API kind, e.g. "Pod"
    label: str  # Prefix for combined (bulk) check names
    registry: CheckRegistry
    default_selection: Callable[[SubjectInfo], List[str]]
    collect_dependents: Callable[[GatherContext], None]
    read_primary: PrimaryReader = read_resource


WORKLOAD = Domain(
    kind="Pod",
    label="Pod",
    registry=build_workload_registry(),
    default_selection=default_workload_selection,
    collect_dependents=collect_workload_dependents,
)

SERVICE = Domain(
    kind="Service",
    label="Service",
    registry=build_service_registry(),
    default_selection=default_service_selection,
    collect_dependents=collect_service_dependents,
)

ROUTE = Domain(
    kind="Ingress",
    label="Ingress",
    registry=build_route_registry(),
    default_selection=default_route_selection,
    collect_dependents=collect_route_dependents,
)

CLUSTER = Domain(
    kind="Cluster",
    label="Cluster",
    registry=build_cluster_registry(),
    default_selection=default_cluster_selection,
    collect_dependents=collect_cluster_dependents,
    read_primary=read_cluster_primary,
)

# CLI subcommand -> domain
DOMAINS: Mapping[str, Domain] = MappingProxyType(
    {"pod": WORKLOAD, "service": SERVICE, "ingress": ROUTE, "cluster": CLUSTER}
)
