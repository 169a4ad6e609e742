from __future__ import annotations

import pytest
from fakes import make_pod

from kdiag.core.errors import ProviderError, WatchStreamError
from kdiag.core.models import CheckStatus
from kdiag.diagnostics.domains import WORKLOAD
from kdiag.diagnostics.engine import DiagnosticEngine
from kdiag.watch import LiveWatch, WatchState


def _watch(provider, **kwargs) -> LiveWatch:
    engine = DiagnosticEngine(WORKLOAD, provider)
    return LiveWatch(engine, engine.ref("web-1", "default"), selection=["basic"], **kwargs)


def test_added_modified_deleted_emits_two_reports_then_ends(fake_provider) -> None:
    pending = make_pod(phase="Pending", node=None, statuses=[], resource_version="1")
    running = make_pod(phase="Running", resource_version="2")
    fake_provider.watch_script = [
        {"type": "ADDED", "object": pending},
        {"type": "MODIFIED", "object": running},
        {"type": "DELETED", "object": running},
    ]
    watch = _watch(fake_provider)

    reports = list(watch)

    assert len(reports) == 2
    assert reports[0].checks[0].status == CheckStatus.FAILED
    assert reports[1].checks[0].status == CheckStatus.PASSED
    assert watch.state == WatchState.TERMINATED
    assert fake_provider.watches[0].stopped is True


def test_events_already_reflected_are_coalesced(fake_provider) -> None:
    pod = make_pod(resource_version="5")
    fake_provider.watch_script = [
        {"type": "ADDED", "object": pod},
        {"type": "MODIFIED", "object": pod},
        {"type": "MODIFIED", "object": make_pod(resource_version="6")},
    ]
    watch = _watch(fake_provider)
    reports = list(watch)
    assert [r.metadata["resourceVersion"] for r in reports] == ["5", "6"]
    assert watch.last_resource_version == "6"


def test_error_event_raises_stream_error(fake_provider) -> None:
    fake_provider.watch_script = [
        {"type": "ADDED", "object": make_pod()},
        {"type": "ERROR", "object": {"kind": "Status", "message": "too old resource version", "code": 410}},
    ]
    watch = _watch(fake_provider)
    it = iter(watch)
    assert next(it).summary.total == 1
    with pytest.raises(WatchStreamError, match="too old resource version"):
        next(it)
    assert watch.state == WatchState.TERMINATED


def test_transport_failure_raises_stream_error(fake_provider) -> None:
    fake_provider.add(make_pod())
    fake_provider.watch_script = [ConnectionResetError("connection reset by peer")]
    with pytest.raises(WatchStreamError):
        list(_watch(fake_provider))


def test_gather_failure_mid_watch_keeps_watching(fake_provider) -> None:
    fake_provider.fail("Pod", "web-1", ProviderError("apiserver unavailable"))
    fake_provider.watch_script = [
        {"type": "ADDED", "object": make_pod(resource_version="1")},
        {"type": "MODIFIED", "object": make_pod(resource_version="2")},
    ]
    watch = _watch(fake_provider)
    assert list(watch) == []
    assert watch.state == WatchState.TERMINATED


def test_cancel_finishes_in_flight_report_and_stops(fake_provider) -> None:
    fake_provider.watch_script = [
        {"type": "ADDED", "object": make_pod(resource_version="1")},
        {"type": "MODIFIED", "object": make_pod(resource_version="2")},
        {"type": "MODIFIED", "object": make_pod(resource_version="3")},
    ]
    watch = _watch(fake_provider)
    seen = []
    for report in watch:
        seen.append(report)
        watch.cancel()
    assert len(seen) == 1
    assert watch.cancelled
    assert fake_provider.watches[0].stopped is True
    assert watch.state == WatchState.TERMINATED


def test_cancel_before_start_yields_nothing(fake_provider) -> None:
    watch = _watch(fake_provider)
    watch.cancel()
    assert list(watch) == []
    assert fake_provider.watches == []


def test_watch_iterates_once(fake_provider) -> None:
    watch = _watch(fake_provider)
    list(watch)
    with pytest.raises(RuntimeError):
        list(watch)


def test_queued_events_older_than_reported_state_are_coalesced(fake_provider) -> None:
    # The cluster is already at rv 3 while the stream still replays 1 and 2.
    fake_provider.add(make_pod(resource_version="3"))
    fake_provider.watch_applies = False
    fake_provider.watch_script = [
        {"type": "ADDED", "object": make_pod(resource_version="1")},
        {"type": "MODIFIED", "object": make_pod(resource_version="2")},
        {"type": "MODIFIED", "object": make_pod(resource_version="3")},
    ]
    reports = list(_watch(fake_provider))
    assert [r.metadata["resourceVersion"] for r in reports] == ["3"]


def test_opaque_resource_versions_coalesce_on_equality_only(fake_provider) -> None:
    fake_provider.watch_script = [
        {"type": "ADDED", "object": make_pod(resource_version="abc")},
        {"type": "MODIFIED", "object": make_pod(resource_version="abc")},
        {"type": "MODIFIED", "object": make_pod(resource_version="abb")},
    ]
    reports = list(_watch(fake_provider))
    assert [r.metadata["resourceVersion"] for r in reports] == ["abc", "abb"]
