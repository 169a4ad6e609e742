from __future__ import annotations

import pytest
from fakes import make_event, make_pod

from kdiag.collectors.gather import (
    Deadline,
    GatherOptions,
    collect_workload_dependents,
    gather,
)
from kdiag.core.errors import AccessDeniedError, ProviderError, TargetUnreachableError
from kdiag.core.models import ResourceRef

REF = ResourceRef(kind="Pod", namespace="default", name="web-1")


class _Clock:
    def __init__(self, step: float = 0.0):
        self.t = 0.0
        self.step = step

    def __call__(self) -> float:
        value = self.t
        self.t += self.step
        return value


def test_missing_primary_is_fatal(fake_provider) -> None:
    with pytest.raises(TargetUnreachableError) as exc:
        gather(REF, fake_provider, collect_workload_dependents)
    assert "pod/web-1" in str(exc.value)


def test_denied_primary_is_fatal(fake_provider) -> None:
    fake_provider.fail("Pod", "web-1", AccessDeniedError("pods forbidden", status=403))
    with pytest.raises(TargetUnreachableError) as exc:
        gather(REF, fake_provider, collect_workload_dependents)
    assert isinstance(exc.value.cause, AccessDeniedError)


def test_dependent_failures_become_absences(fake_provider) -> None:
    fake_provider.add(make_pod(service_account="builder"))
    fake_provider.fail("ServiceAccount", "builder", AccessDeniedError("forbidden", status=403))
    fake_provider.fail("Node", "node-a", ProviderError("connection reset"))

    info = gather(REF, fake_provider, collect_workload_dependents)

    reasons = {(a.kind, a.name): a.reason for a in info.absences}
    assert reasons == {("ServiceAccount", "builder"): "forbidden", ("Node", "node-a"): "error"}
    assert info.dependents == {}


def test_events_are_most_recent_first_and_bounded(fake_provider) -> None:
    fake_provider.add(
        make_pod(),
        make_event("web-1", "Pulled", "old", ts="2024-05-01T10:01:00Z", event_type="Normal"),
        make_event("web-1", "BackOff", "newest", ts="2024-05-01T10:09:00Z"),
        make_event("web-1", "Started", "middle", ts="2024-05-01T10:05:00Z", event_type="Normal"),
        make_event("other", "BackOff", "unrelated", ts="2024-05-01T10:10:00Z"),
    )
    info = gather(REF, fake_provider, collect_workload_dependents, GatherOptions(events_limit=2))
    assert [e["message"] for e in info.events] == ["newest", "middle"]


def test_logs_fall_back_to_previous_container_once(fake_provider) -> None:
    pod = make_pod(
        init_containers=[{"name": "migrate", "image": "migrate:1"}],
        statuses=[{"name": "app", "ready": False, "restartCount": 3, "state": {"waiting": {"reason": "CrashLoopBackOff"}}}],
    )
    fake_provider.add(pod)
    fake_provider.logs[("web-1", "app", True)] = "panic: boom\n"
    fake_provider.logs[("web-1", "migrate", False)] = "migrated\n"

    info = gather(REF, fake_provider, collect_workload_dependents, GatherOptions(include_logs=True, log_lines=50))

    assert info.logs == {"app": "panic: boom\n", "migrate": "migrated\n"}
    assert info.log_capture_requested is True
    log_calls = [c for c in fake_provider.calls if c[0] == "log"]
    assert log_calls == [
        ("log", "web-1", "app", False, 50),
        ("log", "web-1", "app", True, 50),
        ("log", "web-1", "migrate", False, 50),
    ]


def test_log_absence_after_both_attempts_fail(fake_provider) -> None:
    fake_provider.add(make_pod(phase="Failed"))
    info = gather(REF, fake_provider, collect_workload_dependents, GatherOptions(include_logs=True, containers=("app",)))
    assert info.logs == {}
    assert [(a.name, a.reason) for a in info.absences if a.kind == "Log"] == [("app", "not_found")]


def test_logs_not_captured_for_healthy_pods(fake_provider) -> None:
    fake_provider.add(make_pod())
    gather(REF, fake_provider, collect_workload_dependents, GatherOptions(include_logs=True))
    assert not any(c[0] == "log" for c in fake_provider.calls)


def test_deadline_turns_remaining_fetches_into_absences(fake_provider) -> None:
    fake_provider.add(make_pod(service_account="builder"))
    # Each clock read advances 1s against a 2.5s budget.
    info = gather(
        REF,
        fake_provider,
        collect_workload_dependents,
        GatherOptions(timeout=2.5),
        clock=_Clock(step=1.0),
    )
    assert any(a.reason == "deadline" for a in info.absences)
    assert ("get", "Node", "default", "node-a") not in fake_provider.calls


def test_deadline_without_timeout_never_expires() -> None:
    d = Deadline(None, clock=_Clock(step=1000.0))
    assert d.remaining() is None
    assert d.expired() is False


def test_prefetched_primary_skips_read(fake_provider) -> None:
    pod = make_pod()
    info = gather(REF, fake_provider, lambda ctx: None, primary=pod)
    assert info.primary == pod
    assert fake_provider.calls == []


def test_fetch_cut_off_by_the_gather_timeout_is_a_deadline_absence(fake_provider) -> None:
    fake_provider.add(make_pod())
    clock = _Clock()
    read = fake_provider.get_resource

    def slow_node_read(kind, namespace, name, timeout=None):
        if kind == "Node":
            clock.t += 10.0
            raise ProviderError("read timed out")
        return read(kind, namespace, name, timeout=timeout)

    fake_provider.get_resource = slow_node_read
    info = gather(REF, fake_provider, collect_workload_dependents, GatherOptions(timeout=5.0), clock=clock)

    assert info.absence("Node").reason == "deadline"


def test_transport_error_within_budget_stays_an_error(fake_provider) -> None:
    fake_provider.add(make_pod()).fail("Node", "node-a", ProviderError("connection reset"))
    info = gather(REF, fake_provider, collect_workload_dependents, GatherOptions(timeout=5.0), clock=_Clock())
    assert info.absence("Node").reason == "error"
