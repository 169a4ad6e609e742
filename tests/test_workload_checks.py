from __future__ import annotations

from datetime import datetime, timezone

from fakes import make_event, make_node, make_pod, make_service_account

from kdiag.core.errors import AccessDeniedError
from kdiag.core.models import Absence, CheckStatus, ResourceRef, SubjectInfo
from kdiag.diagnostics.domains import WORKLOAD
from kdiag.diagnostics.engine import DiagnosticEngine
from kdiag.diagnostics.registry import CheckOptions
from kdiag.diagnostics.workload import (
    check_images,
    check_init_containers,
    check_logs,
    check_network,
    check_pod_status,
    check_resources,
    default_workload_selection,
)

OPTS = CheckOptions()


def _info(pod, now: datetime, **kwargs) -> SubjectInfo:
    ref = ResourceRef(kind="Pod", namespace=pod["metadata"]["namespace"], name=pod["metadata"]["name"])
    return SubjectInfo(ref=ref, primary=pod, gathered_at=now, **kwargs)


def _by_name(report):
    return {c.name: c for c in report.checks}


def test_pending_pod_with_insufficient_cpu_fails_status_and_scheduling(fake_provider) -> None:
    pod = make_pod(phase="Pending", node=None, statuses=[], pod_ip=None)
    fake_provider.add(pod, make_event("web-1", "FailedScheduling", "0/3 nodes are available: 3 Insufficient cpu."))

    report = DiagnosticEngine(WORKLOAD, fake_provider).diagnose("web-1", "default")
    checks = _by_name(report)

    assert checks["Pod Status"].status == CheckStatus.FAILED
    sched = checks["Pod Scheduling"]
    assert sched.status == CheckStatus.FAILED
    assert "scale cluster or reduce resource requests" in sched.suggestion
    assert sched.details["scheduled"] == "false"
    assert "Insufficient cpu" in sched.details["event"]
    assert report.summary.failed > 0


def test_pending_status_reports_age_from_gathered_at(now) -> None:
    pod = make_pod(phase="Pending", node=None, statuses=[])
    result = check_pod_status(_info(pod, now), OPTS)
    assert result.status == CheckStatus.FAILED
    assert result.details == {"phase": "Pending", "age": "1h0m0s"}


def test_running_pod_with_unready_container_warns(now) -> None:
    pod = make_pod(ready=False)
    result = check_pod_status(_info(pod, now), OPTS)
    assert result.status == CheckStatus.WARNING
    assert "(0/1)" in result.message


def test_manifest_unknown_pull_error_suggests_verifying_image(now) -> None:
    pod = make_pod(
        phase="Pending",
        statuses=[
            {
                "name": "app",
                "image": "registry.example.com/web:9.9",
                "ready": False,
                "restartCount": 0,
                "state": {
                    "waiting": {
                        "reason": "ErrImagePull",
                        "message": "rpc error: code = NotFound desc = manifest unknown: manifest unknown",
                    }
                },
            }
        ],
    )
    results = check_images(_info(pod, now), OPTS)
    assert len(results) == 1
    assert results[0].name == "Container app - Image Pull"
    assert results[0].status == CheckStatus.FAILED
    assert "verify image name and tag" in results[0].suggestion
    assert results[0].details["image"] == "registry.example.com/web:9.9"


def test_images_skipped_before_any_status_is_reported(now) -> None:
    pod = make_pod(phase="Pending", node=None, statuses=[])
    results = check_images(_info(pod, now), OPTS)
    assert [r.status for r in results] == [CheckStatus.SKIPPED]


def test_missing_service_account_fails_with_create_command(fake_provider) -> None:
    fake_provider.add(make_pod(service_account="builder"), make_node())
    report = DiagnosticEngine(WORKLOAD, fake_provider).diagnose("web-1", "default", selection=["rbac"])
    sa = _by_name(report)["RBAC - Service Account"]
    assert sa.status == CheckStatus.FAILED
    assert "kubectl create serviceaccount builder -n default" in sa.suggestion


def test_denied_service_account_read_is_a_warning_not_a_failure(fake_provider) -> None:
    fake_provider.add(make_pod(service_account="builder"), make_node())
    fake_provider.fail("ServiceAccount", "builder", AccessDeniedError("forbidden", status=403))
    report = DiagnosticEngine(WORKLOAD, fake_provider).diagnose("web-1", "default", selection=["rbac"])
    sa = _by_name(report)["RBAC - Service Account"]
    assert sa.status == CheckStatus.WARNING
    assert "access denied" in sa.suggestion
    assert sa.details["reason"] == "forbidden"


def test_existing_service_account_and_clean_events_pass(fake_provider) -> None:
    fake_provider.add(make_pod(service_account="builder"), make_node(), make_service_account("builder"))
    report = DiagnosticEngine(WORKLOAD, fake_provider).diagnose("web-1", "default", selection=["rbac"])
    assert [c.status for c in report.checks] == [CheckStatus.PASSED, CheckStatus.PASSED]


def test_rbac_permission_check_is_not_passed_when_events_are_unreadable(fake_provider) -> None:
    fake_provider.add(make_pod(), make_node())
    fake_provider.list_errors["Event"] = AccessDeniedError("events forbidden", status=403)
    report = DiagnosticEngine(WORKLOAD, fake_provider).diagnose("web-1", "default", selection=["rbac"])
    perm = _by_name(report)["RBAC - Permission Check"]
    assert perm.status == CheckStatus.WARNING
    assert report.metadata["unavailable"] == ["Event/web-1: forbidden"]


def test_unreadable_node_surfaces_as_warning(fake_provider) -> None:
    fake_provider.add(make_pod())
    report = DiagnosticEngine(WORKLOAD, fake_provider).diagnose("web-1", "default", selection=["scheduling"])
    checks = _by_name(report)
    assert checks["Pod Scheduling"].status == CheckStatus.PASSED
    assert checks["Node node-a - Conditions"].status == CheckStatus.WARNING
    assert "Resource Fit" not in checks


def test_resource_fit_fails_when_requests_exceed_allocatable(fake_provider) -> None:
    fake_provider.add(make_pod(), make_node(cpu="50m", memory="64Mi", pressure="MemoryPressure"))
    report = DiagnosticEngine(WORKLOAD, fake_provider).diagnose("web-1", "default", selection=["scheduling"])
    checks = _by_name(report)
    assert checks["Node node-a - Conditions"].status == CheckStatus.FAILED
    fit = checks["Resource Fit"]
    assert fit.status == CheckStatus.FAILED
    assert fit.details == {"cpu": "100m/50m", "memory": "128Mi/64Mi"}


def test_logs_skipped_when_capture_not_requested(now) -> None:
    results = check_logs(_info(make_pod(), now), OPTS)
    assert [r.status for r in results] == [CheckStatus.SKIPPED]
    assert "--include-logs" in results[0].suggestion


def test_crash_looping_container_gets_log_and_crash_analysis(now) -> None:
    pod = make_pod(
        statuses=[
            {
                "name": "app",
                "image": "registry.example.com/web:1.0",
                "ready": False,
                "restartCount": 7,
                "state": {"waiting": {"reason": "CrashLoopBackOff"}},
                "lastState": {"terminated": {"exitCode": 137}},
            }
        ],
        ready=False,
    )
    info = _info(
        pod,
        now,
        log_capture_requested=True,
        logs={"app": "starting worker\ndial tcp 10.0.0.5:5432: connect: connection refused\n"},
    )
    results = check_logs(info, OPTS)
    assert [r.name for r in results] == ["Container app - Log Analysis", "Container app - CrashLoopBackOff"]
    analysis, crash = results
    assert analysis.status == CheckStatus.FAILED
    assert analysis.message == "Connection refused error detected"
    assert crash.message == "Container is crash looping (restart count: 7)"
    assert "SIGKILL" in crash.suggestion
    assert crash.details["exitCode"] == "137"


def test_crash_loop_analysis_needs_a_restart(now) -> None:
    pod = make_pod(
        statuses=[
            {
                "name": "app",
                "image": "registry.example.com/web:1.0",
                "ready": False,
                "restartCount": 0,
                "state": {"waiting": {"reason": "CrashLoopBackOff"}},
            }
        ],
        ready=False,
    )
    info = _info(pod, now, log_capture_requested=True, logs={"app": "starting worker\n"})
    assert [r.name for r in check_logs(info, OPTS)] == ["Container app - Log Analysis"]


def test_log_fetch_failures_are_warnings(now) -> None:
    pod = make_pod(phase="Failed")
    info = _info(
        pod,
        now,
        log_capture_requested=True,
        absences=[Absence(kind="Log", name="app", reason="not_found", detail="no logs")],
    )
    results = check_logs(info, OPTS)
    assert [(r.name, r.status) for r in results] == [("Container app - Logs", CheckStatus.WARNING)]


def test_default_selection_adds_logs_only_for_failing_pods_with_capture(now) -> None:
    healthy = _info(make_pod(), now, log_capture_requested=True)
    failing = _info(make_pod(phase="Failed"), now, log_capture_requested=True)
    failing_no_capture = _info(make_pod(phase="Failed"), now)

    assert "logs" not in default_workload_selection(healthy)
    assert "logs" in default_workload_selection(failing)
    assert "logs" not in default_workload_selection(failing_no_capture)


def test_init_container_failure_points_at_its_logs(now) -> None:
    pod = make_pod(
        phase="Pending",
        init_containers=[{"name": "migrate", "image": "migrate:1"}],
        init_statuses=[{"name": "migrate", "state": {"terminated": {"exitCode": 2, "reason": "Error"}}}],
    )
    results = check_init_containers(_info(pod, now), OPTS)
    assert len(results) == 1
    assert results[0].status == CheckStatus.FAILED
    assert results[0].details["exitCode"] == "2"
    assert "kubectl logs web-1 -c migrate -n default" in results[0].suggestion


def test_no_init_containers_is_skipped(now) -> None:
    results = check_init_containers(_info(make_pod(), now), OPTS)
    assert [r.status for r in results] == [CheckStatus.SKIPPED]


def test_best_effort_qos_and_oom_events(now) -> None:
    pod = make_pod(qos="BestEffort", containers=[{"name": "app", "image": "web:1"}])
    info = _info(pod, now, events=[make_event("web-1", "OOMKilling", "Memory cgroup out of memory: Killed process")])
    results = {r.name: r for r in check_resources(info, OPTS)}
    assert results["Resource QoS"].status == CheckStatus.WARNING
    assert results["Resource Configuration"].details["containers"] == "app"
    assert results["Resource Events"].status == CheckStatus.FAILED


def test_dns_policy_none_without_nameservers_fails(now) -> None:
    pod = make_pod()
    pod["spec"]["dnsPolicy"] = "None"
    results = {r.name: r for r in check_network(_info(pod, now), OPTS)}
    assert results["Network - Pod IP"].status == CheckStatus.PASSED
    assert results["DNS Configuration"].status == CheckStatus.FAILED
    assert results["Network Events"].status == CheckStatus.PASSED


def test_checks_are_pure_over_a_snapshot(fake_provider) -> None:
    fake_provider.add(make_pod(phase="Pending", node=None, statuses=[]))
    engine = DiagnosticEngine(WORKLOAD, fake_provider)
    info = engine.gather(engine.ref("web-1", "default"))
    info = info.model_copy(update={"gathered_at": datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)})

    first = engine.evaluate(info)
    second = engine.evaluate(info)
    assert first == second
    assert first[0].details["age"] == "2h0m0s"
