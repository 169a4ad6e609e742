from __future__ import annotations

from kdiag.config import load_settings


def test_defaults(monkeypatch) -> None:
    for var in (
        "KDIAG_NAMESPACE",
        "KDIAG_TIMEOUT_SECONDS",
        "KDIAG_LOG_LINES",
        "KDIAG_EVENTS_LIMIT",
        "KDIAG_CONCURRENCY",
        "KDIAG_OUTPUT",
        "KDIAG_LOG_LEVEL",
    ):
        monkeypatch.delenv(var, raising=False)

    s = load_settings()
    assert s.namespace == "default"
    assert s.timeout_seconds == 30.0
    assert s.log_lines == 20
    assert s.events_limit == 20
    assert s.concurrency == 1
    assert s.output == "table"
    assert s.log_level == "WARNING"


def test_env_overrides_are_clamped_and_validated(monkeypatch) -> None:
    monkeypatch.setenv("KDIAG_NAMESPACE", " shop ")
    monkeypatch.setenv("KDIAG_TIMEOUT_SECONDS", "5000")
    monkeypatch.setenv("KDIAG_LOG_LINES", "not-a-number")
    monkeypatch.setenv("KDIAG_CONCURRENCY", "0")
    monkeypatch.setenv("KDIAG_OUTPUT", "XML")
    monkeypatch.setenv("KDIAG_LOG_LEVEL", "debug")

    s = load_settings()
    assert s.namespace == "shop"
    assert s.timeout_seconds == 600.0
    assert s.log_lines == 20
    assert s.concurrency == 1
    assert s.output == "table"
    assert s.log_level == "DEBUG"


def test_settings_are_cached(monkeypatch) -> None:
    monkeypatch.setenv("KDIAG_NAMESPACE", "first")
    first = load_settings()
    monkeypatch.setenv("KDIAG_NAMESPACE", "second")
    assert load_settings() is first
