from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache


@dataclass(frozen=True)
class Settings:
    namespace: str
    timeout_seconds: float  # Bounds the sum of fetch calls for one gather
    log_lines: int  # Tail length per container when log capture is requested
    events_limit: int
    concurrency: int  # Parallel resources in --all mode
    output: str  # table | json | yaml
    log_level: str


def _int_env(name: str, default: int, *, lo: int, hi: int) -> int:
    raw = (os.getenv(name, "") or "").strip()
    try:
        value = int(float(raw)) if raw else default
    except ValueError:
        value = default
    return max(lo, min(hi, value))


def _float_env(name: str, default: float, *, lo: float, hi: float) -> float:
    raw = (os.getenv(name, "") or "").strip()
    try:
        value = float(raw) if raw else default
    except ValueError:
        value = default
    return max(lo, min(hi, value))


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    """
    Load defaults from environment variables.

    CLI flags override these per invocation. Unparseable values fall back to defaults.
    """
    output = (os.getenv("KDIAG_OUTPUT", "") or "table").strip().lower()
    if output not in ("table", "json", "yaml"):
        output = "table"

    return Settings(
        namespace=(os.getenv("KDIAG_NAMESPACE", "") or "default").strip(),
        timeout_seconds=_float_env("KDIAG_TIMEOUT_SECONDS", 30.0, lo=1.0, hi=600.0),
        log_lines=_int_env("KDIAG_LOG_LINES", 20, lo=1, hi=10000),
        events_limit=_int_env("KDIAG_EVENTS_LIMIT", 20, lo=1, hi=500),
        concurrency=_int_env("KDIAG_CONCURRENCY", 1, lo=1, hi=64),
        output=output,
        log_level=(os.getenv("KDIAG_LOG_LEVEL", "") or "WARNING").strip().upper(),
    )
