"""Container log failure signatures, in precedence order.

Specific causes come first; the generic panic/fatal/error/exception catch-all is last.
"""

from kdiag.diagnostics.log_pattern_matcher import LogPattern

CONNECTION_REFUSED = LogPattern(
    pattern_id="connection_refused",
    pattern=r"(connection refused|connection denied|ECONNREFUSED)",
    message="Connection refused error detected",
    suggestion="Check service availability and network connectivity",
)

DNS_FAILURE = LogPattern(
    pattern_id="dns_failure",
    pattern=r"(no such host|host not found|Name or service not known|ENOTFOUND)",
    message="DNS resolution failure detected",
    suggestion="Check DNS configuration and hostname",
)

PERMISSION_DENIED = LogPattern(
    pattern_id="permission_denied",
    pattern=r"(permission denied|access denied|EACCES)",
    message="Permission denied error detected",
    suggestion="Check file permissions and RBAC settings",
)

OUT_OF_MEMORY = LogPattern(
    pattern_id="out_of_memory",
    pattern=r"(out of memory|\boom(killed)?\b|memory limit|OutOfMemoryError)",
    message="Out of memory error detected",
    suggestion="Increase memory limits or optimize memory usage",
)

DISK_FULL = LogPattern(
    pattern_id="disk_full",
    pattern=r"(disk.*full|no space left)",
    message="Disk space error detected",
    suggestion="Check available disk space and cleanup",
)

AUTH_FAILURE = LogPattern(
    pattern_id="auth_failure",
    pattern=r"(authentication.*fail|login.*fail)",
    message="Authentication failure detected",
    suggestion="Check credentials and authentication configuration",
)

TIMEOUT = LogPattern(
    pattern_id="timeout",
    pattern=r"(timeout|timed out)",
    message="Timeout error detected",
    suggestion="Check network latency and increase timeout values",
)

APPLICATION_ERROR = LogPattern(
    pattern_id="application_error",
    pattern=r"(panic|fatal|error|exception)",
    message="Application error detected",
    suggestion="Check application logs and configuration",
)


WORKLOAD_LOG_PATTERNS = [
    CONNECTION_REFUSED,
    DNS_FAILURE,
    PERMISSION_DENIED,
    OUT_OF_MEMORY,
    DISK_FULL,
    AUTH_FAILURE,
    TIMEOUT,
    APPLICATION_ERROR,
]
