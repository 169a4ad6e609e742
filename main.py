#!/usr/bin/env python3
"""
kdiag - rule-based Kubernetes diagnostics.
Gathers a resource plus its dependents, runs deterministic checks and reports findings.
"""

import argparse
import logging
import os
import signal
import sys
from typing import List, Optional

#
# NOTE: Keep kdiag imports lazy (inside functions) so `--help` and argument errors
# never load the kubernetes client.
#

EXIT_OK = 0
EXIT_FAILED_CHECKS = 1
EXIT_UNREACHABLE = 2


def _csv(raw: Optional[str]) -> List[str]:
    return [s.strip() for s in (raw or "").split(",") if s.strip()]


def _add_target_flags(p: argparse.ArgumentParser) -> None:
    p.add_argument("name", nargs="?", help="Resource name (omit with --all)")
    p.add_argument("--all", action="store_true", dest="all_resources", help="Diagnose every resource of this kind")
    p.add_argument("-n", "--namespace", help="Namespace (default: KDIAG_NAMESPACE or 'default')")
    p.add_argument("-A", "--all-namespaces", action="store_true", help="With --all, list across all namespaces")
    p.add_argument("--concurrency", type=int, help="Resources diagnosed in parallel with --all")


def _add_common_flags(p: argparse.ArgumentParser) -> None:
    p.add_argument("--checks", help="Comma-separated check keys to run (default: domain default selection)")
    p.add_argument("-o", "--output", choices=["table", "json", "yaml"], help="Output format")
    p.add_argument("--timeout", type=float, help="Seconds bounding all API reads of one gather")
    p.add_argument("--kubeconfig", help="Path to kubeconfig (default: in-cluster, then ~/.kube/config)")
    p.add_argument("--context", help="Kubeconfig context")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging and details for every check")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Diagnose Kubernetes pods, services, ingresses and cluster health",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Diagnose one pod
  python main.py pod web-7d9f -n shop

  # Include container log analysis for a failing pod
  python main.py pod web-7d9f -n shop --include-logs --log-lines 50

  # Re-diagnose a pod every time it changes (Ctrl-C to stop)
  python main.py pod web-7d9f -n shop --watch

  # Every service in a namespace, as JSON
  python main.py service --all -n shop -o json

  # Only backend checks for an ingress
  python main.py ingress storefront -n shop --checks backends,endpoints

  # Cluster-wide health: nodes, control plane and DNS pods
  python main.py cluster

Check keys:
  pod:     basic, scheduling, images, rbac, logs, init-containers, resources, network
  service: existence, config, selector, endpoints, ports
  ingress: existence, config, backends, endpoints, ssl
  cluster: connectivity, nodes, control-plane, dns

Exit codes: 0 no failed checks, 1 at least one failed check, 2 target unreachable or bad arguments.
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="{pod,service,ingress,cluster}")
    sub.required = True

    pod = sub.add_parser("pod", help="Diagnose pods", formatter_class=argparse.RawDescriptionHelpFormatter)
    _add_target_flags(pod)
    _add_common_flags(pod)
    pod.add_argument("--include-logs", action="store_true", help="Capture and analyze logs of failing pods")
    pod.add_argument("--log-lines", type=int, help="Log tail length per container")
    pod.add_argument("--containers", help="Comma-separated containers to capture logs from (default: all)")
    pod.add_argument("--watch", action="store_true", help="Re-diagnose on every change until deleted or interrupted")

    for kind in ("service", "ingress"):
        p = sub.add_parser(kind, help=f"Diagnose {kind}s", formatter_class=argparse.RawDescriptionHelpFormatter)
        _add_target_flags(p)
        _add_common_flags(p)
        p.set_defaults(include_logs=False, log_lines=None, containers=None, watch=False)

    cluster = sub.add_parser(
        "cluster", help="Check nodes, control plane and DNS", formatter_class=argparse.RawDescriptionHelpFormatter
    )
    _add_common_flags(cluster)
    cluster.add_argument("--nodes-only", action="store_true", help="Check only node health")
    cluster.set_defaults(
        name=None,
        all_resources=False,
        namespace=None,
        all_namespaces=False,
        concurrency=None,
        include_logs=False,
        log_lines=None,
        containers=None,
        watch=False,
    )

    return parser


def _render(report, output: str, *, verbose: bool) -> str:
    from kdiag.dump import render_json, render_yaml
    from kdiag.report import render_table

    if output == "json":
        return render_json(report) + "\n"
    if output == "yaml":
        return render_yaml(report)
    color = sys.stdout.isatty() and not os.getenv("NO_COLOR")
    return render_table(report, color=color, verbose=verbose)


def _exit_code(report) -> int:
    return EXIT_FAILED_CHECKS if report.summary.failed > 0 else EXIT_OK


def run(args: argparse.Namespace) -> int:
    from kdiag.collectors.gather import GatherOptions
    from kdiag.config import load_settings
    from kdiag.core.errors import TargetUnreachableError, WatchStreamError
    from kdiag.diagnostics.domains import DOMAINS
    from kdiag.diagnostics.engine import DiagnosticEngine
    from kdiag.providers.k8s_provider import get_k8s_provider
    from kdiag.watch import LiveWatch

    settings = load_settings()
    namespace = args.namespace or settings.namespace
    output = args.output or settings.output
    selection = _csv(args.checks)

    options = GatherOptions(
        include_logs=bool(args.include_logs),
        log_lines=args.log_lines or settings.log_lines,
        containers=tuple(_csv(args.containers)),
        events_limit=settings.events_limit,
        timeout=args.timeout if args.timeout is not None else settings.timeout_seconds,
    )

    domain = DOMAINS[args.command]
    engine = DiagnosticEngine(domain, get_k8s_provider(kubeconfig=args.kubeconfig, context=args.context))

    try:
        if args.command == "cluster":
            from kdiag.diagnostics.cluster import CLUSTER_REF

            if getattr(args, "nodes_only", False):
                selection = ["nodes"]
            report = engine.diagnose_ref(CLUSTER_REF, selection=selection, options=options)
            sys.stdout.write(_render(report, output, verbose=args.verbose))
            return _exit_code(report)

        if args.all_resources:
            report = engine.diagnose_all(
                None if args.all_namespaces else namespace,
                selection=selection,
                options=options,
                concurrency=args.concurrency or settings.concurrency,
            )
            sys.stdout.write(_render(report, output, verbose=args.verbose))
            return _exit_code(report)

        if not args.watch:
            report = engine.diagnose(args.name, namespace, selection=selection, options=options)
            sys.stdout.write(_render(report, output, verbose=args.verbose))
            return _exit_code(report)

        watch = LiveWatch(engine, engine.ref(args.name, namespace), selection=selection, options=options)
        signal.signal(signal.SIGINT, lambda *_: watch.cancel())
        last = EXIT_OK
        for report in watch:
            if output == "table":
                sys.stdout.write("=" * 80 + "\n")
            sys.stdout.write(_render(report, output, verbose=args.verbose))
            sys.stdout.flush()
            last = _exit_code(report)
        return last
    except TargetUnreachableError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_UNREACHABLE
    except WatchStreamError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_UNREACHABLE


def _validate(parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    if args.command == "cluster":
        # The cluster target has no name, namespace or bulk mode.
        return
    if args.all_resources and args.name:
        parser.error("a resource name cannot be combined with --all")
    if not args.all_resources and not args.name:
        parser.error("a resource name is required unless --all is given")
    if args.all_namespaces and not args.all_resources:
        parser.error("--all-namespaces requires --all")
    if args.watch and args.all_resources:
        parser.error("--watch diagnoses a single pod and cannot be combined with --all")
    if args.concurrency is not None and args.concurrency < 1:
        parser.error("--concurrency must be at least 1")


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    _validate(parser, args)

    from kdiag.config import load_settings

    level = "DEBUG" if args.verbose else load_settings().log_level
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    return run(args)


if __name__ == "__main__":
    sys.exit(main())
