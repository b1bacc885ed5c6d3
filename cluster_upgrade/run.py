"""
Command-line driver for the upgrade orchestration engine.

Commands:
    install                 Install the first release on an empty namespace
    upgrade-step-N          Run upgrade step N (1 = first → second release)
    upgrade --to VERSION    Walk the ladder up to VERSION, one step at a time
    validate                Post-transition validation of the running release
                            (--quick checks version and components only)
    rollback VERSION        Reverse the newest transition that left VERSION
    cleanup                 Prune old snapshots and abandoned staging directories
                            (--uninstall also removes applications and namespaces)
    backups                 List Completed snapshots
    advisories FROM TO      Show breaking-change advisories for a version pair
    status                  Show the running release and its next step

Exit code is 0 on success and 1 on any failed transition, failed validation
or unhandled error. Logs go to stderr; --events writes JSON progress events
to stdout.
"""

import argparse
import json
import logging
import re
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .connectivity.cluster_client import KubectlClient
from .core.config import OrchestratorSettings
from .core.constants import LOG_DATE_FORMAT, LOG_FORMAT
from .core.exceptions import UpgradeError
from .progress.event_sender import EventEmitter
from .upgrade.orchestrator import TransitionOrchestrator
from .upgrade.rollback_controller import RollbackController
from .utils.json_utils import safe_json_serialize

logger = logging.getLogger(__name__)

_STEP_COMMAND = re.compile(r"^upgrade-step-(\d+)$")


# =============================================================================
# SECTION 1: ARGUMENT PARSING
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cluster-upgrade",
        description="Health-gated, backup-first release upgrades with explicit rollback",
    )
    parser.add_argument("--config", type=Path, help="YAML settings file")
    parser.add_argument("--namespace")
    parser.add_argument("--catalog", dest="catalog_path", type=Path)
    parser.add_argument("--overlays-dir", dest="overlays_dir", type=Path)
    parser.add_argument("--backup-dir", dest="backup_dir", type=Path)
    parser.add_argument("--credentials-file", dest="credentials_file", type=Path)
    parser.add_argument("--kubeconfig")
    parser.add_argument("--context")
    parser.add_argument("--health-timeout", dest="health_timeout", type=int)
    parser.add_argument(
        "-y",
        "--yes",
        dest="auto_confirm",
        action="store_true",
        default=None,
        help="Confirm every prompt (unconverged apps, critical advisories)",
    )
    parser.add_argument("--events", action="store_true", help="Emit JSON progress events")
    parser.add_argument("-v", "--verbose", action="store_true")

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("install", help="Install the first release")

    step = commands.add_parser("upgrade-step", help="Run one numbered upgrade step")
    step.add_argument("number", type=int)

    upgrade = commands.add_parser("upgrade", help="Upgrade step by step to a release")
    upgrade.add_argument("--to", dest="to_version", required=True)

    validate = commands.add_parser("validate", help="Validate the running release")
    validate.add_argument("--version", dest="version")
    validate.add_argument(
        "--quick", action="store_true", help="Only check the version and component health"
    )

    rollback = commands.add_parser("rollback", help="Roll back to a prior release")
    rollback.add_argument("version")

    cleanup = commands.add_parser("cleanup", help="Prune old snapshots")
    cleanup.add_argument("--keep", type=int)
    cleanup.add_argument(
        "--uninstall",
        action="store_true",
        help="Also delete applications, their namespaces and the target namespace",
    )

    commands.add_parser("backups", help="List snapshots")

    advisories = commands.add_parser("advisories", help="Show advisories for a pair")
    advisories.add_argument("from_version")
    advisories.add_argument("to_version")

    commands.add_parser("status", help="Show the running release")
    return parser


def normalize_argv(argv: List[str]) -> List[str]:
    """Rewrite ``upgrade-step-N`` into ``upgrade-step N``."""
    normalized = []
    for arg in argv:
        match = _STEP_COMMAND.match(arg)
        if match:
            normalized.extend(["upgrade-step", match.group(1)])
        else:
            normalized.append(arg)
    return normalized


def _interactive_confirm(prompt: str, details: Dict[str, Any]) -> bool:
    for key, value in details.items():
        print(f"  {key}: {value}", file=sys.stderr)
    try:
        answer = input(f"{prompt} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def load_settings(args: argparse.Namespace) -> OrchestratorSettings:
    overrides = {
        "namespace": args.namespace,
        "catalog_path": args.catalog_path,
        "overlays_dir": args.overlays_dir,
        "backup_dir": args.backup_dir,
        "credentials_file": args.credentials_file,
        "kubeconfig": args.kubeconfig,
        "context": args.context,
        "health_timeout": args.health_timeout,
        "auto_confirm": args.auto_confirm,
    }
    if args.config:
        settings = OrchestratorSettings.from_file(args.config, **overrides)
    else:
        settings = OrchestratorSettings.from_env(**overrides)
    if not settings.auto_confirm and sys.stdin.isatty():
        settings.confirmation_callback = _interactive_confirm
    return settings


# =============================================================================
# SECTION 2: COMMAND HANDLERS
# =============================================================================


def _print(payload: Any) -> None:
    print(json.dumps(safe_json_serialize(payload), indent=2))


def _report(record) -> int:
    if record.succeeded:
        logger.info(f"[MAIN] ✅ {record.kind.value} → {record.to_version} succeeded")
        return 0
    logger.error(f"[MAIN] ❌ {record.kind.value} → {record.to_version} {record.status.value}")
    if record.rollback_command:
        logger.error(f"[MAIN]    Roll back with: cluster-upgrade {record.rollback_command}")
    return 1


def run_command(args: argparse.Namespace, orchestrator: TransitionOrchestrator) -> int:
    confirmed = bool(orchestrator.settings.auto_confirm)

    if args.command == "install":
        return _report(orchestrator.install(confirmed))

    if args.command == "upgrade-step":
        return _report(orchestrator.upgrade_step(args.number, confirmed))

    if args.command == "upgrade":
        records = orchestrator.upgrade_to(args.to_version, confirmed)
        if not records:
            logger.info(f"[MAIN] Already on {args.to_version}")
            return 0
        return max(_report(r) for r in records)

    if args.command == "validate":
        outcome = orchestrator.validate(args.version, reduced=args.quick)
        _print(
            {
                "target_version": outcome.target_version,
                "passed": outcome.passed,
                "reduced": outcome.reduced,
                "reports": outcome.reports,
                "rollback_recommendation": outcome.rollback_recommendation,
            }
        )
        return 0 if outcome.passed else 1

    if args.command == "rollback":
        return _report(RollbackController(orchestrator).reverse_to(args.version))

    if args.command == "cleanup":
        payload: Dict[str, Any] = {}
        if args.uninstall:
            payload["uninstalled"] = orchestrator.uninstall(confirmed)
        payload["removed"] = orchestrator.cleanup(args.keep)
        _print(payload)
        return 0

    if args.command == "backups":
        _print([s.to_dict() for s in orchestrator.backups.list()])
        return 0

    if args.command == "advisories":
        lookup = orchestrator.advisory.lookup(args.from_version, args.to_version)
        _print(
            {
                "from_version": lookup.from_version,
                "to_version": lookup.to_version,
                "unknown_risk": lookup.unknown_risk,
                "requires_confirmation": lookup.requires_confirmation,
                "records": lookup.records,
            }
        )
        return 0

    if args.command == "status":
        current = orchestrator.current_release()
        successor = orchestrator.graph.next_version(current.version) if current else orchestrator.graph.first
        _print(
            {
                "reported_version": orchestrator.client.reported_version(
                    orchestrator.settings.version_deployment
                ),
                "release": current.version if current else None,
                "next_release": successor.version if successor else None,
                "ladder": [n.version for n in orchestrator.graph.nodes],
            }
        )
        return 0

    logger.error(f"[MAIN] Unknown command: {args.command}")
    return 1


# =============================================================================
# SECTION 3: ENTRY POINT
# =============================================================================


def main(
    argv: Optional[List[str]] = None,
    client_factory: Optional[Callable[[OrchestratorSettings], Any]] = None,
) -> int:
    parser = build_parser()
    args = parser.parse_args(normalize_argv(list(sys.argv[1:] if argv is None else argv)))

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        stream=sys.stderr,
    )

    try:
        settings = load_settings(args)
        client = (client_factory or KubectlClient.from_settings)(settings)
        orchestrator = TransitionOrchestrator(
            settings, client, emitter=EventEmitter(enabled=args.events)
        )
        return run_command(args, orchestrator)
    except UpgradeError as e:
        logger.error(f"[MAIN] ❌ {type(e).__name__}: {e.message}")
        if e.remediation:
            logger.error(f"[MAIN]    Remediation: {e.remediation}")
        return 1
    except Exception:
        logger.exception(f"[MAIN] Critical failure in {args.command}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
