#!/usr/bin/env python3
"""
Move Kubernetes workload images from the deprecated bitnami/ repository
path to bitnamilegacy/.

Deployments, DaemonSets, StatefulSets and CronJobs are patched in place
with JSON-patch, one workload at a time. Progress is written to an
append-only state file so an interrupted run can be resumed, and a
workload only counts as done once its rollout has completed.

Actions:
  plan         Show every pending image change (default, read-only)
  apply        Patch every pending workload and wait for its rollout
  verify       Check the live cluster for remaining bitnami/ images (read-only)
  continue     Resume an interrupted apply
  interactive  Ask before patching each workload
  scan         List every image mentioning bitnami, legacy or not (read-only)

Usage examples:
  # Preview what would change
  python migrate_bitnami.py plan

  # Migrate two namespaces, waiting up to 5 minutes per rollout
  python migrate_bitnami.py apply --namespaces redis,kafka --timeout 5m

  # Resume after a halted or interrupted run
  python migrate_bitnami.py continue

  # Re-check workloads already marked verified for drift
  python migrate_bitnami.py apply --force-recheck
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

# Add parent directory to path for imports
_parent_dir = Path(__file__).parent.parent.absolute()
if str(_parent_dir) not in sys.path:
    sys.path.insert(0, str(_parent_dir))

from migration.errors import LedgerWriteError, NoTTYError
from migration.interactive import OperatorPrompter
from migration.kube_client import KubernetesClusterClient
from migration.ledger import MigrationLedger
from migration.models import WorkloadKind
from migration.orchestrator import MigrationOrchestrator, MigrationSettings, RunReport
from migration.render import render_summary
from utils.config_manager import ConfigManager, ConfigValidationError, parse_duration, split_list
from utils.error_utils import create_config_error, create_ledger_error, create_rollout_error
from utils.health_checks import HealthChecker
from utils.logging_utils import get_logger, log_exception, setup_logging
from utils.report_utils import save_json

logger = get_logger(__name__)

ACTIONS = ["plan", "apply", "verify", "continue", "interactive", "scan"]
MUTATING_ACTIONS = {"apply", "continue", "interactive"}
CONTINUE_HINT = "Re-run with the 'continue' action to resume from the state file"


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Migrate Kubernetes workload images from bitnami/ to bitnamilegacy/",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    parser.add_argument(
        "action",
        nargs="?",
        default="plan",
        choices=ACTIONS,
        help="What to do (default: plan)",
    )

    parser.add_argument(
        "--state-file",
        help="Migration state file (default: STATE_FILE or bitnami-migration-state.jsonl)",
    )

    parser.add_argument(
        "--timeout",
        help="Rollout wait per workload, e.g. 180s, 3m, 1m30s (default: TIMEOUT or 180s)",
    )

    parser.add_argument(
        "--namespaces",
        help="Comma-separated namespaces to restrict to (default: NAMESPACE_SELECTOR or all namespaces)",
    )

    parser.add_argument(
        "--kinds",
        help="Comma-separated workload kinds (default: KINDS or deploy,ds,sts,cronjob)",
    )

    parser.add_argument(
        "--force-recheck",
        action="store_true",
        default=None,
        help="Re-check workloads the state file already marks verified (default: FORCE_RECHECK)",
    )

    parser.add_argument(
        "--context",
        help="Kubeconfig context to use (default: KUBE_CONTEXT or the current context)",
    )

    parser.add_argument(
        "--config",
        help="Path to config YAML (default: CONFIG_FILE or ./config.yaml)",
    )

    parser.add_argument(
        "--output",
        help="Write the run report as JSON to this file",
    )

    parser.add_argument(
        "--timestamp",
        action="store_true",
        help="Insert a timestamp into the --output filename",
    )

    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error"],
        help="Logging level (default: LOG_LEVEL or info)",
    )

    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace, config: ConfigManager, context_id: str) -> MigrationSettings:
    """Resolve run settings; CLI flags win over environment and config file.

    Raises:
        ConfigValidationError: If a flag value is invalid
    """
    timeout = parse_duration(args.timeout) if args.timeout else config.get_rollout_timeout()

    raw_kinds = split_list(args.kinds) if args.kinds else config.get_kinds()
    try:
        kinds = WorkloadKind.parse_many(raw_kinds)
    except ValueError as e:
        raise ConfigValidationError(create_config_error("kinds", ",".join(raw_kinds), str(e)).format_message()) from e

    namespaces = split_list(args.namespaces) if args.namespaces else config.get_namespaces()
    force_recheck = args.force_recheck if args.force_recheck is not None else config.is_force_recheck()

    return MigrationSettings(
        context_id=context_id,
        rollout_timeout=timeout,
        force_recheck=force_recheck,
        kinds=kinds,
        namespaces=namespaces,
    )


def run_action(action: str, orchestrator: MigrationOrchestrator, prompter: Optional[OperatorPrompter] = None) -> RunReport:
    if action == "apply":
        return orchestrator.apply()
    if action == "continue":
        return orchestrator.continue_run()
    if action == "verify":
        return orchestrator.verify()
    if action == "interactive":
        return orchestrator.interactive(prompter)
    if action == "scan":
        return orchestrator.scan()
    return orchestrator.plan()


def exit_code_for(report: RunReport) -> int:
    return 1 if report.failed else 0


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_arguments(argv)

    try:
        config = ConfigManager(args.config, validate=False)
    except ConfigValidationError as e:
        setup_logging()
        logger.error(str(e))
        return 1

    setup_logging(args.log_level or config.get_log_level())

    context = args.context or config.get_kube_context()
    state_file = args.state_file or config.get_state_file()
    mutating = args.action in MUTATING_ACTIONS

    prompter = None
    if args.action == "interactive":
        try:
            prompter = OperatorPrompter.open()
        except NoTTYError as e:
            logger.error(f"ERROR: {e}")
            return 2

    try:
        logger.info("=" * 60)
        if mutating:
            logger.info(f"   BITNAMI LEGACY MIGRATION - {args.action.upper()}")
            logger.warning("   Workloads WILL be patched and rolled out!")
        else:
            logger.info(f"   BITNAMI LEGACY MIGRATION - {args.action.upper()} (read-only)")
        logger.info("=" * 60)
        logger.info(f"State file: {state_file}")
        logger.info(f"Context:    {context or 'current'}")

        checker = HealthChecker(config, context=context, state_file=state_file)
        if not checker.print_health_report(checker.run_all_checks(mutating=mutating)):
            logger.error("Health checks failed, aborting migration")
            return 1

        cluster = KubernetesClusterClient.from_config(
            context=context,
            poll_interval=config.get_poll_interval(),
            retry_settings=config.get_retry_settings(),
        )
        settings = build_settings(args, config, cluster.get_current_context_id())
        logger.info(f"Cluster:    {settings.context_id}")
        logger.info(f"Kinds:      {', '.join(k.value for k in settings.kinds)}")
        logger.info(f"Namespaces: {', '.join(settings.namespaces) or 'all'}")
        logger.info(f"Timeout:    {settings.rollout_timeout:g}s")
        if settings.force_recheck:
            logger.info("Force recheck: ENABLED")
        logger.info("")

        orchestrator = MigrationOrchestrator(cluster, MigrationLedger(state_file), settings)
        report = run_action(args.action, orchestrator, prompter)

        print(render_summary(report.counts()))
        if args.output:
            report_path = save_json(args.output, report.to_dict(), timestamp=args.timestamp)
            logger.info(f"Report written to {report_path}")

        if report.halted:
            halted = report.outcomes[-1]
            error = create_rollout_error(halted.ref.resource, report.halt_status, settings.rollout_timeout)
            logger.error(error.format_message())
        elif report.failed:
            logger.error("Some workloads failed validation or patching; see the log above")
        if report.quit_requested:
            logger.info(CONTINUE_HINT)

        return exit_code_for(report)

    except ConfigValidationError as e:
        logger.error(str(e))
        return 1
    except LedgerWriteError as e:
        logger.error(create_ledger_error(e.path, e.cause).format_message())
        return 1
    except KeyboardInterrupt:
        logger.warning("\nMigration interrupted by user")
        if mutating:
            logger.info(CONTINUE_HINT)
        return 1
    except Exception as e:
        logger.error(f"\nMigration failed: {e}")
        log_exception(logger, "Error in migration", exc_info=e)
        return 1
    finally:
        if prompter is not None:
            prompter.close()


if __name__ == "__main__":
    sys.exit(main())
