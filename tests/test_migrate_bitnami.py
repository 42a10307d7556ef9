"""Unit tests for scripts/migrate_bitnami.py"""

import json
import re
import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

_python_dir = Path(__file__).parent.parent / "python"
if str(_python_dir.absolute()) not in sys.path:
    sys.path.insert(0, str(_python_dir.absolute()))

from conftest import FakeCluster, make_manifest  # noqa: E402
from migration.cluster import RolloutStatus  # noqa: E402
from migration.errors import NoTTYError  # noqa: E402
from migration.interactive import Choice  # noqa: E402
from migration.models import WorkloadKind  # noqa: E402


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep host environment overrides out of the CLI"""
    for name in ("STATE_FILE", "TIMEOUT", "NAMESPACE_SELECTOR", "KINDS", "FORCE_RECHECK", "KUBE_CONTEXT", "LOG_LEVEL", "CONFIG_FILE"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def cluster():
    return FakeCluster(
        [
            make_manifest(name="redis", namespace="cache", uid="u1", images=["docker.io/bitnami/redis:7.0"]),
            make_manifest(kind="CronJob", name="backup", namespace="ops", uid="u2", images=["bitnami/kubectl:1.28"]),
        ],
        context_id="prod-eu",
    )


@pytest.fixture
def healthy(mocker):
    checker = mocker.patch("scripts.migrate_bitnami.HealthChecker")
    checker.return_value.print_health_report.return_value = True
    return checker


@pytest.fixture
def run(cluster, healthy, mocker, state_file):
    """Run main() against the fake cluster with a temporary state file"""
    mocker.patch("scripts.migrate_bitnami.KubernetesClusterClient.from_config", return_value=cluster)

    def _run(*argv):
        from scripts.migrate_bitnami import main

        return main(["--config", "/nonexistent/config.yaml", "--state-file", state_file, *argv])

    return _run


def _phases(state_file):
    with open(state_file) as f:
        return [(json.loads(line)["name"], json.loads(line)["phase"]) for line in f if line.strip()]


class TestParseArguments:
    """Tests for parse_arguments()"""

    def test_defaults_to_plan(self):
        from scripts.migrate_bitnami import parse_arguments

        args = parse_arguments([])

        assert args.action == "plan"
        assert args.force_recheck is None
        assert args.timeout is None

    def test_all_options(self):
        from scripts.migrate_bitnami import parse_arguments

        args = parse_arguments(
            ["apply", "--timeout", "5m", "--namespaces", "a,b", "--kinds", "sts", "--force-recheck", "--context", "prod"]
        )

        assert args.action == "apply"
        assert args.timeout == "5m"
        assert args.namespaces == "a,b"
        assert args.kinds == "sts"
        assert args.force_recheck is True
        assert args.context == "prod"

    def test_unknown_action_exits(self):
        from scripts.migrate_bitnami import parse_arguments

        with pytest.raises(SystemExit):
            parse_arguments(["rollback"])


class TestBuildSettings:
    """Tests for build_settings()"""

    def _config(self):
        config = MagicMock()
        config.get_rollout_timeout.return_value = 180.0
        config.get_kinds.return_value = ["deploy", "ds", "sts", "cronjob"]
        config.get_namespaces.return_value = ["from-config"]
        config.is_force_recheck.return_value = True
        return config

    def test_config_values_used_without_flags(self):
        from scripts.migrate_bitnami import build_settings, parse_arguments

        settings = build_settings(parse_arguments(["apply"]), self._config(), "prod-eu")

        assert settings.context_id == "prod-eu"
        assert settings.rollout_timeout == 180.0
        assert settings.kinds == list(WorkloadKind)
        assert settings.namespaces == ["from-config"]
        assert settings.force_recheck is True

    def test_flags_override_config(self):
        from scripts.migrate_bitnami import build_settings, parse_arguments

        args = parse_arguments(["apply", "--timeout", "1m30s", "--kinds", "sts,deploy", "--namespaces", "a, b"])

        settings = build_settings(args, self._config(), "prod-eu")

        assert settings.rollout_timeout == 90.0
        assert settings.kinds == [WorkloadKind.STATEFUL_SET, WorkloadKind.DEPLOYMENT]
        assert settings.namespaces == ["a", "b"]

    def test_unknown_kind_is_a_config_error(self):
        from scripts.migrate_bitnami import build_settings, parse_arguments
        from utils.config_manager import ConfigValidationError

        with pytest.raises(ConfigValidationError, match="Unsupported workload kind"):
            build_settings(parse_arguments(["plan", "--kinds", "deploy,job"]), self._config(), "prod-eu")


class TestMain:
    """End-to-end runs of main() against the fake cluster"""

    def test_plan_changes_nothing(self, run, cluster, state_file, capsys):
        assert run("plan") == 0

        assert cluster.patches == []
        assert not Path(state_file).exists()
        assert "docker.io/bitnamilegacy/redis:7.0" in capsys.readouterr().out

    def test_apply_migrates_everything(self, run, cluster, state_file, healthy):
        assert run("apply") == 0

        assert len(cluster.patches) == 2
        assert ("redis", "verified") in _phases(state_file)
        assert ("backup", "verified") in _phases(state_file)
        healthy.return_value.run_all_checks.assert_called_once_with(mutating=True)

    def test_second_apply_is_a_no_op(self, run, cluster):
        assert run("apply") == 0
        assert run("apply") == 0

        assert len(cluster.patches) == 2

    def test_read_only_actions_skip_ledger_check(self, run, healthy):
        assert run("verify") == 0

        healthy.return_value.run_all_checks.assert_called_once_with(mutating=False)

    def test_rollout_timeout_halts_with_exit_code_1(self, run, cluster, state_file):
        redis = cluster.ref_of(make_manifest(name="redis", namespace="cache"))
        cluster.rollout_results[redis] = RolloutStatus.TIMEOUT

        assert run("apply", "--kinds", "deploy,cronjob") == 1

        assert ("redis", "verified") not in _phases(state_file)
        assert all(ref.name == "redis" for ref, _ in cluster.patches)

    def test_continue_after_halt(self, run, cluster, state_file):
        redis = cluster.ref_of(make_manifest(name="redis", namespace="cache"))
        cluster.rollout_results[redis] = RolloutStatus.TIMEOUT
        assert run("apply") == 1

        del cluster.rollout_results[redis]
        assert run("continue") == 0

        assert ("redis", "verified") in _phases(state_file)
        assert ("backup", "verified") in _phases(state_file)

    def test_validation_failure_exits_1(self, run, cluster):
        cluster.reject_validation.add(cluster.ref_of(make_manifest(kind="CronJob", name="backup", namespace="ops")))

        assert run("apply") == 1

    def test_namespace_restriction(self, run, cluster):
        assert run("apply", "--namespaces", "ops") == 0

        assert [ref.name for ref, _ in cluster.patches] == ["backup"]

    def test_writes_json_report(self, run, tmp_path):
        output = tmp_path / "report.json"

        assert run("apply", "--output", str(output)) == 0

        report = json.loads(output.read_text())
        assert report["action"] == "apply"
        assert report["context"] == "prod-eu"
        assert report["summary"]["counts"]["verified"] == 2

    def test_timestamped_json_report(self, run, tmp_path):
        assert run("plan", "--output", str(tmp_path / "report.json"), "--timestamp") == 0

        written = [p.name for p in tmp_path.iterdir() if p.name.startswith("report")]
        assert len(written) == 1
        assert re.match(r"^report-\d{4}-\d{2}-\d{2}-\d{2}-\d{2}-\d{2}\.json$", written[0])

    def test_health_check_failure_aborts(self, run, healthy, mocker):
        healthy.return_value.print_health_report.return_value = False
        from_config = mocker.patch("scripts.migrate_bitnami.KubernetesClusterClient.from_config")

        assert run("apply") == 1

        from_config.assert_not_called()

    def test_unknown_kind_exits_1(self, run, cluster):
        assert run("apply", "--kinds", "job") == 1

        assert cluster.patches == []

    def test_invalid_timeout_exits_1(self, run):
        assert run("apply", "--timeout", "soon") == 1

    def test_interactive_without_tty_exits_2(self, run, mocker, healthy):
        mocker.patch("scripts.migrate_bitnami.OperatorPrompter.open", side_effect=NoTTYError("No TTY available"))

        assert run("interactive") == 2

        healthy.assert_not_called()

    def test_interactive_quit_leaves_rest_untouched(self, run, cluster, mocker):
        prompter = MagicMock()
        prompter.ask.side_effect = [Choice.QUIT]
        mocker.patch("scripts.migrate_bitnami.OperatorPrompter.open", return_value=prompter)

        assert run("interactive") == 0

        assert cluster.patches == []
        prompter.close.assert_called_once()

    def test_unexpected_error_exits_1(self, run, mocker):
        mocker.patch("scripts.migrate_bitnami.MigrationOrchestrator", side_effect=RuntimeError("boom"))

        assert run("apply") == 1
