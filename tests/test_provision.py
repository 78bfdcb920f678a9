"""
Tests for the provision, status and check use cases — the full vertical
slice with the in-memory backend.
"""

import threading
from pathlib import Path

from provisioner.backends.mock import MockBackend
from provisioner.core.engine.probe import HostFacts
from provisioner.core.engine.verifier import Prober
from provisioner.core.persistence.audit import AuditWriter
from provisioner.core.persistence.lock import host_lock
from provisioner.core.persistence.report_file import REPORT_FILE
from provisioner.core.reliability.retry import RetryPolicy
from provisioner.core.use_cases.check import check_services, check_target
from provisioner.core.use_cases.provision import provision
from provisioner.core.use_cases.status import get_status

CYCLE_YAML = """\
    services:
      a:
        depends_on: [b]
      b:
        depends_on: [a]
"""

TARGETED_YAML = """\
    backend: mock
    target:
      os:
        - id: debian
          version: "12"
      min_ram_gb: 7
    services:
      a: {}
"""


class TestProvision:
    def test_mock_run_succeeds(self, chain_file, tmp_state_dir, fast_policy):
        result = provision(chain_file, mock=True, skip_probe=True, state_dir=tmp_state_dir, policy=fast_policy)

        assert result.exit_code == 0
        assert result.error is None
        assert result.report.healthy == ["a", "b", "c"]
        assert result.report.endpoints == {"a": "http://localhost:1000"}
        assert result.report_path == tmp_state_dir / REPORT_FILE
        assert result.report_path.exists()
        assert not (tmp_state_dir / "stamps").exists()

        entries = AuditWriter(tmp_state_dir).read_all()
        assert len(entries) == 1
        assert entries[0].outcome == "success"
        assert entries[0].services_total == 3

    def test_injected_backend_failure(self, chain_file, tmp_state_dir, fast_policy):
        backend = MockBackend()
        backend.set_failure("b")
        result = provision(
            chain_file, skip_probe=True, state_dir=tmp_state_dir, backend=backend, policy=fast_policy,
        )
        assert result.exit_code == 2
        assert result.report.failed == ["b"]
        assert result.report.skipped == ["c"]
        assert AuditWriter(tmp_state_dir).read_all()[0].errors

    def test_dry_run_touches_nothing(self, chain_file, tmp_path):
        state_dir = tmp_path / "never-created"
        backend = MockBackend()
        result = provision(chain_file, dry_run=True, state_dir=state_dir, backend=backend)

        assert result.exit_code == 0
        assert result.run.plan == ["a", "b", "c"]
        assert result.run.dry_run
        assert backend.apply_count == 0
        assert not state_dir.exists()

    def test_dry_run_reports_scaled_health_budget(self, chain_file, tmp_state_dir):
        result = provision(chain_file, dry_run=True, timeout_scale=2, state_dir=tmp_state_dir)

        assert result.health_budgets["a"] == {"attempts": 60, "max_wait_seconds": 59.0}
        assert result.to_dict()["health_budgets"]["c"]["attempts"] == 60

    def test_cycle_is_plan_error(self, write_set, tmp_state_dir):
        result = provision(write_set(CYCLE_YAML), mock=True, state_dir=tmp_state_dir)
        assert result.exit_code == 2
        assert result.error_kind == "plan"
        assert "cycle" in result.error
        assert not (tmp_state_dir / REPORT_FILE).exists()

    def test_missing_file_is_config_error(self, tmp_path, tmp_state_dir):
        result = provision(tmp_path / "nope.yml", state_dir=tmp_state_dir)
        assert result.exit_code == 2
        assert result.error_kind == "config"

    def test_unknown_backend(self, write_set, tmp_state_dir):
        path = write_set("backend: chef\nservices: {}\n")
        result = provision(path, skip_probe=True, state_dir=tmp_state_dir)
        assert result.exit_code == 2
        assert "Unknown backend" in result.error

    def test_preflight_failure_before_any_install(self, write_set, tmp_state_dir):
        backend = MockBackend()
        facts = HostFacts(os_id="ubuntu", os_version="24.04", ram_gb=32)
        result = provision(
            write_set(TARGETED_YAML), state_dir=tmp_state_dir, backend=backend, facts=facts,
        )
        assert result.exit_code == 3
        assert result.error_kind == "preflight"
        assert result.failures[0]["name"] == "os"
        assert backend.apply_count == 0

    def test_preflight_passes_with_matching_host(self, write_set, tmp_state_dir):
        facts = HostFacts(os_id="debian", os_version="12", ram_gb=16)
        result = provision(write_set(TARGETED_YAML), state_dir=tmp_state_dir, facts=facts)
        assert result.exit_code == 0
        assert result.run.target.os_id == "debian"

    def test_backend_tooling_missing_is_preflight(self, chain_file, tmp_state_dir):
        backend = MockBackend(available=False)
        result = provision(chain_file, skip_probe=True, state_dir=tmp_state_dir, backend=backend)

        assert result.exit_code == 3
        assert result.error_kind == "preflight"
        assert result.failures[0]["name"] == "backend"
        assert backend.apply_count == 0
        assert not (tmp_state_dir / REPORT_FILE).exists()

    def test_backend_tooling_not_required_in_mock_mode(self, chain_file, tmp_state_dir, fast_policy):
        backend = MockBackend(available=False)
        result = provision(
            chain_file, mock=True, skip_probe=True, state_dir=tmp_state_dir, backend=backend, policy=fast_policy,
        )
        assert result.exit_code == 0

    def test_lock_held(self, chain_file, tmp_state_dir):
        with host_lock(tmp_state_dir):
            result = provision(chain_file, mock=True, skip_probe=True, state_dir=tmp_state_dir)
        assert result.exit_code == 3
        assert result.error_kind == "lock"

    def test_cancelled_run_is_recorded(self, chain_file, tmp_state_dir):
        event = threading.Event()
        event.set()
        result = provision(
            chain_file, mock=True, skip_probe=True, state_dir=tmp_state_dir, cancel_event=event,
        )
        assert result.exit_code == 2
        assert result.run.metadata["cancelled"] is True
        assert result.report.skipped == ["a", "b", "c"]
        assert result.report_path.exists()

    def test_health_timeout_exit_code(self, chain_file, tmp_state_dir):
        backend = MockBackend()
        backend.set_inactive("c")
        result = provision(
            chain_file, skip_probe=True, state_dir=tmp_state_dir, backend=backend,
            policy=RetryPolicy.immediate(2),
        )
        assert result.exit_code == 2
        assert result.run.results["c"].error_kind == "health_timeout"

    def test_mock_debian_profile(self, tmp_state_dir, fast_policy):
        result = provision("debian12-rag", mock=True, skip_probe=True, state_dir=tmp_state_dir, policy=fast_policy)
        assert result.exit_code == 0
        assert result.run.backend == "mock:apt-systemd"
        assert result.report.endpoints["ollama"] == "http://127.0.0.1:11434"

    def test_mock_nixos_profile_converges_once(self, tmp_state_dir, fast_policy):
        result = provision("nixos-rag", mock=True, skip_probe=True, state_dir=tmp_state_dir, policy=fast_policy)
        assert result.exit_code == 0
        assert result.run.backend == "mock:nix-declarative"


class TestStatus:
    def test_no_report(self, tmp_state_dir: Path):
        result = get_status(tmp_state_dir)
        assert result.error is not None
        assert "No run report" in result.error

    def test_after_run(self, chain_file, tmp_state_dir, fast_policy):
        provision(chain_file, mock=True, skip_probe=True, state_dir=tmp_state_dir, policy=fast_policy)
        provision(chain_file, mock=True, skip_probe=True, state_dir=tmp_state_dir, policy=fast_policy)

        result = get_status(tmp_state_dir)
        assert result.error is None
        assert result.run.descriptor_set == "chain"
        assert result.summary["outcome"] == "success"
        assert len(result.history) == 2


class TestCheck:
    def test_services_with_injected_prober(self, chain_file):
        result = check_services(chain_file, prober=Prober(is_active=lambda unit: unit != "c"))
        assert result.health.status == "degraded"
        assert result.health.healthy_count == 2

    def test_fresh_mock_host_is_unhealthy(self, chain_file):
        result = check_services(chain_file, mock=True)
        assert result.health.status == "unhealthy"

    def test_services_config_error(self, tmp_path):
        result = check_services(tmp_path / "nope.yml")
        assert result.error is not None
        assert result.to_dict() == {"error": result.error}

    def test_target(self, write_set):
        path = write_set(TARGETED_YAML)
        assert check_target(path, HostFacts(os_id="debian", os_version="12", ram_gb=8)).ok

        result = check_target(path, HostFacts(os_id="debian", os_version="12", ram_gb=2))
        assert not result.ok
        assert result.failures[0]["name"] == "ram"
