"""
Tests for persistence — run report, audit ledger, host lock.
"""

import json
from pathlib import Path

import pytest

from provisioner.core.errors import LockError
from provisioner.core.models.run import ProvisioningRun, ServiceStatus
from provisioner.core.persistence.audit import AUDIT_FILE, AuditEntry, AuditWriter
from provisioner.core.persistence.lock import LOCK_FILE, host_lock
from provisioner.core.persistence.report_file import (
    REPORT_FILE,
    STATE_DIR_ENV,
    default_state_dir,
    load_report,
    save_report,
)


def _finished_run() -> ProvisioningRun:
    run = ProvisioningRun(run_id="run-20260101-000000-abcdef", descriptor_set="rag", backend="mock")
    run.init_results(["ollama", "webui"], {"ollama": "http://127.0.0.1:11434"})
    run.mark("ollama", ServiceStatus.HEALTHY, "healthy", attempts=3)
    run.mark("webui", ServiceStatus.FAILED, "not healthy", error_kind="health_timeout")
    run.finish()
    return run


# ── Run report ──────────────────────────────────────────────────────


class TestRunReport:
    def test_roundtrip(self, tmp_state_dir: Path):
        path = save_report(_finished_run(), tmp_state_dir, {"outcome": "failure"})
        assert path == tmp_state_dir / REPORT_FILE

        loaded = load_report(tmp_state_dir)
        assert loaded is not None
        run, summary = loaded
        assert run.run_id == "run-20260101-000000-abcdef"
        assert run.results["ollama"].attempts == 3
        assert run.results["webui"].error_kind == "health_timeout"
        assert summary == {"outcome": "failure"}

    def test_overwrites_previous(self, tmp_state_dir: Path):
        save_report(_finished_run(), tmp_state_dir)
        second = ProvisioningRun(run_id="run-2")
        save_report(second, tmp_state_dir)
        run, _ = load_report(tmp_state_dir)
        assert run.run_id == "run-2"

    def test_no_temp_files_left(self, tmp_state_dir: Path):
        save_report(_finished_run(), tmp_state_dir)
        assert [p.name for p in tmp_state_dir.iterdir()] == [REPORT_FILE]

    def test_creates_state_dir(self, tmp_path: Path):
        state_dir = tmp_path / "a" / "b"
        save_report(_finished_run(), state_dir)
        assert (state_dir / REPORT_FILE).exists()

    def test_missing_report(self, tmp_state_dir: Path):
        assert load_report(tmp_state_dir) is None

    def test_corrupt_report(self, tmp_state_dir: Path):
        (tmp_state_dir / REPORT_FILE).write_text("{not json")
        assert load_report(tmp_state_dir) is None

    def test_json_is_machine_readable(self, tmp_state_dir: Path):
        save_report(_finished_run(), tmp_state_dir)
        data = json.loads((tmp_state_dir / REPORT_FILE).read_text())
        assert data["run"]["results"]["webui"]["status"] == "failed"

    def test_default_state_dir_env(self, monkeypatch, tmp_path: Path):
        monkeypatch.setenv(STATE_DIR_ENV, str(tmp_path))
        assert default_state_dir() == tmp_path
        monkeypatch.delenv(STATE_DIR_ENV)
        assert default_state_dir() == Path("/var/lib/provisioner")


# ── Audit ───────────────────────────────────────────────────────────


class TestAuditWriter:
    def test_append_and_read(self, tmp_state_dir: Path):
        writer = AuditWriter(tmp_state_dir)
        writer.write(AuditEntry(run_id="r1", outcome="success"))
        writer.write(AuditEntry(run_id="r2", outcome="failure", failed=["webui"]))

        entries = writer.read_all()
        assert [e.run_id for e in entries] == ["r1", "r2"]
        assert entries[1].failed == ["webui"]
        assert len((tmp_state_dir / AUDIT_FILE).read_text().splitlines()) == 2

    def test_read_recent(self, tmp_state_dir: Path):
        writer = AuditWriter(tmp_state_dir)
        for i in range(5):
            writer.write(AuditEntry(run_id=f"r{i}"))
        assert [e.run_id for e in writer.read_recent(2)] == ["r3", "r4"]

    def test_corrupt_lines_skipped(self, tmp_state_dir: Path):
        writer = AuditWriter(tmp_state_dir)
        writer.write(AuditEntry(run_id="r1"))
        with writer.path.open("a") as f:
            f.write("garbage\n")
        writer.write(AuditEntry(run_id="r2"))
        assert [e.run_id for e in writer.read_all()] == ["r1", "r2"]

    def test_empty(self, tmp_state_dir: Path):
        assert AuditWriter(tmp_state_dir).read_all() == []

    def test_write_failure_not_raised(self, tmp_path: Path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        AuditWriter(blocker / "sub").write(AuditEntry(run_id="r1"))


# ── Lock ────────────────────────────────────────────────────────────


class TestHostLock:
    def test_acquire_and_release(self, tmp_state_dir: Path):
        with host_lock(tmp_state_dir) as path:
            assert path == tmp_state_dir / LOCK_FILE
        with host_lock(tmp_state_dir):
            pass

    def test_second_holder_rejected(self, tmp_state_dir: Path):
        with host_lock(tmp_state_dir):
            with pytest.raises(LockError, match="Another provisioning run"):
                with host_lock(tmp_state_dir):
                    pass

    def test_released_after_error(self, tmp_state_dir: Path):
        with pytest.raises(RuntimeError):
            with host_lock(tmp_state_dir):
                raise RuntimeError("boom")
        with host_lock(tmp_state_dir):
            pass
