"""
Tests for observability — logging setup and live health roll-up.
"""

import logging

import pytest

from provisioner.core.engine.verifier import Prober
from provisioner.core.models.descriptor import DescriptorSet
from provisioner.core.observability.health import ComponentHealth, SystemHealth, check_system_health
from provisioner.core.observability.logging_config import resolve_level, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


# ── Logging ─────────────────────────────────────────────────────────


class TestLogging:
    def test_resolve_level_precedence(self, monkeypatch):
        monkeypatch.delenv("PROV_LOG_LEVEL", raising=False)
        assert resolve_level(None) == "WARNING"
        monkeypatch.setenv("PROV_LOG_LEVEL", "INFO")
        assert resolve_level(None) == "INFO"
        assert resolve_level("DEBUG") == "DEBUG"

    def test_console_level(self, restore_root_logger, monkeypatch):
        monkeypatch.delenv("PROV_LOG_FILE", raising=False)
        setup_logging("INFO")
        root = logging.getLogger()
        assert root.level == logging.INFO
        assert len(root.handlers) == 1

    def test_unknown_level_falls_back(self, restore_root_logger, monkeypatch):
        monkeypatch.delenv("PROV_LOG_FILE", raising=False)
        setup_logging("LOUD")
        assert logging.getLogger().level == logging.WARNING

    def test_file_handler_from_env(self, restore_root_logger, monkeypatch, tmp_path):
        log_file = tmp_path / "provision.log"
        monkeypatch.setenv("PROV_LOG_FILE", str(log_file))
        monkeypatch.setenv("PROV_LOG_FILE_LEVEL", "DEBUG")
        setup_logging("WARNING")

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        logging.getLogger("provisioner.test").debug("written to file only")
        for handler in root.handlers:
            handler.flush()
        assert "written to file only" in log_file.read_text()
        root.handlers[-1].close()

    def test_transcript_appends_with_banner(self, restore_root_logger, monkeypatch, tmp_path):
        log_file = tmp_path / "var/log/aurora-rag/provisioner.log"
        monkeypatch.delenv("PROV_LOG_FILE_LEVEL", raising=False)
        for _ in range(2):
            setup_logging("INFO", log_file=str(log_file))
            logging.getLogger("provisioner.core.engine.executor").info("→ ollama")
            root = logging.getLogger()
            root.handlers[-1].close()

        lines = log_file.read_text().splitlines()
        assert sum("START" in line for line in lines) == 2
        assert "core.engine.executor  → ollama" in lines[-1]

    def test_unwritable_transcript_keeps_console(self, restore_root_logger, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        setup_logging("INFO", log_file=str(blocker / "provisioner.log"))
        assert len(logging.getLogger().handlers) == 1


# ── Health ──────────────────────────────────────────────────────────


class TestSystemHealth:
    def test_rollup(self):
        health = SystemHealth()
        assert health.status == "healthy"
        health.add(ComponentHealth(name="a", status="healthy"))
        assert health.status == "healthy"
        health.add(ComponentHealth(name="b", status="unhealthy"))
        assert health.status == "degraded"

    def test_all_unhealthy(self):
        health = SystemHealth()
        health.add(ComponentHealth(name="a", status="unhealthy"))
        assert health.status == "unhealthy"
        assert health.healthy_count == 0

    def test_check_system_health_details(self):
        ds = DescriptorSet.model_validate({
            "name": "s",
            "services": {
                "ollama": {"endpoint": "http://127.0.0.1:11434", "health": {"process": ""}},
                "plain": {},
            },
        })
        health = check_system_health(ds, Prober(is_active=lambda unit: True))
        data = health.to_dict()
        assert data["status"] == "healthy"
        assert data["components"][0]["details"] == {"probe": "process", "endpoint": "http://127.0.0.1:11434"}
        assert data["components"][1]["details"] == {"probe": "none"}
