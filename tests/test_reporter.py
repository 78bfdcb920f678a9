"""
Tests for the summary reporter — outcome classification and exit codes.
"""

from provisioner.core.engine.reporter import (
    EXIT_FAILURE,
    EXIT_PARTIAL,
    EXIT_SUCCESS,
    outcome_of,
    summarize,
)
from provisioner.core.models.run import ProvisioningRun, ServiceStatus, TargetInfo


def _run(statuses: dict[str, ServiceStatus], dry_run: bool = False) -> ProvisioningRun:
    run = ProvisioningRun(run_id="run-1", descriptor_set="s", dry_run=dry_run)
    run.init_results(list(statuses), {sid: f"http://{sid}" for sid in statuses})
    for sid, status in statuses.items():
        if status != ServiceStatus.PENDING:
            run.mark(sid, status, f"{sid} {status}")
    return run


class TestOutcomeOf:
    def test_all_healthy(self):
        assert outcome_of(3, 0, 3) == "success"

    def test_empty_set(self):
        assert outcome_of(0, 0, 0) == "success"

    def test_partial(self):
        assert outcome_of(2, 0, 3) == "partial_success"

    def test_any_failure(self):
        assert outcome_of(2, 1, 3) == "failure"

    def test_nothing_healthy(self):
        assert outcome_of(0, 0, 2) == "failure"


class TestSummarize:
    def test_success(self):
        report = summarize(_run({"a": ServiceStatus.HEALTHY, "b": ServiceStatus.HEALTHY}))
        assert report.outcome == "success"
        assert report.exit_code == EXIT_SUCCESS
        assert report.endpoints == {"a": "http://a", "b": "http://b"}
        assert report.reasons == {}

    def test_failure_lists_reasons(self):
        report = summarize(_run({
            "a": ServiceStatus.HEALTHY,
            "b": ServiceStatus.FAILED,
            "c": ServiceStatus.SKIPPED,
        }))
        assert report.exit_code == EXIT_FAILURE
        assert report.failed == ["b"]
        assert report.skipped == ["c"]
        assert set(report.reasons) == {"b", "c"}
        assert report.endpoints == {"a": "http://a"}
        assert report.total == 3

    def test_partial_success(self):
        report = summarize(_run({"a": ServiceStatus.HEALTHY, "b": ServiceStatus.SKIPPED}))
        assert report.outcome == "partial_success"
        assert report.exit_code == EXIT_PARTIAL

    def test_dry_run_is_success(self):
        report = summarize(_run({"a": ServiceStatus.PENDING}, dry_run=True))
        assert report.outcome == "success"
        assert report.pending == ["a"]

    def test_plan_order_preserved(self):
        report = summarize(_run({
            "z": ServiceStatus.HEALTHY,
            "a": ServiceStatus.HEALTHY,
            "m": ServiceStatus.HEALTHY,
        }))
        assert report.healthy == ["z", "a", "m"]

    def test_target_warnings_carried(self):
        run = _run({"a": ServiceStatus.HEALTHY})
        run.target = TargetInfo(warnings=["Only 1 CPU cores detected (recommended: 2+)"])
        assert summarize(run).warnings == ["Only 1 CPU cores detected (recommended: 2+)"]

    def test_to_dict(self):
        data = summarize(_run({"a": ServiceStatus.FAILED})).to_dict()
        assert data["outcome"] == "failure"
        assert data["exit_code"] == EXIT_FAILURE
        assert data["failed"] == ["a"]
