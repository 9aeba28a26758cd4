"""
Artifact aggregation — fan-out/fan-in, all-or-nothing per list,
normalisation per kind, report classification.
"""

import threading

import pytest

from app.integrations.artifact_gateway import GatewayResult
from app.models.requirement import Requirement
from app.services.artifact_aggregator import (
    ArtifactAggregator,
    ArtifactKind,
    classify_test_outcome,
)


class StubGateway:
    """Answers from a {(kind, id): record} dict; anything else is a 404."""

    def __init__(self, source, records=None):
        self.source = source
        self.records = records or {}
        self.calls = []
        self._lock = threading.Lock()

    def fetch(self, kind, external_id):
        with self._lock:
            self.calls.append((kind, external_id))
        data = self.records.get((kind, external_id))
        if data is None:
            return GatewayResult(ok=False, status_code=404, data=None, error="HTTP 404", duration_ms=1)
        return GatewayResult(ok=True, status_code=200, data=data, error=None, duration_ms=1)

    def browse_link(self, key):
        return f"https://jira.test/browse/{key}"

    def build_link(self, build_id):
        return f"https://jenkins.test/job/deploy-prod/{build_id}/"

    def test_case_link(self, case_path):
        return f"https://jenkins.test/job/acceptance-tests/lastCompletedBuild/testReport/{case_path}/"


def _issue(key, summary, status="In Progress", assignee="Dana"):
    return {"key": key, "fields": {
        "summary": summary, "status": {"name": status}, "assignee": {"displayName": assignee},
    }}


@pytest.fixture()
def gateways():
    return {
        "jira": StubGateway("jira", {
            ("story", "PAY-1"): _issue("PAY-1", "Refund button"),
            ("story", "PAY-2"): _issue("PAY-2", "Refund email"),
            ("task", "PAY-10"): _issue("PAY-10", "Wire refund API", status="Done", assignee=None),
        }),
        "github": StubGateway("github", {
            ("commit", "a1b2c3d4e5"): {
                "sha": "a1b2c3d4e5",
                "html_url": "https://github.test/acme/payments/commit/a1b2c3d4e5",
                "commit": {"message": "Make refunds idempotent\n\nUses request keys.",
                           "author": {"name": "Robin", "date": "2024-05-02T10:00:00Z"}},
            },
        }),
        "jenkins": StubGateway("jenkins", {
            ("deployment", "41"): {"number": 41, "result": "SUCCESS", "timestamp": 1714644000000},
            ("deployment", "42"): {"number": 42, "result": "FAILURE", "timestamp": 1714647600000},
            ("deployment", "43"): {"number": 43, "result": None, "building": True},
            ("deployment", "44"): {"number": 44, "result": "ABORTED"},
            ("test_case", "RefundTest/twice"): {"name": "twice", "className": "RefundTest", "status": "PASSED"},
            ("test_result", "RefundTest/twice"): {"name": "twice", "status": "PASSED"},
            ("test_result", "RefundTest/partial"): {"name": "partial", "status": "REGRESSION"},
            ("test_result", "RefundTest/legacy"): {"name": "legacy", "status": "SKIPPED"},
            ("test_result", "RefundTest/odd"): {"name": "odd", "status": "FLAKY"},
        }),
    }


@pytest.fixture()
def aggregator(gateways):
    return ArtifactAggregator(gateways, success_result="SUCCESS", max_workers=4)


# ── aggregate() ──────────────────────────────────────────────────────────────


def test_empty_list_makes_no_calls(aggregator, gateways):
    assert aggregator.aggregate("story", []) == []
    assert aggregator.aggregate(ArtifactKind.COMMIT, None) == []
    assert all(not gw.calls for gw in gateways.values())


def test_preserves_input_order(aggregator):
    result = aggregator.aggregate("story", ["PAY-2", "PAY-1"])
    assert [a.external_id for a in result] == ["PAY-2", "PAY-1"]


def test_one_failing_id_empties_the_whole_list(aggregator, gateways):
    assert aggregator.aggregate("story", ["PAY-1", "PAY-404", "PAY-2"]) == []
    assert ("story", "PAY-404") in gateways["jira"].calls


def test_malformed_record_empties_the_list(aggregator, gateways):
    gateways["jira"].records[("story", "PAY-3")] = {"fields": {"summary": "no key"}}
    assert aggregator.aggregate("story", ["PAY-1", "PAY-3"]) == []


def test_issue_normalisation(aggregator):
    [story] = aggregator.aggregate("story", ["PAY-1"])
    assert story.to_dict() == {
        "kind": "story",
        "source": "jira",
        "externalId": "PAY-1",
        "displayKey": "PAY-1",
        "title": "Refund button",
        "status": "In Progress",
        "owner": "Dana",
        "url": "https://jira.test/browse/PAY-1",
        "failed": None,
        "timestamp": None,
    }
    [task] = aggregator.aggregate("task", ["PAY-10"])
    assert task.owner is None
    assert task.status == "Done"


def test_test_case_normalisation(aggregator, gateways):
    [case] = aggregator.aggregate("test_case", ["RefundTest/twice"])
    assert case.source == "jenkins"
    assert case.display_key == "RefundTest/twice"
    assert case.title == "twice"
    assert case.status == "passed"
    assert case.failed is None
    assert case.url == "https://jenkins.test/job/acceptance-tests/lastCompletedBuild/testReport/RefundTest/twice/"
    assert gateways["jira"].calls == []


def test_commit_normalisation(aggregator):
    [commit] = aggregator.aggregate("commit", ["a1b2c3d4e5"])
    assert commit.source == "github"
    assert commit.display_key == "a1b2c3d"
    assert commit.title == "Make refunds idempotent"
    assert commit.owner == "Robin"
    assert commit.timestamp == "2024-05-02T10:00:00Z"


def test_deployment_normalisation(aggregator):
    ok, failed, running = aggregator.aggregate("deployment", ["41", "42", "43"])
    assert ok.status == "success"
    assert ok.display_key == "#41"
    assert ok.timestamp.startswith("2024-05-02T10:00:00")
    assert failed.status == "failure"
    assert running.status == "in_progress"


def test_unknown_kind_rejected(aggregator):
    with pytest.raises(ValueError):
        aggregator.aggregate("epic", ["PAY-1"])


# ── report queries ───────────────────────────────────────────────────────────


@pytest.mark.parametrize("raw, expected", [
    ("PASSED", "passed"), ("fixed", "passed"),
    ("FAILED", "failed"), ("REGRESSION", "failed"),
    ("SKIPPED", "skipped"),
    ("FLAKY", "unknown"), (None, "unknown"), ("", "unknown"),
])
def test_classify_test_outcome(raw, expected):
    assert classify_test_outcome(raw) == expected


def test_test_results_flag_failures(aggregator):
    results = aggregator.test_results(
        ["RefundTest/twice", "RefundTest/partial", "RefundTest/legacy", "RefundTest/odd"],
    )
    assert [(r.status, r.failed) for r in results] == [
        ("passed", False), ("failed", True), ("skipped", False), ("unknown", False),
    ]
    assert all(r.kind == "test_result" for r in results)


def test_deployment_status_success_only_on_exact_result(aggregator):
    statuses = aggregator.deployment_statuses(["41", "42", "43", "44"])
    assert [d.status for d in statuses] == ["success", "rollback", "rollback", "rollback"]


def test_custom_success_token(gateways):
    gateways["jenkins"].records[("deployment", "50")] = {"number": 50, "result": "DEPLOYED"}
    aggregator = ArtifactAggregator(gateways, success_result="DEPLOYED")
    [status] = aggregator.deployment_statuses(["50"])
    assert status.status == "success"


def test_test_results_failure_is_empty(aggregator):
    assert aggregator.test_results(["RefundTest/twice", "RefundTest/missing"]) == []


# ── aggregate_requirement() ──────────────────────────────────────────────────


def test_aggregate_requirement_isolates_failing_kind(aggregator):
    req = Requirement(
        title="Refunds are idempotent",
        user_story_ids=["PAY-1"],
        task_ids=["PAY-10"],
        test_case_ids=["RefundTest/twice"],
        code_commit_ids=["a1b2c3d4e5", "deadbeef"],   # second commit unknown
        deployment_ids=["41"],
    )
    view = aggregator.aggregate_requirement(req)

    assert set(view) == {"userStories", "tasks", "testCases", "codeCommits", "deployments"}
    assert [s["externalId"] for s in view["userStories"]] == ["PAY-1"]
    assert view["tasks"][0]["title"] == "Wire refund API"
    assert view["testCases"][0]["kind"] == "test_case"
    assert view["testCases"][0]["source"] == "jenkins"
    assert view["codeCommits"] == []
    assert view["deployments"][0]["status"] == "success"


def test_missing_gateway_yields_empty_list(gateways):
    del gateways["github"]
    aggregator = ArtifactAggregator(gateways)
    assert aggregator.aggregate("commit", ["a1b2c3d4e5"]) == []
