"""
Artifact Aggregator — enrich requirement identifier lists from the
delivery-pipeline systems.

For one identifier list and one artifact kind the aggregator fetches every
identifier concurrently (fan-out), then joins (fan-in):

    - empty list           → [] with no outbound calls
    - every fetch ok       → one EnrichedArtifact per identifier, input order
    - any fetch fails      → [] for the whole list, failure logged

Partial lists are never returned: a half-enriched list would look complete.

Source per kind:

    story, task              → issue tracker  (IssueTrackerGateway)
    commit                   → source control (SourceControlGateway)
    test_case, deployment    → build server   (BuildServerGateway)

A test-case identifier is a case path in the build server test report, so
the linked view and ``test_results()`` read the same record.  Report
queries ``test_results()`` and ``deployment_statuses()`` classify outcomes:

    test result   → passed | failed | skipped | unknown   (failed=True on failed)
    deployment    → success if result == DEPLOYMENT_SUCCESS_RESULT, else rollback

The aggregator keeps no state between calls.

Usage:
    from app.services.artifact_aggregator import get_aggregator

    stories = get_aggregator().aggregate("story", ["PAY-101", "PAY-102"])
"""

from __future__ import annotations

import logging
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum

from flask import current_app

from app.core.exceptions import UpstreamAggregationError
from app.integrations.artifact_gateway import gateways_from_config

logger = logging.getLogger(__name__)

EXTENSION_KEY = "artifact_aggregator"


class ArtifactKind(str, Enum):
    STORY = "story"
    TASK = "task"
    TEST_CASE = "test_case"
    COMMIT = "commit"
    DEPLOYMENT = "deployment"


# kind → (Requirement column, key in the enriched view)
KIND_FIELDS = {
    ArtifactKind.STORY: ("user_story_ids", "userStories"),
    ArtifactKind.TASK: ("task_ids", "tasks"),
    ArtifactKind.TEST_CASE: ("test_case_ids", "testCases"),
    ArtifactKind.COMMIT: ("code_commit_ids", "codeCommits"),
    ArtifactKind.DEPLOYMENT: ("deployment_ids", "deployments"),
}

_KIND_SOURCE = {
    ArtifactKind.STORY: "jira",
    ArtifactKind.TASK: "jira",
    ArtifactKind.TEST_CASE: "jenkins",
    ArtifactKind.COMMIT: "github",
    ArtifactKind.DEPLOYMENT: "jenkins",
}

# Raw test outcomes seen across Jenkins JUnit reports and build results
_TEST_OUTCOMES = {
    "passed": "passed",
    "fixed": "passed",
    "success": "passed",
    "failed": "failed",
    "regression": "failed",
    "failure": "failed",
    "unstable": "failed",
    "skipped": "skipped",
    "not_built": "skipped",
}


@dataclass(frozen=True)
class EnrichedArtifact:
    """Source-tagged, normalised view of one external artifact."""

    kind: str
    source: str
    external_id: str
    display_key: str | None = None
    title: str | None = None
    status: str | None = None
    owner: str | None = None
    url: str | None = None
    failed: bool | None = None
    timestamp: str | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        return {
            "kind": data["kind"],
            "source": data["source"],
            "externalId": data["external_id"],
            "displayKey": data["display_key"],
            "title": data["title"],
            "status": data["status"],
            "owner": data["owner"],
            "url": data["url"],
            "failed": data["failed"],
            "timestamp": data["timestamp"],
        }


def _epoch_ms_to_iso(value) -> str | None:
    if value in (None, ""):
        return None
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc).isoformat()


def classify_test_outcome(raw) -> str:
    if not raw:
        return "unknown"
    return _TEST_OUTCOMES.get(str(raw).strip().lower(), "unknown")


class ArtifactAggregator:
    """Fan-out/fan-in enrichment over the three source gateways."""

    def __init__(self, gateways: dict, *, success_result: str = "SUCCESS", max_workers: int = 8) -> None:
        self.gateways = gateways
        self.success_result = success_result
        self.max_workers = max(1, int(max_workers))

    # ── Public queries ───────────────────────────────────────────────────────

    def aggregate(self, kind, ids) -> list[EnrichedArtifact]:
        """Fetch and normalise one EnrichedArtifact per identifier of *kind*."""
        kind = ArtifactKind(kind)
        source = _KIND_SOURCE[kind]
        if kind is ArtifactKind.COMMIT:
            normalize = self._normalize_commit
        elif kind is ArtifactKind.DEPLOYMENT:
            normalize = self._normalize_deployment
        elif kind is ArtifactKind.TEST_CASE:
            normalize = self._normalize_test_case
        else:
            normalize = self._normalize_issue
        return self._fan_out(kind.value, source, kind.value, ids, normalize)

    def test_results(self, ids) -> list[EnrichedArtifact]:
        return self._fan_out("test_result", "jenkins", "test_result", ids, self._normalize_test_result)

    def deployment_statuses(self, ids) -> list[EnrichedArtifact]:
        return self._fan_out(
            "deployment_status", "jenkins", "deployment", ids, self._normalize_deployment_status,
        )

    def aggregate_requirement(self, requirement) -> dict[str, list[dict]]:
        """Enrich all five identifier lists of *requirement* concurrently.

        A failing kind yields an empty list for that kind only.
        """
        with ThreadPoolExecutor(max_workers=len(KIND_FIELDS), thread_name_prefix="trace-kind") as pool:
            futures = {
                out_key: pool.submit(self.aggregate, kind, requirement.artifact_ids(field))
                for kind, (field, out_key) in KIND_FIELDS.items()
            }
            return {
                out_key: [artifact.to_dict() for artifact in future.result()]
                for out_key, future in futures.items()
            }

    # ── Fan-out / fan-in ─────────────────────────────────────────────────────

    def _fan_out(self, label, source, fetch_kind, ids, normalize) -> list[EnrichedArtifact]:
        ids = [str(i) for i in (ids or [])]
        if not ids:
            return []

        gateway = self.gateways.get(source)
        if gateway is None:
            logger.error("Aggregation failed kind=%s: no gateway for source=%s", label, source)
            return []

        pool = ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(ids)),
            thread_name_prefix=f"trace-{label}",
        )
        try:
            futures = [
                pool.submit(self._fetch_one, gateway, label, fetch_kind, external_id, normalize)
                for external_id in ids
            ]
            done, _pending = wait(futures, return_when=FIRST_EXCEPTION)
            failure = next((f.exception() for f in done if f.exception() is not None), None)
            if failure is not None:
                logger.error(
                    "Aggregation failed kind=%s ids=%d source=%s: %s",
                    label, len(ids), source, failure,
                )
                return []
            return [f.result() for f in futures]
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

    def _fetch_one(self, gateway, label, fetch_kind, external_id, normalize) -> EnrichedArtifact:
        result = gateway.fetch(fetch_kind, external_id)
        if not result.ok:
            raise UpstreamAggregationError(label, external_id, result.error)
        if not isinstance(result.data, dict) or not result.data:
            raise UpstreamAggregationError(label, external_id, "empty or non-object record")
        try:
            return normalize(gateway, label, external_id, result.data)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise UpstreamAggregationError(label, external_id, f"malformed record: {exc!r}") from exc

    # ── Normalisers (one per upstream record shape) ──────────────────────────

    def _normalize_issue(self, gateway, kind, external_id, data) -> EnrichedArtifact:
        fields = data.get("fields") or {}
        key = data["key"]
        return EnrichedArtifact(
            kind=kind,
            source=gateway.source,
            external_id=external_id,
            display_key=key,
            title=fields.get("summary"),
            status=(fields.get("status") or {}).get("name"),
            owner=(fields.get("assignee") or {}).get("displayName"),
            url=gateway.browse_link(key),
        )

    def _normalize_commit(self, gateway, kind, external_id, data) -> EnrichedArtifact:
        commit = data["commit"]
        author = commit.get("author") or {}
        sha = data.get("sha") or external_id
        message = commit.get("message") or ""
        return EnrichedArtifact(
            kind=kind,
            source=gateway.source,
            external_id=external_id,
            display_key=sha[:7],
            title=message.splitlines()[0] if message else None,
            status="committed",
            owner=author.get("name"),
            url=data.get("html_url"),
            timestamp=author.get("date"),
        )

    def _normalize_deployment(self, gateway, kind, external_id, data) -> EnrichedArtifact:
        raw = data.get("result")
        if raw:
            status = str(raw).lower()
        else:
            status = "in_progress" if data.get("building") else "unknown"
        return EnrichedArtifact(
            kind=kind,
            source=gateway.source,
            external_id=external_id,
            display_key=f"#{data.get('number', external_id)}",
            title=data.get("fullDisplayName") or data.get("displayName"),
            status=status,
            url=gateway.build_link(external_id),
            timestamp=_epoch_ms_to_iso(data.get("timestamp")),
        )

    def _normalize_test_case(self, gateway, kind, external_id, data) -> EnrichedArtifact:
        status = classify_test_outcome(data.get("status") or data.get("result"))
        return EnrichedArtifact(
            kind=kind,
            source=gateway.source,
            external_id=external_id,
            display_key=external_id,
            title=data.get("name") or data.get("className"),
            status=status,
            url=gateway.test_case_link(external_id),
        )

    def _normalize_test_result(self, gateway, kind, external_id, data) -> EnrichedArtifact:
        status = classify_test_outcome(data.get("status") or data.get("result"))
        return EnrichedArtifact(
            kind=kind,
            source=gateway.source,
            external_id=external_id,
            display_key=external_id,
            title=data.get("name") or data.get("className"),
            status=status,
            failed=status == "failed",
            timestamp=_epoch_ms_to_iso(data.get("timestamp")),
        )

    def _normalize_deployment_status(self, gateway, kind, external_id, data) -> EnrichedArtifact:
        raw = data.get("result")
        status = "success" if raw == self.success_result else "rollback"
        return EnrichedArtifact(
            kind=kind,
            source=gateway.source,
            external_id=external_id,
            display_key=f"#{data.get('number', external_id)}",
            status=status,
            url=gateway.build_link(external_id),
            timestamp=_epoch_ms_to_iso(data.get("timestamp")),
        )


# ── App wiring ───────────────────────────────────────────────────────────────


def init_aggregator(app) -> ArtifactAggregator:
    """Build the aggregator from app config and register it as an extension."""
    aggregator = ArtifactAggregator(
        gateways_from_config(app.config),
        success_result=app.config.get("DEPLOYMENT_SUCCESS_RESULT", "SUCCESS"),
        max_workers=app.config.get("AGGREGATION_MAX_WORKERS", 8),
    )
    app.extensions[EXTENSION_KEY] = aggregator
    return aggregator


def get_aggregator() -> ArtifactAggregator:
    return current_app.extensions[EXTENSION_KEY]
