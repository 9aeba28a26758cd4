"""
Shared pytest fixtures for the SDLC Traceability test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - upstream: fake Jira / GitHub / Jenkins behind the real gateways
    - make_caller / auth_headers: identities per role
    - make_requirement: persisted Requirement factory
"""

import json

import pytest
import requests

from app import create_app
from app.integrations.artifact_gateway import gateways_from_config
from app.models import db as _db
from app.models.requirement import Requirement
from app.services.artifact_aggregator import EXTENSION_KEY, ArtifactAggregator
from app.services.authorization import CallerContext
from app.services.jwt_service import generate_access_token


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Fake upstream systems ────────────────────────────────────────────────


def make_response(status_code: int, payload=None, *, raw: bytes | None = None) -> requests.Response:
    """Build a real requests.Response without touching the network."""
    resp = requests.Response()
    resp.status_code = status_code
    resp.encoding = "utf-8"
    if raw is not None:
        resp._content = raw
    else:
        resp._content = json.dumps(payload).encode() if payload is not None else b""
    return resp


class FakeUpstream:
    """Stands in for requests.Session; answers by exact URL.

    Unknown URLs answer 404, which the gateways do not retry, so failing
    fixtures never sleep.  Helper methods register records in the shape
    each upstream API returns them.
    """

    def __init__(self, config):
        self.config = config
        self.routes: dict[str, requests.Response] = {}
        self.calls: list[str] = []

    # requests.Session interface used by the gateways
    def request(self, method, url, **kwargs):
        self.calls.append(url)
        resp = self.routes.get(url)
        if resp is None:
            return make_response(404, {"errorMessages": ["not found"]})
        return resp

    def close(self):
        pass

    # ── Registration helpers ─────────────────────────────────────────────

    def issue(self, key, summary, *, status="Done", assignee=None):
        url = f"{self.config['JIRA_API_URL']}/issue/{key}"
        self.routes[url] = make_response(200, {
            "key": key,
            "fields": {
                "summary": summary,
                "status": {"name": status},
                "assignee": {"displayName": assignee} if assignee else None,
            },
        })

    def commit(self, sha, message, *, author="Robin Dev", date="2024-05-02T10:00:00Z"):
        url = (
            f"{self.config['GITHUB_API_URL']}/repos/{self.config['GITHUB_OWNER']}"
            f"/{self.config['GITHUB_REPO']}/commits/{sha}"
        )
        self.routes[url] = make_response(200, {
            "sha": sha,
            "html_url": f"https://github.test/acme/payments/commit/{sha}",
            "commit": {"message": message, "author": {"name": author, "date": date}},
        })

    def deployment(self, build_id, result, *, timestamp=1714644000000):
        url = f"{self.config['JENKINS_API_URL']}/job/{self.config['JENKINS_JOB_NAME']}/{build_id}/api/json"
        self.routes[url] = make_response(200, {
            "number": int(build_id),
            "result": result,
            "building": result is None,
            "fullDisplayName": f"{self.config['JENKINS_JOB_NAME']} #{build_id}",
            "timestamp": timestamp,
        })

    def test_result(self, case_path, status):
        url = (
            f"{self.config['JENKINS_API_URL']}/job/{self.config['JENKINS_TEST_JOB_NAME']}"
            f"/lastCompletedBuild/testReport/{case_path}/api/json"
        )
        self.routes[url] = make_response(200, {
            "name": case_path.rsplit("/", 1)[-1],
            "className": case_path.split("/", 1)[0],
            "status": status,
        })

    def fail(self, url_fragment):
        """Make every registered URL containing *url_fragment* answer 404."""
        for url in list(self.routes):
            if url_fragment in url:
                del self.routes[url]


@pytest.fixture()
def fake_response():
    return make_response


@pytest.fixture()
def upstream(app, monkeypatch):
    """Install an aggregator whose gateways talk to a FakeUpstream."""
    fake = FakeUpstream(app.config)
    aggregator = ArtifactAggregator(
        gateways_from_config(app.config, session=fake),
        success_result=app.config["DEPLOYMENT_SUCCESS_RESULT"],
        max_workers=app.config["AGGREGATION_MAX_WORKERS"],
    )
    monkeypatch.setitem(app.extensions, EXTENSION_KEY, aggregator)
    return fake


# ── Identities ───────────────────────────────────────────────────────────


@pytest.fixture()
def make_caller():
    def _make(role, username=None, source_address="10.0.0.7"):
        return CallerContext(username=username or f"{role}-user", role=role, source_address=source_address)
    return _make


@pytest.fixture()
def auth_headers():
    """Return a factory producing Authorization headers for a role."""
    def _make(role, username=None, **kwargs):
        token = generate_access_token(username or f"{role}-user", role, **kwargs)
        return {"Authorization": f"Bearer {token}"}
    return _make


# ── Data ─────────────────────────────────────────────────────────────────


@pytest.fixture()
def make_requirement():
    def _make(title="Refunds are idempotent", **kw):
        req = Requirement(
            title=title,
            status=kw.pop("status", "Approved"),
            created_by=kw.pop("created_by", "seed"),
            user_story_ids=kw.pop("user_story_ids", []),
            task_ids=kw.pop("task_ids", []),
            test_case_ids=kw.pop("test_case_ids", []),
            code_commit_ids=kw.pop("code_commit_ids", []),
            deployment_ids=kw.pop("deployment_ids", []),
            **kw,
        )
        _db.session.add(req)
        _db.session.commit()
        return req
    return _make
