"""
Delivery-pipeline source gateways — issue tracker, source-control host,
build server.

All outbound HTTP calls to the systems that own linked artifacts go through
one of these classes.  Direct `requests` calls in services are FORBIDDEN.

Every gateway call is:
  - Authenticated (credential injected from config)
  - Retried: max 2 attempts, backoff 1 s → 4 s (404 is not retried)
  - Timed out: INTEGRATION_TIMEOUT seconds per request
  - Circuit-broken per source: ≥5 failures in 60 s → 30 s pause
  - Returned as a GatewayResult — gateways never raise

Threading: the aggregator fetches identifiers from worker threads, so the
circuit-breaker state is guarded by a lock.  requests.Session is shared
across those threads for connection pooling.

Testability: pass a mock `session` to any gateway instead of letting it
create a real requests.Session internally.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any

import requests

logger = logging.getLogger(__name__)

# ── Circuit breaker constants ──────────────────────────────────────────────
_CB_FAILURE_THRESHOLD = 5          # failures within window before opening
_CB_WINDOW_SECONDS = 60            # failure counting window (seconds)
_CB_OPEN_DURATION_SECONDS = 30     # how long circuit stays open

# ── Retry constants ────────────────────────────────────────────────────────
_RETRY_MAX = 2
_RETRY_BACKOFF_SECONDS = (1, 4)    # sleep[0] after 1st fail, sleep[1] after 2nd

# ── Default request timeout ────────────────────────────────────────────────
_DEFAULT_TIMEOUT = 30

_TEST_REPORT = "lastCompletedBuild/testReport"


class GatewayResult:
    """Structured return value from gateway calls.

    Attributes:
        ok:           True if the call succeeded (HTTP 2xx + no exception).
        status_code:  HTTP status code (None if network-level failure).
        data:         Parsed JSON response body (dict or list), else None.
        error:        Human-readable error message or None.
        duration_ms:  Round-trip latency in milliseconds.
    """

    def __init__(
        self,
        ok: bool,
        status_code: int | None,
        data: dict | list | None,
        error: str | None,
        duration_ms: int,
    ) -> None:
        self.ok = ok
        self.status_code = status_code
        self.data = data
        self.error = error
        self.duration_ms = duration_ms

    def __repr__(self):
        return f"<GatewayResult ok={self.ok} status={self.status_code} error={self.error!r}>"


class SourceGateway:
    """Base gateway for one upstream system.

    Subclasses declare which artifact kinds they serve (``kinds``), how to
    authenticate (``_auth_headers``) and where each record lives
    (``url_for``).
    """

    source = "generic"
    kinds: frozenset[str] = frozenset()

    def __init__(
        self,
        base_url: str,
        token: str = "",
        *,
        timeout: int = _DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
        retry_backoff: tuple[float, ...] = _RETRY_BACKOFF_SECONDS,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.token = token or ""
        self.timeout = timeout
        self.retry_backoff = retry_backoff
        # Inject custom session for testing; create real one lazily otherwise.
        self._session: requests.Session | None = session

        self._cb_lock = threading.Lock()
        self._cb_failures: list[datetime] = []
        self._cb_open_until: datetime | None = None

    # ── HTTP session ─────────────────────────────────────────────────────────

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def _auth_headers(self) -> dict:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    def url_for(self, kind: str, external_id: str) -> str:
        raise NotImplementedError

    # ── Circuit breaker ───────────────────────────────────────────────────────

    def _circuit_closed(self) -> bool:
        """Return True if the circuit allows calls; False if open (paused)."""
        now = datetime.now(timezone.utc)
        with self._cb_lock:
            if self._cb_open_until and now < self._cb_open_until:
                logger.warning(
                    "Circuit open for source=%s until %s", self.source, self._cb_open_until
                )
                return False

            window_start = now - timedelta(seconds=_CB_WINDOW_SECONDS)
            self._cb_failures = [f for f in self._cb_failures if f >= window_start]

            if len(self._cb_failures) >= _CB_FAILURE_THRESHOLD:
                self._cb_open_until = now + timedelta(seconds=_CB_OPEN_DURATION_SECONDS)
                logger.error(
                    "Circuit opened for source=%s: %d failures in %ds window",
                    self.source, len(self._cb_failures), _CB_WINDOW_SECONDS,
                )
                return False
        return True

    def _record_failure(self) -> None:
        with self._cb_lock:
            self._cb_failures.append(datetime.now(timezone.utc))

    def _record_success(self) -> None:
        """On success, reset failure history and close the circuit."""
        with self._cb_lock:
            self._cb_failures.clear()
            self._cb_open_until = None

    # ── Core request dispatcher ───────────────────────────────────────────────

    def request(self, method: str, url: str, *, params: dict | None = None) -> GatewayResult:
        """Execute an authenticated request with retries.  Never raises."""
        if not self.base_url:
            return GatewayResult(
                ok=False, status_code=None, data=None,
                error=f"{self.source} gateway is not configured", duration_ms=0,
            )
        if not self._circuit_closed():
            return GatewayResult(
                ok=False, status_code=None, data=None,
                error=f"Circuit breaker is open — {self.source} calls temporarily suspended",
                duration_ms=0,
            )

        headers = {"Accept": "application/json", **self._auth_headers()}
        kwargs: dict[str, Any] = {"headers": headers, "timeout": self.timeout}
        if params:
            kwargs["params"] = params

        last_error = "Unknown error"
        last_status: int | None = None
        duration_ms = 0

        for attempt in range(_RETRY_MAX + 1):  # 0, 1, 2
            try:
                t0 = time.perf_counter()
                resp = self.session.request(method, url, **kwargs)
                duration_ms = int((time.perf_counter() - t0) * 1000)
                last_status = resp.status_code

                if resp.ok:
                    self._record_success()
                    try:
                        data = resp.json() if resp.content else {}
                    except ValueError:
                        return GatewayResult(
                            ok=False, status_code=resp.status_code, data=None,
                            error="Response body is not valid JSON",
                            duration_ms=duration_ms,
                        )
                    return GatewayResult(
                        ok=True, status_code=resp.status_code, data=data,
                        error=None, duration_ms=duration_ms,
                    )

                last_error = f"HTTP {resp.status_code}: {resp.text[:500]}"
                if resp.status_code == 404:
                    # Unknown identifier; retrying will not change the answer.
                    break
                self._record_failure()
                logger.warning(
                    "%s request failed attempt=%d/%d status=%d url=%s",
                    self.source, attempt + 1, _RETRY_MAX + 1, resp.status_code, url,
                )

            except requests.Timeout:
                duration_ms = int(self.timeout * 1000)
                last_error = f"Request timed out after {self.timeout}s"
                self._record_failure()
                logger.warning(
                    "%s request timed out attempt=%d/%d url=%s",
                    self.source, attempt + 1, _RETRY_MAX + 1, url,
                )

            except requests.RequestException as exc:
                last_error = str(exc)[:500]
                self._record_failure()
                logger.warning(
                    "%s network error attempt=%d/%d url=%s error=%s",
                    self.source, attempt + 1, _RETRY_MAX + 1, url, last_error,
                )

            if attempt < _RETRY_MAX:
                sleep_s = self.retry_backoff[min(attempt, len(self.retry_backoff) - 1)]
                logger.info("Retrying %s request in %ss (attempt %d)", self.source, sleep_s, attempt + 2)
                time.sleep(sleep_s)

        return GatewayResult(
            ok=False, status_code=last_status, data=None,
            error=last_error, duration_ms=duration_ms,
        )

    def fetch(self, kind: str, external_id: str) -> GatewayResult:
        """GET the raw upstream record for one identifier of *kind*."""
        if kind not in self.kinds:
            return GatewayResult(
                ok=False, status_code=None, data=None,
                error=f"{self.source} does not serve artifact kind '{kind}'", duration_ms=0,
            )
        return self.request("GET", self.url_for(kind, external_id))


class IssueTrackerGateway(SourceGateway):
    """Jira REST API v2 — user stories and tasks."""

    source = "jira"
    kinds = frozenset({"story", "task"})

    def __init__(self, base_url: str, token: str = "", *, browse_url: str = "", **kwargs) -> None:
        super().__init__(base_url, token, **kwargs)
        self.browse_url = (browse_url or "").rstrip("/")

    def url_for(self, kind: str, external_id: str) -> str:
        return f"{self.base_url}/issue/{external_id}"

    def browse_link(self, key: str) -> str:
        return f"{self.browse_url}/browse/{key}" if self.browse_url else ""


class SourceControlGateway(SourceGateway):
    """GitHub REST API — commits of one repository."""

    source = "github"
    kinds = frozenset({"commit"})

    def __init__(self, base_url: str, token: str = "", *, owner: str = "", repo: str = "", **kwargs) -> None:
        super().__init__(base_url, token, **kwargs)
        self.owner = owner
        self.repo = repo

    def _auth_headers(self) -> dict:
        headers = {"Accept": "application/vnd.github+json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def url_for(self, kind: str, external_id: str) -> str:
        return f"{self.base_url}/repos/{self.owner}/{self.repo}/commits/{external_id}"


class BuildServerGateway(SourceGateway):
    """Jenkins JSON API — deployment builds, test cases and their results.

    Deployments are builds of ``job_name``.  Test cases are case entries in
    the test report of the last completed ``test_job_name`` build, the
    test-case identifier being the case path below ``testReport``; the same
    record serves the linked view and the report outcome.
    """

    source = "jenkins"
    kinds = frozenset({"deployment", "test_case", "test_result"})

    def __init__(
        self,
        base_url: str,
        token: str = "",
        *,
        browse_url: str = "",
        job_name: str = "",
        test_job_name: str = "",
        **kwargs,
    ) -> None:
        super().__init__(base_url, token, **kwargs)
        self.browse_url = (browse_url or "").rstrip("/")
        self.job_name = job_name
        self.test_job_name = test_job_name

    def _auth_headers(self) -> dict:
        # Token is the pre-encoded "user:api_token" pair
        return {"Authorization": f"Basic {self.token}"} if self.token else {}

    def url_for(self, kind: str, external_id: str) -> str:
        if kind in ("test_case", "test_result"):
            return f"{self.base_url}/job/{self.test_job_name}/{_TEST_REPORT}/{external_id}/api/json"
        return f"{self.base_url}/job/{self.job_name}/{external_id}/api/json"

    def build_link(self, build_id: str) -> str:
        return f"{self.browse_url}/job/{self.job_name}/{build_id}/" if self.browse_url else ""

    def test_case_link(self, case_path: str) -> str:
        if not self.browse_url:
            return ""
        return f"{self.browse_url}/job/{self.test_job_name}/{_TEST_REPORT}/{case_path}/"


def gateways_from_config(config, session: requests.Session | None = None) -> dict[str, SourceGateway]:
    """Build the three source gateways from a Flask config mapping.

    Returns a dict keyed by source name ("jira", "github", "jenkins").
    """
    timeout = int(config.get("INTEGRATION_TIMEOUT", _DEFAULT_TIMEOUT))
    return {
        "jira": IssueTrackerGateway(
            config.get("JIRA_API_URL", ""),
            config.get("JIRA_API_TOKEN", ""),
            browse_url=config.get("JIRA_BASE_URL", ""),
            timeout=timeout,
            session=session,
        ),
        "github": SourceControlGateway(
            config.get("GITHUB_API_URL", ""),
            config.get("GITHUB_API_TOKEN", ""),
            owner=config.get("GITHUB_OWNER", ""),
            repo=config.get("GITHUB_REPO", ""),
            timeout=timeout,
            session=session,
        ),
        "jenkins": BuildServerGateway(
            config.get("JENKINS_API_URL", ""),
            config.get("JENKINS_API_TOKEN", ""),
            browse_url=config.get("JENKINS_BASE_URL", ""),
            job_name=config.get("JENKINS_JOB_NAME", ""),
            test_job_name=config.get("JENKINS_TEST_JOB_NAME", ""),
            timeout=timeout,
            session=session,
        ),
    }
