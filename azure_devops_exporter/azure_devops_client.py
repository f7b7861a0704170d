"""HTTP client for the Azure DevOps REST API.

All collectors share one client. It bounds the number of requests in flight,
retries transient failures with backoff and follows continuation tokens for
list resources, so collectors only deal with the resource model.
"""

import logging
import threading
import time
from collections.abc import Iterator
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Literal

import requests

from azure_devops_exporter import __version__, constants
from azure_devops_exporter.auth.providers import AuthProvider, TokenEndpointUnavailable
from azure_devops_exporter.settings import LimitSettings, RequestSettings

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
# Only these responses carry a meaningful Retry-After
RETRY_AFTER_STATUS_CODES = frozenset({429, 503})

TRANSIENT_EXCEPTIONS = (
    requests.ConnectionError,
    requests.Timeout,
    requests.exceptions.ChunkedEncodingError,
)


class ClientError(Exception):
    """Base class for errors raised by the Azure DevOps client."""


class RemoteUnavailable(ClientError):
    """Exception raised when a request keeps failing after all retries.

    The last underlying failure is kept in `cause` (and chained as
    `__cause__`).
    """

    def __init__(self, message: str, cause: BaseException):
        super().__init__(message)
        self.cause = cause


class ApiError(ClientError):
    """Exception raised for a non-retryable error response."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code


class _TransientFailure(Exception):
    def __init__(self, cause: BaseException, retry_after: float | None = None):
        super().__init__(str(cause))
        self.cause = cause
        self.retry_after = retry_after


@dataclass(frozen=True)
class ApiRequest:
    """A single call against the REST API.

    `resource` is the path below `_apis/`. `area` selects the service host
    (e.g. `vsrm` for release management); None means the core host.
    """

    resource: str
    project: str | None = None
    area: str | None = None
    method: str = "GET"
    params: dict[str, Any] = field(default_factory=dict)
    body: Any = None
    continuation_token: str | None = None


@dataclass(frozen=True)
class ApiResponse:
    payload: Any
    status_code: int
    continuation_token: str | None = None


class RetryPolicy:
    """Retry budget and backoff between attempts of one logical request."""

    def __init__(
        self,
        retries: int = constants.DEFAULT_RETRIES,
        backoff: Literal["exponential", "fixed"] = "exponential",
        wait: float = constants.DEFAULT_RETRY_WAIT,
        max_wait: float = constants.DEFAULT_RETRY_MAX_WAIT,
    ):
        self.retries = retries
        self.backoff = backoff
        self.wait = wait
        self.max_wait = max_wait

    @classmethod
    def from_settings(cls, settings: RequestSettings) -> "RetryPolicy":
        return cls(
            retries=settings.retries,
            backoff=settings.retry_backoff,
            wait=settings.retry_wait,
            max_wait=settings.retry_max_wait,
        )

    def delay(self, attempt: int, retry_after: float | None = None) -> float:
        """Seconds to wait before retry number `attempt` (starting at 1)."""
        if self.backoff == "exponential":
            delay = self.wait * 2 ** (attempt - 1)
        else:
            delay = self.wait
        if retry_after is not None:
            delay = max(delay, retry_after)
        return min(delay, self.max_wait)


def _parse_retry_after(response: requests.Response) -> float | None:
    if response.status_code not in RETRY_AFTER_STATUS_CODES:
        return None
    value = response.headers.get("Retry-After")
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


def _items(payload: Any) -> list:
    if payload is None:
        return []
    if isinstance(payload, list):
        return payload
    return payload.get("value", [])


def format_time(value: datetime) -> str:
    """Format a datetime the way the REST API expects in query parameters."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class AzureDevopsClient:
    """Client for the Azure DevOps REST API.

    The organisation, API version and service hosts are fixed at construction.
    """

    def __init__(
        self,
        organisation: str,
        auth_provider: AuthProvider,
        api_version: str = constants.AZURE_DEVOPS_API_VERSION,
        url: str | None = None,
        request_settings: RequestSettings | None = None,
        limits: LimitSettings | None = None,
        session: requests.Session | None = None,
    ):
        """Initialize the Azure DevOps client.

        Args:
            organisation: Azure DevOps organisation (or collection) name
            auth_provider: Provider of the Authorization header
            api_version: Value of the api-version query parameter
            url: Collection URL for Azure DevOps Server; None for the cloud service
            request_settings: Concurrency, retry and timeout settings
            limits: Result count limits per resource kind
            session: requests session to reuse
        """
        request_settings = request_settings or RequestSettings()

        self.organisation = organisation
        self.api_version = api_version
        self.auth_provider = auth_provider
        self.limits = limits or LimitSettings()
        self.concurrency_limit = request_settings.concurrency_limit
        self.timeout = request_settings.timeout
        self.retry_policy = RetryPolicy.from_settings(request_settings)

        self._host_url = url.rstrip("/") if url else None
        self._slots = threading.BoundedSemaphore(self.concurrency_limit)

        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "User-Agent": constants.USER_AGENT.format(version=__version__),
                "Accept": "application/json",
            }
        )

    def base_url(self, area: str | None = None) -> str:
        """Organisation URL for the given service area."""
        if self._host_url:
            return f"{self._host_url}/{self.organisation}"
        host = f"{area}.{constants.AZURE_DEVOPS_HOST}" if area else constants.AZURE_DEVOPS_HOST
        return f"https://{host}/{self.organisation}"

    def build_url(self, request: ApiRequest) -> str:
        base = self.base_url(request.area)
        if request.project:
            return f"{base}/{request.project}/_apis/{request.resource}"
        return f"{base}/_apis/{request.resource}"

    def _send(self, request: ApiRequest) -> ApiResponse:
        url = self.build_url(request)
        params = {**request.params, "api-version": self.api_version}
        if request.continuation_token:
            params["continuationToken"] = request.continuation_token
        try:
            headers = self.auth_provider.get_auth_header()
        except TokenEndpointUnavailable as e:
            raise _TransientFailure(e) from e

        with self._slots:
            try:
                response = self._session.request(
                    request.method,
                    url,
                    params=params,
                    json=request.body,
                    headers=headers,
                    timeout=self.timeout,
                )
            except TRANSIENT_EXCEPTIONS as e:
                raise _TransientFailure(e) from e

        if response.status_code in RETRYABLE_STATUS_CODES:
            raise _TransientFailure(
                requests.HTTPError(
                    f"{request.method} {url} returned {response.status_code}",
                    response=response,
                ),
                retry_after=_parse_retry_after(response),
            )

        if response.status_code >= 400:
            logger.error(
                "Request %s %s failed, response: %d: %s",
                request.method,
                url,
                response.status_code,
                response.text,
            )
            raise ApiError(
                response.status_code,
                f"{request.method} {url} failed with response code: {response.status_code}",
            )

        try:
            payload = response.json() if response.content else None
        except ValueError as e:
            raise ApiError(
                response.status_code, f"{request.method} {url} returned invalid JSON"
            ) from e

        continuation_token = response.headers.get(constants.CONTINUATION_TOKEN_HEADER)
        if not continuation_token and isinstance(payload, dict):
            continuation_token = payload.get("continuationToken")

        return ApiResponse(
            payload=payload,
            status_code=response.status_code,
            continuation_token=continuation_token or None,
        )

    def execute(self, request: ApiRequest) -> ApiResponse:
        """Execute one request, retrying transient failures.

        Raises:
            RemoteUnavailable: If the request still fails after all retries
            ApiError: If the server answers with a non-retryable error
            AuthenticationError: If no access token can be obtained
        """
        policy = self.retry_policy
        failure: _TransientFailure | None = None

        for attempt in range(policy.retries + 1):
            if failure is not None:
                delay = policy.delay(attempt, failure.retry_after)
                logger.warning(
                    "Request to %s failed (%s), retrying in %.1fs (attempt %d/%d)",
                    request.resource,
                    failure.cause,
                    delay,
                    attempt,
                    policy.retries,
                )
                time.sleep(delay)
            try:
                return self._send(request)
            except _TransientFailure as e:
                failure = e

        raise RemoteUnavailable(
            f"Request to {request.resource} failed after {policy.retries} retries: {failure.cause}",
            failure.cause,
        ) from failure.cause

    def iter_items(self, request: ApiRequest, limit: int | None = None) -> Iterator[Any]:
        """Lazily yield the items of a list resource across all pages.

        Stops when the server announces no further page or `limit` items have
        been yielded.
        """
        if limit is not None:
            if limit <= 0:
                return
            if "$top" not in request.params:
                request = replace(request, params={**request.params, "$top": limit})

        count = 0
        while True:
            response = self.execute(request)
            for item in _items(response.payload):
                yield item
                count += 1
                if limit is not None and count >= limit:
                    return
            if not response.continuation_token:
                return
            request = replace(request, continuation_token=response.continuation_token)

    def list_items(self, request: ApiRequest, limit: int | None = None) -> list:
        return list(self.iter_items(request, limit=limit))

    # Core

    def list_projects(self) -> list[dict]:
        return self.list_items(
            ApiRequest("projects", params={"stateFilter": "wellFormed"}),
            limit=self.limits.project,
        )

    # Agent pools

    def list_agent_pools(self) -> list[dict]:
        return self.list_items(ApiRequest("distributedtask/pools"))

    def list_agent_pool_agents(self, pool_id: int) -> list[dict]:
        return self.list_items(
            ApiRequest(
                f"distributedtask/pools/{pool_id}/agents",
                params={"includeAssignedRequest": "true"},
            )
        )

    def list_agent_pool_jobs(self, pool_id: int) -> list[dict]:
        return self.list_items(ApiRequest(f"distributedtask/pools/{pool_id}/jobrequests"))

    # Git

    def list_repositories(self, project: str) -> list[dict]:
        return self.list_items(ApiRequest("git/repositories", project=project))

    def list_repository_commits(
        self, project: str, repository_id: str, from_date: datetime
    ) -> list[dict]:
        return self.list_items(
            ApiRequest(
                f"git/repositories/{repository_id}/commits",
                project=project,
                params={"searchCriteria.fromDate": format_time(from_date)},
            )
        )

    def list_repository_pushes(
        self, project: str, repository_id: str, from_date: datetime
    ) -> list[dict]:
        return self.list_items(
            ApiRequest(
                f"git/repositories/{repository_id}/pushes",
                project=project,
                params={"searchCriteria.fromDate": format_time(from_date)},
            )
        )

    def list_pull_requests(self, project: str, repository_id: str) -> list[dict]:
        return self.list_items(
            ApiRequest(
                f"git/repositories/{repository_id}/pullrequests",
                project=project,
                params={"searchCriteria.status": "active"},
            )
        )

    # Builds

    def list_build_definitions(self, project: str) -> list[dict]:
        return self.list_items(ApiRequest("build/definitions", project=project))

    def list_latest_builds(self, project: str) -> list[dict]:
        """Latest build of every definition, newest first."""
        return self.list_items(
            ApiRequest(
                "build/builds",
                project=project,
                params={"maxBuildsPerDefinition": 1, "queryOrder": "finishTimeDescending"},
            ),
            limit=self.limits.builds_per_project,
        )

    def list_builds(self, project: str, min_time: datetime) -> list[dict]:
        """Builds queued since `min_time`, newest first."""
        return self.list_items(
            ApiRequest(
                "build/builds",
                project=project,
                params={
                    "minTime": format_time(min_time),
                    "maxBuildsPerDefinition": self.limits.builds_per_definition,
                    "queryOrder": "queueTimeDescending",
                },
            ),
            limit=self.limits.builds_per_project,
        )

    def get_build_resource_usage(self) -> dict:
        return self.execute(ApiRequest("build/resourceusage")).payload or {}

    # Releases

    def list_release_definitions(self, project: str) -> list[dict]:
        return self.list_items(
            ApiRequest("release/definitions", project=project, area="vsrm"),
            limit=self.limits.release_definitions_per_project,
        )

    def list_releases(
        self,
        project: str,
        definition_id: int | None = None,
        min_time: datetime | None = None,
    ) -> list[dict]:
        """Releases of one definition, or of the whole project, newest first."""
        params: dict[str, Any] = {"$expand": "environments", "queryOrder": "descending"}
        if definition_id is not None:
            params["definitionId"] = definition_id
            limit = self.limits.releases_per_definition
        else:
            limit = self.limits.releases_per_project
        if min_time is not None:
            params["minCreatedTime"] = format_time(min_time)
        return self.list_items(
            ApiRequest("release/releases", project=project, area="vsrm", params=params),
            limit=limit,
        )

    def list_deployments(self, project: str, definition_id: int) -> list[dict]:
        return self.list_items(
            ApiRequest(
                "release/deployments",
                project=project,
                area="vsrm",
                params={"definitionId": definition_id, "queryOrder": "descending"},
            ),
            limit=self.limits.deployment_per_definition,
        )

    # Work items

    def run_query(self, project: str, query_id: str) -> dict:
        """Run a stored WIQL query and return the raw result."""
        return self.execute(ApiRequest(f"wit/wiql/{query_id}", project=project)).payload or {}
