"""
GitHub pull request data source

Pages through a repository's pull requests with the GraphQL API, newest
first, until the time window is covered, then turns them into metrics with
PullRequestMetricCalculator.

Usage:
    client = GitHubClient(token=config.github.token)
    source = GitHubDataSource(client, owner="acme", repo="api")
    result = await source.fetch(progress_callback, time_window=30)
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from core.circuit_breaker import CircuitBreaker, get_source_breaker
from core.errors import UpstreamError
from services.metrics.calculator import PullRequest, PullRequestMetricCalculator
from services.metrics.models import SourceFetchResult

from .base import DataSource, ProgressCallback

logger = logging.getLogger(__name__)

GITHUB_GRAPHQL_URL = "https://api.github.com/graphql"
PAGE_SIZE = 100

PULL_REQUESTS_QUERY = """
query($owner: String!, $repo: String!, $cursor: String) {
  repository(owner: $owner, name: $repo) {
    pullRequests(first: 100, after: $cursor, orderBy: {field: CREATED_AT, direction: DESC}) {
      pageInfo {
        hasNextPage
        endCursor
      }
      nodes {
        number
        title
        state
        author { login }
        createdAt
        closedAt
        mergedAt
        commits { totalCount }
        additions
        deletions
        changedFiles
      }
    }
  }
}
"""


def is_retryable(error: BaseException) -> bool:
    """Transport failures and 5xx answers are worth another attempt."""
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code >= 500
    return isinstance(error, httpx.TransportError)


class GitHubClient:
    """Minimal GitHub GraphQL client."""

    def __init__(
        self,
        token: str,
        api_url: str = GITHUB_GRAPHQL_URL,
        breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ):
        self.token = token
        self.api_url = api_url
        self.breaker = breaker or get_source_breaker("github")
        self._transport = transport
        self._timeout = timeout
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                headers={
                    "Authorization": f"Bearer {self.token}",
                    "Accept": "application/vnd.github+json",
                },
            )
        return self._http_client

    async def close(self):
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    @retry(
        retry=retry_if_exception(is_retryable),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _post(self, query: str, variables: dict[str, Any]) -> dict:
        client = await self._get_client()
        response = await client.post(self.api_url, json={"query": query, "variables": variables})
        response.raise_for_status()
        return response.json()

    async def query(self, query: str, variables: dict[str, Any]) -> dict:
        """
        Run one GraphQL query and return its `data` object.

        Raises:
            UpstreamError: The response carried GraphQL errors
            CircuitBreakerOpen: GitHub failed too often recently
            httpx.HTTPError: Transport or HTTP failure after retries
        """
        payload = await self.breaker.call(self._post, query, variables)
        if payload.get("errors"):
            messages = "; ".join(e.get("message", "unknown error") for e in payload["errors"])
            raise UpstreamError(f"GitHub GraphQL error: {messages}")
        return payload.get("data") or {}


def parse_pull_request(node: dict) -> PullRequest:
    """Map one GraphQL pull request node onto the PullRequest model."""
    state = (node.get("state") or "").lower()
    return PullRequest(
        number=node["number"],
        title=node.get("title") or "",
        state=state if state in ("open", "closed", "merged") else "closed",
        author=(node.get("author") or {}).get("login") or "unknown",
        created_at=node["createdAt"],
        merged_at=node.get("mergedAt"),
        closed_at=node.get("closedAt"),
        additions=node.get("additions") or 0,
        deletions=node.get("deletions") or 0,
        changed_files=node.get("changedFiles") or 0,
        commits=(node.get("commits") or {}).get("totalCount") or 0,
    )


class GitHubDataSource(DataSource):
    """Pull request metrics for one repository."""

    name = "GitHub"

    def __init__(
        self,
        client: GitHubClient,
        owner: str,
        repo: str,
        max_pages: int = 100,
        calculator: Optional[PullRequestMetricCalculator] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.client = client
        self.owner = owner
        self.repo = repo
        self.max_pages = max_pages
        self.calculator = calculator or PullRequestMetricCalculator(clock=clock)
        self._clock = clock

    async def fetch(
        self,
        progress_callback: Optional[ProgressCallback] = None,
        time_window: int = 90,
    ) -> SourceFetchResult:
        since = self._clock() - timedelta(days=time_window)
        if progress_callback:
            progress_callback(0, 100, "Fetching pull requests")

        fetched = await self._fetch_pull_requests(since, progress_callback)
        pull_requests = [pr for pr in fetched if pr.created_at >= since]
        metrics = self.calculator.calculate(pull_requests)

        if progress_callback:
            progress_callback(100, 100, "Finished processing")

        logger.info(
            f"GitHub {self.owner}/{self.repo}: {len(pull_requests)} pull requests "
            f"in the last {time_window} days ({len(fetched)} fetched)"
        )
        return SourceFetchResult(
            metrics=metrics,
            stats={
                "totalPRs": len(pull_requests),
                "fetchedPRs": len(fetched),
                "timePeriod": time_window,
            },
        )

    async def _fetch_pull_requests(
        self,
        since: datetime,
        progress_callback: Optional[ProgressCallback],
    ) -> list[PullRequest]:
        pull_requests: list[PullRequest] = []
        cursor = None
        estimated_total = 0

        for page in range(self.max_pages):
            data = await self.client.query(
                PULL_REQUESTS_QUERY,
                {"owner": self.owner, "repo": self.repo, "cursor": cursor},
            )
            repository = data.get("repository")
            if repository is None:
                raise UpstreamError(f"Repository {self.owner}/{self.repo} not found")

            connection = repository["pullRequests"]
            page_prs = [parse_pull_request(node) for node in connection["nodes"]]
            pull_requests.extend(page_prs)

            # The real total is unknown until the cutoff; assume one more page
            if estimated_total == 0:
                estimated_total = max(PAGE_SIZE, len(page_prs) * 2)
            if len(pull_requests) >= estimated_total:
                estimated_total = len(pull_requests) + PAGE_SIZE

            if progress_callback:
                progress_callback(
                    len(pull_requests),
                    estimated_total,
                    f"Fetched {len(pull_requests)} pull requests",
                )

            if page_prs and page_prs[-1].created_at < since:
                break
            if not connection["pageInfo"]["hasNextPage"]:
                break
            cursor = connection["pageInfo"]["endCursor"]
        else:
            logger.warning(
                f"GitHub {self.owner}/{self.repo}: stopped after {self.max_pages} pages"
            )

        return pull_requests
