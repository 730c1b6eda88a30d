"""
GitHub API client (source-control gateway).

Thin async wrapper over the GitHub REST API used by the PR bot, commit
statuses and deployment statuses. Every remote failure is classified into
a NotificationError:
- HTTP 404: ACCESS_DENIED (repo, PR or org not visible to the token)
- HTTP 403: RATE_LIMITED
- anything else, including timeouts: TRANSIENT_FAILURE, surfaced to the
  caller and never retried here
"""

import random
from typing import Any, Dict, List, Optional

import httpx

from notifier.models.comment import BotComment, CommitStatus, PullRequestSummary
from notifier.models.error import NotificationError
from notifier.utils.logging import get_logger
from notifier.utils.metrics import JobMetrics, emit_metric, track_api_call

logger = get_logger(__name__)

USER_AGENT = "notifier.runnable.com"


def split_repo(short_repo: str) -> tuple[str, str]:
    """Split 'owner/name' into its parts."""
    owner, _, name = short_repo.partition("/")
    if not owner or not name:
        raise ValueError(f"Repository must be in 'owner/name' form: {short_repo!r}")
    return owner, name


class GitHubClient:
    """Async GitHub REST client with domain error classification."""

    def __init__(
        self,
        token: str,
        api_url: str = "https://api.github.com",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the GitHub client.

        Args:
            token: OAuth token used for every request
            api_url: GitHub API base URL
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self._client = httpx.AsyncClient(
            base_url=api_url,
            headers={
                "Authorization": f"token {token}",
                "Accept": "application/vnd.github+json",
                "User-Agent": USER_AGENT,
            },
            timeout=timeout,
            transport=transport,
        )
        self.metrics: Optional[JobMetrics] = None

    @classmethod
    def for_bot(cls, settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> "GitHubClient":
        """
        Client authenticated as the bot account.

        One of the configured bot tokens is picked at random to spread the
        rate limit across them.

        Raises:
            ValueError: If no bot token is configured
        """
        tokens = settings.bot_tokens
        if not tokens:
            raise ValueError("Configuration error: runnabot GitHub access token is not defined")
        return cls(
            token=random.choice(tokens),
            api_url=settings.github_api_url,
            timeout=settings.github_timeout_seconds,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    # ========== Request plumbing ==========

    async def _request(
        self,
        method: str,
        path: str,
        message: str,
        query: Dict[str, Any],
        **kwargs: Any
    ) -> httpx.Response:
        """
        Perform a request and classify failures.

        Args:
            method: HTTP method
            path: API path relative to the base URL
            message: What failed, used as the error message
            query: Request context carried on the error
            **kwargs: Passed through to httpx

        Raises:
            NotificationError: Classified remote failure
        """
        try:
            async with track_api_call(self.metrics, "github", method, path, logger):
                response = await self._client.request(method, path, **kwargs)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise self._classify(e, message, query) from e
        except httpx.HTTPError as e:
            raise NotificationError.transient(message, cause=e, query=query) from e
        return response

    def _classify(self, error: httpx.HTTPStatusError, message: str, query: Dict[str, Any]) -> NotificationError:
        code = error.response.status_code
        logger.error(
            "GitHub request failed",
            extra={"status_code": code, "query": query}
        )
        if code == 404:
            emit_metric("github.access_denied", 1, status_code=code)
            return NotificationError.access_denied(message, cause=error, query=query, status_code=code)
        if code == 403:
            return NotificationError.rate_limited(message, cause=error, query=query, status_code=code)
        return NotificationError.transient(message, cause=error, query=query, status_code=code)

    async def _get_all(self, path: str, message: str, query: Dict[str, Any], params: Dict[str, Any]) -> List[Dict[str, Any]]:
        """GET a list endpoint following Link rel="next" pagination."""
        items: List[Dict[str, Any]] = []
        next_path: Optional[str] = path
        next_params: Optional[Dict[str, Any]] = dict(params, per_page=100)
        while next_path:
            response = await self._request("GET", next_path, message, query, params=next_params)
            items.extend(response.json() or [])
            next_link = response.links.get("next")
            next_path = next_link["url"] if next_link else None
            next_params = None  # the next URL already carries the query string
        return items

    # ========== Comments ==========

    async def list_comments(self, repo: str, pr_number: int) -> List[BotComment]:
        """
        List comments on a pull request.

        Args:
            repo: Repository in 'owner/name' form
            pr_number: Pull request number
        """
        owner, name = split_repo(repo)
        logger.info("listComments", extra={"repo": repo, "pr_number": pr_number})
        query = {"user": owner, "repo": name, "number": pr_number}
        raw = await self._get_all(
            f"/repos/{owner}/{name}/issues/{pr_number}/comments",
            "Failed to get issue comments",
            query,
            {},
        )
        return [self._to_comment(c) for c in raw]

    async def find_comments_by_author(self, repo: str, pr_number: int, author_login: str) -> List[BotComment]:
        """All comments on the PR authored by `author_login`, oldest first."""
        comments = await self.list_comments(repo, pr_number)
        return [c for c in comments if c.author_login == author_login]

    async def find_comment_by_author(self, repo: str, pr_number: int, author_login: str) -> Optional[BotComment]:
        """First comment on the PR authored by `author_login`, or None."""
        comments = await self.find_comments_by_author(repo, pr_number, author_login)
        return comments[0] if comments else None

    async def create_comment(self, repo: str, pr_number: int, body: str) -> BotComment:
        owner, name = split_repo(repo)
        logger.info("addComment", extra={"repo": repo, "pr_number": pr_number})
        query = {"user": owner, "repo": name, "number": pr_number}
        response = await self._request(
            "POST",
            f"/repos/{owner}/{name}/issues/{pr_number}/comments",
            "Failed to create github comment",
            query,
            json={"body": body},
        )
        return self._to_comment(response.json())

    async def update_comment(self, repo: str, comment_id: int, body: str) -> BotComment:
        owner, name = split_repo(repo)
        logger.info("updateComment", extra={"repo": repo, "comment_id": comment_id})
        query = {"user": owner, "repo": name, "id": comment_id}
        response = await self._request(
            "PATCH",
            f"/repos/{owner}/{name}/issues/comments/{comment_id}",
            "Failed to update github comment",
            query,
            json={"body": body},
        )
        return self._to_comment(response.json())

    async def delete_comment(self, repo: str, comment_id: int) -> None:
        owner, name = split_repo(repo)
        logger.info("deleteComment", extra={"repo": repo, "comment_id": comment_id})
        query = {"user": owner, "repo": name, "id": comment_id}
        await self._request(
            "DELETE",
            f"/repos/{owner}/{name}/issues/comments/{comment_id}",
            "Failed to delete github comment",
            query,
        )

    @staticmethod
    def _to_comment(raw: Dict[str, Any]) -> BotComment:
        user = raw.get("user") or {}
        return BotComment(id=raw["id"], body=raw.get("body") or "", author_login=user.get("login"))

    # ========== Pull requests ==========

    async def list_open_pull_requests(self, repo: str, head: Optional[str] = None) -> List[PullRequestSummary]:
        """
        List open pull requests of a repository.

        Args:
            repo: Repository in 'owner/name' form
            head: Optional 'owner:branch' filter passed to the API
        """
        owner, name = split_repo(repo)
        logger.info("listOpenPullRequests", extra={"repo": repo})
        query: Dict[str, Any] = {"user": owner, "repo": name, "state": "open"}
        params: Dict[str, Any] = {"state": "open"}
        if head:
            params["head"] = head
            query["head"] = head
        raw = await self._get_all(f"/repos/{owner}/{name}/pulls", "Failed to get PRs", query, params)
        return [
            PullRequestSummary(
                number=pr["number"],
                head_ref=(pr.get("head") or {}).get("ref", ""),
                head_sha=(pr.get("head") or {}).get("sha"),
            )
            for pr in raw
        ]

    async def list_open_pull_requests_for_branch(self, repo: str, branch: str) -> List[PullRequestSummary]:
        """
        Open pull requests whose head is exactly `branch`.

        The API `head` filter is not reliable, so results are filtered
        again on the exact head ref.
        """
        owner, _ = split_repo(repo)
        logger.info("listOpenPullRequestsForBranch", extra={"repo": repo, "branch": branch})
        prs = await self.list_open_pull_requests(repo, head=f"{owner}:{branch}")
        return [pr for pr in prs if pr.head_ref == branch]

    # ========== Statuses and deployments ==========

    async def create_commit_status(self, repo: str, status: CommitStatus) -> None:
        owner, name = split_repo(repo)
        logger.info(
            "createStatus",
            extra={"repo": repo, "sha": status.sha, "state": status.state.value, "status_context": status.context}
        )
        query = {"user": owner, "repo": name, "sha": status.sha}
        await self._request(
            "POST",
            f"/repos/{owner}/{name}/statuses/{status.sha}",
            "Failed to create commit status",
            query,
            json={
                "state": status.state.value,
                "target_url": status.target_url,
                "description": status.description,
                "context": status.context,
            },
        )

    async def create_deployment(self, repo: str, ref: str, description: str, environment: str = "runnable") -> int:
        """Create a deployment and return its id."""
        owner, name = split_repo(repo)
        logger.info("createDeployment", extra={"repo": repo, "ref": ref})
        query = {"user": owner, "repo": name, "ref": ref}
        response = await self._request(
            "POST",
            f"/repos/{owner}/{name}/deployments",
            "Failed to create deployment",
            query,
            json={
                "ref": ref,
                "task": "deploy",
                "auto_merge": False,
                "environment": environment,
                "description": description,
                "payload": {},
                "required_contexts": [],
            },
        )
        return response.json()["id"]

    async def create_deployment_status(
        self,
        repo: str,
        deployment_id: int,
        state: str,
        target_url: str,
        description: str
    ) -> None:
        owner, name = split_repo(repo)
        logger.info("createDeploymentStatus", extra={"repo": repo, "deployment_id": deployment_id, "state": state})
        query = {"user": owner, "repo": name, "id": deployment_id}
        await self._request(
            "POST",
            f"/repos/{owner}/{name}/deployments/{deployment_id}/statuses",
            "Failed to create deployment status",
            query,
            json={"state": state, "target_url": target_url, "description": description},
        )

    # ========== Organizations ==========

    async def accept_org_invitation(self, org_name: str) -> None:
        """
        Accept a pending membership invitation to `org_name`.

        Setting the membership state to active is a no-op when the
        membership is already active.
        """
        logger.info("acceptInvitation", extra={"org_name": org_name})
        await self._request(
            "PATCH",
            f"/user/memberships/orgs/{org_name}",
            "Failed to accept invitation",
            {"orgName": org_name},
            json={"state": "active"},
        )
