"""GitHub REST client for the calls SpinWick makes on pull requests.

Covers PR comments (list with pagination, create, delete), labels, fetching
a PR or finding one by head branch, org membership for slash commands, and
the token's remaining core rate limit. Retries come from JSONAPIClient; an
exhausted rate limit is raised as RateLimitError instead of being retried.
"""

import logging
import time
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from src.spinwick.github.models import IssueComment, PullRequest
from src.spinwick.http import APIError, JSONAPIClient


logger = logging.getLogger(__name__)


class GitHubAPIError(APIError):
    pass


class RateLimitError(GitHubAPIError):
    """The token has no requests left until ``reset_at`` (epoch seconds)."""

    def __init__(
        self,
        message: str,
        reset_at: Optional[int] = None,
        retry_after: Optional[int] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.reset_at = reset_at
        self.retry_after = retry_after


def _int_header(headers: httpx.Headers, name: str) -> Optional[int]:
    try:
        return int(headers[name])
    except (KeyError, ValueError):
        return None


def _is_rate_limited(response: httpx.Response) -> bool:
    if response.status_code == 429:
        return True
    return (
        response.status_code == 403
        and _int_header(response.headers, "x-ratelimit-remaining") == 0
    )


class GitHubClient(JSONAPIClient):
    """Token-authenticated GitHub client.

    ``base_url`` can point at a GitHub Enterprise Server API root.
    """

    service_name = "GitHub API"
    error_class = GitHubAPIError

    def __init__(self, token: str, base_url: str = "https://api.github.com", **kwargs: Any):
        self.token = token
        super().__init__(base_url=base_url, **kwargs)

    def _default_headers(self) -> Dict[str, str]:
        headers = super()._default_headers()
        headers.update(
            {
                "Accept": "application/vnd.github+json",
                "Authorization": f"Bearer {self.token}",
                "X-GitHub-Api-Version": "2022-11-28",
            }
        )
        return headers

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    async def _check_response(self, response: httpx.Response) -> None:
        if not _is_rate_limited(response):
            return

        reset_at = _int_header(response.headers, "x-ratelimit-reset")
        retry_after = _int_header(response.headers, "retry-after")
        if retry_after is None and reset_at is not None:
            retry_after = max(0, reset_at - int(time.time()))

        logger.warning(
            "GitHub token is rate limited",
            extra={"reset_at": reset_at, "retry_after": retry_after},
        )
        raise RateLimitError(
            message="GitHub API rate limit exceeded",
            status_code=response.status_code,
            reset_at=reset_at,
            retry_after=retry_after,
        )

    async def get_rate_limit(self) -> Dict[str, int]:
        """Core rate limit as ``{"limit", "remaining", "reset"}``."""
        response = await self._request(method="GET", path="/rate_limit")
        core = response.json().get("resources", {}).get("core", {})
        return {
            "limit": core.get("limit", 0),
            "remaining": core.get("remaining", 0),
            "reset": core.get("reset", 0),
        }

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    async def list_comments(
        self,
        owner: str,
        repo: str,
        issue_number: int,
    ) -> List[IssueComment]:
        """List all comments on an issue or pull request, following pagination."""
        path = f"/repos/{owner}/{repo}/issues/{issue_number}/comments"
        comments: List[IssueComment] = []
        page = 1
        while True:
            response = await self._request(
                method="GET",
                path=path,
                params={"per_page": 100, "page": page},
            )
            batch = response.json()
            comments.extend(IssueComment.from_github_response(c) for c in batch)
            if len(batch) < 100:
                return comments
            page += 1

    async def create_comment(
        self,
        owner: str,
        repo: str,
        issue_number: int,
        body: str,
    ) -> Dict[str, Any]:
        """Post a markdown comment; returns GitHub's comment object."""
        logger.info(
            "Commenting on PR",
            extra={"pr_id": f"{owner}/{repo}#{issue_number}", "chars": len(body)},
        )
        response = await self._request(
            method="POST",
            path=f"/repos/{owner}/{repo}/issues/{issue_number}/comments",
            json_data={"body": body},
        )
        return response.json()

    async def delete_comment(self, owner: str, repo: str, comment_id: int) -> None:
        path = f"/repos/{owner}/{repo}/issues/comments/{comment_id}"
        logger.info(
            "Deleting comment",
            extra={"owner": owner, "repo": repo, "comment_id": comment_id},
        )
        await self._request(method="DELETE", path=path)

    # ------------------------------------------------------------------
    # Labels
    # ------------------------------------------------------------------

    async def list_labels(
        self,
        owner: str,
        repo: str,
        issue_number: int,
    ) -> List[str]:
        path = f"/repos/{owner}/{repo}/issues/{issue_number}/labels"
        response = await self._request(
            method="GET", path=path, params={"per_page": 100}
        )
        return [label["name"] for label in response.json()]

    async def add_label(
        self,
        owner: str,
        repo: str,
        issue_number: int,
        label: str,
    ) -> List[str]:
        """Add ``label``; returns every label name now on the PR."""
        logger.info(
            "Adding label",
            extra={"pr_id": f"{owner}/{repo}#{issue_number}", "label": label},
        )
        response = await self._request(
            method="POST",
            path=f"/repos/{owner}/{repo}/issues/{issue_number}/labels",
            json_data={"labels": [label]},
        )
        return [item["name"] for item in response.json()]

    async def remove_label(
        self,
        owner: str,
        repo: str,
        issue_number: int,
        label: str,
    ) -> None:
        """Remove ``label``. A label that is already gone is not an error."""
        pr_id = f"{owner}/{repo}#{issue_number}"
        logger.info("Removing label", extra={"pr_id": pr_id, "label": label})
        try:
            await self._request(
                method="DELETE",
                path=f"/repos/{owner}/{repo}/issues/{issue_number}/labels/{quote(label, safe='')}",
            )
        except GitHubAPIError as e:
            if not e.is_not_found:
                raise
            logger.debug("Label was already removed", extra={"pr_id": pr_id, "label": label})

    # ------------------------------------------------------------------
    # Pull requests
    # ------------------------------------------------------------------

    async def get_pull_request(
        self,
        owner: str,
        repo: str,
        number: int,
    ) -> PullRequest:
        """Fetch a pull request together with its current labels.

        Raises:
            GitHubAPIError: If either request fails.
        """
        response = await self._request(
            method="GET", path=f"/repos/{owner}/{repo}/pulls/{number}"
        )
        labels = await self.list_labels(owner, repo, number)
        return PullRequest.from_github_response(response.json(), labels=labels)

    async def find_pull_request_by_branch(
        self,
        owner: str,
        repo: str,
        ref: str,
    ) -> Optional[PullRequest]:
        """Find the open pull request whose head branch is ``ref``.

        Only the first open match is returned; forks are not considered.
        """
        response = await self._request(
            method="GET",
            path=f"/repos/{owner}/{repo}/pulls",
            params={"state": "open", "head": f"{owner}:{ref}", "per_page": 1},
        )
        pulls = response.json()
        if not pulls:
            return None
        number = pulls[0]["number"]
        labels = await self.list_labels(owner, repo, number)
        return PullRequest.from_github_response(pulls[0], labels=labels)

    # ------------------------------------------------------------------
    # Organizations
    # ------------------------------------------------------------------

    async def is_org_member(self, org: str, user: str) -> bool:
        """Check whether ``user`` is a member of ``org``.

        Returns:
            False when GitHub reports no membership (404) or the
            membership is not active.
        """
        try:
            response = await self._request(
                method="GET", path=f"/orgs/{org}/memberships/{user}"
            )
        except GitHubAPIError as e:
            if e.status_code == 404:
                logger.warning(
                    "User is not part of the organization",
                    extra={"user": user, "org": org},
                )
                return False
            raise
        return response.json().get("state") == "active"
