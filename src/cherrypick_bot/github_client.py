import time
from datetime import datetime
from typing import Any, Generator

import httpx
from pydantic import SecretStr

from .log import get_logger
from .models import (
    Commit,
    Invitation,
    IssueComment,
    Label,
    PullRequest,
    Repo,
    TeamMember,
    User,
)

logger = get_logger(__name__)

# Collaborator and invitation lookups are not part of the cherry-pick pipeline
# and must not block a worker for long.
COLLABORATOR_TIMEOUT = 5.0

FORK_POLL_ATTEMPTS = 10
FORK_POLL_INTERVAL = 2.0


class GitHubError(Exception):
    """Raised when the GitHub API answers with an error status."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(f"status code {status_code}: {message}")


class RateLimitError(GitHubError):
    """Raised when GitHub API rate limit is exceeded."""

    def __init__(self, message: str):
        super().__init__(403, message)


class GitHubClient:
    """GitHub API client with pagination and rate limit handling."""

    BASE_URL = "https://api.github.com"

    def __init__(
        self,
        token: SecretStr,
        base_url: str = BASE_URL,
        auto_wait: bool = True,
        transport: httpx.BaseTransport | None = None,
    ):
        self.client = httpx.Client(
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {token.get_secret_value()}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
            timeout=30.0,
            transport=transport,
        )
        self.auto_wait = auto_wait

    def close(self):
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # Users and organizations

    def bot_user(self) -> User:
        """Get the authenticated user, including a primary e-mail if visible."""
        user = User.model_validate(self._request("GET", "/user").json())
        if user.email:
            return user
        try:
            emails = self._request("GET", "/user/emails").json()
        except GitHubError:
            return user
        for entry in emails:
            if entry.get("primary"):
                return user.model_copy(update={"email": entry["email"]})
        return user

    def is_member(self, org: str, user: str) -> bool:
        """Check whether ``user`` is a member of ``org``."""
        response = self._request(
            "GET", f"/orgs/{org}/members/{user}", expected=(204, 302, 404)
        )
        return response.status_code == 204

    def list_org_members(self, org: str, role: str = "all") -> list[TeamMember]:
        members = self._paginate(f"/orgs/{org}/members", {"role": role})
        return [TeamMember.model_validate(m) for m in members]

    # Repositories and forks

    def get_repo(self, owner: str, name: str) -> Repo:
        response = self._request("GET", f"/repos/{owner}/{name}")
        return Repo.model_validate(response.json())

    def get_repos(self, owner: str, is_user: bool = True) -> list[Repo]:
        """List repositories of a user or an organization."""
        endpoint = f"/users/{owner}/repos" if is_user else f"/orgs/{owner}/repos"
        return [Repo.model_validate(r) for r in self._paginate(endpoint)]

    def create_fork(self, org: str, repo: str) -> str:
        """Fork org/repo under the authenticated user.

        Returns:
            Name of the fork. GitHub may pick a different name than ``repo``.
        """
        response = self._request("POST", f"/repos/{org}/{repo}/forks", expected=(202,))
        return response.json()["name"]

    def ensure_fork(self, forking_user: str, org: str, repo: str) -> str:
        """Make sure ``forking_user`` has a fork of org/repo.

        Returns:
            Name of the fork, which may differ from ``repo``.
        """
        upstream = f"{org}/{repo}"
        try:
            existing = self.get_repo(forking_user, repo)
        except GitHubError as e:
            if e.status_code != 404:
                raise
            existing = None

        if existing and existing.fork and existing.parent:
            if existing.parent.full_name == upstream:
                return existing.name

        name = self.create_fork(org, repo)
        # Forking is asynchronous on GitHub's side.
        for _ in range(FORK_POLL_ATTEMPTS):
            try:
                return self.get_repo(forking_user, name).name
            except GitHubError as e:
                if e.status_code != 404:
                    raise
            time.sleep(FORK_POLL_INTERVAL)
        raise GitHubError(
            404, f"fork {forking_user}/{name} of {upstream} did not become available"
        )

    def is_collaborator(self, org: str, repo: str, user: str) -> bool:
        response = self._request(
            "GET",
            f"/repos/{org}/{repo}/collaborators/{user}",
            expected=(204, 404),
            timeout=COLLABORATOR_TIMEOUT,
        )
        return response.status_code == 204

    def add_collaborator(self, org: str, repo: str, user: str, permission: str) -> None:
        self._request(
            "PUT",
            f"/repos/{org}/{repo}/collaborators/{user}",
            json={"permission": permission},
            expected=(201, 204),
            timeout=COLLABORATOR_TIMEOUT,
        )

    def list_repo_invitations(self, org: str, repo: str) -> list[Invitation]:
        invitations = self._paginate(
            f"/repos/{org}/{repo}/invitations", timeout=COLLABORATOR_TIMEOUT
        )
        return [Invitation.model_validate(i) for i in invitations]

    def get_single_commit(self, org: str, repo: str, sha: str) -> Commit:
        data = self._request("GET", f"/repos/{org}/{repo}/commits/{sha}").json()
        return Commit(
            sha=data["sha"],
            message=data.get("commit", {}).get("message", ""),
            parents=[p["sha"] for p in data.get("parents", [])],
        )

    # Pull requests and issues

    def get_pull_request(self, org: str, repo: str, number: int) -> PullRequest:
        response = self._request("GET", f"/repos/{org}/{repo}/pulls/{number}")
        return PullRequest.model_validate(response.json())

    def get_pull_requests(self, org: str, repo: str) -> list[PullRequest]:
        """Get all open pull requests of a repository."""
        pulls = self._paginate(f"/repos/{org}/{repo}/pulls", {"state": "open"})
        return [PullRequest.model_validate(p) for p in pulls]

    def get_pull_request_patch(self, org: str, repo: str, number: int) -> bytes:
        """Get the PR's changes in ``git format-patch`` form."""
        response = self._request(
            "GET",
            f"/repos/{org}/{repo}/pulls/{number}",
            headers={"Accept": "application/vnd.github.v3.patch"},
        )
        return response.content

    def create_pull_request(
        self,
        org: str,
        repo: str,
        title: str,
        body: str,
        head: str,
        base: str,
        can_modify: bool = True,
    ) -> int:
        data = {
            "title": title,
            "body": body,
            "head": head,
            "base": base,
            "maintainer_can_modify": can_modify,
        }
        response = self._request(
            "POST", f"/repos/{org}/{repo}/pulls", json=data, expected=(201,)
        )
        return response.json()["number"]

    def create_issue(
        self,
        org: str,
        repo: str,
        title: str,
        body: str,
        milestone: int | None = None,
        labels: list[str] | None = None,
        assignees: list[str] | None = None,
    ) -> int:
        data: dict[str, Any] = {"title": title, "body": body}
        if milestone:
            data["milestone"] = milestone
        if labels:
            data["labels"] = labels
        if assignees:
            data["assignees"] = assignees
        response = self._request(
            "POST", f"/repos/{org}/{repo}/issues", json=data, expected=(201,)
        )
        return response.json()["number"]

    def create_comment(self, org: str, repo: str, number: int, comment: str) -> None:
        self._request(
            "POST",
            f"/repos/{org}/{repo}/issues/{number}/comments",
            json={"body": comment},
            expected=(201,),
        )

    def list_issue_comments(
        self, org: str, repo: str, number: int
    ) -> list[IssueComment]:
        comments = self._paginate(f"/repos/{org}/{repo}/issues/{number}/comments")
        return [IssueComment.model_validate(c) for c in comments]

    def get_issue_labels(self, org: str, repo: str, number: int) -> list[Label]:
        labels = self._paginate(f"/repos/{org}/{repo}/issues/{number}/labels")
        return [Label.model_validate(label) for label in labels]

    def add_labels(self, org: str, repo: str, number: int, *labels: str) -> None:
        if not labels:
            return
        self._request(
            "POST",
            f"/repos/{org}/{repo}/issues/{number}/labels",
            json={"labels": list(labels)},
        )

    def assign_issue(self, org: str, repo: str, number: int, logins: list[str]) -> None:
        """Assign users to an issue or PR.

        Raises:
            GitHubError: If GitHub silently dropped some of the assignees.
        """
        data = self._request(
            "POST",
            f"/repos/{org}/{repo}/issues/{number}/assignees",
            json={"assignees": logins},
            expected=(201,),
        ).json()
        assigned = {a["login"].lower() for a in data.get("assignees", [])}
        missing = [login for login in logins if login.lower() not in assigned]
        if missing:
            raise GitHubError(422, f"could not assign {', '.join(missing)}")

    def request_review(
        self, org: str, repo: str, number: int, logins: list[str]
    ) -> None:
        if not logins:
            return
        self._request(
            "POST",
            f"/repos/{org}/{repo}/pulls/{number}/requested_reviewers",
            json={"reviewers": logins},
            expected=(201,),
        )

    # Transport helpers

    def _request(
        self,
        method: str,
        endpoint: str,
        expected: tuple[int, ...] = (200,),
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request, waiting out rate limits.

        Raises:
            GitHubError: If the response status is not one of ``expected``.
        """
        while True:
            response = self.client.request(method, endpoint, **kwargs)
            if self._handle_rate_limit(response):
                continue  # Retry after waiting
            break

        if response.status_code not in expected and not response.is_success:
            raise GitHubError(response.status_code, _error_message(response))
        return response

    def _paginate(
        self, endpoint: str, params: dict | None = None, timeout: float | None = None
    ) -> Generator[dict, None, None]:
        """Handle paginated API requests.

        Args:
            endpoint: API endpoint path.
            params: Optional query parameters.
            timeout: Optional per-request timeout.

        Yields:
            Response items.
        """
        params = dict(params or {})
        params["per_page"] = 100
        page = 1
        kwargs: dict[str, Any] = {}
        if timeout is not None:
            kwargs["timeout"] = timeout

        while True:
            params["page"] = page
            data = self._request("GET", endpoint, params=params, **kwargs).json()

            if not data:
                break

            yield from data

            if len(data) < 100:
                break

            page += 1

    def _handle_rate_limit(self, response: httpx.Response) -> bool:
        """Check and handle rate limit from response headers.

        Args:
            response: HTTP response object.

        Returns:
            True if request should be retried after waiting.

        Raises:
            RateLimitError: If rate limit is exceeded and auto_wait is disabled.
        """
        remaining = response.headers.get("X-RateLimit-Remaining")
        reset_timestamp = response.headers.get("X-RateLimit-Reset")

        exhausted = remaining is not None and int(remaining) == 0
        if exhausted and response.status_code in (403, 429):
            if reset_timestamp:
                reset_time = int(reset_timestamp)
                wait_seconds = max(0, reset_time - int(time.time())) + 1

                if self.auto_wait and wait_seconds <= 120:  # Max wait 2 minutes
                    logger.warning(
                        "Rate limit reached. Waiting %d seconds...", wait_seconds
                    )
                    time.sleep(wait_seconds)
                    return True  # Signal to retry
                else:
                    reset_dt = datetime.fromtimestamp(reset_time)
                    raise RateLimitError(
                        "GitHub API rate limit exceeded. "
                        f"Resets at: {reset_dt.strftime('%H:%M:%S')}"
                    )
            else:
                raise RateLimitError("GitHub API rate limit exceeded.")

        # Proactively slow down if remaining is low
        if remaining is not None and int(remaining) < 5:
            time.sleep(2)

        return False


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(data, dict) and data.get("message"):
        return data["message"]
    return response.reason_phrase
