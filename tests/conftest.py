"""Shared fakes for the cherry-pick tests."""

import threading
import time
from pathlib import Path

import pytest

from cherrypick_bot.config import CherrypickerOptions, Configuration
from cherrypick_bot.git import GitCommandError
from cherrypick_bot.log import EventLogger, get_logger
from cherrypick_bot.models import (
    Commit,
    Invitation,
    Issue,
    IssueComment,
    Label,
    PullRequest,
    PullRequestBranch,
    Repo,
    TeamMember,
    User,
)

BOT = User(login="ci-robot", email="ci-robot@example.com")

PATCH = b"""From af468c9e69dfdf39db591f1e3e8de5b64b0e62a2 Mon Sep 17 00:00:00 2001
From: Wise Guy <wise@guy.com>
Subject: [PATCH] Update magic number

---
 bar.py | 2 +-
"""


class FakeGitHub:
    """In-memory stand-in for GitHubClient."""

    def __init__(self, pr: PullRequest | None = None, is_member: bool = True):
        self.lock = threading.Lock()
        self.pr = pr
        self.member = is_member
        self.patch = PATCH
        self.comments: list[str] = []
        self.prs: list[PullRequest] = []
        self.pr_comments: list[IssueComment] = []
        self.pr_labels: list[Label] = []
        self.org_members: list[TeamMember] = []
        self.issues: list[Issue] = []
        self.collaborators: set[str] = set()
        self.invitations: list[Invitation] = []
        self.added_collaborators: list[tuple[str, str, str, str]] = []
        self.commit_message = ""
        self.fail_assign = False
        self.fail_create_pr = False
        self.fail_add_collaborator = False

    def create_comment(self, org, repo, number, comment):
        with self.lock:
            self.comments.append(f"{org}/{repo}#{number} {comment}")

    def is_member(self, org, user):
        return self.member

    def list_org_members(self, org, role="all"):
        assert role == "all"
        return list(self.org_members)

    def get_pull_request(self, org, repo, number):
        return self.pr

    def get_pull_request_patch(self, org, repo, number):
        return self.patch

    def get_pull_requests(self, org, repo):
        with self.lock:
            return list(self.prs)

    def ensure_fork(self, forking_user, org, repo):
        if repo == "changeme":
            return "changed"
        if repo == "error":
            raise RuntimeError("errors")
        return repo

    def get_repo(self, owner, name):
        return Repo(
            owner=User(login=owner),
            name=name,
            full_name=f"{owner}/{name}",
            clone_url=f"https://github.com/{owner}/{name}.git",
        )

    def get_single_commit(self, org, repo, sha):
        return Commit(sha=sha, message=self.commit_message)

    def create_pull_request(self, org, repo, title, body, head, base, can_modify=True):
        if self.fail_create_pr:
            raise RuntimeError("validation failed")
        with self.lock:
            number = len(self.prs) + 1
            self.prs.append(
                PullRequest(
                    number=number,
                    title=title,
                    body=body,
                    head=PullRequestBranch(ref=head),
                    base=PullRequestBranch(ref=base),
                    html_url=f"https://github.com/{org}/{repo}/pull/{number}",
                )
            )
            return number

    def _find_pr(self, number):
        for pr in self.prs:
            if pr.number == number:
                return pr
        raise KeyError(number)

    def add_labels(self, org, repo, number, *labels):
        with self.lock:
            pr = self._find_pr(number)
            pr.labels.extend(Label(name=name) for name in labels)

    def request_review(self, org, repo, number, logins):
        with self.lock:
            reviewers = [User(login=login) for login in logins]
            self._find_pr(number).requested_reviewers = reviewers

    def assign_issue(self, org, repo, number, logins):
        if self.fail_assign:
            raise RuntimeError("could not assign")
        with self.lock:
            self._find_pr(number).assignees = [User(login=login) for login in logins]

    def create_issue(
        self, org, repo, title, body, milestone=None, labels=None, assignees=None
    ):
        with self.lock:
            number = len(self.issues) + 1
            self.issues.append(
                Issue(
                    number=number,
                    title=title,
                    body=body,
                    labels=[Label(name=name) for name in labels or []],
                    assignees=[User(login=login) for login in assignees or []],
                )
            )
            return number

    def list_issue_comments(self, org, repo, number):
        return list(self.pr_comments)

    def get_issue_labels(self, org, repo, number):
        return list(self.pr_labels)

    def is_collaborator(self, org, repo, user):
        return user in self.collaborators

    def list_repo_invitations(self, org, repo):
        return list(self.invitations)

    def add_collaborator(self, org, repo, user, permission):
        if self.fail_add_collaborator:
            raise RuntimeError("forbidden")
        self.added_collaborators.append((org, repo, user, permission))


class FakeWorkspace:
    def __init__(self, factory: "FakeGitFactory", org: str, repo: str):
        self.factory = factory
        self.org = org
        self.repo = repo
        self.calls: list[tuple] = []
        self.cleaned = False
        self.fork = None

    def directory(self):
        return f"/tmp/fake/{self.org}/{self.repo}"

    def checkout(self, branch):
        self.calls.append(("checkout", branch))
        if branch in self.factory.missing_branches:
            message = f"pathspec '{branch}' did not match"
            raise GitCommandError(["git", "checkout", branch], 1, message)

    def checkout_new_branch(self, branch):
        self.calls.append(("checkout_new_branch", branch))

    def config(self, key, value):
        self.calls.append(("config", key, value))

    def am(self, path):
        self.calls.append(("am", path))
        time.sleep(self.factory.am_delay)
        with self.factory.lock:
            self.factory.applied.append(Path(path).read_bytes())
        if self.factory.am_error is not None:
            raise self.factory.am_error

    def track_fork(self, fork_name):
        self.fork = fork_name

    def branch_exists(self, branch):
        with self.factory.lock:
            return branch in self.factory.remote_branches

    def push_to_named_fork(self, fork_name, branch, force):
        with self.factory.lock:
            self.factory.pushes.append((fork_name, branch, force))
            self.factory.remote_branches.add(branch)

    def clean(self):
        self.cleaned = True


class FakeGitFactory:
    def __init__(self):
        self.lock = threading.Lock()
        self.workspaces: list[FakeWorkspace] = []
        self.remote_branches: set[str] = set()
        self.pushes: list[tuple[str, str, bool]] = []
        self.missing_branches: set[str] = set()
        self.am_error: GitCommandError | None = None
        self.am_delay = 0.0
        self.applied: list[bytes] = []

    def client_for(self, org, repo):
        workspace = FakeWorkspace(self, org, repo)
        with self.lock:
            self.workspaces.append(workspace)
        return workspace


class FakeRunner:
    """Records git commands run by the fallback; fails the ones listed."""

    def __init__(self, failing: set[str] | None = None):
        self.failing = failing or set()
        self.commands: list[list[str]] = []

    def __call__(self, args, cwd, secrets=()):
        shown = [str(a) for a in args]
        self.commands.append(shown)
        if args[0] in self.failing:
            raise GitCommandError(["git", *shown], 1, f"{args[0]} went wrong")
        return ""


def make_pr(**overrides) -> PullRequest:
    data = {
        "number": 2,
        "title": "fix X",
        "body": "notes",
        "state": "closed",
        "merged": True,
        "merge_commit_sha": "abcdef0123456789",
        "base": {
            "ref": "master",
            "repo": {"owner": {"login": "foo"}, "name": "bar", "full_name": "foo/bar"},
        },
        "user": {"login": "author"},
    }
    data.update(overrides)
    return PullRequest.model_validate(data)


def make_config(**options) -> Configuration:
    entry = CherrypickerOptions(repos=["foo/bar"], **options)
    return Configuration(cherrypicker=[entry])


@pytest.fixture
def log():
    return EventLogger(get_logger("tests"))


@pytest.fixture
def git_factory():
    return FakeGitFactory()
