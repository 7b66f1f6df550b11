"""Tests for models module."""

import pydantic
import pytest

from cherrypick_bot.models import (
    CherryPickRequest,
    IssueCommentEvent,
    PullRequest,
    PullRequestEvent,
    cherry_pick_branch,
)


def test_cherry_pick_branch():
    """Test the cherry-pick branch naming."""
    assert cherry_pick_branch(2, "release-1.5") == "cherry-pick-2-to-release-1.5"


def test_request_is_hashable_and_frozen():
    """Test CherryPickRequest can key a dict and cannot be mutated."""
    a = CherryPickRequest(org="foo", repo="bar", pr_number=2, target_branch="stage")
    b = CherryPickRequest(org="foo", repo="bar", pr_number=2, target_branch="stage")
    assert a == b
    assert {a: 1}[b] == 1
    assert a.branch_name == "cherry-pick-2-to-stage"
    with pytest.raises(pydantic.ValidationError):
        a.target_branch = "master"


def test_pull_request_null_body():
    """Test a null PR body is read as empty."""
    pr = PullRequest.model_validate(
        {"number": 1, "body": None, "base": {"ref": "master"}}
    )
    assert pr.body == ""
    assert pr.head.ref == ""
    assert pr.labels == []


def test_issue_comment_event_from_payload():
    """Test parsing an issue_comment webhook payload."""
    event = IssueCommentEvent.model_validate_json(
        """{
            "action": "created",
            "issue": {"number": 7, "state": "open", "pull_request": {"url": "x"}},
            "comment": {"id": 3, "body": "/cherry-pick stage", "user": {"login": "wiseguy"}},
            "repository": {"owner": {"login": "foo"}, "name": "bar", "full_name": "foo/bar"},
            "sender": {"login": "wiseguy"}
        }"""
    )
    assert event.issue.is_pull_request
    assert event.comment.user.login == "wiseguy"
    assert event.repository.owner.login == "foo"


def test_issue_without_pull_request():
    """Test plain issues are not treated as PRs."""
    event = IssueCommentEvent.model_validate(
        {
            "action": "created",
            "issue": {"number": 7},
            "comment": {"body": "hi", "user": {"login": "wiseguy"}},
            "repository": {"name": "bar"},
        }
    )
    assert not event.issue.is_pull_request


def test_pull_request_event_from_payload():
    """Test parsing a pull_request webhook payload."""
    event = PullRequestEvent.model_validate(
        {
            "action": "labeled",
            "number": 2,
            "label": {"name": "needs-cherry-pick-stage"},
            "pull_request": {
                "number": 2,
                "merged": True,
                "merge_commit_sha": "abc",
                "base": {
                    "ref": "master",
                    "repo": {"owner": {"login": "foo"}, "name": "bar"},
                },
                "user": {"login": "author"},
            },
        }
    )
    assert event.label.name == "needs-cherry-pick-stage"
    assert event.pull_request.base.repo.owner.login == "foo"
    assert event.pull_request.merged
