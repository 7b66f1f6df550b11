from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

CHERRY_PICK_BRANCH_FORMAT = "cherry-pick-{number}-to-{target}"


class IssueCommentAction(str, Enum):
    CREATED = "created"
    EDITED = "edited"
    DELETED = "deleted"


class PullRequestAction(str, Enum):
    CLOSED = "closed"
    LABELED = "labeled"


class User(BaseModel):
    login: str
    email: str | None = None


class Label(BaseModel):
    name: str


class TeamMember(BaseModel):
    login: str


class Repo(BaseModel):
    owner: User = Field(default_factory=lambda: User(login=""))
    name: str = ""
    full_name: str = ""
    fork: bool = False
    clone_url: str = ""
    html_url: str = ""
    parent: "Repo | None" = None


class PullRequestBranch(BaseModel):
    ref: str
    label: str = ""
    sha: str = ""
    repo: Repo | None = None


class PullRequest(BaseModel):
    number: int
    title: str = ""
    body: str = ""
    state: str = "open"
    merged: bool = False
    merge_commit_sha: str | None = None
    html_url: str = ""
    base: PullRequestBranch
    head: PullRequestBranch = Field(default_factory=lambda: PullRequestBranch(ref=""))
    user: User = Field(default_factory=lambda: User(login=""))
    labels: list[Label] = Field(default_factory=list)
    requested_reviewers: list[User] = Field(default_factory=list)
    assignees: list[User] = Field(default_factory=list)

    @field_validator("body", mode="before")
    @classmethod
    def _none_body(cls, value):
        return value or ""


class Issue(BaseModel):
    number: int
    title: str = ""
    body: str | None = None
    state: str = "open"
    pull_request: dict | None = None
    labels: list[Label] = Field(default_factory=list)
    assignees: list[User] = Field(default_factory=list)

    @property
    def is_pull_request(self) -> bool:
        return self.pull_request is not None


class IssueComment(BaseModel):
    id: int = 0
    body: str = ""
    user: User
    html_url: str = ""


class IssueCommentEvent(BaseModel):
    action: str
    issue: Issue
    comment: IssueComment
    repository: Repo


class PullRequestEvent(BaseModel):
    action: str
    number: int
    pull_request: PullRequest
    label: Label | None = None


class Commit(BaseModel):
    sha: str
    message: str = ""
    parents: list[str] = Field(default_factory=list)


class Invitation(BaseModel):
    id: int
    invitee: User
    html_url: str = ""


class CherryPickRequest(BaseModel):
    """Identity of a single cherry-pick, also used as the lock key."""

    model_config = ConfigDict(frozen=True)

    org: str
    repo: str
    pr_number: int
    target_branch: str

    @property
    def branch_name(self) -> str:
        return cherry_pick_branch(self.pr_number, self.target_branch)


class ResultPR(BaseModel):
    number: int
    labels: list[str] = Field(default_factory=list)
    assignees: list[str] = Field(default_factory=list)


def cherry_pick_branch(number: int, target_branch: str) -> str:
    """Return the deterministic branch name for a cherry-pick.

    Args:
        number: Source PR number.
        target_branch: Branch the change is picked onto.

    Returns:
        Branch name like 'cherry-pick-2-to-release-1.5'.
    """
    return CHERRY_PICK_BRANCH_FORMAT.format(number=number, target=target_branch)
