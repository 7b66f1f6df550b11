from dataclasses import dataclass

from .config import CherrypickerOptions
from .log import EventLogger
from .models import CherryPickRequest, IssueComment, PullRequest
from .respond import format_ic_response, format_label_response


class Commenter:
    """Posts replies on the source PR, addressed to whoever triggered the pick.

    Comment-initiated requests quote the triggering comment; label-initiated
    ones (no comment) get a short prefix instead.
    """

    def __init__(
        self,
        github,
        org: str,
        repo: str,
        number: int,
        comment: IssueComment | None,
        log: EventLogger,
    ):
        self.github = github
        self.org = org
        self.repo = repo
        self.number = number
        self.comment = comment
        self.log = log

    def __call__(self, reply: str) -> None:
        if self.comment is not None:
            body = format_ic_response(self.comment, reply)
        else:
            body = format_label_response(reply)
        try:
            self.github.create_comment(self.org, self.repo, self.number, body)
        except Exception:
            self.log.warning("failed to create comment", exc_info=True)
            raise
        self.log.debug("Created comment")


@dataclass
class PickContext:
    """Everything one cherry-pick of one PR onto one branch needs."""

    request: CherryPickRequest
    pr: PullRequest
    requestor: str
    options: CherrypickerOptions
    respond: Commenter
    log: EventLogger

    @property
    def title(self) -> str:
        return f"{self.pr.title} (#{self.pr.number})"

    @property
    def branch(self) -> str:
        return self.request.branch_name
