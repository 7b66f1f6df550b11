from collections.abc import Callable

from .config import CherrypickerOptions
from .context import PickContext
from .errors import AggregateError, CherryPickError
from .models import PullRequest, ResultPR, User

PushFunc = Callable[[str, str, bool], None]


def create_cherrypick_body(number: int, note: str) -> str:
    """Build the body of a cherry-pick PR.

    Args:
        number: Source PR number.
        note: Source PR body.

    Returns:
        Body text referencing the source PR, followed by its note if any.
    """
    body = f"This is an automated cherry-pick of #{number}"
    if note:
        body = f"{body}\n\n{note}"
    return body


def labels_for(
    pr: PullRequest, options: CherrypickerOptions, target_branch: str
) -> list[str]:
    """Compute the labels of the cherry-pick PR.

    Labels of the source PR are copied except excluded ones and cherry-pick
    request labels. The picked label for ``target_branch`` is added when a
    prefix is configured.

    Returns:
        Sorted label names.
    """
    excluded = set(options.exclude_labels)
    labels = set()
    for label in pr.labels:
        if label.name in excluded:
            continue
        if options.label_prefix and label.name.startswith(options.label_prefix):
            continue
        labels.add(label.name)
    if options.picked_label_prefix:
        labels.add(options.picked_label_prefix + target_branch)
    return sorted(labels)


class PROrchestrator:
    """Pushes a prepared cherry-pick branch and opens its PR."""

    def __init__(self, github, bot_user: User, push: PushFunc | None = None):
        self.github = github
        self.bot_user = bot_user
        # Overridable so tests do not need a remote to push to.
        self.push = push

    def open_pull_request(
        self, workspace, ctx: PickContext, fork_name: str
    ) -> ResultPR:
        """Push the branch to the bot's fork and open the cherry-pick PR.

        Label, reviewer, and assignee failures are logged and otherwise
        ignored. The PR existing is what counts.

        Raises:
            AggregateError: If pushing or creating the PR failed.
        """
        request = ctx.request
        org, repo = request.org, request.repo
        log = ctx.log

        push = self.push or workspace.push_to_named_fork
        try:
            push(fork_name, ctx.branch, True)
        except Exception as e:
            log.warning("failed to push cherry-picked changes to GitHub: %s", e)
            self._fail(ctx, e, f"failed to push cherry-picked changes in GitHub: {e}.")

        body = create_cherrypick_body(ctx.pr.number, ctx.pr.body)
        head = f"{self.bot_user.login}:{ctx.branch}"
        try:
            created = self.github.create_pull_request(
                org, repo, ctx.title, body, head, request.target_branch, True
            )
        except Exception as e:
            log.warning("failed to create new pull request: %s", e)
            self._fail(ctx, e, f"new pull request could not be created: {e}.")

        log = log.with_fields(new_pull_request_number=created)
        log.info("new pull request created")

        labels = labels_for(ctx.pr, ctx.options, request.target_branch)
        try:
            self.github.add_labels(org, repo, created, *labels)
        except Exception:
            log.warning("failed to add labels %s", labels, exc_info=True)
            labels = []

        reviewers = [r.login for r in ctx.pr.requested_reviewers]
        if reviewers:
            try:
                self.github.request_review(org, repo, created, reviewers)
            except Exception:
                # Usually reviewers that are not org members.
                log.warning("failed to request review to new PR", exc_info=True)

        assignees = [ctx.requestor]
        try:
            self.github.assign_issue(org, repo, created, assignees)
        except Exception:
            # Usually a requestor that cannot be assigned in this repository.
            log.warning("failed to assign to new PR", exc_info=True)
            assignees = []

        ctx.respond(f"new pull request created: #{created}.")
        return ResultPR(number=created, labels=labels, assignees=assignees)

    @staticmethod
    def _fail(ctx: PickContext, error: Exception, reply: str) -> None:
        errors: list[BaseException] = [error]
        try:
            ctx.respond(reply)
        except Exception as e:
            errors.append(CherryPickError(f"failed to create comment: {e}"))
        raise AggregateError(errors) from error
