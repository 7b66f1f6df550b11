"""Cherry-pick merged pull requests onto other branches.

Requests come from ``/cherry-pick <branch>`` comments and from labels carrying
the configured prefix. Each (org, repo, PR, target branch) is handled under
its own lock: fork, clone, apply, push, open the PR.
"""

from pydantic import SecretStr

from .config import CherrypickerOptions, Configuration
from .context import Commenter, PickContext
from .errors import AggregateError, CherryPickError, ForkError
from .forks import ForkManager, ForkRegistry
from .invite import InviteFlow
from .locks import LockRegistry
from .log import EventLogger
from .models import (
    CherryPickRequest,
    IssueComment,
    IssueCommentAction,
    IssueCommentEvent,
    PullRequest,
    PullRequestAction,
    PullRequestEvent,
    ResultPR,
    User,
)
from .orchestrator import PROrchestrator, PushFunc
from .patch import ApplyOutcome, PatchApplier
from .request_parser import (
    collect_requests,
    is_invite_command,
    iter_unique_branches,
    parse_target_branches,
)
from .workspace import WorkspaceError, WorkspaceManager


def membership_restriction(org: str) -> str:
    return (
        f"only [{org}](https://github.com/orgs/{org}/people) org members "
        "may request cherry-picks. "
        "You can still do the cherry-pick manually."
    )


def same_branch_restriction(base_branch: str, target_branch: str) -> str:
    return (
        f"base branch ({base_branch}) needs to differ from "
        f"target branch ({target_branch})."
    )


class Cherrypicker:
    """Handles cherry-pick related GitHub events."""

    def __init__(
        self,
        github,
        git_factory,
        config: Configuration,
        bot_user: User,
        email: str = "",
        token: SecretStr | None = None,
        push: PushFunc | None = None,
        forks: ForkRegistry | None = None,
        github_url: str = "https://github.com",
        patch_applier: PatchApplier | None = None,
    ):
        self.github = github
        self.config = config
        self.bot_user = bot_user
        self.locks = LockRegistry()
        self.fork_manager = ForkManager(github, bot_user, forks)
        self.workspace_manager = WorkspaceManager(github, git_factory, bot_user, email)
        self.patch_applier = patch_applier or PatchApplier(github, bot_user, token)
        self.orchestrator = PROrchestrator(github, bot_user, push)
        self.invite_flow = InviteFlow(github, bot_user, github_url)

    def options_for(self, org: str, repo: str) -> CherrypickerOptions:
        return self.config.cherrypicker_for(org, repo)

    def handle_issue_comment(
        self, event: IssueCommentEvent, log: EventLogger
    ) -> None:
        """Handle a new comment on a pull request.

        Raises:
            CherryPickError: If any requested cherry-pick failed.
        """
        # Only consider new comments in PRs.
        if not event.issue.is_pull_request:
            return
        if event.action != IssueCommentAction.CREATED:
            return

        org = event.repository.owner.login
        repo = event.repository.name
        number = event.issue.number
        requestor = event.comment.user.login
        log = log.with_fields(org=org, repo=repo, pr=number)

        if is_invite_command(event.comment.body):
            self.invite_flow.invite(event, log)
            return

        branches = parse_target_branches(event.comment.body)
        if not branches:
            return

        opts = self.options_for(org, repo)
        respond = Commenter(self.github, org, repo, number, event.comment, log)

        if event.issue.state != "closed":
            if not opts.allow_all and not self.github.is_member(org, requestor):
                log.info(membership_restriction(org))
                respond(membership_restriction(org))
                return
            reply = (
                "once the present PR merges, I will cherry-pick it on top of "
                f"{', '.join(branches)} in a new PR and assign it to you."
            )
            log.info(reply)
            respond(reply)
            return

        try:
            pr = self.github.get_pull_request(org, repo, number)
        except Exception as e:
            raise CherryPickError(
                f"failed to get pull request {org}/{repo}#{number}: {e}"
            ) from e

        # Cherry-pick only merged PRs.
        if not pr.merged:
            log.info("cannot cherry-pick an unmerged PR.")
            respond("cannot cherry-pick an unmerged PR.")
            return

        if not opts.allow_all and not self.github.is_member(org, requestor):
            log.info(membership_restriction(org))
            respond(membership_restriction(org))
            return

        errors: list[BaseException] = []
        for target_branch in branches:
            if target_branch == pr.base.ref:
                reply = same_branch_restriction(pr.base.ref, target_branch)
                log.info(reply)
                respond(reply)
                continue
            branch_log = log.with_fields(
                requestor=requestor, target_branch=target_branch
            )
            branch_log.debug("Cherrypick request.")
            try:
                self.handle(
                    branch_log, requestor, event.comment, org, repo, target_branch, pr
                )
            except Exception as e:
                errors.append(e)
        if errors:
            raise AggregateError(errors)

    def handle_pull_request(
        self, event: PullRequestEvent, log: EventLogger
    ) -> None:
        """Handle a merged (or labeled after merge) pull request.

        Requests left as comments before the merge and cherry-pick labels are
        combined; each target branch is picked once.

        Raises:
            CherryPickError: If any requested cherry-pick failed.
        """
        if event.action not in (PullRequestAction.CLOSED, PullRequestAction.LABELED):
            return

        pr = event.pull_request
        if not pr.merged or not pr.merge_commit_sha:
            return

        base_repo = pr.base.repo
        if base_repo is None:
            raise CherryPickError(f"pull request #{pr.number} has no base repository")
        org = base_repo.owner.login
        repo = base_repo.name
        base_branch = pr.base.ref
        number = pr.number
        opts = self.options_for(org, repo)
        log = log.with_fields(org=org, repo=repo, pr=number)

        try:
            comments = self.github.list_issue_comments(org, repo, number)
        except Exception as e:
            raise CherryPickError(f"failed to list comments: {e}") from e
        try:
            labels = self.github.get_issue_labels(org, repo, number)
        except Exception as e:
            raise CherryPickError(f"failed to get issue labels: {e}") from e

        requests, found_comments, found_labels = collect_requests(
            comments, labels, opts.label_prefix, pr.user.login
        )
        if not found_comments and not found_labels:
            return
        # A label unrelated to cherry-picking was added.
        if not found_labels and event.action == PullRequestAction.LABELED:
            return

        if not opts.allow_all:
            members = {m.login for m in self.github.list_org_members(org, "all")}
            for requestor in list(requests):
                if requestor in members:
                    continue
                dropped = requests.pop(requestor)
                comment = next(iter(dropped.values()), None)
                self._reply_restricted(org, repo, number, comment, log)

        errors: list[BaseException] = []
        for requestor, target_branch, comment in iter_unique_branches(requests):
            respond = Commenter(self.github, org, repo, number, comment, log)
            if target_branch == base_branch:
                reply = same_branch_restriction(base_branch, target_branch)
                log.info(reply)
                try:
                    respond(reply)
                except Exception:
                    log.error("Failed to create comment. response=%s", reply)
                continue
            branch_log = log.with_fields(
                requestor=requestor, target_branch=target_branch
            )
            branch_log.debug("Cherrypick request.")
            try:
                self.handle(
                    branch_log, requestor, comment, org, repo, target_branch, pr
                )
            except Exception as e:
                errors.append(CherryPickError(f"failed to create cherrypick: {e}"))
        if errors:
            raise AggregateError(errors)

    def _reply_restricted(
        self,
        org: str,
        repo: str,
        number: int,
        comment: IssueComment | None,
        log: EventLogger,
    ) -> None:
        reply = membership_restriction(org)
        log.info(reply)
        try:
            Commenter(self.github, org, repo, number, comment, log)(reply)
        except Exception:
            log.error("Failed to create comment. response=%s", reply)

    def handle(
        self,
        log: EventLogger,
        requestor: str,
        comment: IssueComment | None,
        org: str,
        repo: str,
        target_branch: str,
        pr: PullRequest,
    ) -> ResultPR | None:
        """Cherry-pick ``pr`` onto ``target_branch``.

        Runs entirely under the lock of (org, repo, PR, target branch), so a
        second request for the same key waits and then finds the existing PR.

        Returns:
            The new PR, or None when no PR was opened (already picked, tracking
            issue created, or an error already reported to the requestor).
        """
        request = CherryPickRequest(
            org=org, repo=repo, pr_number=pr.number, target_branch=target_branch
        )
        respond = Commenter(self.github, org, repo, pr.number, comment, log)
        ctx = PickContext(
            request=request,
            pr=pr,
            requestor=requestor,
            options=self.options_for(org, repo),
            respond=respond,
            log=log,
        )

        with self.locks.hold(request):
            try:
                fork_name = self.fork_manager.ensure_fork(org, repo)
            except ForkError as e:
                log.warning("failed to ensure fork exists: %s", e)
                respond(f"cannot fork {org}/{repo}: {e}.")
                return None

            try:
                with self.workspace_manager.prepare(ctx, fork_name) as prepared:
                    if prepared.existing is not None:
                        respond(
                            f"Looks like #{pr.number} has already been cherry picked "
                            f"in {prepared.existing.html_url}."
                        )
                        return None

                    outcome = self.patch_applier.apply(
                        prepared.workspace, prepared.patch_path, ctx
                    )
                    if outcome == ApplyOutcome.ISSUE_CREATED:
                        return None
                    return self.orchestrator.open_pull_request(
                        prepared.workspace, ctx, fork_name
                    )
            except WorkspaceError as e:
                respond(e.reply)
                return None
