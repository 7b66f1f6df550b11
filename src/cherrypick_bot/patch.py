"""Re-applying the source PR on the target branch.

The patch is first applied with ``git am``. On conflict the change is either
handed off as a tracking issue, or cherry-picked from upstream; a conflicting
cherry-pick is committed as is, conflict markers included, for a human to
resolve in the resulting PR.
"""

from collections.abc import Callable
from enum import Enum

from pydantic import SecretStr

from .auth import authenticated_url
from .context import PickContext
from .errors import AggregateError, CherryPickError
from .git import GitCommandError, run_git
from .models import User
from .request_parser import extract_issue_numbers

UPSTREAM_REMOTE = "upstream"


class ApplyOutcome(str, Enum):
    APPLIED = "applied"
    ISSUE_CREATED = "issue_created"
    RESOLVED_WITH_FALLBACK = "resolved_with_fallback"


class PatchApplier:
    def __init__(
        self,
        github,
        bot_user: User,
        token: SecretStr | None = None,
        runner: Callable[..., str] = run_git,
    ):
        self.github = github
        self.bot_user = bot_user
        self.token = token
        self.runner = runner

    @property
    def _secrets(self) -> list[SecretStr]:
        return [self.token] if self.token else []

    def apply(self, workspace, patch_path: str, ctx: PickContext) -> ApplyOutcome:
        """Apply the PR's patch on the checked out cherry-pick branch.

        Returns:
            APPLIED or RESOLVED_WITH_FALLBACK when a PR should be opened,
            ISSUE_CREATED when a tracking issue replaces the PR.

        Raises:
            AggregateError: If the fallback failed. The requestor has already
                been told about every failing step.
        """
        try:
            workspace.am(patch_path)
            return ApplyOutcome.APPLIED
        except GitCommandError as e:
            ctx.log.warning("failed to apply PR on top of target branch: %s", e)
            am_error = e

        if ctx.options.issue_on_conflict:
            self._create_tracking_issue(ctx, am_error)
            return ApplyOutcome.ISSUE_CREATED

        errors = self._cherry_pick_from_upstream(workspace.directory(), ctx)
        if errors:
            reply = (
                f"Failed to apply #{ctx.pr.number} on top of branch "
                f'"{ctx.request.target_branch}":\n'
                f"```\n{AggregateError(errors)}\n```"
            )
            try:
                ctx.respond(reply)
            except Exception as e:
                errors.append(CherryPickError(f"failed to create comment: {e}"))
            raise AggregateError(errors)
        return ApplyOutcome.RESOLVED_WITH_FALLBACK

    def _create_tracking_issue(
        self, ctx: PickContext, am_error: GitCommandError
    ) -> None:
        request = ctx.request
        body = (
            f"Manual cherrypick required.\n\n"
            f"Failed to apply #{request.pr_number} on top of branch "
            f'"{request.target_branch}":\n'
            f"```\n{am_error}\n```"
        )
        try:
            issue_number = self.github.create_issue(
                request.org, request.repo, ctx.title, body, None, [], [ctx.requestor]
            )
        except Exception as e:
            ctx.log.warning("failed to create issue", exc_info=True)
            ctx.respond(f"new issue could not be created for failed cherrypick: {e}")
            return
        ctx.respond(f"new issue created for failed cherrypick: #{issue_number}")

    def _cherry_pick_from_upstream(
        self, directory: str, ctx: PickContext
    ) -> list[BaseException]:
        errors: list[BaseException] = []
        log = ctx.log

        def run(*args) -> None:
            self.runner(list(args), directory, secrets=self._secrets)

        def step(description: str, *args) -> bool:
            try:
                run(*args)
                return True
            except GitCommandError as e:
                log.warning("failed to %s: %s", description, e)
                errors.append(CherryPickError(f"failed to {description}: {e}"))
                return False

        # No am session exists when git could not even parse the patch.
        try:
            run("am", "--abort")
        except GitCommandError as e:
            log.warning("failed to abort git am: %s", e)

        try:
            upstream_url = self._upstream_url(ctx)
        except Exception as e:
            errors.append(CherryPickError(f"failed to get upstream repository: {e}"))
            return errors

        if not step(
            "add upstream remote", "remote", "add", UPSTREAM_REMOTE, upstream_url
        ):
            return errors
        fetched = step("fetch upstream", "fetch", UPSTREAM_REMOTE)
        try:
            run("remote", "remove", UPSTREAM_REMOTE)
        except GitCommandError as e:
            log.warning("failed to remove upstream remote: %s", e)
        if not fetched:
            return errors

        sha = ctx.pr.merge_commit_sha
        if not sha:
            errors.append(
                CherryPickError(f"merge commit of #{ctx.pr.number} is unknown")
            )
            return errors
        try:
            run("cherry-pick", "-m", "1", sha)
            return errors
        except GitCommandError as e:
            log.warning(
                "cherry-pick of %s conflicts, committing it for manual resolution: %s",
                sha,
                e,
            )

        step("add conflicting files", "add", ".")
        message = self._commit_message(ctx)
        step("commit conflicting files", "commit", "-s", "-m", message)
        return errors

    def _upstream_url(self, ctx: PickContext) -> SecretStr:
        upstream = self.github.get_repo(ctx.request.org, ctx.request.repo)
        if self.token is None:
            return SecretStr(upstream.clone_url)
        return authenticated_url(upstream.clone_url, self.bot_user.login, self.token)

    def _commit_message(self, ctx: PickContext) -> str:
        message = ctx.title
        if not ctx.options.copy_issue_numbers_from_squashed_commit:
            return message
        request = ctx.request
        try:
            commit = self.github.get_single_commit(
                request.org, request.repo, ctx.pr.merge_commit_sha
            )
        except Exception:
            ctx.log.warning("failed to get the squashed commit", exc_info=True)
            return message
        references = extract_issue_numbers(commit.message, request.org, request.repo)
        if references:
            message += "\n\n" + "\n".join(references)
        return message
