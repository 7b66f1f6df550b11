import tempfile
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from .context import PickContext
from .errors import CherryPickError
from .locks import LockRegistry
from .models import PullRequest, User


class WorkspaceError(CherryPickError):
    """The workspace could not be prepared. ``reply`` is safe to show users."""

    def __init__(self, reply: str):
        self.reply = reply
        super().__init__(reply)


@dataclass
class PreparedWorkspace:
    workspace: object
    patch_path: str
    branch: str
    existing: PullRequest | None = None


def normalize(name: str) -> str:
    return name.replace("/", "-")


def patch_path_for(org: str, repo: str, number: int, target_branch: str) -> Path:
    name = f"{org}_{repo}_{number}_{normalize(target_branch)}.patch"
    return Path(tempfile.gettempdir()) / name


class WorkspaceManager:
    """Prepares a git working copy on which a PR can be re-applied.

    Must be used while holding the request's lock. The patch path is
    deterministic but not unique across requests (``release/1.5`` and
    ``release-1.5`` share one), so it is locked on its own for as long as the
    prepared workspace is in use.
    """

    def __init__(self, github, git_factory, bot_user: User, email: str = ""):
        self.github = github
        self.git_factory = git_factory
        self.bot_user = bot_user
        self.email = email or bot_user.email or ""
        self.patch_locks = LockRegistry()

    @contextmanager
    def prepare(
        self, ctx: PickContext, fork_name: str
    ) -> Iterator[PreparedWorkspace]:
        """Clone, check out the target branch, and stage the patch.

        Yields a PreparedWorkspace. When ``existing`` is set, a cherry-pick PR
        for this request is already open and no new branch was created.
        The working copy and the patch file are removed on exit.

        Raises:
            WorkspaceError: If cloning, checkout, or patch download fails.
        """
        request = ctx.request
        patch_path = patch_path_for(
            request.org, request.repo, request.pr_number, request.target_branch
        )
        with self.patch_locks.hold(patch_path):
            with self._prepare(ctx, fork_name, patch_path) as prepared:
                yield prepared

    @contextmanager
    def _prepare(
        self, ctx: PickContext, fork_name: str, patch_path: Path
    ) -> Iterator[PreparedWorkspace]:
        request = ctx.request
        org, repo = request.org, request.repo
        log = ctx.log

        start = time.monotonic()
        try:
            workspace = self.git_factory.client_for(org, repo)
        except Exception as e:
            log.warning("failed to get git client for %s/%s", org, repo, exc_info=True)
            raise WorkspaceError(f"cannot clone {org}/{repo}: {e}.") from e

        try:
            try:
                workspace.checkout(request.target_branch)
            except Exception as e:
                log.warning("failed to checkout target branch", exc_info=True)
                raise WorkspaceError(
                    f"cannot checkout `{request.target_branch}`: {e}."
                ) from e
            log.info(
                "Cloned and checked out target branch in %.2fs.",
                time.monotonic() - start,
            )

            try:
                patch = self.github.get_pull_request_patch(org, repo, request.pr_number)
                patch_path.write_bytes(patch)
            except Exception as e:
                log.warning("failed to get patch", exc_info=True)
                raise WorkspaceError(
                    f"cannot get the patch of #{request.pr_number}: {e}."
                ) from e

            try:
                workspace.config("user.name", self.bot_user.login)
                workspace.config("user.email", self.email)
            except Exception as e:
                raise WorkspaceError(f"cannot configure git user: {e}.") from e

            workspace.track_fork(fork_name)
            branch = request.branch_name
            if workspace.branch_exists(branch):
                existing = self._find_existing_pr(ctx, branch)
                if existing is not None:
                    log.info("PR already has cherrypick %s", existing.html_url)
                    yield PreparedWorkspace(
                        workspace, str(patch_path), branch, existing
                    )
                    return

            try:
                workspace.checkout_new_branch(branch)
            except Exception as e:
                raise WorkspaceError(f"cannot checkout `{branch}`: {e}.") from e

            yield PreparedWorkspace(workspace, str(patch_path), branch)
        finally:
            patch_path.unlink(missing_ok=True)
            try:
                workspace.clean()
            except Exception:
                log.error("Error cleaning up repo.", exc_info=True)

    def _find_existing_pr(self, ctx: PickContext, branch: str) -> PullRequest | None:
        request = ctx.request
        try:
            prs = self.github.get_pull_requests(request.org, request.repo)
        except Exception as e:
            raise WorkspaceError(
                f"cannot list pull requests of {request.org}/{request.repo}: {e}."
            ) from e
        head = f"{self.bot_user.login}:{branch}"
        for pr in prs:
            if head in (pr.head.ref, pr.head.label):
                return pr
            if pr.head.ref == branch and _head_owner(pr) == self.bot_user.login:
                return pr
        return None


def _head_owner(pr: PullRequest) -> str:
    if pr.head.repo is None:
        return ""
    return pr.head.repo.owner.login
