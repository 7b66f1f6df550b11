"""Thin wrapper around the ``git`` executable.

Every git invocation goes through ``run_git`` so that credential-bearing
arguments are only ever unwrapped at exec time and are redacted from logs
and error messages.
"""

import shutil
import subprocess
import tempfile
import threading
from collections.abc import Iterable, Sequence
from pathlib import Path

from pydantic import SecretStr

from .auth import authenticated_url
from .log import get_logger

logger = get_logger(__name__)

REDACTED = "**********"

GitArg = str | SecretStr


class GitCommandError(Exception):
    """Raised when a git command exits with a non-zero status."""

    def __init__(self, command: list[str], returncode: int, output: str):
        self.command = command
        self.returncode = returncode
        self.output = output
        message = f"{' '.join(command)} failed with exit code {returncode}"
        if output:
            message += f": {output}"
        super().__init__(message)


def _redact(text: str, secrets: Iterable[str]) -> str:
    for secret in secrets:
        if secret:
            text = text.replace(secret, REDACTED)
    return text


def run_git(
    args: Sequence[GitArg], cwd: str | Path, secrets: Iterable[SecretStr] = ()
) -> str:
    """Run a git command.

    Args:
        args: Arguments after ``git``. SecretStr values are passed to the
            process but never shown.
        cwd: Working directory.
        secrets: Additional secrets to scrub from the command output.

    Returns:
        Combined stdout and stderr.

    Raises:
        GitCommandError: If git exits non-zero.
    """
    argv = ["git"] + [
        a.get_secret_value() if isinstance(a, SecretStr) else a for a in args
    ]
    shown = ["git"] + [REDACTED if isinstance(a, SecretStr) else a for a in args]
    hidden = [a.get_secret_value() for a in args if isinstance(a, SecretStr)]
    hidden += [s.get_secret_value() for s in secrets]

    logger.debug("Running %s in %s", " ".join(shown), cwd)
    result = subprocess.run(argv, cwd=str(cwd), capture_output=True, text=True)
    output = _redact((result.stdout + result.stderr).strip(), hidden)
    if result.returncode != 0:
        raise GitCommandError(shown, result.returncode, output)
    return output


class RepoWorkspace:
    """A scoped working copy of one repository."""

    def __init__(
        self, factory: "GitClientFactory", org: str, repo: str, directory: str
    ):
        self._factory = factory
        self.org = org
        self.repo = repo
        self._directory = directory
        self._fork_url: SecretStr | None = None

    def directory(self) -> str:
        return self._directory

    def run(self, *args: GitArg) -> str:
        return run_git(args, self._directory, secrets=self._factory.secrets)

    def checkout(self, commitlike: str) -> None:
        self.run("checkout", commitlike)

    def checkout_new_branch(self, branch: str) -> None:
        self.run("checkout", "-b", branch)

    def config(self, key: str, value: str) -> None:
        self.run("config", key, value)

    def am(self, patch_path: str) -> None:
        """Apply a mailbox patch with a three-way merge fallback."""
        self.run("am", "--3way", patch_path)

    def track_fork(self, fork_name: str) -> None:
        """Remember the bot's fork so pushes and branch lookups can reach it."""
        self._fork_url = self._factory.remote_url(self._factory.login, fork_name)

    def branch_exists(self, branch: str) -> bool:
        """Check the working copy, its origin, and the tracked fork for ``branch``."""
        try:
            self.run("rev-parse", "--verify", "--quiet", f"refs/heads/{branch}")
            return True
        except GitCommandError:
            pass
        remotes: list[GitArg] = ["origin"]
        if self._fork_url is not None:
            remotes.append(self._fork_url)
        for remote in remotes:
            try:
                self.run("ls-remote", "--exit-code", "--heads", remote, branch)
                return True
            except GitCommandError:
                continue
        return False

    def push_to_named_fork(self, fork_name: str, branch: str, force: bool) -> None:
        url = self._factory.remote_url(self._factory.login, fork_name)
        args: list[GitArg] = ["push"]
        if force:
            args.append("--force")
        args += [url, f"{branch}:{branch}"]
        self.run(*args)

    def clean(self) -> None:
        shutil.rmtree(self._directory, ignore_errors=False)


class GitClientFactory:
    """Hands out working copies cloned from a local mirror cache.

    The mirror for each repository is refreshed on every ``client_for`` call
    under a per-repository lock. Working copies are independent, so different
    requests against the same repository do not share a checkout.
    """

    def __init__(
        self,
        remote_base: str = "https://github.com",
        login: str = "",
        token: SecretStr | None = None,
        cache_dir: str | Path | None = None,
    ):
        self.remote_base = remote_base.rstrip("/")
        self.login = login
        self._token = token
        if cache_dir is None:
            cache_dir = tempfile.mkdtemp(prefix="cherrypick-cache-")
        self.cache_dir = Path(cache_dir)
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @property
    def secrets(self) -> list[SecretStr]:
        return [self._token] if self._token else []

    def remote_url(self, owner: str, repo: str) -> SecretStr:
        url = f"{self.remote_base}/{owner}/{repo}"
        if self._token is None:
            return SecretStr(url)
        return authenticated_url(url, self.login, self._token)

    def _mirror_lock(self, key: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(key, threading.Lock())

    def client_for(self, org: str, repo: str) -> RepoWorkspace:
        """Clone a fresh working copy of org/repo.

        Raises:
            GitCommandError: If the mirror cannot be refreshed or cloned.
        """
        mirror = self.cache_dir / org / f"{repo}.git"
        remote = self.remote_url(org, repo)
        with self._mirror_lock(f"{org}/{repo}"):
            if not mirror.exists():
                mirror.parent.mkdir(parents=True, exist_ok=True)
                run_git(
                    ["clone", "--mirror", remote, str(mirror)],
                    mirror.parent,
                    secrets=self.secrets,
                )
                # Keep credentials out of the on-disk config.
                plain = f"{self.remote_base}/{org}/{repo}"
                run_git(["remote", "set-url", "origin", plain], mirror)
            else:
                run_git(
                    ["fetch", "--prune", remote, "+refs/heads/*:refs/heads/*"],
                    mirror,
                    secrets=self.secrets,
                )

        directory = tempfile.mkdtemp(prefix=f"{org}-{repo}-")
        try:
            run_git(["clone", str(mirror), directory], self.cache_dir)
        except GitCommandError:
            shutil.rmtree(directory, ignore_errors=True)
            raise
        return RepoWorkspace(self, org, repo, directory)

    def clean(self) -> None:
        """Remove the mirror cache."""
        shutil.rmtree(self.cache_dir, ignore_errors=True)
