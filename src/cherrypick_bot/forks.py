import threading

from .errors import ForkError
from .log import get_logger
from .models import Repo, User

logger = get_logger(__name__)


class ForkRegistry:
    """Append-only list of the bot's known forks."""

    def __init__(self, repos: list[Repo] | None = None):
        self._lock = threading.Lock()
        self._repos: list[Repo] = list(repos or [])

    def append(self, repo: Repo) -> None:
        with self._lock:
            self._repos.append(repo)

    def snapshot(self) -> list[Repo]:
        with self._lock:
            return list(self._repos)


class ForkManager:
    """Ensures the bot owns a fork of the repositories it picks into."""

    def __init__(self, github, bot_user: User, registry: ForkRegistry | None = None):
        self.github = github
        self.bot_user = bot_user
        self.registry = registry or ForkRegistry()

    def ensure_fork(self, org: str, repo: str) -> str:
        """Create or confirm the bot's fork of org/repo.

        Returns:
            The fork's name as reported by GitHub, which may be a renamed repo.

        Raises:
            ForkError: If the fork cannot be ensured. No retry is attempted.
        """
        login = self.bot_user.login
        try:
            fork_name = self.github.ensure_fork(login, org, repo)
        except Exception as e:
            raise ForkError(str(e)) from e

        logger.debug("Using fork %s/%s for %s/%s", login, fork_name, org, repo)
        self.registry.append(
            Repo(
                owner=User(login=login),
                name=fork_name,
                full_name=f"{login}/{fork_name}",
                fork=True,
            )
        )
        return fork_name
