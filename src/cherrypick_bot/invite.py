import contextlib

from .log import EventLogger
from .models import IssueCommentEvent, User

COLLABORATOR_PERMISSION = "push"

INVITE_EXAMPLE = "/cherry-pick-invite"

INVITE_NOTIFY_TEMPLATE = (
    "@{user}, please accept the invitation then you can push to the "
    "cherry-pick pull requests. \n"
    "Comment with `{example}` if there is no invitation in the following link.\n"
    "{url}"
)


class InviteFlow:
    """Grants requestors push access to the bot's fork.

    Lets people resolve conflicts directly on cherry-pick branches.
    """

    def __init__(
        self, github, bot_user: User, github_url: str = "https://github.com"
    ):
        self.github = github
        self.bot_user = bot_user
        self.github_url = github_url.rstrip("/")

    def invite(self, event: IssueCommentEvent, log: EventLogger) -> None:
        org = event.repository.owner.login
        repo = event.repository.name
        number = event.issue.number
        user = event.comment.user.login
        fork_owner = self.bot_user.login
        fork_full_name = f"{fork_owner}/{repo}"

        if self.github.is_collaborator(fork_owner, repo, user):
            reply = f"@{user} you're already a collaborator in repo `{fork_full_name}`"
            self._comment(org, repo, number, reply, log)
            return

        for invitation in self.github.list_repo_invitations(fork_owner, repo):
            if invitation.invitee.login == user:
                log.info(
                    "user was invited already in invitation: %s", invitation.html_url
                )
                return

        if not self.github.is_member(org, user):
            reply = f"@{user} you're not a member of org `{org}`"
            self._comment(org, repo, number, reply, log)
            return

        try:
            self.github.add_collaborator(
                fork_owner, repo, user, COLLABORATOR_PERMISSION
            )
        except Exception:
            log.error("invite failed", exc_info=True)
            reply = (
                f"@{user} failed when inviting you as a collaborator "
                f"in repo `{fork_full_name}`."
            )
            # The comment failure is already logged; report the invite failure.
            with contextlib.suppress(Exception):
                self._comment(org, repo, number, reply, log)
            raise

        url = f"{self.github_url}/{fork_full_name}/invitations"
        reply = INVITE_NOTIFY_TEMPLATE.format(
            user=user, example=INVITE_EXAMPLE, url=url
        )
        self._comment(org, repo, number, reply, log)

    def _comment(
        self, org: str, repo: str, number: int, comment: str, log: EventLogger
    ) -> None:
        try:
            self.github.create_comment(org, repo, number, comment)
        except Exception:
            log.error("create comment failed", exc_info=True)
            raise
