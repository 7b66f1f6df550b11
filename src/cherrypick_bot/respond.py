from .models import IssueComment

ABOUT_THIS_BOT = (
    "Instructions for interacting with me using PR comments are available "
    "by commenting `/cherry-pick <branch>` on a pull request.  "
    "If you have questions or suggestions related to my behavior, "
    "please file an issue against the repository that runs this bot."
)

RESPONSE_FORMAT = """@{to}: {message}

<details>

{reason}

{about}
</details>"""


def format_response(to: str, message: str, reason: str) -> str:
    """Format a reply addressed to ``to`` with a collapsed reason block."""
    return RESPONSE_FORMAT.format(
        to=to, message=message, reason=reason, about=ABOUT_THIS_BOT
    )


def format_response_raw(body: str, body_url: str, login: str, reply: str) -> str:
    """Format a reply that quotes the text it answers."""
    quoted = "\n".join(">" + line for line in body.split("\n"))
    reason = f"In response to [this]({body_url}):\n\n{quoted}\n"
    return format_response(login, reply, reason)


def format_ic_response(comment: IssueComment, reply: str) -> str:
    return format_response_raw(
        comment.body, comment.html_url, comment.user.login, reply
    )


def format_label_response(reply: str) -> str:
    return f"In response to a cherrypick label: {reply}"
