import re
from collections.abc import Iterable, Iterator

from .models import IssueComment, Label

CHERRY_PICK_RE = re.compile(r"(?m)^(?:/cherrypick|/cherry-pick)\s+(.+)$")
CHERRY_PICK_INVITE_RE = re.compile(r"(?m)^/cherry-pick-invite\s*$")

ISSUE_REFERENCE_RE = re.compile(
    r"(?i)\b(?P<keyword>ref|close[sd]?|resolve[sd]?|fix(?:e[sd])?)\s*"
    r"(?:https?://github\.com/(?P<url_org>[\w-]+)/(?P<url_repo>[\w.-]+)/issues/"
    r"|(?P<org>[\w-]+)/(?P<repo>[\w.-]+)#"
    r"|#)"
    r"(?P<number>[1-9]\d*)"
)

# requestor -> target branch -> originating comment (None for labels).
RequestMap = dict[str, dict[str, IssueComment | None]]


def parse_target_branches(body: str) -> list[str]:
    """Extract the target branches of all cherry-pick commands in a comment.

    Args:
        body: Comment body.

    Returns:
        Unique branch names in the order they were first requested.
    """
    branches: list[str] = []
    for match in CHERRY_PICK_RE.finditer(body or ""):
        branch = match.group(1).strip()
        if branch and branch not in branches:
            branches.append(branch)
    return branches


def is_invite_command(body: str) -> bool:
    return bool(CHERRY_PICK_INVITE_RE.search(body or ""))


def collect_requests(
    comments: Iterable[IssueComment],
    labels: Iterable[Label],
    label_prefix: str,
    author: str,
) -> tuple[RequestMap, bool, bool]:
    """Merge comment and label requests of a merged PR into one map.

    Comment requests are keyed by their author. Label requests are attributed
    to the PR author and carry no comment.

    Returns:
        The request map, whether any comment requested a cherry-pick, and
        whether any label did.
    """
    requests: RequestMap = {}
    found_comments = False
    for comment in comments:
        for branch in parse_target_branches(comment.body):
            requests.setdefault(comment.user.login, {})[branch] = comment
            found_comments = True

    found_labels = False
    if label_prefix:
        for label in labels:
            if label.name.startswith(label_prefix):
                branch = label.name[len(label_prefix):]
                if not branch:
                    continue
                requests.setdefault(author, {})[branch] = None
                found_labels = True

    return requests, found_comments, found_labels


def iter_unique_branches(
    requests: RequestMap,
) -> Iterator[tuple[str, str, IssueComment | None]]:
    """Yield (requestor, branch, comment), honoring the first request per branch."""
    handled: set[str] = set()
    for requestor, branches in requests.items():
        for branch, comment in branches.items():
            if branch in handled:
                continue
            handled.add(branch)
            yield requestor, branch, comment


def extract_issue_numbers(message: str, org: str, repo: str) -> list[str]:
    """Extract issue references from a squashed commit message.

    Keywords are lowercased but otherwise kept. References to org/repo itself
    are shortened to ``#N``; others keep their ``owner/repo#N`` form.

    Returns:
        Lines like 'fixes #12' or 'ref pingcap/tidb#3', without duplicates and
        sorted by issue number.
    """
    found: dict[tuple[str, str, str, int], str] = {}
    for match in ISSUE_REFERENCE_RE.finditer(message or ""):
        keyword = match.group("keyword").lower()
        ref_org = match.group("url_org") or match.group("org") or org
        ref_repo = match.group("url_repo") or match.group("repo") or repo
        number = int(match.group("number"))
        key = (keyword, ref_org.lower(), ref_repo.lower(), number)
        if key in found:
            continue
        if (ref_org.lower(), ref_repo.lower()) == (org.lower(), repo.lower()):
            found[key] = f"{keyword} #{number}"
        else:
            found[key] = f"{keyword} {ref_org}/{ref_repo}#{number}"
    return [found[key] for key in sorted(found, key=lambda k: k[3])]
