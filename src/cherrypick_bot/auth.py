import os
import subprocess
from pathlib import Path
from urllib.parse import quote, urlsplit, urlunsplit

from pydantic import SecretStr


class AuthenticationError(Exception):
    """Raised when no GitHub token can be obtained."""

    pass


def get_github_token(token_path: str | None = None) -> SecretStr:
    """Get the bot's GitHub token.

    Sources are tried in order: the token file, the gh CLI, then the
    GITHUB_TOKEN environment variable.

    Args:
        token_path: Optional path to a file containing the token.

    Returns:
        GitHub authentication token wrapped as a secret.

    Raises:
        AuthenticationError: If no token can be obtained.
    """
    if token_path:
        try:
            token = Path(token_path).read_text().strip()
        except OSError as e:
            raise AuthenticationError(
                f"Cannot read GitHub token file {token_path}: {e.strerror}"
            )
        if token:
            return SecretStr(token)
        raise AuthenticationError(f"GitHub token file {token_path} is empty.")

    try:
        result = subprocess.run(
            ["gh", "auth", "token"],
            capture_output=True,
            text=True,
            check=True,
        )
        token = result.stdout.strip()
        if token:
            return SecretStr(token)
    except (subprocess.CalledProcessError, FileNotFoundError):
        pass

    token = os.environ.get("GITHUB_TOKEN")
    if token:
        return SecretStr(token)

    raise AuthenticationError(
        "Cannot obtain GitHub authentication.\n\n"
        "Use one of the following:\n"
        "  --github-token-path pointing at a file holding the bot token\n"
        "  export GITHUB_TOKEN=your_token_here\n"
        "  gh auth login"
    )


def authenticated_url(url: str, login: str, token: SecretStr) -> SecretStr:
    """Embed credentials into an https remote URL.

    Non-https URLs (local paths, file://) are returned unchanged. The result
    is a secret so it is never rendered by logging or exception messages.
    """
    parts = urlsplit(url)
    if parts.scheme != "https":
        return SecretStr(url)
    password = quote(token.get_secret_value(), safe='')
    netloc = f"{quote(login, safe='')}:{password}"
    if parts.port:
        netloc += f":{parts.port}"
    return SecretStr(
        urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))
    )
