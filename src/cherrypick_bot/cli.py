import logging
from pathlib import Path

import click
from pydantic import ValidationError
from rich.console import Console

from .auth import AuthenticationError, get_github_token
from .cherrypicker import Cherrypicker
from .config import ConfigError, Configuration, load_config
from .dispatcher import DEFAULT_MAX_WORKERS, EventDispatcher
from .forks import ForkRegistry
from .git import GitClientFactory
from .github_client import GitHubClient, GitHubError
from .log import setup_logging
from .output import print_dispatch_summary


@click.command()
@click.argument("event_type", type=click.Choice(["issue_comment", "pull_request"]))
@click.argument(
    "payloads",
    nargs=-1,
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to the cherrypicker YAML config. "
    "Defaults apply to every repository if omitted.",
)
@click.option(
    "--github-token-path",
    type=click.Path(exists=True, dir_okay=False),
    help="File containing the bot's GitHub token. "
    "Falls back to gh CLI and GITHUB_TOKEN.",
)
@click.option(
    "--github-endpoint",
    default=GitHubClient.BASE_URL,
    show_default=True,
    help="GitHub API endpoint.",
)
@click.option(
    "--github-url",
    default="https://github.com",
    show_default=True,
    help="GitHub web and git URL.",
)
@click.option(
    "--email",
    default="",
    help="E-mail for the bot's commits. Defaults to the bot account's primary e-mail.",
)
@click.option(
    "--max-workers",
    type=click.IntRange(min=1),
    default=DEFAULT_MAX_WORKERS,
    show_default=True,
    help="Maximum number of events handled concurrently.",
)
@click.option(
    "-v",
    "--verbose",
    is_flag=True,
    help="Show debug logs.",
)
@click.version_option(version="0.1.0")
def cli(
    event_type: str,
    payloads: tuple[Path, ...],
    config_path: Path | None,
    github_token_path: str | None,
    github_endpoint: str,
    github_url: str,
    email: str,
    max_workers: int,
    verbose: bool,
) -> None:
    """Cherry-pick merged pull requests as described by webhook payloads.

    EVENT_TYPE is the GitHub event type of the PAYLOADS, JSON files holding
    webhook deliveries.

    Examples:

        cherrypick-bot issue_comment delivery.json

        cherrypick-bot -c cherrypicker.yaml pull_request merged-1.json merged-2.json
    """
    console = Console()
    setup_logging(logging.DEBUG if verbose else logging.INFO)

    try:
        config = load_config(config_path) if config_path else Configuration()
        token = get_github_token(github_token_path)
    except (ConfigError, AuthenticationError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise SystemExit(1)

    git_factory = None
    try:
        with GitHubClient(token, base_url=github_endpoint) as client:
            bot_user = client.bot_user()
            forks = ForkRegistry(
                [r for r in client.get_repos(bot_user.login) if r.fork]
            )
            git_factory = GitClientFactory(
                github_url, login=bot_user.login, token=token
            )
            cherrypicker = Cherrypicker(
                client,
                git_factory,
                config,
                bot_user,
                email=email,
                token=token,
                forks=forks,
                github_url=github_url,
            )

            with EventDispatcher(cherrypicker, max_workers=max_workers) as dispatcher:
                for index, path in enumerate(payloads):
                    try:
                        dispatcher.dispatch(
                            event_type, f"{path.name}#{index}", path.read_bytes()
                        )
                    except ValidationError as e:
                        console.print(
                            f"[red]Error:[/red] invalid {event_type} payload {path}: {e}"
                        )
                dispatcher.wait()

            console.print()
            print_dispatch_summary(dispatcher.records, console)
            if dispatcher.errors:
                raise SystemExit(1)

    except GitHubError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise SystemExit(1)
    finally:
        if git_factory is not None:
            git_factory.clean()
