"""
Command-line interface for spotify-sync.

This module implements the CLI using Click, providing the commands for
logging in to Spotify accounts and copying a library from one account to
another. rich-click is used for the output colors.

Commands:
    spotify-sync login <name>                   Log in and store a credential
    spotify-sync logout <name>                  Forget a stored credential
    spotify-sync list                           List logged-in accounts
    spotify-sync preview <source>               Show library statistics
    spotify-sync transfer <source> <target>     Copy playlists and liked songs
    spotify-sync tui                            Interactive account picker

Options:
    --config <path>                             Explicit config.yaml
    --verbose                                   DEBUG output on the console
    --version                                   Print the version

Usage:
    # Log in both accounts (opens the browser)
    spotify-sync login source
    spotify-sync login target

    # See what would be written, without writing
    spotify-sync transfer source target --dry-run

    # Copy everything
    spotify-sync transfer source target

Configuration:
    SPOTIFY_CLIENT_ID and SPOTIFY_CLIENT_SECRET must be set in the
    environment, a .env file, or config.yaml (see core.config).

Exit Codes:
    0    success (per-item failures are reported but do not change it)
    1    configuration error
    2    credential storage error
    3    authentication error (login failed, not logged in, re-login needed)
    4    other Spotify API error
    5    transfer aborted
    6    unexpected error (a bug; details in the log file)
    130  interrupted
"""

import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import rich_click as click
from dotenv import load_dotenv

# Configure rich-click for better help formatting
click.rich_click.USE_RICH_MARKUP = True
click.rich_click.SHOW_ARGUMENTS = True
click.rich_click.GROUP_ARGUMENTS_OPTIONS = True
click.rich_click.STYLE_ERRORS_SUGGESTION = "magenta italic"
click.rich_click.ERRORS_SUGGESTION = ""
click.rich_click.MAX_WIDTH = 100
click.rich_click.OPTION_GROUPS = {
    "spotify-sync transfer": [
        {
            "name": "Transfer Options",
            "options": ["--dry-run", "--confirm-merge"],
        },
    ],
}

from spotify_sync import __version__
from spotify_sync.core import (
    AccountNotFoundError,
    AuthError,
    Config,
    ConfigError,
    CredentialStore,
    SpotifyError,
    SpotifySyncError,
    StorageIOError,
    TransferAbortedError,
    get_logger,
    load_config,
    setup_logging,
    shutdown_logging,
)
from spotify_sync.spotify import LoginFlow, SpotifyClient, TokenRefresher
from spotify_sync.transfer import (
    Outcome,
    PlaylistAction,
    PlaylistActionType,
    SyncEngine,
    TransferPlan,
    TransferResult,
)
from spotify_sync.tui import run_tui

logger = get_logger(__name__)


EXIT_CONFIG = 1
EXIT_STORAGE = 2
EXIT_AUTH = 3
EXIT_SPOTIFY = 4
EXIT_ABORTED = 5
EXIT_UNEXPECTED = 6
EXIT_INTERRUPTED = 130


class AppContext:
    """
    Per-invocation state shared by the commands.

    Configuration, logging and the credential store are opened lazily so
    `--help` and `--version` work without any configuration.
    """

    def __init__(self, config_path: Path | None, verbose: bool) -> None:
        self.config_path = config_path
        self.verbose = verbose
        self._config: Config | None = None
        self._store: CredentialStore | None = None

    def config(self) -> Config:
        if self._config is None:
            self._config = load_config(self.config_path)
        return self._config

    def start(self, console_output: bool = True) -> Config:
        """Load the configuration and set up logging."""
        config = self.config()
        setup_logging(config.storage.log_dir, console_output=console_output, verbose=self.verbose)
        return config

    def store(self) -> CredentialStore:
        if self._store is None:
            self._store = CredentialStore(self.config().storage.credentials_path)
        return self._store

    def close(self) -> None:
        if self._store is not None:
            self._store.close()
            self._store = None


@contextmanager
def _command_errors(app: AppContext) -> Iterator[None]:
    """
    Map errors to messages and exit codes.

    Structural failures end the command with one terminal message; an
    aborted transfer additionally prints the partial summary.
    """
    try:
        yield

    except TransferAbortedError as e:
        click.echo(f"Transfer aborted: {e.cause.message}", err=True)
        if isinstance(e.cause, AuthError):
            click.echo("Log in to the target account again, then re-run the transfer.", err=True)
        else:
            click.echo("Progress so far is kept on the target; re-run the transfer later to continue.", err=True)
        _print_result(e.result)
        sys.exit(EXIT_ABORTED)

    except ConfigError as e:
        click.echo(f"Configuration error: {e.message}", err=True)
        sys.exit(EXIT_CONFIG)

    except StorageIOError as e:
        click.echo(f"Credential storage error: {e.message}", err=True)
        logger.error(f"Credential storage error: {e.message}", exc_info=True)
        sys.exit(EXIT_STORAGE)

    except (AccountNotFoundError, AuthError) as e:
        click.echo(f"Authentication error: {e.message}", err=True)
        logger.error(f"Authentication error: {e.message}")
        sys.exit(EXIT_AUTH)

    except SpotifyError as e:
        click.echo(f"Spotify error: {e.message}", err=True)
        logger.error(f"Spotify error: {e.message}", exc_info=True)
        sys.exit(EXIT_SPOTIFY)

    except SpotifySyncError as e:
        click.echo(f"Error: {e.message}", err=True)
        logger.error(f"Error: {e.message}", exc_info=True)
        sys.exit(EXIT_SPOTIFY)

    except (KeyboardInterrupt, click.Abort):
        click.echo("\nInterrupted by user", err=True)
        logger.info("Interrupted by user")
        sys.exit(EXIT_INTERRUPTED)

    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        logger.exception("Unexpected error")
        sys.exit(EXIT_UNEXPECTED)

    finally:
        app.close()
        shutdown_logging()


@click.group()
@click.option(
    "--config", "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to config.yaml (default: ./config.yaml, then ~/.spotify-sync/config.yaml)"
)
@click.option("--verbose", "-v", is_flag=True, help="Show debug output")
@click.version_option(__version__, prog_name="spotify-sync")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, verbose: bool) -> None:
    """
    Transfer Spotify playlists and liked songs between accounts.

    Log in to a [bold]source[/bold] account (where the songs come from) and a
    [bold]target[/bold] account (where they go), then run [cyan]transfer[/cyan].
    """
    ctx.obj = AppContext(config_path, verbose)


@cli.command()
@click.argument("name")
@click.pass_obj
def login(app: AppContext, name: str) -> None:
    """Log in to a Spotify account and store it under NAME."""
    with _command_errors(app):
        config = app.start()
        click.echo(f"Logging in to account '{name}'...")
        flow = LoginFlow(
            config.spotify,
            app.store(),
            timeout=config.transfer.auth_timeout,
            echo=click.echo,
        )
        flow.login(name)
        click.echo(f"Successfully logged in as '{name}'!")


@cli.command()
@click.argument("name")
@click.pass_obj
def logout(app: AppContext, name: str) -> None:
    """Forget the stored credential for NAME."""
    with _command_errors(app):
        app.start()
        if not app.store().delete(name):
            raise AccountNotFoundError(name)
        click.echo(f"Logged out of '{name}'")


@cli.command(name="list")
@click.pass_obj
def list_accounts(app: AppContext) -> None:
    """List logged-in accounts."""
    with _command_errors(app):
        app.start()
        accounts = sorted(app.store().list())
        if not accounts:
            click.echo("No accounts logged in. Run: spotify-sync login <name>")
            return
        click.echo("Logged in accounts:")
        for account in accounts:
            click.echo(f"  - {account}")


@cli.command()
@click.argument("source")
@click.pass_obj
def preview(app: AppContext, source: str) -> None:
    """Show library statistics for SOURCE."""
    with _command_errors(app):
        config = app.start()
        client = SpotifyClient.for_account(source, config, app.store())
        stats = client.get_library_stats()
        click.echo(f"Library stats for '{source}':")
        click.echo(f"  Liked songs: {stats.liked_songs}")
        click.echo(f"  Playlists:   {stats.playlists}")
        click.echo(f"  Total songs: {stats.total_songs}")


@cli.command()
@click.argument("source")
@click.argument("target")
@click.option("--dry-run", is_flag=True, help="Print the plan without writing anything")
@click.option(
    "--confirm-merge",
    is_flag=True,
    help="Ask before adding tracks to an existing target playlist with the same name"
)
@click.pass_obj
def transfer(app: AppContext, source: str, target: str, dry_run: bool, confirm_merge: bool) -> None:
    """Copy playlists and liked songs from SOURCE to TARGET."""
    with _command_errors(app):
        config = app.start()
        if source == target:
            raise ConfigError("Source and target must be different accounts")

        store = app.store()
        refresher = TokenRefresher(config.spotify, store)
        source_client = SpotifyClient.for_account(source, config, store, refresher=refresher)
        target_client = SpotifyClient.for_account(target, config, store, refresher=refresher)

        ask = confirm_merge or config.transfer.confirm_merge
        engine = SyncEngine(
            playlist_batch_size=config.transfer.playlist_batch_size,
            liked_batch_size=config.transfer.liked_batch_size,
            confirm_merge=_ask_merge if ask else None,
        )

        if dry_run:
            plan = engine.plan(source_client, target_client)
            _print_plan(plan)
            return

        click.echo(f"Starting transfer from '{source}' to '{target}'...")
        result = engine.transfer(source_client, target_client, on_status=click.echo)
        _print_result(result)
        if result.has_failures:
            click.echo("Transfer complete with some failures (see the list above).")
        else:
            click.echo("Transfer complete!")


@cli.command()
@click.pass_obj
def tui(app: AppContext) -> None:
    """Launch the interactive account picker."""
    with _command_errors(app):
        config = app.start(console_output=False)
        run_tui(config, app.store())


def _ask_merge(action: PlaylistAction) -> bool:
    return click.confirm(
        f"Target already has a playlist named '{action.playlist.name}'. Add missing tracks to it?",
        default=True,
    )


def _print_plan(plan: TransferPlan) -> None:
    """Print the create/merge decisions and liked song counts of a plan."""
    click.echo("Transfer plan (dry run, nothing will be written):")
    for action in plan.playlist_actions:
        tracks = len(action.playlist.tracks)
        if action.action is PlaylistActionType.CREATE:
            click.echo(f"  create  '{action.playlist.name}' ({tracks} tracks)")
        elif action.merges_into_created:
            click.echo(f"  merge   '{action.playlist.name}' ({tracks} tracks) into the playlist created above")
        else:
            click.echo(f"  merge   '{action.playlist.name}' ({tracks} tracks) into existing playlist")
    click.echo(f"Liked songs to add: {len(plan.liked_to_add)}")
    click.echo(f"Liked songs already present: {len(plan.liked_present)}")


def _print_result(result: TransferResult | None) -> None:
    """Print the summary of a finished, cancelled or aborted run."""
    if result is None:
        return

    click.echo("=" * 60)
    click.echo("TRANSFER SUMMARY")
    click.echo("=" * 60)
    click.echo(f"Playlists created:    {result.playlists_created}")
    click.echo(f"Playlists merged:     {result.playlists_merged}")
    skipped = sum(1 for p in result.playlists if p.outcome is Outcome.SKIPPED_DUPLICATE)
    click.echo(f"Playlists up to date: {skipped}")
    declined = sum(1 for p in result.playlists if p.outcome is Outcome.DECLINED)
    if declined:
        click.echo(f"Merges declined:      {declined}")
    click.echo(f"Tracks added:         {result.tracks_added}")
    click.echo(f"Liked songs added:    {result.liked_added}")
    click.echo(f"Liked songs present:  {result.liked_skipped}")
    if result.cancelled:
        click.echo("Run was cancelled before completion.")
    click.echo("=" * 60)

    failures = result.failures
    if failures:
        click.echo(f"Failed items ({len(failures)}):")
        for line in failures:
            click.echo(f"  - {line}")


def main() -> None:
    """
    Entry point for the CLI.

    Loads a .env file from the working directory (if any) and invokes the
    Click group.
    """
    load_dotenv()
    cli()


if __name__ == "__main__":
    main()
