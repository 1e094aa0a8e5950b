"""
Interactive terminal interface for spotify-sync.

Screens:
    AccountSelection   pick the source account, then the target account
    TransferProgress   live status lines from the running transfer
    Complete           summary of the finished, cancelled or aborted run

Keys:
    Up/Down, k/j   move the selection
    Enter          select the highlighted account (source first, then target)
    t              start the transfer once both accounts are selected
    q              quit (a running transfer is cancelled and waited for)

The display is drawn by rich.live.Live on its own refresh thread and the
transfer runs as a TransferTask, so neither the redraw loop nor the key
loop ever waits on the network.
"""

import threading
from collections import deque
from collections.abc import Callable
from enum import Enum

import rich_click as click
from rich.console import Group, RenderableType
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from spotify_sync.core import Config, CredentialStore, SpotifySyncError, get_logger
from spotify_sync.spotify import SpotifyClient, TokenRefresher
from spotify_sync.transfer import Outcome, SyncEngine, TransferTask

logger = get_logger(__name__)


UP_KEYS = ("\x1b[A", "\xe0H", "\x00H", "k")
DOWN_KEYS = ("\x1b[B", "\xe0P", "\x00P", "j")
ENTER_KEYS = ("\r", "\n")
STATUS_LINES = 12

TaskFactory = Callable[[str, str], TransferTask]


class Screen(Enum):
    ACCOUNT_SELECTION = "account_selection"
    TRANSFER_PROGRESS = "transfer_progress"
    COMPLETE = "complete"


class Selecting(Enum):
    SOURCE = "source"
    TARGET = "target"


class TuiApp:
    """
    State machine behind the interactive view.

    Rendering and key handling are separate so the state transitions can be
    driven directly in tests.
    """

    def __init__(self, accounts: list[str], task_factory: TaskFactory) -> None:
        self.accounts = sorted(accounts)
        self.task_factory = task_factory
        self.screen = Screen.ACCOUNT_SELECTION
        self.selecting = Selecting.SOURCE
        self.selected_index = 0
        self.source_account: str | None = None
        self.target_account: str | None = None
        self.status_lines: deque[str] = deque(maxlen=STATUS_LINES)
        self.notice = ""
        self.task: TransferTask | None = None
        self.should_quit = False
        # Shared by the key loop and the display refresh thread
        self._lock = threading.RLock()

    # =========================================================================
    # Account selection
    # =========================================================================

    def next_account(self) -> None:
        if self.accounts:
            self.selected_index = (self.selected_index + 1) % len(self.accounts)

    def previous_account(self) -> None:
        if self.accounts:
            self.selected_index = (self.selected_index - 1) % len(self.accounts)

    def select_current_account(self) -> None:
        if not self.accounts:
            return

        account = self.accounts[self.selected_index]
        if self.selecting is Selecting.SOURCE:
            self.source_account = account
            self.selecting = Selecting.TARGET
            self.selected_index = 0
            self.notice = ""
        elif account == self.source_account:
            self.notice = "Target must be a different account than the source"
        else:
            self.target_account = account
            self.notice = "Press t to start the transfer"

    def can_start_transfer(self) -> bool:
        return (
            self.screen is Screen.ACCOUNT_SELECTION
            and self.source_account is not None
            and self.target_account is not None
        )

    # =========================================================================
    # Transfer
    # =========================================================================

    def start_transfer(self) -> None:
        if not self.can_start_transfer():
            return

        try:
            self.task = self.task_factory(self.source_account, self.target_account)
        except SpotifySyncError as e:
            self.notice = e.message
            return

        self.screen = Screen.TRANSFER_PROGRESS
        self.status_lines.append(f"Starting transfer from '{self.source_account}' to '{self.target_account}'...")
        self.task.start()

    def poll(self) -> None:
        """Pull pending status lines and move to Complete when the task ends."""
        with self._lock:
            if self.task is None:
                return
            self.status_lines.extend(self.task.drain_status())
            if self.screen is Screen.TRANSFER_PROGRESS and self.task.done:
                self.status_lines.extend(self.task.drain_status())
                self.screen = Screen.COMPLETE

    def quit(self) -> None:
        with self._lock:
            task = self.task
            running = task is not None and not task.done
            if running:
                self.status_lines.append("Cancelling transfer...")

        # Joined without the lock so the display keeps refreshing meanwhile
        if running:
            task.cancel()
            task.join()
            self.poll()
        self.should_quit = True

    def handle_key(self, key: str) -> None:
        if key in ("q", "Q"):
            self.quit()
            return

        with self._lock:
            if self.screen is not Screen.ACCOUNT_SELECTION:
                return
            if key in UP_KEYS:
                self.previous_account()
            elif key in DOWN_KEYS:
                self.next_account()
            elif key in ENTER_KEYS:
                self.select_current_account()
            elif key in ("t", "T"):
                self.start_transfer()

    # =========================================================================
    # Rendering
    # =========================================================================

    def render(self) -> RenderableType:
        """Build the current frame. Called from Live's refresh thread."""
        with self._lock:
            self.poll()
            if self.screen is Screen.ACCOUNT_SELECTION:
                body = self._render_selection()
            elif self.screen is Screen.TRANSFER_PROGRESS:
                body = self._render_progress()
            else:
                body = self._render_complete()
            return Panel(body, title="spotify-sync", subtitle=self._key_help(), border_style="green")

    def _key_help(self) -> str:
        if self.screen is Screen.ACCOUNT_SELECTION:
            return "↑/↓ move · Enter select · t transfer · q quit"
        if self.screen is Screen.TRANSFER_PROGRESS:
            return "q cancel and quit"
        return "q quit"

    def _render_selection(self) -> RenderableType:
        if not self.accounts:
            return Text("No accounts logged in. Run: spotify-sync login <name>", style="yellow")

        heading = Text(
            "Select SOURCE account (songs come from here)"
            if self.selecting is Selecting.SOURCE
            else "Select TARGET account (songs go here)",
            style="bold",
        )
        table = Table.grid(padding=(0, 2))
        for index, account in enumerate(self.accounts):
            marker = "➤" if index == self.selected_index else " "
            role = ""
            if account == self.source_account:
                role = "[source]"
            elif account == self.target_account:
                role = "[target]"
            style = "reverse" if index == self.selected_index else ""
            table.add_row(marker, Text(account, style=style), Text(role, style="cyan"))

        parts: list[RenderableType] = [heading, table]
        if self.notice:
            parts.append(Text(self.notice, style="magenta"))
        return Group(*parts)

    def _render_progress(self) -> RenderableType:
        heading = Text(f"Transferring {self.source_account} → {self.target_account}", style="bold")
        return Group(heading, Text("\n".join(self.status_lines)))

    def _render_complete(self) -> RenderableType:
        task = self.task
        result = task.result if task is not None else None
        parts: list[RenderableType] = []

        if task is not None and task.error is not None:
            parts.append(Text(f"Transfer stopped: {task.error}", style="bold red"))
        elif result is not None and result.cancelled:
            parts.append(Text("Transfer cancelled", style="bold yellow"))
        else:
            parts.append(Text("Transfer complete!", style="bold green"))

        if result is not None:
            summary = Table.grid(padding=(0, 2))
            summary.add_row("Playlists created", str(result.playlists_created))
            summary.add_row("Playlists merged", str(result.playlists_merged))
            summary.add_row(
                "Playlists up to date",
                str(sum(1 for p in result.playlists if p.outcome is Outcome.SKIPPED_DUPLICATE)),
            )
            summary.add_row("Tracks added", str(result.tracks_added))
            summary.add_row("Liked songs added", str(result.liked_added))
            summary.add_row("Liked songs present", str(result.liked_skipped))
            summary.add_row("Failed items", str(len(result.failures)))
            parts.append(summary)

        return Group(*parts)


def make_task_factory(config: Config, store: CredentialStore) -> TaskFactory:
    """Build TransferTasks backed by real Spotify clients."""
    refresher = TokenRefresher(config.spotify, store)

    def factory(source: str, target: str) -> TransferTask:
        # There is no prompt in the interactive view: an opt-in confirmation declines every merge
        confirm = (lambda action: False) if config.transfer.confirm_merge else None
        engine = SyncEngine(
            playlist_batch_size=config.transfer.playlist_batch_size,
            liked_batch_size=config.transfer.liked_batch_size,
            confirm_merge=confirm,
        )
        return TransferTask(
            engine,
            SpotifyClient.for_account(source, config, store, refresher=refresher),
            SpotifyClient.for_account(target, config, store, refresher=refresher),
        )

    return factory


def run_tui(
    config: Config,
    store: CredentialStore,
    read_key: Callable[[], str] = click.getchar
) -> None:
    """
    Run the interactive view until the user quits.

    Args:
        config: Loaded configuration.
        store: Credential store listing the selectable accounts.
        read_key: Blocking single-key reader.
    """
    app = TuiApp(list(store.list()), make_task_factory(config, store))
    logger.info(f"TUI started with {len(app.accounts)} accounts")

    with Live(get_renderable=app.render, refresh_per_second=8, screen=True):
        while not app.should_quit:
            app.handle_key(read_key())

    logger.info("TUI closed")
