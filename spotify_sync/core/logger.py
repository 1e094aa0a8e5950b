"""
Logging configuration for spotify-sync.

This module sets up the logging system with multiple outputs:
    - Console: Real-time status with tqdm-compatible formatting
    - log_full_<timestamp>.log: Complete log of all events (DEBUG and above)
    - log_errors_<timestamp>.log: Only ERROR and CRITICAL level messages
    - transfer_failures_<timestamp>.log: Tracks and playlists that could not
      be written to the target account, one entry per failed item

The logging system follows the principle: everything to screen is also saved
to file, then filtered into specialized files.

Log File Locations:
    All log files are created in the log directory under the data directory
    (default ~/.spotify-sync/logs). Each run gets its own timestamped files.

Usage:
    from spotify_sync.core.logger import setup_logging, get_logger

    setup_logging(config.storage.log_dir)  # Call once at startup
    logger = get_logger(__name__)           # Get logger for each module

    logger.info("Starting transfer")
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import TextIO

from tqdm import tqdm


# Log format for file output (detailed with timestamp)
FILE_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class Colors:
    """ANSI color codes for terminal output."""
    RESET = "\033[0m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    WHITE = "\033[37m"
    BOLD = "\033[1m"


class ColoredConsoleFormatter(logging.Formatter):
    """
    Custom formatter that adds colors to console output.

    Colors:
        - DEBUG: Blue
        - INFO: Green
        - WARNING: Yellow
        - ERROR: Red
        - CRITICAL: Bold Red
    """

    LEVEL_COLORS = {
        logging.DEBUG: Colors.BLUE,
        logging.INFO: Colors.GREEN,
        logging.WARNING: Colors.YELLOW,
        logging.ERROR: Colors.RED,
        logging.CRITICAL: Colors.BOLD + Colors.RED,
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, Colors.WHITE)
        colored_levelname = f"{color}{record.levelname}{Colors.RESET}"
        return f"{colored_levelname}: {record.getMessage()}"


class TqdmLoggingHandler(logging.Handler):
    """
    Logging handler that writes to console without breaking tqdm progress bars.

    Uses tqdm.write(), which prints above any active progress bar instead
    of tearing it apart with interleaved output.

    Attributes:
        stream: The output stream (defaults to sys.stderr).
    """

    def __init__(self, stream: TextIO = sys.stderr) -> None:
        super().__init__()
        self.stream = stream

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            tqdm.write(msg, file=self.stream)
        except Exception:
            self.handleError(record)


class TransferFailureHandler(logging.Handler):
    """
    Custom handler that captures per-item transfer failures for a report file.

    This handler listens for log records that carry transfer failure
    information and writes them to transfer_failures_<timestamp>.log in a
    simple, human-readable format:

        [Road Trip] Song Title - Artist Name
        spotify:track:xxxxx
        reason: Track is not available in your market

    The handler looks for specific extra fields in log records:
        - 'transfer_failed_name': Track or playlist name
        - 'transfer_failed_artist': Artist name (empty for playlists)
        - 'transfer_failed_uri': Spotify URI (may be empty for local files)
        - 'transfer_failed_container': Playlist name or "Liked Songs"
        - 'transfer_failed_reason': Why the write failed

    Only records containing these fields are written to the report.

    Attributes:
        report_path: Path to the report file.
        report_file: Open file handle (opened by open()).
    """

    def __init__(self, report_path: Path) -> None:
        super().__init__()
        self.report_path = report_path
        self.report_file: TextIO | None = None

    def open(self) -> None:
        """
        Open the report file for writing.

        Called by setup_logging() after handler is created.
        File is opened in write mode (overwrites existing content).
        """
        self.report_file = open(self.report_path, "w", encoding="utf-8")

    def emit(self, record: logging.LogRecord) -> None:
        if not hasattr(record, "transfer_failed_name"):
            return

        if self.report_file is None:
            return

        try:
            name = getattr(record, "transfer_failed_name", "Unknown")
            artist = getattr(record, "transfer_failed_artist", "")
            uri = getattr(record, "transfer_failed_uri", "")
            container = getattr(record, "transfer_failed_container", "")
            reason = getattr(record, "transfer_failed_reason", "")

            title = f"{name} - {artist}" if artist else name
            self.report_file.write(f"[{container}] {title}\n")
            if uri:
                self.report_file.write(f"{uri}\n")
            self.report_file.write(f"reason: {reason}\n\n")
            self.report_file.flush()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        """
        Close the report file handle.

        Safe to call multiple times.
        """
        if self.report_file is not None:
            try:
                self.report_file.close()
            except OSError:
                pass
            self.report_file = None
        super().close()


class ErrorOnlyFilter(logging.Filter):
    """Filter that only allows ERROR and CRITICAL level records."""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.ERROR


def setup_logging(
    log_dir: Path,
    console_output: bool = True,
    verbose: bool = False
) -> None:
    """
    Configure the logging system for the application.

    This function should be called ONCE at application startup, after
    the configuration is loaded but before any other operations.

    Args:
        log_dir: Directory where log files will be created.
        console_output: Attach the console handler. The TUI turns this off
                        so log lines do not draw over the live display.
        verbose: Show DEBUG messages on the console (files always get DEBUG).

    Behavior:
        1. Create log_dir if it doesn't exist
        2. Configure root logger level to DEBUG
        3. Console handler (TqdmLoggingHandler), INFO or DEBUG
        4. Full log file handler, DEBUG
        5. Error log file handler, filtered to ERROR+
        6. Transfer failure report handler
        7. Quiet the HTTP libraries (their DEBUG output includes headers)

    Thread Safety:
        This function is NOT thread-safe. Call it once from the main
        thread before starting the transfer thread.
    """
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()

    if console_output:
        console_handler = TqdmLoggingHandler()
        console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        console_handler.setFormatter(ColoredConsoleFormatter())
        root_logger.addHandler(console_handler)

    full_log_path = log_dir / f"log_full_{timestamp}.log"
    full_handler = logging.FileHandler(full_log_path, mode="w", encoding="utf-8")
    full_handler.setLevel(logging.DEBUG)
    full_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT, FILE_DATE_FORMAT))
    root_logger.addHandler(full_handler)

    error_log_path = log_dir / f"log_errors_{timestamp}.log"
    error_handler = logging.FileHandler(error_log_path, mode="w", encoding="utf-8")
    error_handler.setLevel(logging.DEBUG)  # Filter handles the level restriction
    error_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT, FILE_DATE_FORMAT))
    error_handler.addFilter(ErrorOnlyFilter())
    root_logger.addHandler(error_handler)

    failures_path = log_dir / f"transfer_failures_{timestamp}.log"
    failures_handler = TransferFailureHandler(failures_path)
    failures_handler.open()
    root_logger.addHandler(failures_handler)

    for noisy in ("urllib3", "spotipy", "requests"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Args:
        name: The logger name, typically __name__ of the calling module.

    Returns:
        logging.Logger: A logger instance configured by setup_logging().

    Note:
        Loggers obtained before setup_logging() is called will have no
        handlers and will not produce output.
    """
    return logging.getLogger(name)


def log_transfer_failure(
    logger: logging.Logger,
    container: str,
    name: str,
    reason: str,
    artist: str = "",
    uri: str = ""
) -> None:
    """
    Log an item that could not be written to the target account.

    Logs a WARNING with the reason and attaches the extra fields that
    TransferFailureHandler writes to the failure report. Per-item failures
    do not stop the transfer, so they are warnings rather than errors.

    Args:
        logger: The logger to use for the message.
        container: Playlist name, or "Liked Songs".
        name: Track name (or playlist name for playlist-level failures).
        reason: Description of why the write failed.
        artist: Artist name, empty for playlist-level failures.
        uri: Spotify URI of the item, if it has one.

    Example:
        log_transfer_failure(
            logger,
            container="Road Trip",
            name="Song Title",
            artist="Artist Name",
            uri="spotify:track:xxx",
            reason="Track not available in the target account's market"
        )
    """
    logger.warning(
        f"Failed to transfer [{container}] {name}: {reason}",
        extra={
            "transfer_failed_name": name,
            "transfer_failed_artist": artist,
            "transfer_failed_uri": uri,
            "transfer_failed_container": container,
            "transfer_failed_reason": reason,
        }
    )


def shutdown_logging() -> None:
    """
    Properly shut down the logging system.

    Flushes and closes all handlers and removes them from the root logger.
    Typically called in a finally block at application exit.
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        try:
            handler.flush()
            handler.close()
        except (OSError, ValueError):
            pass
        root_logger.removeHandler(handler)
