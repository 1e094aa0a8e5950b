"""
Background transfer task.

Runs SyncEngine.transfer() on a daemon thread so an interactive view can
keep redrawing while the transfer waits on the network. The two sides only
share a status queue (engine -> view) and a cancel event (view -> engine).

Usage:
    task = TransferTask(engine, source, target)
    task.start()

    while not task.done:
        for line in task.drain_status():
            show(line)

    task.cancel()           # optional: stop before the next write
    task.join()
    task.result             # TransferResult, or None if task.error is set
"""

import queue
import threading

from spotify_sync.core.exceptions import TransferAbortedError
from spotify_sync.core.logger import get_logger
from spotify_sync.transfer.engine import MusicService, SyncEngine
from spotify_sync.transfer.models import TransferResult

logger = get_logger(__name__)


class TransferTask:
    """
    A transfer running on its own thread.

    Attributes:
        result: The TransferResult once finished. Also set for an aborted
                run, from the partial result carried by the error.
        error: The exception that ended the run, if any.
    """

    def __init__(self, engine: SyncEngine, source: MusicService, target: MusicService) -> None:
        self.engine = engine
        self.source = source
        self.target = target
        self.result: TransferResult | None = None
        self.error: Exception | None = None
        self._status: queue.Queue[str] = queue.Queue()
        self._cancel = threading.Event()
        self._thread = threading.Thread(target=self._run, name="transfer", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def _run(self) -> None:
        try:
            self.result = self.engine.transfer(
                self.source,
                self.target,
                on_status=self._status.put,
                cancel_event=self._cancel,
            )
        except TransferAbortedError as e:
            self.error = e
            self.result = e.result
            self._status.put(e.message)
        except Exception as e:
            logger.exception("Transfer failed")
            self.error = e
            self._status.put(f"Transfer failed: {e}")

    def cancel(self) -> None:
        """Ask the engine to stop before its next write."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    @property
    def started(self) -> bool:
        return self._thread.ident is not None

    @property
    def done(self) -> bool:
        return self.started and not self._thread.is_alive()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the thread. Returns True if it has finished."""
        if self.started:
            self._thread.join(timeout)
        return self.done

    def drain_status(self) -> list[str]:
        """Return every pending status line without blocking."""
        lines = []
        while True:
            try:
                lines.append(self._status.get_nowait())
            except queue.Empty:
                return lines
