"""Background process-tree monitor for procfinger."""

import logging
import threading
import time
from dataclasses import dataclass
from queue import Queue

from procfinger.finger import ProcessFinger
from procfinger.models import ProcessSnapshot

logger = logging.getLogger("procfinger.monitor")


@dataclass(slots=True)
class TreeSnapshot:
    """A root process and its direct children, collected in one poll."""

    root: ProcessSnapshot | None
    processes: list[ProcessSnapshot]
    taken_at: float


class TreeMonitor:
    """
    Polls one process and its direct children on a daemon thread.

    Each poll becomes a TreeSnapshot on update_queue. Children that exit
    between the listing and their own probe are left out.
    """

    def __init__(
        self,
        update_queue: Queue[TreeSnapshot],
        finger: ProcessFinger | None = None,
        root_pid: int | None = None,
        poll_rate: float = 2.0,
    ) -> None:
        """
        Initialize the TreeMonitor.

        Args:
            update_queue: Receives one TreeSnapshot per poll.
            finger: ProcessFinger used for every probe. Defaults to the local host.
            root_pid: Process whose tree is watched. Defaults to the current process.
            poll_rate: How often to poll (in seconds). Default 2.0s.
        """
        self._queue = update_queue
        self._finger = finger or ProcessFinger()
        self._root_pid = root_pid if root_pid is not None else self._finger.get_current_id()
        self._poll_rate = max(0.1, poll_rate)
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def finger(self) -> ProcessFinger:
        return self._finger

    @property
    def root_pid(self) -> int:
        return self._root_pid

    @property
    def poll_rate(self) -> float:
        return self._poll_rate

    @poll_rate.setter
    def poll_rate(self, value: float) -> None:
        self._poll_rate = max(0.1, value)

    @property
    def is_running(self) -> bool:
        """Whether the polling thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start polling. Calling it again while running does nothing."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._poll_loop,
            daemon=True,
            name="TreeMonitor",
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """Ask the polling thread to finish and join it for up to timeout seconds."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _poll_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self._queue.put(self.collect())
            except Exception:
                # Keep the loop alive whatever a single poll runs into
                logger.exception("Tree poll for PID %d failed", self._root_pid)

            self._stop_event.wait(timeout=self._poll_rate)

    def collect(self) -> TreeSnapshot:
        """Collect the root process and one snapshot per live child."""
        root = self._finger.snapshot(self._root_pid)
        processes: list[ProcessSnapshot] = []
        if root is not None:
            processes.append(root)
            for child in root.children:
                snapshot = self._finger.snapshot(child)
                # Children that exited since the listing are dropped
                if snapshot is not None:
                    processes.append(snapshot)
        return TreeSnapshot(root=root, processes=processes, taken_at=time.time())
