import threading
from collections import OrderedDict

MAX_PANELS = 1024


class RequestSequencer:
    """Per-panel monotonic request numbers.

    A response computed for sequence number ``n`` is stale once any number greater
    than ``n`` has been issued or observed for the same panel; callers drop it
    instead of letting a slow response overwrite newer results.

    Panel names come from clients, so at most ``max_panels`` are tracked. Once
    full, recording a new panel forgets the one least recently written.
    """

    def __init__(self, max_panels: int = MAX_PANELS):
        if max_panels < 1:
            raise ValueError("max_panels must be at least 1")
        self.max_panels = max_panels
        self._latest: "OrderedDict[str, int]" = OrderedDict()
        self._lock = threading.Lock()

    def _record(self, panel: str, seq: int) -> None:
        # Caller holds the lock
        self._latest[panel] = seq
        self._latest.move_to_end(panel)
        while len(self._latest) > self.max_panels:
            self._latest.popitem(last=False)

    def issue(self, panel: str) -> int:
        """Allocate the next sequence number for ``panel``."""
        with self._lock:
            seq = self._latest.get(panel, 0) + 1
            self._record(panel, seq)
            return seq

    def observe(self, panel: str, seq: int) -> None:
        """Record a client-supplied sequence number."""
        with self._lock:
            if seq > self._latest.get(panel, 0):
                self._record(panel, seq)

    def latest(self, panel: str) -> int:
        with self._lock:
            return self._latest.get(panel, 0)

    def is_current(self, panel: str, seq: int) -> bool:
        with self._lock:
            return seq >= self._latest.get(panel, 0)

    def __len__(self) -> int:
        with self._lock:
            return len(self._latest)

    def reset(self) -> None:
        with self._lock:
            self._latest.clear()
