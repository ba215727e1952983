import asyncio
import heapq
import itertools
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

if TYPE_CHECKING:
    from .core import GraphStore


# --- Timers ---
class ManualTimerHandle:
    def __init__(self, when: float, callback: Callable[[], None]):
        self.when = when
        self.callback = callback
        self._cancelled = False

    def cancel(self):
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled


class ManualTimer:
    """
    Virtual clock for hosts without an event loop (headless runs, tests).
    Callbacks only fire when the host calls advance() or run_all().
    """

    def __init__(self):
        self.now = 0.0
        self._seq = itertools.count()
        self._heap: List[tuple] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualTimerHandle:
        handle = ManualTimerHandle(self.now + delay, callback)
        heapq.heappush(self._heap, (handle.when, next(self._seq), handle))
        return handle

    @property
    def pending(self) -> int:
        return sum(1 for _, _, handle in self._heap if not handle.cancelled())

    def advance(self, seconds: float):
        """Move the clock forward and fire every callback that falls due."""
        self.advance_to(self.now + seconds)

    def advance_to(self, deadline: float):
        while self._heap and self._heap[0][0] <= deadline:
            when, _, handle = heapq.heappop(self._heap)
            if handle.cancelled():
                continue
            self.now = when
            handle.callback()
        self.now = max(self.now, deadline)

    def run_all(self):
        """Fire everything scheduled, including callbacks scheduled while firing."""
        while self._heap:
            self.advance_to(self._heap[0][0])


class AsyncioTimer:
    """Schedules callbacks on an asyncio event loop (one input turn per callback)."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(delay, callback)


def make_default_timer():
    """Use the running event loop when there is one, otherwise a manual clock."""
    try:
        return AsyncioTimer(asyncio.get_running_loop())
    except RuntimeError:
        return ManualTimer()


# --- Coalescing queues ---
class CoalescingQueue(ABC):
    """
    Collects node ids and processes them together on a deferred flush.

    With debounce=True every mark re-arms the timer (trailing edge), otherwise
    the first mark arms it and later marks just join the pending batch.
    """
    debounce = False

    def __init__(self, timer, delay_ms: float):
        self._timer = timer
        self.delay = delay_ms / 1000.0
        self._pending: Dict[str, None] = {}
        self._handle = None
        self.flush_count = 0

    @property
    def pending(self) -> List[str]:
        return list(self._pending)

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def mark(self, node_id: str):
        self._pending[node_id] = None
        if self._handle is not None:
            if not self.debounce:
                return
            self._handle.cancel()
        self._handle = self._timer.call_later(self.delay, self.flush)

    def discard(self, node_id: str):
        self._pending.pop(node_id, None)

    def cancel(self):
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._pending.clear()

    def flush(self):
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        if not self._pending:
            return
        node_ids = list(self._pending)
        self._pending.clear()
        self.flush_count += 1
        self._process(node_ids)

    @abstractmethod
    def _process(self, node_ids: List[str]):
        """Handle one coalesced batch of node ids."""


class DirtyBatchScheduler(CoalescingQueue):
    """Recomputes connection snapshots of dirty nodes, at most once per window."""
    debounce = True

    def __init__(self, store: "GraphStore", timer, delay_ms: float = 16):
        super().__init__(timer, delay_ms)
        self._store = store

    def mark_dirty(self, node_id: str):
        self.mark(node_id)

    def _process(self, node_ids: List[str]):
        store = self._store
        for node_id in node_ids:
            node = store.get_node(node_id)
            if node is None:
                continue
            # 状態はスケジュール時ではなくフラッシュ時に読む
            node.connection_snapshot = store.adjacency.query(node_id)
            node_type = store.registry.get(node.type)
            node_type.call_hook("on_connection_change", node, node.connection_snapshot)
            store.rerender_node(node)
            store.layout_queue.mark(node_id)


class EdgeLayoutQueue(CoalescingQueue):
    """Re-lays out every edge incident to the queued nodes on the next frame."""
    debounce = False

    def __init__(self, store: "GraphStore", timer, delay_ms: float = 16):
        super().__init__(timer, delay_ms)
        self._store = store

    def _process(self, node_ids: List[str]):
        store = self._store
        seen = set()
        for node_id in node_ids:
            for edge_id in store.adjacency.edge_ids(node_id):
                if edge_id in seen:
                    continue
                seen.add(edge_id)
                edge = store.get_edge(edge_id)
                if edge is None:
                    continue
                source = store.get_node(edge.source)
                target = store.get_node(edge.target)
                if source is None or target is None:
                    continue
                store.render.layout_edge(edge, source, target)
