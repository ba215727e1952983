"""
Batch Scheduler Tests
=====================

Dirty-node coalescing, edge re-layout batching and the two timer
implementations the editor can run on.
"""

import asyncio

import pytest

from graph_editor.editor import GraphEditor
from graph_editor.scheduler import AsyncioTimer, CoalescingQueue, ManualTimer, make_default_timer
from graph_editor.settings import EditorOptions


class RecordingQueue(CoalescingQueue):
    def __init__(self, timer, delay_ms, debounce):
        super().__init__(timer, delay_ms)
        self.debounce = debounce
        self.batches = []

    def _process(self, node_ids):
        self.batches.append(node_ids)


class TestManualTimer:

    def test_callbacks_fire_in_time_order(self):
        timer = ManualTimer()
        fired = []
        timer.call_later(0.5, lambda: fired.append("late"))
        timer.call_later(0.1, lambda: fired.append("early"))

        timer.advance(0.2)
        assert fired == ["early"]
        timer.advance(0.5)
        assert fired == ["early", "late"]

    def test_cancelled_handle_never_fires(self):
        timer = ManualTimer()
        fired = []
        handle = timer.call_later(0.1, lambda: fired.append(1))
        handle.cancel()

        assert timer.pending == 0
        timer.run_all()
        assert fired == []

    def test_run_all_includes_rescheduled_callbacks(self):
        timer = ManualTimer()
        fired = []
        timer.call_later(0.1, lambda: timer.call_later(0.1, lambda: fired.append("second")))

        timer.run_all()
        assert fired == ["second"]
        assert timer.pending == 0

    def test_default_timer_without_loop_is_manual(self):
        assert isinstance(make_default_timer(), ManualTimer)


class TestCoalescingQueue:

    def test_marks_collapse_into_one_batch(self):
        timer = ManualTimer()
        queue = RecordingQueue(timer, 16, debounce=False)
        for node_id in ["a", "b", "a", "c", "b"]:
            queue.mark(node_id)

        timer.run_all()
        assert queue.batches == [["a", "b", "c"]]

    def test_debounce_rearms_on_each_mark(self):
        timer = ManualTimer()
        queue = RecordingQueue(timer, 16, debounce=True)
        queue.mark("a")
        timer.advance(0.010)
        queue.mark("b")
        timer.advance(0.010)

        assert queue.batches == []
        assert queue.armed

        timer.run_all()
        assert queue.batches == [["a", "b"]]

    def test_throttle_does_not_rearm(self):
        timer = ManualTimer()
        queue = RecordingQueue(timer, 16, debounce=False)
        queue.mark("a")
        timer.advance(0.010)
        queue.mark("b")
        timer.advance(0.010)

        assert queue.batches == [["a", "b"]]

    def test_discard_and_cancel(self):
        timer = ManualTimer()
        queue = RecordingQueue(timer, 16, debounce=True)
        queue.mark("a")
        queue.mark("b")
        queue.discard("a")
        assert queue.pending == ["b"]

        queue.cancel()
        timer.run_all()
        assert queue.batches == []
        assert not queue.armed

    def test_base_queue_is_abstract(self):
        with pytest.raises(TypeError):
            CoalescingQueue(ManualTimer(), 16)

    def test_empty_flush_is_noop(self):
        queue = RecordingQueue(ManualTimer(), 16, debounce=True)
        queue.flush()
        assert queue.flush_count == 0


class TestDirtyBatchScheduler:

    @pytest.fixture
    def counted(self, editor):
        calls = []
        editor.register_node_type(
            "counted",
            on_connection_change=lambda node, snapshot: calls.append((node.id, snapshot)),
        )
        return calls

    def test_hundred_marks_yield_one_hook_call(self, store, timer, counted):
        node_id = store.create_node("counted", {"x": 0, "y": 0})
        for _ in range(100):
            store.dirty.mark_dirty(node_id)

        timer.run_all()

        assert len(counted) == 1
        assert store.dirty.flush_count == 1

    def test_state_is_read_at_flush_time(self, store, timer, counted):
        a = store.create_node("default", {"x": 0, "y": 0}, {"title": "early"})
        b = store.create_node("counted", {"x": 0, "y": 0})
        store.create_edge(a, b)
        store.update_node_data(a, {"title": "late"})

        timer.run_all()

        assert len(counted) == 1
        node_id, snapshot = counted[0]
        assert node_id == b
        assert snapshot.inputs[0].data["title"] == "late"
        assert store.get_node(b).connection_snapshot.input_count == 1

    def test_node_deleted_before_flush_is_skipped(self, store, timer, counted):
        a = store.create_node("default", {"x": 0, "y": 0})
        b = store.create_node("counted", {"x": 0, "y": 0})
        store.create_edge(a, b)
        store.delete_node(b)

        timer.run_all()

        assert counted == []

    def test_flush_rerenders_dirty_nodes(self, store, timer, render):
        a = store.create_node("default", {"x": 0, "y": 0})
        b = store.create_node("default", {"x": 0, "y": 0})
        old_handles = {store.get_node(a).handle, store.get_node(b).handle}
        store.create_edge(a, b)

        timer.run_all()

        new_handles = {store.get_node(a).handle, store.get_node(b).handle}
        assert new_handles.isdisjoint(old_handles)
        assert old_handles.isdisjoint(render.live)

    def test_update_marks_neighbours_dirty(self, store, timer):
        a = store.create_node("default", {"x": 0, "y": 0})
        b = store.create_node("default", {"x": 0, "y": 0})
        c = store.create_node("default", {"x": 0, "y": 0})
        store.create_edge(a, b)
        timer.run_all()

        store.update_node_data(a, {"title": "x"})

        assert set(store.dirty.pending) == {a, b}
        assert c not in store.dirty.pending

    def test_editor_flush_runs_immediately(self, editor, store, timer, counted):
        a = store.create_node("counted", {"x": 0, "y": 0})
        b = store.create_node("counted", {"x": 0, "y": 0})
        store.create_edge(a, b)

        editor.flush()

        assert len(counted) == 2
        assert timer.pending == 0


class TestEdgeLayoutQueue:

    def test_each_incident_edge_laid_out_once(self, store, timer, render):
        a = store.create_node("default", {"x": 0, "y": 0})
        b = store.create_node("default", {"x": 0, "y": 0})
        c = store.create_node("default", {"x": 0, "y": 0})
        ab = store.create_edge(a, b)
        ac = store.create_edge(a, c)
        timer.run_all()
        render.layouts.clear()

        store.layout_queue.mark(a)
        store.layout_queue.mark(b)
        store.layout_queue.flush()

        assert render.layouts == [ab, ac]

    def test_position_change_schedules_layout(self, store, timer, render):
        a = store.create_node("default", {"x": 0, "y": 0})
        b = store.create_node("default", {"x": 0, "y": 0})
        ab = store.create_edge(a, b)
        timer.run_all()
        render.layouts.clear()

        store.move_node(a, 40, 40)
        assert render.layouts == []

        timer.run_all()
        assert render.layouts == [ab]


class TestAsyncioTimer:

    def test_flush_runs_on_event_loop(self, render):
        calls = []

        async def scenario():
            editor = GraphEditor(render=render, options=EditorOptions(flush_delay_ms=1))
            editor.register_node_type(
                "counted", on_connection_change=lambda node, snapshot: calls.append(node.id)
            )
            a = editor.store.create_node("counted", {"x": 0, "y": 0})
            b = editor.store.create_node("counted", {"x": 0, "y": 0})
            editor.store.create_edge(a, b)
            assert calls == []
            await asyncio.sleep(0.05)
            return editor

        editor = asyncio.run(scenario())

        assert isinstance(editor.timer, AsyncioTimer)
        assert sorted(calls) == ["node-1", "node-2"]
