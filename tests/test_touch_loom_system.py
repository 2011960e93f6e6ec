import math

import pytest

from touch_loom_system import (
    PROMPTS, BrushSizer, HoldState, NodeThread, ProgressionMode, ProgressionStateMachine,
    RippleManager, SerialTaskQueue, TouchEvent, TouchPhase, TouchTracker, Vec2, clamp,
)


def down(touch_id, x, y):
    return TouchEvent(touch_id, x, y, TouchPhase.CHANGED)


def up(touch_id, x, y):
    return TouchEvent(touch_id, x, y, TouchPhase.ENDED)


# --- clamp / SerialTaskQueue ---

def test_clamp_saturates():
    assert clamp(-5, 0, 1) == 0
    assert clamp(5, 0, 1) == 1
    assert clamp(0.5, 0, 1) == 0.5


def test_task_queue_runs_only_due_tasks_in_deadline_order(clock):
    queue = SerialTaskQueue(clock)
    ran = []
    queue.doMethodLater(0.5, ran.append, "b", extraArgs=["b"])
    queue.doMethodLater(0.2, ran.append, "a", extraArgs=["a"])
    assert queue.step() == 0
    clock.advance(0.3)
    assert queue.step() == 1
    clock.advance(0.3)
    queue.step()
    assert ran == ["a", "b"]
    assert len(queue) == 0


def test_task_queue_remove_is_idempotent(clock):
    queue = SerialTaskQueue(clock)
    queue.doMethodLater(0.1, lambda: None, "task")
    assert queue.hasTaskNamed("task")
    assert queue.remove("task") == 1
    assert queue.remove("task") == 0
    assert not queue.hasTaskNamed("task")


# --- TouchTracker ---

def test_short_hold_does_not_pin(clock):
    pins = []
    tracker = TouchTracker(pins.append, clock=clock)
    tracker.update([down(1, 10, 10)])
    clock.advance(0.59)
    assert tracker.update([down(1, 10, 10)]) == []
    tracker.update([up(1, 10, 10)])
    assert pins == []
    assert len(tracker) == 0


def test_hold_pins_exactly_once_per_continuous_hold(clock):
    pins = []
    tracker = TouchTracker(pins.append, clock=clock)
    tracker.update([down(1, 100, 100)])
    for _ in range(10):
        clock.advance(0.1)
        tracker.update([down(1, 100, 100)])
    assert pins == [Vec2(100, 100)]
    assert tracker.hold_state(1) is HoldState.CONSUMED


def test_hold_pins_at_latest_position(clock):
    tracker = TouchTracker(clock=clock)
    tracker.update([down(1, 0, 0)])
    clock.advance(0.61)
    assert tracker.update([down(1, 30, 40)]) == [Vec2(30, 40)]


def test_release_then_new_hold_pins_again(clock):
    pins = []
    tracker = TouchTracker(pins.append, clock=clock)
    for _ in range(2):
        tracker.update([down(7, 5, 5)])
        clock.advance(0.7)
        tracker.update([down(7, 5, 5)])
        tracker.update([up(7, 5, 5)])
    assert len(pins) == 2


def test_simultaneous_touches_pin_independently(clock):
    pins = []
    tracker = TouchTracker(pins.append, clock=clock)
    tracker.update([down("a", 1, 1)])
    clock.advance(0.35)
    tracker.update([down("a", 1, 1), down("b", 2, 2)])
    clock.advance(0.35)
    tracker.update([down("a", 1, 1), down("b", 2, 2)])
    assert pins == [Vec2(1, 1)]
    clock.advance(0.35)
    tracker.update([down("a", 1, 1), down("b", 2, 2)])
    assert pins == [Vec2(1, 1), Vec2(2, 2)]


def test_poll_holds_pins_stationary_touch(clock):
    pins = []
    tracker = TouchTracker(pins.append, clock=clock)
    tracker.update([down(1, 3, 4)])
    clock.advance(0.65)
    assert tracker.poll_holds() == [Vec2(3, 4)]
    assert tracker.poll_holds() == []
    assert pins == [Vec2(3, 4)]


def test_hold_progress(clock):
    tracker = TouchTracker(clock=clock)
    assert tracker.hold_progress("missing") == 0.0
    tracker.update([down(1, 0, 0)])
    clock.advance(0.3)
    assert tracker.hold_progress(1) == pytest.approx(0.5)
    clock.advance(0.4)
    tracker.update([down(1, 0, 0)])
    assert tracker.hold_state(1) is HoldState.CONSUMED
    assert tracker.hold_progress(1) == 0.0


def test_release_unknown_touch_is_noop(clock):
    tracker = TouchTracker(clock=clock)
    tracker.release(42)
    tracker.update([up(42, 0, 0)])
    assert tracker.hold_state(42) is HoldState.NOT_STARTED


def test_clear_empties_touches(clock):
    tracker = TouchTracker(clock=clock)
    tracker.update([down(1, 0, 0), down(2, 1, 1)])
    tracker.clear()
    assert tracker.positions() == {}
    assert len(tracker) == 0
    assert 1 not in tracker
    assert tracker.hold_state(1) is HoldState.NOT_STARTED


def test_tracker_rejects_non_positive_threshold():
    with pytest.raises(ValueError):
        TouchTracker(hold_threshold=0)


# --- NodeThread ---

def test_thread_appends_without_dedup_and_clears():
    thread = NodeThread()
    assert thread.segments() == []
    thread.pin(Vec2(1, 1))
    assert thread.segments() == []
    thread.pin(Vec2(1, 1))
    thread.pin(Vec2(5, 5))
    assert thread.count == 3
    assert list(thread) == [Vec2(1, 1), Vec2(1, 1), Vec2(5, 5)]
    assert thread.segments() == [(Vec2(1, 1), Vec2(1, 1)), (Vec2(1, 1), Vec2(5, 5))]
    thread.clear()
    assert len(thread) == 0


def test_thread_copies_pinned_points():
    thread = NodeThread()
    point = Vec2(1, 2)
    thread.pin(point)
    point.x = 99
    assert thread.nodes == (Vec2(1, 2),)


# --- RippleManager ---

def test_ripple_visible_until_lifetime_then_gone(clock):
    queue = SerialTaskQueue(clock)
    ripples = RippleManager(queue, clock=clock)
    ripple_id = ripples.spawn(Vec2(10, 10))
    views = ripples.active()
    assert [v.id for v in views] == [ripple_id]
    assert views[0].progress == 0.0

    clock.advance(0.4)
    (view,) = ripples.active()
    assert view.progress == pytest.approx(0.5)
    assert view.diameter == pytest.approx(82.0)
    assert view.opacity == pytest.approx(0.5)
    assert view.stroke_width == pytest.approx(3.0)

    clock.advance(0.41)
    assert ripples.active() == []


def test_ripple_expired_by_query_drops_its_task(clock):
    queue = SerialTaskQueue(clock)
    ripples = RippleManager(queue, clock=clock)
    ripple_id = ripples.spawn(Vec2(0, 0))
    clock.advance(0.9)
    assert ripples.active() == []
    assert ripple_id not in ripples
    assert len(queue) == 0
    assert queue.step() == 0


def test_ripple_removed_by_task_without_rendering(clock):
    queue = SerialTaskQueue(clock)
    ripples = RippleManager(queue, clock=clock)
    ripple_id = ripples.spawn(Vec2(0, 0))
    clock.advance(0.8)
    queue.step()
    assert ripple_id not in ripples
    assert len(queue) == 0


def test_ripple_expiry_of_missing_id_is_noop(clock):
    queue = SerialTaskQueue(clock)
    ripples = RippleManager(queue, clock=clock)
    kept = ripples.spawn(Vec2(0, 0))
    queue.doMethodLater(0.1, ripples._expire_task, "stale", extraArgs=["no-such-ripple"])
    clock.advance(0.2)
    assert queue.step() == 1
    assert kept in ripples
    ripples.remove("no-such-ripple")
    assert len(ripples) == 1


def test_ripple_clear_cancels_tasks(clock):
    queue = SerialTaskQueue(clock)
    ripples = RippleManager(queue, clock=clock)
    ripples.spawn(Vec2(0, 0))
    ripples.spawn(Vec2(1, 1))
    ripples.clear()
    assert len(ripples) == 0
    assert len(queue) == 0


# --- BrushSizer ---

def test_pinch_commits_only_final_scale():
    brush = BrushSizer(base=40)
    for scale in (1.0, 1.5, 0.9):
        brush.update_gesture(scale)
    assert brush.base == 40
    assert brush.size == pytest.approx(36)
    assert brush.end_gesture() == pytest.approx(36)
    assert brush.live_scale == 1.0
    assert not brush.in_gesture


@pytest.mark.parametrize("scale", [-3.0, 0.0, 1e9, math.inf, -math.inf, 0.01, 2.9])
def test_brush_size_stays_in_bounds(scale):
    brush = BrushSizer()
    brush.update_gesture(scale)
    assert 16 <= brush.size <= 120
    brush.end_gesture()
    assert 16 <= brush.base <= 120


def test_brush_resize_sequence_stays_in_bounds():
    brush = BrushSizer()
    for scale in (10, 10, -1, 0.5, 1e12, 0.0001):
        brush.resize(scale)
        assert 16 <= brush.base <= 120
    assert brush.base == 16


def test_brush_ignores_nan_scale():
    brush = BrushSizer(base=50)
    brush.update_gesture(2.0)
    brush.update_gesture(math.nan)
    assert brush.end_gesture() == 100


def test_brush_cancel_keeps_base():
    brush = BrushSizer(base=50)
    brush.update_gesture(2.0)
    brush.cancel_gesture()
    assert brush.size == 50


def test_brush_rejects_inverted_bounds():
    with pytest.raises(ValueError):
        BrushSizer(min_size=50, max_size=10)


# --- ProgressionStateMachine ---

def test_goal_crossing_fires_once():
    progression = ProgressionStateMachine()
    assert not any(progression.observe_node_count(n) for n in range(4))
    assert progression.observe_node_count(4)
    assert progression.mode is ProgressionMode.COMPLETED
    assert progression.tokens == 1
    assert not progression.observe_node_count(5)
    assert progression.tokens == 1


def test_continue_raises_level_and_capped_goal():
    progression = ProgressionStateMachine()
    assert not progression.continue_level()
    goals = []
    for _ in range(15):
        progression.observe_node_count(progression.goal)
        level = progression.level
        assert progression.continue_level()
        assert progression.level == level + 1
        assert progression.mode is ProgressionMode.PLAYING
        goals.append(progression.goal)
    assert goals[:3] == [6, 8, 10]
    assert max(goals) == 24
    assert goals[-1] == 24
    assert progression.tokens == 15


def test_prompts_wrap():
    progression = ProgressionStateMachine()
    assert len(PROMPTS) == 12
    assert progression.current_prompt == PROMPTS[0]
    assert progression.next_prompt == PROMPTS[1]
    progression.level = 12
    assert progression.current_prompt == PROMPTS[11]
    assert progression.next_prompt == PROMPTS[0]
    progression.level = 25
    assert progression.current_prompt == PROMPTS[0]


def test_reset_restores_defaults():
    progression = ProgressionStateMachine()
    progression.observe_node_count(4)
    progression.continue_level()
    progression.reset()
    assert (progression.level, progression.goal, progression.tokens) == (1, 4, 0)
    assert not progression.completed
