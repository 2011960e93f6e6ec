# Screen-level wiring for Touch Loom.
# The ScreenController owns one LoomSession while the main canvas is up and routes every
# input batch through the hold tracker, the pinch recognizer and the double-tap recognizer.
# Each recognizer sees the whole batch; none of them consumes events the others need.
# Output goes two ways: snapshot() for whoever renders, and FeedbackPulse values for haptics.

import logging
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import List, Optional, Tuple

from touch_loom_system import (
    BrushSizer, HoldState, NodeThread, ProgressionStateMachine, RippleManager, RippleView,
    SerialTaskQueue, TouchTracker, Vec2,
)

logger = logging.getLogger(__name__)


# --- Gesture Recognizers ---

class PinchRecognizer:
    """
    Two-finger pinch over the raw touch stream.
    The first two live touches form the pinch; scale is current distance over
    the distance when the second finger landed.
    """
    MIN_PINCH_BASELINE_UNITS = 1.0
    MIN_PINCH_SCALE_DIFF = 0.01  # Minimum change in scale to report

    def __init__(self, on_pinch_change=None, on_pinch_end=None):
        self.on_pinch_change = on_pinch_change
        self.on_pinch_end = on_pinch_end
        self._positions = {}  # {touch_id: Vec2}
        self.pinch_touch_ids = []
        self.pinch_initial_dist = 0.0
        self.scale = 1.0
        self._last_reported_scale = 1.0

    @property
    def active(self):
        return len(self.pinch_touch_ids) == 2

    def _current_distance(self):
        p1 = self._positions.get(self.pinch_touch_ids[0])
        p2 = self._positions.get(self.pinch_touch_ids[1])
        if p1 is None or p2 is None:
            return None
        return p1.distance_to(p2)

    def update(self, events):
        ended_ids = []
        for event in events:
            self._positions[event.id] = Vec2(event.x, event.y)
            if event.ended:
                ended_ids.append(event.id)

        if self.active and any(t_id in self.pinch_touch_ids for t_id in ended_ids):
            current = self._current_distance()
            if current is not None:
                self.scale = current / self.pinch_initial_dist
            for t_id in ended_ids:
                self._positions.pop(t_id, None)
            self._finish()
            return
        for t_id in ended_ids:
            self._positions.pop(t_id, None)

        if not self.active and len(self._positions) >= 2:
            ids = list(self._positions.keys())[:2]
            dist = self._positions[ids[0]].distance_to(self._positions[ids[1]])
            if dist >= self.MIN_PINCH_BASELINE_UNITS:
                self.pinch_touch_ids = ids
                self.pinch_initial_dist = dist
                self.scale = 1.0
                self._last_reported_scale = 1.0
            return

        if self.active:
            current = self._current_distance()
            if current is None:
                return
            self.scale = current / self.pinch_initial_dist
            if abs(self.scale - self._last_reported_scale) >= self.MIN_PINCH_SCALE_DIFF:
                self._last_reported_scale = self.scale
                if self.on_pinch_change:
                    self.on_pinch_change(self.scale)

    def _finish(self):
        final_scale = self.scale
        self.pinch_touch_ids = []
        self.pinch_initial_dist = 0.0
        self.scale = 1.0
        self._last_reported_scale = 1.0
        if self.on_pinch_end:
            self.on_pinch_end(final_scale)

    def reset(self):
        """Forgets every touch without reporting a pinch end."""
        self._positions.clear()
        self.pinch_touch_ids = []
        self.pinch_initial_dist = 0.0
        self.scale = 1.0
        self._last_reported_scale = 1.0


class DoubleTapRecognizer:
    """Two quick, nearly stationary taps close together in time and space."""
    MAX_TAP_DURATION_SEC = 0.3
    MAX_TAP_INTERVAL_SEC = 0.3
    MAX_TAP_TRAVEL_UNITS = 12.0
    MAX_DOUBLE_TAP_DISTANCE_UNITS = 40.0

    def __init__(self, on_double_tap=None, clock=time.monotonic):
        self.on_double_tap = on_double_tap
        self.clock = clock
        self.touch_states = {}  # {touch_id: {'start_time', 'start_point', 'is_dragging', 'overlapped'}}
        self.last_tap_time = None
        self.last_tap_point = None

    def update(self, events):
        now = self.clock()
        for event in events:
            point = Vec2(event.x, event.y)
            state = self.touch_states.get(event.id)
            if not event.ended:
                if state is None:
                    # Any contact that shares the screen with another is part of a multi-finger gesture
                    overlapped = bool(self.touch_states)
                    for other in self.touch_states.values():
                        other['overlapped'] = True
                    self.touch_states[event.id] = {
                        'start_time': now,
                        'start_point': point,
                        'is_dragging': False,
                        'overlapped': overlapped,
                    }
                elif point.distance_to(state['start_point']) > self.MAX_TAP_TRAVEL_UNITS:
                    state['is_dragging'] = True
                continue

            state = self.touch_states.pop(event.id, None)
            if state is None:
                continue
            if state['overlapped'] or self.touch_states:
                self.last_tap_time = None
                self.last_tap_point = None
                continue
            if state['is_dragging'] or point.distance_to(state['start_point']) > self.MAX_TAP_TRAVEL_UNITS:
                continue
            if now - state['start_time'] > self.MAX_TAP_DURATION_SEC:
                continue
            self._register_tap(now, state['start_point'])

    def _register_tap(self, now, point):
        if (self.last_tap_time is not None
                and now - self.last_tap_time <= self.MAX_TAP_INTERVAL_SEC
                and point.distance_to(self.last_tap_point) <= self.MAX_DOUBLE_TAP_DISTANCE_UNITS):
            self.last_tap_time = None
            self.last_tap_point = None
            if self.on_double_tap:
                self.on_double_tap(point)
            return
        self.last_tap_time = now
        self.last_tap_point = point

    def reset(self):
        self.touch_states.clear()
        self.last_tap_time = None
        self.last_tap_point = None


# --- Session & Screen ---

class FeedbackPulse(Enum):
    LIGHT = auto()   # node pinned
    MEDIUM = auto()  # goal reached
    RIGID = auto()   # canvas cleared


class ScreenMode(Enum):
    WELCOME = auto()
    MAIN = auto()


class LoomSession:
    """All mutable state of one visit to the main canvas."""
    def __init__(self, task_mgr, clock, on_hold_callback=None, hold_threshold=None,
                 ripple_lifetime=None, progression_enabled=True):
        self.tracker = TouchTracker(on_hold_callback, hold_threshold=hold_threshold, clock=clock)
        self.thread = NodeThread()
        self.ripples = RippleManager(task_mgr, lifetime=ripple_lifetime, clock=clock)
        self.brush = BrushSizer()
        self.progression = ProgressionStateMachine() if progression_enabled else None

    def clear_canvas(self):
        self.thread.clear()
        self.tracker.clear()


@dataclass
class TouchView:
    id: object
    position: Vec2
    hold_progress: float
    pinned: bool = False  # this contact already pinned its node


@dataclass
class LoomFrame:
    """Everything a renderer needs for one frame."""
    mode: ScreenMode
    title: str
    subtitle: str
    completed: bool = False
    nodes: Tuple[Vec2, ...] = ()
    segments: List[Tuple[Vec2, Vec2]] = field(default_factory=list)
    touches: List[TouchView] = field(default_factory=list)
    brush_base: float = BrushSizer.DEFAULT_SIZE
    brush_live_scale: float = 1.0
    brush_size: float = BrushSizer.DEFAULT_SIZE
    ripples: List[RippleView] = field(default_factory=list)
    progression_enabled: bool = False
    level: Optional[int] = None
    goal: Optional[int] = None
    tokens: Optional[int] = None
    prompt: Optional[str] = None
    next_prompt: Optional[str] = None


class ScreenController:
    """
    Switches between the welcome screen and the main canvas and routes input.

    While the progression is COMPLETED the canvas ignores touches, pinches and
    double-taps; only home() and continue_level() do anything.
    Home discards the session, so a fresh start() begins again at level 1.
    Clearing leaves ripples to fade out on their own.
    """
    TITLE = "Touch Loom"
    WELCOME_TEXT = "Use touch duration, multi-touch, and gestures to weave an interactive canvas."
    HINT_TEXT = "Hold ~0.6s to pin • Pinch to resize • Double-tap to clear"

    def __init__(self, on_feedback_callback=None, progression_enabled=True,
                 hold_threshold=None, ripple_lifetime=None, clock=time.monotonic, task_mgr=None):
        self.on_feedback_callback = on_feedback_callback
        self.progression_enabled = progression_enabled
        self.hold_threshold = hold_threshold
        self.ripple_lifetime = ripple_lifetime
        self.clock = clock
        # Engine task managers (Panda3D's taskMgr) run their own tasks; the local queue is stepped by tick().
        self._owns_task_mgr = task_mgr is None
        self.task_mgr = SerialTaskQueue(clock) if task_mgr is None else task_mgr

        self.mode = ScreenMode.WELCOME
        self.session: Optional[LoomSession] = None
        self.pinch_recognizer = PinchRecognizer(self.handle_pinch_change, self.handle_pinch_end)
        self.tap_recognizer = DoubleTapRecognizer(self.handle_double_tap, clock=clock)

    # --- Mode switching ---
    def start(self):
        if self.mode is ScreenMode.MAIN:
            return
        self.session = LoomSession(self.task_mgr, self.clock,
                                   on_hold_callback=self._pin,
                                   hold_threshold=self.hold_threshold,
                                   ripple_lifetime=self.ripple_lifetime,
                                   progression_enabled=self.progression_enabled)
        self._reset_recognizers()
        self.mode = ScreenMode.MAIN
        logger.info("Main canvas started (progression %s)", "on" if self.progression_enabled else "off")

    def home(self):
        if self.mode is ScreenMode.WELCOME:
            return
        self.session.ripples.clear()
        self.session = None
        self._reset_recognizers()
        self.mode = ScreenMode.WELCOME
        logger.info("Returned to welcome screen")

    def continue_level(self):
        if not self.completed:
            return False
        self.session.progression.continue_level()
        self.session.clear_canvas()
        self._reset_recognizers()
        return True

    @property
    def completed(self):
        return (self.session is not None
                and self.session.progression is not None
                and self.session.progression.completed)

    @property
    def accepts_canvas_input(self):
        return self.mode is ScreenMode.MAIN and not self.completed

    # --- Input ---
    def handle_touch_batch(self, events):
        """
        Feeds one batch to every recognizer. Returns the nodes pinned by it.
        """
        if not self.accepts_canvas_input:
            return []
        events = list(events)
        thread = self.session.thread
        before = thread.count
        self.session.tracker.update(events)
        if self.accepts_canvas_input:
            self.pinch_recognizer.update(events)
        if self.accepts_canvas_input:
            self.tap_recognizer.update(events)
        return list(thread.nodes[before:])

    def handle_pinch_change(self, scale):
        if not self.accepts_canvas_input:
            return
        self.session.brush.update_gesture(scale)

    def handle_pinch_end(self, scale=None):
        if not self.accepts_canvas_input:
            return
        brush = self.session.brush
        if scale is None and not brush.in_gesture:
            return
        size = brush.end_gesture(scale)
        logger.debug("Brush committed at %.1f", size)

    def handle_double_tap(self, point=None):
        """Clears the canvas. Fed by the tap recognizer, or directly by a front end with its own double-tap events."""
        logger.debug("Double tap at %s", point)
        self.clear_all()

    def clear_all(self):
        if not self.accepts_canvas_input:
            return
        self.session.clear_canvas()
        self.session.brush.cancel_gesture()
        self._reset_recognizers()
        logger.info("Canvas cleared")
        self._pulse(FeedbackPulse.RIGID)

    def tick(self):
        """Runs due background tasks and checks stationary holds. Call once per frame."""
        if self._owns_task_mgr:
            self.task_mgr.step()
        if self.accepts_canvas_input:
            self.session.tracker.poll_holds()

    # --- Internals ---
    def _pin(self, point):
        if not self.accepts_canvas_input:
            return
        session = self.session
        node = session.thread.pin(point)
        session.ripples.spawn(node)
        logger.debug("Pinned node #%d at %s", session.thread.count, node)
        self._pulse(FeedbackPulse.LIGHT)
        if session.progression and session.progression.observe_node_count(session.thread.count):
            session.brush.cancel_gesture()
            self._reset_recognizers()
            self._pulse(FeedbackPulse.MEDIUM)

    def _reset_recognizers(self):
        self.pinch_recognizer.reset()
        self.tap_recognizer.reset()

    def _pulse(self, pulse):
        if self.on_feedback_callback:
            self.on_feedback_callback(pulse)

    # --- Output ---
    def snapshot(self):
        if self.mode is ScreenMode.WELCOME:
            return LoomFrame(mode=self.mode, title=self.TITLE, subtitle=self.WELCOME_TEXT,
                             progression_enabled=self.progression_enabled)

        session = self.session
        tracker = session.tracker
        frame = LoomFrame(
            mode=self.mode,
            title=self.TITLE,
            subtitle=self.HINT_TEXT,
            completed=self.completed,
            nodes=session.thread.nodes,
            segments=session.thread.segments(),
            touches=[TouchView(t_id, pos, tracker.hold_progress(t_id),
                               tracker.hold_state(t_id) is HoldState.CONSUMED)
                     for t_id, pos in tracker.positions().items()],
            brush_base=session.brush.base,
            brush_live_scale=session.brush.live_scale,
            brush_size=session.brush.size,
            ripples=session.ripples.active(),
            progression_enabled=session.progression is not None,
        )
        if session.progression is not None:
            progression = session.progression
            frame.level = progression.level
            frame.goal = progression.goal
            frame.tokens = progression.tokens
            frame.prompt = progression.current_prompt
            frame.next_prompt = progression.next_prompt
        return frame
