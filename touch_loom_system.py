# Core logic for Touch Loom: press-and-hold to pin nodes, which connect into a thread.
# This module holds the touch tracker, the node/thread model, ripple effects, the pinch-sized
# brush and the level progression. None of it renders anything.
# A front end (see panda3d_touch_loom.py) feeds touch batches in and draws what these classes report.
# Timing uses an injectable clock so the logic can run headless and under test.

import logging
import math
import time
import uuid
from enum import Enum, auto

logger = logging.getLogger(__name__)


def clamp(value, lo, hi):
    return max(lo, min(hi, value))


# --- Helper Classes ---
class Vec2:
    """A simple 2D point/vector."""
    def __init__(self, x, y):
        self.x = float(x)
        self.y = float(y)

    def __repr__(self):
        return f"Vec2({self.x:.2f}, {self.y:.2f})"

    def __eq__(self, other):
        if not isinstance(other, Vec2):
            return NotImplemented
        return self.x == other.x and self.y == other.y

    def __hash__(self):
        return hash((self.x, self.y))

    def distance_to(self, other):
        return math.hypot(self.x - other.x, self.y - other.y)

    def as_tuple(self):
        return (self.x, self.y)


class TouchPoint:
    """Represents a single touch point with an ID and coordinates."""
    def __init__(self, id, x, y):
        self.id = id
        self.x = float(x)
        self.y = float(y)

    def __repr__(self):
        return f"TouchPoint(id={self.id}, x={self.x:.1f}, y={self.y:.1f})"

    @property
    def position(self):
        return Vec2(self.x, self.y)


class TouchPhase(Enum):
    CHANGED = auto()
    ENDED = auto()


class TouchEvent(TouchPoint):
    """A touch sample plus whether the contact is still down."""
    def __init__(self, id, x, y, phase=TouchPhase.CHANGED):
        super().__init__(id, x, y)
        self.phase = phase

    def __repr__(self):
        return f"TouchEvent(id={self.id}, x={self.x:.1f}, y={self.y:.1f}, {self.phase.name})"

    @property
    def ended(self):
        return self.phase is TouchPhase.ENDED


class SerialTaskQueue:
    """
    Delayed tasks run on the caller's thread, one at a time.
    Mirrors the part of Panda3D's task manager that the core uses
    (doMethodLater / remove / hasTaskNamed) so either can be plugged in.
    Nothing runs until step() is called, usually once per frame.
    """
    def __init__(self, clock=time.monotonic):
        self.clock = clock
        self._tasks = {}  # name -> (due_time, seq, func, extra_args)
        self._seq = 0

    def doMethodLater(self, delay_time, func, name, extraArgs=None):
        self._seq += 1
        self._tasks[name] = (self.clock() + delay_time, self._seq, func, list(extraArgs or []))

    def remove(self, name):
        return 1 if self._tasks.pop(name, None) is not None else 0

    def hasTaskNamed(self, name):
        return name in self._tasks

    def __len__(self):
        return len(self._tasks)

    def step(self):
        """Runs every task that is due, oldest deadline first. Returns how many ran."""
        now = self.clock()
        due = sorted((entry[0], entry[1], name) for name, entry in self._tasks.items() if entry[0] <= now)
        ran = 0
        for _, _, name in due:
            entry = self._tasks.pop(name, None)
            if entry is None:  # removed by an earlier task in this step
                continue
            _, _, func, extra_args = entry
            func(*extra_args)
            ran += 1
        return ran


# --- Core Logic Components ---

class HoldState(Enum):
    NOT_STARTED = auto()
    COUNTING = auto()
    CONSUMED = auto()


class TrackedTouch:
    def __init__(self, touch_id, position: Vec2, start_time):
        self.id = touch_id
        self.position = position
        self.start_time = start_time
        self.state = HoldState.COUNTING

    def __repr__(self):
        return f"TrackedTouch(id={self.id}, pos={self.position}, {self.state.name})"


class TouchTracker:
    """
    Tracks live touches by id and turns a sustained hold into a pin.
    Each touch pins at most once per continuous hold; several touches can
    cross the threshold independently.
    """
    HOLD_THRESHOLD_SEC = 0.6

    def __init__(self, on_hold_callback=None, hold_threshold=None, clock=time.monotonic):
        self.on_hold_callback = on_hold_callback
        self.hold_threshold = self.HOLD_THRESHOLD_SEC if hold_threshold is None else hold_threshold
        if self.hold_threshold <= 0:
            raise ValueError("hold_threshold must be positive")
        self.clock = clock
        self._touches = {}  # touch_id -> TrackedTouch

    def __len__(self):
        return len(self._touches)

    def __contains__(self, touch_id):
        return touch_id in self._touches

    def positions(self):
        return {t_id: t.position for t_id, t in self._touches.items()}

    def hold_state(self, touch_id):
        touch = self._touches.get(touch_id)
        return touch.state if touch else HoldState.NOT_STARTED

    def update(self, events):
        """
        Applies a batch of touch events. Returns the points pinned by this batch.
        """
        now = self.clock()
        pinned = []
        for event in events:
            if event.phase is TouchPhase.ENDED:
                self.release(event.id)
                continue
            position = Vec2(event.x, event.y)
            touch = self._touches.get(event.id)
            if touch is None:
                touch = TrackedTouch(event.id, position, now)
                self._touches[event.id] = touch
            else:
                touch.position = position
            if self._check_hold(touch, now):
                pinned.append(position)
        return pinned

    def poll_holds(self):
        """Checks stationary touches against the threshold without new input."""
        now = self.clock()
        pinned = []
        for touch in list(self._touches.values()):
            if self._check_hold(touch, now):
                pinned.append(touch.position)
        return pinned

    def _check_hold(self, touch: TrackedTouch, now):
        if touch.state is not HoldState.COUNTING:
            return False
        if now < touch.start_time + self.hold_threshold:
            return False
        touch.state = HoldState.CONSUMED
        logger.debug("Touch %s held %.2fs at %s", touch.id, now - touch.start_time, touch.position)
        if self.on_hold_callback:
            self.on_hold_callback(touch.position)
        return True

    def release(self, touch_id):
        self._touches.pop(touch_id, None)

    def hold_progress(self, touch_id):
        touch = self._touches.get(touch_id)
        if touch is None or touch.state is not HoldState.COUNTING:
            return 0.0
        return clamp((self.clock() - touch.start_time) / self.hold_threshold, 0.0, 1.0)

    def clear(self):
        self._touches.clear()


class NodeThread:
    """Ordered pinned points. The thread is the polyline through them in pin order."""
    def __init__(self):
        self._nodes = []

    def pin(self, point):
        node = Vec2(point.x, point.y)
        self._nodes.append(node)
        return node

    def clear(self):
        self._nodes.clear()

    @property
    def count(self):
        return len(self._nodes)

    def __len__(self):
        return len(self._nodes)

    def __iter__(self):
        return iter(tuple(self._nodes))

    @property
    def nodes(self):
        return tuple(self._nodes)

    def segments(self):
        return list(zip(self._nodes, self._nodes[1:]))


class Ripple:
    def __init__(self, ripple_id, center: Vec2, birth):
        self.id = ripple_id
        self.center = center
        self.birth = birth

    def __repr__(self):
        return f"Ripple(id={self.id}, center={self.center}, birth={self.birth:.3f})"


class RippleView:
    """A ripple as seen at one instant. progress runs 0 -> 1 over the lifetime."""
    START_DIAMETER = 12.0
    GROWTH = 140.0
    MAX_STROKE = 6.0

    def __init__(self, ripple: Ripple, age, progress):
        self.id = ripple.id
        self.center = ripple.center
        self.age = age
        self.progress = progress

    def __repr__(self):
        return f"RippleView(id={self.id}, center={self.center}, progress={self.progress:.2f})"

    @property
    def diameter(self):
        return self.START_DIAMETER + self.GROWTH * self.progress

    @property
    def opacity(self):
        return 1.0 - self.progress

    @property
    def stroke_width(self):
        return max(1.0, self.MAX_STROKE * (1.0 - self.progress))


class RippleManager:
    """
    Transient ring effects spawned where a node is pinned.
    Each ripple removes itself through a task on the shared task queue;
    queries also hide ripples past their lifetime in case that task has not run yet.
    """
    RIPPLE_LIFETIME_SEC = 0.8

    def __init__(self, task_mgr, lifetime=None, clock=time.monotonic):
        self.task_mgr = task_mgr
        self.lifetime = self.RIPPLE_LIFETIME_SEC if lifetime is None else lifetime
        if self.lifetime <= 0:
            raise ValueError("lifetime must be positive")
        self.clock = clock
        self._ripples = {}
        self._expire_task_prefix = "rippleExpireTask_"

    def __len__(self):
        return len(self._ripples)

    def __contains__(self, ripple_id):
        return ripple_id in self._ripples

    def spawn(self, point):
        ripple = Ripple(uuid.uuid4().hex, Vec2(point.x, point.y), self.clock())
        self._ripples[ripple.id] = ripple
        self.task_mgr.doMethodLater(self.lifetime,
                                    self._expire_task,
                                    f"{self._expire_task_prefix}{ripple.id}",
                                    extraArgs=[ripple.id])
        return ripple.id

    def _expire_task(self, ripple_id):
        if self._ripples.pop(ripple_id, None) is not None:
            logger.debug("Ripple %s expired", ripple_id)

    def remove(self, ripple_id):
        self._ripples.pop(ripple_id, None)
        self.task_mgr.remove(f"{self._expire_task_prefix}{ripple_id}")

    def active(self):
        return self.tick(self.clock())

    def tick(self, now):
        views = []
        for ripple in list(self._ripples.values()):
            age = now - ripple.birth
            if now >= ripple.birth + self.lifetime:
                self.remove(ripple.id)
                continue
            views.append(RippleView(ripple, age, clamp(age / self.lifetime, 0.0, 1.0)))
        return views

    def clear(self):
        for ripple_id in list(self._ripples.keys()):
            self.remove(ripple_id)


class BrushSizer:
    """
    Brush radius driven by a pinch. The live gesture scale is kept apart from the
    committed base and only folded in when the gesture ends, so partial updates
    never compound.
    """
    MIN_SIZE = 16.0
    MAX_SIZE = 120.0
    DEFAULT_SIZE = 40.0

    def __init__(self, base=None, min_size=None, max_size=None):
        self.min_size = self.MIN_SIZE if min_size is None else float(min_size)
        self.max_size = self.MAX_SIZE if max_size is None else float(max_size)
        if self.min_size > self.max_size:
            raise ValueError("min_size must not exceed max_size")
        self.base = self._bounded(self.DEFAULT_SIZE if base is None else float(base))
        self.live_scale = 1.0
        self.in_gesture = False

    def _bounded(self, value):
        return clamp(value, self.min_size, self.max_size)

    @property
    def size(self):
        return self._bounded(self.base * self.live_scale)

    def update_gesture(self, scale):
        self.in_gesture = True
        if math.isnan(scale):
            return
        self.live_scale = scale

    def end_gesture(self, scale=None):
        if scale is not None:
            self.update_gesture(scale)
        self.base = self.size
        self.live_scale = 1.0
        self.in_gesture = False
        return self.base

    def cancel_gesture(self):
        self.live_scale = 1.0
        self.in_gesture = False

    def resize(self, scale):
        self.update_gesture(scale)
        return self.end_gesture()


PROMPTS = [
    "Spider Silk",
    "Constellation",
    "River Delta",
    "Mountain Ridge",
    "Lightning Fork",
    "Tide Line",
    "Cat's Cradle",
    "Ivy Vine",
    "Subway Map",
    "Heartbeat",
    "Comet Trail",
    "Dream Catcher",
]


class ProgressionMode(Enum):
    PLAYING = auto()
    COMPLETED = auto()


class ProgressionStateMachine:
    """
    Level / goal / token bookkeeping.

    PLAYING -> COMPLETED fires once when the node count reaches the goal.
    COMPLETED -> PLAYING only through continue_level(), which raises the
    level and the goal (capped). The prompt list wraps forever.
    """
    START_LEVEL = 1
    START_GOAL = 4
    GOAL_STEP = 2
    GOAL_CAP = 24

    def __init__(self, prompts=None):
        self.prompts = list(prompts or PROMPTS)
        self.reset()

    def __repr__(self):
        return (f"ProgressionStateMachine(level={self.level}, goal={self.goal}, "
                f"tokens={self.tokens}, mode={self.mode.name})")

    def reset(self):
        self.level = self.START_LEVEL
        self.goal = self.START_GOAL
        self.tokens = 0
        self.mode = ProgressionMode.PLAYING

    @property
    def completed(self):
        return self.mode is ProgressionMode.COMPLETED

    def observe_node_count(self, count):
        if self.mode is not ProgressionMode.PLAYING or count < self.goal:
            return False
        self.mode = ProgressionMode.COMPLETED
        self.tokens += 1
        logger.info("Level %d complete with %d nodes, tokens=%d", self.level, count, self.tokens)
        return True

    def continue_level(self):
        if self.mode is not ProgressionMode.COMPLETED:
            return False
        self.level += 1
        self.goal = min(self.goal + self.GOAL_STEP, self.GOAL_CAP)
        self.mode = ProgressionMode.PLAYING
        logger.info("Level %d started, goal=%d", self.level, self.goal)
        return True

    @property
    def current_prompt(self):
        return self.prompts[(self.level - 1) % len(self.prompts)]

    @property
    def next_prompt(self):
        return self.prompts[self.level % len(self.prompts)]
