# Panda3D front end for Touch Loom.
#
# A welcome screen with a Start button.
# The main canvas: hold a finger (or the mouse) ~0.6s to pin a node, pinch with two fingers to
# resize the brush, double-tap to clear. Nodes are joined by a thread in pin order.
# A completion overlay with Home / Continue when the level goal is reached.
#
# Native touches are polled every frame from the mouse watcher; the mouse acts as touch 0.
# All game logic lives in touch_loom_screen.ScreenController; this file only feeds it input
# and draws its snapshot onto pixel2d.

import logging
import math

from direct.showbase.ShowBase import ShowBase
from direct.gui.DirectGui import DirectButton, DirectFrame, OnscreenText, DGG
from panda3d.core import TextNode, LineSegs, TransparencyAttrib
from panda3d.core import MouseButton, InputDevice, InputDeviceManager

from touch_loom_screen import FeedbackPulse, ScreenController, ScreenMode
from touch_loom_system import TouchEvent, TouchPhase

logger = logging.getLogger(__name__)

THREAD_COLOR = (0.45, 0.75, 1.0, 0.6)
NODE_COLOR = (1.0, 1.0, 1.0, 0.85)
NODE_HALO_COLOR = (0.0, 0.9, 1.0, 0.35)
CURSOR_COLOR = (1.0, 1.0, 1.0, 0.35)
PULSE_TEXT = {
    FeedbackPulse.LIGHT: "Pinned",
    FeedbackPulse.MEDIUM: "Goal reached!",
    FeedbackPulse.RIGID: "Cleared",
}


def to_window_pixels(x, y, width, height):
    """Maps mouse-watcher coords (-1..1, y up) to window pixels (origin top-left, y down)."""
    return (x + 1.0) * 0.5 * width, (1.0 - y) * 0.5 * height


def circle_points(cx, cy, radius, segments=32):
    return [(cx + radius * math.cos(2 * math.pi * i / segments),
             cy + radius * math.sin(2 * math.pi * i / segments))
            for i in range(segments + 1)]


def cursor_radii(brush_size, hold_progress):
    """Outer glow, hold-progress ring and core dot radii for a live touch."""
    return brush_size, brush_size * (1.0 + hold_progress) / 2.0, max(8.0, brush_size * 0.35) / 2.0


class TouchLoomApp(ShowBase):
    MOUSE_SIM_TOUCH_ID = 0  # Special ID for mouse simulated touch

    def __init__(self, progression_enabled=True):
        ShowBase.__init__(self)
        self.disableMouse()
        self.setBackgroundColor(0.03, 0.03, 0.04, 1)

        self.controller = ScreenController(self.on_feedback_pulse, progression_enabled=progression_enabled,
                                           task_mgr=self.taskMgr)

        # Everything game-drawn lives under pixel2d: x right, -z down, in window pixels.
        self.canvas = self.pixel2d.attachNewNode("loomCanvas")
        self.canvas.setTransparency(TransparencyAttrib.MAlpha)

        # --- Welcome screen ---
        self.title_text = OnscreenText(text=ScreenController.TITLE, pos=(0, 0.35), scale=0.12,
                                       fg=(1, 1, 1, 0.95), align=TextNode.ACenter)
        self.subtitle_text = OnscreenText(text=ScreenController.WELCOME_TEXT, pos=(0, 0.2), scale=0.05,
                                          fg=(1, 1, 1, 0.7), align=TextNode.ACenter, wordwrap=24)
        self.start_button = DirectButton(text="Start", scale=0.08, pos=(0, 0, -0.2),
                                         relief=DGG.FLAT, frameColor=(1, 1, 1, 1), text_fg=(0, 0, 0, 1),
                                         pad=(1.5, 0.4), command=self.on_start)

        # --- Main canvas HUD ---
        self.hud_text = OnscreenText(text="", pos=(-1.25, -0.9), scale=0.05,
                                     fg=(1, 1, 1, 0.8), align=TextNode.ALeft, mayChange=True)
        self.status_text = OnscreenText(text="", pos=(1.25, -0.9), scale=0.05,
                                        fg=(1, 1, 0.6, 0.9), align=TextNode.ARight, mayChange=True)
        self.home_button = DirectButton(text="Home", scale=0.05, pos=(1.15, 0, 0.9),
                                        relief=DGG.FLAT, frameColor=(0.2, 0.2, 0.25, 0.8),
                                        text_fg=(1, 1, 1, 1), command=self.on_home)

        # --- Completion overlay ---
        self.overlay = DirectFrame(frameSize=(-0.7, 0.7, -0.35, 0.35), frameColor=(0.05, 0.05, 0.08, 0.9),
                                   pos=(0, 0, 0), relief=DGG.FLAT)
        self.overlay_text = OnscreenText(text="", parent=self.overlay, pos=(0, 0.15), scale=0.06,
                                         fg=(1, 1, 1, 1), align=TextNode.ACenter, mayChange=True, wordwrap=20)
        DirectButton(parent=self.overlay, text="Home", scale=0.06, pos=(-0.3, 0, -0.2),
                     relief=DGG.FLAT, frameColor=(0.3, 0.3, 0.35, 1), text_fg=(1, 1, 1, 1), command=self.on_home)
        DirectButton(parent=self.overlay, text="Continue", scale=0.06, pos=(0.3, 0, -0.2),
                     relief=DGG.FLAT, frameColor=(1, 1, 1, 1), text_fg=(0, 0, 0, 1), command=self.on_continue)

        # Attach any touchscreens so the mouse watcher reports their contacts
        self.dev_mgr = InputDeviceManager.getGlobalPtr()
        for dev in self.dev_mgr.getDevices(InputDevice.DeviceClass.touch):
            self.attachInputDevice(dev, prefix=dev.name)

        self.previous_touches_state = {}  # {touch_id: (x, y)} in window pixels
        self.taskMgr.add(self.poll_inputs_task, "pollInputsTask")
        self.accept("escape", self.userExit)
        self._refresh_ui(self.controller.snapshot())

    # --- Input ---
    def current_touches(self):
        width, height = self.win.getXSize(), self.win.getYSize()
        touches = {}
        if hasattr(self.mouseWatcherNode, 'hasTouch') and self.mouseWatcherNode.hasTouch():
            for i in range(self.mouseWatcherNode.getNumTouches()):
                t_info = self.mouseWatcherNode.getTouch(i)
                touches[t_info.getId()] = to_window_pixels(t_info.getX(), t_info.getY(), width, height)

        if self.mouseWatcherNode.hasMouse() and self.mouseWatcherNode.isButtonDown(MouseButton.one()):
            mx, my = self.mouseWatcherNode.getMouseX(), self.mouseWatcherNode.getMouseY()
            touches.setdefault(self.MOUSE_SIM_TOUCH_ID, to_window_pixels(mx, my, width, height))
        return touches

    def poll_inputs_task(self, task):
        current = self.current_touches()
        events = [TouchEvent(t_id, x, y, TouchPhase.CHANGED) for t_id, (x, y) in current.items()]
        events += [TouchEvent(t_id, x, y, TouchPhase.ENDED)
                   for t_id, (x, y) in self.previous_touches_state.items() if t_id not in current]
        self.previous_touches_state = current

        if events:
            self.controller.handle_touch_batch(events)
        self.controller.tick()

        frame = self.controller.snapshot()
        self._redraw(frame)
        self._refresh_ui(frame)
        return task.cont

    # --- Button handlers ---
    def on_start(self):
        self.controller.start()

    def on_home(self):
        self.controller.home()
        self.status_text.setText("")

    def on_continue(self):
        self.controller.continue_level()

    # --- Feedback ---
    def on_feedback_pulse(self, pulse):
        # Haptics belong to the device layer; here the pulse is only reported.
        logger.info("Feedback pulse: %s", pulse.name)
        self.status_text.setText(PULSE_TEXT[pulse])

    # --- Drawing ---
    def _draw_circle(self, segs, cx, cy, radius):
        points = circle_points(cx, cy, radius)
        segs.moveTo(points[0][0], 0, -points[0][1])
        for x, y in points[1:]:
            segs.drawTo(x, 0, -y)

    def _redraw(self, frame):
        self.canvas.node().removeAllChildren()
        if frame.mode is not ScreenMode.MAIN:
            return

        if len(frame.nodes) > 1:
            thread = LineSegs("thread")
            thread.setThickness(3)
            thread.setColor(*THREAD_COLOR)
            thread.moveTo(frame.nodes[0].x, 0, -frame.nodes[0].y)
            for node in frame.nodes[1:]:
                thread.drawTo(node.x, 0, -node.y)
            self.canvas.attachNewNode(thread.create())

        nodes = LineSegs("nodes")
        for node in frame.nodes:
            nodes.setThickness(6)
            nodes.setColor(*NODE_HALO_COLOR)
            self._draw_circle(nodes, node.x, node.y, 12)
            nodes.setThickness(3)
            nodes.setColor(*NODE_COLOR)
            self._draw_circle(nodes, node.x, node.y, 5)
        self.canvas.attachNewNode(nodes.create())

        cursors = LineSegs("cursors")
        for touch in frame.touches:
            outer, ring, core = cursor_radii(frame.brush_size, touch.hold_progress)
            cursors.setThickness(1)
            cursors.setColor(1, 1, 1, 0.12)
            self._draw_circle(cursors, touch.position.x, touch.position.y, outer)
            cursors.setThickness(2)
            cursors.setColor(*(NODE_HALO_COLOR if touch.pinned else CURSOR_COLOR))
            self._draw_circle(cursors, touch.position.x, touch.position.y, ring)
            cursors.setColor(1, 1, 1, 0.8)
            self._draw_circle(cursors, touch.position.x, touch.position.y, core)
        self.canvas.attachNewNode(cursors.create())

        ripples = LineSegs("ripples")
        for ripple in frame.ripples:
            ripples.setThickness(ripple.stroke_width)
            ripples.setColor(1, 1, 1, ripple.opacity)
            self._draw_circle(ripples, ripple.center.x, ripple.center.y, ripple.diameter / 2.0)
        self.canvas.attachNewNode(ripples.create())

    def _refresh_ui(self, frame):
        welcome = frame.mode is ScreenMode.WELCOME
        self.title_text.setText(frame.title)
        self.subtitle_text.setText(frame.subtitle)
        self.subtitle_text.setPos(0, 0.2 if welcome else 0.82)
        self.title_text.setPos(0, 0.35 if welcome else 0.9)
        if welcome:
            self.start_button.show()
        else:
            self.start_button.hide()
        for widget in (self.hud_text, self.status_text, self.home_button):
            if welcome:
                widget.hide()
            else:
                widget.show()

        if frame.completed:
            self.overlay_text.setText(f"Goal reached! Tokens: {frame.tokens}\nNext: {frame.next_prompt}")
            self.overlay.show()
        else:
            self.overlay.hide()

        if welcome:
            return
        hud = f"Brush {frame.brush_size:.0f}  Nodes {len(frame.nodes)}"
        if frame.progression_enabled:
            hud = (f"Level {frame.level}: {frame.prompt}  Goal {len(frame.nodes)}/{frame.goal}  "
                   f"Tokens {frame.tokens}  " + hud)
        self.hud_text.setText(hud)


def main(progression_enabled=True):
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s: %(message)s")
    app = TouchLoomApp(progression_enabled=progression_enabled)
    app.run()


if __name__ == "__main__":
    main()
