"""Overlay content for exported test videos.

Everything is laid out in y-down output pixels. Animated parts (graph marker
and force readout) are keyframed on fractions of the visible duration, so they
are independent of the render frame rate.
"""

from dataclasses import dataclass, field

import numpy as np

from testlog.models.pull_test import PullTest
from testlog.models.sync_configuration import SyncConfiguration
from testlog.render.geometry import Rect, Size
from testlog.services.tester_data_parser import ForceSample

RGBA = tuple[float, float, float, float]

WHITE: RGBA = (1.0, 1.0, 1.0, 1.0)
SOFT_WHITE: RGBA = (1.0, 1.0, 1.0, 0.95)
INFO_BOX_COLOR: RGBA = (0.0, 0.0, 0.0, 0.5)
GRAPH_BACKGROUND_COLOR: RGBA = (0.0, 0.0, 0.0, 0.45)
GRAPH_STROKE_COLOR: RGBA = (0.2, 0.85, 0.95, 1.0)
MARKER_FILL_COLOR: RGBA = (1.0, 0.35, 0.25, 1.0)
MARKER_STROKE_COLOR: RGBA = (1.0, 1.0, 1.0, 0.9)

LEFT_MARGIN = 24
INFO_BOX_TOP = 30
INFO_BOX_HEIGHT = 110
GRAPH_HEIGHT = 150
MARKER_RADIUS = 4
TIME_EPSILON = 0.000001
MIN_RANGE = 0.0001

UNTITLED_TEST = "Untitled Test"
UNKNOWN_ANCHOR = "Unknown Anchor"
UNKNOWN_ADHESIVE = "Unknown Adhesive"


@dataclass
class BoxShape:
    frame: Rect
    color: RGBA
    corner_radius: float = 0.0


@dataclass
class TextBlock:
    text: str
    frame: Rect
    font_size: int
    color: RGBA = WHITE


@dataclass
class GraphPoint:
    time: float  # seconds on the primary timeline
    x: float  # relative to the graph frame
    y: float
    force_lbs: float


@dataclass
class GraphOverlay:
    frame: Rect
    points: list[GraphPoint]
    background: RGBA = GRAPH_BACKGROUND_COLOR
    corner_radius: float = 8.0
    stroke: RGBA = GRAPH_STROKE_COLOR
    line_width: float = 2.0

    def absolute_points(self) -> list[tuple[float, float]]:
        return [(self.frame.x + p.x, self.frame.y + p.y) for p in self.points]


@dataclass
class MarkerKeyframe:
    key_time: float  # fraction of the visible duration
    x: float
    y: float


@dataclass
class LabelKeyframe:
    key_time: float
    text: str


@dataclass
class MarkerOverlay:
    keyframes: list[MarkerKeyframe]
    radius: float = MARKER_RADIUS
    fill: RGBA = MARKER_FILL_COLOR
    stroke: RGBA = MARKER_STROKE_COLOR


@dataclass
class ForceReadout:
    """Discrete text track: each keyframe's text holds until the next one."""

    frame: Rect
    keyframes: list[LabelKeyframe]
    font_size: int = 16
    color: RGBA = SOFT_WHITE

    def text_at(self, fraction: float) -> str:
        current = self.keyframes[0].text
        for keyframe in self.keyframes:
            if keyframe.key_time <= fraction:
                current = keyframe.text
            else:
                break
        return current


@dataclass
class OverlayPlan:
    render_size: Size
    boxes: list[BoxShape] = field(default_factory=list)
    texts: list[TextBlock] = field(default_factory=list)
    graph: GraphOverlay | None = None
    marker: MarkerOverlay | None = None
    readout: ForceReadout | None = None

    def to_dict(self) -> dict:
        return {
            "boxes": [{"frame": b.frame.to_dict(), "color": b.color} for b in self.boxes],
            "texts": [
                {"text": t.text, "frame": t.frame.to_dict(), "font_size": t.font_size}
                for t in self.texts
            ],
            "graph": {
                "frame": self.graph.frame.to_dict(),
                "points": [[p.x, p.y] for p in self.graph.points],
            }
            if self.graph
            else None,
            "marker": [[k.key_time, k.x, k.y] for k in self.marker.keyframes]
            if self.marker
            else None,
            "readout": [[k.key_time, k.text] for k in self.readout.keyframes]
            if self.readout
            else None,
        }


def shorten_adhesive_label(name: str | None) -> str | None:
    """Adhesive name up to the first ``-`` separator."""
    if not name:
        return None
    short = name.split("-", 1)[0].strip()
    return short or name.strip() or None


def format_force(force_lbs: float) -> str:
    return f"Force: {force_lbs:.2f} lbf"


def clip_force_series(
    samples: list[ForceSample], shift_seconds: float, start: float, end: float
) -> tuple[np.ndarray, np.ndarray] | None:
    """Samples moved onto the primary timeline and clipped to ``[start, end]``.

    Returns (times, forces in lbf) including interpolated endpoints, or None
    when the window does not overlap the samples.
    """
    if len(samples) < 2:
        return None
    ordered = sorted(samples, key=lambda s: s.time_seconds)
    times = np.array([s.time_seconds for s in ordered], dtype=np.float64) - shift_seconds
    forces = np.array([s.force_lbs for s in ordered], dtype=np.float64)

    window_start = max(start, float(times[0]))
    window_end = min(end, float(times[-1]))
    if window_end - window_start <= TIME_EPSILON:
        return None

    inner = (times > window_start) & (times < window_end)
    clipped_times = np.concatenate([[window_start], times[inner], [window_end]])
    clipped_forces = np.concatenate(
        [
            [np.interp(window_start, times, forces)],
            forces[inner],
            [np.interp(window_end, times, forces)],
        ]
    )

    # Drop near-duplicate times, keeping the later sample
    keep = np.append(np.diff(clipped_times) >= TIME_EPSILON, True)
    return clipped_times[keep], clipped_forces[keep]


class OverlayBuilder:
    def build(
        self,
        test: PullTest,
        config: SyncConfiguration,
        force_samples: list[ForceSample],
        render_size: Size,
    ) -> OverlayPlan:
        width, height = render_size.width, render_size.height
        plan = OverlayPlan(render_size=render_size)

        info_box = Rect(LEFT_MARGIN, INFO_BOX_TOP, width * 0.45, INFO_BOX_HEIGHT)
        plan.boxes.append(BoxShape(info_box, INFO_BOX_COLOR, corner_radius=10))
        plan.texts.append(
            TextBlock(test.test_id or UNTITLED_TEST, Rect(36, 44, width * 0.4, 36), 26, WHITE)
        )
        subtitle = (
            f"{test.product_name or UNKNOWN_ANCHOR} | "
            f"{shorten_adhesive_label(test.adhesive_name) or UNKNOWN_ADHESIVE}"
        )
        plan.texts.append(TextBlock(subtitle, Rect(36, 80, width * 0.4, 30), 18, SOFT_WHITE))

        if not force_samples:
            return plan

        trim_in = config.trim_in_seconds or 0.0
        trim_out = config.trim_out_seconds if config.trim_out_seconds is not None else trim_in
        visible = max(trim_out - trim_in, MIN_RANGE)
        shift = config.effective_offset + (config.tester_data_offset_seconds or 0.0)

        graph_frame = Rect(width * 0.52, info_box.min_y, width * 0.44, GRAPH_HEIGHT)
        series = clip_force_series(force_samples, shift, trim_in, trim_out)
        if series is None:
            plan.graph = GraphOverlay(frame=graph_frame, points=[])
            return plan

        times, forces = series
        span = max(float(times[-1] - times[0]), MIN_RANGE)
        force_min = float(forces.min())
        force_range = max(float(forces.max()) - force_min, MIN_RANGE)
        points = [
            GraphPoint(
                time=float(t),
                x=(float(t) - float(times[0])) / span * graph_frame.width,
                y=graph_frame.height - (float(f) - force_min) / force_range * graph_frame.height,
                force_lbs=float(f),
            )
            for t, f in zip(times, forces)
        ]
        plan.graph = GraphOverlay(frame=graph_frame, points=points)

        plan.marker = MarkerOverlay(
            keyframes=[
                MarkerKeyframe(
                    key_time=(p.time - trim_in) / visible,
                    x=graph_frame.x + p.x,
                    y=graph_frame.y + p.y,
                )
                for p in points
            ]
        )
        plan.readout = ForceReadout(
            frame=Rect(graph_frame.x + 12, graph_frame.max_y - 30, 240, 24),
            keyframes=[
                LabelKeyframe(
                    key_time=min(max((p.time - trim_in) / visible, 0.0), 1.0),
                    text=format_force(p.force_lbs),
                )
                for p in points
            ],
        )
        return plan
