"""Render a CompositionPlan to an MP4 file with FFmpeg.

Static overlay parts (info box, labels, graph) are drawn once with Pillow into
a transparent PNG. The graph marker is a small PNG whose overlay position is a
piecewise-linear function of ``t``; the force readout is a concat-demuxer
image sequence, one PNG per keyframe.
"""

import asyncio
import logging
import tempfile
from pathlib import Path

from PIL import Image, ImageDraw, ImageFont

from testlog.config import Settings, get_settings
from testlog.exceptions import ExportFailedError
from testlog.render.composition_planner import CompositionPlan, SourceTrack
from testlog.render.overlay_builder import ForceReadout, MarkerOverlay, OverlayPlan

logger = logging.getLogger(__name__)


def _rgba255(color: tuple[float, float, float, float]) -> tuple[int, int, int, int]:
    return tuple(max(0, min(255, round(c * 255))) for c in color)


def transpose_filters(quarter_turns: int) -> list[str]:
    """FFmpeg filters rotating a frame clockwise by ``quarter_turns``."""
    turns = quarter_turns % 4
    if turns == 1:
        return ["transpose=clock"]
    if turns == 2:
        return ["hflip", "vflip"]
    if turns == 3:
        return ["transpose=cclock"]
    return []


def source_filter_chain(track: SourceTrack) -> str:
    placement = track.placement
    crop = placement.crop
    out = placement.output_size
    filters = ["setpts=PTS-STARTPTS"]
    filters.extend(transpose_filters(placement.quarter_turns))
    filters.append(
        f"crop={max(1, round(crop.width))}:{max(1, round(crop.height))}"
        f":{round(crop.x)}:{round(crop.y)}"
    )
    filters.append(f"scale={max(1, round(out.width))}:{max(1, round(out.height))}")
    return ",".join(filters)


def piecewise_linear_expr(points: list[tuple[float, float]]) -> str:
    """Expression in ``t`` through (time, value) points, held flat outside them."""
    if not points:
        return "0"
    start_value = points[0][1]
    terms = [f"{start_value:.3f}"]
    for (t0, v0), (t1, v1) in zip(points, points[1:]):
        span = t1 - t0
        if span <= 0 or v1 == v0:
            continue
        slope = (v1 - v0) / span
        terms.append(f"{slope:.6f}*clip(t-{t0:.6f},0,{span:.6f})")
    return "+".join(terms)


def readout_segments(readout: ForceReadout, duration: float) -> list[tuple[str, float]]:
    """(text, seconds shown) for each discrete readout keyframe, covering ``duration``."""
    segments = []
    keyframes = readout.keyframes
    for index, keyframe in enumerate(keyframes):
        start = 0.0 if index == 0 else keyframe.key_time * duration
        end = keyframes[index + 1].key_time * duration if index + 1 < len(keyframes) else duration
        if end - start > 0:
            segments.append((keyframe.text, end - start))
    return segments


class FFmpegCompositionExporter:
    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.ffmpeg_path = self.settings.ffmpeg_path

    def _font(self, size: int) -> ImageFont.ImageFont:
        if self.settings.overlay_font_path:
            try:
                return ImageFont.truetype(self.settings.overlay_font_path, size)
            except OSError:
                logger.warning("[EXPORT] Font not usable: %s", self.settings.overlay_font_path)
        return ImageFont.load_default(size=size)

    def render_static_overlay(self, overlay: OverlayPlan, output_path: Path) -> Path:
        size = (int(overlay.render_size.width), int(overlay.render_size.height))
        image = Image.new("RGBA", size, (0, 0, 0, 0))
        draw = ImageDraw.Draw(image)

        for box in overlay.boxes:
            draw.rounded_rectangle(
                [box.frame.min_x, box.frame.min_y, box.frame.max_x, box.frame.max_y],
                radius=box.corner_radius,
                fill=_rgba255(box.color),
            )
        for block in overlay.texts:
            draw.text(
                (block.frame.x, block.frame.y),
                block.text,
                font=self._font(block.font_size),
                fill=_rgba255(block.color),
            )

        graph = overlay.graph
        if graph is not None:
            frame = graph.frame
            draw.rounded_rectangle(
                [frame.min_x, frame.min_y, frame.max_x, frame.max_y],
                radius=graph.corner_radius,
                fill=_rgba255(graph.background),
            )
            points = graph.absolute_points()
            if len(points) > 1:
                draw.line(points, fill=_rgba255(graph.stroke), width=int(graph.line_width))

        image.save(output_path)
        return output_path

    def render_marker(self, marker: MarkerOverlay, output_path: Path) -> Path:
        diameter = int(marker.radius * 2)
        image = Image.new("RGBA", (diameter + 2, diameter + 2), (0, 0, 0, 0))
        draw = ImageDraw.Draw(image)
        draw.ellipse(
            [1, 1, diameter + 1, diameter + 1],
            fill=_rgba255(marker.fill),
            outline=_rgba255(marker.stroke),
            width=1,
        )
        image.save(output_path)
        return output_path

    def render_readout(self, readout: ForceReadout, duration: float, work_dir: Path) -> Path:
        """Write one PNG per readout segment plus an ffconcat playlist."""
        font = self._font(readout.font_size)
        size = (int(readout.frame.width), int(readout.frame.height))
        lines = ["ffconcat version 1.0"]
        last_file = None
        for index, (text, seconds) in enumerate(readout_segments(readout, duration)):
            image = Image.new("RGBA", size, (0, 0, 0, 0))
            ImageDraw.Draw(image).text((0, 2), text, font=font, fill=_rgba255(readout.color))
            file_path = work_dir / f"readout_{index:04d}.png"
            image.save(file_path)
            lines.append(f"file '{file_path.name}'")
            lines.append(f"duration {seconds:.6f}")
            last_file = file_path.name
        if last_file is not None:
            # The concat demuxer ignores the last duration unless the file is repeated
            lines.append(f"file '{last_file}'")

        playlist = work_dir / "readout.ffconcat"
        playlist.write_text("\n".join(lines) + "\n")
        return playlist

    def build_command(self, plan: CompositionPlan, output_path: Path, work_dir: Path) -> list[str]:
        duration = plan.duration
        width, height = int(plan.render_size.width), int(plan.render_size.height)
        inputs: list[str] = []
        filters: list[str] = [f"color=c=black:s={width}x{height}:r={plan.frame_rate}:d={duration:.6f}[base]"]

        current = "base"
        for index, track in enumerate(plan.tracks):
            inputs += ["-ss", f"{track.source_start:.6f}", "-t", f"{duration:.6f}", "-i", str(track.path)]
            label = f"src{index}"
            filters.append(f"[{index}:v]{source_filter_chain(track)}[{label}]")
            placement = track.placement
            filters.append(
                f"[{current}][{label}]overlay=x={round(placement.translate_x)}"
                f":y={round(placement.translate_y)}:eof_action=pass[v{index}]"
            )
            current = f"v{index}"
        next_input = len(plan.tracks)

        overlay = plan.overlay
        if overlay is not None:
            static_png = self.render_static_overlay(overlay, work_dir / "overlay.png")
            inputs += ["-loop", "1", "-t", f"{duration:.6f}", "-i", str(static_png)]
            filters.append(f"[{current}][{next_input}:v]overlay=0:0[ov]")
            current = "ov"
            next_input += 1

            if overlay.marker is not None and overlay.marker.keyframes:
                marker = overlay.marker
                marker_png = self.render_marker(marker, work_dir / "marker.png")
                inputs += ["-loop", "1", "-t", f"{duration:.6f}", "-i", str(marker_png)]
                offset = marker.radius + 1
                xs = [(k.key_time * duration, k.x - offset) for k in marker.keyframes]
                ys = [(k.key_time * duration, k.y - offset) for k in marker.keyframes]
                filters.append(
                    f"[{current}][{next_input}:v]overlay="
                    f"x='{piecewise_linear_expr(xs)}':y='{piecewise_linear_expr(ys)}':eval=frame[mk]"
                )
                current = "mk"
                next_input += 1

            if overlay.readout is not None and overlay.readout.keyframes:
                readout = overlay.readout
                playlist = self.render_readout(readout, duration, work_dir)
                inputs += ["-f", "concat", "-safe", "0", "-i", str(playlist)]
                filters.append(
                    f"[{current}][{next_input}:v]overlay="
                    f"{round(readout.frame.x)}:{round(readout.frame.y)}[rd]"
                )
                current = "rd"
                next_input += 1

        filters.append(f"[{current}]format=yuv420p[vout]")

        cmd = [
            self.ffmpeg_path,
            "-y",
            "-v", "error",
            *inputs,
            "-filter_complex", ";".join(filters),
            "-map", "[vout]",
        ]
        if plan.tracks and plan.primary.include_audio:
            cmd += ["-map", "0:a?", "-c:a", "aac", "-b:a", "192k"]
        cmd += [
            "-c:v", "libx264",
            "-preset", self.settings.render_preset,
            "-crf", str(self.settings.render_crf),
            "-r", str(plan.frame_rate),
            "-t", f"{duration:.6f}",
            "-movflags", "+faststart",
            str(output_path),
        ]
        return cmd

    async def export(self, plan: CompositionPlan, output_path: str | Path) -> Path:
        """Encode ``plan`` to ``output_path``; no file is left behind on failure."""
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        if output_path.exists():
            output_path.unlink()

        with tempfile.TemporaryDirectory(prefix="testlog_export_") as tmp:
            cmd = self.build_command(plan, output_path, Path(tmp))
            logger.info("[EXPORT] Rendering %.2fs to %s", plan.duration, output_path)
            logger.debug("[EXPORT] FFmpeg command: %s", " ".join(cmd))

            try:
                proc = await asyncio.create_subprocess_exec(
                    *cmd,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as e:
                raise ExportFailedError(f"FFmpeg could not be started: {e}")

            try:
                _, stderr = await proc.communicate()
            except asyncio.CancelledError:
                if proc.returncode is None:
                    proc.kill()
                    await proc.wait()
                output_path.unlink(missing_ok=True)
                raise

        if proc.returncode != 0:
            stderr_text = stderr.decode("utf-8", errors="replace")
            logger.error("[EXPORT] FFmpeg failed (%s): %s", proc.returncode, stderr_text)
            output_path.unlink(missing_ok=True)
            raise ExportFailedError(f"FFmpeg exited with code {proc.returncode}")

        if not output_path.exists():
            raise ExportFailedError("FFmpeg finished without writing the output file")

        logger.info("[EXPORT] Export complete: %s", output_path)
        return output_path
