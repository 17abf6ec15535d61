"""Audio-based offset estimation between two recordings of the same test.

Both recordings are expected to capture a sharp transient (a clap) near the
start. For each file an amplitude envelope is built from the first seconds of
audio, the clap is located in it, and the offset is the difference of the two
clap times. When that fails the file timestamps are compared instead.

The result is a suggestion; the manual offset in the sync configuration is
applied on top of it.
"""

import asyncio
import logging
import os
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

import numpy as np

from testlog.config import Settings, get_settings
from testlog.utils.cancellation import CancellationToken
from testlog.utils.media_info import get_audio_info, get_media_info

logger = logging.getLogger(__name__)

ENVELOPE_WINDOW_FRAMES = 1024
MIN_CLAP_TIME_SECONDS = 0.05
CLAP_THRESHOLD_RATIO = 0.7
PROMINENCE_EPSILON = 0.0001
MIN_PROMINENCE = 0.05
MAX_PROMINENCE = 0.99
MIN_CONFIDENCE = 0.15
MAX_CONFIDENCE = 0.98
CREATION_DATE_CONFIDENCE = 0.25
DEFAULT_CONFIDENCE = 0.1

# Frames decoded per read from the ffmpeg pipe
DECODE_CHUNK_FRAMES = 16384


class SyncMethod(str, Enum):
    AUDIO = "audio"
    CREATION_DATE = "creation_date"
    NONE = "none"


@dataclass
class Envelope:
    times: np.ndarray
    amplitudes: np.ndarray

    def __len__(self) -> int:
        return int(self.amplitudes.size)


@dataclass(frozen=True)
class Transient:
    time_seconds: float
    amplitude: float
    prominence: float


@dataclass(frozen=True)
class SyncEstimate:
    offset_seconds: float
    confidence: float
    method: SyncMethod
    primary_transient: Transient | None = None
    secondary_transient: Transient | None = None

    def to_dict(self) -> dict:
        return {
            "offset_seconds": self.offset_seconds,
            "confidence": self.confidence,
            "method": self.method.value,
            "primary_clap_time": self.primary_transient.time_seconds
            if self.primary_transient
            else None,
            "secondary_clap_time": self.secondary_transient.time_seconds
            if self.secondary_transient
            else None,
        }


class EnvelopeBuilder:
    """Incremental envelope over interleaved float samples.

    Each point is the mean absolute amplitude (averaged across channels) of
    ``window_frames`` frames, stamped with the time of the window's last frame.
    A trailing partial window is stamped with the total analysed duration.
    """

    def __init__(
        self,
        sample_rate: float,
        channels: int = 1,
        window_frames: int = ENVELOPE_WINDOW_FRAMES,
        max_seconds: float = 20.0,
    ):
        self.sample_rate = float(sample_rate)
        self.channels = max(int(channels), 1)
        self.window_frames = window_frames
        self.max_frames = int(max_seconds * self.sample_rate)
        self.frames_consumed = 0
        self._pending = np.empty(0, dtype=np.float64)
        self._pending_start = 0
        self._times: list[float] = []
        self._amplitudes: list[float] = []

    @property
    def is_full(self) -> bool:
        return self.frames_consumed >= self.max_frames

    def add(self, samples: np.ndarray) -> None:
        frame_count = samples.size // self.channels
        remaining = self.max_frames - self.frames_consumed
        frame_count = min(frame_count, max(remaining, 0))
        if frame_count <= 0:
            return

        frames = samples[: frame_count * self.channels].reshape(frame_count, self.channels)
        per_frame = np.abs(frames.astype(np.float64)).mean(axis=1)
        buffer = np.concatenate([self._pending, per_frame])

        full_windows = buffer.size // self.window_frames
        if full_windows:
            used = full_windows * self.window_frames
            means = buffer[:used].reshape(full_windows, self.window_frames).mean(axis=1)
            last_frames = (
                self._pending_start + np.arange(1, full_windows + 1) * self.window_frames - 1
            )
            self._times.extend((last_frames / self.sample_rate).tolist())
            self._amplitudes.extend(means.tolist())
            buffer = buffer[used:]
            self._pending_start += used

        self._pending = buffer
        self.frames_consumed += frame_count

    def finish(self) -> Envelope:
        times = list(self._times)
        amplitudes = list(self._amplitudes)
        if self._pending.size:
            times.append(self.frames_consumed / self.sample_rate)
            amplitudes.append(float(self._pending.mean()))
        return Envelope(
            times=np.asarray(times, dtype=np.float64),
            amplitudes=np.asarray(amplitudes, dtype=np.float64),
        )


def build_envelope(
    samples: np.ndarray,
    sample_rate: float,
    channels: int = 1,
    window_frames: int = ENVELOPE_WINDOW_FRAMES,
    max_seconds: float = 20.0,
) -> Envelope:
    builder = EnvelopeBuilder(sample_rate, channels, window_frames, max_seconds)
    builder.add(np.asarray(samples).ravel())
    return builder.finish()


def detect_clap(envelope: Envelope) -> Transient | None:
    """Locate the clap transient in an envelope; None for empty or silent audio."""
    if len(envelope) == 0:
        return None
    amplitudes = envelope.amplitudes
    max_amplitude = float(amplitudes.max())
    if max_amplitude <= 0:
        return None

    threshold = max_amplitude * CLAP_THRESHOLD_RATIO
    median = float(np.sort(amplitudes)[amplitudes.size // 2])

    qualifying = np.flatnonzero(
        (envelope.times >= MIN_CLAP_TIME_SECONDS) & (amplitudes >= threshold)
    )
    index = int(qualifying[0]) if qualifying.size else int(np.argmax(amplitudes))

    amplitude = float(amplitudes[index])
    prominence = (amplitude - median) / max(amplitude, PROMINENCE_EPSILON)
    prominence = max(MIN_PROMINENCE, min(MAX_PROMINENCE, prominence))
    return Transient(
        time_seconds=float(envelope.times[index]),
        amplitude=amplitude,
        prominence=prominence,
    )


def _clamp(value: float, limit: float) -> float:
    return max(-limit, min(limit, value))


def estimate_from_transients(
    primary: Transient,
    secondary: Transient,
    plausible_offset: float = 20.0,
    max_offset: float = 60.0,
) -> SyncEstimate | None:
    """Offset of the secondary clap relative to the primary; None if implausible."""
    offset = secondary.time_seconds - primary.time_seconds
    if abs(offset) > plausible_offset:
        return None
    confidence = (primary.prominence + secondary.prominence) / 2
    confidence = max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, confidence))
    return SyncEstimate(
        offset_seconds=_clamp(offset, max_offset),
        confidence=confidence,
        method=SyncMethod.AUDIO,
        primary_transient=primary,
        secondary_transient=secondary,
    )


def estimate_from_envelopes(
    primary: Envelope,
    secondary: Envelope,
    plausible_offset: float = 20.0,
    max_offset: float = 60.0,
) -> SyncEstimate | None:
    primary_clap = detect_clap(primary)
    secondary_clap = detect_clap(secondary)
    if primary_clap is None or secondary_clap is None:
        return None
    return estimate_from_transients(primary_clap, secondary_clap, plausible_offset, max_offset)


class AudioOffsetEstimator:
    """Estimates the offset between two recordings from their audio."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    async def detect_offset(
        self,
        primary_path: str | Path,
        secondary_path: str | Path,
        cancel_token: CancellationToken | None = None,
    ) -> SyncEstimate:
        return await asyncio.to_thread(
            self.estimate_offset, primary_path, secondary_path, cancel_token
        )

    def estimate_offset(
        self,
        primary_path: str | Path,
        secondary_path: str | Path,
        cancel_token: CancellationToken | None = None,
    ) -> SyncEstimate:
        """Audio clap offset, else timestamp difference, else zero.

        Never raises for unreadable input. Raises OperationCancelled if
        ``cancel_token`` is cancelled while audio is being decoded.
        """
        token = cancel_token or CancellationToken()
        primary_envelope = self.read_envelope(primary_path, token)
        secondary_envelope = self.read_envelope(secondary_path, token)

        if primary_envelope is not None and secondary_envelope is not None:
            estimate = estimate_from_envelopes(
                primary_envelope,
                secondary_envelope,
                self.settings.sync_plausible_offset_seconds,
                self.settings.sync_max_offset_seconds,
            )
            if estimate is not None:
                logger.info(
                    "[SYNC] Audio offset %.3fs (confidence %.2f)",
                    estimate.offset_seconds,
                    estimate.confidence,
                )
                return estimate
            logger.info("[SYNC] No plausible clap pair, using creation date fallback")

        return self.creation_date_fallback(primary_path, secondary_path)

    def creation_date_fallback(
        self, primary_path: str | Path, secondary_path: str | Path
    ) -> SyncEstimate:
        primary_time = self.creation_time(primary_path)
        secondary_time = self.creation_time(secondary_path)
        if primary_time is not None and secondary_time is not None:
            offset = (secondary_time - primary_time).total_seconds()
            return SyncEstimate(
                offset_seconds=_clamp(offset, self.settings.sync_max_offset_seconds),
                confidence=CREATION_DATE_CONFIDENCE,
                method=SyncMethod.CREATION_DATE,
            )
        return SyncEstimate(offset_seconds=0.0, confidence=DEFAULT_CONFIDENCE, method=SyncMethod.NONE)

    def creation_time(self, path: str | Path) -> datetime | None:
        """Recording start from container metadata, else the file's own timestamps."""
        try:
            info = get_media_info(str(path))
            if info.creation_time is not None:
                return info.creation_time
        except (RuntimeError, ValueError):
            pass

        try:
            stat = os.stat(path)
        except OSError:
            return None
        timestamp = getattr(stat, "st_birthtime", None) or stat.st_mtime
        return datetime.fromtimestamp(timestamp, tz=timezone.utc)

    def read_envelope(self, path: str | Path, token: CancellationToken) -> Envelope | None:
        """Decode the first audio track through ffmpeg into an envelope."""
        audio = get_audio_info(str(path))
        if not audio or not audio.get("sample_rate"):
            logger.info("[SYNC] No audio track in %s", path)
            return None

        sample_rate = audio["sample_rate"]
        channels = max(int(audio.get("channels") or 1), 1)
        max_seconds = self.settings.sync_analysis_seconds
        cmd = [
            self.settings.ffmpeg_path,
            "-v", "error",
            "-nostdin",
            "-i", str(path),
            "-map", "0:a:0",
            "-t", f"{max_seconds:.3f}",
            "-f", "f32le",
            "-acodec", "pcm_f32le",
            "-ar", str(sample_rate),
            "-ac", str(channels),
            "-",
        ]
        logger.debug("[SYNC] Decoding audio: %s", " ".join(cmd))

        try:
            process = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.DEVNULL)
        except OSError as e:
            logger.warning("[SYNC] ffmpeg could not be started: %s", e)
            return None

        builder = EnvelopeBuilder(sample_rate, channels, ENVELOPE_WINDOW_FRAMES, max_seconds)
        chunk_bytes = DECODE_CHUNK_FRAMES * channels * 4
        leftover = b""
        try:
            while not builder.is_full:
                token.raise_if_cancelled()
                chunk = process.stdout.read(chunk_bytes)
                if not chunk:
                    break
                data = leftover + chunk
                usable = len(data) - len(data) % (4 * channels)
                leftover = data[usable:]
                if usable:
                    builder.add(np.frombuffer(data[:usable], dtype="<f4"))
        finally:
            if process.poll() is None:
                process.kill()
            process.stdout.close()
            process.wait()

        envelope = builder.finish()
        if len(envelope) == 0:
            return None
        return envelope
