"""Decoder for tester binary (.lby) force recordings.

The files carry a header of undocumented length followed by little-endian
int32 force words in milli-kN, one every 0.5 s. The payload start is found by
scanning for the first window that shows real signal variation.
"""

import logging
import math
from dataclasses import dataclass
from pathlib import Path

import numpy as np

logger = logging.getLogger(__name__)

LBY_EXTENSION = "lby"
SAMPLE_INTERVAL_SECONDS = 0.5
RAW_TO_KN = 0.001
KN_TO_LBF = 224.80894387096

# Payload offset search
SEARCH_START = 256
SEARCH_LIMIT = 800
SEARCH_STEP = 4
SEARCH_TAIL_MARGIN = 100
WINDOW_BYTES = 80
MIN_WINDOW_WORDS = 20
MIN_POSITIVE_VALUES = 10
MAX_PLAUSIBLE_RAW = 100_000
MIN_VARIATION = 100
FALLBACK_OFFSET = 608

_WORD = np.dtype("<i4")


@dataclass(frozen=True)
class ForceSample:
    time_seconds: float
    force_kn: float

    @property
    def force_lbs(self) -> float:
        return self.force_kn * KN_TO_LBF

    def to_dict(self) -> dict:
        return {"time": self.time_seconds, "force_kn": self.force_kn, "force_lbs": self.force_lbs}


def find_payload_offset(data: bytes) -> int:
    length = len(data)
    upper = min(SEARCH_LIMIT, max(SEARCH_START, length - SEARCH_TAIL_MARGIN))
    if upper <= SEARCH_START:
        return min(FALLBACK_OFFSET, length)

    for offset in range(SEARCH_START, upper, SEARCH_STEP):
        if offset + WINDOW_BYTES > length:
            break
        words = np.frombuffer(data, dtype=_WORD, count=WINDOW_BYTES // 4, offset=offset)
        if words.size < MIN_WINDOW_WORDS:
            continue
        values = words[(words > 0) & (words < MAX_PLAUSIBLE_RAW)]
        if values.size < MIN_POSITIVE_VALUES:
            continue
        if int(values.max()) - int(values.min()) > MIN_VARIATION:
            return offset

    return min(FALLBACK_OFFSET, length)


def decode_samples(data: bytes, offset: int) -> list[ForceSample]:
    word_count = max(0, len(data) - offset) // _WORD.itemsize
    if word_count == 0:
        return []
    words = np.frombuffer(data, dtype=_WORD, count=word_count, offset=offset)
    forces = words.astype(np.float64) * RAW_TO_KN
    return [
        ForceSample(time_seconds=i * SAMPLE_INTERVAL_SECONDS, force_kn=float(force))
        for i, force in enumerate(forces)
    ]


def peak_force_kn(samples: list[ForceSample]) -> float | None:
    """Largest finite, positive force; None when no sample qualifies."""
    valid = [s.force_kn for s in samples if math.isfinite(s.force_kn) and s.force_kn > 0]
    return max(valid) if valid else None


def peak_force_lbs(samples: list[ForceSample]) -> float | None:
    peak = peak_force_kn(samples)
    return peak * KN_TO_LBF if peak is not None else None


class TesterDataParser:
    """Parses tester binary files into force samples."""

    def parse_samples(self, data: bytes, extension: str | None = LBY_EXTENSION) -> list[ForceSample]:
        """Decode ``data``; empty for other extensions or empty input."""
        if extension and extension.lower().lstrip(".") != LBY_EXTENSION:
            return []
        if not data:
            return []

        offset = find_payload_offset(data)
        samples = decode_samples(data, offset)
        logger.debug("[LBY] Payload offset %d, %d samples", offset, len(samples))
        return samples

    def parse_file(self, path: str | Path) -> list[ForceSample]:
        path = Path(path)
        return self.parse_samples(path.read_bytes(), path.suffix.lstrip("."))
