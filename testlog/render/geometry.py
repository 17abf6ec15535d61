"""Affine placement math for composing video sources.

Coordinates are y-down pixel space with the origin at the top-left corner of
the frame, matching how video frames are laid out. Transforms follow the
row-vector convention::

    x' = a*x + c*y + tx
    y' = b*x + d*y + ty

``t1.then(t2)`` applies ``t1`` first and ``t2`` second.
"""

import math
from dataclasses import dataclass
from enum import Enum

MIN_CROP_DIMENSION = 0.05


@dataclass(frozen=True)
class Size:
    width: float
    height: float

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0


@dataclass(frozen=True)
class Rect:
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0

    @classmethod
    def unit(cls) -> "Rect":
        return cls(0.0, 0.0, 1.0, 1.0)

    @property
    def min_x(self) -> float:
        return min(self.x, self.x + self.width)

    @property
    def min_y(self) -> float:
        return min(self.y, self.y + self.height)

    @property
    def max_x(self) -> float:
        return max(self.x, self.x + self.width)

    @property
    def max_y(self) -> float:
        return max(self.y, self.y + self.height)

    @property
    def size(self) -> Size:
        return Size(abs(self.width), abs(self.height))

    def standardized(self) -> "Rect":
        """Same rectangle with non-negative width and height."""
        x, y, w, h = self.x, self.y, self.width, self.height
        if w < 0:
            x, w = x + w, -w
        if h < 0:
            y, h = y + h, -h
        return Rect(x, y, w, h)

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class AffineTransform:
    a: float = 1.0
    b: float = 0.0
    c: float = 0.0
    d: float = 1.0
    tx: float = 0.0
    ty: float = 0.0

    @classmethod
    def identity(cls) -> "AffineTransform":
        return cls()

    @classmethod
    def translation(cls, tx: float, ty: float) -> "AffineTransform":
        return cls(tx=tx, ty=ty)

    @classmethod
    def scaling(cls, sx: float, sy: float | None = None) -> "AffineTransform":
        return cls(a=sx, d=sx if sy is None else sy)

    @property
    def is_identity(self) -> bool:
        return self.is_close(AffineTransform.identity())

    def then(self, other: "AffineTransform") -> "AffineTransform":
        """Concatenate: apply ``self`` and then ``other``."""
        return AffineTransform(
            a=self.a * other.a + self.b * other.c,
            b=self.a * other.b + self.b * other.d,
            c=self.c * other.a + self.d * other.c,
            d=self.c * other.b + self.d * other.d,
            tx=self.tx * other.a + self.ty * other.c + other.tx,
            ty=self.tx * other.b + self.ty * other.d + other.ty,
        )

    def apply(self, x: float, y: float) -> tuple[float, float]:
        return (self.a * x + self.c * y + self.tx, self.b * x + self.d * y + self.ty)

    def transform_rect(self, rect: Rect) -> Rect:
        """Axis-aligned bounding box of ``rect`` after the transform."""
        corners = [
            self.apply(rect.min_x, rect.min_y),
            self.apply(rect.max_x, rect.min_y),
            self.apply(rect.min_x, rect.max_y),
            self.apply(rect.max_x, rect.max_y),
        ]
        xs = [p[0] for p in corners]
        ys = [p[1] for p in corners]
        return Rect(min(xs), min(ys), max(xs) - min(xs), max(ys) - min(ys))

    def is_close(self, other: "AffineTransform", tol: float = 1e-9) -> bool:
        return all(
            math.isclose(mine, theirs, abs_tol=tol)
            for mine, theirs in zip(self.as_tuple(), other.as_tuple())
        )

    def as_tuple(self) -> tuple[float, float, float, float, float, float]:
        return (self.a, self.b, self.c, self.d, self.tx, self.ty)


class ContentMode(str, Enum):
    """How a source is scaled into its destination rectangle."""

    FILL = "fill"
    FIT = "fit"
    FIT_LEADING = "fit_leading"


def clamp_normalized_crop(rect: Rect, min_size: float = MIN_CROP_DIMENSION) -> Rect:
    """Clamp a normalized crop rectangle into the unit square.

    Non-finite origins become 0 and non-finite sizes become 1. Each side is at
    least ``min_size``; a rectangle that would overflow is shifted back inside.
    """
    r = rect.standardized()
    x = r.x if math.isfinite(r.x) else 0.0
    y = r.y if math.isfinite(r.y) else 0.0
    w = r.width if math.isfinite(r.width) else 1.0
    h = r.height if math.isfinite(r.height) else 1.0

    w = min(max(w, min_size), 1.0)
    h = min(max(h, min_size), 1.0)
    x = min(max(x, 0.0), 1.0)
    y = min(max(y, 0.0), 1.0)

    if x + w > 1.0:
        x = max(0.0, 1.0 - w)
    if y + h > 1.0:
        y = max(0.0, 1.0 - h)
    return Rect(x, y, w, h)


def normalize_quarter_turns(turns: int) -> int:
    return turns % 4


def quarter_turn_transform(size: Size, turns: int) -> tuple[AffineTransform, Size]:
    """Clockwise rotation by ``turns`` quarter turns that keeps the frame at the origin.

    Returns the transform and the rotated frame size.
    """
    w, h = size.width, size.height
    turns = normalize_quarter_turns(turns)
    if turns == 1:
        return AffineTransform(0.0, 1.0, -1.0, 0.0, h, 0.0), Size(h, w)
    if turns == 2:
        return AffineTransform(-1.0, 0.0, 0.0, -1.0, w, h), Size(w, h)
    if turns == 3:
        return AffineTransform(0.0, -1.0, 1.0, 0.0, 0.0, w), Size(h, w)
    return AffineTransform.identity(), Size(w, h)


def absolute_crop_rect(normalized: Rect, bounds: Size) -> Rect:
    clamped = clamp_normalized_crop(normalized)
    return Rect(
        clamped.x * bounds.width,
        clamped.y * bounds.height,
        clamped.width * bounds.width,
        clamped.height * bounds.height,
    )


@dataclass(frozen=True)
class Placement:
    """Decomposed placement of one source into a destination rectangle."""

    orientation: AffineTransform  # upright, moved back to the origin
    oriented_size: Size
    quarter_turns: int
    rotated_size: Size
    crop: Rect  # absolute pixels in rotated space
    scale: float
    translate_x: float
    translate_y: float

    @property
    def output_size(self) -> Size:
        return Size(self.crop.width * self.scale, self.crop.height * self.scale)

    @property
    def transform(self) -> AffineTransform:
        turn, _ = quarter_turn_transform(self.oriented_size, self.quarter_turns)
        return (
            self.orientation.then(turn)
            .then(AffineTransform.translation(-self.crop.x, -self.crop.y))
            .then(AffineTransform.scaling(self.scale))
            .then(AffineTransform.translation(self.translate_x, self.translate_y))
        )

    def to_dict(self) -> dict:
        return {
            "oriented_size": [self.oriented_size.width, self.oriented_size.height],
            "quarter_turns": self.quarter_turns,
            "rotated_size": [self.rotated_size.width, self.rotated_size.height],
            "crop": self.crop.to_dict(),
            "scale": self.scale,
            "translate": [self.translate_x, self.translate_y],
            "transform": list(self.transform.as_tuple()),
        }


def resolve_placement(
    natural_size: Size,
    orientation: AffineTransform,
    destination: Rect,
    content_mode: ContentMode,
    quarter_turns: int = 0,
    normalized_crop: Rect | None = None,
) -> Placement | None:
    """Work out rotation, crop, scale and offset for a source. None when degenerate."""
    natural_rect = Rect(0.0, 0.0, natural_size.width, natural_size.height)
    oriented_rect = orientation.transform_rect(natural_rect)
    oriented_size = Size(abs(oriented_rect.width), abs(oriented_rect.height))
    if oriented_size.is_empty:
        return None

    upright = orientation.then(
        AffineTransform.translation(-oriented_rect.min_x, -oriented_rect.min_y)
    )
    turns = normalize_quarter_turns(quarter_turns)
    _, rotated_size = quarter_turn_transform(oriented_size, turns)

    crop = absolute_crop_rect(normalized_crop or Rect.unit(), rotated_size)
    if crop.width <= 0 or crop.height <= 0:
        return None

    scale_x = destination.width / crop.width
    scale_y = destination.height / crop.height
    if content_mode == ContentMode.FILL:
        scale = max(scale_x, scale_y)
    else:
        scale = min(scale_x, scale_y)

    scaled_w = crop.width * scale
    scaled_h = crop.height * scale
    if content_mode == ContentMode.FIT_LEADING:
        tx = destination.min_x
    else:
        tx = destination.min_x + (destination.width - scaled_w) / 2
    ty = destination.min_y + (destination.height - scaled_h) / 2

    return Placement(
        orientation=upright,
        oriented_size=oriented_size,
        quarter_turns=turns,
        rotated_size=rotated_size,
        crop=crop,
        scale=scale,
        translate_x=tx,
        translate_y=ty,
    )


def placed_transform(
    natural_size: Size,
    orientation: AffineTransform,
    destination: Rect,
    content_mode: ContentMode,
    quarter_turns: int = 0,
    normalized_crop: Rect | None = None,
) -> AffineTransform:
    """Single transform placing a source into ``destination``; identity when degenerate."""
    placement = resolve_placement(
        natural_size, orientation, destination, content_mode, quarter_turns, normalized_crop
    )
    if placement is None:
        return AffineTransform.identity()
    return placement.transform
