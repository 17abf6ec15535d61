"""Tests for source placement geometry (rotation, crop, scale, offset)."""

import math

import pytest

from testlog.render.geometry import (
    AffineTransform,
    ContentMode,
    Rect,
    Size,
    clamp_normalized_crop,
    normalize_quarter_turns,
    placed_transform,
    quarter_turn_transform,
    resolve_placement,
)

LANDSCAPE = Size(1920, 1080)
FULL_HD = Rect(0, 0, 1920, 1080)
PIP = Rect(24, 724, 576, 324)


def _close(point, expected):
    return math.isclose(point[0], expected[0], abs_tol=1e-6) and math.isclose(
        point[1], expected[1], abs_tol=1e-6
    )


class TestAffineTransform:
    """Tests for transform composition order."""

    def test_then_applies_self_first(self):
        """translate-then-scale differs from scale-then-translate."""
        move = AffineTransform.translation(10, 0)
        double = AffineTransform.scaling(2)

        assert _close(move.then(double).apply(1, 0), (22, 0))
        assert _close(double.then(move).apply(1, 0), (12, 0))

    def test_identity(self):
        """Test the identity transform."""
        assert AffineTransform.identity().is_identity
        assert not AffineTransform.translation(1, 0).is_identity

    def test_transform_rect_bounding_box(self):
        """Test transforming a rectangle."""
        turn, _ = quarter_turn_transform(LANDSCAPE, 1)
        rect = turn.transform_rect(Rect(0, 0, 1920, 1080))
        assert rect == Rect(0, 0, 1080, 1920)


class TestQuarterTurns:
    """Tests for clockwise quarter-turn rotation."""

    @pytest.mark.parametrize("turns,expected", [(0, 0), (4, 0), (5, 1), (-1, 3), (-6, 2)])
    def test_normalize(self, turns, expected):
        """Test quarter-turn normalization."""
        assert normalize_quarter_turns(turns) == expected

    def test_one_turn_moves_top_left_to_top_right(self):
        """Test one clockwise quarter turn."""
        turn, size = quarter_turn_transform(LANDSCAPE, 1)
        assert size == Size(1080, 1920)
        assert _close(turn.apply(0, 0), (1080, 0))
        assert _close(turn.apply(1920, 1080), (0, 1920))

    def test_half_turn_keeps_size(self):
        """Test a half turn."""
        turn, size = quarter_turn_transform(LANDSCAPE, 2)
        assert size == LANDSCAPE
        assert _close(turn.apply(0, 0), (1920, 1080))

    def test_three_turns(self):
        """Test three quarter turns."""
        turn, size = quarter_turn_transform(LANDSCAPE, 3)
        assert size == Size(1080, 1920)
        assert _close(turn.apply(0, 0), (0, 1920))

    def test_four_turns_round_trip(self):
        """Test that four quarter turns restore the size and transform."""
        transform, size = AffineTransform.identity(), LANDSCAPE
        for _ in range(4):
            turn, size = quarter_turn_transform(size, 1)
            transform = transform.then(turn)

        assert size == LANDSCAPE
        assert transform.is_identity


class TestClampNormalizedCrop:
    """Tests for normalized crop clamping."""

    def test_unit_rect_unchanged(self):
        """Test that the unit rectangle is unchanged."""
        assert clamp_normalized_crop(Rect.unit()) == Rect.unit()

    def test_overflow_is_shifted_inside(self):
        """Test shifting an overflowing crop inside."""
        assert clamp_normalized_crop(Rect(0.9, 0.9, 0.5, 0.5)) == Rect(0.5, 0.5, 0.5, 0.5)

    def test_minimum_size(self):
        """Test the minimum crop size."""
        clamped = clamp_normalized_crop(Rect(0, 0, 0.01, 0.0))
        assert clamped.width == pytest.approx(0.05)
        assert clamped.height == pytest.approx(0.05)

    def test_non_finite_values(self):
        """Test non-finite crop values."""
        clamped = clamp_normalized_crop(Rect(float("nan"), 0.2, float("inf"), 0.5))
        assert clamped == Rect(0.0, 0.2, 1.0, 0.5)

    def test_negative_size_is_standardized(self):
        """Test a crop with negative size."""
        assert clamp_normalized_crop(Rect(0.5, 0, -0.25, 1)) == Rect(0.25, 0, 0.25, 1)


class TestResolvePlacement:
    """Tests for placing a source into a destination rectangle."""

    def test_fill_same_aspect_is_identity(self):
        """Test fill with matching size."""
        placement = resolve_placement(LANDSCAPE, AffineTransform.identity(), FULL_HD, ContentMode.FILL)
        assert placement is not None
        assert placement.scale == pytest.approx(1.0)
        assert placement.transform.is_identity

    def test_fit_centers_portrait_source(self):
        """Test fit centering a portrait source."""
        placement = resolve_placement(
            Size(1080, 1920), AffineTransform.identity(), FULL_HD, ContentMode.FIT
        )
        assert placement.scale == pytest.approx(0.5625)
        assert placement.translate_x == pytest.approx(656.25)
        assert placement.translate_y == pytest.approx(0.0)

    def test_fit_leading_aligns_left_and_centers_vertically(self):
        """Test fit-leading alignment."""
        placement = resolve_placement(
            Size(1080, 1920), AffineTransform.identity(), FULL_HD, ContentMode.FIT_LEADING
        )
        assert placement.translate_x == pytest.approx(0.0)
        assert placement.translate_y == pytest.approx(0.0)

    def test_pip_with_quarter_turn(self):
        """A rotated landscape source becomes portrait inside the inset."""
        placement = resolve_placement(
            LANDSCAPE, AffineTransform.identity(), PIP, ContentMode.FIT_LEADING, quarter_turns=1
        )
        assert placement.rotated_size == Size(1080, 1920)
        assert placement.scale == pytest.approx(324 / 1920)
        assert placement.output_size.height == pytest.approx(324)
        assert _close(placement.transform.apply(0, 0), (24 + 1080 * 324 / 1920, 724))

    def test_crop_then_fill(self):
        """Test cropping before fill."""
        placement = resolve_placement(
            LANDSCAPE,
            AffineTransform.identity(),
            FULL_HD,
            ContentMode.FILL,
            normalized_crop=Rect(0.25, 0, 0.5, 1),
        )
        assert placement.crop == Rect(480, 0, 960, 1080)
        assert placement.scale == pytest.approx(2.0)
        assert placement.translate_y == pytest.approx(-540)
        assert _close(placement.transform.apply(480, 0), (0, -540))

    def test_orientation_is_applied_before_rotation(self):
        """Test applying the source orientation first."""
        orientation, _ = quarter_turn_transform(LANDSCAPE, 1)
        placement = resolve_placement(LANDSCAPE, orientation, PIP, ContentMode.FIT_LEADING)
        assert placement.oriented_size == Size(1080, 1920)
        assert placement.output_size.height == pytest.approx(324)

    def test_degenerate_source(self):
        """Test a zero-size source."""
        assert resolve_placement(Size(0, 100), AffineTransform.identity(), PIP, ContentMode.FIT) is None
        assert placed_transform(Size(0, 100), AffineTransform.identity(), PIP, ContentMode.FIT).is_identity

    def test_placed_transform_matches_placement(self):
        """Test that the single transform matches the placement."""
        placement = resolve_placement(
            LANDSCAPE, AffineTransform.identity(), PIP, ContentMode.FIT_LEADING, 2
        )
        transform = placed_transform(
            LANDSCAPE, AffineTransform.identity(), PIP, ContentMode.FIT_LEADING, 2
        )
        assert transform.is_close(placement.transform)
