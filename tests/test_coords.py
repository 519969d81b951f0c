"""
Tests for mirrorcal.coords (coordinate kernel).
"""

import math

import numpy as np
import pytest

from mirrorcal.coords import (
    camera_to_centered,
    centered_to_camera,
    centered_to_viewport,
    difference,
    distance,
    from_centered,
    rebase_measurement,
    roi_centered_to_viewport,
    roi_viewport_to_centered,
    rotate_bounds,
    rotate_point,
    to_centered,
    to_isotropic,
    to_viewport,
    translate,
    viewport_to_centered,
)
from mirrorcal.types import (
    BlobMeasurement,
    Bounds,
    CameraPixels,
    Centered,
    Isotropic,
    Resolution,
    Viewport,
)


class TestConversions:
    def test_frame_center_is_origin(self, resolution):
        center = camera_to_centered(CameraPixels(640, 360, resolution))
        assert center.x == pytest.approx(0.0)
        assert center.y == pytest.approx(0.0)

    def test_letterbox_on_short_axis(self, resolution):
        """The short (vertical) axis is letterboxed, so y spans less than [-1, 1]."""
        corner = camera_to_centered(CameraPixels(0, 0, resolution))
        assert corner.x == pytest.approx(-1.0)
        assert corner.y == pytest.approx(-0.5625)

    def test_isotropic_from_viewport_requires_resolution(self):
        with pytest.raises(ValueError):
            to_isotropic(Viewport(0.5, 0.5))

    def test_isotropic_rejects_centered(self):
        with pytest.raises(TypeError):
            to_isotropic(Centered(0.0, 0.0))

    def test_viewport_ignores_aspect(self, resolution):
        vp = to_viewport(CameraPixels(320, 180, resolution))
        assert vp == Viewport(0.25, 0.25)

    def test_delta_has_no_offset(self, resolution):
        delta = camera_to_centered(CameraPixels(128, 0, resolution, delta=True))
        assert delta.delta is True
        assert delta.x == pytest.approx(0.2)
        assert delta.y == pytest.approx(0.0)

    def test_delta_round_trip(self, resolution):
        delta = Centered(0.1, -0.05, delta=True)
        back = camera_to_centered(centered_to_camera(delta, resolution))
        assert back.delta is True
        assert back.x == pytest.approx(0.1, abs=1e-12)
        assert back.y == pytest.approx(-0.05, abs=1e-12)

    def test_isotropic_centered_round_trip(self):
        back = from_centered(to_centered(Isotropic(0.3, 0.7)))
        assert back.x == pytest.approx(0.3, abs=1e-12)
        assert back.y == pytest.approx(0.7, abs=1e-12)

    @pytest.mark.parametrize("res", [Resolution(1280, 720), Resolution(720, 1280), Resolution(640, 640)])
    def test_viewport_round_trip(self, res):
        """fromCentered(toCentered(p)) == p within 1e-9 across the viewport."""
        for x in np.linspace(0.0, 1.0, 11):
            for y in np.linspace(0.0, 1.0, 11):
                point = Viewport(float(x), float(y))
                back = centered_to_viewport(viewport_to_centered(point, res), res)
                assert abs(back.x - point.x) < 1e-9
                assert abs(back.y - point.y) < 1e-9

    def test_roi_mapping_is_aspect_ignorant(self, resolution):
        roi = roi_viewport_to_centered(Viewport(0.75, 0.25))
        assert roi == Centered(0.5, -0.5)
        correct = viewport_to_centered(Viewport(0.75, 0.25), resolution)
        assert correct.y == pytest.approx(-0.28125)
        assert roi_centered_to_viewport(roi) == Viewport(0.75, 0.25)


class TestArithmetic:
    def test_difference_is_delta(self):
        d = difference(Centered(0.3, 0.1), Centered(0.1, 0.1))
        assert d.delta is True
        assert d.x == pytest.approx(0.2)

    def test_translate(self):
        moved = translate(Centered(0.1, 0.1), Centered(0.05, -0.1, delta=True))
        assert moved.x == pytest.approx(0.15)
        assert moved.y == pytest.approx(0.0)
        assert moved.delta is False

    def test_translate_requires_delta(self):
        with pytest.raises(ValueError):
            translate(Centered(0.1, 0.1), Centered(0.1, 0.1))

    def test_mixing_spaces_is_rejected(self):
        with pytest.raises(TypeError):
            distance(Centered(0.0, 0.0), Viewport(0.5, 0.5))

    def test_mixing_pixel_resolutions_is_rejected(self):
        with pytest.raises(ValueError):
            distance(
                CameraPixels(0, 0, Resolution(640, 480)),
                CameraPixels(0, 0, Resolution(1280, 720)),
            )

    def test_distance(self):
        assert distance(Centered(0.0, 0.0), Centered(0.3, 0.4)) == pytest.approx(0.5)


class TestRotation:
    def test_quarter_turn_is_exact(self):
        rotated = rotate_point(Centered(1.0, 0.0), 90)
        assert rotated.x == 0.0
        assert rotated.y == 1.0

    def test_pixels_rotate_about_frame_center(self, resolution):
        rotated = rotate_point(CameraPixels(0, 0, resolution), 180)
        assert rotated.x == pytest.approx(1280)
        assert rotated.y == pytest.approx(720)

    def test_viewport_rotates_about_half(self):
        rotated = rotate_point(Viewport(1.0, 0.5), 90)
        assert rotated.x == pytest.approx(0.5)
        assert rotated.y == pytest.approx(1.0)

    def test_delta_rotates_about_origin(self):
        rotated = rotate_point(Viewport(0.1, 0.0, delta=True), 90)
        assert rotated.x == pytest.approx(0.0)
        assert rotated.y == pytest.approx(0.1)

    @pytest.mark.parametrize("angle", [1.0, 17.5, 45.0, 90.0, 133.0, -60.0, 270.0, 359.9])
    def test_rotate_inverse(self, angle):
        """rotate(rotate(p, t), -t) == p within 1e-6."""
        for point in (Centered(0.3, -0.7), Viewport(0.2, 0.9), Centered(-1.0, 0.5625)):
            back = rotate_point(rotate_point(point, angle), -angle)
            assert abs(back.x - point.x) < 1e-6
            assert abs(back.y - point.y) < 1e-6

    def test_rotate_bounds_right_angle(self):
        rotated = rotate_bounds(Bounds(0.0, 2.0, 0.0, 1.0), 90)
        assert rotated == Bounds(-1.0, 0.0, 0.0, 2.0)

    def test_rotate_bounds_is_conservative(self):
        rotated = rotate_bounds(Bounds(-1.0, 1.0, -1.0, 1.0), 45)
        assert rotated.x_max == pytest.approx(math.sqrt(2))
        assert rotated.y_min == pytest.approx(-math.sqrt(2))


class TestRebase:
    def test_same_aspect_preserves_position(self):
        m = BlobMeasurement(position=Centered(0.1, 0.05), size=0.04, resolution=Resolution(640, 360))
        rebased = rebase_measurement(m, Resolution(1280, 720))
        assert rebased.resolution == Resolution(1280, 720)
        assert rebased.position.x == pytest.approx(0.1, abs=1e-12)
        assert rebased.position.y == pytest.approx(0.05, abs=1e-12)
        assert rebased.size == pytest.approx(0.04, abs=1e-12)

    def test_without_resolution_is_unchanged(self):
        m = BlobMeasurement(position=Centered(0.1, 0.05))
        assert rebase_measurement(m, Resolution(1280, 720)) is m

    def test_goes_through_pixels(self):
        """A frame-center measurement stays at the center across aspect ratios."""
        m = BlobMeasurement(position=Centered(0.0, 0.0), resolution=Resolution(640, 480))
        rebased = rebase_measurement(m, Resolution(1280, 720))
        assert rebased.position.x == pytest.approx(0.0)
        assert rebased.position.y == pytest.approx(0.0)
