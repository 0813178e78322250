"""
Tests for the per-frame parameter snapshot: defaults, validation, clamping.
"""

import dataclasses
import math

import pytest

from glass_lens import LensParams, SLIDER_RANGES


class TestDefaults:
    """Defaults mirror the initial slider values of the interactive host."""

    def test_default_values(self):
        params = LensParams()
        assert params.radius == 0.15
        assert params.center == (0.5, 0.5)
        assert params.ior == 1.33
        assert params.highlight_strength == 1.0
        assert params.bevel_width == 0.02
        assert params.thickness == 0.05
        assert params.shadow_intensity == 0.1
        assert params.chromatic_aberration == 0.001
        assert params.frost_radius == 0.0

    def test_values_coerced_to_float_tuples(self):
        params = LensParams(resolution=[640, 360], center=[0, 1], radius=1 / 4)
        assert params.resolution == (640.0, 360.0)
        assert isinstance(params.resolution, tuple)
        assert params.center == (0.0, 1.0)
        assert params.size == (640, 360)
        assert params.aspect == pytest.approx(640 / 360)

    def test_snapshot_is_immutable(self):
        params = LensParams()
        with pytest.raises(dataclasses.FrozenInstanceError):
            params.radius = 0.3

    def test_replace_returns_new_snapshot(self):
        params = LensParams()
        moved = params.replace(center=(0.2, 0.7))
        assert moved.center == (0.2, 0.7)
        assert params.center == (0.5, 0.5)


class TestInnerRadius:
    """Inner radius is clamped so an over-wide bevel degenerates, not crashes."""

    def test_normal_bevel(self):
        assert LensParams(radius=0.2, bevel_width=0.05).inner_radius == pytest.approx(0.15)

    def test_bevel_wider_than_radius(self):
        params = LensParams(radius=0.1, bevel_width=0.3)
        assert params.inner_radius == 0.0
        assert params.validate() is params


class TestValidate:
    """Host-side precondition checks raise ValueError."""

    def test_defaults_are_valid(self):
        params = LensParams()
        assert params.validate() is params

    @pytest.mark.parametrize("changes", [
        {"ior": 0.9},
        {"radius": 0.0},
        {"radius": 0.6},
        {"center": (1.2, 0.5)},
        {"center": (0.5, -0.1)},
        {"thickness": -0.01},
        {"highlight_strength": -1.0},
        {"chromatic_aberration": -0.001},
        {"frost_radius": -0.5},
        {"bevel_width": -0.01},
        {"shadow_intensity": 1.5},
        {"resolution": (0, 400)},
        {"resolution": (400, math.inf)},
        {"ior": math.nan},
        {"center": (math.nan, 0.5)},
    ])
    def test_invalid_values_raise(self, changes):
        with pytest.raises(ValueError):
            LensParams(**changes).validate()


class TestClamped:
    """clamped() coerces every slider into its range."""

    def test_out_of_range_values_are_clamped(self):
        params = LensParams(ior=5.0, radius=0.9, shadow_intensity=-1.0,
                            frost_radius=1.0, center=(1.5, -0.5)).clamped()
        assert params.ior == SLIDER_RANGES["ior"][1]
        assert params.radius == SLIDER_RANGES["radius"][1]
        assert params.shadow_intensity == 0.0
        assert params.frost_radius == SLIDER_RANGES["frost_radius"][1]
        assert params.center == (1.0, 0.0)
        params.validate()

    def test_in_range_values_unchanged(self):
        params = LensParams()
        assert params.clamped() == params


class TestCenterFromPixels:
    """Drag positions in pixels map to normalized centers, held inside the surface."""

    def test_pixel_center(self):
        params = LensParams(resolution=(400, 200)).with_center_px(100, 150)
        assert params.center == (0.25, 0.75)

    def test_drag_outside_surface_sticks_to_edge(self):
        params = LensParams(resolution=(400, 200)).with_center_px(-30, 900)
        assert params.center == (0.0, 1.0)
