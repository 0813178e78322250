"""
Shared pytest fixtures for the glass lens compositor tests.
"""

import sys
import os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import numpy as np
import pytest

from glass_lens import ContentField, LensParams


def make_gradient(width, height):
    """Linear ramps: R = x/W, G = y/H, B = 1 - x/W, opaque."""
    ys, xs = np.mgrid[0:height, 0:width]
    r = (xs + 0.5) / width
    g = (ys + 0.5) / height
    return np.stack([r, g, 1.0 - r, np.ones_like(r)], axis=-1).astype(np.float64)


def ring_coords(params, distances, angle=0.3):
    """Pixel coordinates at the given aspect-corrected distances from the lens center."""
    distances = np.asarray(distances, dtype=np.float64)
    w, h = params.resolution
    cx, cy = params.center
    x = (cx + distances * np.cos(angle) / params.aspect) * w
    y = (cy + distances * np.sin(angle)) * h
    return np.stack([x, y], axis=-1)


@pytest.fixture
def gradient_field():
    """64x48 smooth gradient content, clamped edges."""
    return ContentField(make_gradient(64, 48))


@pytest.fixture
def square_gradient():
    """400x400 smooth gradient content, clamped edges."""
    return ContentField(make_gradient(400, 400))


@pytest.fixture
def checker_field():
    """400x400 checkerboard with a semi-transparent alpha, for exactness checks."""
    ys, xs = np.mgrid[0:400, 0:400]
    checker = ((xs // 10 + ys // 10) % 2).astype(np.float32)
    rgba = np.stack([checker, 1.0 - checker, 0.25 + 0.5 * checker,
                     np.full_like(checker, 0.8)], axis=-1)
    return ContentField(rgba)


@pytest.fixture
def square_params():
    """400x400 lens with every effect enabled except frosting."""
    return LensParams(resolution=(400, 400), radius=0.15, center=(0.5, 0.5),
                      ior=1.5, highlight_strength=1.0, bevel_width=0.03,
                      thickness=0.05, shadow_intensity=0.3,
                      chromatic_aberration=0.002, frost_radius=0.0)


class CountingSampler:
    """Wraps a sampler and counts how many times it is evaluated."""

    def __init__(self, field):
        self.field = field
        self.calls = 0

    def __call__(self, px, py):
        self.calls += 1
        return self.field(px, py)


@pytest.fixture
def counting_sampler(checker_field):
    return CountingSampler(checker_field)
