"""
Tests for the background content sampler and background sources.
"""

import numpy as np
import pytest
from PIL import Image

from glass_lens import ContentField, generate_background, load_or_generate_background


@pytest.fixture
def tiny_image():
    """2x2 RGBA image with distinct pixels."""
    return np.array([
        [[1.0, 0.0, 0.0, 1.0], [0.0, 1.0, 0.0, 1.0]],
        [[0.0, 0.0, 1.0, 1.0], [1.0, 1.0, 1.0, 0.5]],
    ], dtype=np.float32)


class TestConstruction:

    def test_uint8_scaled_to_unit_range(self):
        img = np.full((3, 4, 4), 255, dtype=np.uint8)
        field = ContentField(img)
        assert field.image.dtype == np.float32
        assert np.all(field.image == 1.0)
        assert (field.width, field.height) == (4, 3)

    def test_rgb_gets_opaque_alpha(self):
        field = ContentField(np.zeros((2, 2, 3), dtype=np.float32))
        assert field.image.shape == (2, 2, 4)
        assert np.all(field.image[..., 3] == 1.0)

    def test_image_is_read_only(self, tiny_image):
        field = ContentField(tiny_image)
        with pytest.raises(ValueError):
            field.image[0, 0, 0] = 0.5

    @pytest.mark.parametrize("shape", [(4, 4), (4, 4, 2), (2, 2, 2, 4)])
    def test_bad_shape_raises(self, shape):
        with pytest.raises(ValueError):
            ContentField(np.zeros(shape))

    def test_unknown_modes_raise(self, tiny_image):
        with pytest.raises(ValueError):
            ContentField(tiny_image, edge_mode="mirror")
        with pytest.raises(ValueError):
            ContentField(tiny_image, sampling="bicubic")

    def test_sampling_mode_is_recorded(self, tiny_image):
        assert ContentField(tiny_image).sampling == "bilinear"
        assert ContentField(tiny_image, sampling="nearest").sampling == "nearest"
        with pytest.raises(TypeError):
            ContentField(tiny_image, filter="nearest")


class TestSampling:

    def test_bilinear_exact_at_pixel_centers(self, tiny_image):
        field = ContentField(tiny_image)
        ys, xs = np.mgrid[0:2, 0:2]
        out = field(xs + 0.5, ys + 0.5)
        assert np.array_equal(out, tiny_image.astype(np.float64))

    def test_bilinear_midpoint_averages(self, tiny_image):
        field = ContentField(tiny_image)
        out = field(1.0, 0.5)
        assert np.allclose(out, [0.5, 0.5, 0.0, 1.0])

    def test_nearest_picks_containing_pixel(self, tiny_image):
        field = ContentField(tiny_image, sampling="nearest")
        assert np.array_equal(field(1.9, 1.1), tiny_image[1, 1])
        assert np.array_equal(field(0.0, 0.0), tiny_image[0, 0])

    def test_clamp_repeats_edge(self, tiny_image):
        field = ContentField(tiny_image)
        assert np.array_equal(field(-50.0, 0.5), tiny_image[0, 0])
        assert np.array_equal(field(1e6, 1e6), tiny_image[1, 1])

    def test_transparent_outside_surface(self, tiny_image):
        field = ContentField(tiny_image, edge_mode="transparent")
        assert np.array_equal(field(-50.0, 0.5), np.zeros(4))
        assert np.array_equal(field(0.5, 0.5), tiny_image[0, 0])
        nearest = ContentField(tiny_image, edge_mode="transparent", sampling="nearest")
        assert np.array_equal(nearest(2.5, 0.5), np.zeros(4))

    def test_broadcasts_scalar_and_array(self, tiny_image):
        field = ContentField(tiny_image)
        out = field(np.array([0.5, 1.5]), 0.5)
        assert out.shape == (2, 4)


class TestBackgroundSources:

    def test_generate_background_shape_and_range(self):
        bg = generate_background(120, 80, seed=1)
        assert bg.shape == (80, 120, 4)
        assert bg.dtype == np.float32
        assert bg.min() >= 0.0 and bg.max() <= 1.0
        assert np.all(bg[..., 3] == 1.0)

    def test_generate_background_deterministic(self):
        assert np.array_equal(generate_background(64, 64, seed=3),
                              generate_background(64, 64, seed=3))

    def test_missing_file_falls_back(self, tmp_path, capsys):
        bg = load_or_generate_background(str(tmp_path / "missing.png"), 50, 40)
        assert bg.shape == (40, 50, 4)
        assert "not found" in capsys.readouterr().out

    def test_loads_and_resizes(self, tmp_path):
        path = tmp_path / "bg.png"
        Image.new("RGB", (20, 10), (255, 0, 0)).save(path)
        bg = load_or_generate_background(str(path), 40, 20)
        assert bg.shape == (20, 40, 4)
        assert np.allclose(bg[..., 0], 1.0)
        assert np.allclose(bg[..., 3], 1.0)
