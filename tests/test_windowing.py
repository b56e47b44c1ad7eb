"""Tests for imaging_engine/windowing.py."""

import numpy as np
import pytest
from pydicom.dataset import Dataset

from imaging_engine.windowing import (
    apply_window,
    auto_window,
    encode_png,
    render_bytes,
    render_dataset,
)


def _grey(result) -> np.ndarray:
    """First channel of a rendered image, shape (rows, columns)."""
    assert result.success, result.error
    return result.image.pixels[..., 0]


class TestApplyWindow:
    def test_clip_below_lower_is_zero(self):
        assert apply_window(np.array([-2000.0]), center=40, width=80)[0] == 0

    def test_clip_above_upper_is_255(self):
        assert apply_window(np.array([5000.0]), center=40, width=80)[0] == 255

    def test_boundaries_are_inclusive(self):
        out = apply_window(np.array([0.0, 80.0]), center=40, width=80)
        assert list(out) == [0, 255]

    def test_linear_interpolation_rounds_half_up(self):
        out = apply_window(np.array([0.0, 50.0, 100.0, 200.0]), center=100, width=200)
        assert list(out) == [0, 64, 128, 255]

    def test_zero_width_raises(self):
        with pytest.raises(ValueError, match="Window width"):
            apply_window(np.array([1.0]), center=0, width=0)

    def test_output_dtype_uint8(self):
        out = apply_window(np.linspace(-1000, 2000, 100), center=40, width=400)
        assert out.dtype == np.uint8


class TestAutoWindow:
    def test_full_range(self):
        assert auto_window(np.array([10.0, 30.0])) == (20.0, 20.0)

    def test_flat_image_has_width_one(self):
        assert auto_window(np.array([7.0, 7.0])) == (7.0, 1.0)


class TestRenderDataset:
    def test_header_window_used(self, dicom_dataset):
        pixels = np.array([[0, 50], [100, 200]], dtype=np.uint16)
        ds = dicom_dataset(pixels=pixels, WindowCenter=100, WindowWidth=200)
        assert _grey(render_dataset(ds)).tolist() == [[0, 64], [128, 255]]

    def test_auto_window_when_header_missing(self, dicom_dataset):
        pixels = np.array([[0, 1], [2, 3]], dtype=np.uint16)
        ds = dicom_dataset(pixels=pixels)
        assert _grey(render_dataset(ds)).tolist() == [[0, 85], [170, 255]]

    def test_auto_window_when_header_width_zero(self, dicom_dataset):
        pixels = np.array([[0, 1], [2, 3]], dtype=np.uint16)
        ds = dicom_dataset(pixels=pixels, WindowCenter=1, WindowWidth=0)
        assert _grey(render_dataset(ds)).tolist() == [[0, 85], [170, 255]]

    def test_flat_image_renders_single_value(self, dicom_dataset):
        pixels = np.full((3, 3), 500, dtype=np.uint16)
        grey = _grey(render_dataset(dicom_dataset(pixels=pixels)))
        assert len(np.unique(grey)) == 1

    def test_signed_16_bit(self, dicom_dataset):
        pixels = np.array([[-1000, 1000]], dtype=np.int16)
        ds = dicom_dataset(pixels=pixels)
        assert _grey(render_dataset(ds)).tolist() == [[0, 255]]

    def test_unsigned_8_bit(self, dicom_dataset):
        pixels = np.array([[0, 255], [128, 64]], dtype=np.uint8)
        ds = dicom_dataset(pixels=pixels, WindowCenter=127.5, WindowWidth=255)
        grey = _grey(render_dataset(ds))
        assert grey[0, 0] == 0
        assert grey[0, 1] == 255

    def test_monochrome1_inverts(self, dicom_dataset):
        pixels = np.array([[0, 3]], dtype=np.uint16)
        ds = dicom_dataset(pixels=pixels, PhotometricInterpretation="MONOCHROME1")
        assert _grey(render_dataset(ds)).tolist() == [[255, 0]]

    def test_invert_option(self, dicom_dataset):
        pixels = np.array([[0, 3]], dtype=np.uint16)
        assert _grey(render_dataset(dicom_dataset(pixels=pixels), invert=True)).tolist() == [[255, 0]]

    def test_inversions_compose(self, dicom_dataset):
        pixels = np.array([[0, 3]], dtype=np.uint16)
        ds = dicom_dataset(pixels=pixels, PhotometricInterpretation="MONOCHROME1")
        assert _grey(render_dataset(ds, invert=True)).tolist() == [[0, 255]]

    def test_rgba_layout(self, dicom_dataset):
        pixels = np.arange(6, dtype=np.uint16).reshape(2, 3)
        result = render_dataset(dicom_dataset(pixels=pixels))
        image = result.image
        assert (image.width, image.height) == (3, 2)
        assert image.pixels.shape == (2, 3, 4)
        assert np.all(image.pixels[..., 3] == 255)
        assert np.array_equal(image.pixels[..., 0], image.pixels[..., 2])
        assert len(image.buffer) == 3 * 2 * 4

    def test_short_sample_block_padded_black(self, dicom_dataset):
        pixels = np.array([[10, 20], [30, 40]], dtype=np.uint16)
        ds = dicom_dataset(pixels=pixels)
        ds.Rows = 3
        grey = _grey(render_dataset(ds))
        assert grey.shape == (3, 2)
        assert grey[2].tolist() == [0, 0]

    def test_deterministic(self, dicom_dataset):
        ds = dicom_dataset()
        first = render_dataset(ds).image.buffer
        assert render_dataset(ds).image.buffer == first


class TestRenderFailures:
    def test_missing_dimensions(self):
        ds = Dataset()
        ds.PixelData = b"\x00\x01"
        result = render_dataset(ds)
        assert not result.success
        assert result.error == "Missing image dimensions"

    def test_missing_pixel_data(self):
        ds = Dataset()
        ds.Rows = 2
        ds.Columns = 2
        result = render_dataset(ds)
        assert not result.success
        assert result.error == "No pixel data found"

    def test_unsupported_bit_depth(self, dicom_dataset):
        ds = dicom_dataset()
        ds.BitsAllocated = 32
        result = render_dataset(ds)
        assert not result.success
        assert "BitsAllocated" in result.error

    def test_render_bytes_rejects_garbage(self):
        result = render_bytes(b"")
        assert not result.success

    def test_render_bytes_rejects_text(self):
        result = render_bytes(b"plain text, not an image " * 20)
        assert not result.success
        assert result.error.startswith("Not a valid DICOM file")


class TestRenderBytesAndPng:
    def test_render_from_file_bytes(self, dicom_bytes):
        result = render_bytes(dicom_bytes())
        assert result.success
        assert result.image.pixels.shape == (4, 4, 4)

    def test_png_signature(self, dicom_bytes):
        image = render_bytes(dicom_bytes()).image
        assert encode_png(image).startswith(b"\x89PNG\r\n\x1a\n")
