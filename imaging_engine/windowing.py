"""
windowing.py - Window/level rendering of raw DICOM samples.

Stored pixel values usually span far more than the 256 grey levels a
screen can show.  A *window* (centre and width) picks the intensity range
that is mapped onto 0-255; everything below the window is black and
everything above it is white.

Rendering is limited to single-frame, uncompressed, 8/16-bit grayscale
images.  The result is an RGBA buffer (grey replicated into R, G and B,
alpha fully opaque) that can be handed to a viewer or encoded as PNG.

References
----------
- DICOM PS3.3, attribute (0028,1050)/(0028,1051): WindowCenter/WindowWidth
- DICOM PS3.3 C.7.6.3.1.2: Photometric Interpretation (MONOCHROME1/2)
"""

import logging
from dataclasses import dataclass
from io import BytesIO
from typing import Optional

import matplotlib.image as mpimg
import numpy as np
from pydicom.dataset import Dataset

from imaging_engine.errors import StructuralParseError
from imaging_engine.metadata_parser import read_dataset
from imaging_engine.tags import TAGS, get_bytes, get_number, get_string

logger = logging.getLogger(__name__)

DEFAULT_BITS_ALLOCATED = 16
DEFAULT_PHOTOMETRIC = "MONOCHROME2"
INVERTED_PHOTOMETRIC = "MONOCHROME1"

# (bits allocated, pixel representation) -> little-endian sample dtype
_SAMPLE_DTYPES: dict[tuple[int, int], str] = {
    (16, 0): "<u2",
    (16, 1): "<i2",
    (8, 0): "u1",
    (8, 1): "i1",
}


@dataclass(frozen=True)
class RenderedImage:
    """8-bit grayscale image expanded to RGBA, shape (height, width, 4)."""
    pixels: np.ndarray
    width: int
    height: int

    @property
    def buffer(self) -> bytes:
        """Row-major RGBA bytes."""
        return self.pixels.tobytes()


@dataclass(frozen=True)
class RenderResult:
    success: bool
    image: Optional[RenderedImage] = None
    error: Optional[str] = None


def auto_window(samples: np.ndarray) -> tuple[float, float]:
    """
    Window covering the full observed sample range.

    The width never drops below 1 so a flat image cannot cause a
    division by zero.
    """
    lo = float(samples.min())
    hi = float(samples.max())
    return (lo + hi) / 2.0, max(hi - lo, 1.0)


def apply_window(
    values: np.ndarray,
    center: float,
    width: float,
) -> np.ndarray:
    """
    Map sample values onto 0-255 through a window.

    Values at or below (center - width/2) map to 0, values at or above
    (center + width/2) map to 255, everything in between is scaled
    linearly and rounded half up.

    Parameters
    ----------
    values : np.ndarray
        Raw sample values.
    center : float
        Window centre.
    width : float
        Window width, must be > 0.

    Returns
    -------
    np.ndarray
        uint8 array, same shape as *values*.
    """
    if width <= 0:
        raise ValueError(
            f"Window width must be > 0, got width={width}."
        )
    lower = center - width / 2.0
    upper = center + width / 2.0
    values = np.asarray(values, dtype=np.float64)

    scaled = np.floor((values - lower) / width * 255.0 + 0.5)
    mapped = np.where(values <= lower, 0.0, np.where(values >= upper, 255.0, scaled))
    return np.clip(mapped, 0, 255).astype(np.uint8)


def _window_from_header(ds: Dataset) -> Optional[tuple[float, float]]:
    center = get_number(ds, TAGS["WindowCenter"])
    width = get_number(ds, TAGS["WindowWidth"])
    if center is None or width is None or width <= 0:
        return None
    return float(center), float(width)


def render_dataset(ds: Dataset, invert: bool = False) -> RenderResult:
    """
    Render the pixel data of a decoded dataset.

    Missing dimensions, a missing sample block or an unsupported bit depth
    produce a failed RenderResult instead of an exception.

    Parameters
    ----------
    ds : Dataset
        Decoded pydicom Dataset.
    invert : bool
        Invert the output in addition to any MONOCHROME1 inversion.

    Returns
    -------
    RenderResult
    """
    rows = get_number(ds, TAGS["Rows"])
    columns = get_number(ds, TAGS["Columns"])
    if not rows or not columns or rows <= 0 or columns <= 0:
        return RenderResult(False, error="Missing image dimensions")
    rows, columns = int(rows), int(columns)

    raw = get_bytes(ds, TAGS["PixelData"])
    if raw is None:
        return RenderResult(False, error="No pixel data found")

    bits = get_number(ds, TAGS["BitsAllocated"]) or DEFAULT_BITS_ALLOCATED
    representation = get_number(ds, TAGS["PixelRepresentation"]) or 0
    photometric = get_string(ds, TAGS["PhotometricInterpretation"]) or DEFAULT_PHOTOMETRIC

    dtype = _SAMPLE_DTYPES.get((int(bits), 1 if representation == 1 else 0))
    if dtype is None:
        return RenderResult(False, error=f"Unsupported BitsAllocated: {bits}")

    n_pixels = rows * columns
    itemsize = np.dtype(dtype).itemsize
    count = min(n_pixels, len(raw) // itemsize)
    if count == 0:
        return RenderResult(False, error="No pixel data found")
    samples = np.frombuffer(raw, dtype=dtype, count=count).astype(np.float64)

    window = _window_from_header(ds)
    if window is None:
        window = auto_window(samples)
        logger.debug("No usable window in header; auto window centre=%.1f width=%.1f", *window)
    center, width = window

    grey = apply_window(samples, center=center, width=width)
    if photometric == INVERTED_PHOTOMETRIC:
        grey = 255 - grey
    if invert:
        grey = 255 - grey

    # Short sample blocks leave the remaining pixels black.
    plane = np.zeros(n_pixels, dtype=np.uint8)
    plane[:count] = grey
    plane = plane.reshape(rows, columns)

    rgba = np.empty((rows, columns, 4), dtype=np.uint8)
    rgba[..., :3] = plane[..., np.newaxis]
    rgba[..., 3] = 255
    return RenderResult(True, image=RenderedImage(pixels=rgba, width=columns, height=rows))


def render_bytes(data: bytes, invert: bool = False) -> RenderResult:
    """Decode a raw DICOM file and render it; see render_dataset."""
    try:
        ds = read_dataset(data)
    except StructuralParseError as exc:
        return RenderResult(False, error=str(exc))
    return render_dataset(ds, invert=invert)


def encode_png(image: RenderedImage) -> bytes:
    """Encode a rendered image as PNG bytes for delivery."""
    buf = BytesIO()
    mpimg.imsave(buf, image.pixels, format="png")
    return buf.getvalue()
