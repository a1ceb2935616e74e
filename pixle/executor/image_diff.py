"""Image diff engine: pad, compare per pixel in YIQ space, highlight differences."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from io import BytesIO

import numpy as np
from PIL import Image

from pixle.errors import DiffError

logger = logging.getLogger(__name__)

# Maximum possible YIQ delta between two colors (black vs white)
MAX_YIQ_DELTA = 35215.0

WHITE = (255, 255, 255, 255)
HIGHLIGHT_RGB = (255, 0, 0)

# Rows compared per slice; full-page screenshots can be tens of thousands of pixels tall
_CHUNK_ROWS = 1024


@dataclass
class DiffResult:
    diff_pixels: int
    diff_percentage: float  # 0.0 to 100.0
    diff_image: bytes  # PNG
    width: int
    height: int


def compare_images(
    baseline: bytes,
    current: bytes,
    threshold: float = 0.1,
    highlight_alpha: int = 128,
) -> DiffResult:
    """Compare two PNG screenshots and build a highlighted diff image.

    Both images are padded (never scaled) onto a white canvas sized to the
    larger width and height. A pixel differs when its YIQ color distance
    exceeds ``threshold`` (0 is strict, 1 accepts anything). When nothing
    differs the diff image is the current image itself; otherwise differing
    pixels get a semi-transparent red overlay on top of the current image.
    """
    baseline_img = _decode(baseline, "baseline")
    current_img = _decode(current, "current")

    width = max(baseline_img.width, current_img.width)
    height = max(baseline_img.height, current_img.height)
    if baseline_img.size != current_img.size:
        logger.debug("Padding images to %dx%d (baseline %dx%d, current %dx%d)",
                     width, height, *baseline_img.size, *current_img.size)

    baseline_canvas = pad_to_canvas(baseline_img, (width, height))
    current_canvas = pad_to_canvas(current_img, (width, height))

    mask = diff_mask(np.asarray(baseline_canvas), np.asarray(current_canvas), threshold)
    diff_pixels = int(np.count_nonzero(mask))
    total = width * height
    diff_percentage = (diff_pixels / total) * 100 if total else 0.0

    if diff_pixels == 0:
        # Unpadded current image is returned byte-for-byte
        diff_image = current if current_canvas is current_img else _encode(current_canvas)
    else:
        diff_image = _encode(highlight_differences(current_canvas, mask, highlight_alpha))

    return DiffResult(
        diff_pixels=diff_pixels,
        diff_percentage=diff_percentage,
        diff_image=diff_image,
        width=width,
        height=height,
    )


def pad_to_canvas(image: Image.Image, size: tuple[int, int]) -> Image.Image:
    """Place an image at the top-left of an opaque white canvas of ``size``."""
    if image.size == size:
        return image
    canvas = Image.new("RGBA", size, WHITE)
    canvas.paste(image, (0, 0))
    return canvas


def diff_mask(baseline: np.ndarray, current: np.ndarray, threshold: float = 0.1) -> np.ndarray:
    """Return a boolean (height, width) array marking differing pixels.

    Inputs are RGBA uint8 arrays of identical shape. Semi-transparent pixels
    are blended over white before comparison.
    """
    if baseline.shape != current.shape:
        raise DiffError(f"Shape mismatch: {baseline.shape} vs {current.shape}")

    height, width = baseline.shape[:2]
    mask = np.zeros((height, width), dtype=bool)
    if np.array_equal(baseline, current):
        return mask

    max_delta = MAX_YIQ_DELTA * threshold * threshold
    for top in range(0, height, _CHUNK_ROWS):
        rows = slice(top, top + _CHUNK_ROWS)
        delta = _yiq_delta(_blend_white(baseline[rows]), _blend_white(current[rows]))
        mask[rows] = delta > max_delta
    return mask


def highlight_differences(image: Image.Image, mask: np.ndarray, alpha: int = 128) -> Image.Image:
    """Composite a red overlay over ``image`` wherever ``mask`` is set."""
    overlay = np.zeros((*mask.shape, 4), dtype=np.uint8)
    overlay[mask] = (*HIGHLIGHT_RGB, alpha)
    return Image.alpha_composite(image.convert("RGBA"), Image.fromarray(overlay))


def _blend_white(rgba: np.ndarray) -> np.ndarray:
    rgb = rgba[..., :3].astype(np.float32)
    alpha = rgba[..., 3:4].astype(np.float32) / 255.0
    return 255.0 + (rgb - 255.0) * alpha


def _yiq_delta(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    dy = _luma(a) - _luma(b)
    di = _in_phase(a) - _in_phase(b)
    dq = _quadrature(a) - _quadrature(b)
    return 0.5053 * dy * dy + 0.299 * di * di + 0.1957 * dq * dq


def _luma(rgb: np.ndarray) -> np.ndarray:
    return rgb[..., 0] * 0.29889531 + rgb[..., 1] * 0.58662247 + rgb[..., 2] * 0.11448223


def _in_phase(rgb: np.ndarray) -> np.ndarray:
    return rgb[..., 0] * 0.59597799 - rgb[..., 1] * 0.27417610 - rgb[..., 2] * 0.32180189


def _quadrature(rgb: np.ndarray) -> np.ndarray:
    return rgb[..., 0] * 0.21147017 - rgb[..., 1] * 0.52261711 + rgb[..., 2] * 0.31114694


def _decode(data: bytes, label: str) -> Image.Image:
    try:
        image = Image.open(BytesIO(data))
        image.load()
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        raise DiffError(f"Could not decode {label} image: {e}") from e
    return image.convert("RGBA")


def _encode(image: Image.Image) -> bytes:
    buf = BytesIO()
    try:
        image.save(buf, format="PNG")
    except (OSError, ValueError) as e:
        raise DiffError(f"Could not encode diff image: {e}") from e
    return buf.getvalue()
