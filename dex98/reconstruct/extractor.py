"""
Bitmap Extraction Module

Recovers the 30x32 pixel grid of the LCD from a photograph. The
photo is cleaned with a morphological close, optionally blended
against a background capture, Otsu-thresholded and area-sampled
down to the logical grid.
"""

import numpy as np
from PIL import Image
from dataclasses import dataclass, field
from typing import Optional, Tuple

from ..effects import RasterOps


GRID_WIDTH = 30
GRID_HEIGHT = 32
# Working resolution is 16 photo pixels per LCD pixel
WORKING_SIZE = (GRID_WIDTH * 16, GRID_HEIGHT * 16)

# Reference capture width at which the default radii apply
REFERENCE_WIDTH = 2000
DEFAULT_DILATE_RADIUS = 4

# Mathematics compose coefficients for background suppression
BACKGROUND_BLEND = (1.0, -0.8, 0.0, 0.5)


@dataclass(frozen=True)
class CanonicalBitmap:
    """
    The 30x32 one-bit grid for one (subject, frame).

    `pixels` is a read-only boolean array of shape (32, 30) where True
    is a black (lit) LCD pixel.
    """
    pixels: np.ndarray = field(repr=False)

    def __post_init__(self):
        arr = np.array(self.pixels, dtype=bool)
        if arr.ndim != 2:
            raise ValueError(
                f"Bitmap must be a 2-D grid, got {arr.ndim} dimension(s)")
        if arr.shape != (GRID_HEIGHT, GRID_WIDTH):
            raise ValueError(
                f"Bitmap must be {GRID_WIDTH}x{GRID_HEIGHT}, "
                f"got {arr.shape[1]}x{arr.shape[0]}")
        arr.setflags(write=False)
        object.__setattr__(self, 'pixels', arr)

    @property
    def size(self) -> Tuple[int, int]:
        return (GRID_WIDTH, GRID_HEIGHT)

    def to_array(self) -> np.ndarray:
        """8-bit grayscale rendering (0 black, 255 white)."""
        return np.where(self.pixels, 0, 255).astype(np.uint8)

    def to_image(self) -> Image.Image:
        return Image.fromarray(self.to_array(), 'L')

    def packed_bits(self) -> bytes:
        """Raw bit-plane, one MSB-first padded byte run per row."""
        return np.packbits(self.pixels, axis=1).tobytes()

    @classmethod
    def from_image(cls, image: Image.Image) -> 'CanonicalBitmap':
        """Read a 30x32 image; pixels darker than mid-gray are black."""
        if image.size != (GRID_WIDTH, GRID_HEIGHT):
            raise ValueError(
                f"Expected a {GRID_WIDTH}x{GRID_HEIGHT} image, got "
                f"{image.size[0]}x{image.size[1]}")
        return cls(RasterOps.to_gray(image) < 128)

    def __eq__(self, other):
        if not isinstance(other, CanonicalBitmap):
            return NotImplemented
        return np.array_equal(self.pixels, other.pixels)

    def __hash__(self):
        return hash(self.packed_bits())


@dataclass
class Extraction:
    """Result of one extraction, including the working capture used for QA."""
    bitmap: CanonicalBitmap
    working: np.ndarray  # WORKING_SIZE grayscale capture before threshold
    dilate_radius: int
    erode_radius: int


class BitmapExtractor:
    """
    Extract canonical bitmaps from LCD photographs.

    Output depends only on the photo pixels, the kernel radius and the
    background capture, so re-running on the same bytes reproduces the
    same bitmap.
    """

    def __init__(self,
                 background: Optional[Image.Image] = None,
                 kernel_radius: Optional[int] = None):
        """
        Initialize the extractor.

        Args:
            background: Capture of the blank display used to suppress
                bezel and fixed-pattern noise
            kernel_radius: Dilation radius override; scaled from the input
                width when None
        """
        self.kernel_radius = kernel_radius
        self._background = None
        if background is not None:
            self._background = RasterOps.resample_area(
                RasterOps.to_gray(background), WORKING_SIZE)

    def kernel_radii(self, width: int) -> Tuple[int, int]:
        """
        Dilation and erosion radii for a photo of the given width.

        Larger captures need a larger kernel to bridge the same physical
        gap between LCD segments.
        """
        if self.kernel_radius is not None:
            dilate = self.kernel_radius
        else:
            dilate = max(1, int(round(DEFAULT_DILATE_RADIUS * width / REFERENCE_WIDTH)))
        return dilate, max(1, dilate // 2)

    def extract(self, photo: Image.Image) -> CanonicalBitmap:
        """Extract the canonical bitmap from a photo."""
        return self.extract_detailed(photo).bitmap

    def extract_detailed(self, photo: Image.Image) -> Extraction:
        """
        Extract the bitmap and keep the intermediate working capture.

        Args:
            photo: PIL Image of the device screen

        Returns:
            Extraction
        """
        gray = RasterOps.to_gray(photo)
        dilate, erode = self.kernel_radii(gray.shape[1])

        # Step 1: close gaps between segments
        cleaned = RasterOps.close_gaps(gray, dilate, erode)

        # Step 2: bring to working resolution
        working = RasterOps.resample_area(cleaned, WORKING_SIZE)

        # Step 3: suppress the display background
        if self._background is not None:
            working = RasterOps.compose_mathematics(
                working, self._background, *BACKGROUND_BLEND)

        bitmap = self._binarize(working)
        return Extraction(bitmap=bitmap, working=working,
                          dilate_radius=dilate, erode_radius=erode)

    def extract_reference(self, photo: Image.Image) -> CanonicalBitmap:
        """
        Extract a comparison bitmap from an independent reference capture.

        Same threshold and resample policy as `extract`, without the
        morphological clean or background blend.
        """
        return self._binarize(self.working_capture(photo))

    @staticmethod
    def working_capture(photo: Image.Image) -> np.ndarray:
        return RasterOps.resample_area(RasterOps.to_gray(photo), WORKING_SIZE)

    @staticmethod
    def _binarize(working: np.ndarray) -> CanonicalBitmap:
        binary = RasterOps.otsu(working)
        cells = RasterOps.resample_area(binary, (GRID_WIDTH, GRID_HEIGHT))
        return CanonicalBitmap(cells < 128)
