import cv2
import numpy as np
from PIL import Image, ImageOps


class RasterOps:
    """
    Raster operators on 8-bit grayscale images.

    Arrays are uint8 numpy arrays (0 = black, 255 = white) unless a
    method says otherwise. Every operator is deterministic.
    """

    @staticmethod
    def to_gray(image):
        """Convert a PIL Image (any mode) to a uint8 grayscale array."""
        if image.mode in ('RGBA', 'LA', 'PA') or (image.mode == 'P' and 'transparency' in image.info):
            # Flatten onto white so transparent regions read as background
            rgba = image.convert('RGBA')
            canvas = Image.new('RGBA', rgba.size, (255, 255, 255, 255))
            canvas.alpha_composite(rgba)
            image = canvas
        if image.mode != 'L':
            image = image.convert('L')
        return np.array(image, dtype=np.uint8)

    @staticmethod
    def negate(arr):
        return 255 - arr

    @staticmethod
    def disk(radius):
        """Disk-shaped structuring element of the given radius."""
        size = 2 * radius + 1
        return cv2.getStructuringElement(cv2.MORPH_ELLIPSE, (size, size))

    @staticmethod
    def dilate(arr, radius):
        return cv2.dilate(arr, RasterOps.disk(radius))

    @staticmethod
    def erode(arr, radius):
        return cv2.erode(arr, RasterOps.disk(radius))

    @staticmethod
    def close_gaps(arr, dilate_radius, erode_radius):
        """
        Close small gaps between dark pixels.

        Works on the negated image so that dark LCD segments are the
        foreground: dilate, then erode with a smaller disk, then negate back.
        """
        inverted = RasterOps.negate(arr)
        inverted = RasterOps.dilate(inverted, dilate_radius)
        inverted = RasterOps.erode(inverted, erode_radius)
        return RasterOps.negate(inverted)

    @staticmethod
    def resample_area(arr, size):
        """Area-average resample to (width, height)."""
        return cv2.resize(arr, size, interpolation=cv2.INTER_AREA)

    @staticmethod
    def sample_nearest(arr, size):
        """Nearest-neighbour resample to (width, height); keeps hard pixel edges."""
        return cv2.resize(arr, size, interpolation=cv2.INTER_NEAREST)

    @staticmethod
    def otsu(arr):
        """Global Otsu threshold; returns a 0/255 array."""
        _, binary = cv2.threshold(arr, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
        return binary

    @staticmethod
    def compose_mathematics(dst, src, a, b, c, d):
        """
        Blend two images with `a*Sc*Dc + b*Sc + c*Dc + d`.

        Channels are normalised to [0, 1] before blending and the result is
        clipped and rounded back to uint8.
        """
        if dst.shape != src.shape:
            raise ValueError(
                f"Cannot compose images of shape {dst.shape} and {src.shape}")
        dc = dst.astype(np.float64) / 255.0
        sc = src.astype(np.float64) / 255.0
        result = a * sc * dc + b * sc + c * dc + d
        return np.rint(np.clip(result, 0.0, 1.0) * 255.0).astype(np.uint8)

    @staticmethod
    def difference(a, b):
        return cv2.absdiff(a, b)

    @staticmethod
    def contrast_stretch(arr, black_percent=5.0, white_percent=5.0):
        """
        Normalise to the full range, then clip the darkest and brightest
        percentages of pixels.
        """
        arr = cv2.normalize(arr, None, 0, 255, cv2.NORM_MINMAX)
        low = np.percentile(arr, black_percent)
        high = np.percentile(arr, 100 - white_percent)
        if high <= low:
            return arr
        stretched = (arr.astype(np.float64) - low) / (high - low) * 255.0
        return np.clip(stretched, 0, 255).astype(np.uint8)

    @staticmethod
    def level_colors(gray, black, white):
        """
        Map a grayscale image onto a two-color gradient.

        Args:
            gray: PIL Image in mode 'L'
            black: RGB color for 0
            white: RGB color for 255

        Returns:
            RGB PIL Image
        """
        return ImageOps.colorize(gray, black=black, white=white)

    @staticmethod
    def add_border(image, width, color):
        return ImageOps.expand(image, border=width, fill=color)
