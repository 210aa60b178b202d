"""
Photo Loading Module

Checks and loads photographs of the LCD device. A photo must be a PNG
file of plausible size before any pixel work is attempted.
"""

import os
from PIL import Image, UnidentifiedImageError

from ..errors import ValidationError


MIN_PHOTO_BYTES = 10 * 1024
MAX_PHOTO_BYTES = 1024 * 1024


class PhotoScanner:
    """
    Validate and load input photographs.

    Size bounds are inclusive: 10240 bytes is the smallest accepted file
    and 1048576 bytes the largest.
    """

    def __init__(self,
                 min_bytes: int = MIN_PHOTO_BYTES,
                 max_bytes: int = MAX_PHOTO_BYTES):
        self.min_bytes = min_bytes
        self.max_bytes = max_bytes

    def check(self, path: str) -> int:
        """
        Validate a photo file without decoding its pixels.

        Args:
            path: Path to the photo

        Returns:
            File size in bytes

        Raises:
            ValidationError: If the file is missing, the wrong size, or not a PNG
        """
        if not os.path.isfile(path):
            raise ValidationError(f"File not found: {path}. PNG file required.")

        size = os.path.getsize(path)
        if size < self.min_bytes or size > self.max_bytes:
            raise ValidationError(
                f"File size of {path} is {size} bytes, outside the allowed "
                f"range ({self.min_bytes} - {self.max_bytes} bytes).")

        try:
            with Image.open(path) as img:
                fmt = img.format
                img.verify()
        except (UnidentifiedImageError, OSError, SyntaxError) as e:
            raise ValidationError(f"Not a valid PNG file: {path} ({e})")

        if fmt != 'PNG':
            raise ValidationError(f"Not a valid PNG file: {path} (found {fmt})")

        return size

    def load(self, path: str) -> Image.Image:
        """Check a photo and return it fully decoded."""
        self.check(path)
        # verify() leaves the file unusable, so reopen
        with Image.open(path) as img:
            img.load()
            return img.copy()
