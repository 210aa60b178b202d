"""
Fingerprint and QC Module

Fingerprints canonical bitmaps and cross-checks them against optional,
independently captured reference photos. A mismatch never stops the
pipeline; it produces diff artifacts for a human to review.
"""

import hashlib
import os
import numpy as np
from PIL import Image
from dataclasses import dataclass
from typing import Optional

from ..effects import RasterOps
from ..errors import ArchiveWriteError
from ..identity import InputIdentity
from .extractor import BitmapExtractor, CanonicalBitmap, WORKING_SIZE
from .scanner import PhotoScanner


STATUS_SKIPPED = 'skipped'
STATUS_MATCH = 'match'
STATUS_MISMATCH = 'mismatch'

FLICKER_DELAY_MS = 500


def fingerprint(bitmap: CanonicalBitmap) -> str:
    """SHA-256 hex digest of the bitmap's packed bit-plane."""
    return hashlib.sha256(bitmap.packed_bits()).hexdigest()


@dataclass
class QCResult:
    """Outcome of comparing one bitmap against its reference capture."""
    status: str
    candidate: str
    reference: Optional[str] = None
    differing_pixels: int = 0
    diff_image: Optional[str] = None
    flicker_image: Optional[str] = None

    @property
    def is_mismatch(self) -> bool:
        return self.status == STATUS_MISMATCH


def write_diff_artifacts(candidate: CanonicalBitmap,
                         working: np.ndarray,
                         diff_path: str,
                         flicker_path: str):
    """
    Write visual comparison artifacts for one bitmap.

    Args:
        candidate: The extracted bitmap
        working: Grayscale capture at working resolution to compare with
        diff_path: Output PNG of the contrast-stretched absolute difference
        flicker_path: Output GIF alternating between both images
    """
    upscaled = RasterOps.sample_nearest(candidate.to_array(), WORKING_SIZE)

    diff = RasterOps.contrast_stretch(RasterOps.difference(working, upscaled))
    try:
        Image.fromarray(diff, 'L').save(diff_path)
    except OSError as e:
        raise ArchiveWriteError(f"Could not write difference image {diff_path}: {e}")

    capture = Image.fromarray(working, 'L').convert('RGB')
    rendered = RasterOps.level_colors(
        Image.fromarray(upscaled, 'L'), black=(0x11, 0x11, 0x11), white=(0x88, 0x88, 0x88))
    frames = [
        im.convert('P', palette=Image.Palette.ADAPTIVE, colors=256)
        for im in (capture, rendered)
    ]
    try:
        frames[0].save(
            flicker_path,
            save_all=True,
            append_images=frames[1:],
            duration=FLICKER_DELAY_MS,
            loop=0,
        )
    except OSError as e:
        raise ArchiveWriteError(f"Could not write flicker animation {flicker_path}: {e}")


class QCComparator:
    """
    Compare extracted bitmaps with reference captures keyed `{index}-{frame}`.
    """

    def __init__(self,
                 fixtures_dir: Optional[str] = None,
                 extractor: Optional[BitmapExtractor] = None,
                 scanner: Optional[PhotoScanner] = None):
        """
        Initialize the comparator.

        Args:
            fixtures_dir: Directory of reference captures; None disables QC
            extractor: Extractor used to re-extract reference captures
            scanner: Loader for reference captures (no size limits by default)
        """
        self.fixtures_dir = fixtures_dir
        self.extractor = extractor or BitmapExtractor()
        self.scanner = scanner or PhotoScanner(min_bytes=0, max_bytes=float('inf'))

    def fixture_path(self, identity: InputIdentity) -> Optional[str]:
        if not self.fixtures_dir:
            return None
        path = os.path.join(self.fixtures_dir, f"{identity.index}-{identity.frame}.png")
        return path if os.path.isfile(path) else None

    def compare(self,
                candidate: CanonicalBitmap,
                identity: InputIdentity,
                diff_path: Optional[str] = None,
                flicker_path: Optional[str] = None) -> QCResult:
        """
        Compare a bitmap with its reference capture, if one exists.

        Args:
            candidate: Bitmap produced by the pipeline
            identity: Identity of the photo the bitmap came from
            diff_path: Where to write the difference image on mismatch
            flicker_path: Where to write the flicker GIF on mismatch

        Returns:
            QCResult
        """
        candidate_fp = fingerprint(candidate)
        path = self.fixture_path(identity)
        if path is None:
            print(f"[QC] No reference capture for {identity.index}-{identity.frame}; skipped")
            return QCResult(status=STATUS_SKIPPED, candidate=candidate_fp)

        photo = self.scanner.load(path)
        reference = self.extractor.extract_reference(photo)
        reference_fp = fingerprint(reference)

        if reference_fp == candidate_fp:
            return QCResult(status=STATUS_MATCH, candidate=candidate_fp,
                            reference=reference_fp)

        differing = int(np.count_nonzero(candidate.pixels != reference.pixels))
        print(f"Warning: {identity.title} differs from its reference capture "
              f"in {differing} pixel(s)")

        if diff_path and flicker_path:
            write_diff_artifacts(candidate, self.extractor.working_capture(photo),
                                 diff_path, flicker_path)

        return QCResult(status=STATUS_MISMATCH, candidate=candidate_fp,
                        reference=reference_fp, differing_pixels=differing,
                        diff_image=diff_path, flicker_image=flicker_path)
