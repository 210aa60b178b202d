"""
LCD Reconstruction Module

Tools for recovering canonical bitmaps from photographs of the LCD,
checking them against reference captures, archiving them, and
composing sprite sheets and animations from the archived frames.
"""

from .scanner import PhotoScanner
from .extractor import BitmapExtractor, CanonicalBitmap
from .fingerprint import QCComparator, fingerprint
from .metadata import ArchivalEncoder, PngOptimizer, read_pbm, write_pbm
from .assembler import Composer

__all__ = [
    'PhotoScanner',
    'BitmapExtractor',
    'CanonicalBitmap',
    'QCComparator',
    'fingerprint',
    'ArchivalEncoder',
    'PngOptimizer',
    'read_pbm',
    'write_pbm',
    'Composer',
]
