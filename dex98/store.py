"""
Artifact Store Module

Answers "has (index, frame) been persisted?" and loads persisted
frames for composition. The file store reads what the encoder wrote;
the memory store lets composition be exercised without a filesystem.
"""

import os
from PIL import Image
from typing import Dict, Tuple

from .config import ArtPaths
from .identity import ReferenceTable
from .reconstruct.extractor import CanonicalBitmap


class ArtifactStore:
    """Interface shared by the file and memory stores."""

    def exists(self, index: int, frame: int) -> bool:
        raise NotImplementedError

    def load_bitmap(self, index: int, frame: int) -> CanonicalBitmap:
        raise NotImplementedError

    def load_gallery(self, index: int, frame: int) -> Image.Image:
        raise NotImplementedError

    def has_all_frames(self, index: int, frames=(0, 1, 2)) -> bool:
        return all(self.exists(index, f) for f in frames)


class FileArtifactStore(ArtifactStore):
    """Store backed by the raster and gallery directories on disk."""

    def __init__(self, paths: ArtPaths, table: ReferenceTable):
        self.paths = paths
        self.table = table

    def _stem(self, index: int, frame: int) -> str:
        record = self.table.lookup(index)
        return f"{record.stem}-{frame}"

    def exists(self, index: int, frame: int) -> bool:
        if index not in self.table:
            return False
        stem = self._stem(index, frame)
        return (os.path.isfile(self.paths.raster(stem))
                and os.path.isfile(self.paths.gallery(stem)))

    def load_bitmap(self, index: int, frame: int) -> CanonicalBitmap:
        with Image.open(self.paths.raster(self._stem(index, frame))) as img:
            return CanonicalBitmap.from_image(img)

    def load_gallery(self, index: int, frame: int) -> Image.Image:
        with Image.open(self.paths.gallery(self._stem(index, frame))) as img:
            return img.convert('RGB')


class MemoryArtifactStore(ArtifactStore):
    """In-memory store keyed by (index, frame)."""

    def __init__(self):
        self._bitmaps: Dict[Tuple[int, int], CanonicalBitmap] = {}
        self._gallery: Dict[Tuple[int, int], Image.Image] = {}

    def put(self, index: int, frame: int,
            bitmap: CanonicalBitmap, gallery: Image.Image):
        self._bitmaps[(index, frame)] = bitmap
        self._gallery[(index, frame)] = gallery.convert('RGB')

    def exists(self, index: int, frame: int) -> bool:
        return (index, frame) in self._bitmaps and (index, frame) in self._gallery

    def load_bitmap(self, index: int, frame: int) -> CanonicalBitmap:
        return self._bitmaps[(index, frame)]

    def load_gallery(self, index: int, frame: int) -> Image.Image:
        return self._gallery[(index, frame)].copy()
