"""
Composition Module

Assembles per-frame artifacts into sprite sheets, looping animations
and the batch master gallery, once every frame of a subject has been
persisted.
"""

import os
import subprocess
import numpy as np
from PIL import Image
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from ..config import Attribution, ArtPaths
from ..errors import ArchiveWriteError
from ..identity import FRAME_NAMES, SUBJECT_COUNT, ReferenceTable
from ..layout import GalleryLayout
from ..tools import TaskQueue, run_tool, tool_available
from .metadata import ArchivalEncoder


HOLD_MS = 2000
STEP_MS = 400
PALETTE_COLORS = 4

# Macro program: (cycle name, repeats) after the initial hold
CYCLE_PROGRAM = (('pose', 2), ('attack', 2), ('pose', 2))

MASTER_COLUMNS = 15
PLACEHOLDER_SLOT = 0
FOOTER_SUBJECTS = (150, 151)
MASTER_PALETTE_COLORS = 64


@dataclass
class AnimationFrame:
    """One displayed frame of an animation."""
    image: Image.Image
    delay_ms: int
    label: str


@dataclass
class CompositeResult:
    sheet_path: str
    animation_path: str
    frame_labels: List[str]


def build_animation_plan(rest: Image.Image,
                         pose: Image.Image,
                         attack: Image.Image,
                         hold_ms: int = HOLD_MS,
                         step_ms: int = STEP_MS) -> List[AnimationFrame]:
    """
    Lay out the full animation before duplicate removal.

    The sequence is a long hold on rest, then the (rest, pose) cycle twice,
    the (rest, attack) cycle twice and the (rest, pose) cycle twice more.
    """
    cycles = {
        'pose': [(rest, 'rest'), (pose, 'pose')],
        'attack': [(rest, 'rest'), (attack, 'attack')],
    }
    plan = [AnimationFrame(rest, hold_ms, 'rest')]
    for name, repeats in CYCLE_PROGRAM:
        for _ in range(repeats):
            plan.extend(AnimationFrame(img, step_ms, label) for img, label in cycles[name])
    return plan


def _same_pixels(a: Image.Image, b: Image.Image) -> bool:
    if a.size != b.size or a.mode != b.mode:
        return False
    return np.array_equal(np.asarray(a), np.asarray(b))


def collapse_duplicates(frames: List[AnimationFrame]) -> List[AnimationFrame]:
    """Merge consecutive identical frames, summing their delays."""
    collapsed: List[AnimationFrame] = []
    for frame in frames:
        if collapsed and _same_pixels(collapsed[-1].image, frame.image):
            collapsed[-1].delay_ms += frame.delay_ms
            continue
        collapsed.append(AnimationFrame(frame.image, frame.delay_ms, frame.label))
    return collapsed


def reduce_palette(images: Sequence[Image.Image],
                   colors: int = PALETTE_COLORS) -> List[Image.Image]:
    """
    Quantize every frame against one shared palette, without dithering.
    """
    # The same image object recurs many times in an animation plan
    converted = {}
    for im in images:
        if id(im) not in converted:
            converted[id(im)] = im.convert('RGB')
    unique = list(converted.values())

    width = max(im.width for im in unique)
    strip = Image.new('RGB', (width, sum(im.height for im in unique)))
    y = 0
    for im in unique:
        strip.paste(im, (0, y))
        y += im.height
    palette = strip.quantize(colors=colors, method=Image.Quantize.MEDIANCUT,
                             dither=Image.Dither.NONE)
    reduced = {key: im.quantize(palette=palette, dither=Image.Dither.NONE)
               for key, im in converted.items()}
    return [reduced[id(im)] for im in images]


def save_animation(frames: List[AnimationFrame], path: str,
                   colors: int = PALETTE_COLORS) -> str:
    """Write frames as an infinitely looping GIF."""
    if not frames:
        raise ValueError("No frames to export")
    reduced = reduce_palette([f.image for f in frames], colors)
    try:
        reduced[0].save(
            path,
            save_all=True,
            append_images=reduced[1:],
            duration=[f.delay_ms for f in frames],
            loop=0,
            optimize=True,
        )
    except OSError as e:
        raise ArchiveWriteError(f"Could not write animation {path}: {e}")
    return path


def file_signature(path: str) -> Tuple[int, int]:
    """(modification time in ns, size) used to detect a rewritten file."""
    stat = os.stat(path)
    return stat.st_mtime_ns, stat.st_size


def recompress_gif(path: str, expected: Optional[Tuple[int, int]] = None) -> bool:
    """
    Losslessly recompress a GIF in place with gifsicle.

    When `expected` is given, the file is left alone if it no longer has
    that signature, before or after gifsicle runs. A newer animation
    written in the meantime is never replaced by an older one.

    Returns:
        True if the file was replaced
    """
    if expected is not None and file_signature(path) != expected:
        print(f"[Composer] {os.path.basename(path)} changed; recompression skipped")
        return False
    optimized = f"{path}.opt.gif"
    try:
        run_tool(['gifsicle', '--optimize=3', '--no-warnings', '-o', optimized, path])
        if expected is not None and file_signature(path) != expected:
            print(f"[Composer] {os.path.basename(path)} changed; recompression discarded")
            os.remove(optimized)
            return False
        os.replace(optimized, path)
    except subprocess.CalledProcessError:
        if os.path.exists(optimized):
            os.remove(optimized)
        raise
    return True


class Composer:
    """
    Build composite artifacts from persisted frames.

    Composition is gated on the store: nothing is written for a subject
    unless all three frames exist.
    """

    def __init__(self,
                 store,
                 paths: ArtPaths,
                 encoder: ArchivalEncoder,
                 attribution: Optional[Attribution] = None,
                 tasks: Optional[TaskQueue] = None,
                 verbose: bool = True):
        """
        Initialize the composer.

        Args:
            store: ArtifactStore answering exists/load queries
            paths: Output locations
            encoder: Encoder used to write and optimize sheets
            attribution: Metadata text for composite PNGs
            tasks: Queue for background GIF recompression; None disables it
            verbose: Print a line for every artifact written
        """
        self.store = store
        self.paths = paths
        self.encoder = encoder
        self.attribution = attribution or Attribution()
        self.tasks = tasks
        self.verbose = verbose

    def _tags(self, title: str):
        return {
            'Title': self.attribution.title_for(title),
            'Copyright': self.attribution.copyright_tag,
        }

    def compose(self, subject_index: int, subject_name: str) -> Optional[CompositeResult]:
        """
        Write the sprite sheet and animation for one subject.

        Args:
            subject_index: 1-based subject index
            subject_name: Canonical name, used in the output filenames

        Returns:
            CompositeResult, or None if any frame is still missing
        """
        if not self.store.has_all_frames(subject_index):
            return None

        stem = f"{subject_index:03d}-{subject_name}"
        self.paths.makedirs()

        bitmaps = [self.store.load_bitmap(subject_index, f) for f in range(3)]
        sheet = np.hstack([b.to_array() for b in bitmaps])
        sheet_path = self.encoder.save_png(
            Image.fromarray(sheet, 'L'), self.paths.sheet(stem),
            self._tags(f"{subject_index:03d} {subject_name}"))

        rest, pose, attack = [self.store.load_gallery(subject_index, f) for f in range(3)]
        frames = collapse_duplicates(build_animation_plan(rest, pose, attack))
        animation_path = save_animation(frames, self.paths.animation(stem))
        self._schedule_recompression(animation_path)

        if self.verbose:
            print(f"[Composer] {stem}: sheet and {len(frames)}-frame animation")
        return CompositeResult(sheet_path=sheet_path,
                               animation_path=animation_path,
                               frame_labels=[f.label for f in frames])

    def _schedule_recompression(self, path: str):
        if self.tasks is None or not tool_available('gifsicle'):
            return
        self.tasks.submit(recompress_gif, path, file_signature(path))

    # ---- Batch master gallery -------------------------------------------

    def master_tiles(self, table: ReferenceTable, frame: int,
                     layout: GalleryLayout) -> Tuple[List[Image.Image], int]:
        """
        Gallery tiles for one frame in display order.

        Returns:
            Tuple of (tiles, number of subjects drawn as placeholders)
        """
        tiles = []
        missing = 0
        for index in range(1, SUBJECT_COUNT + 1):
            if index in FOOTER_SUBJECTS:
                continue
            tile = self._subject_tile(table, index, frame)
            if tile is None:
                missing += 1
                tile = layout.placeholder_tile()
            tiles.append(tile)
        tiles.insert(PLACEHOLDER_SLOT, layout.placeholder_tile())
        return tiles, missing

    def _subject_tile(self, table, index, frame):
        if index not in table or not self.store.has_all_frames(index):
            return None
        return self.store.load_gallery(index, frame)

    def _footer_tile(self, table, index, frame, layout):
        tile = self._subject_tile(table, index, frame)
        return layout.placeholder_tile() if tile is None else tile

    def compose_master(self,
                       table: ReferenceTable,
                       tile_size: Tuple[int, int],
                       logo: Optional[Image.Image] = None) -> Optional[CompositeResult]:
        """
        Stitch every subject's gallery art into one sheet per frame and a
        master animation.

        Args:
            table: Reference table of all subjects
            tile_size: Size of one gallery tile
            logo: Image centered in the footer; the project name is drawn
                when None

        Returns:
            CompositeResult for frame 0's sheet and the animation, or None
            if no subject is complete yet
        """
        if not any(self.store.has_all_frames(r.index) for r in table):
            return None

        layout = GalleryLayout(tile_size, columns=MASTER_COLUMNS)
        self.paths.makedirs()

        masters = []
        sheet_paths = []
        for frame in range(3):
            tiles, missing = self.master_tiles(table, frame, layout)
            left, right = [self._footer_tile(table, i, frame, layout) for i in FOOTER_SUBJECTS]
            footer = layout.footer(left, right, logo=logo, label=self.attribution.project)
            master = layout.stack(layout.tile(tiles), footer)
            masters.append(master)
            sheet_paths.append(self.encoder.save_png(
                master, self.paths.master_sheet(frame),
                self._tags(f"Gallery ({FRAME_NAMES[frame]})")))

        frames = collapse_duplicates(build_animation_plan(*masters))
        animation_path = save_animation(frames, self.paths.master_animation(),
                                        colors=MASTER_PALETTE_COLORS)
        self._schedule_recompression(animation_path)

        if self.verbose:
            print(f"[Composer] Master gallery: {len(frames)}-frame animation, "
                  f"{missing} subject(s) incomplete")
        return CompositeResult(sheet_path=sheet_paths[0],
                               animation_path=animation_path,
                               frame_labels=[f.label for f in frames])
