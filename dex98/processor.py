import os
from dataclasses import dataclass, field
from PIL import Image
from typing import List, Optional, Tuple

from .config import PipelineConfig
from .identity import InputIdentity, ReferenceTable, resolve
from .layout import gallery_tile_size, render_gallery_art
from .reconstruct.assembler import Composer, CompositeResult
from .reconstruct.extractor import GRID_HEIGHT, GRID_WIDTH, BitmapExtractor
from .reconstruct.fingerprint import QCComparator, QCResult, write_diff_artifacts
from .reconstruct.metadata import ArchivalEncoder, PersistedPaths, PngOptimizer
from .reconstruct.scanner import PhotoScanner
from .store import ArtifactStore, FileArtifactStore
from .tools import TaskQueue


@dataclass
class PhotoResult:
    identity: InputIdentity
    paths: PersistedPaths
    fingerprint: str
    qc: QCResult


@dataclass
class RunSummary:
    photos: List[PhotoResult] = field(default_factory=list)
    composed: List[CompositeResult] = field(default_factory=list)
    master: Optional[CompositeResult] = None

    @property
    def mismatches(self) -> List[PhotoResult]:
        return [p for p in self.photos if p.qc.is_mismatch]


class Pipeline:
    """
    Run photos through resolve -> extract -> persist -> QC -> compose.

    All inputs are validated before the first one is processed; any
    validation error aborts the run without writing anything.
    """

    def __init__(self,
                 config: PipelineConfig,
                 table: Optional[ReferenceTable] = None,
                 store: Optional[ArtifactStore] = None,
                 tasks: Optional[TaskQueue] = None):
        self.config = config
        self.paths = config.paths
        self.table = table if table is not None else ReferenceTable.load(config.reference_table)
        self.scanner = PhotoScanner()

        background = None
        if config.background_reference:
            with Image.open(config.background_reference) as img:
                img.load()
                background = img.copy()
        self.extractor = BitmapExtractor(background=background,
                                         kernel_radius=config.kernel_radius)

        self.encoder = ArchivalEncoder(
            self.paths, PngOptimizer(use_oxipng=config.use_oxipng, verbose=config.verbose))
        self.comparator = QCComparator(config.qc_fixtures_dir)
        self.store = store or FileArtifactStore(self.paths, self.table)
        self.tasks = tasks or TaskQueue(synchronous=config.synchronous_tasks,
                                        enabled=config.background_compression)
        self.composer = Composer(self.store, self.paths, self.encoder,
                                 attribution=config.attribution,
                                 tasks=self.tasks, verbose=config.verbose)
        self.composed = set()

    def validate_inputs(self, photos: List[str]) -> List[Tuple[str, InputIdentity]]:
        """
        Resolve and check every photo up front.

        Raises:
            ValidationError: On the first invalid photo
        """
        validated = []
        for path in photos:
            identity = resolve(path, os.path.dirname(os.path.abspath(path)), self.table)
            self.scanner.check(path)
            validated.append((path, identity))
        return validated

    def process(self, path: str, identity: InputIdentity) -> PhotoResult:
        """Extract, persist and QC one validated photo."""
        if self.config.verbose:
            print(f" > {identity.stem}")

        photo = self.scanner.load(path)
        extraction = self.extractor.extract_detailed(photo)
        bitmap = extraction.bitmap

        record = self.table.lookup(identity.number)
        art = render_gallery_art(bitmap, record.gallery_colors)
        persisted = self.encoder.persist(bitmap, identity, self.config.attribution,
                                         gallery_art=art)

        if self.config.self_diff:
            write_diff_artifacts(bitmap, extraction.working,
                                 self.paths.diff(identity.stem, 'png'),
                                 self.paths.diff(identity.stem, 'gif'))

        qc = self.comparator.compare(bitmap, identity,
                                     diff_path=self.paths.qc_diff(identity.stem, 'png'),
                                     flicker_path=self.paths.qc_diff(identity.stem, 'gif'))

        return PhotoResult(identity=identity, paths=persisted,
                           fingerprint=qc.candidate, qc=qc)

    def maybe_compose(self, identity: InputIdentity) -> Optional[CompositeResult]:
        """Compose the photo's subject, at most once per run."""
        record = self.table.lookup(identity.number)
        if record.index in self.composed:
            return None
        result = self.composer.compose(record.index, record.canonical_name)
        if result is not None:
            self.composed.add(record.index)
        return result

    def run(self, photos: List[str], master: bool = False) -> RunSummary:
        """
        Process a batch of photos in order.

        A subject is composed once, right after the last of its photos in
        the batch, so each animation is written (and queued for
        recompression) a single time per run.

        Args:
            photos: Paths to the input photos
            master: Also rebuild the batch master gallery afterwards

        Returns:
            RunSummary
        """
        validated = self.validate_inputs(photos)
        summary = RunSummary()
        self.composed = set()

        last_photo = {}
        for position, (_, identity) in enumerate(validated):
            last_photo[identity.number] = position

        for position, (path, identity) in enumerate(validated):
            summary.photos.append(self.process(path, identity))
            if last_photo[identity.number] != position:
                continue
            composite = self.maybe_compose(identity)
            if composite is not None:
                summary.composed.append(composite)

        if master:
            summary.master = self.compose_master()

        return summary

    def compose_master(self) -> Optional[CompositeResult]:
        logo = None
        if self.config.logo_path:
            with Image.open(self.config.logo_path) as img:
                img.load()
                logo = img.copy()
        tile_size = gallery_tile_size(GRID_WIDTH, GRID_HEIGHT)
        return self.composer.compose_master(self.table, tile_size, logo=logo)

    def close(self, cancel_pending: bool = False):
        self.tasks.shutdown(cancel_pending=cancel_pending)
