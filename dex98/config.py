"""
Pipeline configuration and output layout.
"""

import os
from dataclasses import dataclass
from typing import Optional

from .errors import ArchiveWriteError, EnvironmentCheckError


PROJECT = 'dex98.com'
COPYRIGHT = 'This work is dedicated to the Public Domain by ACED, licensed under CC0.'
COPYRIGHT_SHORT = 'Public Domain by ACED, licensed under CC0.'
LICENSE_URL = 'https://creativecommons.org/publicdomain/zero/1.0/'


@dataclass
class Attribution:
    """Text written into every archival artifact."""
    project: str = PROJECT
    copyright: str = COPYRIGHT
    copyright_short: str = COPYRIGHT_SHORT
    license_url: str = LICENSE_URL

    def title_for(self, title: str) -> str:
        """Display title for raster metadata, e.g. `#006 Dragon (1) - dex98.com`."""
        return f"#{title} - {self.project}"

    def comment_for(self, title: str) -> str:
        """Single-line PBM comment, e.g. `006 Dragon (1) - dex98.com`."""
        return f"{title} - {self.project}"

    @property
    def copyright_tag(self) -> str:
        return f"{self.copyright_short} {self.license_url}"


@dataclass
class PipelineConfig:
    """Settings for one pipeline run."""
    reference_table: str
    output_dir: str = '.'
    background_reference: Optional[str] = None
    qc_fixtures_dir: Optional[str] = None
    kernel_radius: Optional[int] = None  # Dilation radius; erosion uses half
    use_oxipng: bool = True
    background_compression: bool = True
    synchronous_tasks: bool = False
    self_diff: bool = False
    verbose: bool = True
    logo_path: Optional[str] = None
    attribution: Optional[Attribution] = None

    def __post_init__(self):
        if self.attribution is None:
            self.attribution = Attribution()
        if self.kernel_radius is not None and self.kernel_radius < 1:
            raise ValueError(
                f"kernel_radius must be at least 1, got {self.kernel_radius}")

    @property
    def paths(self) -> 'ArtPaths':
        return ArtPaths(self.output_dir)

    def validate(self):
        """
        Check that every configured support file exists.

        Raises:
            EnvironmentCheckError: If a required or configured file is missing
        """
        if not os.path.isfile(self.reference_table):
            raise EnvironmentCheckError(
                f"Reference table not found: {self.reference_table}")
        if self.background_reference and not os.path.isfile(self.background_reference):
            raise EnvironmentCheckError(
                f"Background image not found: {self.background_reference}")
        if self.qc_fixtures_dir and not os.path.isdir(self.qc_fixtures_dir):
            raise EnvironmentCheckError(
                f"QC fixtures directory not found: {self.qc_fixtures_dir}")
        if self.logo_path and not os.path.isfile(self.logo_path):
            raise EnvironmentCheckError(f"Logo image not found: {self.logo_path}")


class ArtPaths:
    """Output locations, all relative to one root directory."""

    def __init__(self, root: str):
        self.root = root
        self.png_dir = os.path.join(root, 'art', 'png')
        self.pbm_dir = os.path.join(root, 'art', 'pbm')
        self.sheet_dir = os.path.join(root, 'art', 'sheets')
        self.gallery_dir = os.path.join(root, 'docs', 'gallery')

    def makedirs(self):
        for path in (self.png_dir, self.pbm_dir, self.sheet_dir, self.gallery_dir):
            try:
                os.makedirs(path, exist_ok=True)
            except OSError as e:
                raise ArchiveWriteError(f"Could not create output directory {path}: {e}")

    def raster(self, stem: str) -> str:
        return os.path.join(self.png_dir, f"{stem}.png")

    def archival(self, stem: str) -> str:
        return os.path.join(self.pbm_dir, f"{stem}.pbm")

    def gallery(self, stem: str) -> str:
        return os.path.join(self.gallery_dir, f"{stem}.png")

    def diff(self, stem: str, ext: str) -> str:
        return os.path.join(self.png_dir, f"diff.{stem}.{ext}")

    def qc_diff(self, stem: str, ext: str) -> str:
        return os.path.join(self.png_dir, f"qc.{stem}.{ext}")

    def sheet(self, subject_stem: str) -> str:
        return os.path.join(self.sheet_dir, f"{subject_stem}.png")

    def animation(self, subject_stem: str) -> str:
        return os.path.join(self.gallery_dir, f"{subject_stem}.gif")

    def master_sheet(self, frame: int) -> str:
        return os.path.join(self.gallery_dir, f"master-{frame}.png")

    def master_animation(self) -> str:
        return os.path.join(self.gallery_dir, 'master.gif')
