"""
Test Configuration
==================

Pytest fixtures shared by the dex98 test suite. Photos are synthesized
from a known bitmap so extraction results can be checked exactly.
"""

import os

import numpy as np
import pytest
from PIL import Image

from dex98.config import PipelineConfig
from dex98.identity import ReferenceTable


SPECIAL_NAMES = {
    6: 'Dragon',
    29: 'Nidoran♀',
    83: "Farfetch'd",
    122: 'Mr. Mime',
}

CELL = 20  # Photo pixels per LCD pixel in synthesized photos


def subject_name(index):
    return SPECIAL_NAMES.get(index, f"Mon{index:03d}")


def write_table(path, trailing_space_at=None):
    lines = ['number\tname\ttag\twhite\tborder\tblack']
    for index in range(1, 152):
        name = subject_name(index)
        if index == trailing_space_at:
            name += '   '
        lines.append(f"{index}\t{name}\t*\t#BFBCB6\t#CFCDC7\t#001830")
    with open(path, 'w', encoding='utf-8') as handle:
        handle.write('\n'.join(lines) + '\n')
    return path


def pattern(seed=0, density=0.4):
    """Random 32x30 boolean grid with both colors present."""
    rng = np.random.default_rng(seed)
    grid = rng.random((32, 30)) < density
    grid[0, 0] = True
    grid[31, 29] = False
    return grid


def render_photo(grid, seed=0):
    """
    Fake LCD photo: dark cells with light gaps between them and mild noise.
    """
    rng = np.random.default_rng(seed)
    h, w = grid.shape
    img = np.full((h * CELL, w * CELL), 210, dtype=np.int16)
    for r in range(h):
        for c in range(w):
            if grid[r, c]:
                img[r * CELL + 1:(r + 1) * CELL - 1, c * CELL + 1:(c + 1) * CELL - 1] = 40
    img += rng.integers(-8, 9, size=img.shape)
    return Image.fromarray(np.clip(img, 0, 255).astype(np.uint8), 'L')


def render_fixture(grid, scale=16):
    """Clean reference capture at exactly the working resolution."""
    arr = np.where(grid, 0, 255).astype(np.uint8)
    return Image.fromarray(np.kron(arr, np.ones((scale, scale), dtype=np.uint8)), 'L')


@pytest.fixture
def table_path(tmp_path):
    """Reference table with all 151 subjects."""
    return write_table(str(tmp_path / 'table.tsv'), trailing_space_at=6)


@pytest.fixture
def table(table_path):
    return ReferenceTable.load(table_path)


@pytest.fixture
def make_photo(tmp_path):
    """Factory writing a synthesized photo to `{root}/{index}/{stem}.png`."""
    def _make(stem, grid, seed=0, root=None):
        directory = os.path.join(root or str(tmp_path / 'photos'), stem.split('-')[0])
        os.makedirs(directory, exist_ok=True)
        path = os.path.join(directory, f"{stem}.png")
        render_photo(grid, seed).save(path)
        return path
    return _make


@pytest.fixture
def config(tmp_path, table_path):
    """Offline configuration: no oxipng and no background tasks."""
    return PipelineConfig(
        reference_table=table_path,
        output_dir=str(tmp_path / 'out'),
        use_oxipng=False,
        background_compression=False,
        synchronous_tasks=True,
        verbose=False,
    )
