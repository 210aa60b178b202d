"""
Identity Resolution Module

Parses photo filenames of the form `{index}-{Name}-{frame}.png` and
validates them against the authoritative reference table.
"""

import csv
import os
import re
from dataclasses import dataclass
from typing import Dict, List, Tuple

from PIL import ImageColor

from .errors import EnvironmentCheckError, ValidationError


SUBJECT_COUNT = 151
FRAME_NAMES = ('rest', 'pose', 'attack')
CORRECTED_SUFFIXES = ('_corrected', '-corrected')
PLACEHOLDER = '?'

# Names such as "Mr. Mime", "Farfetch'd" and "Nidoran♀" must survive
ALLOWED_CHARS = frozenset(
    'abcdefghijklmnopqrstuvwxyz'
    'ABCDEFGHIJKLMNOPQRSTUVWXYZ'
    '0123456789'
    "♀♂'. -\n"
)

_INDEX_RE = re.compile(r'^[0-9]{3}$')
_FRAME_RE = re.compile(r'^[0-2]$')


@dataclass(frozen=True)
class GalleryColors:
    """RGB colors used when rendering gallery art."""
    white: Tuple[int, int, int]
    border: Tuple[int, int, int]
    black: Tuple[int, int, int]


DEFAULT_GALLERY_COLORS = GalleryColors(
    white=(0xBF, 0xBC, 0xB6),
    border=(0xCF, 0xCD, 0xC7),
    black=(0x00, 0x18, 0x30),
)


@dataclass(frozen=True)
class SubjectRecord:
    """One row of the reference table."""
    index: int
    canonical_name: str
    palette_tag: str
    gallery_colors: GalleryColors

    @property
    def stem(self) -> str:
        """Filename stem shared by all composites, e.g. `006-Dragon`."""
        return f"{self.index:03d}-{self.canonical_name}"


@dataclass(frozen=True)
class InputIdentity:
    """Validated identity of one input photo."""
    index: str
    name: str
    frame: int
    sanitized: bool = False

    @property
    def number(self) -> int:
        return int(self.index, 10)

    @property
    def stem(self) -> str:
        return f"{self.index}-{self.name}-{self.frame}"

    @property
    def title(self) -> str:
        """Human readable title, e.g. `006 Dragon (1)`."""
        return f"{self.index} {self.name} ({self.frame})"

    @property
    def frame_name(self) -> str:
        return FRAME_NAMES[self.frame]


class ReferenceTable:
    """
    Ordered, read-only table of subject records.

    The file is tab separated with a single header row. Columns are read
    positionally: index, name, palette tag, then the white, border and
    black gallery colors. Any further columns are ignored.
    """

    COLUMNS = ('index', 'name', 'palette_tag', 'white', 'border', 'black')

    def __init__(self, records: List[SubjectRecord]):
        self._records: Dict[int, SubjectRecord] = {r.index: r for r in records}
        self._order = [r.index for r in records]

    @classmethod
    def load(cls, path: str) -> 'ReferenceTable':
        """
        Load the table from a TSV file.

        Args:
            path: Path to the reference table

        Returns:
            ReferenceTable

        Raises:
            EnvironmentCheckError: If the file is missing or malformed
        """
        if not os.path.isfile(path):
            raise EnvironmentCheckError(f"Reference table not found: {path}")

        with open(path, newline='', encoding='utf-8') as handle:
            rows = list(csv.reader(handle, delimiter='\t'))

        if len(rows) < 2:
            raise EnvironmentCheckError(f"Reference table has no data rows: {path}")

        records = []
        for position, row in enumerate(rows[1:], start=1):
            if not any(cell.strip() for cell in row):
                continue
            records.append(cls._parse_row(path, position, row))

        return cls(records)

    @classmethod
    def _parse_row(cls, path: str, position: int, row: List[str]) -> SubjectRecord:
        if len(row) < len(cls.COLUMNS):
            raise EnvironmentCheckError(
                f"{path}: row {position} has {len(row)} columns, "
                f"expected at least {len(cls.COLUMNS)}")
        try:
            index = int(row[0].strip(), 10)
        except ValueError:
            raise EnvironmentCheckError(
                f"{path}: row {position} has a non-numeric index '{row[0]}'")
        if index != position:
            raise EnvironmentCheckError(
                f"{path}: row {position} carries index {index}; "
                f"rows must be sequential from 1")
        try:
            colors = GalleryColors(
                white=ImageColor.getrgb(row[3].strip())[:3],
                border=ImageColor.getrgb(row[4].strip())[:3],
                black=ImageColor.getrgb(row[5].strip())[:3],
            )
        except ValueError as e:
            raise EnvironmentCheckError(f"{path}: row {position}: {e}")

        return SubjectRecord(
            index=index,
            canonical_name=row[1].rstrip(),
            palette_tag=row[2].strip(),
            gallery_colors=colors,
        )

    def lookup(self, index: int) -> SubjectRecord:
        """Return the record for a 1-based subject index."""
        try:
            return self._records[index]
        except KeyError:
            raise ValidationError(f"No reference entry for index {index:03d}")

    def __contains__(self, index: int) -> bool:
        return index in self._records

    def __len__(self) -> int:
        return len(self._order)

    def __iter__(self):
        return (self._records[i] for i in self._order)


def sanitize(text: str) -> Tuple[str, bool]:
    """
    Replace characters outside the allow-list with a placeholder.

    Returns:
        Tuple of (sanitized text, whether any substitution occurred)
    """
    changed = False
    out = []
    for ch in text:
        if ch in ALLOWED_CHARS:
            out.append(ch)
        else:
            out.append(PLACEHOLDER)
            changed = True
    return ''.join(out), changed


def strip_filename(raw_filename: str) -> str:
    """Reduce a path to the bare identity string, e.g. `006-Dragon-1`."""
    name = os.path.basename(raw_filename)
    base, ext = os.path.splitext(name)
    if ext.lower() == '.png':
        name = base
    for suffix in CORRECTED_SUFFIXES:
        if name.endswith(suffix):
            name = name[:-len(suffix)]
            break
    return name


def resolve(raw_filename: str,
            containing_directory: str,
            reference_table: ReferenceTable) -> InputIdentity:
    """
    Parse and validate the identity encoded in a photo filename.

    Args:
        raw_filename: Filename or path of the photo
        containing_directory: Directory holding the photo; its name must
            equal the zero-padded index
        reference_table: Authoritative subject table

    Returns:
        InputIdentity

    Raises:
        ValidationError: On the first violated rule
    """
    img_name, sanitized = sanitize(strip_filename(raw_filename))
    if sanitized:
        print(f"Warning: Unexpected characters replaced in '{img_name}'")

    parts = img_name.split('-')
    if len(parts) != 3:
        raise ValidationError(
            f"Invalid filename '{img_name}'. Expected 'index-Name-frame', "
            f"got {len(parts)} part(s).")
    index, name, frame = parts

    if not _INDEX_RE.fullmatch(index) or not 1 <= int(index, 10) <= SUBJECT_COUNT:
        raise ValidationError(
            f"Invalid number '{index}'. Expected between 001 and "
            f"{SUBJECT_COUNT:03d}, with leading zeroes.")

    directory = os.path.basename(os.path.normpath(containing_directory))
    if directory != index:
        raise ValidationError(
            f"Number '{index}' does not match its directory '{directory}'.")

    if not name[:1].isupper() or len(name) < 3:
        raise ValidationError(
            f"Invalid name '{name}'. Expected TitleCase and at least 3 characters.")

    expected = reference_table.lookup(int(index, 10)).canonical_name
    if name.rstrip() != expected:
        raise ValidationError(
            f"Name mismatch for {index}: got '{name}', expected '{expected}'.")

    if not _FRAME_RE.fullmatch(frame):
        raise ValidationError(
            f"Invalid sprite number '{frame}'. Expected 0, 1, or 2 (rest, pose, attack).")

    return InputIdentity(index=index, name=name.rstrip(), frame=int(frame), sanitized=sanitized)
