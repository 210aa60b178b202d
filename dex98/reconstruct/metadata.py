"""
Archival Encoding Module

Writes canonical bitmaps as optimized PNG rasters and plain PBM
archival copies, and attaches title and copyright metadata.

PNG metadata is inserted at the chunk level after optimization so
that the compressed image data is never re-encoded.
"""

import os
import shutil
import struct
import subprocess
import tempfile
import zlib
import numpy as np
from PIL import Image, TiffImagePlugin
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple

from ..config import Attribution, ArtPaths
from ..errors import ArchiveWriteError
from ..identity import InputIdentity
from ..tools import run_tool
from .extractor import CanonicalBitmap


PNG_SIGNATURE = b'\x89PNG\r\n\x1a\n'

# Intended print resolution: 909 x 1000 pixels per metre (about 23 x 25 dpi)
PRINT_PHYS = (909, 1000)
# The same resolution for readers of EXIF: 23 x 25 dots per inch
PRINT_DPI = (23, 25)

# EXIF tags: XResolution, YResolution, ResolutionUnit (2 = inches)
EXIF_X_RESOLUTION = 282
EXIF_Y_RESOLUTION = 283
EXIF_RESOLUTION_UNIT = 296

PBM_LINE_LIMIT = 70


# ---------------------------------------------------------------------------
# PNG chunks
# ---------------------------------------------------------------------------

def iter_chunks(data: bytes) -> Iterator[Tuple[bytes, bytes]]:
    """Yield (type, body) for every chunk of a PNG byte string."""
    if not data.startswith(PNG_SIGNATURE):
        raise ValueError("Not a PNG stream")
    pos = len(PNG_SIGNATURE)
    while pos < len(data):
        if pos + 8 > len(data):
            raise ValueError("Truncated PNG chunk header")
        length, ctype = struct.unpack('>I4s', data[pos:pos + 8])
        body = data[pos + 8:pos + 8 + length]
        if len(body) != length:
            raise ValueError(f"Truncated PNG chunk {ctype!r}")
        yield ctype, body
        pos += 12 + length


def make_chunk(ctype: bytes, body: bytes) -> bytes:
    crc = zlib.crc32(ctype + body) & 0xffffffff
    return struct.pack('>I', len(body)) + ctype + body + struct.pack('>I', crc)


def text_chunk(keyword: str, text: str) -> bytes:
    """tEXt chunk, or iTXt when the text is not Latin-1 (e.g. `Nidoran♀`)."""
    key = keyword.encode('latin-1')
    try:
        return make_chunk(b'tEXt', key + b'\0' + text.encode('latin-1'))
    except UnicodeEncodeError:
        # keyword, compression flag, method, language, translated keyword
        body = key + b'\0' + b'\0\0' + b'\0' + b'\0' + text.encode('utf-8')
        return make_chunk(b'iTXt', body)


def phys_chunk(ppu_x: int, ppu_y: int) -> bytes:
    return make_chunk(b'pHYs', struct.pack('>IIB', ppu_x, ppu_y, 1))


def exif_resolution_chunk(dpi_x: int, dpi_y: int) -> bytes:
    """eXIf chunk carrying an X/Y resolution in dots per inch."""
    exif = Image.Exif()
    exif[EXIF_X_RESOLUTION] = TiffImagePlugin.IFDRational(dpi_x, 1)
    exif[EXIF_Y_RESOLUTION] = TiffImagePlugin.IFDRational(dpi_y, 1)
    exif[EXIF_RESOLUTION_UNIT] = 2
    data = exif.tobytes()
    # PNG stores the bare TIFF structure without the JPEG APP1 prefix
    if data.startswith(b'Exif\x00\x00'):
        data = data[6:]
    return make_chunk(b'eXIf', data)


def insert_png_chunks(path: str,
                      text: Dict[str, str],
                      phys: Optional[Tuple[int, int]] = None,
                      dpi: Optional[Tuple[int, int]] = None):
    """
    Add text and resolution chunks to a PNG file in place.

    Existing chunks with the same keywords are replaced, as is any existing
    pHYs when `phys` is given and any eXIf when `dpi` is given. IDAT data
    is copied untouched.

    Raises:
        ArchiveWriteError: If the file cannot be read or written
    """
    try:
        with open(path, 'rb') as handle:
            data = handle.read()
    except OSError as e:
        raise ArchiveWriteError(f"Could not read {path} to add metadata: {e}")

    keywords = {k.encode('latin-1') for k in text}
    extra = b''.join(text_chunk(k, v) for k, v in text.items())
    if dpi is not None:
        extra = exif_resolution_chunk(*dpi) + extra
    if phys is not None:
        extra = phys_chunk(*phys) + extra

    out = [PNG_SIGNATURE]
    inserted = False
    for ctype, body in iter_chunks(data):
        if ctype in (b'tEXt', b'iTXt', b'zTXt') and body.split(b'\0', 1)[0] in keywords:
            continue
        if ctype == b'pHYs' and phys is not None:
            continue
        if ctype == b'eXIf' and dpi is not None:
            continue
        if ctype == b'IDAT' and not inserted:
            out.append(extra)
            inserted = True
        out.append(make_chunk(ctype, body))

    try:
        with open(path, 'wb') as handle:
            handle.write(b''.join(out))
    except OSError as e:
        raise ArchiveWriteError(f"Could not write metadata to {path}: {e}")


def read_png_text(path: str) -> Dict[str, str]:
    """Return tEXt / iTXt keyword values of a PNG file."""
    with open(path, 'rb') as handle:
        data = handle.read()
    result = {}
    for ctype, body in iter_chunks(data):
        if ctype == b'tEXt':
            key, value = body.split(b'\0', 1)
            result[key.decode('latin-1')] = value.decode('latin-1')
        elif ctype == b'iTXt':
            key, rest = body.split(b'\0', 1)
            # skip flag, method, language and translated keyword
            _, _, rest = rest[2:].split(b'\0', 2)
            result[key.decode('latin-1')] = rest.decode('utf-8')
    return result


def chunk_types(path: str) -> List[bytes]:
    with open(path, 'rb') as handle:
        return [ctype for ctype, _ in iter_chunks(handle.read())]


# ---------------------------------------------------------------------------
# Lossless optimization
# ---------------------------------------------------------------------------

class PngOptimizer:
    """
    Shrink a PNG by trying a fixed grid of encoder settings.

    Every candidate is written to a scratch file, checked to decode to
    the same pixels, and kept only if it is strictly smaller than the
    best so far. The file on disk therefore never grows.
    """

    PILLOW_LEVELS = range(0, 10)
    OXIPNG_LEVELS = range(0, 13)

    def __init__(self,
                 use_oxipng: bool = True,
                 zopfli_iterations: int = 200,
                 verbose: bool = False):
        self.use_oxipng = use_oxipng
        self.zopfli_iterations = zopfli_iterations
        self.verbose = verbose

    def oxipng_sweep(self) -> List[List[str]]:
        """
        Argument lists for each oxipng pass.

        No-reduction passes first (keeping 8 bpp grayscale), then passes
        that may also change bit depth and color type.
        """
        passes = []
        for reductions in (['--nx'], []):
            for level in self.OXIPNG_LEVELS:
                passes.append(reductions + ['--zc', str(level), '--filters', '0-9'])
            passes.append(reductions + ['--zopfli', '--zi', str(self.zopfli_iterations),
                                        '--filters', '0-9'])
        return passes

    def optimize(self, path: str) -> int:
        """
        Optimize a PNG file in place.

        Args:
            path: PNG file to optimize

        Returns:
            Final file size in bytes

        Raises:
            ArchiveWriteError: If the optimized file cannot be written back
        """
        with Image.open(path) as img:
            img.load()
            original = img.copy()
        reference = np.array(original)
        best_size = os.path.getsize(path)
        start_size = best_size

        with tempfile.TemporaryDirectory(prefix='dex98_png_') as workdir:
            best = os.path.join(workdir, 'best.png')
            shutil.copyfile(path, best)
            candidate = os.path.join(workdir, 'candidate.png')

            for level in self.PILLOW_LEVELS:
                # Pillow writes no ancillary chunks unless asked to
                original.save(candidate, format='PNG', compress_level=level)
                best_size = self._keep_if_smaller(candidate, best, best_size, reference)
            original.save(candidate, format='PNG', optimize=True)
            best_size = self._keep_if_smaller(candidate, best, best_size, reference)

            if self.use_oxipng:
                for args in self.oxipng_sweep():
                    cmd = ['oxipng', '-q', '--strip', 'all', *args,
                           '--out', candidate, best]
                    try:
                        run_tool(cmd)
                    except (subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
                        print(f"Warning: [Optimizer] oxipng pass {' '.join(args)} failed: {e}")
                        continue
                    best_size = self._keep_if_smaller(candidate, best, best_size, reference)

            try:
                shutil.copyfile(best, path)
            except OSError as e:
                raise ArchiveWriteError(f"Could not write optimized PNG {path}: {e}")

        if self.verbose:
            print(f"[Optimizer] {os.path.basename(path)}: {start_size} -> {best_size} bytes")
        return best_size

    @staticmethod
    def _keep_if_smaller(candidate: str, best: str, best_size: int,
                         reference: np.ndarray) -> int:
        if not os.path.isfile(candidate):
            return best_size
        size = os.path.getsize(candidate)
        if size >= best_size:
            return best_size
        try:
            with Image.open(candidate) as img:
                img.load()
                pixels = np.array(img.convert(_mode_for(reference)))
        except OSError:
            return best_size
        if not np.array_equal(pixels, reference):
            return best_size
        shutil.copyfile(candidate, best)
        return size


def _mode_for(reference: np.ndarray) -> str:
    if reference.ndim == 2:
        return 'L'
    return {3: 'RGB', 4: 'RGBA'}[reference.shape[2]]


# ---------------------------------------------------------------------------
# Portable bitmap
# ---------------------------------------------------------------------------

@dataclass
class PbmDocument:
    """A decoded PBM file: the grid plus every comment line found."""
    bitmap: CanonicalBitmap
    comments: List[str]


def format_pbm(bitmap: CanonicalBitmap,
               comment: str,
               trailer: Optional[List[str]] = None) -> str:
    """
    Render a plain (P1) PBM.

    The comment must be a single line. Trailer lines are appended after
    the pixel data as `#` comments.
    """
    if '\n' in comment or '\r' in comment:
        raise ValueError("PBM comment must be a single line")
    width, height = bitmap.size
    lines = ['P1', f"# {comment}", f"{width} {height}"]
    for row in bitmap.pixels:
        line = ' '.join('1' if px else '0' for px in row)
        # Keep within the format's 70 character line limit
        while len(line) > PBM_LINE_LIMIT:
            cut = line.rfind(' ', 0, PBM_LINE_LIMIT + 1)
            lines.append(line[:cut])
            line = line[cut + 1:]
        lines.append(line)
    text = '\n'.join(lines) + '\n'
    for extra in trailer or []:
        text += f"\n# {extra}"
    return text


def parse_pbm(text: str) -> PbmDocument:
    """
    Decode a plain (P1) PBM.

    Comments may appear anywhere, and anything after the last pixel is
    ignored so appended attribution text cannot corrupt the grid.
    """
    comments = []
    tokens = []
    pixels = []
    need = None
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == '#':
            end = text.find('\n', i)
            end = n if end == -1 else end
            comments.append(text[i + 1:end].strip())
            i = end
            continue
        if ch.isspace():
            i += 1
            continue
        if need is None:
            j = i
            while j < n and not text[j].isspace() and text[j] != '#':
                j += 1
            tokens.append(text[i:j])
            i = j
            if len(tokens) == 3:
                if tokens[0] != 'P1':
                    raise ValueError(f"Not a plain PBM (magic {tokens[0]!r})")
                width, height = int(tokens[1]), int(tokens[2])
                need = width * height
            continue
        if len(pixels) < need:
            if ch not in '01':
                raise ValueError(f"Unexpected PBM pixel value {ch!r}")
            pixels.append(ch == '1')
        # Characters after the grid are trailing text; keep scanning for comments
        i += 1

    if need is None or len(pixels) < need:
        raise ValueError("Truncated PBM data")
    grid = np.array(pixels, dtype=bool).reshape(height, width)
    return PbmDocument(bitmap=CanonicalBitmap(grid), comments=comments)


def write_pbm(path: str, bitmap: CanonicalBitmap, comment: str,
              trailer: Optional[List[str]] = None):
    try:
        with open(path, 'w', encoding='utf-8', newline='\n') as handle:
            handle.write(format_pbm(bitmap, comment, trailer))
    except OSError as e:
        raise ArchiveWriteError(f"Could not write PBM {path}: {e}")


def read_pbm(path: str) -> PbmDocument:
    with open(path, encoding='utf-8') as handle:
        return parse_pbm(handle.read())


# ---------------------------------------------------------------------------
# Encoder
# ---------------------------------------------------------------------------

@dataclass
class PersistedPaths:
    raster_path: str
    archival_path: str
    gallery_path: Optional[str] = None


class ArchivalEncoder:
    """
    Persist a canonical bitmap (and its gallery art) with attribution.
    """

    def __init__(self,
                 paths: ArtPaths,
                 optimizer: Optional[PngOptimizer] = None):
        self.paths = paths
        self.optimizer = optimizer or PngOptimizer()

    def save_png(self, image: Image.Image, path: str,
                 text: Dict[str, str],
                 phys: Optional[Tuple[int, int]] = None,
                 dpi: Optional[Tuple[int, int]] = None) -> str:
        """Write, optimize and tag one PNG."""
        try:
            image.save(path, format='PNG')
        except OSError as e:
            raise ArchiveWriteError(f"Could not write {path}: {e}")
        self.optimizer.optimize(path)
        insert_png_chunks(path, text, phys, dpi)
        return path

    def persist(self,
                bitmap: CanonicalBitmap,
                identity: InputIdentity,
                attribution: Attribution,
                gallery_art: Optional[Image.Image] = None) -> PersistedPaths:
        """
        Write the raster, archival and (optionally) gallery copies.

        Args:
            bitmap: Canonical bitmap
            identity: Validated identity of the source photo
            attribution: Project and license text
            gallery_art: Rendered gallery image for the same frame

        Returns:
            PersistedPaths

        Raises:
            ArchiveWriteError: If any output or its metadata cannot be written
        """
        self.paths.makedirs()
        tags = {
            'Title': attribution.title_for(identity.title),
            'Copyright': attribution.copyright_tag,
        }

        raster_path = self.save_png(bitmap.to_image(), self.paths.raster(identity.stem),
                                    tags, phys=PRINT_PHYS, dpi=PRINT_DPI)

        gallery_path = None
        if gallery_art is not None:
            gallery_path = self.save_png(gallery_art, self.paths.gallery(identity.stem), tags)

        archival_path = self.paths.archival(identity.stem)
        write_pbm(archival_path, bitmap,
                  attribution.comment_for(identity.title),
                  trailer=[attribution.copyright, attribution.license_url])

        return PersistedPaths(raster_path=raster_path,
                              archival_path=archival_path,
                              gallery_path=gallery_path)
