from PIL import Image, ImageDraw, ImageFont
import platform

from .effects import RasterOps
from .identity import DEFAULT_GALLERY_COLORS


ART_SCALE = 3
ART_BORDER = 3


def gallery_tile_size(grid_width, grid_height):
    """Pixel size of rendered gallery art for a grid of the given size."""
    return (grid_width * ART_SCALE + 2 * ART_BORDER,
            grid_height * ART_SCALE + 2 * ART_BORDER)


def render_gallery_art(bitmap, colors=DEFAULT_GALLERY_COLORS):
    """
    Render a canonical bitmap as decorative gallery art.

    The 30x32 grid is sampled up to 90x96, black and white are swapped for
    the subject's art colors and a border is added.

    Args:
        bitmap: CanonicalBitmap
        colors: GalleryColors for the subject

    Returns:
        RGB PIL Image (96x102 with the default border)
    """
    width, height = bitmap.size
    scaled = bitmap.to_image().resize(
        (width * ART_SCALE, height * ART_SCALE), Image.Resampling.NEAREST)
    art = RasterOps.level_colors(scaled, black=colors.black, white=colors.white)
    return RasterOps.add_border(art, ART_BORDER, colors.border)


class GalleryLayout:
    """Tile gallery art into master sheets."""

    def __init__(self, tile_size, columns=15, colors=DEFAULT_GALLERY_COLORS):
        self.tile_width, self.tile_height = tile_size
        self.columns = columns
        self.colors = colors

    def placeholder_tile(self):
        """Blank tile used for reserved or missing slots."""
        tile = Image.new('RGB', (self.tile_width - 2 * ART_BORDER,
                                 self.tile_height - 2 * ART_BORDER), self.colors.white)
        return RasterOps.add_border(tile, ART_BORDER, self.colors.border)

    @property
    def sheet_width(self):
        return self.columns * self.tile_width

    def tile(self, tiles):
        """
        Arrange tiles left-to-right, top-to-bottom.

        Args:
            tiles (list): RGB PIL Images, all of the tile size

        Returns:
            PIL.Image: The tiled sheet
        """
        rows = max(1, -(-len(tiles) // self.columns))
        sheet = Image.new('RGB', (self.sheet_width, rows * self.tile_height),
                          self.colors.border)
        for i, tile in enumerate(tiles):
            if tile.size != (self.tile_width, self.tile_height):
                raise ValueError(
                    f"Tile {i} is {tile.size[0]}x{tile.size[1]}, expected "
                    f"{self.tile_width}x{self.tile_height}")
            row, col = divmod(i, self.columns)
            sheet.paste(tile, (col * self.tile_width, row * self.tile_height))
        return sheet

    def footer(self, left, right, logo=None, label=''):
        """
        Build the footer row: one tile at each end and a centered logo.

        When no logo image is given, the label text is drawn instead.
        """
        canvas = Image.new('RGB', (self.sheet_width, self.tile_height), self.colors.white)
        canvas.paste(left, (0, 0))
        canvas.paste(right, (self.sheet_width - self.tile_width, 0))

        if logo is not None:
            logo = logo.convert('RGBA')
            max_w = self.sheet_width - 2 * self.tile_width
            if logo.width > max_w or logo.height > self.tile_height:
                logo.thumbnail((max_w, self.tile_height), Image.Resampling.LANCZOS)
            x = (self.sheet_width - logo.width) // 2
            y = (self.tile_height - logo.height) // 2
            canvas.paste(logo, (x, y), logo)
        elif label:
            self._draw_label(canvas, label)

        return canvas

    def stack(self, sheet, footer):
        result = Image.new('RGB', (sheet.width, sheet.height + footer.height),
                           self.colors.white)
        result.paste(sheet, (0, 0))
        result.paste(footer, (0, sheet.height))
        return result

    def _draw_label(self, canvas, text):
        draw = ImageDraw.Draw(canvas)
        font_size = max(10, self.tile_height // 4)
        font = None

        system = platform.system()
        try:
            if system == "Darwin":
                font = ImageFont.truetype(
                    "/System/Library/Fonts/Helvetica.ttc", font_size)
            elif system == "Windows":
                font = ImageFont.truetype("arial.ttf", font_size)
            else:
                font = ImageFont.truetype("DejaVuSans.ttf", font_size)
        except OSError:
            font = ImageFont.load_default()

        bbox = draw.textbbox((0, 0), text, font=font)
        x = (canvas.width - (bbox[2] - bbox[0])) // 2 - bbox[0]
        y = (canvas.height - (bbox[3] - bbox[1])) // 2 - bbox[1]
        draw.text((x, y), text, fill=self.colors.black, font=font)
