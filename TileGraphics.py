from PIL import Image

from CompilerErrors import TileGraphicsError
from TileModel import TileCatalog, TileDefinition, Transform, IDENTITY

from typing import Tuple, List, Dict, Optional, Sequence

import logging as log

RGB = Tuple[int, int, int]

MAX_COLORS = {'160A': 3, '160B': 12, '320A': 1, '320B': 3, '320C': 4, '320D': 1}
# 160B colour index to 4-bit palette/colour value (colour 0 of each palette is transparent)
COLOR_160B = (0, 1, 2, 3, 5, 6, 7, 9, 10, 11, 13, 14, 15)


class TileGraphics:
    """
    Produces the packed byte pattern of catalog tiles from a tile sheet image.

    Tile ids follow the tile sheet layout: id = 1 + x + y * columns.
    Bytes are stored row by row, top to bottom.
    A mirrored or aliased tile is drawn from the pixels of its source, flipped.
    """

    def __init__(self, image: Image.Image, catalog: TileCatalog, colors: Optional[Dict[int, Sequence[RGB]]] = None):
        """
        :param image:   Tile sheet image
        :param catalog: Tile catalog
        :param colors:  Optional palette colours per tile id
        """
        self.image = image.convert('RGBA')
        self.catalog = catalog
        self.colors = colors or {}
        self.columns = self.image.width // catalog.tile_width
        self._cache: Dict[Tuple[int, Transform], bytes] = {}

    def __call__(self, tile_id: int, transform: Transform = IDENTITY) -> bytes:
        """
        :param tile_id:   Raw tile id
        :param transform: Extra mirroring applied on top of the tile's own
        :return:          Packed tile bytes
        """
        key = (tile_id, transform)
        if key not in self._cache:
            source, mirror = self.source(tile_id)
            tile = self.catalog[source]
            self._cache[key] = self.pack(tile, self.flip(self.pixels(tile), mirror ^ transform))
        return self._cache[key]

    def source(self, tile_id: int) -> Tuple[int, Transform]:
        """
        Follow mirror links up to the tile holding the pixels

        :param tile_id: Raw tile id
        :return:        Source tile id and mirroring relative to it
        """
        transform = IDENTITY
        visited = {tile_id}
        tile = self.catalog[tile_id]
        while tile.mirror_of is not None:
            transform = transform ^ tile.mirror
            if tile.mirror_of in visited:
                raise TileGraphicsError(f'Tile {tile.name} mirrors itself')
            visited.add(tile.mirror_of)
            tile = self.catalog[tile.mirror_of]
        return tile.id, transform

    def position(self, tile_id: int) -> Tuple[int, int]:
        """
        :param tile_id: Raw tile id
        :return:        Pixel position of top-left corner of tile in sheet
        """
        x = (tile_id - 1) % self.columns
        y = (tile_id - 1) // self.columns
        return x * self.catalog.tile_width, y * self.catalog.tile_height

    @staticmethod
    def is_background(color: Tuple[int, int, int, int]) -> bool:
        return color[3] == 0 or color[0:3] == (0, 0, 0)

    def color_index(self, tile: TileDefinition, palette: List[RGB], color: Tuple[int, int, int, int], px: int, py: int) -> int:
        """
        Find colour index of a pixel, assigning free palette entries to new colours

        :param tile:    Tile being read
        :param palette: Palette colours of tile, updated in-place
        :param color:   RGBA pixel colour
        :param px:      x position of pixel
        :param py:      y position of pixel
        :return:        0 for background, else 1-based palette index
        """
        if self.is_background(color):
            return 0
        rgb = color[0:3]
        if rgb in palette:
            return palette.index(rgb) + 1
        if (0, 0, 0) in palette:
            c = palette.index((0, 0, 0))
            palette[c] = rgb
            return c + 1
        raise TileGraphicsError(f'Tile {tile.name} has more than {len(palette)} colors (unexpected color {rgb} at ({px},{py}))')

    def pixels(self, tile: TileDefinition) -> List[List[int]]:
        """
        Colour indices of a tile, one row per pixel line

        :param tile: Tile definition
        :return:     0 for background, else 1-based palette index
        """
        mode = tile.mode
        pixel_width = 1 if mode.startswith('320') else 2
        max_colors = MAX_COLORS[mode]
        palette = list(self.colors.get(tile.id, []))[0:max_colors]
        palette += [(0, 0, 0)] * (max_colors - len(palette))
        start_x, start_y = self.position(tile.id)
        if start_x + tile.width > self.image.width or start_y + tile.height > self.image.height:
            raise TileGraphicsError(f'Tile {tile.name} lies outside of tile sheet')
        rows = []
        for y in range(tile.height):
            row = []
            for x in range(tile.width // pixel_width):
                px = start_x + x * pixel_width
                py = start_y + y
                color = self.image.getpixel((px, py))
                c = self.color_index(tile, palette, color, px, py)
                if mode == '320C' and x % 2 == 0 and c != 0:
                    # Two neighbouring pixels share one colour in 320C mode
                    right = self.image.getpixel((px + 1, py))
                    if not self.is_background(right) and right != color:
                        raise TileGraphicsError(f'Tile {tile.name}: two consecutive pixels have a different color in 320C mode at ({px},{py})')
                row.append(c)
            rows.append(row)
        return rows

    @staticmethod
    def flip(rows: List[List[int]], transform: Transform) -> List[List[int]]:
        if transform.H:
            rows = [row[::-1] for row in rows]
        if transform.V:
            rows = rows[::-1]
        return rows

    def pack(self, tile: TileDefinition, rows: List[List[int]]) -> bytes:
        """
        Pack colour indices into the byte format of the tile's graphics mode

        :param tile: Tile definition
        :param rows: Colour indices, one row per pixel line
        :return:     Packed tile bytes
        """
        mode = tile.mode
        data = []
        for row in rows:
            current_byte = 0
            current_pixels = 0
            for c in row:
                if mode in ('160A', '320A', '320D'):
                    bits = 2 if mode == '160A' else 1
                    current_byte = (current_byte << bits) | c
                    pixels_per_byte = 8 // bits
                elif mode == '160B':
                    v = COLOR_160B[c]
                    current_byte = (current_byte << 2) | ((v & 1) << 4) | ((v & 2) << 4) | ((v & 4) >> 2) | ((v & 8) >> 2)
                    pixels_per_byte = 2
                elif mode == '320B':
                    current_byte = (current_byte << 1) | (c & 1) | ((c & 2) << 3)
                    pixels_per_byte = 4
                else:
                    # 320C: one data bit per pixel, colour shared by pixel pairs
                    if c != 0:
                        current_byte |= 0x80 >> current_pixels
                        current_byte |= ((c - 1) << 2) if current_pixels < 2 else (c - 1)
                    pixels_per_byte = 4
                current_pixels += 1
                if current_pixels == pixels_per_byte:
                    data.append(current_byte & 0xFF)
                    current_byte = 0
                    current_pixels = 0
        log.debug(f'Tile {tile.name}: {len(data)} bytes')
        return bytes(data)
