import pytest
from PIL import Image

from CompilerErrors import TileGraphicsError
from TileGraphics import TileGraphics
from TileModel import TileCatalog, TileDefinition, HORIZONTAL, VERTICAL

RED = (255, 0, 0, 255)
GREEN = (0, 255, 0, 255)
BLUE = (0, 0, 255, 255)
WHITE = (255, 255, 255, 255)


def sheet(*fills):
    """
    16x8 tile sheet holding two 8x8 tiles
    """
    image = Image.new('RGBA', (16, 8), (0, 0, 0, 0))
    for i, fill in enumerate(fills):
        image.paste(fill, (i * 8, 0, i * 8 + 8, 8))
    return image


def catalog(*definitions):
    catalog = TileCatalog()
    for tile in definitions:
        catalog.add(tile)
    return catalog


def test_160a_single_color():
    gfx = TileGraphics(sheet(RED, (0, 0, 0, 255)), catalog(TileDefinition(1, 'red'), TileDefinition(2, 'black')))
    assert gfx(1) == b'\x55' * 8
    assert gfx(2) == b'\x00' * 8


def test_palette_colors_are_used():
    gfx = TileGraphics(sheet(RED), catalog(TileDefinition(1, 'red')), {1: [(0, 255, 0), (255, 0, 0)]})
    assert gfx(1) == b'\xaa' * 8


def test_too_many_colors():
    image = sheet(RED)
    image.paste(GREEN, (0, 0, 2, 8))
    image.paste(BLUE, (2, 0, 4, 8))
    image.paste(WHITE, (4, 0, 6, 8))
    with pytest.raises(TileGraphicsError, match='more than 3 colors'):
        TileGraphics(image, catalog(TileDefinition(1, 'rainbow')))(1)


def test_320a_one_bit_per_pixel():
    gfx = TileGraphics(sheet(RED), catalog(TileDefinition(1, 'red', mode='320A')))
    assert gfx(1) == b'\xff' * 8


def test_160b_takes_two_bytes_per_row():
    gfx = TileGraphics(sheet(RED), catalog(TileDefinition(1, 'red', mode='160B')))
    assert len(gfx(1)) == 16


def test_mirror_flips_source_pixels():
    image = Image.new('RGBA', (16, 8), (0, 0, 0, 0))
    # Red top-left quarter
    image.paste(RED, (0, 0, 4, 4))
    tiles = catalog(TileDefinition(1, 'corner'),
                    TileDefinition(7, 'corner_h', mirror_of=1, mirror=HORIZONTAL),
                    TileDefinition(8, 'corner_v', mirror_of=1, mirror=VERTICAL),
                    TileDefinition(9, 'corner_hv', mirror_of=7, mirror=VERTICAL))
    gfx = TileGraphics(image, tiles)
    assert gfx(1) == b'\x50' * 4 + b'\x00' * 4
    assert gfx(7) == b'\x05' * 4 + b'\x00' * 4
    assert gfx(8) == b'\x00' * 4 + b'\x50' * 4
    assert gfx(9) == b'\x00' * 4 + b'\x05' * 4
    assert gfx(1, HORIZONTAL) == gfx(7)
    assert gfx(7, HORIZONTAL) == gfx(1)


def test_tile_outside_sheet():
    with pytest.raises(TileGraphicsError, match='outside'):
        TileGraphics(sheet(RED), catalog(TileDefinition(5, 'lost')))(5)
