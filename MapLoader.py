import dataclasses
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path

import yaml
from PIL import Image

from CompilerErrors import MapParseError, CatalogInconsistencyError
from TileModel import (TileMap, TileCatalog, TileDefinition, SequenceDeclaration, FakeTileGroup, Transform,
                       GRAPHICS_MODES, IDENTITY)
from TileGraphics import TileGraphics, RGB

from typing import Tuple, List, Dict, Optional

import logging as log


@dataclass
class TmxMap:
    tilemap: TileMap
    tile_width: int = 8
    tile_height: int = 8


@dataclass
class CatalogSource:
    catalog: TileCatalog
    image_path: Path
    colors: Dict[int, List[RGB]] = field(default_factory=dict)

    def graphics(self) -> TileGraphics:
        return TileGraphics(Image.open(self.image_path), self.catalog, self.colors)


def load_tmx(path: Path) -> TmxMap:
    """
    Read the first tile layer of a Tiled map (CSV encoded)

    :param path: Path to .tmx file
    :return:     Map and tile size
    """
    try:
        root = ET.parse(path).getroot()
    except (ET.ParseError, OSError) as e:
        raise MapParseError(f'Cannot read {path}: {e}')
    if root.tag != 'map':
        raise MapParseError(f'{path}: root element is <{root.tag}>, expected <map>')
    try:
        tile_width = int(root.get('tilewidth', 8))
        tile_height = int(root.get('tileheight', 8))
        layer = root.find('layer')
        if layer is None:
            raise MapParseError(f'{path}: no tile layer')
        width = int(layer.get('width'))
        height = int(layer.get('height'))
        data = layer.find('data')
        if data is None or data.get('encoding', 'csv') != 'csv':
            raise MapParseError(f'{path}: layer data must be CSV encoded')
        csv = ''.join((data.text or '').split())
        cells = tuple(int(v) for v in csv.split(',') if v)
    except (TypeError, ValueError) as e:
        raise MapParseError(f'{path}: {e}')
    if len(cells) != width * height:
        raise MapParseError(f'{path}: bad data format, {len(cells)} cells for a {width}x{height} layer')
    log.info(f'Tile map {path}: {width}x{height} tiles of {tile_width}x{tile_height} pixels')
    return TmxMap(TileMap(width, height, cells), tile_width, tile_height)


def _names_to_ids(names: List[str], cells: Dict[str, List[int]], context: str) -> Tuple[int, ...]:
    ids = []
    for name in names:
        if name not in cells:
            raise CatalogInconsistencyError(f'{context} refers to unknown tile {name}')
        ids.extend(cells[name])
    return tuple(ids)


def load_catalog(path: Path, tile_width: int = 8, tile_height: int = 8, prefix: str = 'tilemap') -> CatalogSource:
    """
    Read a tile catalog from a YAML sprite sheet description

    Only the first sprite sheet is used. Each sprite covering several map
    cells yields one tile definition per cell.

    :param path:        Path to YAML file
    :param tile_width:  Map tile width in pixels
    :param tile_height: Map tile height in pixels
    :param prefix:      Default block name prefix
    :return:            Catalog, tile sheet image path and tile palettes
    """
    path = Path(path)
    try:
        with open(path, 'rt') as f:
            config = yaml.safe_load(f)
    except (yaml.YAMLError, OSError) as e:
        raise CatalogInconsistencyError(f'Cannot read catalog {path}: {e}')
    sheets = config.get('sprite_sheets') if isinstance(config, dict) else None
    if not sheets:
        raise CatalogInconsistencyError(f'{path}: no sprite sheet defined')
    if len(sheets) != 1:
        log.warning('Only the first sprite sheet (tiles) will be used')
    sheet = sheets[0]
    image_path = path.parent / sheet['image']
    with Image.open(image_path) as image:
        image_width, image_height = image.size
    columns = image_width // tile_width
    rows = image_height // tile_height
    palettes = {p['name']: [tuple(c) for c in p['colors']] for p in config.get('palettes') or []}
    default_mode = sheet.get('mode', '160A')
    sheet_mirror = Transform.from_mirror(sheet.get('mirror'))

    catalog = TileCatalog(tile_width=tile_width,
                          tile_height=tile_height,
                          bank=sheet.get('bank'),
                          prefix=sheet.get('prefix', prefix))
    colors: Dict[int, List[RGB]] = {}
    cells: Dict[str, List[int]] = {}
    grids: Dict[str, List[List[int]]] = {}
    pending_aliases = []
    underlays: List[Tuple[str, str]] = []
    for sprite in sheet.get('sprites') or []:
        name = sprite['name']
        mode = sprite.get('mode', default_mode)
        if mode not in GRAPHICS_MODES:
            raise CatalogInconsistencyError(f'Tile {name}: unknown graphics mode {mode}')
        left = sprite['left']
        top = sprite['top']
        if left % tile_width or top % tile_height:
            raise CatalogInconsistencyError(f'Tile {name} is not aligned on the {tile_width}x{tile_height} grid')
        nb_x = sprite.get('width', tile_width) // tile_width
        nb_y = sprite.get('height', tile_height) // tile_height
        x = left // tile_width
        y = top // tile_height
        grid = [[1 + x + i + (y + j) * columns for i in range(nb_x)] for j in range(nb_y)]
        grids[name] = grid
        cells[name] = [tile_id for row in grid for tile_id in row]
        if sprite.get('background') is not None:
            underlays.append((name, sprite['background']))
        mirror = Transform.from_mirror(sprite.get('mirror'))
        for j in range(nb_y):
            for i in range(nb_x):
                tile = TileDefinition(id=grid[j][i],
                                      name=name if nb_x * nb_y == 1 else f'{name}_{j}_{i}',
                                      width=tile_width,
                                      height=tile_height,
                                      mode=mode,
                                      palette=sprite.get('palette_number', 0),
                                      holeydma=sprite.get('holeydma', True),
                                      mirror=mirror,
                                      bank=sprite.get('bank'),
                                      generate=sprite.get('generate', True))
                if sprite.get('alias') is not None:
                    pending_aliases.append((tile, sprite['alias'], i, j, nb_x, nb_y))
                else:
                    catalog.add(tile)
                if sprite.get('palette') in palettes:
                    colors[tile.id] = palettes[sprite['palette']]
    # Aliases may refer to sprites declared after them
    for tile, alias, i, j, nb_x, nb_y in pending_aliases:
        if alias not in grids:
            raise CatalogInconsistencyError(f'Tile {tile.name}: bad alias {alias}')
        source = grids[alias]
        si = nb_x - 1 - i if tile.mirror.H else i
        sj = nb_y - 1 - j if tile.mirror.V else j
        try:
            source_id = source[sj][si]
        except IndexError:
            raise CatalogInconsistencyError(f'Tile {tile.name}: alias {alias} is smaller than the tile')
        catalog.add(dataclasses.replace(tile, mirror_of=source_id))
    # Every cell of a layered sprite is drawn over the first cell of its background sprite
    for name, background in underlays:
        underlay = _names_to_ids([background], cells, f'Tile {name} background')[0]
        for tile_id in cells[name]:
            catalog.tiles[tile_id] = dataclasses.replace(catalog.tiles[tile_id], underlay=underlay)
    # Sheet-wide mirroring adds a mirrored copy of every tile at the mirrored sheet position
    if sheet_mirror != IDENTITY:
        for tile in list(catalog.tiles.values()):
            if tile.mirror_of is not None:
                continue
            x = (tile.id - 1) % columns
            y = (tile.id - 1) // columns
            mx = columns - 1 - x if sheet_mirror.H else x
            my = rows - 1 - y if sheet_mirror.V else y
            mirrored_id = 1 + mx + my * columns
            catalog.add(dataclasses.replace(tile, id=mirrored_id, name=f'{tile.name}_mirror', mirror_of=tile.id, mirror=sheet_mirror))
    if sheet.get('background') is not None:
        catalog.background = _names_to_ids([sheet['background']], cells, 'Background')[0]
    for s in config.get('sequences') or []:
        catalog.sequences.append(SequenceDeclaration(name=s['name'],
                                                     tiles=_names_to_ids(s['tiles'], cells, f'Sequence {s["name"]}'),
                                                     bank=s.get('bank')))
    for g in config.get('fake_tiles') or []:
        representative = g.get('representative')
        catalog.fake_tiles.append(FakeTileGroup(name=g['name'],
                                                members=_names_to_ids(g['tiles'], cells, f'Fake tile {g["name"]}'),
                                                representative=_names_to_ids([representative], cells, f'Fake tile {g["name"]}')[0] if representative else None,
                                                tolerance=g.get('tolerance')))
    log.info(f'Tile catalog {path}: {len(catalog.tiles)} tiles')
    return CatalogSource(catalog, image_path, colors)
