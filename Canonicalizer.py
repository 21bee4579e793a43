from collections import defaultdict

from CompilerErrors import CatalogInconsistencyError
from TileModel import TileCatalog, TileDefinition, CanonicalTile, Transform, IDENTITY, EMPTY_TILE

from typing import Tuple, List, Dict, Optional

import logging as log


class Canonicalizer:
    """
    Folds mirrored / aliased tiles of a catalog into canonical tiles

    Tiles linked through mirror_of form a group. The lowest raw id of a group
    is the canonical tile, and every member carries the transform that maps
    the canonical tile onto it.
    """

    def __init__(self, catalog: TileCatalog):
        self.catalog = catalog
        self.mapping: Dict[int, CanonicalTile] = {}
        self.groups: Dict[int, List[int]] = defaultdict(list)
        if catalog.background_id != EMPTY_TILE and catalog.background_id not in catalog:
            raise CatalogInconsistencyError(f'Background tile {catalog.background} is not declared')
        for tile in catalog.tiles.values():
            if tile.underlay is not None and tile.underlay not in catalog:
                raise CatalogInconsistencyError(f'Tile {tile.name} is drawn over undeclared tile {tile.underlay}')
        self._canonicalize()

    @staticmethod
    def _attributes_match(a: TileDefinition, b: TileDefinition) -> bool:
        return a.mode == b.mode and a.palette == b.palette and a.holeydma == b.holeydma

    def _effective_link(self, tile: TileDefinition) -> Optional[int]:
        """
        Return the mirror source of a tile, or None if the tile is not linked

        :param tile: Tile definition
        :return:     Raw id of mirror source
        """
        if tile.mirror_of is None:
            return None
        source = self.catalog.tiles.get(tile.mirror_of)
        if source is None:
            raise CatalogInconsistencyError(f'Tile {tile.name} mirrors undeclared tile {tile.mirror_of}')
        if not self._attributes_match(tile, source):
            log.warning(f'Tile {tile.name} mirrors {source.name} but mode, palette or holeydma differ - kept as distinct tile')
            return None
        return source.id

    def _root(self, tile_id: int) -> Tuple[int, Transform]:
        """
        Follow mirror links up to the group root

        :param tile_id: Raw tile id
        :return:        Root id and transform of tile relative to root
        """
        transform = IDENTITY
        visited = [tile_id]
        current = tile_id
        while True:
            tile = self.catalog.tiles[current]
            source = self._effective_link(tile)
            if source is None:
                return current, transform
            transform = transform ^ tile.mirror
            if source in visited:
                chain = ' -> '.join(self.catalog.tiles[i].name for i in visited + [source])
                raise CatalogInconsistencyError(f'Mirror cycle: {chain}')
            visited.append(source)
            current = source

    def _canonicalize(self):
        roots = {}
        for tile_id in sorted(self.catalog.tiles):
            roots[tile_id] = self._root(tile_id)
            self.groups[roots[tile_id][0]].append(tile_id)
        # Lowest raw id of each group becomes the canonical tile
        canonical_of_root = {root: (min(members), roots[min(members)][1]) for root, members in self.groups.items()}
        for tile_id, (root, transform) in roots.items():
            canonical_id, canonical_transform = canonical_of_root[root]
            self.mapping[tile_id] = CanonicalTile(canonical_id, transform ^ canonical_transform)
        self.groups = {canonical_of_root[root][0]: members for root, members in self.groups.items()}
        log.info(f'{len(self.catalog.tiles)} catalog tiles folded into {self.catalog_size} canonical tiles')

    @property
    def catalog_size(self) -> int:
        return len(self.groups)

    def group(self, canonical_id: int) -> List[int]:
        return self.groups[canonical_id]

    def definition(self, canonical_id: int) -> TileDefinition:
        return self.catalog.tiles[canonical_id]

    def __getitem__(self, tile_id: int) -> CanonicalTile:
        """
        Canonical tile for a raw map cell. The empty cell maps to the background tile.
        """
        if tile_id == EMPTY_TILE:
            background = self.catalog.background_id
            return self.mapping[background] if background != EMPTY_TILE else CanonicalTile(EMPTY_TILE)
        return self.mapping[tile_id]

    @property
    def layered(self) -> bool:
        """
        True if some tile of the catalog is drawn over an underlay tile
        """
        return any(tile.underlay is not None for tile in self.catalog.tiles.values())

    def underlay(self, tile_id: int) -> Optional[CanonicalTile]:
        """
        Canonical tile drawn underneath a raw map cell. A mirrored tile mirrors its underlay too.

        :param tile_id: Raw tile id
        :return:        Canonical underlay tile, or None if the cell has no underlay
        """
        if tile_id == EMPTY_TILE:
            return None
        tile = self.catalog.tiles[tile_id]
        if tile.underlay is None:
            return None
        below = self.mapping[tile.underlay]
        if tile.mirror_of is not None:
            return CanonicalTile(below.id, below.transform ^ tile.mirror)
        return below


def canonicalize(catalog: TileCatalog) -> Dict[int, CanonicalTile]:
    return dict(Canonicalizer(catalog).mapping)
