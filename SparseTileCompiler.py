from dataclasses import dataclass, field

from Canonicalizer import Canonicalizer
from SequenceRegistry import SequenceRegistry
from RowSegmenter import RowSegmenter, SegmenterConfig
from FakeTileSynthesizer import FakeTileSynthesizer, SynthesisPolicy, SyntheticTile
from BankAllocator import BankAllocator, CrossBankPolicy, BANK_SIZE
from CompilerErrors import CatalogInconsistencyError, UnknownTileReferenceError, SizeLimitExceeded
from TileModel import (TileMap, TileCatalog, TileDefinition, CanonicalTile, Segment, SegmentKind, Block, Sequence,
                       Bank, catalog_ceiling, default_tileset_size, bytes_per_tile, EMPTY_TILE, VERTICAL, HORIZONTAL, BOTH)

from typing import Callable, Tuple, List, Dict, Optional

import logging as log

DEFAULT_MIN_SEQUENCE_LENGTH = 4
DEFAULT_MIN_MATCH_LENGTH = 2
DEFAULT_MIN_BACKGROUND_LENGTH = 2

# Order of the mirrored copies following a tile in the tile graphics area
MIRROR_ORDER = (VERTICAL, HORIZONTAL, BOTH)


@dataclass
class CompilerConfig:
    max_tileset_size: Optional[int] = None      # Longest segment, defaults to 16 tiles (8 for wide tiles)
    min_sequence_length: int = DEFAULT_MIN_SEQUENCE_LENGTH
    min_match_length: int = DEFAULT_MIN_MATCH_LENGTH
    min_background_length: int = DEFAULT_MIN_BACKGROUND_LENGTH
    immediate_graphics: bool = False            # Blocks hold graphics bytes instead of tile indices
    bank_capacities: List[int] = field(default_factory=lambda: [BANK_SIZE])
    cross_bank_policy: CrossBankPolicy = CrossBankPolicy.ALLOW
    row_bank: Optional[int] = None
    synthesis_policy: SynthesisPolicy = SynthesisPolicy.ON_OVERFLOW


def graphics_source(tile: CanonicalTile, representatives: Dict[int, CanonicalTile]) -> CanonicalTile:
    """
    Canonical tile whose graphics draw tile. A fake tile is drawn with its representative.

    :param tile:            Canonical or synthetic tile
    :param representatives: Canonical tile of the representative of each synthetic tile id
    :return:                Canonical tile
    """
    representative = representatives.get(tile.id)
    if representative is None:
        return tile
    return CanonicalTile(representative.id, representative.transform ^ tile.transform)


@dataclass(frozen=True)
class CompiledTileMap:
    width: int
    height: int
    tile_width: int
    tile_height: int
    prefix: str
    rows: Tuple[Tuple[Segment, ...], ...]
    banks: Tuple[Bank, ...]
    mapping: Dict[int, CanonicalTile]
    definitions: Dict[int, TileDefinition]
    synthetic_tiles: Tuple[SyntheticTile, ...]
    tile_indices: Dict[int, int]
    immediate_graphics: bool
    gfx: Optional[Callable[..., bytes]] = None
    overlay_rows: Tuple[Tuple[Segment, ...], ...] = ()     # Tiles drawn over an underlay, empty if the catalog has none
    mirror_indices: Dict[CanonicalTile, int] = field(default_factory=dict)

    @property
    def blocks(self) -> List[Block]:
        return [block for bank in self.banks for block in bank.blocks]

    @property
    def sequences(self) -> List[Sequence]:
        return [block for block in self.blocks if isinstance(block, Sequence)]

    @property
    def representatives(self) -> Dict[int, CanonicalTile]:
        return {synthetic.id: self.mapping[synthetic.representative] for synthetic in self.synthetic_tiles}

    def layers(self, y: int) -> List[Segment]:
        """
        Segments of row y in drawing order: the underlay layer, then the tiles drawn over it
        """
        segments = list(self.rows[y])
        if self.overlay_rows:
            segments.extend(self.overlay_rows[y])
        return segments

    def decode(self) -> List[List[CanonicalTile]]:
        """
        Rebuild the canonical tile grid from the compiled rows

        :return: Canonical tiles for each row
        """
        grid = [[tile for segment in segments for tile in segment.tiles()] for segments in self.rows]
        for y, segments in enumerate(self.overlay_rows):
            top = [tile for segment in segments for tile in segment.tiles()]
            grid[y] = [t if t.id != EMPTY_TILE else b for b, t in zip(grid[y], top)]
        return grid

    def tile_index(self, tile: CanonicalTile) -> int:
        source = graphics_source(tile, self.representatives)
        if source.transform.is_identity:
            return self.tile_indices[source.id]
        return self.mirror_indices[source]

    def tile_bytes(self, tile: CanonicalTile) -> List[int]:
        """
        Tile indices of one tile (one per encoding byte)
        """
        index = self.tile_index(tile)
        step = bytes_per_tile(self.tile_width)
        return [index + i * step for i in range(self.definitions[tile.id].encoding_bytes // step)]

    def block_bytes(self, block: Block) -> List[int]:
        """
        Payload of a block

        In indirect mode a block holds tile indices. In immediate graphics mode
        it holds the graphics of its tiles, interleaved row by row.

        :param block: Block to encode
        :return:      Payload bytes
        """
        if not self.immediate_graphics:
            return [b for tile in block.tiles for b in self.tile_bytes(tile)]
        data = []
        graphics = [self.tile_graphics(tile) for tile in block.tiles]
        for y in range(self.tile_height):
            for tile, gfx in zip(block.tiles, graphics):
                width = self.definitions[tile.id].encoding_bytes
                data.extend(gfx[y * width:(y + 1) * width])
        return data

    def tile_graphics(self, tile: CanonicalTile) -> bytes:
        """
        Packed graphics of a tile, mirrored as the tile is
        """
        source = graphics_source(tile, self.representatives)
        if source.transform.is_identity:
            return self.gfx(source.id)
        return self.gfx(source.id, source.transform)

    def block_width(self, block: Block) -> int:
        """
        Width of a block in encoding bytes
        """
        return sum(self.definitions[tile.id].encoding_bytes for tile in block.tiles)


class SparseTileCompiler:
    """
    Compiles a tile map and its catalog into banked sparse tiling tables.

    One instance performs one compilation run and owns all of its state.
    """

    def __init__(self, tilemap: TileMap, catalog: TileCatalog, config: Optional[CompilerConfig] = None, gfx: Optional[Callable[..., bytes]] = None):
        self.tilemap = tilemap
        self.catalog = catalog
        self.config = config or CompilerConfig()
        self.gfx = gfx
        self.ceiling = catalog_ceiling(catalog.tile_width)
        if self.config.immediate_graphics and gfx is None:
            raise ValueError('Immediate graphics mode requires a tile graphics producer')

    def check_references(self):
        for y in range(self.tilemap.height):
            for x, tile_id in enumerate(self.tilemap.row(y)):
                if tile_id != EMPTY_TILE and tile_id not in self.catalog:
                    raise UnknownTileReferenceError(tile_id, x, y)

    def segmenter_config(self) -> SegmenterConfig:
        max_tileset_size = self.config.max_tileset_size or default_tileset_size(self.catalog.tile_width)
        if max_tileset_size > self.ceiling:
            log.warning(f'Tileset maximum size {max_tileset_size} is above the hardware limit of {self.ceiling} distinct tiles')
        return SegmenterConfig(max_tileset_size=max_tileset_size,
                               min_sequence_length=self.config.min_sequence_length,
                               min_match_length=self.config.min_match_length,
                               min_background_length=self.config.min_background_length,
                               max_distinct=self.ceiling)

    def register_declared_sequences(self, registry: SequenceRegistry, canonicalizer: Canonicalizer, segmenter: RowSegmenter) -> List[Block]:
        """
        Register the sequences declared in the catalog, ahead of the map scan

        :return: Registered sequences
        """
        blocks = []
        for declaration in self.catalog.sequences:
            for tile_id in declaration.tiles:
                if tile_id not in self.catalog:
                    raise CatalogInconsistencyError(f'Sequence {declaration.name} refers to undeclared tile {tile_id}')
            tiles = [canonicalizer[tile_id] for tile_id in declaration.tiles]
            keys = {segmenter.key(tile) for tile in tiles}
            if len(keys) != 1:
                raise CatalogInconsistencyError(f'Sequence {declaration.name} mixes tiles of different mode, palette, mirroring or bank')
            mode, palette, _, holeydma, bank = keys.pop()
            if declaration.bank is not None:
                bank = declaration.bank
            blocks.append(registry.register(tiles, declaration.name, mode=mode, palette=palette, holeydma=holeydma, bank_hint=bank))
        return blocks

    def attach_fills(self, rows: List[List[Segment]], segmenter: RowSegmenter, max_length: int) -> List[Block]:
        """
        Give every background fill a block to draw from. Fills longer than
        max_length are split into several entries.

        :param rows:       Segments of each row, updated in-place
        :param segmenter:  Segmenter of rows
        :param max_length: Longest fill drawn by one entry
        :return:           Fill blocks, one per fill tile
        """
        longest: Dict[CanonicalTile, int] = {}
        for segments in rows:
            for segment in segments:
                # The undefined empty tile is not drawn
                if segment.kind == SegmentKind.BACKGROUND and segmenter.key(segment.fill) is not None:
                    longest[segment.fill] = max(longest.get(segment.fill, 0), min(segment.length, max_length))
        blocks: Dict[CanonicalTile, Block] = {}
        for fill, length in longest.items():
            attributes = segmenter.block_attributes(fill)
            if attributes['bank_hint'] is None:
                attributes['bank_hint'] = self.config.row_bank
            blocks[fill] = Block(name=f'{self.catalog.prefix}_fill_{fill.id}', tiles=(fill,) * length, **attributes)
        for segments in rows:
            resolved = []
            for segment in segments:
                block = blocks.get(segment.fill) if segment.kind == SegmentKind.BACKGROUND else None
                if block is None:
                    resolved.append(segment)
                    continue
                for x in range(segment.start, segment.end, max_length):
                    block.refcount += 1
                    resolved.append(Segment(segment.row, x, min(segment.end - x, max_length), SegmentKind.BACKGROUND, fill=segment.fill, block=block))
            segments[:] = resolved
        return list(blocks.values())

    def assign_tile_indices(self,
                            canonicalizer: Canonicalizer,
                            definitions: Dict[int, TileDefinition],
                            synthetic_tiles: List[SyntheticTile],
                            blocks: List[Block]) -> Tuple[Dict[int, int], Dict[CanonicalTile, int]]:
        """
        Tile index of every canonical tile in the tile graphics area, in catalog order.
        Each mirrored copy of a tile used by a block follows the tile, vertical mirror first.

        :param canonicalizer:   Mirror folding of the catalog
        :param definitions:     Tile definition per canonical id
        :param synthetic_tiles: Fake tiles, sharing the index of their representative
        :param blocks:          Allocated blocks
        :return:                Tile index per canonical id, and per mirrored tile
        """
        representatives = {synthetic.id: canonicalizer.mapping[synthetic.representative] for synthetic in synthetic_tiles}
        used = {graphics_source(tile, representatives) for block in blocks for tile in block.tiles}
        used.update(representatives.values())
        indices = {}
        mirror_indices = {}
        index = 0
        for canonical_id in sorted({tile.id for tile in canonicalizer.mapping.values()}):
            width = definitions[canonical_id].encoding_bytes
            indices[canonical_id] = index
            index += width
            for transform in MIRROR_ORDER:
                tile = CanonicalTile(canonical_id, transform)
                if tile in used:
                    mirror_indices[tile] = index
                    index += width
        for synthetic_id, representative in representatives.items():
            indices[synthetic_id] = indices[representative.id] if representative.transform.is_identity else mirror_indices[representative]
        return indices, mirror_indices

    def block_size(self, block: Block, definitions: Dict[int, TileDefinition]) -> int:
        width = sum(definitions[tile.id].encoding_bytes for tile in block.tiles)
        return width * self.catalog.tile_height if self.config.immediate_graphics else width

    def compile(self) -> CompiledTileMap:
        """
        Run the compilation

        :return: Compiled tile map
        """
        self.check_references()
        canonicalizer = Canonicalizer(self.catalog)
        definitions = {tile.id: canonicalizer.definition(tile.id) for tile in canonicalizer.mapping.values()}
        registry = SequenceRegistry(anchor_length=max(1, min(self.config.min_match_length, self.config.min_sequence_length)))
        config = self.segmenter_config()
        segmenter = RowSegmenter(registry,
                                 definitions,
                                 canonicalizer[EMPTY_TILE],
                                 config,
                                 prefix=self.catalog.prefix,
                                 default_bank=self.catalog.bank)
        segmenters = [segmenter]
        overlay = None
        if canonicalizer.layered:
            # Tiles drawn over an underlay form a second layer, sharing the registry
            overlay = RowSegmenter(registry,
                                   definitions,
                                   CanonicalTile(EMPTY_TILE),
                                   config,
                                   prefix=f'{self.catalog.prefix}_overlay',
                                   default_bank=self.catalog.bank)
            segmenters.append(overlay)
        synthesizer = FakeTileSynthesizer(self.catalog.fake_tiles,
                                          canonicalizer.mapping,
                                          definitions,
                                          self.ceiling,
                                          segmenter.units,
                                          policy=self.config.synthesis_policy,
                                          gfx=self.gfx,
                                          first_id=self.catalog.max_id + 1)
        declared = self.register_declared_sequences(registry, canonicalizer, segmenter)
        # Row-major scan - registration order decides future matches
        rows = []
        overlay_rows = []
        for y in range(self.tilemap.height):
            raw = self.tilemap.row(y)
            cells = [canonicalizer[tile_id] for tile_id in raw]
            top = None
            if overlay is not None:
                underlays = [canonicalizer.underlay(tile_id) for tile_id in raw]
                top = [cell if below is not None else CanonicalTile(EMPTY_TILE) for cell, below in zip(cells, underlays)]
                cells = [below if below is not None else cell for cell, below in zip(cells, underlays)]
            cells = synthesizer.apply_row(y, cells)
            rows.append(segmenter.segment_row(y, cells))
            if overlay is not None:
                top = synthesizer.apply_row(y, top, overlay.units)
                overlay_rows.append(overlay.segment_row(y, top))
        fills = self.attach_fills(rows, segmenter, min(config.max_tileset_size, self.ceiling))
        blocks = declared + [block for s in segmenters for block in s.blocks] + fills
        for block in blocks:
            if len({tile.id for tile in block.tiles}) > self.ceiling:
                raise SizeLimitExceeded(f'Block {block.name} holds more than {self.ceiling} distinct tiles')
            block.size = self.block_size(block, definitions)
        references = sum(1 for segments in rows + overlay_rows for s in segments if s.kind == SegmentKind.TILED_REF)
        created = sum(len(s.blocks) - len(s.immediate_blocks) for s in segmenters)
        immediates = sum(len(s.immediate_blocks) for s in segmenters)
        log.info(f'{len(registry)} sequences ({registry.total_tiles} tiles), {references - created} sequence references reused, '
                 f'{immediates} immediate blocks, {len(fills)} fill blocks')
        allocator = BankAllocator(self.config.bank_capacities, self.config.cross_bank_policy, self.config.row_bank)
        # Both layers of a row share the row's home bank
        layers = [rows[y] + (overlay_rows[y] if overlay is not None else []) for y in range(len(rows))]
        allocation = allocator.run(blocks, layers, keep=declared)
        allocated = [block for bank in allocation.banks for block in bank.blocks]
        tile_indices, mirror_indices = self.assign_tile_indices(canonicalizer, definitions, synthesizer.synthetic_tiles, allocated)
        return CompiledTileMap(width=self.tilemap.width,
                               height=self.tilemap.height,
                               tile_width=self.catalog.tile_width,
                               tile_height=self.catalog.tile_height,
                               prefix=self.catalog.prefix,
                               rows=tuple(tuple(segments[:len(rows[y])]) for y, segments in enumerate(allocation.rows)),
                               banks=tuple(allocation.banks),
                               mapping=dict(canonicalizer.mapping),
                               definitions=definitions,
                               synthetic_tiles=tuple(synthesizer.synthetic_tiles),
                               tile_indices=tile_indices,
                               immediate_graphics=self.config.immediate_graphics,
                               gfx=self.gfx,
                               overlay_rows=tuple(tuple(segments[len(rows[y]):]) for y, segments in enumerate(allocation.rows)) if overlay is not None else (),
                               mirror_indices=mirror_indices)


def compile_tilemap(tilemap: TileMap, catalog: TileCatalog, config: Optional[CompilerConfig] = None, gfx: Optional[Callable[..., bytes]] = None) -> CompiledTileMap:
    return SparseTileCompiler(tilemap, catalog, config, gfx).compile()
