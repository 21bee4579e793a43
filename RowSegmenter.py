from dataclasses import dataclass

from SequenceRegistry import SequenceRegistry
from TileModel import TileDefinition, CanonicalTile, Segment, SegmentKind, Block, ImmediateBlock

from typing import Tuple, List, Dict, Optional, Sequence as SequenceType

import logging as log


@dataclass
class SegmenterConfig:
    max_tileset_size: int = 16          # Longest run emitted as one segment
    min_sequence_length: int = 4        # Shortest unmatched run registered as a new sequence
    min_match_length: int = 2           # Shortest run looked up in the registry
    min_background_length: int = 2     # Shortest run of background tiles compressed to a fill
    max_distinct: Optional[int] = None  # Hardware ceiling on distinct tiles per segment


def compatibility_key(definitions: Dict[int, TileDefinition], cell: CanonicalTile, default_bank: Optional[int] = None) -> Optional[tuple]:
    """
    Attributes that must be shared by all tiles of one segment.

    :param definitions:  Tile definition per canonical tile id
    :param cell:         Canonical map cell
    :param default_bank: Bank hint of tiles without their own
    :return:             Hashable key, or None for the undefined empty tile
    """
    tile = definitions.get(cell.id)
    if tile is None:
        return None
    bank = tile.bank if tile.bank is not None else default_bank
    return tile.mode, tile.palette, cell.transform, tile.holeydma, bank


class RowSegmenter:
    """
    Splits map rows into Background, TiledRef and Immediate segments.

    Each row is scanned greedily from left to right. At every column the rules
    are tried in RULE_PRIORITY order and the first one producing a segment
    wins; scanning then resumes after that segment. Emitted segments are never
    revisited.
    """
    RULE_PRIORITY = (SegmentKind.BACKGROUND, SegmentKind.TILED_REF, SegmentKind.IMMEDIATE)

    def __init__(self,
                 registry: SequenceRegistry,
                 definitions: Dict[int, TileDefinition],
                 background: CanonicalTile,
                 config: SegmenterConfig,
                 prefix: str = 'tilemap',
                 default_bank: Optional[int] = None):
        self.registry = registry
        self.definitions = definitions
        self.background = background
        self.config = config
        self.prefix = prefix
        self.default_bank = default_bank
        self.blocks: List[Block] = []       # Blocks created by this segmenter, in creation order
        self._immediates: Dict[tuple, ImmediateBlock] = {}
        self._rules = {SegmentKind.BACKGROUND: self.rule_background,
                       SegmentKind.TILED_REF: self.rule_tiled_ref,
                       SegmentKind.IMMEDIATE: self.rule_immediate}
        self._row = 0
        self._row_blocks = 0

    @property
    def immediate_blocks(self) -> List[ImmediateBlock]:
        return list(self._immediates.values())

    def key(self, cell: CanonicalTile) -> Optional[tuple]:
        return compatibility_key(self.definitions, cell, self.default_bank)

    def _background_run(self, cells: SequenceType[CanonicalTile], x: int) -> int:
        length = 0
        while x + length < len(cells) and cells[x + length] == self.background:
            length += 1
        return length

    def _starts_background(self, cells: SequenceType[CanonicalTile], x: int) -> bool:
        """
        True if a Background segment would be emitted at column x
        """
        length = self._background_run(cells, x)
        if length == 0:
            return False
        # The undefined empty tile has no graphics, so it can only be a fill
        return length >= self.config.min_background_length or self.key(cells[x]) is None

    def candidate_run(self, cells: SequenceType[CanonicalTile], x: int, limit_distinct: bool = True) -> Tuple[CanonicalTile, ...]:
        """
        Longest run starting at x that may form one Immediate / TiledRef segment

        :param cells:          Canonical tiles of row
        :param x:              Start column
        :param limit_distinct: If true, also stop before exceeding max_distinct distinct tiles
        :return:               Tiles of run
        """
        key = self.key(cells[x])
        assert(key is not None)
        max_distinct = self.config.max_distinct if limit_distinct else None
        distinct = {cells[x].id}
        end = x + 1
        while end < len(cells) and end - x < self.config.max_tileset_size:
            if self._starts_background(cells, end) or self.key(cells[end]) != key:
                break
            if max_distinct is not None and len(distinct | {cells[end].id}) > max_distinct:
                break
            distinct.add(cells[end].id)
            end += 1
        return tuple(cells[x:end])

    def units(self, cells: SequenceType[CanonicalTile]) -> List[Tuple[int, int]]:
        """
        Column ranges of the generation units of a row, before any registry lookup

        :param cells: Canonical tiles of row
        :return:      List of (start, end) ranges
        """
        units = []
        x = 0
        while x < len(cells):
            if self._starts_background(cells, x):
                x += self._background_run(cells, x)
                continue
            end = x + len(self.candidate_run(cells, x, limit_distinct=False))
            units.append((x, end))
            x = end
        return units

    def block_attributes(self, tile: CanonicalTile) -> dict:
        mode, palette, _, holeydma, bank = self.key(tile)
        return dict(mode=mode, palette=palette, holeydma=holeydma, bank_hint=bank)

    def _next_block_name(self) -> str:
        name = f'{self.prefix}_{self._row}_{self._row_blocks}'
        self._row_blocks += 1
        return name

    def rule_background(self, y: int, cells: SequenceType[CanonicalTile], x: int) -> Optional[Segment]:
        if not self._starts_background(cells, x):
            return None
        return Segment(y, x, self._background_run(cells, x), SegmentKind.BACKGROUND, fill=self.background)

    def rule_tiled_ref(self, y: int, cells: SequenceType[CanonicalTile], x: int) -> Optional[Segment]:
        candidate = self.candidate_run(cells, x)
        match = self.registry.find(candidate, self.config.min_match_length)
        # A partial match must be long enough to be worth a reference of its own
        if match is not None and (match.length == len(candidate) or match.length >= self.config.min_sequence_length):
            self.registry.reference(match)
            return Segment(y, x, match.length, SegmentKind.TILED_REF, block=match.sequence, offset=match.offset)
        if len(candidate) >= self.config.min_sequence_length:
            sequence = self.registry.register(candidate, self._next_block_name(), **self.block_attributes(candidate[0]))
            sequence.refcount += 1
            self.blocks.append(sequence)
            return Segment(y, x, len(candidate), SegmentKind.TILED_REF, block=sequence)
        return None

    def rule_immediate(self, y: int, cells: SequenceType[CanonicalTile], x: int) -> Segment:
        candidate = self.candidate_run(cells, x)
        block = self._immediates.get(candidate)
        if block is None:
            block = ImmediateBlock(name=self._next_block_name(), tiles=candidate, **self.block_attributes(candidate[0]))
            self._immediates[candidate] = block
            self.blocks.append(block)
        block.refcount += 1
        return Segment(y, x, len(candidate), SegmentKind.IMMEDIATE, block=block)

    def next_segment(self, y: int, cells: SequenceType[CanonicalTile], x: int) -> Segment:
        for kind in self.RULE_PRIORITY:
            segment = self._rules[kind](y, cells, x)
            if segment is not None:
                return segment
        raise AssertionError(f'No rule matched at ({x},{y})')

    def segment_row(self, y: int, cells: SequenceType[CanonicalTile]) -> List[Segment]:
        """
        Partition one row into segments

        :param y:     Row index
        :param cells: Canonical tiles of row
        :return:      Segments covering the row from left to right
        """
        self._row = y
        self._row_blocks = 0
        segments = []
        x = 0
        while x < len(cells):
            segment = self.next_segment(y, cells, x)
            segments.append(segment)
            x = segment.end
        log.debug(f'Row {y}: ' + ' '.join(f'{s.kind.value}[{s.start}:{s.end}]' for s in segments))
        return segments
