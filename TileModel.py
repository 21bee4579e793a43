from dataclasses import dataclass, field
from enum import Enum

from CompilerErrors import CatalogInconsistencyError, InconsistentDimensionsError

from typing import Tuple, List, Dict, Optional, Sequence as SequenceType

EMPTY_TILE = 0

GRAPHICS_MODES = ('160A', '160B', '320A', '320B', '320C', '320D')
# Modes storing a tile column in a single byte
SINGLE_BYTE_MODES = ('160A', '320A', '320D')

MAX_TILESET_SIZE_SINGLE_BYTE = 31
MAX_TILESET_SIZE_DOUBLE_BYTE = 16
# Default segment length limits, below the hardware ceilings
DEFAULT_TILESET_SIZE_NARROW = 16
DEFAULT_TILESET_SIZE_WIDE = 8


def bytes_per_tile(tile_width: int) -> int:
    return 1 if tile_width <= 8 else 2


def mode_factor(mode: str) -> int:
    if mode not in GRAPHICS_MODES:
        raise CatalogInconsistencyError(f'Unknown graphics mode {mode}')
    return 1 if mode in SINGLE_BYTE_MODES else 2


def catalog_ceiling(tile_width: int) -> int:
    """
    Hardware limit on the number of distinct tiles in one generation unit

    :param tile_width: Tile width in pixels
    :return:           16 for tiles encoded on two bytes, 31 otherwise
    """
    return MAX_TILESET_SIZE_DOUBLE_BYTE if tile_width > 8 else MAX_TILESET_SIZE_SINGLE_BYTE


def default_tileset_size(tile_width: int) -> int:
    return DEFAULT_TILESET_SIZE_NARROW if tile_width <= 8 else DEFAULT_TILESET_SIZE_WIDE


@dataclass(frozen=True)
class Transform:
    H: bool = False     # Horizontal mirror
    V: bool = False     # Vertical mirror

    def __xor__(self, other: 'Transform') -> 'Transform':
        return Transform(H=self.H != other.H, V=self.V != other.V)

    @property
    def is_identity(self) -> bool:
        return not (self.H or self.V)

    @staticmethod
    def from_mirror(mirror: Optional[str]) -> 'Transform':
        if mirror is None:
            return IDENTITY
        try:
            return {'vertical': VERTICAL, 'horizontal': HORIZONTAL, 'both': BOTH}[mirror.lower()]
        except KeyError:
            raise CatalogInconsistencyError(f'Unknown mirror axis {mirror}')


IDENTITY = Transform()
HORIZONTAL = Transform(H=True)
VERTICAL = Transform(V=True)
BOTH = Transform(H=True, V=True)


@dataclass(frozen=True)
class TileDefinition:
    id: int
    name: str
    width: int = 8
    height: int = 8
    mode: str = '160A'
    palette: int = 0
    holeydma: bool = True
    mirror_of: Optional[int] = None     # Raw id of the tile this one mirrors (or aliases)
    mirror: Transform = IDENTITY        # Mirror axis relative to mirror_of
    bank: Optional[int] = None
    generate: bool = True
    underlay: Optional[int] = None      # Raw id of a tile drawn underneath this one

    @property
    def encoding_bytes(self) -> int:
        return bytes_per_tile(self.width) * mode_factor(self.mode)


@dataclass(frozen=True)
class SequenceDeclaration:
    name: str
    tiles: Tuple[int, ...]
    bank: Optional[int] = None


@dataclass(frozen=True)
class FakeTileGroup:
    name: str
    members: Tuple[int, ...]
    representative: Optional[int] = None
    tolerance: Optional[int] = None     # Max number of bytes a member may differ from representative


@dataclass
class TileCatalog:
    tile_width: int = 8
    tile_height: int = 8
    tiles: Dict[int, TileDefinition] = field(default_factory=dict)
    background: Optional[int] = None
    bank: Optional[int] = None
    prefix: str = 'tilemap'
    sequences: List[SequenceDeclaration] = field(default_factory=list)
    fake_tiles: List[FakeTileGroup] = field(default_factory=list)

    def add(self, tile: TileDefinition):
        if tile.id == EMPTY_TILE:
            raise CatalogInconsistencyError(f'Tile {tile.name} uses reserved id {EMPTY_TILE}')
        if tile.id in self.tiles:
            raise CatalogInconsistencyError(f'Tile {tile.name} redefines id {tile.id} ({self.tiles[tile.id].name})')
        self.tiles[tile.id] = tile

    def __contains__(self, tile_id: int) -> bool:
        return tile_id in self.tiles

    def __getitem__(self, tile_id: int) -> TileDefinition:
        return self.tiles[tile_id]

    def by_name(self, name: str) -> TileDefinition:
        for tile in self.tiles.values():
            if tile.name == name:
                return tile
        raise CatalogInconsistencyError(f'Unknown tile name {name}')

    @property
    def background_id(self) -> int:
        return self.background if self.background is not None else EMPTY_TILE

    @property
    def max_id(self) -> int:
        return max(self.tiles, default=EMPTY_TILE)


@dataclass(frozen=True)
class TileMap:
    width: int
    height: int
    cells: Tuple[int, ...]

    def __post_init__(self):
        if len(self.cells) != self.width * self.height:
            raise InconsistentDimensionsError(f'Map declares {self.width}x{self.height} tiles but holds {len(self.cells)} cells')

    @classmethod
    def from_rows(cls, width: int, height: int, rows: SequenceType[SequenceType[int]]) -> 'TileMap':
        if len(rows) != height:
            raise InconsistentDimensionsError(f'Map declares {height} rows but holds {len(rows)}')
        for y, row in enumerate(rows):
            if len(row) != width:
                raise InconsistentDimensionsError(f'Row {y} holds {len(row)} tiles, map width is {width}')
        return cls(width, height, tuple(tile for row in rows for tile in row))

    def row(self, y: int) -> Tuple[int, ...]:
        return self.cells[y * self.width:(y + 1) * self.width]


@dataclass(frozen=True)
class CanonicalTile:
    id: int
    transform: Transform = IDENTITY


class SegmentKind(Enum):
    BACKGROUND = 'background'
    TILED_REF = 'tiledref'
    IMMEDIATE = 'immediate'


@dataclass(eq=False)
class Block:
    name: str
    tiles: Tuple[CanonicalTile, ...]
    mode: str = '160A'
    palette: int = 0
    holeydma: bool = True
    bank_hint: Optional[int] = None
    refcount: int = 0
    bank: Optional[int] = None
    size: int = 0

    @property
    def transform(self) -> Transform:
        return self.tiles[0].transform if self.tiles else IDENTITY


@dataclass(eq=False)
class Sequence(Block):
    id: int = 0


@dataclass(eq=False)
class ImmediateBlock(Block):
    pass


@dataclass(frozen=True)
class Segment:
    row: int
    start: int
    length: int
    kind: SegmentKind
    fill: Optional[CanonicalTile] = None    # Background fill tile
    block: Optional[Block] = None
    offset: int = 0

    @property
    def end(self) -> int:
        return self.start + self.length

    def tiles(self) -> List[CanonicalTile]:
        """
        Canonical tiles covered by this segment
        """
        if self.kind == SegmentKind.BACKGROUND:
            return [self.fill] * self.length
        return list(self.block.tiles[self.offset:self.offset + self.length])


@dataclass
class Bank:
    index: int
    capacity: int
    used: int = 0
    blocks: List[Block] = field(default_factory=list)

    @property
    def free(self) -> int:
        return self.capacity - self.used

    def fits(self, size: int) -> bool:
        return size <= self.free

    def assign(self, block: Block):
        assert(self.fits(block.size))
        block.bank = self.index
        self.blocks.append(block)
        self.used += block.size

    def release(self, block: Block):
        self.blocks.remove(block)
        self.used -= block.size
        block.bank = None
