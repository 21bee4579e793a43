import dataclasses
from dataclasses import dataclass
from enum import Enum

from CompilerErrors import CatalogInconsistencyError, SizeLimitExceeded
from TileModel import FakeTileGroup, TileDefinition, CanonicalTile, IDENTITY

from typing import Callable, Tuple, List, Dict, Optional, Sequence as SequenceType

import logging as log


class SynthesisPolicy(Enum):
    DISABLED = 'disabled'           # Never fold, only check the ceiling
    ON_OVERFLOW = 'on_overflow'     # Fold inside generation units above the ceiling
    ALWAYS = 'always'               # Fold everywhere, to raise the sequence match rate


@dataclass(frozen=True)
class SyntheticTile:
    id: int
    name: str
    members: Tuple[int, ...]    # Canonical ids standing in for this tile
    representative: int         # Raw id providing graphics and attributes


class FakeTileSynthesizer:
    """
    Replaces groups of visually similar canonical tiles by one synthetic tile.

    This is a lossy equivalence configured per catalog, distinct from the
    lossless mirror folding done by the Canonicalizer.
    """

    def __init__(self,
                 groups: SequenceType[FakeTileGroup],
                 mapping: Dict[int, CanonicalTile],
                 definitions: Dict[int, TileDefinition],
                 ceiling: int,
                 units: Callable[[SequenceType[CanonicalTile]], List[Tuple[int, int]]],
                 policy: SynthesisPolicy = SynthesisPolicy.ON_OVERFLOW,
                 gfx: Optional[Callable[[int], bytes]] = None,
                 first_id: int = 1):
        """
        :param groups:      Lossy tile groups from catalog
        :param mapping:     Raw tile id to canonical tile
        :param definitions: Tile definition per canonical id. Synthetic tiles are added to it
        :param ceiling:     Max distinct tiles per generation unit
        :param units:       Splits a row into generation unit column ranges
        :param policy:      When to fold
        :param gfx:         Optional tile graphics producer, used to check group tolerance
        :param first_id:    Id of first synthetic tile
        """
        self.ceiling = ceiling
        self.units = units
        self.policy = policy
        self.definitions = definitions
        self.synthetic_tiles: List[SyntheticTile] = []
        self.substitution: Dict[int, int] = {}
        if policy != SynthesisPolicy.DISABLED:
            for i, group in enumerate(groups):
                self._add_group(group, mapping, first_id + i, gfx)

    def _add_group(self, group: FakeTileGroup, mapping: Dict[int, CanonicalTile], tile_id: int, gfx: Optional[Callable[[int], bytes]]):
        if not group.members:
            raise CatalogInconsistencyError(f'Fake tile {group.name} has no member tiles')
        for raw_id in group.members:
            if raw_id not in mapping:
                raise CatalogInconsistencyError(f'Fake tile {group.name} refers to undeclared tile {raw_id}')
        representative = group.representative if group.representative is not None else group.members[0]
        if representative not in mapping:
            raise CatalogInconsistencyError(f'Fake tile {group.name} representative {representative} is undeclared')
        rep = self.definitions[mapping[representative].id]
        members = tuple(sorted({mapping[raw_id].id for raw_id in group.members}))
        for member in members:
            tile = self.definitions[member]
            if (tile.mode, tile.palette, tile.holeydma) != (rep.mode, rep.palette, rep.holeydma):
                raise CatalogInconsistencyError(f'Fake tile {group.name}: {tile.name} differs from {rep.name} in mode, palette or holeydma')
            if member in self.substitution:
                raise CatalogInconsistencyError(f'Tile {tile.name} belongs to more than one fake tile group')
            if gfx is not None and group.tolerance is not None:
                a = gfx(representative)
                b = gfx(member)
                difference = sum(1 for i, j in zip(a, b) if i != j) + abs(len(a) - len(b))
                if difference > group.tolerance:
                    raise CatalogInconsistencyError(f'Fake tile {group.name}: {tile.name} differs from {rep.name} by {difference} bytes (tolerance {group.tolerance})')
            self.substitution[member] = tile_id
        self.definitions[tile_id] = dataclasses.replace(rep, id=tile_id, name=group.name, mirror_of=None, mirror=IDENTITY)
        self.synthetic_tiles.append(SyntheticTile(tile_id, group.name, members, representative))
        log.info(f'Fake tile {group.name} ({tile_id}) stands in for {len(members)} tiles')

    def substitute(self, cells: SequenceType[CanonicalTile]) -> List[CanonicalTile]:
        return [CanonicalTile(self.substitution[c.id], c.transform) if c.id in self.substitution else c for c in cells]

    @staticmethod
    def distinct(cells: SequenceType[CanonicalTile]) -> int:
        return len({c.id for c in cells})

    def apply_row(self, y: int, cells: SequenceType[CanonicalTile], units: Optional[Callable[[SequenceType[CanonicalTile]], List[Tuple[int, int]]]] = None) -> List[CanonicalTile]:
        """
        Fold a row according to the policy and check the ceiling of its generation units

        :param y:     Row index
        :param cells: Canonical tiles of row
        :param units: Splits the row into generation units, if other than the default one
        :return:      Rewritten row
        """
        units = units or self.units
        cells = list(cells)
        if self.policy == SynthesisPolicy.ALWAYS:
            cells = self.substitute(cells)
        for start, end in units(cells):
            if self.distinct(cells[start:end]) <= self.ceiling:
                continue
            if self.policy == SynthesisPolicy.ON_OVERFLOW:
                cells[start:end] = self.substitute(cells[start:end])
                log.info(f'Row {y}: fake tiles applied to columns {start}-{end - 1}')
            n = self.distinct(cells[start:end])
            if n > self.ceiling:
                raise SizeLimitExceeded(f'Row {y}, columns {start}-{end - 1}: {n} distinct tiles exceed the limit of {self.ceiling}')
        return cells
