from dataclasses import dataclass
from collections import UserList, defaultdict

from TileModel import Sequence, CanonicalTile

from typing import Tuple, List, Dict, Optional, Sequence as SequenceType

import logging as log

DEFAULT_ANCHOR_LENGTH = 2


@dataclass(frozen=True)
class Match:
    sequence: Sequence
    offset: int
    length: int

    @property
    def tiles(self) -> Tuple[CanonicalTile, ...]:
        return self.sequence.tiles[self.offset:self.offset + self.length]


class SequenceRegistry(UserList):
    """
    Append-only store of reusable tile sequences, in registration order.

    Lookup uses two indices:
    * a content dictionary for find_exact
    * a hash index from every window of anchor_length tiles (and every single
      tile) to its (sequence, offset) occurrences

    A prefix lookup only extends the occurrences of the query's first window,
    so its cost is proportional to the number of occurrences times the match
    length rather than to the total registry size. The price is memory
    proportional to the total registered content.
    """

    def __init__(self, anchor_length: int = DEFAULT_ANCHOR_LENGTH):
        super().__init__()
        assert(anchor_length >= 1)
        self.anchor_length = anchor_length
        self._exact: Dict[Tuple[CanonicalTile, ...], Sequence] = {}
        self._windows: Dict[Tuple[CanonicalTile, ...], List[Tuple[Sequence, int]]] = defaultdict(list)
        self._singles: Dict[CanonicalTile, List[Tuple[Sequence, int]]] = defaultdict(list)

    def register(self, tiles: SequenceType[CanonicalTile], name: str, **attributes) -> Sequence:
        """
        Append a new sequence to the registry

        :param tiles:      Canonical tiles of sequence
        :param name:       Block name of sequence
        :param attributes: Remaining Block fields (mode, palette, holeydma, bank_hint)
        :return:           Registered sequence
        """
        assert(len(tiles) > 0)
        sequence = Sequence(name=name, tiles=tuple(tiles), id=len(self.data), **attributes)
        self.data.append(sequence)
        self._exact.setdefault(sequence.tiles, sequence)
        k = self.anchor_length
        for offset, tile in enumerate(sequence.tiles):
            self._singles[tile].append((sequence, offset))
            if offset + k <= len(sequence.tiles):
                self._windows[sequence.tiles[offset:offset + k]].append((sequence, offset))
        log.debug(f'Registered sequence {name} ({len(tiles)} tiles)')
        return sequence

    def find_exact(self, tiles: SequenceType[CanonicalTile]) -> Optional[Sequence]:
        return self._exact.get(tuple(tiles))

    def find(self, tiles: SequenceType[CanonicalTile], min_length: int = 1) -> Optional[Match]:
        """
        Find the longest prefix of tiles contained in a registered sequence.
        On equal length, the first registered sequence (and lowest offset) wins.

        :param tiles:      Canonical tiles to look up
        :param min_length: Shortest acceptable match
        :return:           Match, or None if no prefix of at least min_length tiles is registered
        """
        tiles = tuple(tiles)
        if not tiles or len(tiles) < min_length:
            return None
        k = self.anchor_length
        occurrences = self._windows.get(tiles[:k], []) if len(tiles) >= k else []
        if not occurrences:
            # No match can reach the anchor length - only single-tile anchored matches remain
            occurrences = self._singles.get(tiles[0], [])
        best = None
        for sequence, offset in occurrences:
            length = 0
            available = min(len(tiles), len(sequence.tiles) - offset)
            while length < available and sequence.tiles[offset + length] == tiles[length]:
                length += 1
            if best is None or length > best.length:
                best = Match(sequence, offset, length)
                if length == len(tiles):
                    break
        if best is None or best.length < min_length:
            return None
        return best

    @staticmethod
    def reference(match: Match) -> Match:
        match.sequence.refcount += 1
        return match

    @property
    def total_tiles(self) -> int:
        return sum(len(sequence.tiles) for sequence in self.data)
