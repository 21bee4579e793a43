import dataclasses
from dataclasses import dataclass, field
from enum import Enum

from CompilerErrors import BankOverflowError
from TileModel import Bank, Block, Segment

from typing import Tuple, List, Dict, Optional, Sequence as SequenceType

import logging as log

BANK_SIZE = 16384


class CrossBankPolicy(Enum):
    ALLOW = 'allow'             # Rows may reference blocks in any bank
    DUPLICATE = 'duplicate'     # Copy blocks into the bank of the referencing row
    FAIL = 'fail'               # Reject references to blocks outside the row's bank


@dataclass
class Allocation:
    banks: List[Bank]
    rows: List[List[Segment]]
    duplicates: Dict[Tuple[str, int], Block] = field(default_factory=dict)

    def usage(self) -> List[Tuple[int, int, int]]:
        """
        :return: (index, used, capacity) of every bank
        """
        return [(bank.index, bank.used, bank.capacity) for bank in self.banks]


class BankAllocator:
    """
    Assigns blocks to fixed-capacity banks.

    Blocks with a bank hint are placed first, in their hinted bank. Remaining
    blocks go to the first bank with room left, in block creation order.
    Under the duplicate policy, a block whose references all moved to copies
    gives its bank space back.
    """

    def __init__(self, capacities: SequenceType[int], policy: CrossBankPolicy = CrossBankPolicy.ALLOW, row_bank: Optional[int] = None):
        if not capacities:
            raise BankOverflowError('No banks available')
        self.banks = [Bank(index, capacity) for index, capacity in enumerate(capacities)]
        self.policy = policy
        self.row_bank = row_bank
        self.duplicates: Dict[Tuple[str, int], Block] = {}
        self.keep: List[Block] = []         # Blocks kept even when no row references them

    def _bank(self, index: int, block: Block) -> Bank:
        if not 0 <= index < len(self.banks):
            raise BankOverflowError(f'Block {block.name} requires bank {index}, only {len(self.banks)} banks exist')
        return self.banks[index]

    def place_hinted(self, block: Block, index: int):
        bank = self._bank(index, block)
        if not bank.fits(block.size):
            raise BankOverflowError(f'Block {block.name} ({block.size} bytes) does not fit in bank {index} ({bank.free} bytes free)')
        bank.assign(block)

    def place_first_fit(self, block: Block):
        for bank in self.banks:
            if bank.fits(block.size):
                bank.assign(block)
                return
        raise BankOverflowError(f'Block {block.name} ({block.size} bytes) does not fit in any bank')

    def allocate(self, blocks: SequenceType[Block]):
        """
        Assign every block to a bank

        :param blocks: Blocks in creation order
        """
        for block in blocks:
            if block.bank_hint is not None:
                self.place_hinted(block, block.bank_hint)
        for block in blocks:
            if block.bank_hint is None:
                self.place_first_fit(block)

    def _home_bank(self, segments: SequenceType[Segment]) -> Optional[int]:
        if self.row_bank is not None:
            return self.row_bank
        for segment in segments:
            if segment.block is not None:
                return segment.block.bank
        return None

    def _duplicate(self, block: Block, index: int) -> Block:
        key = (block.name, index)
        if key not in self.duplicates:
            copy = dataclasses.replace(block, name=f'{block.name}_bank{index}', bank=None, bank_hint=index, refcount=0)
            self.place_hinted(copy, index)
            self.duplicates[key] = copy
            log.info(f'Block {block.name} duplicated into bank {index}')
        return self.duplicates[key]

    def resolve_references(self, rows: SequenceType[SequenceType[Segment]]) -> List[List[Segment]]:
        """
        Apply the cross-bank policy to the block references of every row

        :param rows: Segments of each row
        :return:     Segments of each row, referencing duplicated blocks where needed
        """
        resolved = []
        for segments in rows:
            home = self._home_bank(segments)
            new_segments = []
            for segment in segments:
                block = segment.block
                if self.policy == CrossBankPolicy.ALLOW or block is None or block.bank == home:
                    new_segments.append(segment)
                    continue
                if self.policy == CrossBankPolicy.FAIL:
                    raise BankOverflowError(f'Row {segment.row} in bank {home} references {block.name} in bank {block.bank}')
                copy = self._duplicate(block, home)
                block.refcount -= 1
                copy.refcount += 1
                if block.refcount == 0 and block not in self.keep:
                    # Every reference moved to copies
                    log.info(f'Block {block.name} released from bank {block.bank}')
                    self.banks[block.bank].release(block)
                new_segments.append(dataclasses.replace(segment, block=copy))
            resolved.append(new_segments)
        return resolved

    def run(self, blocks: SequenceType[Block], rows: SequenceType[SequenceType[Segment]], keep: SequenceType[Block] = ()) -> Allocation:
        """
        Allocate blocks, then resolve the cross-bank references of rows

        :param blocks: Blocks in creation order
        :param rows:   Segments of each row
        :param keep:   Blocks that stay allocated after all their references moved to duplicates
        :return:       Banks and resolved rows
        """
        self.keep = list(keep)
        self.allocate(blocks)
        resolved = self.resolve_references(rows)
        for bank in self.banks:
            log.info(f'Bank {bank.index}: {bank.used}/{bank.capacity} bytes, {len(bank.blocks)} blocks')
        return Allocation(self.banks, resolved, dict(self.duplicates))
