"""
Renders compiled tile maps as C declarations for cc7800 (sparse_tiling.h).

Each map row becomes a display table of 8-byte entries, terminated by
"96, 0xff":
  last column, first column, data low, write mode, data high,
  palette / width, width, DMA cycles
Tiles drawn over an underlay come after the underlay entries of their row.
"""
from TileModel import TileMap, Block, Segment, SegmentKind, SINGLE_BYTE_MODES, EMPTY_TILE, VERTICAL, HORIZONTAL, BOTH
from SparseTileCompiler import CompiledTileMap

from typing import Tuple, List, Dict, Optional

BYTES_PER_LINE = 16

MIRROR_NAMES = {VERTICAL: 'vertically mirrored', HORIZONTAL: 'horizontally mirrored', BOTH: 'mirrored on both axes'}


def bank_qualifier(bank: Optional[int]) -> str:
    return f'bank{bank} ' if bank is not None else ''


def block_qualifiers(compiled: CompiledTileMap, block: Block) -> str:
    """
    cc7800 qualifiers of a block declaration. Graphics are always listed top
    to bottom, hence reversed in immediate mode.

    :param compiled: Compiled tile map
    :param block:    Block to qualify
    :return:         Qualifier string, with trailing space
    """
    q = bank_qualifier(block.bank) if len(compiled.banks) > 1 or block.bank_hint is not None else ''
    if compiled.immediate_graphics:
        if block.holeydma and compiled.tile_height in (8, 16):
            q += 'holeydma '
        q += 'reversed '
    return q


def format_bytes(values: List[int], hexadecimal: bool) -> str:
    items = [f'0x{v:02x}' if hexadecimal else str(v) for v in values]
    if len(items) <= BYTES_PER_LINE:
        return ', '.join(items)
    lines = [', '.join(items[i:i + BYTES_PER_LINE]) for i in range(0, len(items), BYTES_PER_LINE)]
    return '\n\t' + ',\n\t'.join(lines)


def is_generated(compiled: CompiledTileMap, block: Block) -> bool:
    """
    False if every tile of block is declared with generate: false, in which case
    its array is expected to be declared elsewhere
    """
    return any(compiled.definitions[tile.id].generate for tile in block.tiles)


def render_block(compiled: CompiledTileMap, block: Block) -> str:
    data = compiled.block_bytes(block)
    q = block_qualifiers(compiled, block)
    if compiled.immediate_graphics:
        width = compiled.block_width(block)
        return f'{q}scattered({compiled.tile_height},{width}) char {block.name}[{len(data)}] = {{{format_bytes(data, True)}}};'
    return f'{q}const char {block.name}[{len(data)}] = {{{format_bytes(data, False)}}};'


class CEmitter:
    def __init__(self, compiled: CompiledTileMap, row_bank: Optional[int] = None):
        self.compiled = compiled
        self.row_bank = row_bank

    def entry(self, name: str, start: int, length: int, tiles: Tuple, mode: str, palette: int, offset_bytes: int) -> str:
        compiled = self.compiled
        width = sum(compiled.definitions[tile.id].encoding_bytes for tile in tiles)
        address = f'({name} + {offset_bytes})' if offset_bytes else name
        if compiled.immediate_graphics:
            write_mode = 0x40 if mode in SINGLE_BYTE_MODES else 0xc0
            cycles = (10 + 3 * width) // 2
        else:
            write_mode = 0x60 if mode in SINGLE_BYTE_MODES else 0xe0
            cycles = (10 + 3 + 9 * width) // 2
        return (f'{start + length - 1}, {start}, {address}, 0x{write_mode:02x}, {address} >> 8, '
                f'({palette} << 5) | ((-{width}) & 0x1f), {width}, {cycles}, ')

    def row_entries(self, segments: List[Segment]) -> str:
        compiled = self.compiled
        text = ''
        for segment in segments:
            block = segment.block
            if block is None:
                # Empty cells are not drawn
                continue
            tiles = segment.tiles()
            offset_bytes = 0
            if segment.kind != SegmentKind.BACKGROUND:
                offset_bytes = sum(compiled.definitions[tile.id].encoding_bytes for tile in block.tiles[:segment.offset])
            text += self.entry(block.name, segment.start, segment.length, tiles, block.mode, block.palette, offset_bytes)
        return text

    def mirrored_tiles(self) -> List[str]:
        """
        Comments locating the graphics of mirrored tiles in the tile graphics area
        """
        compiled = self.compiled
        if compiled.immediate_graphics:
            return []
        return [f'// Tile index {index}: {compiled.definitions[tile.id].name} {MIRROR_NAMES[tile.transform]}'
                for tile, index in sorted(compiled.mirror_indices.items(), key=lambda item: item[1])]

    def render(self) -> str:
        """
        Render the complete sparse tiling source

        :return: C source text
        """
        compiled = self.compiled
        prefix = compiled.prefix
        lines = self.mirrored_tiles()
        for bank in compiled.banks:
            if bank.blocks:
                lines.append(f'// Bank {bank.index}: {bank.used}/{bank.capacity} bytes')
            for block in bank.blocks:
                if is_generated(compiled, block):
                    lines.append(render_block(compiled, block))
        # Identical row tables are shared
        row_tables: Dict[str, str] = {}
        row_names = []
        rq = bank_qualifier(self.row_bank)
        for y in range(compiled.height):
            text = self.row_entries(compiled.layers(y))
            if text not in row_tables:
                row_tables[text] = f'{prefix}_{y}_data'
                lines.append(f'{rq}const char {prefix}_{y}_data[] = {{{text}96, 0xff}};')
            row_names.append(row_tables[text])
        lines.append('')
        lines.append(f'{rq}const char {prefix}_data_ptrs_high[{compiled.height}] = {{{", ".join(f"{n} >> 8" for n in row_names)}}};')
        lines.append('')
        lines.append(f'{rq}const char {prefix}_data_ptrs_low[{compiled.height}] = {{{", ".join(f"{n} & 0xff" for n in row_names)}}};')
        lines.append('')
        lines.append(f'{rq}const char *{prefix}_data_ptrs[2] = {{{prefix}_data_ptrs_high, {prefix}_data_ptrs_low}};')
        lines.append('')
        lines.append('/*')
        lines.append(f'#define TILING_HEIGHT {compiled.height}')
        lines.append(f'#define TILING_WIDTH {compiled.width}')
        lines.append('#include "sparse_tiling.h"')
        lines.append('*/')
        return '\n'.join(lines) + '\n'


def plain_tilemap(tilemap: TileMap, name: str, boundaries: bool = False) -> str:
    """
    Render a map as a plain array of tile indices (2 bytes per tile)

    :param tilemap:    Tile map
    :param name:       Array name
    :param boundaries: If true, surround rows with 0xff markers
    :return:           C source text
    """
    size = (tilemap.width + 1) * tilemap.height + 1 if boundaries else tilemap.width * tilemap.height
    rows = []
    for y in range(tilemap.height):
        values = [str((v - 1) * 2 if v != EMPTY_TILE else 0) for v in tilemap.row(y)]
        rows.append(('0xff, ' if boundaries else '') + ', '.join(values))
    body = ',\n\t'.join(rows)
    if boundaries:
        body += ',\n\t0xff'
    return f'const char {name}[{size}] = {{\n\t{body}\n\t}};\n'
