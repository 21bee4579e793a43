#!/usr/bin/env python3
import sys
import argparse
from pathlib import Path

from CompilerErrors import TileCompilerError
from MapLoader import load_tmx, load_catalog
from SparseTileCompiler import CompilerConfig, compile_tilemap
from BankAllocator import CrossBankPolicy, BANK_SIZE
from FakeTileSynthesizer import SynthesisPolicy
from CEmitter import CEmitter, plain_tilemap

from typing import Optional, List

import logging as log

VERSION_STRING = "1.0"


def build(filename: Path,
          sparse: Optional[Path],
          varname: Optional[str],
          config: CompilerConfig,
          boundaries: bool) -> str:
    """
    Convert a Tiled map to C source

    :param filename:   Path to .tmx file
    :param sparse:     Path to YAML tile catalog. If None, a plain tile map is produced
    :param varname:    Name of generated variables
    :param config:     Compiler configuration
    :param boundaries: If true, plain tile map rows are delimited by 0xff
    :return:           C source text
    """
    tmx = load_tmx(filename)
    if sparse is None:
        return plain_tilemap(tmx.tilemap, varname or 'tilemap', boundaries)
    source = load_catalog(sparse, tmx.tile_width, tmx.tile_height, prefix=varname or filename.stem)
    if varname is not None:
        source.catalog.prefix = varname
    gfx = source.graphics() if config.immediate_graphics else None
    compiled = compile_tilemap(tmx.tilemap, source.catalog, config, gfx)
    return CEmitter(compiled, config.row_bank).render()


def main(filename: Path,
         sparse: Optional[Path],
         varname: Optional[str],
         output: Optional[Path],
         config: CompilerConfig,
         boundaries: bool) -> int:
    try:
        text = build(filename, sparse, varname, config, boundaries)
    except TileCompilerError as e:
        log.error(e.message)
        return 1
    # Nothing is written unless the whole map compiled
    if output is None:
        sys.stdout.write(text)
    else:
        with open(output, 'wt') as f:
            f.write(text)
        log.info(f'Wrote {output}')
    return 0


def bank_capacities(banks: int, bank_size: int) -> List[int]:
    return [bank_size] * banks


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description=f'Atari 7800 sparse tile map compiler version {VERSION_STRING}')
    parser.add_argument('filename', type=str,
                        help='Tiled map (.tmx) to convert')
    parser.add_argument('--sparse', type=str,
                        default=None,
                        help='YAML tile catalog. Produces sparse tiling tables instead of a plain tile map')
    parser.add_argument('-n', '--varname', type=str,
                        default=None,
                        help='Name of generated variables')
    parser.add_argument('-m', '--maxsize', type=int,
                        default=None,
                        help='Maximum number of tiles per display list entry (defaults to 16, or 8 for tiles wider than 8 pixels)')
    parser.add_argument('-i', '--immediate', action='store_true',
                        help='Store tile graphics directly in blocks instead of tile indices')
    parser.add_argument('-b', '--boundaries', action='store_true',
                        help='Delimit rows of plain tile maps with 0xff')
    parser.add_argument('--banks', type=int,
                        default=1,
                        help='Number of ROM banks available to blocks')
    parser.add_argument('--bank-size', type=int,
                        default=BANK_SIZE,
                        help='Capacity of each bank in bytes')
    parser.add_argument('--row-bank', type=int,
                        default=None,
                        help='Bank holding the row display tables')
    parser.add_argument('--cross-bank', type=str,
                        default=CrossBankPolicy.ALLOW.value,
                        choices=[p.value for p in CrossBankPolicy],
                        help='What to do with rows referencing blocks of another bank')
    parser.add_argument('--fake-tiles', type=str,
                        default=SynthesisPolicy.ON_OVERFLOW.value,
                        choices=[p.value for p in SynthesisPolicy],
                        help='When to substitute fake tiles for groups of similar tiles')
    parser.add_argument('--min-sequence', type=int,
                        default=CompilerConfig.min_sequence_length,
                        help='Shortest run of tiles registered as a reusable sequence')
    parser.add_argument('--min-match', type=int,
                        default=CompilerConfig.min_match_length,
                        help='Shortest run of tiles looked up among existing sequences')
    parser.add_argument('-o', '--output', type=str,
                        default=None,
                        help='Output file (defaults to standard output)')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Verbose logging')
    args = parser.parse_args()

    # Configure logging
    log_level = log.INFO if args.verbose else log.ERROR
    log.basicConfig(format = '%(levelname)s: %(message)s', level = log_level)
    config = CompilerConfig(max_tileset_size=args.maxsize,
                            min_sequence_length=args.min_sequence,
                            min_match_length=args.min_match,
                            immediate_graphics=args.immediate,
                            bank_capacities=bank_capacities(args.banks, args.bank_size),
                            cross_bank_policy=CrossBankPolicy(args.cross_bank),
                            row_bank=args.row_bank,
                            synthesis_policy=SynthesisPolicy(args.fake_tiles))
    rc = main(Path(args.filename),
              Path(args.sparse) if args.sparse is not None else None,
              args.varname,
              Path(args.output) if args.output is not None else None,
              config,
              args.boundaries)
    sys.exit(rc)
