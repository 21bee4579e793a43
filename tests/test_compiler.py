import logging

import pytest

from BankAllocator import CrossBankPolicy
from Canonicalizer import Canonicalizer
from CEmitter import CEmitter
from CompilerErrors import (UnknownTileReferenceError, InconsistentDimensionsError, BankOverflowError,
                            SizeLimitExceeded, CatalogInconsistencyError)
from FakeTileSynthesizer import SynthesisPolicy
from SparseTileCompiler import SparseTileCompiler, CompilerConfig, compile_tilemap
from TileModel import (TileMap, TileDefinition, CanonicalTile, SegmentKind, SequenceDeclaration, FakeTileGroup, Block,
                       IDENTITY, VERTICAL, HORIZONTAL, catalog_ceiling)


def canonical_rows(tilemap, catalog):
    canonicalizer = Canonicalizer(catalog)
    return [[canonicalizer[tile_id] for tile_id in tilemap.row(y)] for y in range(tilemap.height)]


@pytest.fixture
def level():
    rows = [[0, 1, 2, 3, 4, 5, 6, 0, 0, 7, 7],
            [1, 2, 3, 4, 5, 6, 0, 0, 0, 7, 7],
            [8, 8, 8, 8, 8, 8, 8, 8, 8, 8, 8],
            [3, 4, 5, 6, 1, 2, 3, 4, 5, 6, 0],
            [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0]]
    return TileMap.from_rows(11, 5, rows)


def test_background_and_run_rows(make_catalog):
    catalog = make_catalog([1, 2], background=2)
    compiled = compile_tilemap(TileMap.from_rows(4, 2, [[1, 1, 1, 1], [2, 2, 2, 2]]), catalog)
    row0, row1 = compiled.rows
    assert [(s.kind, s.length) for s in row0] == [(SegmentKind.TILED_REF, 4)]
    assert [(s.kind, s.fill, s.length) for s in row1] == [(SegmentKind.BACKGROUND, CanonicalTile(2), 4)]


def test_identical_runs_share_one_sequence(make_catalog):
    run = list(range(1, 9))
    compiled = compile_tilemap(TileMap.from_rows(8, 2, [run, run]), make_catalog(run))
    assert len(compiled.sequences) == 1
    sequence = compiled.sequences[0]
    assert sequence.refcount == 2
    assert [s.block for segments in compiled.rows for s in segments] == [sequence, sequence]
    assert CEmitter(compiled).render().count(f'char {sequence.name}[') == 1


def test_mirrored_tile_counts_once(make_catalog):
    catalog = make_catalog([3])
    catalog.add(TileDefinition(id=5, name='t5', mirror_of=3, mirror=VERTICAL))
    compiled = compile_tilemap(TileMap.from_rows(8, 1, [[3, 3, 3, 3, 5, 5, 5, 5]]), catalog)
    assert compiled.mapping[3].id == compiled.mapping[5].id
    assert compiled.mapping[5].transform == VERTICAL
    assert list(compiled.tile_indices) == [3]
    assert compiled.mirror_indices == {CanonicalTile(3, VERTICAL): 1}
    assert [s.block.transform for s in compiled.rows[0]] == [CanonicalTile(3).transform, VERTICAL]


def test_round_trip(make_catalog, level):
    catalog = make_catalog(range(1, 9))
    compiled = compile_tilemap(level, catalog)
    assert compiled.decode() == canonical_rows(level, catalog)


def test_round_trip_with_declared_background(make_catalog, level):
    catalog = make_catalog(range(1, 9), background=8)
    compiled = compile_tilemap(level, catalog)
    assert compiled.decode() == canonical_rows(level, catalog)
    assert compiled.rows[2][0].kind == SegmentKind.BACKGROUND


def test_deterministic_output(make_catalog, level):
    outputs = {CEmitter(compile_tilemap(level, make_catalog(range(1, 9)))).render() for _ in range(3)}
    assert len(outputs) == 1


def test_blocks_respect_ceiling(make_catalog):
    width = 64
    tilemap = TileMap.from_rows(width, 2, [list(range(1, width + 1)), list(range(width, 0, -1))])
    compiled = compile_tilemap(tilemap, make_catalog(range(1, width + 1)))
    ceiling = catalog_ceiling(8)
    for block in compiled.blocks:
        assert len({tile.id for tile in block.tiles}) <= ceiling


def test_default_tileset_size(make_catalog):
    tilemap = TileMap.from_rows(40, 1, [list(range(1, 41))])
    compiled = compile_tilemap(tilemap, make_catalog(range(1, 41)))
    assert [len(block.tiles) for block in compiled.blocks] == [16, 16, 8]


def test_wide_tiles_lower_the_ceiling(make_catalog):
    tilemap = TileMap.from_rows(20, 1, [list(range(1, 21))])
    compiled = compile_tilemap(tilemap, make_catalog(range(1, 21), tile_width=16))
    assert max(len(block.tiles) for block in compiled.blocks) == 8
    compiled = compile_tilemap(tilemap, make_catalog(range(1, 21), tile_width=16), CompilerConfig(max_tileset_size=16))
    assert max(len(block.tiles) for block in compiled.blocks) == 16
    assert compiled.tile_indices[2] - compiled.tile_indices[1] == 2


def test_unknown_tile_reference(make_catalog):
    with pytest.raises(UnknownTileReferenceError) as e:
        compile_tilemap(TileMap.from_rows(3, 2, [[1, 1, 1], [1, 9, 1]]), make_catalog([1]))
    assert (e.value.tile_id, e.value.x, e.value.y) == (9, 1, 1)


def test_inconsistent_dimensions():
    with pytest.raises(InconsistentDimensionsError):
        TileMap(2, 2, (1, 2, 3))
    with pytest.raises(InconsistentDimensionsError):
        TileMap.from_rows(2, 2, [[1, 2], [3]])


def test_bank_capacity(make_catalog):
    tilemap = TileMap.from_rows(8, 1, [[1, 2, 3, 4, 5, 6, 7, 8]])
    config = CompilerConfig(max_tileset_size=4, bank_capacities=[4, 4])
    compiled = compile_tilemap(tilemap, make_catalog(range(1, 9)), config)
    assert [bank.used for bank in compiled.banks] == [4, 4]
    with pytest.raises(BankOverflowError):
        compile_tilemap(tilemap, make_catalog(range(1, 9)), CompilerConfig(max_tileset_size=4, bank_capacities=[6]))


def test_row_bank_duplicates_blocks(make_catalog):
    catalog = make_catalog(range(1, 5))
    catalog.bank = 1
    config = CompilerConfig(bank_capacities=[16, 16], row_bank=0, cross_bank_policy=CrossBankPolicy.DUPLICATE)
    compiled = compile_tilemap(TileMap.from_rows(4, 1, [[1, 2, 3, 4]]), catalog, config)
    block = compiled.rows[0][0].block
    assert block.name == 'tilemap_0_0_bank0'
    assert block.bank == 0


def test_declared_sequence_is_referenced(make_catalog):
    catalog = make_catalog(range(1, 7))
    catalog.sequences.append(SequenceDeclaration('hud', (1, 2, 3, 4, 5, 6)))
    compiled = compile_tilemap(TileMap.from_rows(4, 1, [[3, 4, 5, 6]]), catalog)
    segment = compiled.rows[0][0]
    assert segment.block.name == 'hud'
    assert segment.offset == 2
    assert segment.block.refcount == 1


def test_declared_sequence_with_mixed_palettes(make_catalog):
    catalog = make_catalog([1, 2])
    catalog.add(TileDefinition(id=3, name='t3', palette=2))
    catalog.sequences.append(SequenceDeclaration('hud', (1, 2, 3)))
    with pytest.raises(CatalogInconsistencyError):
        compile_tilemap(TileMap.from_rows(3, 1, [[1, 2, 3]]), catalog)


def test_size_override_above_ceiling(make_catalog, caplog):
    tilemap = TileMap.from_rows(33, 1, [list(range(1, 34))])
    config = CompilerConfig(max_tileset_size=40, synthesis_policy=SynthesisPolicy.DISABLED)
    with caplog.at_level(logging.WARNING):
        with pytest.raises(SizeLimitExceeded):
            compile_tilemap(tilemap, make_catalog(range(1, 34)), config)
    assert 'above the hardware limit' in caplog.text


def test_fake_tiles_fold_overflowing_run(make_catalog):
    tilemap = TileMap.from_rows(33, 1, [list(range(1, 34))])
    catalog = make_catalog(range(1, 34))
    catalog.fake_tiles.append(FakeTileGroup('rubble', (31, 32, 33)))
    compiled = compile_tilemap(tilemap, catalog, CompilerConfig(max_tileset_size=40))
    assert [s.length for s in compiled.rows[0]] == [33]
    assert compiled.decode()[0][30:] == [CanonicalTile(34)] * 3
    assert compiled.synthetic_tiles[0].id == 34
    assert compiled.tile_indices[34] == compiled.tile_indices[31]


def test_immediate_graphics_requires_producer(make_catalog):
    with pytest.raises(ValueError):
        compile_tilemap(TileMap.from_rows(1, 1, [[1]]), make_catalog([1]), CompilerConfig(immediate_graphics=True))


def test_immediate_graphics_payload(make_catalog):
    def gfx(tile_id):
        return bytes([tile_id] * 8)
    config = CompilerConfig(immediate_graphics=True)
    compiled = compile_tilemap(TileMap.from_rows(2, 1, [[1, 2]]), make_catalog([1, 2]), config, gfx)
    block = compiled.blocks[0]
    assert block.size == 16
    assert compiled.block_bytes(block) == [1, 2] * 8


def test_undeclared_background(make_catalog):
    with pytest.raises(CatalogInconsistencyError, match='Background tile 9'):
        compile_tilemap(TileMap.from_rows(2, 1, [[1, 1]]), make_catalog([1], background=9))


def test_fills_are_allocated(make_catalog):
    tilemap = TileMap.from_rows(8, 1, [[1, 2, 3, 4, 5, 5, 5, 5]])
    compiled = compile_tilemap(tilemap, make_catalog(range(1, 6), background=5), CompilerConfig(bank_capacities=[8]))
    fill = compiled.rows[0][1].block
    assert fill.name == 'tilemap_fill_5'
    assert (fill.size, fill.refcount, fill.bank) == (4, 1, 0)
    assert compiled.banks[0].used == 8
    assert compiled.decode() == canonical_rows(tilemap, make_catalog(range(1, 6), background=5))
    with pytest.raises(BankOverflowError):
        compile_tilemap(tilemap, make_catalog(range(1, 6), background=5), CompilerConfig(bank_capacities=[4]))


def test_duplicated_block_is_released(make_catalog):
    catalog = make_catalog(range(1, 5))
    catalog.bank = 1
    config = CompilerConfig(bank_capacities=[16, 16], row_bank=0, cross_bank_policy=CrossBankPolicy.DUPLICATE)
    compiled = compile_tilemap(TileMap.from_rows(4, 1, [[1, 2, 3, 4]]), catalog, config)
    assert [(block.name, block.bank, block.refcount) for block in compiled.blocks] == [('tilemap_0_0_bank0', 0, 1)]
    assert compiled.banks[1].used == 0
    assert 'bank1' not in CEmitter(compiled, config.row_bank).render()


def test_declared_sequence_survives_duplication(make_catalog):
    catalog = make_catalog(range(1, 5))
    catalog.sequences.append(SequenceDeclaration('hud', (1, 2, 3, 4), bank=1))
    config = CompilerConfig(bank_capacities=[16, 16], row_bank=0, cross_bank_policy=CrossBankPolicy.DUPLICATE)
    compiled = compile_tilemap(TileMap.from_rows(4, 1, [[1, 2, 3, 4]]), catalog, config)
    assert sorted((block.name, block.bank) for block in compiled.blocks) == [('hud', 1), ('hud_bank0', 0)]


def test_tile_indices_without_compiling(make_catalog):
    catalog = make_catalog([1, 2])
    catalog.add(TileDefinition(id=3, name='t3', mirror_of=2, mirror=VERTICAL))
    compiler = SparseTileCompiler(TileMap.from_rows(1, 1, [[1]]), catalog)
    canonicalizer = Canonicalizer(catalog)
    definitions = {i: canonicalizer.definition(i) for i in (1, 2)}
    block = Block('b', (CanonicalTile(2, VERTICAL),))
    indices, mirror_indices = compiler.assign_tile_indices(canonicalizer, definitions, [], [block])
    assert indices == {1: 0, 2: 1}
    assert mirror_indices == {CanonicalTile(2, VERTICAL): 2}


def test_mirrored_tiles_follow_their_source(make_catalog):
    catalog = make_catalog([1, 2], mode='160B')
    catalog.add(TileDefinition(id=3, name='t3', mode='160B', mirror_of=1, mirror=HORIZONTAL))
    catalog.add(TileDefinition(id=4, name='t4', mode='160B', mirror_of=1, mirror=VERTICAL))
    compiled = compile_tilemap(TileMap.from_rows(4, 3, [[4, 4, 4, 4], [3, 3, 3, 3], [2, 2, 2, 2]]), catalog)
    assert compiled.tile_indices == {1: 0, 2: 6}
    assert compiled.mirror_indices == {CanonicalTile(1, VERTICAL): 2, CanonicalTile(1, HORIZONTAL): 4}
    assert compiled.block_bytes(compiled.rows[0][0].block) == [2, 3] * 4


def test_immediate_graphics_are_mirrored(make_catalog):
    def gfx(tile_id, transform=IDENTITY):
        data = bytes(range(tile_id * 8, tile_id * 8 + 8))
        return data[::-1] if transform.V else data
    catalog = make_catalog([1])
    catalog.add(TileDefinition(id=2, name='t2', mirror_of=1, mirror=VERTICAL))
    compiled = compile_tilemap(TileMap.from_rows(1, 1, [[2]]), catalog, CompilerConfig(immediate_graphics=True), gfx)
    assert compiled.block_bytes(compiled.blocks[0]) == list(range(15, 7, -1))


def test_tiles_over_underlay(make_catalog):
    catalog = make_catalog([1, 2])
    catalog.add(TileDefinition(id=3, name='t3', palette=1, underlay=1))
    tilemap = TileMap.from_rows(6, 2, [[2, 3, 3, 3, 3, 2], [0, 3, 3, 3, 3, 0]])
    compiled = compile_tilemap(tilemap, catalog)
    assert [s.kind for s in compiled.overlay_rows[0]] == [SegmentKind.BACKGROUND, SegmentKind.TILED_REF, SegmentKind.BACKGROUND]
    assert compiled.rows[0][0].block.tiles == tuple(CanonicalTile(i) for i in (2, 1, 1, 1, 1, 2))
    # Both rows draw the same tiles over the underlay
    assert compiled.overlay_rows[1][1].block is compiled.overlay_rows[0][1].block
    assert compiled.decode() == canonical_rows(tilemap, catalog)
    assert [s.block for s in compiled.layers(1) if s.block is not None] == [compiled.rows[1][1].block, compiled.overlay_rows[1][1].block]


def test_catalog_without_underlays_has_one_layer(make_catalog, level):
    assert compile_tilemap(level, make_catalog(range(1, 9))).overlay_rows == ()
