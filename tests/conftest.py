import pytest

from TileModel import TileCatalog, TileDefinition


@pytest.fixture
def make_catalog():
    def _make_catalog(ids, tile_width=8, tile_height=8, background=None, **attributes) -> TileCatalog:
        catalog = TileCatalog(tile_width=tile_width, tile_height=tile_height, background=background)
        for tile_id in ids:
            catalog.add(TileDefinition(id=tile_id, name=f't{tile_id}', width=tile_width, height=tile_height, **attributes))
        return catalog
    return _make_catalog
