import pytest

from geo.crs import CRS
from geo.extent import Extent
from raster.celltype import CellType
from raster.layout import (
    GridBounds,
    KeyBounds,
    LayoutDefinition,
    RasterExtent,
    SpatialKey,
    TileDimensions,
    TileLayerMetadata,
    TileLayout,
    floating_layout,
)


def _tlm() -> TileLayerMetadata:
    layout = LayoutDefinition(Extent(0.0, 0.0, 100.0, 100.0), TileLayout(2, 2, 50, 50))
    return TileLayerMetadata(
        cell_type=CellType.from_name("int16"),
        layout=layout,
        extent=Extent(0.0, 20.0, 80.0, 100.0),
        crs=CRS("EPSG:32615"),
        bounds=KeyBounds(SpatialKey(0, 0), SpatialKey(1, 1)),
    )


def test_tile_layout_subdivide():
    tl = TileLayout(2, 3, 10, 10)
    assert tl.subdivide(0) == tl
    assert tl.subdivide(1) == tl
    assert tl.subdivide(2) == TileLayout(4, 6, 5, 5)
    with pytest.raises(ValueError):
        tl.subdivide(-1)


def test_spatial_key_subdivide_is_row_major():
    assert SpatialKey(0, 0).subdivide(2) == [
        SpatialKey(0, 0),
        SpatialKey(1, 0),
        SpatialKey(0, 1),
        SpatialKey(1, 1),
    ]
    assert SpatialKey(1, 2).subdivide(2)[0] == SpatialKey(2, 4)
    assert SpatialKey(3, 3).subdivide(1) == [SpatialKey(3, 3)]


def test_key_bounds_subdivide():
    kb = KeyBounds(SpatialKey(1, 2), SpatialKey(3, 4))
    assert kb.subdivide(2) == KeyBounds(SpatialKey(2, 4), SpatialKey(7, 9))


def test_metadata_subdivide_keeps_total_dimensions():
    tlm = _tlm()
    sub = tlm.subdivide(2)
    assert sub.tile_layout == TileLayout(4, 4, 25, 25)
    assert sub.bounds == KeyBounds(SpatialKey(0, 0), SpatialKey(3, 3))
    assert sub.total_dimensions() == tlm.total_dimensions()


def test_total_dimensions_of_partial_extent():
    assert _tlm().total_dimensions() == TileDimensions(80, 80)


def test_metadata_json_round_trip():
    tlm = _tlm()
    back = TileLayerMetadata.from_json(tlm.to_json())
    assert back.layout == tlm.layout
    assert back.bounds == tlm.bounds
    assert back.cell_type == tlm.cell_type
    assert back.extent == tlm.extent
    assert back.crs == tlm.crs


def test_grid_bounds_and_extent_are_inverse():
    re = RasterExtent(Extent(0.0, 0.0, 10.0, 8.0), 10, 8)
    gb = GridBounds(2, 1, 4, 3)
    e = re.extent_for(gb)
    assert e == Extent(2.0, 4.0, 5.0, 7.0)
    assert re.grid_bounds_for(e) == gb


def test_grid_bounds_for_clamps():
    re = RasterExtent(Extent(0.0, 0.0, 10.0, 10.0), 10, 10)
    assert re.grid_bounds_for(Extent(-5.0, -5.0, 15.0, 15.0)) == GridBounds(0, 0, 9, 9)


def test_grid_bounds_split_covers_everything():
    parts = GridBounds(0, 0, 9, 7).split(4, 4)
    assert parts[0] == GridBounds(0, 0, 3, 3)
    assert parts[2] == GridBounds(8, 0, 9, 3)
    assert sum(p.size for p in parts) == 80


def test_floating_layout_pads_to_whole_tiles():
    layout = floating_layout(Extent(0.0, 0.0, 10.0, 8.0), 10, 8, TileDimensions(4, 4))
    assert layout.tile_layout == TileLayout(3, 2, 4, 4)
    assert layout.extent == Extent(0.0, 0.0, 12.0, 8.0)
    assert layout.key_extent(SpatialKey(2, 1)) == Extent(8.0, 0.0, 12.0, 4.0)


def test_grid_bounds_combine():
    a = GridBounds(2, 3, 4, 5)
    b = GridBounds(0, 4, 3, 9)
    assert a.combine(b) == GridBounds(0, 3, 4, 9)
    assert a.combine(a) == a
