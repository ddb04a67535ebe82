import numpy as np
import pytest

from geo.crs import CRS
from geo.extent import Extent
from raster.celltype import CellType
from raster.projected import ProjectedRasterTile
from raster.stats import CellStatistics
from raster.tile import NODATA_INT, Tile


def test_from_bytes_reads_little_endian_cells():
    data = np.arange(6, dtype="<i2").tobytes()
    t = Tile.from_bytes(data, CellType.from_name("int16"), 3, 2)
    assert (t.cols, t.rows) == (3, 2)
    assert t.cells.tolist() == [[0, 1, 2], [3, 4, 5]]
    assert t.to_bytes() == data


def test_from_bytes_rejects_wrong_length():
    with pytest.raises(ValueError):
        Tile.from_bytes(b"\x00\x01\x02", CellType.from_name("int16"), 2, 2)


def test_bool_cells_are_bit_packed_lsb_first():
    t = Tile.from_bytes(bytes([0b00000101]), CellType.from_name("bool"), 4, 2)
    assert t.cells.tolist() == [[True, False, True, False], [False, False, False, False]]
    assert t.to_bytes() == bytes([0b00000101])


def test_nodata_mask_and_counts():
    ct = CellType.from_name("int16")
    t = Tile(np.array([[1, -32768], [3, 4]], dtype=np.int16), ct)
    assert t.nodata_mask().tolist() == [[False, True], [False, False]]
    assert t.data_cells() == 3
    assert not t.is_no_data_tile()
    assert Tile.empty(ct, 2, 2).is_no_data_tile()


def test_convert_maps_no_data_to_target_no_data():
    t = Tile(np.array([[1.5, np.nan]], dtype=np.float32), CellType.from_name("float32"))
    out = t.convert(CellType.from_name("int16"))
    assert out.cells.tolist() == [[1, -32768]]
    assert out.cell_type.name == "int16"


def test_arrays_mark_no_data():
    t = Tile(np.array([[7, 0]], dtype=np.uint8), CellType.from_name("uint8"))
    assert t.to_array_int().tolist() == [7, NODATA_INT]
    dbl = t.to_array_double()
    assert dbl[0] == 7.0
    assert np.isnan(dbl[1])


def test_dimensions():
    t = Tile.empty(CellType.from_name("uint16"), 5, 3)
    assert t.dimensions.cols == 5
    assert t.dimensions.rows == 3


def test_cell_statistics_skip_no_data():
    t = Tile(np.array([[1, 2], [3, -32768]], dtype=np.int16), CellType.from_name("int16"))
    s = CellStatistics.of(t)
    assert s.data_cells == 3
    assert s.no_data_cells == 1
    assert s.min == 1.0
    assert s.max == 3.0
    assert s.mean == pytest.approx(2.0)
    assert str(s).startswith("CellStatistics(data_cells=3")
    assert "stddev" in s.ascii_stats()


def test_empty_statistics_are_nan():
    s = CellStatistics.of(Tile.empty(CellType.from_name("int16"), 2, 2))
    assert s.data_cells == 0
    assert np.isnan(s.mean)


def test_projected_tile_keeps_context_through_map_and_convert():
    t = Tile(np.array([[1, -32768]], dtype=np.int16), CellType.from_name("int16"))
    prt = ProjectedRasterTile(t, Extent(0.0, 0.0, 2.0, 1.0), CRS("EPSG:32615"))
    assert prt.projected_extent == (prt.extent, prt.crs)
    bumped = prt.map_tile(lambda x: Tile(x.cells + 1, x.cell_type))
    assert bumped.tile.cells[0, 0] == 2
    assert bumped.context == prt.context
    f = prt.convert(CellType.from_name("float32"))
    assert f.cell_type.name == "float32"
    assert f.extent == prt.extent
    assert np.isnan(f.tile.cells[0, 1])
