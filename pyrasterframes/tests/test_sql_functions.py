import logging

import duckdb
import numpy as np
import pytest

from engine import codec
from engine.functions import register_functions, sql_functions
from engine.session import RasterFramesSession
from geo.crs import CRS
from geo.extent import Extent
from raster.celltype import CellType
from raster.projected import ProjectedRasterTile
from raster.tile import Tile

ND = -32768
UTM = CRS("EPSG:32615")


def _int16(rows):
    return Tile(np.array(rows, dtype=np.int16), CellType.from_name("int16"))


def _frame(session, target, mask, name="t"):
    return session.create_relation([("target", "raster"), ("mask", "raster")], [[target, mask]], name=name)


def _one(session, query):
    return session.sql(query).fetchone()[0]


def test_registration_is_idempotent(session):
    RasterFramesSession(session.conn)
    RasterFramesSession(session.conn)
    (n,) = session.sql("SELECT count(*) FROM duckdb_functions() WHERE function_name = 'rf_mask'").fetchone()
    assert n == 1
    assert "rf_local_add" in session.function_names()


def test_every_function_registers_on_a_fresh_connection():
    conn = duckdb.connect()
    try:
        names = register_functions(conn)
        found = {r[0] for r in conn.execute("SELECT DISTINCT function_name FROM duckdb_functions()").fetchall()}
    finally:
        conn.close()
    assert names == [f.name for f in sql_functions()]
    assert set(names) <= found


@pytest.mark.parametrize(
    "query",
    [
        "SELECT rf_mask_by_value(target, mask, 8) FROM t",
        "SELECT rf_inverse_mask(target, mask) FROM t",
        "SELECT rf_local_extract_bits(target, 1, 2) FROM t",
        "SELECT rf_convert_cell_type(target, 'int32') FROM t",
        "SELECT rf_local_multiply(target, 2) FROM t",
    ],
)
def test_fixed_arity_functions_run(session, query):
    _frame(session, _int16([[7, 8, 9]]), _int16([[7, 8, 9]]))
    assert codec.decode_tile(_one(session, query)).size == 3


def test_context_accessors_return_null_for_plain_tiles_and_null_input(session):
    assert _one(session, "SELECT rf_extent(NULL::BLOB)") is None
    assert _one(session, "SELECT rf_crs(NULL::BLOB)") is None
    _frame(session, _int16([[1, 2]]), None)
    row = session.sql("SELECT rf_extent(target), rf_crs(target), rf_extent(mask) FROM t").fetchone()
    assert row == (None, None, None)


def test_mask_through_sql(session):
    _frame(session, _int16([[1, 2], [3, 4]]), _int16([[0, ND], [ND, 0]]))
    out = codec.decode_tile(_one(session, "SELECT rf_mask(target, mask) FROM t"))
    assert out.cells.tolist() == [[1, ND], [ND, 4]]


def test_mask_by_values_through_sql(session):
    _frame(session, _int16([[1, 2, 3]]), _int16([[7, 8, 9]]))
    out = codec.decode_tile(_one(session, "SELECT rf_mask_by_values(target, mask, [7, 9]) FROM t"))
    assert out.cells.tolist() == [[ND, 2, ND]]
    out = codec.decode_tile(_one(session, "SELECT rf_inverse_mask_by_value(target, mask, 8) FROM t"))
    assert out.cells.tolist() == [[ND, 2, ND]]


def test_mask_keeps_target_context(session):
    e = Extent(500000.0, 4000000.0, 500020.0, 4000010.0)
    target = ProjectedRasterTile(_int16([[1, 2]]), e, UTM)
    _frame(session, target, _int16([[ND, 0]]))
    out = codec.decode_raster(_one(session, "SELECT rf_mask(target, mask) FROM t"))
    assert isinstance(out, ProjectedRasterTile)
    assert out.extent == e
    assert out.tile.cells.tolist() == [[ND, 2]]


def test_mask_warns_on_context_mismatch(session, caplog):
    a = ProjectedRasterTile(_int16([[1, 2]]), Extent(0.0, 0.0, 2.0, 1.0), UTM)
    b = ProjectedRasterTile(_int16([[ND, 0]]), Extent(5.0, 5.0, 7.0, 6.0), UTM)
    _frame(session, a, b)
    with caplog.at_level(logging.WARNING, logger="engine.functions"):
        session.sql("SELECT rf_mask(target, mask) FROM t").fetchall()
    assert any("different extents" in r.getMessage() for r in caplog.records)


def test_mask_warns_when_only_mask_has_context(session, caplog):
    mask = ProjectedRasterTile(_int16([[ND, 0]]), Extent(0.0, 0.0, 2.0, 1.0), UTM)
    _frame(session, _int16([[1, 2]]), mask)
    with caplog.at_level(logging.WARNING, logger="engine.functions"):
        out = codec.decode_raster(_one(session, "SELECT rf_mask(target, mask) FROM t"))
    assert isinstance(out, Tile)
    assert any("context is dropped" in r.getMessage() for r in caplog.records)


def test_wrongly_typed_argument_is_rejected_by_binder(session):
    with pytest.raises(duckdb.Error):
        session.sql("SELECT rf_mask({'a': 1}, {'a': 2})").fetchall()


def test_non_raster_blob_raises(session):
    with pytest.raises(duckdb.Error):
        session.sql("SELECT rf_data_cells('\\x00\\x01'::BLOB)").fetchall()


def test_null_propagates(session):
    assert _one(session, "SELECT rf_data_cells(NULL::BLOB)") is None
    _frame(session, _int16([[1]]), None)
    assert _one(session, "SELECT rf_mask(target, mask) FROM t") is None


def test_tile_inspection(session):
    _frame(session, _int16([[1, ND], [3, 4]]), None)
    row = session.sql(
        "SELECT rf_cell_type(target), rf_dimensions(target), rf_data_cells(target), "
        "rf_no_data_cells(target), rf_is_no_data_tile(target), rf_tile_stats(target), "
        "rf_tile_to_array_int(target), rf_extent(target) FROM t"
    ).fetchone()
    assert row[0] == "int16"
    assert row[1] == {"cols": 2, "rows": 2}
    assert row[2:5] == (3, 1, False)
    assert row[5]["min"] == 1.0
    assert row[5]["max"] == 4.0
    assert row[6] == [1, -2147483648, 3, 4]
    assert row[7] is None


def test_proj_raster_constructor_and_accessors(session):
    _frame(session, _int16([[1, 2]]), None)
    row = session.sql(
        "SELECT rf_extent(p), rf_crs(p), rf_cell_type(rf_tile(p)) FROM ("
        "SELECT rf_proj_raster(target, {'xmin': 0.0, 'ymin': 0.0, 'xmax': 2.0, 'ymax': 1.0}, "
        "rf_mk_crs('EPSG:32615')) AS p FROM t)"
    ).fetchone()
    assert row[0] == {"xmin": 0.0, "ymin": 0.0, "xmax": 2.0, "ymax": 1.0}
    assert CRS.from_user_input(row[1]) == UTM
    assert row[2] == "int16"


def test_make_tiles(session):
    t = codec.decode_tile(_one(session, "SELECT rf_make_constant_tile(3, 4, 2, 'uint8')"))
    assert (t.cols, t.rows) == (4, 2)
    assert t.cells.tolist() == [[3] * 4] * 2
    raw = np.array([1, 2], dtype="<i2").tobytes()
    t = codec.decode_tile(session.sql("SELECT rf_make_tile('int16', 2, 1, ?)", params=[raw]).fetchone()[0])
    assert t.cells.tolist() == [[1, 2]]


def test_local_ops_and_extract_bits(session):
    _frame(session, _int16([[5, ND]]), None)
    out = codec.decode_tile(_one(session, "SELECT rf_local_add(target, 2) FROM t"))
    assert out.cells.tolist() == [[7, ND]]
    out = codec.decode_tile(_one(session, "SELECT rf_local_greater(target, 4) FROM t"))
    assert out.cells.tolist() == [[True, False]]
    out = codec.decode_tile(_one(session, "SELECT rf_local_extract_bits(target, 0, 1) FROM t"))
    assert out.cells.tolist() == [[1, ND]]
    out = codec.decode_tile(_one(session, "SELECT rf_convert_cell_type(target, 'float64') FROM t"))
    assert out.cell_type.name == "float64"


def test_st_reproject(session):
    xy = _one(session, "SELECT st_centroid_xy(st_reproject(st_point(180, 0), 'EPSG:4326', 'EPSG:3857'))")
    assert xy["x"] == pytest.approx(20037508.34, rel=1e-6)
    assert xy["y"] == pytest.approx(0.0, abs=1e-6)


def test_geometry_helpers(session):
    ext = _one(
        session,
        "SELECT st_extent(st_geometry({'xmin': 1.0, 'ymin': 2.0, 'xmax': 3.0, 'ymax': 4.0}))",
    )
    assert ext == {"xmin": 1.0, "ymin": 2.0, "xmax": 3.0, "ymax": 4.0}
    c = _one(session, "SELECT st_centroid_xy(st_geometry({'xmin': 0.0, 'ymin': 0.0, 'xmax': 2.0, 'ymax': 2.0}))")
    assert c == {"x": 1.0, "y": 1.0}


def test_raster_ref_functions(session, small_tif):
    layer = session.read_geotiff(str(small_tif), lazyTiles=True, tileWidth=4, tileHeight=4)
    rel = layer.relation.filter("spatial_key = {'col': 0, 'row': 0}")
    row = rel.project("rf_extent(b_1), rf_data_cells(rf_raster_ref_to_tile(b_1))").fetchone()
    assert row[0] == {"xmin": 500000.0, "ymin": 4000040.0, "xmax": 500040.0, "ymax": 4000080.0}
    assert row[1] == 16
    with pytest.raises(duckdb.Error):
        layer.relation.project("rf_raster_ref_to_tile(rf_realize_tile(b_1))").fetchall()


def test_download_local_file(session, small_tif):
    data = _one(session, f"SELECT rf_download('file://{small_tif}')")
    assert bytes(data) == small_tif.read_bytes()
