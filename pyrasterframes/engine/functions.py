"""
Scalar SQL functions over raster and geometry columns.

Every function is a thin wrapper: decode the row values, delegate to `raster.*` /
`geo.*`, and re-encode keeping the input's spatial context. DuckDB's default NULL
handling applies (any NULL argument yields NULL), and declared parameter types make
the binder reject wrongly typed columns at planning time.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

import duckdb
import numpy as np
from duckdb.typing import BIGINT, BLOB, BOOLEAN, DOUBLE, INTEGER, VARCHAR
from shapely.geometry import Point

from datasource.download import download_bytes
from engine import codec
from engine.codec import (
    CRS_TYPE,
    DIMENSIONS_TYPE,
    EXTENT_TYPE,
    STATS_TYPE,
    RasterTypeError,
    encode_with_context,
    tile_extractor,
)
from geo.crs import CRS
from geo.extent import Extent
from geo.reproject import reproject_wkb
from raster import ops
from raster.celltype import CellType
from raster.projected import ProjectedRasterTile, TileContext
from raster.stats import CellStatistics
from raster.tile import Tile

logger = logging.getLogger(__name__)

POINT_XY_TYPE = duckdb.struct_type({"x": DOUBLE, "y": DOUBLE})


@dataclass(frozen=True)
class SqlFunction:
    """
    One scalar function as registered on a DuckDB connection.

    `fn` must take exactly one positional parameter per entry of `params`;
    DuckDB counts the callable's parameters when registering it.
    """

    name: str
    fn: Callable[..., Any]
    params: list[Any]
    return_type: Any
    side_effects: bool = False
    null_handling: str = "default"


def _masked(name: str, target: bytes, mask: bytes, op: Callable[[Tile, Tile], Tile]) -> bytes:
    t, tctx = tile_extractor(target)
    m, mctx = tile_extractor(mask)
    if tctx is None and mctx is not None:
        logger.warning(
            "%s: mask provided an extent and CRS but the target did not; "
            "the target defines the output so the mask's context is dropped",
            name,
        )
    elif tctx is not None and mctx is not None and tctx != mctx:
        logger.warning(
            "%s: target and mask carry different extents/CRSs; the target's is kept",
            name,
        )
    return encode_with_context(op(t, m), tctx)


def _masking(op: Callable[[Tile, Tile], Tile], name: str) -> Callable[[bytes, bytes], bytes]:
    def run(target: bytes, mask: bytes) -> bytes:
        return _masked(name, target, mask, op)

    return run


def _masking_by(op: Callable[[Tile, Tile, Any], Tile], name: str) -> Callable[[bytes, bytes, Any], bytes]:
    def run(target: bytes, mask: bytes, value: Any) -> bytes:
        return _masked(name, target, mask, lambda t, m: op(t, m, value))

    return run


def _tile_op(op: Callable[[Tile, Any], Tile]) -> Callable[[bytes, Any], bytes]:
    def run(raster: bytes, arg: Any) -> bytes:
        t, ctx = tile_extractor(raster)
        return encode_with_context(op(t, arg), ctx)

    return run


def _tile_op2(op: Callable[[Tile, Any, Any], Tile]) -> Callable[[bytes, Any, Any], bytes]:
    def run(raster: bytes, a: Any, b: Any) -> bytes:
        t, ctx = tile_extractor(raster)
        return encode_with_context(op(t, a, b), ctx)

    return run


def rf_proj_raster(tile: bytes, extent: dict, crs: dict) -> bytes:
    t, _ = tile_extractor(tile)
    prt = ProjectedRasterTile(t, codec.extent_from_struct(extent), codec.crs_from_struct(crs))
    return codec.encode_projected(prt)


def rf_realize_tile(raster: bytes) -> bytes:
    t, _ = tile_extractor(raster)
    return codec.encode_tile(t)


def rf_raster_ref_to_tile(ref: bytes) -> bytes:
    if codec.raster_kind(ref) != "raster_ref":
        raise RasterTypeError("rf_raster_ref_to_tile expects a raster reference")
    return codec.encode_projected(codec.decode_raster_ref(ref).realize())


def _context(raster: bytes) -> TileContext | None:
    # Raster refs know their context without reading cells.
    if codec.raster_kind(raster) == "raster_ref":
        ref = codec.decode_raster_ref(raster)
        return TileContext(ref.extent, ref.raster_source.crs)
    if codec.raster_kind(raster) == "proj_raster":
        return codec.decode_projected(raster).context
    codec.decode_raster(raster)
    return None


def rf_extent(raster: bytes | None) -> dict | None:
    # Registered with special null handling; a NULL raster has no extent.
    if raster is None:
        return None
    ctx = _context(raster)
    return None if ctx is None else codec.extent_struct(ctx.extent)


def rf_crs(raster: bytes | None) -> dict | None:
    if raster is None:
        return None
    ctx = _context(raster)
    return None if ctx is None else codec.crs_struct(ctx.crs)


def rf_tile(raster: bytes) -> bytes:
    if codec.raster_kind(raster) == "tile":
        return bytes(raster)
    return rf_realize_tile(raster)


def rf_cell_type(raster: bytes) -> str:
    t, _ = tile_extractor(raster)
    return t.cell_type.name


def rf_dimensions(raster: bytes) -> dict:
    t, _ = tile_extractor(raster)
    return codec.dimensions_struct(t.dimensions)


def rf_tile_stats(raster: bytes) -> dict:
    t, _ = tile_extractor(raster)
    return codec.stats_struct(CellStatistics.of(t))


def rf_data_cells(raster: bytes) -> int:
    t, _ = tile_extractor(raster)
    return t.data_cells()


def rf_no_data_cells(raster: bytes) -> int:
    t, _ = tile_extractor(raster)
    return t.size - t.data_cells()


def rf_is_no_data_tile(raster: bytes) -> bool:
    t, _ = tile_extractor(raster)
    return t.is_no_data_tile()


def rf_tile_to_array_int(raster: bytes) -> list[int]:
    t, _ = tile_extractor(raster)
    return [int(v) for v in t.to_array_int()]


def rf_tile_to_array_double(raster: bytes) -> list[float]:
    t, _ = tile_extractor(raster)
    return [float(v) for v in t.to_array_double()]


def rf_mk_crs(text: str) -> dict:
    return codec.crs_struct(CRS.from_user_input(text))


def rf_make_tile(cell_type: str, cols: int, rows: int, data: bytes) -> bytes:
    return codec.encode_tile(Tile.from_bytes(bytes(data), CellType.from_name(cell_type), cols, rows))


def rf_make_constant_tile(value: float, cols: int, rows: int, cell_type: str) -> bytes:
    ct = CellType.from_name(cell_type)
    return codec.encode_tile(Tile(np.full((int(rows), int(cols)), value), ct))


def rf_download(url: str) -> bytes:
    return download_bytes(url)


def st_reproject(geom: bytes, src: str, dst: str) -> bytes:
    return reproject_wkb(geom, src, dst)


def st_geometry(extent: dict) -> bytes:
    return codec.geometry_to_wkb(codec.extent_from_struct(extent).to_polygon())


def st_centroid(geom: bytes) -> bytes:
    return codec.geometry_to_wkb(codec.geometry_from_wkb(geom).centroid)


def st_centroid_xy(geom: bytes) -> dict:
    c = codec.geometry_from_wkb(geom).centroid
    return {"x": float(c.x), "y": float(c.y)}


def st_point(x: float, y: float) -> bytes:
    return codec.geometry_to_wkb(Point(float(x), float(y)))


def st_extent(geom: bytes) -> dict:
    return codec.extent_struct(Extent.from_bounds(codec.geometry_from_wkb(geom).bounds))


def _local(op: str) -> Callable[[bytes, float], bytes]:
    return _tile_op(lambda t, v: ops.local_scalar(op, t, v))


def sql_functions() -> list[SqlFunction]:
    int_list = duckdb.list_type(INTEGER)
    fns = [
        SqlFunction("rf_mask", _masking(ops.mask, "rf_mask"), [BLOB, BLOB], BLOB),
        SqlFunction("rf_inverse_mask", _masking(ops.inverse_mask, "rf_inverse_mask"), [BLOB, BLOB], BLOB),
        SqlFunction(
            "rf_mask_by_value", _masking_by(ops.mask_by_value, "rf_mask_by_value"), [BLOB, BLOB, INTEGER], BLOB
        ),
        SqlFunction(
            "rf_inverse_mask_by_value",
            _masking_by(ops.inverse_mask_by_value, "rf_inverse_mask_by_value"),
            [BLOB, BLOB, INTEGER],
            BLOB,
        ),
        SqlFunction(
            "rf_mask_by_values", _masking_by(ops.mask_by_values, "rf_mask_by_values"), [BLOB, BLOB, int_list], BLOB
        ),
        SqlFunction("rf_local_extract_bits", _tile_op2(ops.extract_bits), [BLOB, INTEGER, INTEGER], BLOB),
        SqlFunction("rf_convert_cell_type", _tile_op(ops.convert_cell_type), [BLOB, VARCHAR], BLOB),
        SqlFunction("rf_proj_raster", rf_proj_raster, [BLOB, EXTENT_TYPE, CRS_TYPE], BLOB),
        SqlFunction("rf_realize_tile", rf_realize_tile, [BLOB], BLOB),
        SqlFunction("rf_raster_ref_to_tile", rf_raster_ref_to_tile, [BLOB], BLOB),
        SqlFunction("st_reproject", st_reproject, [BLOB, VARCHAR, VARCHAR], BLOB),
        SqlFunction("rf_tile", rf_tile, [BLOB], BLOB),
        SqlFunction("rf_extent", rf_extent, [BLOB], EXTENT_TYPE, null_handling="special"),
        SqlFunction("rf_crs", rf_crs, [BLOB], CRS_TYPE, null_handling="special"),
        SqlFunction("rf_cell_type", rf_cell_type, [BLOB], VARCHAR),
        SqlFunction("rf_dimensions", rf_dimensions, [BLOB], DIMENSIONS_TYPE),
        SqlFunction("rf_tile_stats", rf_tile_stats, [BLOB], STATS_TYPE),
        SqlFunction("rf_data_cells", rf_data_cells, [BLOB], BIGINT),
        SqlFunction("rf_no_data_cells", rf_no_data_cells, [BLOB], BIGINT),
        SqlFunction("rf_is_no_data_tile", rf_is_no_data_tile, [BLOB], BOOLEAN),
        SqlFunction("rf_tile_to_array_int", rf_tile_to_array_int, [BLOB], int_list),
        SqlFunction("rf_tile_to_array_double", rf_tile_to_array_double, [BLOB], duckdb.list_type(DOUBLE)),
        SqlFunction("rf_mk_crs", rf_mk_crs, [VARCHAR], CRS_TYPE),
        SqlFunction("rf_make_tile", rf_make_tile, [VARCHAR, INTEGER, INTEGER, BLOB], BLOB),
        SqlFunction(
            "rf_make_constant_tile", rf_make_constant_tile, [DOUBLE, INTEGER, INTEGER, VARCHAR], BLOB
        ),
        SqlFunction("rf_download", rf_download, [VARCHAR], BLOB, side_effects=True),
        SqlFunction("st_geometry", st_geometry, [EXTENT_TYPE], BLOB),
        SqlFunction("st_centroid", st_centroid, [BLOB], BLOB),
        SqlFunction("st_centroid_xy", st_centroid_xy, [BLOB], POINT_XY_TYPE),
        SqlFunction("st_point", st_point, [DOUBLE, DOUBLE], BLOB),
        SqlFunction("st_extent", st_extent, [BLOB], EXTENT_TYPE),
    ]
    for op in ops.LOCAL_OPS:
        fns.append(SqlFunction(f"rf_local_{op}", _local(op), [BLOB, DOUBLE], BLOB))
    return fns


def register_functions(conn: duckdb.DuckDBPyConnection) -> list[str]:
    names: list[str] = []
    for f in sql_functions():
        conn.create_function(
            f.name, f.fn, f.params, f.return_type, side_effects=f.side_effects, null_handling=f.null_handling
        )
        names.append(f.name)
    logger.debug("Registered %d rasterframes functions", len(names))
    return names
