"""
Row encoding of raster and vector values in DuckDB.

Raster values (tiles, projected raster tiles, raster references) are BLOBs with a
4-byte magic prefix so one BLOB parameter can accept any of them. Small value
objects (extent, CRS, dimensions, keys, statistics) are STRUCTs; geometries are WKB.
"""
from __future__ import annotations

import struct
from typing import Any, Union

import duckdb
from duckdb.typing import BIGINT, DOUBLE, INTEGER, VARCHAR
from shapely import wkb as shapely_wkb
from shapely.geometry.base import BaseGeometry

from datasource.raster_ref import RasterRef
from geo.crs import CRS
from geo.extent import Extent
from raster.celltype import CellType
from raster.layout import SpatialKey, TileDimensions
from raster.projected import ProjectedRasterTile, TileContext
from raster.stats import CellStatistics
from raster.tile import Tile

TILE_MAGIC = b"RFT\x01"
PROJECTED_MAGIC = b"RFP\x01"
REF_MAGIC = b"RFR\x01"

RasterValue = Union[Tile, ProjectedRasterTile, RasterRef]

EXTENT_TYPE = duckdb.struct_type({"xmin": DOUBLE, "ymin": DOUBLE, "xmax": DOUBLE, "ymax": DOUBLE})
CRS_TYPE = duckdb.struct_type({"crsProj4": VARCHAR})
DIMENSIONS_TYPE = duckdb.struct_type({"cols": INTEGER, "rows": INTEGER})
SPATIAL_KEY_TYPE = duckdb.struct_type({"col": INTEGER, "row": INTEGER})
STATS_TYPE = duckdb.struct_type(
    {
        "data_cells": BIGINT,
        "no_data_cells": BIGINT,
        "min": DOUBLE,
        "max": DOUBLE,
        "mean": DOUBLE,
        "variance": DOUBLE,
    }
)

# DDL spellings of the struct types above.
EXTENT_SQL = "STRUCT(xmin DOUBLE, ymin DOUBLE, xmax DOUBLE, ymax DOUBLE)"
CRS_SQL = 'STRUCT("crsProj4" VARCHAR)'
DIMENSIONS_SQL = "STRUCT(cols INTEGER, \"rows\" INTEGER)"
SPATIAL_KEY_SQL = 'STRUCT(col INTEGER, "row" INTEGER)'

_TILE_HEADER = struct.Struct("<II")
_EXTENT = struct.Struct("<4d")
_U16 = struct.Struct("<H")


class RasterTypeError(TypeError):
    """
    Value does not conform to a raster type.
    """


def encode_tile(tile: Tile) -> bytes:
    name = tile.cell_type.name.encode("ascii")
    return b"".join(
        [TILE_MAGIC, bytes([len(name)]), name, _TILE_HEADER.pack(tile.cols, tile.rows), tile.to_bytes()]
    )


def _decode_tile_body(data: memoryview) -> Tile:
    n = data[0]
    name = bytes(data[1 : 1 + n]).decode("ascii")
    off = 1 + n
    cols, rows = _TILE_HEADER.unpack_from(data, off)
    off += _TILE_HEADER.size
    return Tile.from_bytes(bytes(data[off:]), CellType.from_name(name), cols, rows)


def decode_tile(data: bytes) -> Tile:
    mv = memoryview(bytes(data))
    if bytes(mv[:4]) != TILE_MAGIC:
        raise RasterTypeError("Value is not an encoded tile")
    return _decode_tile_body(mv[4:])


def encode_projected(prt: ProjectedRasterTile) -> bytes:
    e = prt.extent
    proj4 = prt.crs.to_proj4().encode("utf-8")
    return b"".join(
        [
            PROJECTED_MAGIC,
            _EXTENT.pack(e.xmin, e.ymin, e.xmax, e.ymax),
            _U16.pack(len(proj4)),
            proj4,
            encode_tile(prt.tile),
        ]
    )


def decode_projected(data: bytes) -> ProjectedRasterTile:
    mv = memoryview(bytes(data))
    if bytes(mv[:4]) != PROJECTED_MAGIC:
        raise RasterTypeError("Value is not an encoded projected raster tile")
    off = 4
    xmin, ymin, xmax, ymax = _EXTENT.unpack_from(mv, off)
    off += _EXTENT.size
    (n,) = _U16.unpack_from(mv, off)
    off += _U16.size
    proj4 = bytes(mv[off : off + n]).decode("utf-8")
    off += n
    tile = decode_tile(bytes(mv[off:]))
    return ProjectedRasterTile(tile, Extent(xmin, ymin, xmax, ymax), CRS(proj4))


def encode_raster_ref(ref: RasterRef) -> bytes:
    return REF_MAGIC + ref.to_json().encode("utf-8")


def decode_raster_ref(data: bytes) -> RasterRef:
    raw = bytes(data)
    if raw[:4] != REF_MAGIC:
        raise RasterTypeError("Value is not an encoded raster reference")
    return RasterRef.from_json(raw[4:].decode("utf-8"))


def raster_kind(data: Any) -> str | None:
    """
    'tile', 'proj_raster', 'raster_ref' or None for non-raster values.
    """
    if not isinstance(data, (bytes, bytearray, memoryview)):
        return None
    head = bytes(data[:4])
    if head == TILE_MAGIC:
        return "tile"
    if head == PROJECTED_MAGIC:
        return "proj_raster"
    if head == REF_MAGIC:
        return "raster_ref"
    return None


def encode_raster(value: RasterValue) -> bytes:
    if isinstance(value, Tile):
        return encode_tile(value)
    if isinstance(value, ProjectedRasterTile):
        return encode_projected(value)
    if isinstance(value, RasterRef):
        return encode_raster_ref(value)
    raise RasterTypeError(f"Cannot encode {type(value).__name__} as a raster")


def decode_raster(data: Any) -> RasterValue:
    kind = raster_kind(data)
    if kind == "tile":
        return decode_tile(data)
    if kind == "proj_raster":
        return decode_projected(data)
    if kind == "raster_ref":
        return decode_raster_ref(data)
    raise RasterTypeError(f"Input of type '{type(data).__name__}' does not conform to a raster type")


def tile_extractor(value: Any) -> tuple[Tile, TileContext | None]:
    """
    Tile and optional spatial context of any raster value.

    Raster references are realized.
    """
    if not isinstance(value, (Tile, ProjectedRasterTile, RasterRef)):
        value = decode_raster(value)
    if isinstance(value, RasterRef):
        value = value.realize()
    if isinstance(value, ProjectedRasterTile):
        return value.tile, value.context
    return value, None


def encode_with_context(tile: Tile, ctx: TileContext | None) -> bytes:
    if ctx is None:
        return encode_tile(tile)
    return encode_projected(ctx.to_projected_raster_tile(tile))


def extent_struct(e: Extent) -> dict[str, float]:
    return e.to_dict()


def extent_from_struct(d: Any) -> Extent:
    if isinstance(d, Extent):
        return d
    return Extent.from_dict(d)


def crs_struct(crs: CRS) -> dict[str, str]:
    return {"crsProj4": crs.to_proj4()}


def crs_from_struct(value: Any) -> CRS:
    return CRS.from_user_input(value)


def dimensions_struct(d: TileDimensions) -> dict[str, int]:
    return d.to_dict()


def spatial_key_from_struct(d: dict[str, Any]) -> SpatialKey:
    return SpatialKey(int(d["col"]), int(d["row"]))


def stats_struct(s: CellStatistics) -> dict[str, Any]:
    return s.to_dict()


def geometry_to_wkb(geom: BaseGeometry) -> bytes:
    return shapely_wkb.dumps(geom)


def geometry_from_wkb(data: Any) -> BaseGeometry:
    return shapely_wkb.loads(bytes(data))
