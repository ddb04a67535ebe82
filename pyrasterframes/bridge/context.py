"""
Entry points for a scripting front end.

`RFContext` registers the library on a connection and exposes the conveniences a
notebook or REPL needs. Column arguments are column names or DuckDB expressions;
column builders return `duckdb.Expression`s for use in `relation.select(...)`.
"""
from __future__ import annotations

import json
from typing import Any, Iterable, Union

import duckdb
from shapely.geometry.base import BaseGeometry

from engine import frames
from engine.codec import geometry_from_wkb
from engine.frames import RasterFrameLayer
from engine.session import RasterFramesSession, with_rasterframes
from geo.crs import CRS
from raster.celltype import CellType, cell_types
from raster.layout import TileLayerMetadata
from raster.tile import Tile

ColumnLike = Union[str, duckdb.Expression]
Frame = Union[RasterFrameLayer, duckdb.DuckDBPyRelation]


def _col(c: ColumnLike) -> duckdb.Expression:
    return duckdb.ColumnExpression(c) if isinstance(c, str) else c


def _relation(frame: Frame) -> duckdb.DuckDBPyRelation:
    return frame.relation if isinstance(frame, RasterFrameLayer) else frame


class RFContext:
    def __init__(self, conn: duckdb.DuckDBPyConnection | None = None):
        self.session: RasterFramesSession = with_rasterframes(conn)

    @property
    def conn(self) -> duckdb.DuckDBPyConnection:
        return self.session.conn

    def cell_type(self, name: str) -> CellType:
        return CellType.from_name(name)

    def cell_types(self) -> list[str]:
        return cell_types()

    def generate_tile(self, cell_type: str, cols: int, rows: int, data: bytes) -> Tile:
        return Tile.from_bytes(data, self.cell_type(cell_type), cols, rows)

    def generate_geometry(self, data: bytes) -> BaseGeometry:
        return geometry_from_wkb(data)

    def as_layer(
        self,
        frame: Frame,
        spatial_key: str | None = None,
        tlm: TileLayerMetadata | str | None = None,
    ) -> RasterFrameLayer:
        if isinstance(frame, RasterFrameLayer):
            return frame
        if tlm is None:
            raise ValueError("Layer metadata is required to treat a relation as a layer")
        metadata = TileLayerMetadata.from_json(tlm) if isinstance(tlm, str) else tlm
        key = spatial_key or frames.spatial_key_column(frame)
        if key is None:
            raise ValueError("Relation has no spatial key column")
        return RasterFrameLayer(frame, metadata, key)

    def tile_columns(self, frame: Frame) -> list[duckdb.Expression]:
        return [duckdb.ColumnExpression(c) for c in frames.tile_columns(_relation(frame))]

    def spatial_key_column(self, frame: Frame) -> duckdb.Expression | None:
        if isinstance(frame, RasterFrameLayer):
            return duckdb.ColumnExpression(frame.spatial_key)
        key = frames.spatial_key_column(frame)
        return None if key is None else duckdb.ColumnExpression(key)

    def tile_to_int_array(self, col: ColumnLike) -> duckdb.Expression:
        return duckdb.FunctionExpression("rf_tile_to_array_int", _col(col))

    def tile_to_double_array(self, col: ColumnLike) -> duckdb.Expression:
        return duckdb.FunctionExpression("rf_tile_to_array_double", _col(col))

    def _local(self, op: str, col: ColumnLike, scalar: float | int) -> duckdb.Expression:
        return duckdb.FunctionExpression(f"rf_local_{op}", _col(col), duckdb.ConstantExpression(scalar))

    def local_add_scalar(self, col: ColumnLike, scalar: float) -> duckdb.Expression:
        return self._local("add", col, float(scalar))

    def local_add_scalar_int(self, col: ColumnLike, scalar: int) -> duckdb.Expression:
        return self._local("add", col, int(scalar))

    def local_subtract_scalar(self, col: ColumnLike, scalar: float) -> duckdb.Expression:
        return self._local("subtract", col, float(scalar))

    def local_subtract_scalar_int(self, col: ColumnLike, scalar: int) -> duckdb.Expression:
        return self._local("subtract", col, int(scalar))

    def local_multiply_scalar(self, col: ColumnLike, scalar: float) -> duckdb.Expression:
        return self._local("multiply", col, float(scalar))

    def local_multiply_scalar_int(self, col: ColumnLike, scalar: int) -> duckdb.Expression:
        return self._local("multiply", col, int(scalar))

    def local_divide_scalar(self, col: ColumnLike, scalar: float) -> duckdb.Expression:
        return self._local("divide", col, float(scalar))

    def local_divide_scalar_int(self, col: ColumnLike, scalar: int) -> duckdb.Expression:
        return self._local("divide", col, int(scalar))

    def local_less_scalar(self, col: ColumnLike, scalar: float) -> duckdb.Expression:
        return self._local("less", col, float(scalar))

    def local_less_scalar_int(self, col: ColumnLike, scalar: int) -> duckdb.Expression:
        return self._local("less", col, int(scalar))

    def local_less_equal_scalar(self, col: ColumnLike, scalar: float) -> duckdb.Expression:
        return self._local("less_equal", col, float(scalar))

    def local_less_equal_scalar_int(self, col: ColumnLike, scalar: int) -> duckdb.Expression:
        return self._local("less_equal", col, int(scalar))

    def local_greater_scalar(self, col: ColumnLike, scalar: float) -> duckdb.Expression:
        return self._local("greater", col, float(scalar))

    def local_greater_scalar_int(self, col: ColumnLike, scalar: int) -> duckdb.Expression:
        return self._local("greater", col, int(scalar))

    def local_greater_equal_scalar(self, col: ColumnLike, scalar: float) -> duckdb.Expression:
        return self._local("greater_equal", col, float(scalar))

    def local_greater_equal_scalar_int(self, col: ColumnLike, scalar: int) -> duckdb.Expression:
        return self._local("greater_equal", col, int(scalar))

    def local_equal_scalar(self, col: ColumnLike, scalar: float) -> duckdb.Expression:
        return self._local("equal", col, float(scalar))

    def local_equal_scalar_int(self, col: ColumnLike, scalar: int) -> duckdb.Expression:
        return self._local("equal", col, int(scalar))

    def local_unequal_scalar(self, col: ColumnLike, scalar: float) -> duckdb.Expression:
        return self._local("unequal", col, float(scalar))

    def local_unequal_scalar_int(self, col: ColumnLike, scalar: int) -> duckdb.Expression:
        return self._local("unequal", col, int(scalar))

    def to_int_raster(self, layer: RasterFrameLayer, colname: str, cols: int, rows: int) -> list[int]:
        pr = layer.to_raster(colname, cols, rows)
        return [int(v) for v in pr.tiles[0].to_array_int()]

    def to_double_raster(self, layer: RasterFrameLayer, colname: str, cols: int, rows: int) -> list[float]:
        pr = layer.to_raster(colname, cols, rows)
        return [float(v) for v in pr.tiles[0].to_array_double()]

    def tile_layer_metadata(self, layer: RasterFrameLayer) -> str:
        return json.dumps(layer.metadata.to_dict(), indent=2)

    def with_bounds(self, layer: RasterFrameLayer) -> RasterFrameLayer:
        return layer.with_geometry()

    def with_center(self, layer: RasterFrameLayer) -> RasterFrameLayer:
        return layer.with_center()

    def with_center_lat_lng(self, layer: RasterFrameLayer) -> RasterFrameLayer:
        return layer.with_center_lat_lng()

    def reproject_geometry(self, geometry_col: ColumnLike, src_name: str, dst_name: str) -> duckdb.Expression:
        # Parse now so bad CRS names fail here rather than per row.
        src = CRS.from_user_input(src_name).to_proj4()
        dst = CRS.from_user_input(dst_name).to_proj4()
        return duckdb.FunctionExpression(
            "st_reproject",
            _col(geometry_col),
            duckdb.ConstantExpression(src),
            duckdb.ConstantExpression(dst),
        )

    def list_to_seq(self, cols: Iterable[Any]) -> list[Any]:
        return list(cols)
