from __future__ import annotations

import logging
import threading
from typing import Any, Mapping, Sequence

import duckdb

from datasource.catalog import read_geotrellis_catalog
from datasource.geotiff import read_geotiff, write_geotiff
from engine import aggregates
from engine.duckdb_common import connect
from engine.frames import ColumnKind, RasterFrameLayer, create_relation
from engine.functions import register_functions, sql_functions
from geo.crs import CRS
from geo.extent import Extent
from raster.layout import TileDimensions
from raster.projected import ProjectedRaster
from raster.tile import Tile

logger = logging.getLogger(__name__)

_REGISTRATION_LOCK = threading.RLock()
_PROBE_FUNCTION = "rf_mask"


def _is_registered(conn: duckdb.DuckDBPyConnection) -> bool:
    row = conn.execute(
        "SELECT count(*) FROM duckdb_functions() WHERE function_name = ?", [_PROBE_FUNCTION]
    ).fetchone()
    return bool(row and row[0])


class RasterFramesSession:
    """
    A DuckDB connection with the rasterframes functions registered.

    Registration is idempotent per connection: creating several sessions over
    the same connection registers the functions once.
    """

    def __init__(self, conn: duckdb.DuckDBPyConnection | None = None):
        self.conn = conn if conn is not None else connect()
        self.register()

    def register(self) -> None:
        with _REGISTRATION_LOCK:
            if _is_registered(self.conn):
                return
            register_functions(self.conn)

    @staticmethod
    def function_names() -> list[str]:
        return [f.name for f in sql_functions()]

    def sql(self, query: str, params: Sequence[Any] | None = None) -> duckdb.DuckDBPyRelation:
        if params:
            return self.conn.sql(query, params=params)
        return self.conn.sql(query)

    def create_relation(
        self, columns: Sequence[tuple[str, ColumnKind]], rows: Sequence[Sequence[Any]], *, name: str | None = None
    ) -> duckdb.DuckDBPyRelation:
        return create_relation(self.conn, columns, rows, name=name)

    def read_geotiff(self, path: str | None = None, options: Mapping[str, Any] | None = None, **kwargs: Any):
        return read_geotiff(self.conn, options, path=path, **kwargs)

    def write_geotiff(
        self,
        frame: RasterFrameLayer | duckdb.DuckDBPyRelation,
        path: str | None = None,
        options: Mapping[str, Any] | None = None,
        **kwargs: Any,
    ) -> str:
        return write_geotiff(frame, options, path=path, **kwargs)

    def read_geotrellis_catalog(self, path: str | None = None, options: Mapping[str, Any] | None = None):
        return read_geotrellis_catalog(self.conn, options, path=path)

    def agg_raster(
        self,
        relation: duckdb.DuckDBPyRelation,
        prd: aggregates.ProjectedRasterDefinition,
        crs_col: str,
        extent_col: str,
        tile_col: str,
    ) -> tuple[Tile, Extent]:
        return aggregates.rf_agg_raster(relation, prd, crs_col, extent_col, tile_col)

    def collect(
        self,
        relation: duckdb.DuckDBPyRelation,
        dest_crs: CRS | str | None = None,
        dest_extent: Extent | None = None,
        raster_dims: TileDimensions | None = None,
    ) -> ProjectedRaster:
        crs = CRS.from_user_input(dest_crs) if dest_crs is not None else None
        return aggregates.collect(relation, crs, dest_extent, raster_dims)

    def close(self) -> None:
        self.conn.close()


def with_rasterframes(conn: duckdb.DuckDBPyConnection | None = None) -> RasterFramesSession:
    return RasterFramesSession(conn)
