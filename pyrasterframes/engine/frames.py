"""
Relation helpers: building relations from Python values, discovering raster and
spatial columns, and layer-aware extension methods.

Column discovery goes by SQL type for struct columns and by the first non-NULL
value for BLOB columns (raster magic prefix, otherwise WKB).
"""
from __future__ import annotations

import base64
import html
import itertools
import re
import warnings
from dataclasses import dataclass, replace
from typing import Any, Iterable, Literal, Sequence

import duckdb
import numpy as np
from rasterio.errors import NotGeoreferencedWarning
from rasterio.io import MemoryFile
from shapely import wkb as shapely_wkb
from shapely.errors import ShapelyError

from engine import codec
from engine.duckdb_common import quote_ident
from geo.crs import CRS
from geo.extent import Extent
from raster.layout import LayoutDefinition, TileDimensions, TileLayerMetadata
from raster.projected import ProjectedRaster, ProjectedRasterTile
from raster.tile import Tile

ColumnKind = Literal["raster", "geometry", "extent", "crs", "spatial_key", "dimensions", "varchar", "int", "bigint", "double"]

_SQL_TYPES: dict[str, str] = {
    "raster": "BLOB",
    "geometry": "BLOB",
    "extent": codec.EXTENT_SQL,
    "crs": codec.CRS_SQL,
    "spatial_key": codec.SPATIAL_KEY_SQL,
    "dimensions": codec.DIMENSIONS_SQL,
    "varchar": "VARCHAR",
    "int": "INTEGER",
    "bigint": "BIGINT",
    "double": "DOUBLE",
}

_PLACEHOLDERS: dict[str, str] = {
    "extent": "{'xmin': ?, 'ymin': ?, 'xmax': ?, 'ymax': ?}",
    "crs": "{'crsProj4': ?}",
    "spatial_key": "{'col': ?, 'row': ?}",
    "dimensions": "{'cols': ?, 'rows': ?}",
}

RASTER_KINDS = frozenset({"tile", "proj_raster", "raster_ref"})

_table_ids = itertools.count(1)


def _flatten(kind: str, value: Any) -> list[Any]:
    if kind == "extent":
        e = value if isinstance(value, Extent) else Extent.from_dict(value)
        return [e.xmin, e.ymin, e.xmax, e.ymax]
    if kind == "crs":
        return [CRS.from_user_input(value).to_proj4()]
    if kind == "spatial_key":
        return [int(value.col), int(value.row)]
    if kind == "dimensions":
        return [int(value.cols), int(value.rows)]
    if kind == "raster":
        return [None if value is None else codec.encode_raster(value)]
    if kind == "geometry":
        return [None if value is None else codec.geometry_to_wkb(value)]
    return [value]


def create_relation(
    conn: duckdb.DuckDBPyConnection,
    columns: Sequence[tuple[str, ColumnKind]],
    rows: Iterable[Sequence[Any]],
    *,
    name: str | None = None,
) -> duckdb.DuckDBPyRelation:
    """
    Materialize Python values into a temp table and return it as a relation.

    Struct columns (extent, CRS, keys, dimensions) must not be None.
    """
    table = name or f"rf_frame_{next(_table_ids)}"
    ddl = ", ".join(f"{quote_ident(c)} {_SQL_TYPES[k]}" for c, k in columns)
    conn.execute(f"CREATE OR REPLACE TEMP TABLE {quote_ident(table)} ({ddl})")
    placeholders = ", ".join(_PLACEHOLDERS.get(k, "?") for _c, k in columns)
    params = [[p for (_c, k), v in zip(columns, row) for p in _flatten(k, v)] for row in rows]
    if params:
        conn.executemany(f"INSERT INTO {quote_ident(table)} VALUES ({placeholders})", params)
    return conn.table(table)


def _norm_type(t: Any) -> str:
    return re.sub(r'[\s"]', "", str(t)).upper()


def _columns_of_type(rel: duckdb.DuckDBPyRelation, sql_type: Any) -> list[str]:
    want = _norm_type(sql_type)
    return [c for c, t in zip(rel.columns, rel.types) if _norm_type(t) == want]


def _sample(rel: duckdb.DuckDBPyRelation, col: str) -> Any:
    q = quote_ident(col)
    row = rel.project(q).filter(f"{q} IS NOT NULL").limit(1).fetchone()
    return None if row is None else row[0]


def _is_wkb(value: Any) -> bool:
    try:
        shapely_wkb.loads(bytes(value))
    except (ShapelyError, ValueError, TypeError):
        return False
    return True


def blob_column_kinds(rel: duckdb.DuckDBPyRelation) -> dict[str, str]:
    out: dict[str, str] = {}
    for c in _columns_of_type(rel, "BLOB"):
        v = _sample(rel, c)
        if v is None:
            continue
        kind = codec.raster_kind(v)
        if kind is None and _is_wkb(v):
            kind = "geometry"
        if kind is not None:
            out[c] = kind
    return out


def tile_columns(rel: duckdb.DuckDBPyRelation) -> list[str]:
    return [c for c, k in blob_column_kinds(rel).items() if k in RASTER_KINDS]


def proj_raster_columns(rel: duckdb.DuckDBPyRelation) -> list[str]:
    return [c for c, k in blob_column_kinds(rel).items() if k == "proj_raster"]


def geometry_columns(rel: duckdb.DuckDBPyRelation) -> list[str]:
    return [c for c, k in blob_column_kinds(rel).items() if k == "geometry"]


def extent_columns(rel: duckdb.DuckDBPyRelation) -> list[str]:
    return _columns_of_type(rel, codec.EXTENT_TYPE)


def crs_columns(rel: duckdb.DuckDBPyRelation) -> list[str]:
    return _columns_of_type(rel, codec.CRS_TYPE)


def spatial_key_column(rel: duckdb.DuckDBPyRelation) -> str | None:
    keys = _columns_of_type(rel, codec.SPATIAL_KEY_TYPE)
    return keys[0] if keys else None


def with_prefixed_column_names(rel: duckdb.DuckDBPyRelation, prefix: str) -> duckdb.DuckDBPyRelation:
    return rel.project(", ".join(f"{quote_ident(c)} AS {quote_ident(prefix + c)}" for c in rel.columns))


def _require_new_column(rel: duckdb.DuckDBPyRelation, name: str) -> None:
    if name in rel.columns:
        raise ValueError(f"Column '{name}' already exists")


def _single(cols: list[str], what: str) -> str:
    if len(cols) != 1:
        raise ValueError(f"Expected exactly one {what} column, found {cols}")
    return cols[0]


def with_geometry(rel: duckdb.DuckDBPyRelation, extent_col: str | None = None, name: str = "geometry") -> duckdb.DuckDBPyRelation:
    """
    Add the extent's footprint polygon (WKB) as `name`.
    """
    _require_new_column(rel, name)
    col = extent_col or _single(extent_columns(rel), "extent")
    return rel.project(f"*, st_geometry({quote_ident(col)}) AS {quote_ident(name)}")


def with_center(rel: duckdb.DuckDBPyRelation, extent_col: str | None = None, name: str = "center") -> duckdb.DuckDBPyRelation:
    _require_new_column(rel, name)
    col = extent_col or _single(extent_columns(rel), "extent")
    return rel.project(f"*, st_centroid(st_geometry({quote_ident(col)})) AS {quote_ident(name)}")


def _lat_lng_projection(rel: duckdb.DuckDBPyRelation, extent_sql: str, proj4_sql: str, name: str) -> duckdb.DuckDBPyRelation:
    tmp = "__rf_center_xy"
    step = rel.project(
        f"*, st_centroid_xy(st_reproject(st_centroid(st_geometry({extent_sql})), {proj4_sql}, 'EPSG:4326')) "
        f"AS {tmp}"
    )
    return step.project(
        f"* EXCLUDE ({tmp}), {{'lat': struct_extract({tmp}, 'y'), 'lng': struct_extract({tmp}, 'x')}} "
        f"AS {quote_ident(name)}"
    )


def with_center_lat_lng(
    rel: duckdb.DuckDBPyRelation,
    extent_col: str | None = None,
    crs_col: str | None = None,
    name: str = "center",
) -> duckdb.DuckDBPyRelation:
    """
    Add the extent center in EPSG:4326 as `STRUCT(lat, lng)`.
    """
    _require_new_column(rel, name)
    ext = extent_col or _single(extent_columns(rel), "extent")
    crs = crs_col or _single(crs_columns(rel), "CRS")
    return _lat_lng_projection(rel, quote_ident(ext), f"struct_extract({quote_ident(crs)}, 'crsProj4')", name)


def _sql_str(text: str) -> str:
    return "'" + str(text).replace("'", "''") + "'"


def key_extent_sql(layout: LayoutDefinition, key_col: str) -> str:
    """
    SQL struct expression computing a spatial key's extent in `layout`.
    """
    tl = layout.tile_layout
    e = layout.extent
    w = e.width / tl.layout_cols
    h = e.height / tl.layout_rows
    col = f"struct_extract({quote_ident(key_col)}, 'col')"
    row = f"struct_extract({quote_ident(key_col)}, 'row')"
    return (
        f"{{'xmin': {e.xmin!r} + {col} * {w!r}, "
        f"'ymin': {e.ymax!r} - ({row} + 1) * {h!r}, "
        f"'xmax': {e.xmin!r} + ({col} + 1) * {w!r}, "
        f"'ymax': {e.ymax!r} - {row} * {h!r}}}"
    )


@dataclass(frozen=True, eq=False)
class RasterFrameLayer:
    """
    A relation known to be a tiled layer: a spatial key column plus layer metadata.
    """

    relation: duckdb.DuckDBPyRelation
    metadata: TileLayerMetadata
    spatial_key: str = "spatial_key"

    def __post_init__(self) -> None:
        if self.spatial_key not in self.relation.columns:
            raise ValueError(f"Layer relation has no spatial key column '{self.spatial_key}'")

    @property
    def columns(self) -> list[str]:
        return list(self.relation.columns)

    @property
    def crs(self) -> CRS:
        return self.metadata.crs

    def tile_columns(self) -> list[str]:
        return tile_columns(self.relation)

    def with_relation(self, relation: duckdb.DuckDBPyRelation) -> "RasterFrameLayer":
        return replace(self, relation=relation)

    def fetchall(self) -> list[tuple]:
        return self.relation.fetchall()

    def count(self) -> int:
        row = self.relation.aggregate("count(*)").fetchone()
        return int(row[0]) if row else 0

    def key_extent_sql(self) -> str:
        return key_extent_sql(self.metadata.layout, self.spatial_key)

    def with_prefixed_column_names(self, prefix: str) -> "RasterFrameLayer":
        return RasterFrameLayer(
            with_prefixed_column_names(self.relation, prefix), self.metadata, prefix + self.spatial_key
        )

    def with_geometry(self, name: str = "geometry") -> "RasterFrameLayer":
        _require_new_column(self.relation, name)
        return self.with_relation(
            self.relation.project(f"*, st_geometry({self.key_extent_sql()}) AS {quote_ident(name)}")
        )

    def with_center(self, name: str = "center") -> "RasterFrameLayer":
        _require_new_column(self.relation, name)
        return self.with_relation(
            self.relation.project(f"*, st_centroid(st_geometry({self.key_extent_sql()})) AS {quote_ident(name)}")
        )

    def with_center_lat_lng(self, name: str = "center") -> "RasterFrameLayer":
        _require_new_column(self.relation, name)
        rel = _lat_lng_projection(self.relation, self.key_extent_sql(), _sql_str(self.crs.to_proj4()), name)
        return self.with_relation(rel)

    def to_multiband_raster(
        self,
        tile_cols: Sequence[str] | None = None,
        cols: int | None = None,
        rows: int | None = None,
        sampler: str = "nearest",
    ) -> ProjectedRaster:
        """
        Stitch the layer's tiles into one raster, one band per tile column.

        Defaults to the layer's full size; other sizes are resampled.
        """
        from engine.aggregates import ProjectedRasterDefinition, rf_agg_raster

        bands = list(tile_cols) if tile_cols else self.tile_columns()
        if not bands:
            raise ValueError("Layer has no tile columns")
        prd = ProjectedRasterDefinition.from_layer_metadata(self.metadata, sampler)
        if cols is not None and rows is not None:
            prd = replace(prd, total_cols=int(cols), total_rows=int(rows))
        rel = self.relation.project(
            f"{{'crsProj4': {_sql_str(self.crs.to_proj4())}}} AS __rf_crs, "
            f"{self.key_extent_sql()} AS __rf_extent, *"
        )
        tiles = [rf_agg_raster(rel, prd, "__rf_crs", "__rf_extent", c)[0] for c in bands]
        return ProjectedRaster(tuple(tiles), prd.extent, prd.crs)

    def to_raster(self, tile_col: str | None = None, cols: int | None = None, rows: int | None = None) -> ProjectedRaster:
        col = tile_col or _single(self.tile_columns(), "tile")
        return self.to_multiband_raster([col], cols, rows)

    def total_dimensions(self) -> TileDimensions:
        return self.metadata.total_dimensions()

    def to_markdown(self, limit: int = 5, truncate: bool = True) -> str:
        return to_markdown(self.relation, limit=limit, truncate=truncate)

    def to_html(self, limit: int = 5, truncate: bool = False, render_tiles: bool = True) -> str:
        return to_html(self.relation, limit=limit, truncate=truncate, render_tiles=render_tiles)


def _describe_raster(v: Any) -> str:
    kind = codec.raster_kind(v)
    if kind == "raster_ref":
        ref = codec.decode_raster_ref(v)
        return f"RasterRef({ref.source}, band={ref.band})"
    r = codec.decode_raster(v)
    if isinstance(r, ProjectedRasterTile):
        e = r.extent
        return f"ProjectedRasterTile({r.cell_type.name}, {r.cols}x{r.rows}, [{e.xmin:g}, {e.ymin:g}, {e.xmax:g}, {e.ymax:g}])"
    return repr(r)


def render_value(v: Any, truncate: bool = True, max_len: int = 40) -> str:
    if v is None:
        text = "null"
    elif isinstance(v, (bytes, bytearray, memoryview)):
        if codec.raster_kind(v):
            text = _describe_raster(v)
        elif _is_wkb(v):
            text = shapely_wkb.loads(bytes(v)).wkt
        else:
            text = bytes(v).hex()
    elif isinstance(v, dict):
        text = "{" + ", ".join(f"{k}: {render_value(x, truncate=False)}" for k, x in v.items()) + "}"
    elif isinstance(v, float):
        text = f"{v:g}"
    else:
        text = str(v)
    if truncate and len(text) > max_len:
        text = text[: max_len - 3] + "..."
    return text


def to_markdown(rel: duckdb.DuckDBPyRelation, limit: int = 5, truncate: bool = True) -> str:
    cols = list(rel.columns)
    rows = rel.limit(limit).fetchall()
    lines = [
        "| " + " | ".join(cols) + " |",
        "|" + "|".join("---" for _ in cols) + "|",
    ]
    for row in rows:
        cells = [render_value(v, truncate).replace("|", "\\|") for v in row]
        lines.append("| " + " | ".join(cells) + " |")
    return "\n".join(lines)


def render_png(tile: Tile) -> bytes:
    """
    Grey-scale PNG of a tile, stretched to its data range; NoData is transparent.
    """
    data = tile.to_array_double().reshape(tile.rows, tile.cols)
    finite = np.isfinite(data)
    scaled = np.zeros(data.shape, dtype=np.uint8)
    if finite.any():
        lo = float(data[finite].min())
        hi = float(data[finite].max())
        span = (hi - lo) or 1.0
        scaled[finite] = (1 + (data[finite] - lo) / span * 254).astype(np.uint8)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", NotGeoreferencedWarning)
        with MemoryFile() as mem:
            with mem.open(driver="PNG", width=tile.cols, height=tile.rows, count=1, dtype="uint8", nodata=0) as dst:
                dst.write(scaled, 1)
            return mem.read()


def to_html(rel: duckdb.DuckDBPyRelation, limit: int = 5, truncate: bool = False, render_tiles: bool = True) -> str:
    cols = list(rel.columns)
    rows = rel.limit(limit).fetchall()
    out = ["<table>", "<thead><tr>" + "".join(f"<th>{html.escape(c)}</th>" for c in cols) + "</tr></thead>", "<tbody>"]
    for row in rows:
        cells = []
        for v in row:
            kind = codec.raster_kind(v)
            if render_tiles and kind in {"tile", "proj_raster"}:
                tile, _ = codec.tile_extractor(v)
                b64 = base64.b64encode(render_png(tile)).decode("ascii")
                cells.append(f'<td><img src="data:image/png;base64,{b64}"/></td>')
            else:
                cells.append(f"<td>{html.escape(render_value(v, truncate))}</td>")
        out.append("<tr>" + "".join(cells) + "</tr>")
    out.extend(["</tbody>", "</table>"])
    return "\n".join(out)
