"""
Rasterization of tile relations into a single raster.

`TileRasterizerAggregate` follows the aggregation-buffer contract
(initialize / update / merge / evaluate); `rf_agg_raster` drives it over a DuckDB
relation in record batches, folding one partial buffer per batch.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import Any, Iterable

import duckdb
from rasterio.enums import Resampling
from rasterio.transform import from_bounds
from rasterio.warp import reproject

from engine.codec import crs_from_struct, extent_from_struct, tile_extractor
from engine.config import agg_batch_rows, memory_budget_bytes, tile_size
from engine.duckdb_common import quote_ident
from geo.crs import CRS
from geo.extent import Extent
from raster.celltype import CellType
from raster.layout import KeyBounds, SpatialKey, TileDimensions, TileLayerMetadata, floating_layout
from raster.projected import ProjectedRaster
from raster.tile import Tile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProjectedRasterDefinition:
    """
    Destination grid of a rasterization: size, cell type, CRS and extent.
    """

    total_cols: int
    total_rows: int
    cell_type: CellType
    crs: CRS
    extent: Extent
    sampler: str = "nearest"

    def __post_init__(self) -> None:
        if self.total_cols <= 0 or self.total_rows <= 0:
            raise ValueError(f"Raster dimensions must be positive: {self.total_cols}x{self.total_rows}")
        if not hasattr(Resampling, self.sampler):
            raise ValueError(f"Unknown resampling method: {self.sampler!r}")

    @staticmethod
    def from_layer_metadata(tlm: TileLayerMetadata, sampler: str = "nearest") -> "ProjectedRasterDefinition":
        dims = tlm.total_dimensions()
        return ProjectedRasterDefinition(dims.cols, dims.rows, tlm.cell_type, tlm.crs, tlm.extent, sampler)

    @property
    def buffer_cell_type(self) -> CellType:
        # The buffer must be able to mark unfilled cells; bool has no NoData.
        if self.cell_type.base == "bool":
            return CellType("uint8", "constant")
        return self.cell_type.with_default_no_data()

    @property
    def estimated_bytes(self) -> int:
        return int(self.total_cols) * int(self.total_rows) * 64


class TileRasterizerAggregate:
    def __init__(self, prd: ProjectedRasterDefinition):
        self.prd = prd
        self._transform = from_bounds(
            prd.extent.xmin, prd.extent.ymin, prd.extent.xmax, prd.extent.ymax, prd.total_cols, prd.total_rows
        )

    def initialize(self) -> Tile:
        return Tile.empty(self.prd.buffer_cell_type, self.prd.total_cols, self.prd.total_rows)

    def update(self, buffer: Tile, crs: CRS, extent: Extent, tile: Tile) -> Tile:
        """
        Reproject `tile` into the destination grid and fill the buffer's NoData cells.
        """
        prd = self.prd
        local_extent = extent.reproject(crs, prd.crs)
        if not local_extent.intersects(prd.extent):
            return buffer
        ct = buffer.cell_type
        src = tile.convert(ct)
        dest = Tile.empty(ct, prd.total_cols, prd.total_rows).cells.copy()
        reproject(
            source=src.cells,
            destination=dest,
            src_transform=from_bounds(extent.xmin, extent.ymin, extent.xmax, extent.ymax, tile.cols, tile.rows),
            src_crs=crs.to_rasterio(),
            src_nodata=ct.no_data,
            dst_transform=self._transform,
            dst_crs=prd.crs.to_rasterio(),
            dst_nodata=ct.no_data,
            resampling=Resampling[prd.sampler],
        )
        return self.merge(buffer, Tile(dest, ct))

    def merge(self, b1: Tile, b2: Tile) -> Tile:
        holes = b1.nodata_mask()
        if not holes.any():
            return b1
        fill = holes & ~b2.nodata_mask()
        if not fill.any():
            return b1
        out = b1.cells.copy()
        out[fill] = b2.cells[fill]
        return Tile(out, b1.cell_type)

    def evaluate(self, buffer: Tile) -> tuple[Tile, Extent]:
        tile = buffer
        if self.prd.cell_type != buffer.cell_type:
            tile = buffer.convert(self.prd.cell_type)
        return tile, self.prd.extent


def _warn_if_oversized(prd: ProjectedRasterDefinition) -> None:
    budget = memory_budget_bytes()
    if prd.estimated_bytes > 0.5 * budget:
        logger.warning(
            "Rasterizing into %dx%d cells needs about %d bytes, over half the memory budget of %d bytes",
            prd.total_cols,
            prd.total_rows,
            prd.estimated_bytes,
            budget,
        )


def rasterize_rows(prd: ProjectedRasterDefinition, rows: Iterable[tuple[Any, Any, Any]]) -> Tile:
    agg = TileRasterizerAggregate(prd)
    buffer = agg.initialize()
    for crs, extent, raster in rows:
        if crs is None or extent is None or raster is None:
            continue
        tile, _ = tile_extractor(raster)
        buffer = agg.update(buffer, crs_from_struct(crs), extent_from_struct(extent), tile)
    return buffer


def rf_agg_raster(
    relation: duckdb.DuckDBPyRelation,
    prd: ProjectedRasterDefinition,
    crs_col: str,
    extent_col: str,
    tile_col: str,
) -> tuple[Tile, Extent]:
    """
    Rasterize `tile_col` of `relation` into the grid described by `prd`.
    """
    _warn_if_oversized(prd)
    agg = TileRasterizerAggregate(prd)
    batch = agg_batch_rows()
    rel = relation.project(", ".join(quote_ident(c) for c in (crs_col, extent_col, tile_col)))
    result = agg.initialize()
    batches = 0
    while True:
        rows = rel.fetchmany(batch)
        if not rows:
            break
        # Merge each batch right away so at most two grid buffers are alive.
        result = agg.merge(result, rasterize_rows(prd, rows))
        batches += 1
    logger.debug("Rasterized %d batches of '%s' into %dx%d", batches, tile_col, prd.total_cols, prd.total_rows)
    return agg.evaluate(result)


class ProjectedLayerMetadataAggregate:
    """
    Derives the layer metadata a relation's tiles would have in `dest_crs`.

    The finest cell size among the tiles wins; tiles are laid out from the upper
    left corner of the combined extent.
    """

    def __init__(self, dest_crs: CRS, tile_dims: TileDimensions | None = None):
        self.dest_crs = dest_crs
        n = tile_size()
        self.tile_dims = tile_dims or TileDimensions(n, n)
        self.extent: Extent | None = None
        self.cell_type: CellType | None = None
        self.cell_width = math.inf
        self.cell_height = math.inf

    def update(self, crs: CRS, extent: Extent, tile: Tile) -> None:
        local = extent.reproject(crs, self.dest_crs)
        self.extent = local if self.extent is None else self.extent.combine(local)
        self.cell_type = tile.cell_type if self.cell_type is None else self.cell_type.union(tile.cell_type)
        self.cell_width = min(self.cell_width, local.width / tile.cols)
        self.cell_height = min(self.cell_height, local.height / tile.rows)

    def evaluate(self) -> TileLayerMetadata:
        if self.extent is None or self.cell_type is None:
            raise ValueError("Cannot derive layer metadata from an empty relation")
        cols = max(1, int(round(self.extent.width / self.cell_width)))
        rows = max(1, int(round(self.extent.height / self.cell_height)))
        layout = floating_layout(self.extent, cols, rows, self.tile_dims)
        tl = layout.tile_layout
        bounds = KeyBounds(SpatialKey(0, 0), SpatialKey(tl.layout_cols - 1, tl.layout_rows - 1))
        return TileLayerMetadata(self.cell_type, layout, self.extent, self.dest_crs, bounds)

    @staticmethod
    def of(
        relation: duckdb.DuckDBPyRelation,
        crs_col: str,
        extent_col: str,
        tile_col: str,
        dest_crs: CRS,
        tile_dims: TileDimensions | None = None,
    ) -> TileLayerMetadata:
        agg = ProjectedLayerMetadataAggregate(dest_crs, tile_dims)
        rel = relation.project(", ".join(quote_ident(c) for c in (crs_col, extent_col, tile_col)))
        batch = agg_batch_rows()
        while True:
            rows = rel.fetchmany(batch)
            if not rows:
                break
            for crs, extent, raster in rows:
                if crs is None or extent is None or raster is None:
                    continue
                tile, _ = tile_extractor(raster)
                agg.update(crs_from_struct(crs), extent_from_struct(extent), tile)
        return agg.evaluate()


def collect(
    relation: duckdb.DuckDBPyRelation,
    dest_crs: CRS | None = None,
    dest_extent: Extent | None = None,
    raster_dims: TileDimensions | None = None,
    sampler: str = "nearest",
) -> ProjectedRaster:
    """
    Rasterize every tile column of `relation` into one band each.

    The first projected raster column anchors every row's extent and CRS when
    present; otherwise the relation must have exactly one CRS column and one
    extent column.
    """
    from engine.frames import crs_columns, extent_columns, proj_raster_columns, tile_columns

    prs = proj_raster_columns(relation)
    bands = tile_columns(relation)
    if prs:
        anchor = quote_ident(prs[0])
        rel = relation.project(f"*, rf_crs({anchor}) AS __rf_crs, rf_extent({anchor}) AS __rf_extent")
        crs_col, extent_col = "__rf_crs", "__rf_extent"
    else:
        crss = crs_columns(relation)
        extents = extent_columns(relation)
        if len(crss) != 1 or len(extents) != 1:
            raise ValueError(
                "Rasterizing requires a projected raster column, or exactly one CRS column and one extent "
                f"column; found CRS columns {crss} and extent columns {extents}"
            )
        rel = relation
        crs_col, extent_col = crss[0], extents[0]
    if not bands:
        raise ValueError("Relation has no tile columns to rasterize")

    if dest_crs is None:
        first = rel.project(quote_ident(crs_col)).filter(f"{quote_ident(crs_col)} IS NOT NULL").limit(1).fetchone()
        if first is None:
            raise ValueError("Cannot rasterize an empty relation")
        dest_crs = crs_from_struct(first[0])

    tlm = ProjectedLayerMetadataAggregate.of(rel, crs_col, extent_col, prs[0] if prs else bands[0], dest_crs)
    logger.debug("Collected layer metadata: %s", tlm.to_json(indent=None))
    prd = ProjectedRasterDefinition.from_layer_metadata(tlm, sampler)
    if raster_dims is not None:
        prd = replace(prd, total_cols=raster_dims.cols, total_rows=raster_dims.rows)
    if dest_extent is not None:
        prd = replace(prd, extent=dest_extent)

    tiles = [rf_agg_raster(rel, prd, crs_col, extent_col, c)[0] for c in bands]
    return ProjectedRaster(tuple(tiles), prd.extent, prd.crs)
