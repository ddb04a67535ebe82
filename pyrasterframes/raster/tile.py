from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

import numpy as np

from raster.celltype import CellType

if TYPE_CHECKING:
    from raster.layout import TileDimensions

# GeoTrellis integer NoData sentinel (Int.MinValue).
NODATA_INT = -2147483648


@dataclass(frozen=True, eq=False)
class Tile:
    """
    A `rows x cols` grid of cells with a cell type.

    `cells` is always stored in the cell type's numpy dtype; NoData cells hold the
    cell type's NoData value.
    """

    cells: np.ndarray
    cell_type: CellType

    def __post_init__(self) -> None:
        arr = np.asarray(self.cells)
        if arr.ndim != 2:
            raise ValueError(f"Tile cells must be 2-D, got shape {arr.shape}")
        if arr.dtype != self.cell_type.dtype:
            arr = arr.astype(self.cell_type.dtype)
        object.__setattr__(self, "cells", arr)

    @property
    def cols(self) -> int:
        return int(self.cells.shape[1])

    @property
    def rows(self) -> int:
        return int(self.cells.shape[0])

    @property
    def size(self) -> int:
        return self.cols * self.rows

    @property
    def dimensions(self) -> "TileDimensions":
        from raster.layout import TileDimensions

        return TileDimensions(self.cols, self.rows)

    @staticmethod
    def empty(cell_type: CellType, cols: int, rows: int) -> "Tile":
        fill = cell_type.no_data if cell_type.has_no_data else 0
        return Tile(np.full((int(rows), int(cols)), fill, dtype=cell_type.dtype), cell_type)

    @staticmethod
    def from_bytes(data: bytes, cell_type: CellType, cols: int, rows: int) -> "Tile":
        cols, rows = int(cols), int(rows)
        if cell_type.base == "bool":
            bits = np.unpackbits(np.frombuffer(data, dtype=np.uint8), bitorder="little")
            if bits.size < cols * rows:
                raise ValueError(f"Expected {cols * rows} bits, got {bits.size}")
            return Tile(bits[: cols * rows].astype(np.bool_).reshape(rows, cols), cell_type)
        dt = cell_type.dtype.newbyteorder("<")
        expected = cols * rows * dt.itemsize
        if len(data) != expected:
            raise ValueError(
                f"Expected {expected} bytes for a {cols}x{rows} '{cell_type.name}' tile, got {len(data)}"
            )
        arr = np.frombuffer(data, dtype=dt).reshape(rows, cols)
        return Tile(arr.astype(cell_type.dtype), cell_type)

    def to_bytes(self) -> bytes:
        if self.cell_type.base == "bool":
            return np.packbits(self.cells.ravel(), bitorder="little").tobytes()
        return self.cells.astype(self.cell_type.dtype.newbyteorder("<")).tobytes()

    def nodata_mask(self) -> np.ndarray:
        ct = self.cell_type
        if not ct.has_no_data:
            return np.zeros(self.cells.shape, dtype=np.bool_)
        if ct.is_floating_point:
            mask = np.isnan(self.cells)
            nd = ct.no_data
            if nd is not None and not np.isnan(nd):
                mask |= self.cells == nd
            return mask
        return self.cells == ct.no_data

    def data_cells(self) -> int:
        return int(self.size - int(self.nodata_mask().sum()))

    def is_no_data_tile(self) -> bool:
        return bool(self.nodata_mask().all())

    def convert(self, cell_type: CellType) -> "Tile":
        """
        Change the cell type, mapping NoData cells onto the target's NoData.
        """
        if cell_type == self.cell_type:
            return self
        mask = self.nodata_mask()
        src = self.cells
        if self.cell_type.is_floating_point and not cell_type.is_floating_point:
            # NaN has no integer representation; those cells are masked below.
            src = np.where(mask, 0, np.trunc(np.nan_to_num(src, nan=0.0)))
        out = src.astype(cell_type.dtype)
        if cell_type.has_no_data and mask.any():
            out = out.copy()
            out[mask] = cell_type.no_data
        return Tile(out, cell_type)

    def map_if_set(self, f: Callable[[np.ndarray], np.ndarray]) -> "Tile":
        mask = self.nodata_mask()
        out = self.cells.copy()
        data = ~mask
        if data.any():
            out[data] = np.asarray(f(self.cells[data])).astype(self.cell_type.dtype)
        return Tile(out, self.cell_type)

    def to_array_int(self) -> np.ndarray:
        mask = self.nodata_mask()
        vals = np.nan_to_num(self.cells.astype(np.float64), nan=0.0)
        out = np.trunc(vals).astype(np.int64)
        out[mask] = NODATA_INT
        return out.astype(np.int32).ravel()

    def to_array_double(self) -> np.ndarray:
        out = self.cells.astype(np.float64)
        out[self.nodata_mask()] = np.nan
        return out.ravel()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Tile):
            return NotImplemented
        if self.cell_type != other.cell_type or self.cells.shape != other.cells.shape:
            return False
        return bool(np.array_equal(self.cells, other.cells, equal_nan=self.cell_type.is_floating_point))

    def __hash__(self) -> int:
        return hash((self.cell_type, self.cells.shape, self.cells.tobytes()))

    def __repr__(self) -> str:
        return f"Tile({self.cell_type.name}, {self.cols}x{self.rows})"
