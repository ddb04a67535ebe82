"""
Tile algebra used by the SQL functions.

All functions take and return `Tile`s; spatial context is handled by the caller.
"""
from __future__ import annotations

from typing import Callable, Iterable

import numpy as np

from raster.celltype import CellType
from raster.tile import Tile


def _require_no_data(target: Tile) -> None:
    if not target.cell_type.has_no_data:
        raise ValueError(
            "Target tile must have a cell type with NoData defined in order to perform a masking "
            f"operation. Found cell type '{target.cell_type.name}'."
        )


def _require_same_shape(a: Tile, b: Tile) -> None:
    if a.cells.shape != b.cells.shape:
        raise ValueError(
            f"Tile dimensions differ: {a.cols}x{a.rows} vs {b.cols}x{b.rows}"
        )


def _set_no_data(target: Tile, where: np.ndarray) -> Tile:
    if not where.any():
        return target
    out = target.cells.copy()
    out[where] = target.cell_type.no_data
    return Tile(out, target.cell_type)


def mask(target: Tile, mask_tile: Tile) -> Tile:
    _require_no_data(target)
    _require_same_shape(target, mask_tile)
    return _set_no_data(target, mask_tile.nodata_mask())


def inverse_mask(target: Tile, mask_tile: Tile) -> Tile:
    _require_no_data(target)
    _require_same_shape(target, mask_tile)
    return _set_no_data(target, ~mask_tile.nodata_mask())


def _equals(mask_tile: Tile, value: int) -> np.ndarray:
    # NoData never equals anything.
    return (mask_tile.cells == value) & ~mask_tile.nodata_mask()


def mask_by_value(target: Tile, mask_tile: Tile, value: int) -> Tile:
    _require_no_data(target)
    _require_same_shape(target, mask_tile)
    return _set_no_data(target, _equals(mask_tile, int(value)))


def inverse_mask_by_value(target: Tile, mask_tile: Tile, value: int) -> Tile:
    _require_no_data(target)
    _require_same_shape(target, mask_tile)
    return _set_no_data(target, ~_equals(mask_tile, int(value)))


def mask_by_values(target: Tile, mask_tile: Tile, values: Iterable[int]) -> Tile:
    _require_no_data(target)
    _require_same_shape(target, mask_tile)
    vals = [int(v) for v in values if v is not None]
    where = np.isin(mask_tile.cells, vals) & ~mask_tile.nodata_mask()
    return _set_no_data(target, where)


def extract_bits(tile: Tile, start_bit: int, num_bits: int) -> Tile:
    if tile.cell_type.is_floating_point:
        raise ValueError(
            f"Bit extraction requires an integral cell type, found '{tile.cell_type.name}'"
        )
    if start_bit < 0 or num_bits < 0:
        raise ValueError(f"Bit positions must be non-negative: start={start_bit}, count={num_bits}")
    bit_mask = (1 << int(num_bits)) - 1
    return tile.map_if_set(lambda v: (v.astype(np.int64) >> int(start_bit)) & bit_mask)


def convert_cell_type(tile: Tile, cell_type: CellType | str) -> Tile:
    ct = cell_type if isinstance(cell_type, CellType) else CellType.from_name(cell_type)
    return tile.convert(ct)


_ARITHMETIC: dict[str, Callable[[np.ndarray, float], np.ndarray]] = {
    "add": np.add,
    "subtract": np.subtract,
    "multiply": np.multiply,
    "divide": np.divide,
}

_COMPARISON: dict[str, Callable[[np.ndarray, float], np.ndarray]] = {
    "less": np.less,
    "less_equal": np.less_equal,
    "greater": np.greater,
    "greater_equal": np.greater_equal,
    "equal": np.equal,
    "unequal": np.not_equal,
}

LOCAL_OPS: tuple[str, ...] = tuple(_ARITHMETIC) + tuple(_COMPARISON)


def local_scalar(op: str, tile: Tile, value: float) -> Tile:
    """
    Cell-wise `tile <op> value`.

    Arithmetic keeps the tile's cell type and NoData cells; results that do not
    fit (e.g. division by zero) become NoData. Comparisons produce a `bool` tile
    that is false on NoData cells.
    """
    nodata = tile.nodata_mask()
    if op in _COMPARISON:
        with np.errstate(invalid="ignore"):
            res = _COMPARISON[op](tile.cells.astype(np.float64), float(value))
        return Tile(res & ~nodata, CellType.from_name("bool"))
    f = _ARITHMETIC.get(op)
    if f is None:
        raise ValueError(f"Unknown local operation: {op!r}")
    ct = tile.cell_type
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        res = f(tile.cells.astype(np.float64), float(value))
    bad = ~np.isfinite(res)
    if not ct.is_floating_point:
        res = np.trunc(np.where(bad, 0.0, res))
        info = np.iinfo(ct.dtype) if ct.base != "bool" else None
        if info is not None:
            res = np.clip(res, info.min, info.max)
    out = res.astype(ct.dtype)
    drop = nodata | (bad if ct.has_no_data else np.zeros_like(nodata))
    if ct.has_no_data and drop.any():
        out[drop] = ct.no_data
    return Tile(out, ct)
