from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

import numpy as np

from raster.tile import Tile


@dataclass(frozen=True)
class CellStatistics:
    """
    Summary statistics over the data (non-NoData) cells of a tile.
    """

    data_cells: int
    no_data_cells: int
    min: float
    max: float
    mean: float
    variance: float

    @property
    def stddev(self) -> float:
        return math.sqrt(self.variance)

    @staticmethod
    def empty() -> "CellStatistics":
        return CellStatistics(0, 0, math.nan, math.nan, math.nan, math.nan)

    @staticmethod
    def of(tile: Tile) -> "CellStatistics":
        mask = tile.nodata_mask()
        values = tile.cells[~mask].astype(np.float64)
        no_data = int(mask.sum())
        if values.size == 0:
            return CellStatistics(0, no_data, math.nan, math.nan, math.nan, math.nan)
        return CellStatistics(
            data_cells=int(values.size),
            no_data_cells=no_data,
            min=float(values.min()),
            max=float(values.max()),
            mean=float(values.mean()),
            variance=float(values.var()),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "data_cells": self.data_cells,
            "no_data_cells": self.no_data_cells,
            "min": self.min,
            "max": self.max,
            "mean": self.mean,
            "variance": self.variance,
        }

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "CellStatistics":
        return CellStatistics(
            data_cells=int(d["data_cells"]),
            no_data_cells=int(d["no_data_cells"]),
            min=_f(d.get("min")),
            max=_f(d.get("max")),
            mean=_f(d.get("mean")),
            variance=_f(d.get("variance")),
        )

    def ascii_stats(self) -> str:
        rows = [
            ("data_cells", str(self.data_cells)),
            ("no_data_cells", str(self.no_data_cells)),
            ("min", _fmt(self.min)),
            ("max", _fmt(self.max)),
            ("mean", _fmt(self.mean)),
            ("variance", _fmt(self.variance)),
            ("stddev", _fmt(self.stddev)),
        ]
        width = max(len(k) for k, _ in rows)
        return "\n".join(f"{k.ljust(width)} | {v}" for k, v in rows)

    def __str__(self) -> str:
        body = ", ".join(f"{k}={v}" for k, v in self.to_dict().items())
        return f"CellStatistics({body})"


def _f(v: Any) -> float:
    return math.nan if v is None else float(v)


def _fmt(v: float) -> str:
    return "NaN" if math.isnan(v) else f"{v:.6g}"
