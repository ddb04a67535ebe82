from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from datasource.raster_source import RasterSource
from geo.extent import Extent
from raster.layout import GridBounds
from raster.projected import ProjectedRasterTile


@dataclass(frozen=True)
class RasterRef:
    """
    Lazy pointer to one band of a raster window; cells are read on `realize()`.

    Windows may extend past the raster edge; those cells realize as NoData.
    """

    source: str
    band: int = 1
    bounds: GridBounds | None = None

    @property
    def raster_source(self) -> RasterSource:
        return RasterSource(self.source)

    @property
    def grid_bounds(self) -> GridBounds:
        return self.bounds if self.bounds is not None else self.raster_source.grid_bounds

    @property
    def extent(self) -> Extent:
        return self.raster_source.raster_extent.extent_for(self.grid_bounds, clamp=False)

    def realize(self) -> ProjectedRasterTile:
        pr = self.raster_source.read_window(self.grid_bounds, [self.band], boundless=True)
        return pr.band(0)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"source": self.source, "band": int(self.band)}
        if self.bounds is not None:
            b = self.bounds
            d["bounds"] = [b.col_min, b.row_min, b.col_max, b.row_max]
        return d

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "RasterRef":
        b = d.get("bounds")
        bounds = GridBounds(*(int(v) for v in b)) if b else None
        return RasterRef(source=str(d["source"]), band=int(d.get("band", 1)), bounds=bounds)

    @staticmethod
    def from_json(text: str) -> "RasterRef":
        return RasterRef.from_dict(json.loads(text))
