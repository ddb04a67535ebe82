from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from shapely.geometry import Polygon
from shapely.geometry import box as shapely_box

if TYPE_CHECKING:
    from geo.crs import CRS


@dataclass(frozen=True)
class Extent:
    """
    Axis-aligned bounding box in the units of some CRS.

    Convention used throughout this repo:
    - xmin, ymin, xmax, ymax
    """

    xmin: float
    ymin: float
    xmax: float
    ymax: float

    def normalized(self) -> "Extent":
        xmin = min(self.xmin, self.xmax)
        xmax = max(self.xmin, self.xmax)
        ymin = min(self.ymin, self.ymax)
        ymax = max(self.ymin, self.ymax)
        return Extent(xmin=xmin, ymin=ymin, xmax=xmax, ymax=ymax)

    @property
    def width(self) -> float:
        return float(self.xmax - self.xmin)

    @property
    def height(self) -> float:
        return float(self.ymax - self.ymin)

    @property
    def center(self) -> tuple[float, float]:
        return ((self.xmin + self.xmax) / 2.0, (self.ymin + self.ymax) / 2.0)

    @property
    def is_empty(self) -> bool:
        return self.width <= 0.0 or self.height <= 0.0

    def intersects(self, other: "Extent") -> bool:
        # Touching edges do not count (JTS envelope semantics).
        return not (
            other.xmin >= self.xmax
            or other.xmax <= self.xmin
            or other.ymin >= self.ymax
            or other.ymax <= self.ymin
        )

    def intersection(self, other: "Extent") -> "Extent | None":
        if not self.intersects(other):
            return None
        return Extent(
            xmin=max(self.xmin, other.xmin),
            ymin=max(self.ymin, other.ymin),
            xmax=min(self.xmax, other.xmax),
            ymax=min(self.ymax, other.ymax),
        )

    def combine(self, other: "Extent") -> "Extent":
        return Extent(
            xmin=min(self.xmin, other.xmin),
            ymin=min(self.ymin, other.ymin),
            xmax=max(self.xmax, other.xmax),
            ymax=max(self.ymax, other.ymax),
        )

    def rounded_key(self, decimals: int = 6) -> tuple[float, float, float, float]:
        """
        Hashable key for grouping extents that differ only by float noise.
        """
        e = self.normalized()
        return (
            round(e.xmin, decimals),
            round(e.ymin, decimals),
            round(e.xmax, decimals),
            round(e.ymax, decimals),
        )

    def to_polygon(self) -> Polygon:
        e = self.normalized()
        return shapely_box(e.xmin, e.ymin, e.xmax, e.ymax)

    def reproject(self, src: "CRS", dst: "CRS") -> "Extent":
        from geo.reproject import reproject_extent

        return reproject_extent(self, src, dst)

    def to_dict(self) -> dict[str, float]:
        return {"xmin": float(self.xmin), "ymin": float(self.ymin), "xmax": float(self.xmax), "ymax": float(self.ymax)}

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "Extent":
        return Extent(
            xmin=float(d["xmin"]),
            ymin=float(d["ymin"]),
            xmax=float(d["xmax"]),
            ymax=float(d["ymax"]),
        )

    @staticmethod
    def from_bounds(bounds: Any) -> "Extent":
        """
        From a rasterio/shapely style (left, bottom, right, top) sequence.
        """
        left, bottom, right, top = (float(v) for v in bounds)
        return Extent(xmin=left, ymin=bottom, xmax=right, ymax=top)
