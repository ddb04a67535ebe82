from __future__ import annotations

from functools import lru_cache

from pyproj import Transformer
from shapely import wkb as shapely_wkb
from shapely.geometry import Point
from shapely.geometry.base import BaseGeometry
from shapely.ops import transform as shapely_transform

from geo.crs import CRS
from geo.extent import Extent


@lru_cache(maxsize=64)
def _transformer(src_proj4: str, dst_proj4: str) -> Transformer:
    return Transformer.from_crs(src_proj4, dst_proj4, always_xy=True)


def transformer(src: CRS, dst: CRS) -> Transformer:
    # always_xy: our coordinates are (x, y) / (lon, lat) regardless of CRS axis order.
    return _transformer(src.to_proj4(), dst.to_proj4())


class ReprojectionTransformer:
    """
    Shapely geometry reprojection from `src` to `dst`.

    Coordinates are transformed one by one (no densification), so straight edges stay
    straight in the destination CRS.
    """

    def __init__(self, src: CRS, dst: CRS):
        self.src = src
        self.dst = dst
        self._identity = src == dst

    def __call__(self, geometry: BaseGeometry) -> BaseGeometry:
        if self._identity or geometry.is_empty:
            return geometry
        t = transformer(self.src, self.dst)
        return shapely_transform(t.transform, geometry)

    def apply_point(self, pt: Point) -> Point:
        return self(pt).centroid


def reproject_geometry(geometry: BaseGeometry, src: CRS, dst: CRS) -> BaseGeometry:
    return ReprojectionTransformer(src, dst)(geometry)


def reproject_wkb(data: bytes, src: str, dst: str) -> bytes:
    geom = shapely_wkb.loads(bytes(data))
    out = reproject_geometry(geom, CRS.from_user_input(src), CRS.from_user_input(dst))
    return shapely_wkb.dumps(out)


def reproject_extent(extent: Extent, src: CRS, dst: CRS, *, densify_pts: int = 21) -> Extent:
    """
    Bounding box of `extent` in `dst`, sampling edges so curved projections are covered.
    """
    if src == dst:
        return extent
    t = transformer(src, dst)
    e = extent.normalized()
    xmin, ymin, xmax, ymax = t.transform_bounds(e.xmin, e.ymin, e.xmax, e.ymax, densify_pts=densify_pts)
    return Extent(xmin=float(xmin), ymin=float(ymin), xmax=float(xmax), ymax=float(ymax))


def center_lat_lng(extent: Extent, crs: CRS) -> tuple[float, float]:
    """
    Extent center as (lat, lon) in EPSG:4326.
    """
    from geo.crs import LatLng

    x, y = extent.center
    pt = ReprojectionTransformer(crs, LatLng).apply_point(Point(x, y))
    return float(pt.y), float(pt.x)
