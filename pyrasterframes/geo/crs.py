from __future__ import annotations

import warnings
from dataclasses import dataclass
from functools import cached_property, lru_cache
from typing import Any

import pyproj


@lru_cache(maxsize=256)
def _parse(text: str) -> pyproj.CRS:
    return pyproj.CRS.from_user_input(text)


@dataclass(frozen=True, eq=False)
class CRS:
    """
    Lazily parsed coordinate reference system.

    `spec` is whatever the caller handed us: an EPSG code (`EPSG:32633`), a proj4
    string, or WKT. Parsing happens on first use, so invalid strings only fail when
    the CRS is actually needed.
    """

    spec: str

    @cached_property
    def pyproj(self) -> pyproj.CRS:
        return _parse(self.spec.strip())

    def to_proj4(self) -> str:
        with warnings.catch_warnings():
            # pyproj warns that proj4 strings are lossy; they are our row encoding.
            warnings.simplefilter("ignore", UserWarning)
            text = self.pyproj.to_proj4() or ""
        return " ".join(p for p in text.split() if p != "+type=crs")

    def to_epsg(self) -> int | None:
        return self.pyproj.to_epsg()

    def to_wkt(self) -> str:
        return self.pyproj.to_wkt()

    def to_rasterio(self):
        from rasterio.crs import CRS as RioCRS

        epsg = self.to_epsg()
        if epsg is not None:
            return RioCRS.from_epsg(epsg)
        return RioCRS.from_wkt(self.to_wkt())

    @staticmethod
    def from_user_input(value: Any) -> "CRS":
        if isinstance(value, CRS):
            return value
        if isinstance(value, dict):
            proj4 = value.get("crsProj4")
            if not proj4:
                raise ValueError(f"Not a CRS struct: {value!r}")
            return CRS(str(proj4))
        if isinstance(value, pyproj.CRS):
            return CRS(value.to_wkt())
        if isinstance(value, int):
            return CRS(f"EPSG:{value}")
        to_wkt = getattr(value, "to_wkt", None)
        if callable(to_wkt):
            # rasterio.crs.CRS and friends
            epsg = getattr(value, "to_epsg", lambda: None)()
            return CRS(f"EPSG:{epsg}") if epsg else CRS(to_wkt())
        text = str(value or "").strip()
        if not text:
            raise ValueError("Empty CRS specification")
        return CRS(text)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CRS):
            return NotImplemented
        if self.spec == other.spec:
            return True
        return self.to_proj4() == other.to_proj4()

    def __hash__(self) -> int:
        return hash(self.to_proj4())

    def __str__(self) -> str:
        return self.spec


LatLng = CRS("EPSG:4326")
WebMercator = CRS("EPSG:3857")
