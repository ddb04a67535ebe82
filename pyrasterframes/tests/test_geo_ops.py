import pytest
from shapely import wkb as shapely_wkb
from shapely.geometry import Point

from geo.crs import CRS, LatLng, WebMercator
from geo.extent import Extent
from geo.reproject import ReprojectionTransformer, center_lat_lng, reproject_extent, reproject_wkb


def test_crs_accepts_epsg_proj4_and_structs():
    utm = CRS.from_user_input("EPSG:32615")
    assert utm.to_epsg() == 32615
    same = CRS.from_user_input({"crsProj4": utm.to_proj4()})
    assert same == utm
    assert CRS.from_user_input(4326) == LatLng
    assert "+type=crs" not in LatLng.to_proj4()
    with pytest.raises(ValueError):
        CRS.from_user_input("")


def test_reproject_point_to_web_mercator():
    t = ReprojectionTransformer(LatLng, WebMercator)
    p = t(Point(0.0, 0.0))
    assert p.x == pytest.approx(0.0, abs=1e-6)
    assert p.y == pytest.approx(0.0, abs=1e-6)
    p2 = t(Point(180.0, 0.0))
    assert p2.x == pytest.approx(20037508.34, rel=1e-6)


def test_identity_reprojection_returns_input():
    g = Point(1.0, 2.0)
    assert ReprojectionTransformer(LatLng, LatLng)(g) is g


def test_reproject_wkb_round_trip():
    data = shapely_wkb.dumps(Point(10.0, 50.0))
    there = reproject_wkb(data, "EPSG:4326", "EPSG:3857")
    back = shapely_wkb.loads(reproject_wkb(there, "EPSG:3857", "EPSG:4326"))
    assert back.x == pytest.approx(10.0, abs=1e-9)
    assert back.y == pytest.approx(50.0, abs=1e-9)


def test_reproject_extent_covers_corners():
    e = Extent(500000.0, 4000000.0, 500100.0, 4000080.0)
    ll = reproject_extent(e, CRS("EPSG:32615"), LatLng)
    assert -93.1 < ll.xmin < ll.xmax < -92.9
    assert 36.1 < ll.ymin < ll.ymax < 36.2


def test_center_lat_lng():
    lat, lon = center_lat_lng(Extent(-10.0, -20.0, 10.0, 20.0), LatLng)
    assert lat == pytest.approx(0.0)
    assert lon == pytest.approx(0.0)


def test_extent_intersection_ignores_touching_edges():
    a = Extent(0.0, 0.0, 1.0, 1.0)
    assert not a.intersects(Extent(1.0, 0.0, 2.0, 1.0))
    assert a.intersection(Extent(0.5, 0.5, 2.0, 2.0)) == Extent(0.5, 0.5, 1.0, 1.0)
    assert a.combine(Extent(2.0, 2.0, 3.0, 3.0)) == Extent(0.0, 0.0, 3.0, 3.0)


def test_extent_emptiness():
    assert not Extent(0.0, 0.0, 1.0, 1.0).is_empty
    assert Extent(0.0, 0.0, 0.0, 1.0).is_empty
    assert Extent(0.0, 0.0, 1.0, -1.0).is_empty


def test_rounded_key_groups_float_noise():
    a = Extent(0.1 + 0.2, 0.0, 1.0, 1.0)
    b = Extent(0.3, 0.0, 1.0, 1.0)
    assert a != b
    assert a.rounded_key() == b.rounded_key()
    assert Extent(1.0, 1.0, 0.0, 0.0).rounded_key() == (0.0, 0.0, 1.0, 1.0)
