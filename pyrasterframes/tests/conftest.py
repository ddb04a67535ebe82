import sys
from pathlib import Path

import numpy as np
import pytest
import rasterio
from rasterio.transform import from_bounds


# Ensure `pyrasterframes/` is on sys.path so tests can import local modules
# like `raster.*`, `geo.*`, and `engine.*`.
SOURCE_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(SOURCE_ROOT))

from engine.session import RasterFramesSession  # noqa: E402

# UTM 15N, 10 m cells
SMALL_BOUNDS = (500000.0, 4000000.0, 500100.0, 4000080.0)


def write_tif(path: Path, data: np.ndarray, *, bounds=SMALL_BOUNDS, crs="EPSG:32615", nodata=None) -> Path:
    if data.ndim == 2:
        data = data[np.newaxis, ...]
    count, rows, cols = data.shape
    profile = {
        "driver": "GTiff",
        "width": cols,
        "height": rows,
        "count": count,
        "dtype": data.dtype.name,
        "crs": crs,
        "transform": from_bounds(*bounds, cols, rows),
    }
    if nodata is not None:
        profile["nodata"] = nodata
    with rasterio.open(path, "w", **profile) as dst:
        dst.write(data)
    return path


@pytest.fixture
def session():
    s = RasterFramesSession()
    yield s
    s.close()


@pytest.fixture
def small_tif(tmp_path) -> Path:
    """
    10 x 8 int16 raster with values 0..79 and NoData -32768.
    """
    data = np.arange(80, dtype=np.int16).reshape(8, 10)
    return write_tif(tmp_path / "small.tif", data, nodata=-32768)


@pytest.fixture
def rgb_tif(tmp_path) -> Path:
    data = np.stack(
        [
            np.full((8, 10), 10, dtype=np.uint8),
            np.full((8, 10), 20, dtype=np.uint8),
            np.full((8, 10), 30, dtype=np.uint8),
        ]
    )
    return write_tif(tmp_path / "rgb.tif", data)
