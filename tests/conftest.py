"""
Shared synthetic fixtures.

Rasters are north-up grids with 1-unit cells whose top-left corner sits at
(0, height), so cell (row, col) spans x in [col, col+1] and
y in [height-row-1, height-row]. Polygons with integer vertices therefore
contain whole cell centres and never touch one.
"""

import geopandas as gpd
import numpy as np
import pytest
from rasterio.crs import CRS
from rasterio.transform import from_origin
from shapely.geometry import MultiPolygon, Polygon, box

from ntl_regions.raster_utils import RasterSurface

RASTER_CRS = CRS.from_epsg(3857)


def build_raster(data, nodata=None, origin=None, res=1.0, crs=RASTER_CRS):
    data = np.asarray(data)
    if origin is None:
        origin = (0.0, data.shape[0] * res)
    return RasterSurface(
        data=data,
        transform=from_origin(origin[0], origin[1], res, res),
        crs=crs,
        nodata=nodata,
    )


def build_regions(geoms, ids=None, crs="EPSG:3857", **columns):
    ids = ids if ids is not None else [f"R{i}" for i in range(len(geoms))]
    return gpd.GeoDataFrame({"region_id": ids, **columns}, geometry=list(geoms), crs=crs)


@pytest.fixture
def make_raster():
    return build_raster


@pytest.fixture
def make_regions():
    return build_regions


@pytest.fixture
def grid_raster():
    """10x10 raster, value = 10 * row + col."""
    return build_raster(np.arange(100, dtype=np.float64).reshape(10, 10))


@pytest.fixture
def two_part_raster():
    """
    10x10 zeros except two blocks:
    rows 0-1 / cols 0-1 sum to 10, row 9 / cols 6-7 sum to 7.
    """
    data = np.zeros((10, 10), dtype=np.float64)
    data[0:2, 0:2] = [[1, 2], [3, 4]]
    data[9, 6:8] = [3, 4]
    return build_raster(data)


@pytest.fixture
def island_region():
    """Region with a mainland part over the 10-block and an island over the 7-block."""
    mainland = box(0, 8, 2, 10)
    island = box(6, 0, 8, 1)
    return build_regions([MultiPolygon([mainland, island])], ids=["ARCHIPELAGO"])


@pytest.fixture
def noisy_raster():
    """40x50 random raster with a few NaN cells."""
    rng = np.random.default_rng(42)
    data = rng.random((40, 50)) * 100.0
    data[rng.integers(0, 40, 30), rng.integers(0, 50, 30)] = np.nan
    return build_raster(data)


@pytest.fixture
def mixed_regions():
    """Regions with non-integer vertices, a multipolygon and a sliver."""
    return build_regions(
        [
            box(1.3, 2.2, 12.7, 15.6),
            Polygon([(20.2, 3.1), (35.4, 8.3), (24.9, 30.7)]),
            MultiPolygon([box(40.1, 1.2, 48.8, 9.9), box(41.3, 25.4, 44.6, 38.2)]),
            box(14.2, 20.3, 14.4, 20.4),
            box(5.6, 30.25, 19.75, 39.6),
        ],
        ids=["A", "B", "C", "SLIVER", "E"],
    )
