"""
Raster surface model and window utilities.

Raster operations prove alignment before computing stats:
- CRS, transform, nodata and bounds travel with the array
- Crops snap outward to whole cells and copy, never view
- Nodata handling is explicit: the sentinel and NaN are both missing
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import geopandas as gpd
import numpy as np
import rasterio.windows
from rasterio import Affine
from rasterio.transform import array_bounds
from rasterio.windows import Window
from rasterstats import zonal_stats

from ntl_regions.logging_utils import log_event
from ntl_regions.qa import ConfigurationError

Bounds = Tuple[float, float, float, float]

# Tolerance when snapping fractional pixel coordinates to whole cells
SNAP_EPSILON = 1e-9


@dataclass(frozen=True)
class RasterSurface:
    """
    A single-band raster held in memory. The data array is exposed read-only.

    Attributes:
        data: 2D array of cell values
        transform: Affine transform from (col, row) to map coordinates
        crs: Coordinate reference system (rasterio CRS or anything pyproj accepts)
        nodata: Missing-value sentinel, or None
    """
    data: np.ndarray
    transform: Affine
    crs: Any
    nodata: Optional[float] = None

    def __post_init__(self):
        if self.data.ndim != 2:
            raise ConfigurationError(f"Raster data must be 2D, got shape {self.data.shape}")
        # read-only view; the caller's array stays writeable
        if self.data.flags.writeable:
            view = self.data.view()
            view.flags.writeable = False
            object.__setattr__(self, "data", view)

    @property
    def height(self) -> int:
        return self.data.shape[0]

    @property
    def width(self) -> int:
        return self.data.shape[1]

    @property
    def size(self) -> int:
        return self.data.size

    @property
    def bounds(self) -> Bounds:
        """Geographic extent as (left, bottom, right, top)."""
        return array_bounds(self.height, self.width, self.transform)

    @property
    def resolution(self) -> Tuple[float, float]:
        """Get pixel resolution (x, y)."""
        return abs(self.transform.a), abs(self.transform.e)

    def window_for_bounds(self, bounds: Sequence[float]) -> Optional[Window]:
        """Whole-cell window covering bounds, clipped to the grid."""
        return window_from_bounds(self.transform, self.width, self.height, bounds)

    def crop(self, bounds: Sequence[float]) -> "RasterSurface":
        """
        Return a new RasterSurface restricted to the cells covering bounds.

        The returned array is a copy, so releasing the crop releases its memory.

        Raises:
            ConfigurationError: If bounds do not overlap any cell
        """
        window = self.window_for_bounds(bounds)
        if window is None:
            raise ConfigurationError(
                f"Crop bounds {tuple(bounds)} do not overlap raster bounds {self.bounds}"
            )
        return self.read_window(window)

    def read_window(self, window: Window) -> "RasterSurface":
        rows, cols = window_slices(window)
        return RasterSurface(
            data=self.data[rows, cols].copy(),
            transform=rasterio.windows.transform(window, self.transform),
            crs=self.crs,
            nodata=self.nodata,
        )

    def missing_mask(self) -> np.ndarray:
        """Boolean mask of missing cells over the full grid."""
        return missing_mask(self.data, self.nodata)


def _snap_floor(value: float) -> int:
    return int(math.floor(value + SNAP_EPSILON))


def _snap_ceil(value: float) -> int:
    return int(math.ceil(value - SNAP_EPSILON))


def _cell_range(lo: float, hi: float, size: int) -> Tuple[int, int]:
    """Whole-cell [start, stop) covering fractional [lo, hi], clipped to [0, size]."""
    start, stop = _snap_floor(lo), _snap_ceil(hi)
    if stop <= start:
        # extent lies within SNAP_EPSILON of a grid line
        start, stop = int(math.floor(lo)), int(math.ceil(hi))
    return max(0, start), min(size, stop)


def window_from_bounds(
    transform: Affine,
    width: int,
    height: int,
    bounds: Sequence[float],
) -> Optional[Window]:
    """
    Compute the whole-cell window covering bounds on a grid.

    Fractional pixel coordinates snap outward. An extent with positive size
    that sits entirely within the snap tolerance of a grid line still gets
    the cell it lies in. The window is clipped to the grid; None is
    returned when nothing is left.

    Args:
        transform: Grid affine transform
        width: Grid width in cells
        height: Grid height in cells
        bounds: (minx, miny, maxx, maxy) in grid CRS

    Returns:
        rasterio Window with integer offsets/lengths, or None
    """
    minx, miny, maxx, maxy = bounds
    frac = rasterio.windows.from_bounds(minx, miny, maxx, maxy, transform=transform)

    col_start, col_stop = _cell_range(frac.col_off, frac.col_off + frac.width, width)
    row_start, row_stop = _cell_range(frac.row_off, frac.row_off + frac.height, height)

    if col_stop <= col_start or row_stop <= row_start:
        return None

    return Window(col_start, row_start, col_stop - col_start, row_stop - row_start)


def window_slices(window: Window) -> Tuple[slice, slice]:
    """(row_slice, col_slice) indexer for an integer window."""
    row_off, col_off = int(window.row_off), int(window.col_off)
    return (
        slice(row_off, row_off + int(window.height)),
        slice(col_off, col_off + int(window.width)),
    )


def missing_mask(values: np.ndarray, nodata: Optional[float]) -> np.ndarray:
    """
    Mask of missing values: the nodata sentinel and, for floats, NaN.

    Args:
        values: Array of raster values
        nodata: Sentinel value (may itself be NaN) or None

    Returns:
        Boolean array with the shape of values
    """
    mask = np.zeros(values.shape, dtype=bool)
    if np.issubdtype(values.dtype, np.floating):
        mask |= np.isnan(values)
    if nodata is not None and not np.isnan(nodata):
        mask |= values == nodata
    return mask


def intersect_bounds(a: Sequence[float], b: Sequence[float]) -> Optional[Bounds]:
    """Intersection of two (minx, miny, maxx, maxy) boxes, None if zero-size."""
    minx, miny = max(a[0], b[0]), max(a[1], b[1])
    maxx, maxy = min(a[2], b[2]), min(a[3], b[3])
    if maxx <= minx or maxy <= miny:
        return None
    return (minx, miny, maxx, maxy)


def check_bounds_overlap(
    raster_bounds: Sequence[float],
    polygon_bounds: Sequence[float],
    context: str = "",
) -> Bounds:
    """
    Assert that raster and polygon bounds overlap with non-zero area.

    Args:
        raster_bounds: (left, bottom, right, top) of raster
        polygon_bounds: (minx, miny, maxx, maxy) of polygons or bbox
        context: Optional context for error message

    Returns:
        The overlapping rectangle

    Raises:
        ConfigurationError: If bounds do not overlap
    """
    overlap = intersect_bounds(raster_bounds, polygon_bounds)
    if overlap is None:
        raise ConfigurationError(
            f"Zero-size overlap between raster and polygon bounds. "
            f"Raster: {tuple(raster_bounds)}, Polygons: {tuple(polygon_bounds)} ({context})"
        )
    return overlap


def compute_nodata_fraction(raster: RasterSurface) -> float:
    """
    Compute the fraction of missing cells in a raster.

    Returns:
        Fraction of nodata values (0-1)
    """
    if raster.size == 0:
        return 0.0
    return float(raster.missing_mask().sum() / raster.size)


def cross_check_totals(
    raster: RasterSurface,
    regions: gpd.GeoDataFrame,
    totals: Dict[Any, float],
    id_col: str = "region_id",
    all_touched: bool = False,
    rtol: float = 1e-6,
) -> List[Any]:
    """
    Recompute region sums with rasterstats and list disagreeing regions.

    rasterstats rasterises each (multi)polygon whole, so this is an
    independent check on decomposition and re-aggregation.

    Args:
        raster: RasterSurface the totals were computed from
        regions: Regions in raster CRS
        totals: region id -> computed total
        id_col: Region id column
        all_touched: Rasterisation rule used for totals
        rtol: Relative tolerance

    Returns:
        Region ids whose totals disagree
    """
    nodata = raster.nodata
    data = raster.data
    if nodata is None and np.issubdtype(data.dtype, np.floating):
        nodata = np.nan

    # regions without geometry have nothing to recompute
    regions = regions[regions.geometry.notna() & ~regions.geometry.is_empty]

    results = zonal_stats(
        regions.geometry,
        data,
        affine=raster.transform,
        nodata=nodata,
        stats=["sum"],
        all_touched=all_touched,
    )

    mismatches = []
    for region_id, stats in zip(regions[id_col], results):
        expected = (stats or {}).get("sum")
        expected = 0.0 if expected is None else float(expected)
        actual = totals.get(region_id)
        if actual is None or np.isnan(actual):
            continue
        if not np.isclose(actual, expected, rtol=rtol, atol=rtol):
            mismatches.append(region_id)

    return mismatches


def log_raster_qa(qa_stats: Dict, logger=None) -> None:
    """
    Log raster QA statistics.

    Args:
        qa_stats: Dictionary with region_count, total_pixels, pixel count spread
        logger: Optional logger instance
    """
    msg = (
        f"Raster QA: {qa_stats['region_count']} regions, "
        f"{qa_stats['total_pixels']} total pixels, "
        f"min={qa_stats['min_pixels_per_region']}, "
        f"max={qa_stats['max_pixels_per_region']}, "
        f"mean={qa_stats['mean_pixels_per_region']:.1f}, "
        f"zero_pixel={qa_stats['zero_pixel_regions']}"
    )

    if logger is not None:
        logger.log_raster_stats(qa_stats)
    log_event(logger, "info", msg)
