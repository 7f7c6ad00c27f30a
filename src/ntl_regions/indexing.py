"""
Cell indexing: which raster cells fall inside each simple polygon part.

Each part is rasterised only inside the window covering its own bounds,
never against the whole grid. A cell belongs to a part when its centre lies
inside the polygon (GDAL rule), or when the polygon touches it at all with
all_touched=True.

Cells are identified by linear index ``row * width + col`` on the raster
passed in.
"""

from typing import Dict

import geopandas as gpd
import numpy as np
import rasterio.windows
from rasterio.features import rasterize
from shapely.geometry.base import BaseGeometry

from ntl_regions.geometry import PART_ID_COL
from ntl_regions.logging_utils import log_event
from ntl_regions.raster_utils import RasterSurface

CellIndex = Dict[int, np.ndarray]

EMPTY_CELLS = np.empty(0, dtype=np.int64)


def index_part(
    raster: RasterSurface,
    geom: BaseGeometry,
    all_touched: bool = False,
) -> np.ndarray:
    """
    Linear indices of the cells covered by one polygon.

    Args:
        raster: Grid to index against
        geom: Simple polygon in raster CRS
        all_touched: Include every cell the polygon touches

    Returns:
        Sorted int64 array; empty when the polygon misses the grid or
        covers no cell centre
    """
    if geom is None or geom.is_empty:
        return EMPTY_CELLS

    window = raster.window_for_bounds(geom.bounds)
    if window is None:
        return EMPTY_CELLS

    row_off, col_off = int(window.row_off), int(window.col_off)
    mask = rasterize(
        [(geom, 1)],
        out_shape=(int(window.height), int(window.width)),
        transform=rasterio.windows.transform(window, raster.transform),
        fill=0,
        dtype=np.uint8,
        all_touched=all_touched,
    )

    rows, cols = np.nonzero(mask)
    if rows.size == 0:
        return EMPTY_CELLS

    return (rows.astype(np.int64) + row_off) * raster.width + (cols.astype(np.int64) + col_off)


def index_cells(
    raster: RasterSurface,
    parts: gpd.GeoDataFrame,
    all_touched: bool = False,
    logger=None,
) -> CellIndex:
    """
    Map every part to the raster cells it covers.

    Parts are independent of each other, so the mapping does not depend on
    part order.

    Args:
        raster: Grid to index against (same CRS as parts)
        parts: Output of geometry.decompose
        all_touched: Include every cell a part touches
        logger: Optional JSONLLogger

    Returns:
        Dict part_id -> sorted int64 array of linear cell indices
    """
    cell_index: CellIndex = {}
    for part_id, geom in zip(parts[PART_ID_COL], parts.geometry):
        cell_index[int(part_id)] = index_part(raster, geom, all_touched=all_touched)

    n_empty = sum(1 for cells in cell_index.values() if cells.size == 0)
    log_event(
        logger,
        "debug",
        f"Indexed {len(cell_index)} parts on {raster.height}x{raster.width} grid, "
        f"{n_empty} parts cover no cell",
    )

    return cell_index
