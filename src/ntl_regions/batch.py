"""
Memory-bounded aggregation, one region at a time.

Each region goes through CROP -> INDEX -> SUM -> RELEASE: the raster is
cropped to the region's bounds, its parts are indexed against the crop only,
the cells are summed, and the crop and index are dropped before the next
region starts.

The raster itself is held in memory in full, since read_raster loads the
whole band. What stays bounded by the largest single region window is the
work done on top of it: the crop, the cell index and the per-part arrays.

Results match the bulk path (index_cells + aggregate) up to summation order.
"""

import gc
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple

import geopandas as gpd
import pandas as pd
from shapely.geometry.base import BaseGeometry

from ntl_regions.aggregation import (
    PART_SUM_COLUMNS,
    AggregationResult,
    reconcile_totals,
    sum_cells,
)
from ntl_regions.geometry import PARENT_ID_COL, PART_ID_COL, iter_polygons
from ntl_regions.indexing import index_part
from ntl_regions.logging_utils import log_event
from ntl_regions.qa import ConfigurationError, PerRegionProcessingFailure
from ntl_regions.raster_utils import RasterSurface

ProgressCallback = Callable[[int, int], None]

PartRow = Tuple[int, Any, float, int, int]


class Stage(Enum):
    CROP = "crop"
    INDEX = "index"
    SUM = "sum"
    RELEASE = "release"


def process_region(
    raster: RasterSurface,
    region_id: Any,
    geom: Optional[BaseGeometry],
    first_part_id: int = 0,
    all_touched: bool = False,
) -> List[PartRow]:
    """
    Run CROP -> INDEX -> SUM -> RELEASE for one region.

    Args:
        raster: Full raster (read only)
        region_id: Id of the region
        geom: Region geometry in raster CRS
        first_part_id: part_id given to the region's first part
        all_touched: Rasterisation rule

    Returns:
        One (part_id, region_id, sum, pixel_count, valid_pixel_count) row per
        polygon part; no rows when the geometry has no polygon

    Raises:
        PerRegionProcessingFailure: Naming the stage that failed
    """
    stage = Stage.CROP
    crop = None
    cells = None
    try:
        polygons = list(iter_polygons(geom))
        if not polygons:
            return []

        window = raster.window_for_bounds(geom.bounds)
        if window is None:
            return [
                (first_part_id + i, region_id, 0.0, 0, 0)
                for i in range(len(polygons))
            ]
        crop = raster.read_window(window)
        flat_values = crop.data.ravel()

        rows = []
        for i, polygon in enumerate(polygons):
            stage = Stage.INDEX
            cells = index_part(crop, polygon, all_touched=all_touched)
            stage = Stage.SUM
            total, n_cells, n_valid = sum_cells(flat_values, cells, crop.nodata)
            rows.append((first_part_id + i, region_id, total, n_cells, n_valid))
        return rows

    except Exception as e:
        raise PerRegionProcessingFailure(
            region_id, f"{stage.value} stage: {type(e).__name__}: {e}"
        ) from e

    finally:
        # RELEASE
        del crop, cells


def aggregate_bounded(
    raster: RasterSurface,
    regions: gpd.GeoDataFrame,
    max_regions_per_pass: int = 50,
    id_col: str = "region_id",
    best_effort: bool = False,
    all_touched: bool = False,
    progress: Optional[ProgressCallback] = None,
    logger=None,
) -> AggregationResult:
    """
    Aggregate raster sums region by region with bounded working memory.

    Regions are handled in passes of max_regions_per_pass; garbage is
    collected and progress reported after every pass.

    Args:
        raster: Raster in the regions' CRS (read only)
        regions: Validated region collection
        max_regions_per_pass: Regions per pass between collections/progress reports
        id_col: Region id column
        best_effort: Record failing regions (total NaN) instead of aborting
        all_touched: Rasterisation rule
        progress: Called as progress(completed, total) after every pass
        logger: Optional JSONLLogger

    Returns:
        AggregationResult with one total per region id

    Raises:
        ConfigurationError: If max_regions_per_pass < 1
        PerRegionProcessingFailure: First failing region, unless best_effort
    """
    if max_regions_per_pass < 1:
        raise ConfigurationError("max_regions_per_pass must be >= 1")

    region_ids = regions[id_col].tolist()
    geoms = list(regions.geometry)
    n_regions = len(region_ids)

    rows: List[PartRow] = []
    failed = {}
    completed = 0

    for start in range(0, n_regions, max_regions_per_pass):
        stop = min(start + max_regions_per_pass, n_regions)
        for region_id, geom in zip(region_ids[start:stop], geoms[start:stop]):
            try:
                region_rows = process_region(
                    raster, region_id, geom,
                    first_part_id=len(rows),
                    all_touched=all_touched,
                )
            except PerRegionProcessingFailure as e:
                if not best_effort:
                    log_event(logger, "error", str(e))
                    raise
                failed[region_id] = str(e)
                log_event(logger, "warning", f"Skipping region: {e}")
            else:
                rows.extend(region_rows)
            completed += 1

        gc.collect()
        if progress is not None:
            progress(completed, n_regions)
        log_event(
            logger,
            "info",
            f"Bounded aggregation: {completed}/{n_regions} regions",
            extra={"completed": completed, "total": n_regions, "failed": len(failed)},
        )

    part_table = pd.DataFrame(rows, columns=[PART_ID_COL, PARENT_ID_COL] + PART_SUM_COLUMNS)
    part_table = part_table.astype(
        {"sum": "float64", "pixel_count": "int64", "valid_pixel_count": "int64"}
    )
    return reconcile_totals(part_table, region_ids, id_col=id_col, failed=failed, logger=logger)
