"""
Spatial alignment of a raster surface and a region collection.

- Regions are reprojected to the raster CRS only when the CRS differ
- Regions are clipped to the raster extent (and an optional caller bbox)
- The raster is cropped to the clipped regions so later steps stay small

Aligning an already aligned pair is a no-op.
"""

from typing import Optional, Sequence, Tuple

import geopandas as gpd
import numpy as np
from shapely.errors import GEOSException
from shapely.geometry import box

from ntl_regions.geometry import polygonal_part, repair_geometry
from ntl_regions.logging_utils import log_event
from ntl_regions.qa import (
    ConfigurationError,
    EmptyResultError,
    assert_crs_not_none,
    crs_equals,
    safe_reproject,
)
from ntl_regions.raster_utils import RasterSurface, check_bounds_overlap


def _clip_to_rect(geom, rect):
    """Polygonal part of geom inside rect; repairs geom if GEOS refuses it."""
    try:
        return polygonal_part(geom.intersection(rect))
    except GEOSException:
        pass
    try:
        return polygonal_part(repair_geometry(geom).intersection(rect))
    except (GEOSException, ValueError):
        # Leave it unclipped; indexing only looks at cells inside the raster
        return geom


def clip_regions(
    regions: gpd.GeoDataFrame,
    rect_bounds: Sequence[float],
    id_col: str = "region_id",
    logger=None,
) -> gpd.GeoDataFrame:
    """
    Clip region geometries to an axis-aligned rectangle.

    Geometries whose bounds lie inside the rectangle are kept unchanged,
    partially overlapping ones are intersected with it, and those with no
    remaining area are dropped. Null geometries pass through.

    Args:
        regions: Regions in the rectangle's CRS
        rect_bounds: (minx, miny, maxx, maxy)
        id_col: Region id column
        logger: Optional JSONLLogger

    Returns:
        Clipped copy of regions (possibly fewer rows)
    """
    minx, miny, maxx, maxy = rect_bounds
    rect = box(minx, miny, maxx, maxy)

    geoms = regions.geometry
    null_mask = geoms.isna().to_numpy()
    b = geoms.bounds.to_numpy()
    inside = (
        ~null_mask
        & (b[:, 0] >= minx) & (b[:, 1] >= miny)
        & (b[:, 2] <= maxx) & (b[:, 3] <= maxy)
    )

    clipped = list(geoms)
    keep = np.ones(len(regions), dtype=bool)
    for pos in np.flatnonzero(~inside & ~null_mask):
        geom = clipped[pos]
        result = None if geom.is_empty else _clip_to_rect(geom, rect)
        if result is None or result.area <= 0:
            keep[pos] = False
        else:
            clipped[pos] = result

    out = regions.copy()
    out[out.geometry.name] = gpd.GeoSeries(clipped, index=out.index, crs=out.crs)
    out = out[keep]

    dropped = regions.loc[~keep, id_col].tolist()
    if dropped:
        log_event(
            logger,
            "info",
            f"Dropped {len(dropped)} regions outside the clip rectangle",
            extra={"dropped": dropped, "clip_bounds": list(rect_bounds)},
        )

    return out


def align(
    raster: RasterSurface,
    regions: gpd.GeoDataFrame,
    bbox: Optional[Sequence[float]] = None,
    id_col: str = "region_id",
    logger=None,
) -> Tuple[RasterSurface, gpd.GeoDataFrame]:
    """
    Reconcile CRS and extents of a raster and a region collection.

    Args:
        raster: Input raster (not modified)
        regions: Input regions (not modified)
        bbox: Optional (minx, miny, maxx, maxy) in raster CRS restricting the
            area of interest, e.g. to exclude overseas territories
        id_col: Region id column
        logger: Optional JSONLLogger

    Returns:
        Tuple of (cropped raster, regions in raster CRS clipped to its extent)

    Raises:
        ConfigurationError: Missing CRS, empty collection or zero-size bbox
        EmptyResultError: No region overlaps the clip rectangle
    """
    assert_crs_not_none(raster.crs, "raster")
    assert_crs_not_none(regions.crs, "regions")
    if len(regions) == 0:
        raise ConfigurationError("Region collection is empty")

    if not crs_equals(regions.crs, raster.crs):
        log_event(logger, "info", f"Reprojecting regions from {regions.crs} to {raster.crs}")
    aligned = safe_reproject(regions, raster.crs, "regions")

    if logger is not None:
        logger.log_crs_info({
            "raster_crs": str(raster.crs),
            "regions_crs_in": str(regions.crs),
            "regions_crs_out": str(aligned.crs),
        })

    rect_bounds = check_bounds_overlap(raster.bounds, raster.bounds, "raster extent")
    if bbox is not None:
        rect_bounds = check_bounds_overlap(rect_bounds, bbox, "caller bbox")

    clipped = clip_regions(aligned, rect_bounds, id_col=id_col, logger=logger)

    located = clipped.geometry.notna()
    if not located.any():
        raise EmptyResultError(
            f"No region overlaps the clip rectangle {tuple(rect_bounds)}"
        )

    cropped = raster.crop(clipped.loc[located].total_bounds)

    log_event(
        logger,
        "info",
        f"Aligned {len(clipped)}/{len(regions)} regions; raster cropped from "
        f"{raster.height}x{raster.width} to {cropped.height}x{cropped.width}",
        extra={"raster_bounds": list(cropped.bounds), "region_count": len(clipped)},
    )

    return cropped, clipped
