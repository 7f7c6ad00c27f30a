"""
Geometry validation, repair and decomposition.

validate_and_repair must run before decompose: splitting an invalid
multipolygon can silently produce wrong parts.

Decomposition keeps every polygon of a multi-part region. Islands and
enclaves are indexed separately and summed back to their parent, so a
region's coverage is the union of all its parts.
"""

from typing import Iterator, List, Optional, Tuple

import geopandas as gpd
import numpy as np
from shapely.errors import GEOSException
from shapely.geometry import MultiPolygon, Polygon
from shapely.geometry.base import BaseGeometry, BaseMultipartGeometry
from shapely.validation import explain_validity, make_valid

from ntl_regions.logging_utils import log_event
from ntl_regions.qa import GeometryRepairFailure, check_geometry_validity

PART_ID_COL = "part_id"
PARENT_ID_COL = "parent_region_id"


def iter_polygons(geom: Optional[BaseGeometry]) -> Iterator[Polygon]:
    """Yield every non-empty Polygon in geom, descending into collections."""
    if geom is None or geom.is_empty:
        return
    if isinstance(geom, Polygon):
        yield geom
    elif isinstance(geom, BaseMultipartGeometry):
        for member in geom.geoms:
            yield from iter_polygons(member)


def polygonal_part(geom: Optional[BaseGeometry]) -> Optional[BaseGeometry]:
    """Polygon/MultiPolygon made of the polygonal content of geom, or None."""
    polygons = list(iter_polygons(geom))
    if not polygons:
        return None
    if len(polygons) == 1:
        return polygons[0]
    return MultiPolygon(polygons)


def repair_geometry(geom: BaseGeometry) -> BaseGeometry:
    """
    Repair an invalid polygonal geometry.

    Tries make_valid first, then the buffer(0) trick, keeping only the
    polygonal content of the output.

    Raises:
        ValueError: If neither primitive yields a valid non-empty area
    """
    for attempt in (make_valid, lambda g: g.buffer(0)):
        candidate = polygonal_part(attempt(geom))
        if candidate is not None and candidate.is_valid and candidate.area > 0:
            return candidate

    raise ValueError("repair produced no valid polygonal area")


def validate_and_repair(
    regions: gpd.GeoDataFrame,
    id_col: str = "region_id",
    logger=None,
) -> Tuple[gpd.GeoDataFrame, List[GeometryRepairFailure]]:
    """
    Check ring validity of every region and repair the invalid ones.

    Rows are never dropped. A region whose repair fails keeps its original
    geometry and is reported in the returned failure list.

    Args:
        regions: Region collection
        id_col: Region id column
        logger: Optional JSONLLogger

    Returns:
        Tuple of (regions with repaired geometries, repair failures)
    """
    repaired = regions.copy()
    failures: List[GeometryRepairFailure] = []

    geoms = repaired.geometry
    validity = check_geometry_validity(repaired)
    null_mask = validity["is_null"]
    invalid_mask = ~null_mask & ~validity["is_valid"]

    for region_id in repaired.loc[null_mask, id_col]:
        failures.append(GeometryRepairFailure(region_id, "null geometry"))

    new_geoms = list(geoms)
    n_fixed = 0
    for pos in np.flatnonzero(invalid_mask.to_numpy()):
        region_id = repaired[id_col].iloc[pos]
        geom = new_geoms[pos]
        reason = explain_validity(geom)
        try:
            fixed = repair_geometry(geom)
        except (GEOSException, ValueError) as e:
            failures.append(GeometryRepairFailure(region_id, f"{reason}; {e}"))
            log_event(logger, "warning", f"Could not repair geometry of region {region_id}: {e}")
            continue
        new_geoms[pos] = fixed
        n_fixed += 1
        log_event(logger, "debug", f"Repaired region {region_id}: {reason}")

    if n_fixed:
        repaired[repaired.geometry.name] = gpd.GeoSeries(
            new_geoms, index=repaired.index, crs=repaired.crs
        )

    log_event(
        logger,
        "info",
        f"Geometry validation: {int(invalid_mask.sum())} invalid, {n_fixed} repaired, "
        f"{len(failures)} flagged",
        extra={
            "invalid": int(invalid_mask.sum()),
            "repaired": n_fixed,
            "flagged": [f.region_id for f in failures],
        },
    )

    return repaired, failures


def decompose(
    regions: gpd.GeoDataFrame,
    id_col: str = "region_id",
) -> gpd.GeoDataFrame:
    """
    Flatten region geometries into simple polygon parts.

    Each constituent polygon of a MultiPolygon (or GeometryCollection)
    becomes its own part. Null, empty and non-polygonal members yield no
    part.

    Args:
        regions: Region collection (already validated/repaired)
        id_col: Region id column

    Returns:
        GeoDataFrame with columns part_id, parent_region_id, geometry, in
        the CRS of regions
    """
    parts = gpd.GeoDataFrame(
        {PARENT_ID_COL: regions[id_col].to_numpy()},
        geometry=list(regions.geometry),
        crs=regions.crs,
    )
    # a GeometryCollection may hold MultiPolygons; the second pass splits those
    parts = parts.explode(index_parts=False).explode(index_parts=False)

    geoms = parts.geometry
    keep = geoms.notna() & ~geoms.is_empty & (geoms.geom_type == "Polygon")
    parts = parts[keep].reset_index(drop=True)
    parts.insert(0, PART_ID_COL, np.arange(len(parts), dtype=np.int64))
    return parts
