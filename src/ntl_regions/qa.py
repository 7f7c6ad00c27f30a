"""
Quality assurance utilities and error taxonomy.

CRS problems are hard errors: a missing CRS is never guessed or overridden.
Geometry repair failures and empty coverage are recovered locally and
reported as diagnostics alongside the main result.
"""

from dataclasses import dataclass
from typing import Any, Optional

import geopandas as gpd
import pandas as pd
from pyproj import CRS


# =============================================================================
# Error taxonomy
# =============================================================================

class ConfigurationError(Exception):
    """Fatal input problem detected before any computation."""
    pass


class EmptyResultError(ConfigurationError):
    """Raised when clipping to the raster extent leaves no regions."""
    pass


class PerRegionProcessingFailure(Exception):
    """Raised by the bounded path when one region cannot be processed."""

    def __init__(self, region_id: Any, message: str):
        super().__init__(f"Region {region_id!r} failed: {message}")
        self.region_id = region_id


class EmptyCoverageWarning(UserWarning):
    """Emitted when regions cover no raster cell and are zero-filled."""
    pass


@dataclass(frozen=True)
class GeometryRepairFailure:
    """Diagnostic record for a geometry that could not be repaired."""
    region_id: Any
    reason: str


# =============================================================================
# CRS Validation
# =============================================================================

def assert_crs_not_none(crs: Any, context: str = "") -> None:
    """
    Assert that a CRS is set.

    Args:
        crs: CRS object (pyproj, rasterio) or None
        context: Optional context string for error message

    Raises:
        ConfigurationError: If CRS is None
    """
    if crs is None:
        msg = "No CRS set"
        if context:
            msg = f"{msg} ({context})"
        raise ConfigurationError(msg)


def to_pyproj_crs(crs: Any) -> CRS:
    """
    Normalise a rasterio/pyproj/EPSG/WKT CRS to pyproj.

    rasterio CRS objects go through their EPSG code when they have one,
    since their WKT1 export does not always round-trip to an equal CRS.
    """
    if isinstance(crs, CRS):
        return crs
    to_epsg = getattr(crs, "to_epsg", None)
    if to_epsg is not None:
        epsg = to_epsg()
        if epsg is not None:
            return CRS.from_epsg(epsg)
    return CRS.from_user_input(crs)


def crs_equals(a: Any, b: Any) -> bool:
    """Return True if two CRS definitions describe the same reference system."""
    return to_pyproj_crs(a).equals(to_pyproj_crs(b))


def safe_reproject(
    gdf: gpd.GeoDataFrame,
    target_crs: Any,
    context: str = "",
) -> gpd.GeoDataFrame:
    """
    Reproject a GeoDataFrame to target CRS only when it differs.

    Only uses to_crs(), never set_crs with override.

    Args:
        gdf: GeoDataFrame to reproject
        target_crs: Target CRS (anything pyproj accepts)
        context: Optional context string for error message

    Returns:
        The input frame if already in target CRS, else a reprojected copy

    Raises:
        ConfigurationError: If source or target CRS is None
    """
    assert_crs_not_none(gdf.crs, context)
    assert_crs_not_none(target_crs, f"target for {context}" if context else "target")

    target = to_pyproj_crs(target_crs)
    if gdf.crs.equals(target):
        return gdf

    return gdf.to_crs(target)


# =============================================================================
# Geometry Validation
# =============================================================================

def check_geometry_validity(gdf: gpd.GeoDataFrame) -> pd.DataFrame:
    """
    Check geometry validity and return a summary.

    Args:
        gdf: GeoDataFrame to check

    Returns:
        DataFrame with validity info for each geometry
    """
    geoms = gdf.geometry
    return pd.DataFrame({
        "is_null": geoms.isna(),
        "is_valid": geoms.is_valid,
        "is_empty": geoms.is_empty,
        "geom_type": geoms.geom_type,
    })


def summarize_diagnostics(
    empty_coverage: list,
    missing_parts: list,
    failed: dict,
    repair_flagged: Optional[list] = None,
) -> dict[str, Any]:
    """Compact count summary of per-run diagnostics, for metric logging."""
    return {
        "empty_coverage": len(empty_coverage),
        "missing_parts": len(missing_parts),
        "failed": len(failed),
        "repair_flagged": len(repair_flagged or []),
    }
